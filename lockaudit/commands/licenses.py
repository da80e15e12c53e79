from enum import Enum
from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table

from lockaudit.core.container import get_container
from lockaudit.core.decorators import handle_errors
from lockaudit.core.errors import MalformedPolicyFile
from lockaudit.core.logging import console
from lockaudit.models.license import LicenseReport
from lockaudit.models.license import Validity
from lockaudit.models.license import Verdict
from lockaudit.services.license_service import load_license_policy
from lockaudit.services.lockfile_service import load_lockfile
from lockaudit.services.render_service import render_licenses_csv
from lockaudit.services.render_service import render_licenses_markdown
from lockaudit.services.render_service import to_json

VALIDITY_STYLES = {
    Validity.VALID: 'green',
    Validity.INVALID: 'bold red',
    Validity.MISSING: 'yellow',
}


class LicenseFormat(str, Enum):
    TERMINAL = 'terminal'
    JSON = 'json'
    CSV = 'csv'
    MARKDOWN = 'markdown'


def print_license_table(report: LicenseReport):
    table = Table(title=f'Licenses ({len(report.records)})')
    table.add_column('Dependency', style='cyan')
    table.add_column('Version')
    table.add_column('License')
    table.add_column('Validity')
    table.add_column('Source', style='dim')
    table.add_column('Category')
    if report.policy_used:
        table.add_column('Verdict')
    for r in report.records:
        row = [
            r.dependency,
            r.version,
            escape(r.expression or '-'),
            f'[{VALIDITY_STYLES[r.validity]}]{r.validity}[/]',
            str(r.source),
            str(r.category),
        ]
        if report.policy_used:
            row.append(str(r.verdict) if r.verdict else '-')
        table.add_row(*row)
    console.print(table)

    for note in report.copyleft_notes:
        console.print(f'[yellow]Copyleft:[/] {escape(note)}')
    summary = ', '.join(f'{v}: {report.count(v)}' for v in Validity)
    if report.policy_used:
        summary += ' | ' + ', '.join(f'{v}: {report.verdict_count(v)}' for v in Verdict)
    console.print(summary)


@handle_errors
def main(
    check: bool = typer.Option(False, '--check', help='Exit 1 on invalid, missing or denied licenses'),
    detect: bool = typer.Option(False, '--detect', help='Detect undeclared licenses from LICENSE files'),
    include_dev: bool = typer.Option(False, '--include-dev', help='Include development dependencies'),
    policy: Path | None = typer.Option(None, '--policy', help='License policy YAML file'),
    output_format: LicenseFormat = typer.Option(LicenseFormat.TERMINAL, '--format', help='Output format'),
):
    """
    Validate declared licenses as SPDX expressions and classify them.
    """
    container = get_container()
    paths = container.config.paths
    snapshot = load_lockfile(paths.lockfile)

    if policy is not None and not policy.is_file():
        raise MalformedPolicyFile('license policy file not found', path=policy)
    license_policy = load_license_policy(policy or paths.license_policy_file)

    analyzer = container.get_license_analyzer()
    report = analyzer.analyze(snapshot, detect=detect, include_dev=include_dev, policy=license_policy)

    if output_format == LicenseFormat.JSON:
        data = report.model_dump(mode='json')
        data['copyleft_notes'] = report.copyleft_notes
        typer.echo(to_json(data), nl=False)
    elif output_format == LicenseFormat.CSV:
        typer.echo(render_licenses_csv(report), nl=False)
    elif output_format == LicenseFormat.MARKDOWN:
        typer.echo(render_licenses_markdown(report), nl=False)
    else:
        print_license_table(report)

    if check and report.check_failed:
        raise typer.Exit(1)

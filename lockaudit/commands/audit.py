from enum import Enum
from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table

from lockaudit.core.container import get_container
from lockaudit.core.decorators import handle_errors
from lockaudit.core.logging import console
from lockaudit.core.logging import err_console
from lockaudit.models.advisory import AuditResult
from lockaudit.models.severity import Severity
from lockaudit.services.ignore_service import load_ignore_entries
from lockaudit.services.lockfile_service import load_lockfile
from lockaudit.services.render_service import audit_to_dict
from lockaudit.services.render_service import render_audit_sarif
from lockaudit.services.render_service import to_json

SEVERITY_STYLES = {
    Severity.CRITICAL: 'bold red',
    Severity.HIGH: 'red',
    Severity.MEDIUM: 'yellow',
    Severity.LOW: 'dim',
}


class AuditFormat(str, Enum):
    TERMINAL = 'terminal'
    JSON = 'json'
    SARIF = 'sarif'


class SeverityOption(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


def print_audit_table(result: AuditResult):
    shown = result.qualifying_findings
    if not shown:
        console.print('[green]No known vulnerabilities found.[/]')
    else:
        table = Table(title=f'Vulnerabilities ({len(shown)})')
        table.add_column('Severity')
        table.add_column('Dependency', style='cyan')
        table.add_column('Version')
        table.add_column('Advisory', style='magenta')
        table.add_column('Matched')
        table.add_column('Fixed in', style='green')
        table.add_column('Summary', overflow='fold')
        for f in shown:
            table.add_row(
                f'[{SEVERITY_STYLES[f.severity]}]{f.severity}[/]',
                f.dependency,
                f.version,
                f.advisory_id,
                f.matched_range,
                ', '.join(f.fixed_versions) or '-',
                escape(f.summary),
            )
        console.print(table)

    for finding in result.ignored_findings:
        console.print(f'[dim]Ignored {finding.advisory_id} for {finding.dependency}: {finding.ignore_reason or "-"}[/]')
    for stale in result.stale_ignores:
        err_console.print(f'[yellow]Warning:[/] {stale.message}; the finding is reported again.')
    for unverified in result.unverified:
        err_console.print(f'[yellow]Unverified:[/] {unverified.name} ({unverified.reason})')

    counts = ', '.join(f'{level}: {count}' for level, count in result.severity_counts().items())
    console.print(
        f'Scanned {result.scanned} dependencies ({result.data_source}). {counts}',
    )


@handle_errors
def main(
    severity: SeverityOption = typer.Option(
        SeverityOption.LOW, '--severity', help='Only report findings at or above this severity',
    ),
    output_format: AuditFormat = typer.Option(AuditFormat.TERMINAL, '--format', help='Output format'),
    fail_above: SeverityOption = typer.Option(
        SeverityOption.LOW, '--fail-above', help='Exit 1 when a finding at or above this severity exists',
    ),
    ignore: list[str] = typer.Option([], '--ignore', help='Advisory id to ignore (repeatable)'),
    ignore_file: Path | None = typer.Option(None, '--ignore-file', help='Ignore list YAML file'),
    offline: bool = typer.Option(False, '--offline', help='Use cached advisories only; never touch the network'),
    refresh: bool = typer.Option(False, '--refresh', help='Discard and repopulate the advisory cache first'),
    include_dev: bool = typer.Option(True, '--include-dev/--no-dev', help='Audit development dependencies'),
):
    """
    Match locked dependencies against known vulnerability advisories.
    """
    if offline and refresh:
        raise typer.BadParameter('--offline and --refresh cannot be combined')

    container = get_container()
    paths = container.config.paths
    snapshot = load_lockfile(paths.lockfile)
    ignores = load_ignore_entries(ignore_file or paths.ignore_file, ignore, required=ignore_file is not None)

    service = container.get_audit_service()
    result = service.audit(
        snapshot,
        offline=offline,
        force_refresh=refresh,
        min_severity=Severity(severity.value),
        fail_above=Severity(fail_above.value),
        ignores=ignores,
        include_dev=include_dev,
    )

    if output_format == AuditFormat.JSON:
        typer.echo(to_json(audit_to_dict(result)), nl=False)
    elif output_format == AuditFormat.SARIF:
        typer.echo(render_audit_sarif(result, lockfile=paths.lockfile_name), nl=False)
    else:
        print_audit_table(result)

    raise typer.Exit(result.exit_code)

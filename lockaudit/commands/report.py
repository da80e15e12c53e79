from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table

from lockaudit.core.container import get_container
from lockaudit.core.decorators import handle_errors
from lockaudit.core.errors import MalformedPolicyFile
from lockaudit.core.logging import console
from lockaudit.models.report import ComplianceReport
from lockaudit.models.report import Section
from lockaudit.models.severity import Status
from lockaudit.services.diff_service import parse_since
from lockaudit.services.ignore_service import load_ignore_entries
from lockaudit.services.license_service import load_license_policy
from lockaudit.services.lockfile_service import load_lockfile
from lockaudit.services.policy_service import load_policy
from lockaudit.services.render_service import render_report
from lockaudit.services.render_service import ReportFormat
from lockaudit.services.report_service import report_exit_code
from lockaudit.services.report_service import with_signature
from lockaudit.services.signer import archive_report

STATUS_STYLES = {
    Status.PASS: 'bold green',
    Status.ACTION_REQUIRED: 'bold yellow',
    Status.FAIL: 'bold red',
}


def _optional_file(path: Path | None, default: Path) -> Path | None:
    if path is not None:
        if not path.is_file():
            raise MalformedPolicyFile('file not found', path=path)
        return path
    return default if default.is_file() else None


def _write(report: ComplianceReport, fmt: ReportFormat, target: Path):
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(render_report(report, fmt), encoding='utf-8')


def print_summary(report: ComplianceReport, target: Path):
    summary = report.summary
    table = Table(title=f'Compliance report: {report.project.name}', show_header=False)
    table.add_column('Item', style='bold')
    table.add_column('Value')
    table.add_row('Dependencies', f'{summary.total_dependencies} ({summary.dev_dependencies} dev)')
    table.add_row('Vulnerabilities', ', '.join(f'{k}: {v}' for k, v in summary.vulnerabilities.items()))
    table.add_row('Licenses', summary.license_status)
    table.add_row('Policy', summary.policy_status)
    table.add_row('Integrity', summary.integrity_status)
    for section, reason in report.unavailable.items():
        table.add_row(f'{section} (unavailable)', escape(reason))
    if report.signature_ref:
        table.add_row('Signature', report.signature_ref)
    table.add_row('Report', str(target))
    console.print(table)
    console.print(f'Overall status: [{STATUS_STYLES[report.status]}]{report.status}[/]')


@handle_errors
def main(
    sections: str = typer.Option('all', '--sections', help='Comma-separated sections: sbom,audit,licenses,policy,integrity,changelog or all'),
    output_format: str = typer.Option('json', '--format', help='json, html or markdown'),
    output: Path | None = typer.Option(None, '--output', '-o', help='Report file (default: <project>-compliance-report.<ext>)'),
    reviewer: str | None = typer.Option(None, '--reviewer', help='Reviewer identity for the attestation'),
    notes: str | None = typer.Option(None, '--notes', help='Reviewer notes'),
    since: str | None = typer.Option(None, '--since', help='Only include changelog entries after this date/time'),
    sign: bool = typer.Option(False, '--sign', help='Create a detached GPG signature next to the report'),
    offline: bool = typer.Option(False, '--offline', help='Use cached advisories only'),
    policy: Path | None = typer.Option(None, '--policy', help='Policy YAML file'),
    license_policy: Path | None = typer.Option(None, '--license-policy', help='License policy YAML file'),
    detect: bool = typer.Option(False, '--detect', help='Detect undeclared licenses from LICENSE files'),
):
    """
    Run every requested check and write one compliance report with an overall status.
    """
    try:
        selected = Section.select([s for s in sections.split(',') if s.strip()])
    except ValueError:
        raise typer.BadParameter(f'unknown section in {sections!r}', param_hint='--sections')
    fmt = ReportFormat.parse(output_format)
    cutoff = None
    if since is not None:
        try:
            cutoff = parse_since(since)
        except ValueError:
            raise typer.BadParameter(f'invalid date: {since}', param_hint='--since')

    container = get_container()
    paths = container.config.paths
    snapshot = load_lockfile(paths.lockfile)

    policy_path = _optional_file(policy, paths.policy_file)
    license_policy_path = _optional_file(license_policy, paths.license_policy_file)

    service = container.create_compliance_service()
    report = service.build(
        snapshot,
        selected,
        offline=offline,
        ignores=load_ignore_entries(paths.ignore_file),
        policy_rules=load_policy(policy_path) if policy_path else None,
        policy_source=str(policy_path) if policy_path else None,
        license_policy=load_license_policy(license_policy_path) if license_policy_path else None,
        detect_licenses=detect,
        since=cutoff,
        reviewer=reviewer,
        notes=notes,
    )

    target = output or paths.project_dir / f'{container.project_name}-compliance-report{fmt.extension}'
    if sign:
        # The reference is embedded before signing so the signature covers the final bytes
        report = with_signature(report, target.name + '.sig')
    _write(report, fmt, target)
    if sign and container.get_signer().sign(target) is None:
        report = with_signature(report, None)
        _write(report, fmt, target)
    archive_report(target, paths.report_archive_dir, now=report.generated_at)

    print_summary(report, target)
    raise typer.Exit(report_exit_code(report))

from enum import Enum
from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table

from lockaudit.core.container import get_container
from lockaudit.core.decorators import handle_errors
from lockaudit.core.errors import MalformedPolicyFile
from lockaudit.core.logging import console
from lockaudit.models.policy import PolicyResult
from lockaudit.models.policy import PolicyRule
from lockaudit.models.policy import SubjectKind
from lockaudit.models.severity import Action
from lockaudit.services.ignore_service import load_ignore_entries
from lockaudit.services.license_service import load_license_policy
from lockaudit.services.lockfile_service import load_lockfile
from lockaudit.services.policy_service import load_policy
from lockaudit.services.policy_service import STARTER_POLICY
from lockaudit.services.render_service import to_json

app = typer.Typer(help='Evaluate organizational policy rules against the lockfile.', no_args_is_help=True)

ACTION_STYLES = {
    Action.FAIL: 'bold red',
    Action.WARN: 'yellow',
}


class PolicyFormat(str, Enum):
    TERMINAL = 'terminal'
    JSON = 'json'


def resolve_rules(policy: Path | None) -> tuple[list[PolicyRule] | None, str | None]:
    """An explicit --policy must exist; the default policy file is optional."""
    if policy is not None:
        if not policy.is_file():
            raise MalformedPolicyFile('policy file not found', path=policy)
        return load_policy(policy), str(policy)
    default = get_container().config.paths.policy_file
    if not default.is_file():
        return None, None
    return load_policy(default), str(default)


def print_policy_result(result: PolicyResult):
    if not result.defined:
        console.print('[dim]No policy defined.[/]')
        return
    if not result.violations:
        console.print(f'[green]Policy satisfied[/] ({result.rules} rules, {result.source}).')
        return

    table = Table(title=f'Policy violations ({len(result.violations)})')
    table.add_column('Action')
    table.add_column('Subject', style='cyan')
    table.add_column('Rule', style='magenta')
    table.add_column('Message', overflow='fold')
    for v in result.violations:
        table.add_row(
            f'[{ACTION_STYLES[v.action]}]{v.action}[/]',
            escape(v.subject),
            v.rule,
            escape(v.message),
        )
    console.print(table)
    console.print(f'fail: {result.count(Action.FAIL)}, warn: {result.count(Action.WARN)}')


@app.command(name='check')
@handle_errors
def check(
    policy: Path | None = typer.Option(None, '--policy', help='Policy YAML file (default: .lockaudit-policy.yml)'),
    strict: bool = typer.Option(False, '--strict', help='Treat warnings as failing'),
    offline: bool = typer.Option(False, '--offline', help='Use cached advisories for finding rules'),
    detect: bool = typer.Option(False, '--detect', help='Detect undeclared licenses for license rules'),
    output_format: PolicyFormat = typer.Option(PolicyFormat.TERMINAL, '--format', help='Output format'),
):
    """
    Check the lockfile against policy rules; exit 1 on any failing violation.
    """
    container = get_container()
    paths = container.config.paths
    snapshot = load_lockfile(paths.lockfile)
    rules, source = resolve_rules(policy)

    findings = ()
    licenses = ()
    if rules:
        subjects = {rule.subject for rule in rules}
        if SubjectKind.FINDING in subjects:
            ignores = load_ignore_entries(paths.ignore_file)
            audit = container.get_audit_service().audit(snapshot, offline=offline, ignores=ignores)
            findings = audit.active_findings
        if SubjectKind.LICENSE in subjects:
            analyzer = container.get_license_analyzer()
            report = analyzer.analyze(
                snapshot,
                detect=detect,
                include_dev=True,
                policy=load_license_policy(paths.license_policy_file),
            )
            licenses = report.records

    result = container.get_policy_evaluator().check(
        rules,
        dependencies=snapshot.dependencies,
        findings=findings,
        licenses=licenses,
        source=source,
    )

    if output_format == PolicyFormat.JSON:
        typer.echo(to_json(result.model_dump(mode='json')), nl=False)
    else:
        print_policy_result(result)

    raise typer.Exit(result.exit_code(strict=strict))


@app.command(name='show')
@handle_errors
def show(
    policy: Path | None = typer.Option(None, '--policy', help='Policy YAML file (default: .lockaudit-policy.yml)'),
):
    """
    Show the rules compiled from the policy file.
    """
    rules, source = resolve_rules(policy)
    if rules is None:
        console.print('[dim]No policy defined.[/]')
        return

    table = Table(title=f'Policy rules ({len(rules)}) from {source}')
    table.add_column('Rule', style='magenta')
    table.add_column('Subject', style='cyan')
    table.add_column('Conditions', overflow='fold')
    table.add_column('Action')
    for rule in rules:
        table.add_row(
            rule.name,
            str(rule.subject),
            escape(' and '.join(str(c) for c in rule.conditions)),
            f'[{ACTION_STYLES[rule.action]}]{rule.action}[/]',
        )
    console.print(table)


@app.command(name='init')
@handle_errors
def init(
    force: bool = typer.Option(False, '--force', help='Overwrite an existing policy file'),
):
    """
    Write a starter policy file into the project.
    """
    target = get_container().config.paths.policy_file
    if target.exists() and not force:
        console.print(f'[yellow]{target} already exists[/] (use --force to overwrite)')
        raise typer.Exit(1)
    target.write_text(STARTER_POLICY, encoding='utf-8')
    console.print(f'[green]Wrote starter policy to {target}[/]')

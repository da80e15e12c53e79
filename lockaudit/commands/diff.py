from enum import Enum

import typer
from rich.table import Table

from lockaudit.core.container import get_container
from lockaudit.core.decorators import handle_errors
from lockaudit.core.logging import console
from lockaudit.models.change import ChangeEntry
from lockaudit.models.change import ChangeKind
from lockaudit.services.diff_service import diff_snapshots
from lockaudit.services.diff_service import parse_since
from lockaudit.services.diff_service import SnapshotResolver
from lockaudit.services.lockfile_service import load_lockfile
from lockaudit.services.render_service import render_changes_json
from lockaudit.services.render_service import render_changes_markdown

KIND_STYLES = {
    ChangeKind.ADDED: 'green',
    ChangeKind.REMOVED: 'red',
    ChangeKind.UPGRADED: 'cyan',
    ChangeKind.DOWNGRADED: 'yellow',
}


class DiffFormat(str, Enum):
    TERMINAL = 'terminal'
    JSON = 'json'
    MARKDOWN = 'markdown'


def print_changes(changes: list[ChangeEntry], older: str, newer: str):
    if not changes:
        console.print(f'No dependency changes between {older} and {newer}.')
        return
    table = Table(title=f'Changes {older} -> {newer}')
    table.add_column('Change')
    table.add_column('Dependency', style='cyan')
    table.add_column('Old')
    table.add_column('New')
    for c in changes:
        table.add_row(
            f'[{KIND_STYLES[c.kind]}]{c.kind}[/]',
            c.name,
            c.old_version or '-',
            c.new_version or '-',
        )
    console.print(table)


@handle_errors
def main(
    older: str = typer.Argument('history:latest', help="Older snapshot: lockfile path, 'current' or 'history:<n>'"),
    newer: str = typer.Argument('current', help="Newer snapshot: lockfile path, 'current' or 'history:<n>'"),
    since: str | None = typer.Option(None, '--since', help='Only changes dated after this date/time'),
    output_format: DiffFormat = typer.Option(DiffFormat.TERMINAL, '--format', help='Output format'),
    record: bool = typer.Option(False, '--record', help='Record the current lockfile in the snapshot history'),
):
    """
    Show dependency-level changes between two lock snapshots.
    """
    cutoff = None
    if since is not None:
        try:
            cutoff = parse_since(since)
        except ValueError:
            raise typer.BadParameter(f'invalid date: {since}', param_hint='--since')

    container = get_container()
    paths = container.config.paths
    history = container.get_history()

    if record and older == 'history:latest' and history.latest is None:
        history.record(load_lockfile(paths.lockfile))
        console.print('No earlier snapshot recorded; the current lockfile is now the baseline.')
        return

    resolver = SnapshotResolver(paths.lockfile, history)
    old_snapshot = resolver.resolve(older)
    new_snapshot = resolver.resolve(newer)
    changes = diff_snapshots(old_snapshot, new_snapshot, since=cutoff)

    if output_format == DiffFormat.JSON:
        typer.echo(render_changes_json(changes, older, newer), nl=False)
    elif output_format == DiffFormat.MARKDOWN:
        typer.echo(render_changes_markdown(changes, older, newer), nl=False)
    else:
        print_changes(changes, older, newer)

    if record:
        history.record(load_lockfile(paths.lockfile))

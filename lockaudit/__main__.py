from pathlib import Path

import typer

from lockaudit.commands import audit
from lockaudit.commands import diff
from lockaudit.commands import licenses
from lockaudit.commands import policy
from lockaudit.commands import report
from lockaudit.commands import sbom
from lockaudit.core.config import LockAuditConfig
from lockaudit.core.config import PathConfig
from lockaudit.core.config import reset_config
from lockaudit.core.container import Container
from lockaudit.core.logging import setup_logging

app = typer.Typer(
    help='lockaudit: supply-chain compliance checks for a locked dependency graph.',
    no_args_is_help=True,
    pretty_exceptions_show_locals=False,
)

app.command(name='audit')(audit.main)
app.command(name='licenses')(licenses.main)
app.add_typer(policy.app, name='policy')
app.command(name='diff')(diff.main)
app.command(name='sbom')(sbom.main)
app.command(name='compliance-report')(report.main)


@app.callback()
def main(
    debug: bool = typer.Option(False, '--debug', help='Enable debug logging'),
    project: Path | None = typer.Option(
        None, '--project', '-C', envvar='LOCKAUDIT_PROJECT_DIR',
        help='Project directory holding shard.lock (default: current directory)',
    ),
):
    """
    lockaudit - audit, license, policy, integrity and change reports for shard.lock.
    """
    level = 'DEBUG' if debug else 'INFO'
    setup_logging(level=level)
    if project is not None:
        config = LockAuditConfig.load()
        config.paths = PathConfig(project_dir=project)
        reset_config(config)
        Container.reset()


if __name__ == '__main__':
    app()

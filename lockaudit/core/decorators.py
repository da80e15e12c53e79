import functools
from collections.abc import Callable
from typing import Any

import structlog
import typer
from rich.markup import escape

from lockaudit.core.errors import LockAuditError
from lockaudit.core.logging import err_console

logger = structlog.get_logger()

# 0 and 1 are reserved for "clean" and "findings present"
EXIT_FATAL = 2


def handle_errors(func: Callable[..., Any]) -> Callable[..., Any]:
    """Decorator turning exceptions in CLI commands into a one-line diagnostic and exit code."""
    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (typer.Exit, typer.BadParameter):
            raise
        except LockAuditError as e:
            err_console.print(f"[bold red]{type(e).__name__}:[/] {escape(str(e))}", soft_wrap=True)
            logger.debug('Fatal input error', exc_info=True)
            raise typer.Exit(EXIT_FATAL)
        except KeyboardInterrupt:
            err_console.print('\n[yellow]Operation cancelled by user.[/]')
            raise typer.Exit(130)
        except Exception as e:
            err_console.print(f"[bold red]Unexpected Error:[/] {escape(str(e))}", soft_wrap=True)
            logger.exception('Unexpected error')
            raise typer.Exit(EXIT_FATAL)
    return wrapper

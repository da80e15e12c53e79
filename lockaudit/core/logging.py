import logging
import os
import sys
from typing import Any

import structlog
from rich.console import Console
from rich.markup import escape

# Documents and tables go to stdout, diagnostics to stderr
console = Console()
err_console = Console(stderr=True)

LEVEL_STYLES = {
    'debug': 'dim',
    'info': 'green',
    'warning': 'yellow',
    'error': 'bold red',
    'critical': 'bold magenta',
}

NOISY_LOGGERS = ('urllib3', 'requests_cache')


def _format_value(value: Any) -> str:
    if isinstance(value, (list, tuple, set, frozenset)):
        return '[' + ', '.join(str(v) for v in value) + ']'
    if isinstance(value, str) and value and ' ' not in value:
        return value
    return repr(value)


class RichConsoleRenderer:
    """
    Prints structlog events through a stderr rich.Console as key=value pairs.

    Values are escaped, so advisory summaries or field paths such as
    ``policy.yml [rules.custom]`` print literally. An optional '_style' key
    overrides the line style. Timestamps are shown only when ``show_time``.
    """

    def __init__(self, show_time: bool = False):
        self._console = Console(stderr=True)
        self._show_time = show_time

    def __call__(self, logger, name, event_dict):
        custom_style = event_dict.pop('_style', None)
        event = event_dict.pop('event', '')
        log_level = event_dict.pop('level', 'info')
        logger_name = event_dict.pop('logger', None)
        timestamp = event_dict.pop('timestamp', '')
        exception = event_dict.pop('exception', None) or event_dict.pop('exc_info', None)
        stack_info = event_dict.pop('stack_info', None)

        parts = []
        if self._show_time and timestamp:
            parts.append(f'[dim]{timestamp}[/dim]')
        level_style = LEVEL_STYLES.get(log_level, 'white')
        parts.append(f'[{level_style}]{log_level:<8}[/{level_style}]')
        if logger_name:
            parts.append(f'[bold]{logger_name}[/bold]')
        parts.append(escape(str(event)))
        for key, value in event_dict.items():
            parts.append(f'[cyan]{key}[/cyan]=[green]{escape(_format_value(value))}[/green]')

        line = ' '.join(parts)
        if exception:
            line += f'\n[red]{escape(str(exception))}[/red]'
        if stack_info:
            line += f'\n[dim]{escape(str(stack_info))}[/dim]'

        self._console.print(line, style=custom_style, soft_wrap=True)
        raise structlog.DropEvent


def drop_style_processor(logger, method_name, event_dict):
    """Strip the rich '_style' hint before JSON rendering."""
    event_dict.pop('_style', None)
    return event_dict


def json_logs_requested() -> bool:
    return os.getenv('ENV') == 'production' or os.getenv('LOCKAUDIT_LOG_FORMAT', '').lower() == 'json'


def setup_logging(level: str = 'INFO') -> None:
    """
    Configure structlog for the CLI.

    Every log line goes to stderr so that JSON, SARIF and SBOM documents on
    stdout stay machine readable. HTTP library chatter is only shown at DEBUG.
    """
    logging.basicConfig(format='%(message)s', stream=sys.stderr, level=level)
    debug = level.upper() == 'DEBUG'
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if debug else logging.WARNING)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt='iso'),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_logs_requested():
        processors = shared_processors + [
            drop_style_processor,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            RichConsoleRenderer(show_time=debug),
        ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(logging.getLevelName(level.upper())),
        cache_logger_on_first_use=True,
    )

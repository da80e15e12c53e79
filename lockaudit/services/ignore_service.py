from datetime import date
from pathlib import Path

import structlog
import yaml
from pydantic import ValidationError

from lockaudit.core.errors import MalformedPolicyFile
from lockaudit.models.advisory import IgnoreEntry

logger = structlog.get_logger('ignore_service')


def parse_ignore_file(text: str, origin: str = '<memory>') -> list[IgnoreEntry]:
    """
    Parse an ignore list.

    Accepted shape::

        ignore:
          - id: GHSA-xxxx
            reason: not reachable from our code
            expires: 2025-12-31
    """
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise MalformedPolicyFile(f'invalid YAML: {e}', path=origin)
    if not isinstance(data, dict):
        raise MalformedPolicyFile('ignore file must be a mapping', path=origin)

    unknown = set(data) - {'ignore'}
    if unknown:
        raise MalformedPolicyFile(f"unknown key '{sorted(unknown)[0]}'", path=origin)
    items = data.get('ignore') or []
    if not isinstance(items, list):
        raise MalformedPolicyFile('must be a list', path=origin, field='ignore')

    entries = []
    for index, item in enumerate(items):
        if isinstance(item, str):
            item = {'id': item}
        if not isinstance(item, dict) or not item.get('id'):
            raise MalformedPolicyFile('entry needs an id', path=origin, field=f'ignore[{index}]')
        try:
            entries.append(IgnoreEntry(**item))
        except ValidationError as e:
            first = e.errors()[0]
            raise MalformedPolicyFile(
                first['msg'],
                path=origin,
                field=f"ignore[{index}].{'.'.join(str(p) for p in first['loc'])}",
            )
    return entries


def load_ignore_entries(
    path: str | Path | None,
    ids: list[str] | None = None,
    required: bool = False,
) -> list[IgnoreEntry]:
    """Ignore entries from a YAML file (when present) plus ad-hoc advisory ids."""
    entries: list[IgnoreEntry] = []
    if path is not None:
        path = Path(path)
        if required and not path.is_file():
            raise MalformedPolicyFile('ignore file not found', path=path)
        if path.is_file():
            entries.extend(parse_ignore_file(path.read_text(encoding='utf-8'), origin=str(path)))
            logger.debug('Loaded ignore file', path=str(path), entries=len(entries))
    for advisory_id in ids or []:
        entries.append(IgnoreEntry(id=advisory_id, reason='ignored on the command line'))
    return entries


def split_ignores(entries: list[IgnoreEntry], today: date) -> tuple[dict[str, IgnoreEntry], list[IgnoreEntry]]:
    """Partition into (active entries by id, expired entries)."""
    active: dict[str, IgnoreEntry] = {}
    expired = []
    for entry in entries:
        if entry.is_active(today):
            active.setdefault(entry.id, entry)
        else:
            expired.append(entry)
    return active, expired

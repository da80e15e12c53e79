from datetime import datetime
from datetime import timezone
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from lockaudit.core.errors import DuplicateDependency
from lockaudit.core.errors import MalformedLockfile
from lockaudit.models.lock import Dependency
from lockaudit.models.lock import LockSnapshot

logger = structlog.get_logger('lockfile_service')

FORGE_HOSTS = {
    'github': 'github.com',
    'gitlab': 'gitlab.com',
    'bitbucket': 'bitbucket.org',
    'codeberg': 'codeberg.org',
}
SOURCE_KEYS = ('git', 'path', *FORGE_HOSTS)


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _check_duplicates(text: str, origin: str) -> None:
    """PyYAML silently keeps the last duplicate key; inspect the node tree instead."""
    root = yaml.compose(text, Loader=yaml.SafeLoader)
    if not isinstance(root, yaml.MappingNode):
        return
    for key_node, value_node in root.value:
        if key_node.value != 'shards' or not isinstance(value_node, yaml.MappingNode):
            continue
        seen: set[str] = set()
        for dep_key, _ in value_node.value:
            if dep_key.value in seen:
                raise DuplicateDependency(
                    f"dependency '{dep_key.value}' is declared more than once "
                    f"(line {dep_key.start_mark.line + 1})",
                    path=origin, field=f'shards.{dep_key.value}',
                )
            seen.add(dep_key.value)


def _source_of(name: str, entry: dict[str, Any], origin: str) -> tuple[str, str]:
    keys = [key for key in SOURCE_KEYS if key in entry]
    if len(keys) != 1:
        raise MalformedLockfile(
            f'expected exactly one source key out of {", ".join(SOURCE_KEYS)}',
            path=origin, field=f'shards.{name}',
        )
    key = keys[0]
    value = str(entry[key])
    if key in FORGE_HOSTS:
        return 'git', f'https://{FORGE_HOSTS[key]}/{value}.git'
    return key, value


def parse_lockfile(
    text: str,
    origin: str = '<memory>',
    default_timestamp: datetime | None = None,
) -> LockSnapshot:
    """
    Parse lockfile YAML into a LockSnapshot.

    Raises:
        MalformedLockfile: invalid YAML, missing fields, unknown source, bad version
        DuplicateDependency: two entries share a name
    """
    try:
        _check_duplicates(text, origin)
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedLockfile(f'invalid YAML: {e}', path=origin)

    if not isinstance(data, dict):
        raise MalformedLockfile('lockfile must be a mapping', path=origin)
    if 'version' not in data or data['version'] in (None, ''):
        raise MalformedLockfile('missing required field', path=origin, field='version')
    shards = data.get('shards')
    if not isinstance(shards, dict):
        raise MalformedLockfile('missing required mapping', path=origin, field='shards')

    dependencies = []
    for name, entry in shards.items():
        name = str(name)
        if not isinstance(entry, dict):
            raise MalformedLockfile('entry must be a mapping', path=origin, field=f'shards.{name}')
        if entry.get('version') in (None, ''):
            raise MalformedLockfile('missing required field', path=origin, field=f'shards.{name}.version')
        source_kind, source = _source_of(name, entry, origin)
        deps = entry.get('dependencies') or []
        if not isinstance(deps, list):
            raise MalformedLockfile('must be a list', path=origin, field=f'shards.{name}.dependencies')
        try:
            dependencies.append(
                Dependency(
                    name=name,
                    version=str(entry['version']),
                    source=source,
                    source_kind=source_kind,
                    license=entry.get('license') or None,
                    checksum=entry.get('checksum') or None,
                    dev=bool(entry.get('development', False)),
                    dependencies=tuple(str(d) for d in deps),
                ),
            )
        except ValidationError as e:
            first = e.errors()[0]
            raise MalformedLockfile(
                first['msg'].removeprefix('Value error, '),
                path=origin,
                field=f"shards.{name}.{'.'.join(str(p) for p in first['loc'])}",
            )

    timestamp = (
        _parse_timestamp(data.get('generated_at'))
        or default_timestamp
        or datetime.now(timezone.utc)
    )
    snapshot = LockSnapshot(
        format_version=str(data['version']),
        timestamp=timestamp,
        dependencies=tuple(dependencies),
        origin=origin,
    )
    logger.debug('Parsed lockfile', path=origin, dependencies=len(dependencies))
    return snapshot


def load_lockfile(path: str | Path) -> LockSnapshot:
    path = Path(path)
    if not path.is_file():
        raise MalformedLockfile('lockfile not found', path=path)
    mtime = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
    return parse_lockfile(
        path.read_text(encoding='utf-8'),
        origin=str(path),
        default_timestamp=mtime,
    )


def locate_content(dep: Dependency, install_dir: str | Path, project_dir: str | Path | None = None) -> Path:
    """Local directory holding a dependency's fetched sources (lib/<name>, or the path source itself)."""
    installed = Path(install_dir) / dep.name
    if installed.is_dir() or not dep.is_path:
        return installed
    source = Path(dep.source)
    if not source.is_absolute() and project_dir is not None:
        source = Path(project_dir) / source
    return source

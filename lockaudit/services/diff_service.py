from datetime import datetime
from datetime import timezone

import structlog

from lockaudit.core.errors import MalformedLockfile
from lockaudit.core.storage import SnapshotHistory
from lockaudit.models.change import ChangeEntry
from lockaudit.models.change import ChangeKind
from lockaudit.models.lock import LockSnapshot
from lockaudit.services.lockfile_service import load_lockfile

logger = structlog.get_logger('diff_service')


def diff_snapshots(
    older: LockSnapshot,
    newer: LockSnapshot,
    since: datetime | None = None,
) -> list[ChangeEntry]:
    """
    Compare two snapshots and return changes ordered by dependency name.

    Every entry is stamped with the newer snapshot's timestamp; with ``since``
    only entries stamped after the cutoff are returned.
    """
    if since is not None and since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    if since is not None and newer.timestamp <= since:
        return []

    old_map = {dep.name: dep for dep in older.dependencies}
    new_map = {dep.name: dep for dep in newer.dependencies}
    changes = []

    for name in sorted(old_map.keys() | new_map.keys()):
        old, new = old_map.get(name), new_map.get(name)
        if old is None:
            kind = ChangeKind.ADDED
        elif new is None:
            kind = ChangeKind.REMOVED
        elif old.semver == new.semver and old.semver.build == new.semver.build:
            continue
        elif new.semver < old.semver:
            kind = ChangeKind.DOWNGRADED
        else:
            # build-metadata-only changes count as upgrades
            kind = ChangeKind.UPGRADED
        changes.append(
            ChangeEntry(
                kind=kind,
                name=name,
                old_version=old.version if old else None,
                new_version=new.version if new else None,
                timestamp=newer.timestamp,
            ),
        )
    return changes


def history_changes(history: SnapshotHistory, since: datetime | None = None) -> list[ChangeEntry]:
    """Change log over consecutive recorded snapshots, oldest pair first."""
    changes: list[ChangeEntry] = []
    snapshots = history.snapshots
    for older, newer in zip(snapshots, snapshots[1:]):
        changes.extend(diff_snapshots(older, newer, since=since))
    return changes


class SnapshotResolver:
    """Turns a snapshot reference into a LockSnapshot."""

    def __init__(self, current_lockfile, history: SnapshotHistory):
        self.current_lockfile = current_lockfile
        self.history = history

    def resolve(self, ref: str) -> LockSnapshot:
        if ref == 'current':
            return load_lockfile(self.current_lockfile)
        if ref.startswith('history:'):
            try:
                return self.history.get(ref.split(':', 1)[1])
            except LookupError as e:
                raise MalformedLockfile(str(e), field=ref)
        return load_lockfile(ref)


def parse_since(value: str) -> datetime:
    """Parse a date (``2024-01-31``) or ISO-8601 timestamp into an aware UTC datetime."""
    parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)

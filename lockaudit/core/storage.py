from pathlib import Path

import structlog
from pydantic import ValidationError

from lockaudit.models.lock import LockSnapshot

logger = structlog.get_logger('storage')


class SnapshotHistory:
    """Append-only JSONL ledger of lock snapshots, oldest first."""

    def __init__(self, filepath: str | Path):
        self.filepath = Path(filepath)
        self.snapshots: list[LockSnapshot] = []
        self._load_existing()

    def _load_existing(self):
        if not self.filepath.exists():
            return

        skipped = 0
        with open(self.filepath, encoding='utf-8') as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    self.snapshots.append(LockSnapshot.model_validate_json(line))
                except ValidationError:
                    skipped += 1
        logger.debug(
            'Loaded snapshot history',
            path=str(self.filepath), snapshots=len(self.snapshots), skipped=skipped,
        )

    @property
    def latest(self) -> LockSnapshot | None:
        return self.snapshots[-1] if self.snapshots else None

    def record(self, snapshot: LockSnapshot) -> bool:
        """Appends the snapshot unless its content equals the latest one. Returns True if saved."""
        latest = self.latest
        if latest is not None and latest.content_key() == snapshot.content_key():
            return False

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        with open(self.filepath, 'a', encoding='utf-8') as f:
            f.write(snapshot.model_dump_json() + '\n')
            f.flush()
        self.snapshots.append(snapshot)
        logger.info(
            'Recorded lock snapshot',
            path=str(self.filepath), dependencies=len(snapshot.dependencies),
        )
        return True

    def get(self, ref: str) -> LockSnapshot:
        """Resolve 'latest' or a 0-based index (negative counts from the end)."""
        if not self.snapshots:
            raise LookupError(f'snapshot history is empty: {self.filepath}')
        if ref == 'latest':
            return self.snapshots[-1]
        try:
            return self.snapshots[int(ref)]
        except (ValueError, IndexError):
            raise LookupError(f"no snapshot '{ref}' in history ({len(self.snapshots)} recorded)")

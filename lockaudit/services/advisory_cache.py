import os
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path

import structlog
from pydantic import ValidationError

from lockaudit.models.advisory import AdvisorySet

logger = structlog.get_logger('advisory_cache')


class AdvisoryCache:
    """
    Process-wide advisory store keyed by ecosystem.

    Readers always see a complete AdvisorySet: a refresh builds the new set
    off to the side and swaps it in under the lock. Refreshes are mutually
    exclusive. Entries are never expired by time, only replaced by refresh.
    """

    def __init__(self, cache_dir: str | Path | None = None):
        self.cache_dir = Path(cache_dir) if cache_dir else None
        self._entries: dict[str, AdvisorySet] = {}
        self._lock = threading.Lock()
        self._refresh_lock = threading.Lock()

    def _path_for(self, ecosystem: str) -> Path | None:
        if self.cache_dir is None:
            return None
        return self.cache_dir / f'advisories-{ecosystem}.json'

    def get(self, ecosystem: str) -> AdvisorySet | None:
        with self._lock:
            entry = self._entries.get(ecosystem)
        if entry is not None:
            return entry
        loaded = self._load_from_disk(ecosystem)
        if loaded is None:
            return None
        with self._lock:
            # another reader may have loaded it meanwhile; keep the first
            return self._entries.setdefault(ecosystem, loaded)

    def has(self, ecosystem: str) -> bool:
        return self.get(ecosystem) is not None

    def store(self, advisory_set: AdvisorySet) -> None:
        """Atomically replace the cached set for its ecosystem (memory and disk)."""
        self._write_to_disk(advisory_set)
        with self._lock:
            self._entries[advisory_set.ecosystem] = advisory_set
        logger.info(
            'Advisory cache updated',
            ecosystem=advisory_set.ecosystem,
            packages=len(advisory_set.packages),
            fetched_at=advisory_set.fetched_at.isoformat(),
        )

    def clear(self, ecosystem: str) -> None:
        with self._lock:
            self._entries.pop(ecosystem, None)
        path = self._path_for(ecosystem)
        if path is not None and path.exists():
            path.unlink()

    def refresh(self, ecosystem: str, fetch: Callable[[], AdvisorySet]) -> AdvisorySet:
        """
        Discard and repopulate one ecosystem.

        ``fetch`` runs while no other refresh can start. The fetched set
        replaces the old one wholesale (nothing is merged); readers keep
        seeing the previous set until then. If ``fetch`` raises, the previous
        set stays in place.
        """
        with self._refresh_lock:
            advisory_set = fetch()
            self.store(advisory_set)
            return advisory_set

    def _load_from_disk(self, ecosystem: str) -> AdvisorySet | None:
        path = self._path_for(ecosystem)
        if path is None or not path.exists():
            return None
        try:
            return AdvisorySet.model_validate_json(path.read_text(encoding='utf-8'))
        except (OSError, ValidationError) as e:
            logger.warning('Ignoring unreadable advisory cache', path=str(path), error=str(e))
            return None

    def _write_to_disk(self, advisory_set: AdvisorySet) -> None:
        path = self._path_for(advisory_set.ecosystem)
        if path is None:
            return
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=path.name, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                f.write(advisory_set.model_dump_json(indent=2))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

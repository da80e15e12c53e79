import threading
import time
from dataclasses import dataclass
from dataclasses import field


@dataclass
class LookupStats:
    """Thread-safe counters for one parallel advisory lookup run."""
    total: int = 0
    fetched: int = 0
    failed: int = 0
    timed_out: int = 0
    advisories: int = 0
    start_time: float = field(default_factory=time.monotonic)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def inc_fetched(self, advisories: int = 0):
        with self._lock:
            self.fetched += 1
            self.advisories += advisories

    def inc_failed(self, count: int = 1):
        with self._lock:
            self.failed += count

    def inc_timed_out(self, count: int = 1):
        with self._lock:
            self.timed_out += count

    @property
    def elapsed_time(self) -> float:
        return time.monotonic() - self.start_time

    def summary(self) -> dict[str, int | str]:
        with self._lock:
            return {
                'lookups': self.total,
                'fetched': self.fetched,
                'failed': self.failed,
                'timed_out': self.timed_out,
                'advisories': self.advisories,
                'elapsed': f'{self.elapsed_time:.2f}s',
            }

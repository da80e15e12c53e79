"""Configuration management for lockaudit."""
import os
from dataclasses import dataclass
from dataclasses import field
from pathlib import Path

import dotenv


@dataclass
class PathConfig:
    """File locations, all relative to the project root unless absolute."""
    project_dir: Path = field(
        default_factory=lambda: Path(os.getenv('LOCKAUDIT_PROJECT_DIR', '.')),
    )
    lockfile_name: str = 'shard.lock'
    install_dir_name: str = 'lib'
    state_dir_name: str = '.lockaudit'

    @property
    def lockfile(self) -> Path:
        return self.project_dir / self.lockfile_name

    @property
    def install_dir(self) -> Path:
        """Directory holding already-fetched dependency sources (lib/<name>)."""
        return self.project_dir / self.install_dir_name

    @property
    def state_dir(self) -> Path:
        return self.project_dir / self.state_dir_name

    @property
    def cache_dir(self) -> Path:
        """Advisory cache, one JSON blob per ecosystem."""
        return self.state_dir / 'cache'

    @property
    def http_cache_file(self) -> Path:
        return self.state_dir / 'http-cache' / 'db.sqlite3'

    @property
    def history_file(self) -> Path:
        return self.state_dir / 'history.jsonl'

    @property
    def report_archive_dir(self) -> Path:
        return self.state_dir / 'audit' / 'reports'

    @property
    def ignore_file(self) -> Path:
        return self.project_dir / '.lockaudit-ignore.yml'

    @property
    def policy_file(self) -> Path:
        return self.project_dir / '.lockaudit-policy.yml'

    @property
    def license_policy_file(self) -> Path:
        return self.project_dir / '.lockaudit-license-policy.yml'


@dataclass
class AdvisoryConfig:
    """Advisory source configuration."""
    api_base_url: str = field(
        default_factory=lambda: os.getenv(
            'LOCKAUDIT_OSV_URL', 'https://api.osv.dev/v1',
        ),
    )
    ecosystem: str = field(
        default_factory=lambda: os.getenv('LOCKAUDIT_ECOSYSTEM', 'crystal'),
    )
    workers: int = field(
        default_factory=lambda: int(os.getenv('LOCKAUDIT_WORKERS', '8')),
    )
    # Whole-audit budget; per-dependency lookups still running when it
    # elapses are reported as unverified.
    timeout: float = field(
        default_factory=lambda: float(os.getenv('LOCKAUDIT_TIMEOUT', '60')),
    )
    request_timeout: int = 15
    http_cache_ttl: int = 60 * 60  # 1 hour in seconds


@dataclass
class LockAuditConfig:
    paths: PathConfig = field(default_factory=PathConfig)
    advisories: AdvisoryConfig = field(default_factory=AdvisoryConfig)

    @classmethod
    def load(cls) -> 'LockAuditConfig':
        dotenv.load_dotenv()
        return cls()


_config: LockAuditConfig | None = None


def get_config() -> LockAuditConfig:
    global _config
    if _config is None:
        _config = LockAuditConfig.load()
    return _config


def reset_config(config: LockAuditConfig | None = None) -> None:
    """Replace the process-wide configuration (used by the CLI --project option and tests)."""
    global _config
    _config = config

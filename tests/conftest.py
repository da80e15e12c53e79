from datetime import datetime
from datetime import timezone

import pytest

from lockaudit.core.config import LockAuditConfig
from lockaudit.core.config import PathConfig
from lockaudit.core.config import reset_config
from lockaudit.core.container import Container
from lockaudit.models.lock import Dependency
from lockaudit.models.lock import LockSnapshot

SAMPLE_LOCK = """\
version: 2.0
generated_at: 2024-03-01T12:00:00Z
shards:
  kemal:
    github: kemalcr/kemal
    version: 1.4.0
    license: MIT
    dependencies: [radix, exception_page]
  radix:
    github: luislavena/radix
    version: 0.4.1
    license: MIT
  exception_page:
    github: crystal-loot/exception_page
    version: 0.3.1
    license: MIT
  ameba:
    github: crystal-ameba/ameba
    version: 1.5.0
    license: MIT
    development: true
"""


def make_dep(name: str, version: str, **kwargs) -> Dependency:
    kwargs.setdefault('source', f'https://github.com/example/{name}.git')
    return Dependency(name=name, version=version, **kwargs)


def make_snapshot(*deps: Dependency, timestamp: datetime | None = None) -> LockSnapshot:
    return LockSnapshot(
        format_version='2.0',
        timestamp=timestamp or datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        dependencies=tuple(deps),
        origin='shard.lock',
    )


@pytest.fixture
def project(tmp_path):
    """A project directory with shard.lock, wired into the global config and container."""
    (tmp_path / 'shard.lock').write_text(SAMPLE_LOCK)
    config = LockAuditConfig()
    config.paths = PathConfig(project_dir=tmp_path)
    reset_config(config)
    Container.reset()
    yield tmp_path
    reset_config(None)
    Container.reset()

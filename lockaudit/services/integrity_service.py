import hashlib
import os
from pathlib import Path

import structlog

from lockaudit.core.errors import IntegrityUnverifiable
from lockaudit.models.integrity import IntegrityEntry
from lockaudit.models.integrity import IntegrityResult
from lockaudit.models.integrity import IntegrityStatus
from lockaudit.models.lock import Dependency
from lockaudit.models.lock import LockSnapshot
from lockaudit.services.lockfile_service import locate_content

logger = structlog.get_logger('integrity_service')

ALGORITHM_PREFIX = 'sha256'
EXCLUDED_DIRS = frozenset({'.git', '.hg', '.fossil', '.fslckout', '_FOSSIL_'})


def collect_files(base: Path) -> list[str]:
    """Relative POSIX paths of every file under ``base``, VCS metadata excluded."""
    files = []
    for root, dirs, names in os.walk(base):
        root_path = Path(root)
        at_top = root_path == base
        kept = []
        for d in dirs:
            if d in EXCLUDED_DIRS or (root_path / d).is_symlink():
                continue
            # installed sub-dependencies live under the top-level lib
            if at_top and d == 'lib':
                continue
            kept.append(d)
        dirs[:] = kept
        for name in names:
            full = root_path / name
            if full.is_file():
                files.append(full.relative_to(base).as_posix())
    return sorted(files)


def compute_checksum(path: str | Path) -> str:
    """
    Deterministic content hash of a directory.

    Files are visited in sorted order of their relative path; each one
    feeds ``path NUL size NUL content`` into a single SHA-256 digest.
    """
    base = Path(path)
    digest = hashlib.sha256()
    for relative in collect_files(base):
        content = (base / relative).read_bytes()
        digest.update(relative.encode('utf-8'))
        digest.update(b'\0')
        digest.update(str(len(content)).encode('ascii'))
        digest.update(b'\0')
        digest.update(content)
    return f'{ALGORITHM_PREFIX}:{digest.hexdigest()}'


class IntegrityVerifier:
    """Recomputes checksums from already-fetched local content; never uses the network."""

    def __init__(self, install_dir: str | Path, project_dir: str | Path | None = None):
        self.install_dir = Path(install_dir)
        self.project_dir = project_dir

    def verify_dependency(self, dep: Dependency) -> IntegrityEntry:
        if not dep.checksum:
            return IntegrityEntry(name=dep.name, version=dep.version, status=IntegrityStatus.UNVERIFIED)

        content = locate_content(dep, self.install_dir, self.project_dir)
        if not content.is_dir():
            raise IntegrityUnverifiable(
                f"content for '{dep.name}' is not present locally; install dependencies first",
                path=content,
            )
        computed = compute_checksum(content)
        status = IntegrityStatus.VERIFIED if computed == dep.checksum else IntegrityStatus.MISMATCH
        if status == IntegrityStatus.MISMATCH:
            logger.warning('Checksum mismatch', package=dep.name, recorded=dep.checksum, computed=computed)
        return IntegrityEntry(
            name=dep.name,
            version=dep.version,
            status=status,
            recorded=dep.checksum,
            computed=computed,
        )

    def verify(self, snapshot: LockSnapshot, include_dev: bool = True) -> IntegrityResult:
        entries = [self.verify_dependency(dep) for dep in snapshot.filtered(include_dev)]
        result = IntegrityResult(entries=tuple(entries))
        logger.info(
            'Integrity verified',
            dependencies=len(entries),
            mismatches=len(result.violations),
            unverified=len(result.unverified),
        )
        return result

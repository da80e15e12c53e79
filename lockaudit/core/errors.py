"""Exception taxonomy for lockaudit.

Structural input errors abort an operation; data-quality conditions
(invalid license, missing checksum, stale ignore) are recorded as result
data and never raised.
"""
from pathlib import Path


class LockAuditError(Exception):
    """Base error. Renders as a single diagnostic line naming the file/field."""

    def __init__(self, message: str, *, path: str | Path | None = None, field: str | None = None):
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None
        self.field = field

    def __str__(self) -> str:
        location = ''
        if self.path and self.field:
            location = f'{self.path} [{self.field}]: '
        elif self.path:
            location = f'{self.path}: '
        elif self.field:
            location = f'[{self.field}]: '
        return f'{location}{self.message}'


class MalformedLockfile(LockAuditError):
    """Required lockfile field absent or a version is not semantic."""


class DuplicateDependency(LockAuditError):
    """Two lockfile entries share a name."""


class NoAdvisoryData(LockAuditError):
    """Offline mode requested but no cached advisories exist."""


class NetworkFetchFailed(LockAuditError):
    """Advisory fetch failed; callers fall back to the cache when possible."""


class MalformedPolicyFile(LockAuditError):
    """Policy, license-policy or ignore file cannot be parsed into rules."""


class IntegrityUnverifiable(LockAuditError):
    """Dependency content is not present locally, so its checksum cannot be recomputed."""


class UnknownFormat(LockAuditError):
    """Unsupported output format selector."""


class InvalidLicenseExpression(ValueError):
    """Raised by the SPDX parser; the analyzer turns it into validity=invalid."""

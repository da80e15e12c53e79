from datetime import datetime
from urllib.parse import quote
from urllib.parse import urlparse

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator

from lockaudit.core.semver import SemVer

FORGE_PURL_TYPES = {
    'github': 'github',
    'gitlab': 'gitlab',
    'bitbucket': 'bitbucket',
    'codeberg': 'codeberg',
}


class Dependency(BaseModel):
    """One locked package."""
    name: str
    version: str
    source: str
    source_kind: str = 'git'
    license: str | None = None
    checksum: str | None = None
    dev: bool = False
    dependencies: tuple[str, ...] = ()

    model_config = ConfigDict(frozen=True)

    @field_validator('version')
    @classmethod
    def validate_version(cls, v: str) -> str:
        SemVer.parse(v)
        return v

    @property
    def semver(self) -> SemVer:
        return SemVer.parse(self.version)

    @property
    def is_path(self) -> bool:
        return self.source_kind == 'path'

    @property
    def host(self) -> str | None:
        if self.is_path:
            return None
        host = urlparse(self.source).hostname
        return host.lower() if host else None

    @property
    def owner_repo(self) -> tuple[str | None, str | None]:
        if self.is_path:
            return None, None
        path = urlparse(self.source).path.lstrip('/')
        if path.endswith('.git'):
            path = path[:-4]
        parts = path.split('/')
        if len(parts) >= 2 and parts[0] and parts[1]:
            return parts[0], parts[1]
        return None, None

    @property
    def owner(self) -> str | None:
        return self.owner_repo[0]

    @property
    def purl(self) -> str | None:
        """Package URL, or None for path dependencies."""
        if self.is_path:
            return None
        owner, repo = self.owner_repo
        host = self.host or ''
        if owner and repo:
            for marker, purl_type in FORGE_PURL_TYPES.items():
                if marker in host:
                    return f'pkg:{purl_type}/{owner}/{repo}@{self.version}'
        return (
            f'pkg:generic/{quote(self.name)}@{self.version}'
            f'?download_url={quote(self.source, safe="")}'
        )

    def __str__(self) -> str:
        return f'{self.name}@{self.version}'


class LockSnapshot(BaseModel):
    """The full locked graph at one point in time. Immutable once constructed."""
    format_version: str
    timestamp: datetime
    dependencies: tuple[Dependency, ...] = Field(default_factory=tuple)
    origin: str = ''

    model_config = ConfigDict(frozen=True)

    def get(self, name: str) -> Dependency | None:
        for dep in self.dependencies:
            if dep.name == name:
                return dep
        return None

    @property
    def names(self) -> list[str]:
        return [dep.name for dep in self.dependencies]

    def filtered(self, include_dev: bool = True) -> list[Dependency]:
        """Dependencies in declaration order, optionally without development-only ones."""
        return [dep for dep in self.dependencies if include_dev or not dep.dev]

    def content_key(self) -> str:
        """Stable textual identity of the locked set, independent of the timestamp."""
        return '\n'.join(
            f'{dep.name} {dep.version} {dep.source} {dep.checksum or ""}'
            for dep in self.dependencies
        )

"""Semantic version parsing and range matching."""
import re
from dataclasses import dataclass
from functools import total_ordering

SEMVER_RE = re.compile(
    r'^v?(?P<major>0|[1-9]\d*)\.(?P<minor>0|[1-9]\d*)\.(?P<patch>0|[1-9]\d*)'
    r'(?:-(?P<pre>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?'
    r'(?:\+(?P<build>[0-9A-Za-z-]+(?:\.[0-9A-Za-z-]+)*))?$',
)


def _identifier_key(identifier: str) -> tuple[int, int, str]:
    # Numeric identifiers compare as integers and sort below alphanumeric ones
    if identifier.isdigit():
        return (0, int(identifier), '')
    return (1, 0, identifier)


@total_ordering
@dataclass(frozen=True)
class SemVer:
    """
    A validated semantic version.

    Ordering follows SemVer 2.0: a release sorts above any of its
    pre-releases, and pre-release identifiers compare field by field.
    Build metadata is kept but ignored for ordering.
    """
    raw: str
    major: int
    minor: int
    patch: int
    prerelease: tuple[str, ...] = ()
    build: str | None = None

    @classmethod
    def parse(cls, value: str) -> 'SemVer':
        text = str(value).strip()
        match = SEMVER_RE.match(text)
        if not match:
            raise ValueError(f"'{value}' is not a valid semantic version")
        prerelease = tuple(match['pre'].split('.')) if match['pre'] else ()
        for identifier in prerelease:
            if identifier.isdigit() and len(identifier) > 1 and identifier.startswith('0'):
                raise ValueError(f"Leading zero in pre-release identifier of version '{value}'")
        return cls(
            raw=text,
            major=int(match['major']),
            minor=int(match['minor']),
            patch=int(match['patch']),
            prerelease=prerelease,
            build=match['build'],
        )

    @property
    def key(self) -> tuple:
        return (
            self.major,
            self.minor,
            self.patch,
            not self.prerelease,
            tuple(_identifier_key(i) for i in self.prerelease),
        )

    @property
    def core(self) -> str:
        return f'{self.major}.{self.minor}.{self.patch}'

    def __eq__(self, other):
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.key == other.key

    def __lt__(self, other):
        if not isinstance(other, SemVer):
            return NotImplemented
        return self.key < other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __str__(self) -> str:
        return self.raw


def is_semver(value: str) -> bool:
    try:
        SemVer.parse(value)
    except ValueError:
        return False
    return True


def compare(left: str, right: str) -> int:
    a, b = SemVer.parse(left), SemVer.parse(right)
    return (a > b) - (a < b)

import re
from datetime import date
from datetime import datetime
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field
from pydantic import field_validator
from pydantic import model_validator

from lockaudit.core.semver import SemVer
from lockaudit.models.severity import Severity

_BOUND_RE = re.compile(r'^(>=|<=|>|<|==|=)?\s*(\S+)$')


class VersionRange(BaseModel):
    """
    One affected-version range.

    Supported shapes: exact (``exact``), lower bound only (``introduced``),
    upper bound only (``fixed`` or ``last_affected``), and intervals
    combining a lower and an upper bound. A range with only ``fixed`` is
    the "every version before the fix" shorthand.
    """
    exact: str | None = None
    introduced: str | None = None
    introduced_inclusive: bool = True
    fixed: str | None = None
    last_affected: str | None = None

    model_config = ConfigDict(frozen=True)

    @model_validator(mode='after')
    def check_shape(self) -> 'VersionRange':
        bounds = [self.exact, self.introduced, self.fixed, self.last_affected]
        if not any(bounds):
            raise ValueError('version range has no bounds')
        if self.exact and any([self.introduced, self.fixed, self.last_affected]):
            raise ValueError('exact range cannot carry other bounds')
        if self.fixed and self.last_affected:
            raise ValueError('range cannot have both fixed and last_affected')
        for bound in bounds:
            if bound and bound != '0':
                SemVer.parse(bound)
        return self

    @classmethod
    def parse(cls, expression: str) -> 'VersionRange':
        """Parse '1.2.3', '=1.2.3', '>=1.0.0', '<1.0.1', '<=1.2.0' or '>=1.0.0, <2.0.0'."""
        parts = [p for p in re.split(r'[,\s]+(?=[<>=])|,', expression.strip()) if p.strip()]
        if not parts:
            raise ValueError(f"empty version range '{expression}'")
        fields: dict[str, Any] = {}
        for part in parts:
            match = _BOUND_RE.match(part.strip())
            if not match:
                raise ValueError(f"invalid version range '{expression}'")
            op, version = match.group(1) or '=', match.group(2)
            if op in ('=', '=='):
                fields['exact'] = version
            elif op == '>=':
                fields['introduced'] = version
            elif op == '>':
                fields['introduced'] = version
                fields['introduced_inclusive'] = False
            elif op == '<':
                fields['fixed'] = version
            else:
                fields['last_affected'] = version
        return cls(**fields)

    def contains(self, version: SemVer) -> bool:
        if self.exact:
            return version == SemVer.parse(self.exact)
        if self.introduced and self.introduced != '0':
            lower = SemVer.parse(self.introduced)
            if version < lower or (not self.introduced_inclusive and version == lower):
                return False
        if self.fixed and version >= SemVer.parse(self.fixed):
            return False
        if self.last_affected and version > SemVer.parse(self.last_affected):
            return False
        return True

    def __str__(self) -> str:
        if self.exact:
            return f'={self.exact}'
        parts = []
        if self.introduced and self.introduced != '0':
            op = '>=' if self.introduced_inclusive else '>'
            parts.append(f'{op}{self.introduced}')
        if self.fixed:
            parts.append(f'<{self.fixed}')
        if self.last_affected:
            parts.append(f'<={self.last_affected}')
        return ', '.join(parts) or '*'


class Advisory(BaseModel):
    """One known vulnerability record."""
    id: str
    package: str
    ranges: tuple[VersionRange, ...]
    severity: Severity
    summary: str = ''
    fixed_versions: tuple[str, ...] = ()
    aliases: tuple[str, ...] = ()
    url: str | None = None

    model_config = ConfigDict(frozen=True)

    @field_validator('ranges', mode='before')
    @classmethod
    def parse_ranges(cls, v: Any) -> Any:
        if not v:
            raise ValueError('advisory must declare at least one affected range')
        parsed = []
        for item in v:
            if isinstance(item, str):
                parsed.append(VersionRange.parse(item))
            else:
                parsed.append(item)
        return parsed

    @field_validator('severity', mode='before')
    @classmethod
    def parse_severity(cls, v: Any) -> Any:
        if isinstance(v, Severity):
            return v
        return Severity.parse(v)

    def matching_range(self, version: SemVer) -> VersionRange | None:
        for version_range in self.ranges:
            if version_range.contains(version):
                return version_range
        return None


class Finding(BaseModel):
    """A dependency paired with an advisory that affects its locked version."""
    dependency: str
    version: str
    advisory_id: str
    severity: Severity
    summary: str = ''
    matched_range: str
    fixed_versions: tuple[str, ...] = ()
    ignored: bool = False
    ignore_reason: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def sort_key(self) -> tuple:
        # most severe first
        return (-self.severity.rank, self.dependency, self.advisory_id)


class IgnoreEntry(BaseModel):
    id: str
    reason: str = ''
    expires: date | None = None

    model_config = ConfigDict(frozen=True)

    def is_active(self, today: date) -> bool:
        return self.expires is None or self.expires >= today


class StaleIgnoreEntry(BaseModel):
    """Warning record for an ignore entry whose expiry date has passed."""
    id: str
    reason: str = ''
    expired_on: date

    model_config = ConfigDict(frozen=True)

    @property
    def message(self) -> str:
        return f'Ignore entry for {self.id} expired on {self.expired_on.isoformat()}'


class UnverifiedDependency(BaseModel):
    name: str
    reason: str

    model_config = ConfigDict(frozen=True)


class AuditResult(BaseModel):
    """Outcome of one audit run; keeps the full finding set, ignored ones included."""
    findings: tuple[Finding, ...] = ()
    stale_ignores: tuple[StaleIgnoreEntry, ...] = ()
    unverified: tuple[UnverifiedDependency, ...] = ()
    scanned: int = 0
    data_source: str = 'network'
    data_fetched_at: datetime | None = None
    min_severity: Severity = Severity.LOW
    fail_above: Severity = Severity.LOW

    model_config = ConfigDict(frozen=True)

    @property
    def active_findings(self) -> list[Finding]:
        """Non-ignored findings, regardless of display filter."""
        return [f for f in self.findings if not f.ignored]

    @property
    def ignored_findings(self) -> list[Finding]:
        return [f for f in self.findings if f.ignored]

    @property
    def qualifying_findings(self) -> list[Finding]:
        """Non-ignored findings at or above the severity filter."""
        return [f for f in self.active_findings if f.severity >= self.min_severity]

    @property
    def worst_severity(self) -> Severity | None:
        active = self.qualifying_findings
        if not active:
            return None
        return max(f.severity for f in active)

    @property
    def exit_code(self) -> int:
        worst = self.worst_severity
        if worst is not None and worst >= self.fail_above:
            return 1
        return 0

    def severity_counts(self) -> dict[str, int]:
        counts = {str(level): 0 for level in reversed(list(Severity))}
        for finding in self.active_findings:
            counts[str(finding.severity)] += 1
        return counts


class AdvisorySet(BaseModel):
    """Advisories per package name, as stored in the cache for one ecosystem."""
    ecosystem: str
    fetched_at: datetime
    packages: dict[str, list[Advisory]] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    def for_package(self, name: str) -> list[Advisory]:
        return list(self.packages.get(name, []))

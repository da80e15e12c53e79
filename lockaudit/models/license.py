from enum import Enum

from pydantic import BaseModel
from pydantic import ConfigDict


class Validity(str, Enum):
    VALID = 'valid'
    INVALID = 'invalid'
    MISSING = 'missing'

    def __str__(self) -> str:
        return self.value


class LicenseSource(str, Enum):
    """Where the license expression came from."""
    DECLARED = 'declared'
    HEURISTIC = 'heuristic'
    OVERRIDE = 'override'
    NONE = 'none'

    def __str__(self) -> str:
        return self.value


class LicenseCategory(str, Enum):
    PERMISSIVE = 'permissive'
    WEAK_COPYLEFT = 'weak-copyleft'
    STRONG_COPYLEFT = 'strong-copyleft'
    NON_COMMERCIAL = 'non-commercial'
    PUBLIC_DOMAIN = 'public-domain'
    PROPRIETARY = 'proprietary'
    UNKNOWN = 'unknown'

    def __str__(self) -> str:
        return self.value


class Verdict(str, Enum):
    """License policy verdict for one dependency."""
    ALLOWED = 'allowed'
    DENIED = 'denied'
    UNLICENSED = 'unlicensed'
    UNKNOWN = 'unknown'
    OVERRIDDEN = 'overridden'

    def __str__(self) -> str:
        return self.value


class LicenseRecord(BaseModel):
    """License verdict for one dependency; at most one per dependency per scan."""
    dependency: str
    version: str
    expression: str | None = None
    validity: Validity
    source: LicenseSource = LicenseSource.NONE
    identifiers: tuple[str, ...] = ()
    category: LicenseCategory = LicenseCategory.UNKNOWN
    copyleft: bool = False
    note: str | None = None
    license_file: str | None = None
    verdict: Verdict | None = None
    override_reason: str | None = None
    dev: bool = False

    model_config = ConfigDict(frozen=True)


class LicensePolicyConfig(BaseModel):
    allowed: frozenset[str] = frozenset()
    denied: frozenset[str] = frozenset()
    require_license: bool = False
    overrides: dict[str, tuple[str, str | None]] = {}

    model_config = ConfigDict(frozen=True)


class LicenseReport(BaseModel):
    records: tuple[LicenseRecord, ...] = ()
    policy_used: bool = False
    detection_enabled: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def copyleft_notes(self) -> list[str]:
        return [r.note for r in self.records if r.copyleft and r.note]

    def count(self, validity: Validity) -> int:
        return sum(1 for r in self.records if r.validity == validity)

    def verdict_count(self, verdict: Verdict) -> int:
        return sum(1 for r in self.records if r.verdict == verdict)

    @property
    def check_failed(self) -> bool:
        return (
            self.count(Validity.INVALID) > 0
            or self.count(Validity.MISSING) > 0
            or self.verdict_count(Verdict.DENIED) > 0
        )

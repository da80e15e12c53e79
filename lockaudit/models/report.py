from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from lockaudit.models.advisory import AuditResult
from lockaudit.models.change import ChangeEntry
from lockaudit.models.integrity import IntegrityResult
from lockaudit.models.license import LicenseReport
from lockaudit.models.policy import PolicyResult
from lockaudit.models.severity import Status


class Section(str, Enum):
    SBOM = 'sbom'
    AUDIT = 'audit'
    LICENSES = 'licenses'
    POLICY = 'policy'
    INTEGRITY = 'integrity'
    CHANGELOG = 'changelog'

    def __str__(self) -> str:
        return self.value

    @classmethod
    def select(cls, names: list[str] | None) -> list['Section']:
        """Resolve a section selection; 'all' or nothing selects every section."""
        if not names or 'all' in names:
            return list(cls)
        return [cls(name.strip()) for name in names]


class Attestation(BaseModel):
    reviewer: str
    reviewed_at: datetime
    notes: str | None = None

    model_config = ConfigDict(frozen=True)


class ProjectInfo(BaseModel):
    name: str
    lockfile: str
    snapshot_timestamp: datetime
    format_version: str

    model_config = ConfigDict(frozen=True)


class Summary(BaseModel):
    total_dependencies: int
    dev_dependencies: int
    vulnerabilities: dict[str, int]
    license_status: str
    policy_status: str
    integrity_status: str
    overall_status: Status

    model_config = ConfigDict(frozen=True)


class ReportSections(BaseModel):
    """Copies of section results; valid after the snapshot or cache is discarded."""
    sbom: dict[str, Any] | None = None
    audit: AuditResult | None = None
    licenses: LicenseReport | None = None
    policy: PolicyResult | None = None
    integrity: IntegrityResult | None = None
    changelog: tuple[ChangeEntry, ...] | None = None

    model_config = ConfigDict(frozen=True)


class ComplianceReport(BaseModel):
    version: str = '1.0'
    generator: str
    generated_at: datetime
    project: ProjectInfo
    requested_sections: tuple[Section, ...]
    sections: ReportSections
    unavailable: dict[str, str] = Field(default_factory=dict)
    summary: Summary
    attestation: Attestation | None = None
    signature_ref: str | None = None

    model_config = ConfigDict(frozen=True)

    @property
    def status(self) -> Status:
        return self.summary.overall_status

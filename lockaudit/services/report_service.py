"""Report Aggregator: composes section results into a ComplianceReport."""
from collections.abc import Callable
from datetime import datetime
from datetime import timezone
from typing import Any

import structlog

from lockaudit.__version__ import __version__
from lockaudit.core.errors import IntegrityUnverifiable
from lockaudit.core.errors import NetworkFetchFailed
from lockaudit.core.errors import NoAdvisoryData
from lockaudit.core.storage import SnapshotHistory
from lockaudit.models.advisory import AuditResult
from lockaudit.models.advisory import IgnoreEntry
from lockaudit.models.integrity import IntegrityResult
from lockaudit.models.license import LicensePolicyConfig
from lockaudit.models.license import LicenseReport
from lockaudit.models.license import Validity
from lockaudit.models.lock import LockSnapshot
from lockaudit.models.policy import PolicyResult
from lockaudit.models.policy import PolicyRule
from lockaudit.models.report import Attestation
from lockaudit.models.report import ComplianceReport
from lockaudit.models.report import ProjectInfo
from lockaudit.models.report import ReportSections
from lockaudit.models.report import Section
from lockaudit.models.report import Summary
from lockaudit.models.severity import Action
from lockaudit.models.severity import Severity
from lockaudit.models.severity import Status
from lockaudit.services.audit_service import AuditService
from lockaudit.services.diff_service import history_changes
from lockaudit.services.integrity_service import IntegrityVerifier
from lockaudit.services.license_service import LicenseAnalyzer
from lockaudit.services.policy_service import PolicyEvaluator
from lockaudit.services.sbom_service import SbomBuilder
from lockaudit.services.sbom_service import SbomFormat

logger = structlog.get_logger('report_service')

# Conditions that make a section unavailable rather than aborting the report
SECTION_FAILURES = (NoAdvisoryData, NetworkFetchFailed, IntegrityUnverifiable)


# --- Status derivation (pure) ---

def audit_status(audit: AuditResult | None) -> Status:
    status = Status.PASS
    if audit is None:
        return status
    for finding in audit.active_findings:
        if finding.severity >= Severity.HIGH:
            return Status.FAIL
        status = Status.ACTION_REQUIRED
    if audit.stale_ignores:
        status = Status.ACTION_REQUIRED
    return status


def license_status(licenses: LicenseReport | None) -> Status:
    if licenses is None:
        return Status.PASS
    if licenses.count(Validity.INVALID):
        return Status.FAIL
    if licenses.count(Validity.MISSING):
        return Status.ACTION_REQUIRED
    return Status.PASS


def policy_status(policy: PolicyResult | None) -> Status:
    if policy is None:
        return Status.PASS
    if policy.count(Action.FAIL):
        return Status.FAIL
    if policy.count(Action.WARN):
        return Status.ACTION_REQUIRED
    return Status.PASS


def integrity_status(integrity: IntegrityResult | None) -> Status:
    if integrity is not None and integrity.violations:
        return Status.FAIL
    return Status.PASS


def derive_status(sections: ReportSections) -> Status:
    """Overall status: the maximum of the per-section statuses. Attestation and signature play no part."""
    return max(
        audit_status(sections.audit),
        license_status(sections.licenses),
        policy_status(sections.policy),
        integrity_status(sections.integrity),
    )


def _section_label(
    section: Section,
    requested: list[Section],
    unavailable: dict[str, str],
    status: Status,
) -> str:
    if section not in requested:
        return 'not_requested'
    if str(section) in unavailable:
        return 'unavailable'
    return str(status)


def build_summary(
    snapshot: LockSnapshot,
    sections: ReportSections,
    requested: list[Section],
    unavailable: dict[str, str],
) -> Summary:
    counts = {str(level): 0 for level in reversed(list(Severity))}
    if sections.audit is not None:
        counts = sections.audit.severity_counts()

    policy_label = _section_label(Section.POLICY, requested, unavailable, policy_status(sections.policy))
    if sections.policy is not None and not sections.policy.defined:
        policy_label = 'no_policy'

    return Summary(
        total_dependencies=len(snapshot.dependencies),
        dev_dependencies=sum(1 for d in snapshot.dependencies if d.dev),
        vulnerabilities=counts,
        license_status=_section_label(Section.LICENSES, requested, unavailable, license_status(sections.licenses)),
        policy_status=policy_label,
        integrity_status=_section_label(
            Section.INTEGRITY, requested, unavailable, integrity_status(sections.integrity),
        ),
        overall_status=derive_status(sections),
    )


# --- Aggregation ---

class ComplianceService:
    """Runs the requested components and assembles their results."""

    def __init__(
        self,
        audit_service: AuditService,
        license_analyzer: LicenseAnalyzer,
        integrity_verifier: IntegrityVerifier,
        policy_evaluator: PolicyEvaluator,
        history: SnapshotHistory,
        project_name: str,
        clock: Callable[[], datetime] | None = None,
    ):
        self.audit_service = audit_service
        self.license_analyzer = license_analyzer
        self.integrity_verifier = integrity_verifier
        self.policy_evaluator = policy_evaluator
        self.history = history
        self.project_name = project_name
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def _collect(self, section: Section, unavailable: dict[str, str], collect: Callable[[], Any]) -> Any:
        try:
            return collect()
        except SECTION_FAILURES as e:
            unavailable[str(section)] = f'{type(e).__name__}: {e}'
            logger.warning('Section unavailable', section=str(section), error=str(e))
            return None

    def build(
        self,
        snapshot: LockSnapshot,
        sections: list[Section],
        *,
        offline: bool = False,
        ignores: list[IgnoreEntry] | None = None,
        policy_rules: list[PolicyRule] | None = None,
        policy_source: str | None = None,
        license_policy: LicensePolicyConfig | None = None,
        detect_licenses: bool = False,
        since: datetime | None = None,
        reviewer: str | None = None,
        notes: str | None = None,
    ) -> ComplianceReport:
        """
        Raises only for structural input errors. Missing advisory data or
        missing local content marks the section unavailable instead.
        """
        generated_at = self.clock()
        unavailable: dict[str, str] = {}
        parts: dict[str, Any] = {}

        if Section.SBOM in sections:
            builder = SbomBuilder(self.project_name)
            parts['sbom'] = builder.build(snapshot, SbomFormat.CYCLONEDX, include_dev=True)

        if Section.AUDIT in sections:
            parts['audit'] = self._collect(
                Section.AUDIT, unavailable,
                lambda: self.audit_service.audit(snapshot, offline=offline, ignores=ignores),
            )

        if Section.LICENSES in sections:
            parts['licenses'] = self.license_analyzer.analyze(
                snapshot, detect=detect_licenses, include_dev=True, policy=license_policy,
            )

        if Section.POLICY in sections:
            audit = parts.get('audit')
            licenses = parts.get('licenses')
            parts['policy'] = self.policy_evaluator.check(
                policy_rules,
                dependencies=snapshot.dependencies,
                findings=audit.active_findings if audit else (),
                licenses=licenses.records if licenses else (),
                source=policy_source,
            )

        if Section.INTEGRITY in sections:
            parts['integrity'] = self._collect(
                Section.INTEGRITY, unavailable,
                lambda: self.integrity_verifier.verify(snapshot),
            )

        self.history.record(snapshot)
        if Section.CHANGELOG in sections:
            parts['changelog'] = tuple(history_changes(self.history, since=since))

        report_sections = ReportSections(**parts)
        attestation = None
        if reviewer:
            attestation = Attestation(reviewer=reviewer, reviewed_at=generated_at, notes=notes)

        report = ComplianceReport(
            generator=f'lockaudit {__version__}',
            generated_at=generated_at,
            project=ProjectInfo(
                name=self.project_name,
                lockfile=snapshot.origin,
                snapshot_timestamp=snapshot.timestamp,
                format_version=snapshot.format_version,
            ),
            requested_sections=tuple(sections),
            sections=report_sections,
            unavailable=unavailable,
            summary=build_summary(snapshot, report_sections, sections, unavailable),
            attestation=attestation,
        )
        logger.info(
            'Compliance report built',
            status=str(report.status),
            sections=[str(s) for s in sections],
            unavailable=sorted(unavailable),
        )
        return report


def with_signature(report: ComplianceReport, signature_ref: str | None) -> ComplianceReport:
    """Attach a detached signature reference; status is unaffected."""
    return report.model_copy(update={'signature_ref': signature_ref})


def report_exit_code(report: ComplianceReport) -> int:
    return 0 if report.status == Status.PASS else 1


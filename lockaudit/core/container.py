"""Dependency Injection Container."""
from typing import Optional

from lockaudit.core.client import get_http_client
from lockaudit.core.config import get_config
from lockaudit.core.config import LockAuditConfig
from lockaudit.core.storage import SnapshotHistory
from lockaudit.services.advisory_cache import AdvisoryCache
from lockaudit.services.advisory_source import OsvAdvisorySource
from lockaudit.services.audit_service import AuditService
from lockaudit.services.integrity_service import IntegrityVerifier
from lockaudit.services.license_service import LicenseAnalyzer
from lockaudit.services.policy_service import PolicyEvaluator
from lockaudit.services.report_service import ComplianceService
from lockaudit.services.signer import GpgSigner
from lockaudit.services.signer import Signer


class Container:
    """Simple DI Container to manage service lifecycles."""

    _instance: Optional['Container'] = None

    def __init__(self, config: LockAuditConfig | None = None) -> None:
        self.config: LockAuditConfig = config or get_config()
        self._advisory_cache: AdvisoryCache | None = None
        self._audit_service: AuditService | None = None
        self._history: SnapshotHistory | None = None

    @classmethod
    def get_instance(cls) -> 'Container':
        if cls._instance is None:
            cls._instance = Container()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    @property
    def project_name(self) -> str:
        return self.config.paths.project_dir.resolve().name or 'project'

    # -- Shared state --

    def get_advisory_cache(self) -> AdvisoryCache:
        """The process-wide advisory cache; loaded lazily from the state directory."""
        if not self._advisory_cache:
            self._advisory_cache = AdvisoryCache(self.config.paths.cache_dir)
        return self._advisory_cache

    def get_history(self) -> SnapshotHistory:
        if not self._history:
            self._history = SnapshotHistory(self.config.paths.history_file)
        return self._history

    # -- Services --

    def create_advisory_source(self) -> OsvAdvisorySource:
        """Factory: the network session is only opened when an online lookup runs."""
        advisories = self.config.advisories
        session = get_http_client(
            cache_name=self.config.paths.http_cache_file,
            expire_after=advisories.http_cache_ttl,
            pool_size=advisories.workers,
        )
        return OsvAdvisorySource(
            session,
            ecosystem=advisories.ecosystem,
            base_url=advisories.api_base_url,
            timeout=advisories.request_timeout,
        )

    def get_audit_service(self) -> AuditService:
        if not self._audit_service:
            advisories = self.config.advisories
            self._audit_service = AuditService(
                cache=self.get_advisory_cache(),
                network_source_factory=self.create_advisory_source,
                ecosystem=advisories.ecosystem,
                workers=advisories.workers,
                timeout=advisories.timeout,
            )
        return self._audit_service

    def get_license_analyzer(self) -> LicenseAnalyzer:
        paths = self.config.paths
        return LicenseAnalyzer(paths.install_dir, paths.project_dir)

    def get_integrity_verifier(self) -> IntegrityVerifier:
        paths = self.config.paths
        return IntegrityVerifier(paths.install_dir, paths.project_dir)

    def get_policy_evaluator(self) -> PolicyEvaluator:
        return PolicyEvaluator()

    def get_signer(self) -> Signer:
        return GpgSigner()

    def create_compliance_service(self) -> ComplianceService:
        return ComplianceService(
            audit_service=self.get_audit_service(),
            license_analyzer=self.get_license_analyzer(),
            integrity_verifier=self.get_integrity_verifier(),
            policy_evaluator=self.get_policy_evaluator(),
            history=self.get_history(),
            project_name=self.project_name,
        )

# Global Accessor


def get_container() -> Container:
    return Container.get_instance()

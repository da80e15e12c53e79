import concurrent.futures
from collections.abc import Callable
from collections.abc import Iterable
from datetime import date
from datetime import datetime
from datetime import timezone

import structlog

from lockaudit.core.errors import NetworkFetchFailed
from lockaudit.core.stats import LookupStats
from lockaudit.models.advisory import Advisory
from lockaudit.models.advisory import AdvisorySet
from lockaudit.models.advisory import AuditResult
from lockaudit.models.advisory import Finding
from lockaudit.models.advisory import IgnoreEntry
from lockaudit.models.advisory import StaleIgnoreEntry
from lockaudit.models.advisory import UnverifiedDependency
from lockaudit.models.lock import Dependency
from lockaudit.models.lock import LockSnapshot
from lockaudit.models.severity import Severity
from lockaudit.services.advisory_cache import AdvisoryCache
from lockaudit.services.advisory_source import AdvisorySource
from lockaudit.services.advisory_source import CachedAdvisorySource
from lockaudit.services.ignore_service import split_ignores

logger = structlog.get_logger('audit_service')


def match_advisories(
    dependencies: Iterable[Dependency],
    advisories: dict[str, list[Advisory]],
) -> list[Finding]:
    """
    Full finding set: one Finding per (dependency, advisory) whose package
    name equals the dependency name and whose ranges contain its version.
    """
    findings = []
    for dep in dependencies:
        version = dep.semver
        for advisory in advisories.get(dep.name, []):
            if advisory.package != dep.name:
                continue
            matched = advisory.matching_range(version)
            if matched is None:
                continue
            findings.append(
                Finding(
                    dependency=dep.name,
                    version=dep.version,
                    advisory_id=advisory.id,
                    severity=advisory.severity,
                    summary=advisory.summary,
                    matched_range=f'{dep.version} in {matched}',
                    fixed_versions=advisory.fixed_versions,
                ),
            )
    return findings


def apply_ignores(
    findings: list[Finding],
    entries: list[IgnoreEntry],
    today: date,
) -> tuple[list[Finding], list[StaleIgnoreEntry]]:
    """
    Mark findings covered by an active ignore entry; expired entries never
    suppress and come back as stale warnings. The result is sorted.
    """
    active, expired = split_ignores(entries, today)
    marked = []
    for finding in findings:
        entry = active.get(finding.advisory_id)
        if entry is not None:
            finding = finding.model_copy(update={'ignored': True, 'ignore_reason': entry.reason or None})
        marked.append(finding)

    stale = [
        StaleIgnoreEntry(id=entry.id, reason=entry.reason, expired_on=entry.expires)
        for entry in expired
        if entry.id not in active
    ]
    for warning in stale:
        logger.warning(warning.message, advisory=warning.id)
    marked.sort(key=lambda f: f.sort_key)
    return marked, stale


class AuditService:
    """
    Advisory Matcher.

    Lookups run on a bounded thread pool against the network source; the
    advisory cache serves offline runs and covers failed network lookups.
    """

    def __init__(
        self,
        cache: AdvisoryCache,
        network_source_factory: Callable[[], AdvisorySource],
        ecosystem: str,
        workers: int = 8,
        timeout: float = 60.0,
    ):
        self.cache = cache
        self.network_source_factory = network_source_factory
        self.ecosystem = ecosystem
        self.workers = workers
        self.timeout = timeout

    def _lookup(
        self,
        source: AdvisorySource,
        dependencies: list[Dependency],
        stats: LookupStats,
        on_progress: Callable[[], None] | None = None,
    ) -> tuple[dict[str, list[Advisory]], list[Dependency], list[UnverifiedDependency]]:
        """Returns (advisories by name, dependencies whose fetch failed, timed-out dependencies)."""
        results: dict[str, list[Advisory]] = {}
        failed: list[Dependency] = []
        timed_out: list[UnverifiedDependency] = []
        if not dependencies:
            return results, failed, timed_out

        executor = concurrent.futures.ThreadPoolExecutor(max_workers=self.workers)
        try:
            futures = {executor.submit(source.fetch, dep): dep for dep in dependencies}
            done, not_done = concurrent.futures.wait(futures, timeout=self.timeout)
            for future in done:
                dep = futures[future]
                try:
                    advisories = future.result()
                except NetworkFetchFailed as e:
                    logger.warning('Advisory lookup failed', package=dep.name, error=e.message)
                    stats.inc_failed()
                    failed.append(dep)
                    continue
                results[dep.name] = advisories
                stats.inc_fetched(len(advisories))
                if on_progress:
                    on_progress()
            for future in not_done:
                future.cancel()
                dep = futures[future]
                timed_out.append(UnverifiedDependency(name=dep.name, reason='timeout'))
            stats.inc_timed_out(len(not_done))
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        timed_out.sort(key=lambda u: u.name)
        return results, failed, timed_out

    def _fetch_online(
        self,
        dependencies: list[Dependency],
        stats: LookupStats,
        force_refresh: bool,
        on_progress: Callable[[], None] | None,
    ) -> tuple[dict[str, list[Advisory]], list[Dependency], list[UnverifiedDependency]]:
        source = self.network_source_factory()
        if force_refresh and hasattr(source, 'force_refresh'):
            source.force_refresh = True
        return self._lookup(source, dependencies, stats, on_progress)

    def audit(
        self,
        snapshot: LockSnapshot,
        *,
        offline: bool = False,
        force_refresh: bool = False,
        min_severity: Severity = Severity.LOW,
        fail_above: Severity = Severity.LOW,
        ignores: list[IgnoreEntry] | None = None,
        include_dev: bool = True,
        today: date | None = None,
        on_progress: Callable[[], None] | None = None,
    ) -> AuditResult:
        """
        Raises:
            NoAdvisoryData: offline and nothing cached for the ecosystem
            NetworkFetchFailed: online lookups failed and no cache to fall back on
        """
        today = today or datetime.now(timezone.utc).date()
        dependencies = snapshot.filtered(include_dev)
        stats = LookupStats(total=len(dependencies))
        unverified: list[UnverifiedDependency] = []

        if offline:
            source = CachedAdvisorySource(self.cache, self.ecosystem)
            advisories, _, _ = self._lookup(source, dependencies, stats, on_progress)
            data_source = 'cache'
            fetched_at = source.advisory_set.fetched_at
        elif force_refresh:
            def fetch() -> AdvisorySet:
                found, failed, timed_out = self._fetch_online(dependencies, stats, True, on_progress)
                if failed:
                    raise NetworkFetchFailed(
                        f'advisory refresh failed for {len(failed)} dependencies '
                        f'(first: {failed[0].name}); previous cache kept',
                    )
                unverified.extend(timed_out)
                previous = self.cache.get(self.ecosystem)
                if previous is not None:
                    # timed-out packages keep their last known advisories
                    for entry in timed_out:
                        if entry.name in previous.packages:
                            found[entry.name] = previous.for_package(entry.name)
                return AdvisorySet(
                    ecosystem=self.ecosystem,
                    fetched_at=datetime.now(timezone.utc),
                    packages=found,
                )

            refreshed = self.cache.refresh(self.ecosystem, fetch)
            advisories = refreshed.packages
            data_source = 'network'
            fetched_at = refreshed.fetched_at
        else:
            advisories, failed, timed_out = self._fetch_online(dependencies, stats, False, on_progress)
            unverified.extend(timed_out)
            fetched_at = datetime.now(timezone.utc)
            data_source = 'network'
            cached = self.cache.get(self.ecosystem)
            if failed:
                if cached is None:
                    raise NetworkFetchFailed(
                        f'advisory lookup failed for {len(failed)} dependencies '
                        f'(first: {failed[0].name}) and no cache exists for ecosystem '
                        f"'{self.ecosystem}'",
                    )
                logger.warning(
                    'Falling back to cached advisories',
                    packages=[d.name for d in failed],
                    fetched_at=cached.fetched_at.isoformat(),
                )
                for dep in failed:
                    advisories[dep.name] = cached.for_package(dep.name)
                data_source = 'network+cache'
            elif cached is None:
                self.cache.store(
                    AdvisorySet(ecosystem=self.ecosystem, fetched_at=fetched_at, packages=advisories),
                )

        findings = match_advisories(dependencies, advisories)
        findings, stale = apply_ignores(findings, ignores or [], today)

        logger.info(
            'Audit complete',
            findings=len(findings),
            ignored=sum(1 for f in findings if f.ignored),
            unverified=len(unverified),
            source=data_source,
            **stats.summary(),
        )
        return AuditResult(
            findings=tuple(findings),
            stale_ignores=tuple(stale),
            unverified=tuple(unverified),
            scanned=len(dependencies),
            data_source=data_source,
            data_fetched_at=fetched_at,
            min_severity=min_severity,
            fail_above=fail_above,
        )

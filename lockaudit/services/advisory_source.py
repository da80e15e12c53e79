"""Advisory sources: the OSV network API and the local advisory cache."""
from abc import ABC
from abc import abstractmethod
from typing import Any

import requests
import structlog
from pydantic import ValidationError

from lockaudit.core.errors import NetworkFetchFailed
from lockaudit.core.errors import NoAdvisoryData
from lockaudit.models.advisory import Advisory
from lockaudit.models.advisory import VersionRange
from lockaudit.models.lock import Dependency
from lockaudit.services.advisory_cache import AdvisoryCache

logger = structlog.get_logger('advisory_source')


class AdvisorySource(ABC):
    """Produces the advisories known for one dependency."""

    name: str = 'abstract'

    def __init__(self, ecosystem: str):
        self.ecosystem = ecosystem

    @abstractmethod
    def fetch(self, dependency: Dependency) -> list[Advisory]:
        ...


class CachedAdvisorySource(AdvisorySource):
    """Offline source backed by the advisory cache; never touches the network."""

    name = 'cache'

    def __init__(self, cache: AdvisoryCache, ecosystem: str):
        super().__init__(ecosystem)
        self.cache = cache
        self.advisory_set = cache.get(ecosystem)
        if self.advisory_set is None:
            raise NoAdvisoryData(
                f"no cached advisories for ecosystem '{ecosystem}'; run without --offline first",
                path=cache.cache_dir,
            )

    def fetch(self, dependency: Dependency) -> list[Advisory]:
        return self.advisory_set.for_package(dependency.name)


def _osv_ranges(affected: dict[str, Any]) -> list[VersionRange]:
    ranges = []
    for osv_range in affected.get('ranges', []):
        if osv_range.get('type') == 'GIT':
            continue
        bounds: dict[str, str] = {}
        for event in osv_range.get('events', []):
            if 'introduced' in event:
                if bounds:
                    ranges.append(bounds)
                bounds = {'introduced': event['introduced']}
            elif 'fixed' in event:
                bounds['fixed'] = event['fixed']
                ranges.append(bounds)
                bounds = {}
            elif 'last_affected' in event:
                bounds['last_affected'] = event['last_affected']
                ranges.append(bounds)
                bounds = {}
        if bounds:
            ranges.append(bounds)
    for version in affected.get('versions', []):
        ranges.append({'exact': version})

    parsed = []
    for bounds in ranges:
        try:
            parsed.append(VersionRange(**bounds))
        except ValidationError:
            logger.debug('Skipping non-semantic OSV range', bounds=bounds)
    return parsed


def _osv_severity(vuln: dict[str, Any], affected: dict[str, Any]) -> str | None:
    for holder in (vuln.get('database_specific'), affected.get('ecosystem_specific'), affected.get('database_specific')):
        if isinstance(holder, dict) and isinstance(holder.get('severity'), str):
            return holder['severity']
    return None


def _affects_package(affected: dict[str, Any], package: str, purl: str | None, ecosystem: str | None) -> bool:
    """True when an OSV ``affected`` entry is about the queried package; entries naming no package are kept."""
    target = affected.get('package')
    if not isinstance(target, dict) or not target:
        return True
    if purl and target.get('purl'):
        return target['purl'].split('@', 1)[0].lower() == purl.split('@', 1)[0].lower()
    if str(target.get('name', '')).lower() != package.lower():
        return False
    if ecosystem and target.get('ecosystem'):
        return str(target['ecosystem']).lower() == ecosystem.lower()
    return True


def advisory_from_osv(
    vuln: dict[str, Any],
    package: str,
    purl: str | None = None,
    ecosystem: str | None = None,
) -> Advisory | None:
    """
    Convert one OSV vulnerability into an Advisory for ``package``; None if no usable range.

    Multi-package records only contribute the ``affected`` entries that
    match the package by purl, or by name and ecosystem.
    """
    ranges: list[VersionRange] = []
    severity = None
    for affected in vuln.get('affected', []):
        if not _affects_package(affected, package, purl, ecosystem):
            continue
        ranges.extend(_osv_ranges(affected))
        severity = severity or _osv_severity(vuln, affected)
    if not ranges:
        return None
    fixed = sorted({r.fixed for r in ranges if r.fixed})
    references = vuln.get('references') or []
    return Advisory(
        id=vuln['id'],
        package=package,
        ranges=tuple(ranges),
        severity=severity,
        summary=vuln.get('summary') or (vuln.get('details') or '')[:200],
        fixed_versions=tuple(fixed),
        aliases=tuple(vuln.get('aliases') or ()),
        url=references[0].get('url') if references else None,
    )


class OsvAdvisorySource(AdvisorySource):
    """Online source querying the OSV v1 API."""

    name = 'network'

    def __init__(self, session: requests.Session, ecosystem: str, base_url: str, timeout: int = 15):
        super().__init__(ecosystem)
        self.session = session
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.force_refresh = False

    def _query_payload(self, dependency: Dependency) -> dict[str, Any]:
        purl = dependency.purl
        if purl and not purl.startswith('pkg:generic/'):
            # versionless purl: matching against the locked version happens locally
            return {'package': {'purl': purl.split('@', 1)[0]}}
        return {'package': {'name': dependency.name, 'ecosystem': self.ecosystem}}

    def fetch(self, dependency: Dependency) -> list[Advisory]:
        payload = self._query_payload(dependency)
        vulns: list[dict[str, Any]] = []
        while True:
            try:
                kwargs = {'force_refresh': True} if self.force_refresh else {}
                response = self.session.post(
                    f'{self.base_url}/query', json=payload, timeout=self.timeout, **kwargs,
                )
            except requests.RequestException as e:
                raise NetworkFetchFailed(f'advisory query for {dependency.name} failed: {e}')
            if response.status_code != 200:
                raise NetworkFetchFailed(
                    f'advisory query for {dependency.name} returned HTTP {response.status_code}',
                )
            body = response.json()
            vulns.extend(body.get('vulns') or [])
            token = body.get('next_page_token')
            if not token:
                break
            payload = {**payload, 'page_token': token}

        advisories = []
        for vuln in vulns:
            advisory = advisory_from_osv(vuln, dependency.name, purl=dependency.purl, ecosystem=self.ecosystem)
            if advisory is not None:
                advisories.append(advisory)
        return advisories

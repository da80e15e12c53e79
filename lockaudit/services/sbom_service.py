"""SPDX 2.3 and CycloneDX 1.5 inventory documents for a lock snapshot."""
import json
import re
import uuid
from datetime import timezone
from enum import Enum
from typing import Any

import structlog

from lockaudit.__version__ import __version__
from lockaudit.core.errors import InvalidLicenseExpression
from lockaudit.models.lock import Dependency
from lockaudit.models.lock import LockSnapshot
from lockaudit.services import spdx

logger = structlog.get_logger('sbom_service')

TOOL_NAME = 'lockaudit'


class SbomFormat(str, Enum):
    SPDX = 'spdx'
    CYCLONEDX = 'cyclonedx'

    def __str__(self) -> str:
        return self.value


def _sha256(dep: Dependency) -> str | None:
    if dep.checksum and dep.checksum.startswith('sha256:'):
        return dep.checksum.split(':', 1)[1]
    return None


def _valid_license(dep: Dependency) -> spdx.Expression | None:
    if not dep.license:
        return None
    try:
        return spdx.validate(dep.license)
    except InvalidLicenseExpression:
        return None


def dependency_graph(dependencies: list[Dependency]) -> tuple[dict[str, list[str]], list[str]]:
    """(edges restricted to the given set, root names) in declaration order."""
    names = {dep.name for dep in dependencies}
    edges = {dep.name: [d for d in dep.dependencies if d in names and d != dep.name] for dep in dependencies}
    depended_on = {d for targets in edges.values() for d in targets}
    roots = [dep.name for dep in dependencies if dep.name not in depended_on]
    return edges, roots


class SbomBuilder:
    """Builds deterministic documents: identifiers and timestamps derive from the snapshot."""

    def __init__(self, project_name: str, project_version: str | None = None):
        self.project_name = project_name
        self.project_version = project_version

    def _document_uuid(self, snapshot: LockSnapshot, kind: SbomFormat) -> uuid.UUID:
        seed = f'{kind}\n{self.project_name}\n{snapshot.content_key()}'
        return uuid.uuid5(uuid.NAMESPACE_URL, seed)

    @staticmethod
    def _timestamp(snapshot: LockSnapshot) -> str:
        return snapshot.timestamp.astimezone(timezone.utc).strftime('%Y-%m-%dT%H:%M:%SZ')

    def build(self, snapshot: LockSnapshot, fmt: SbomFormat, include_dev: bool = False) -> dict[str, Any]:
        dependencies = snapshot.filtered(include_dev)
        if fmt == SbomFormat.SPDX:
            document = self.build_spdx(snapshot, dependencies)
        else:
            document = self.build_cyclonedx(snapshot, dependencies)
        logger.debug('Built SBOM', format=str(fmt), components=len(dependencies))
        return document

    # --- SPDX ---

    @staticmethod
    def spdx_id(name: str) -> str:
        return 'SPDXRef-Package-' + re.sub(r'[^A-Za-z0-9.-]', '-', name)

    def _spdx_package(self, dep: Dependency) -> dict[str, Any]:
        expr = _valid_license(dep)
        license_value = dep.license if expr is not None else 'NOASSERTION'
        package: dict[str, Any] = {
            'SPDXID': self.spdx_id(dep.name),
            'name': dep.name,
            'versionInfo': dep.version,
            'downloadLocation': 'NOASSERTION' if dep.is_path else dep.source,
            'filesAnalyzed': False,
            'supplier': f'Organization: {dep.owner}' if dep.owner else 'NOASSERTION',
            'licenseConcluded': license_value,
            'licenseDeclared': license_value,
            'copyrightText': 'NOASSERTION',
        }
        digest = _sha256(dep)
        if digest:
            package['checksums'] = [{'algorithm': 'SHA256', 'checksumValue': digest}]
        if dep.purl:
            package['externalRefs'] = [{
                'referenceCategory': 'PACKAGE-MANAGER',
                'referenceType': 'purl',
                'referenceLocator': dep.purl,
            }]
        return package

    def build_spdx(self, snapshot: LockSnapshot, dependencies: list[Dependency]) -> dict[str, Any]:
        root_id = 'SPDXRef-Package-root'
        edges, roots = dependency_graph(dependencies)

        packages = [{
            'SPDXID': root_id,
            'name': self.project_name,
            'versionInfo': self.project_version or 'NOASSERTION',
            'downloadLocation': 'NOASSERTION',
            'filesAnalyzed': False,
            'licenseConcluded': 'NOASSERTION',
            'licenseDeclared': 'NOASSERTION',
            'copyrightText': 'NOASSERTION',
        }]
        packages.extend(self._spdx_package(dep) for dep in dependencies)

        relationships = [{
            'spdxElementId': 'SPDXRef-DOCUMENT',
            'relationshipType': 'DESCRIBES',
            'relatedSpdxElement': root_id,
        }]
        for name in roots:
            relationships.append({
                'spdxElementId': root_id,
                'relationshipType': 'DEPENDS_ON',
                'relatedSpdxElement': self.spdx_id(name),
            })
        for dep in dependencies:
            for target in edges[dep.name]:
                relationships.append({
                    'spdxElementId': self.spdx_id(dep.name),
                    'relationshipType': 'DEPENDS_ON',
                    'relatedSpdxElement': self.spdx_id(target),
                })

        doc_uuid = self._document_uuid(snapshot, SbomFormat.SPDX)
        return {
            'spdxVersion': 'SPDX-2.3',
            'dataLicense': 'CC0-1.0',
            'SPDXID': 'SPDXRef-DOCUMENT',
            'name': f'{self.project_name}-sbom',
            'documentNamespace': f'https://spdx.org/spdxdocs/{self.project_name}-{doc_uuid}',
            'creationInfo': {
                'created': self._timestamp(snapshot),
                'creators': [f'Tool: {TOOL_NAME}-{__version__}'],
            },
            'packages': packages,
            'relationships': relationships,
        }

    # --- CycloneDX ---

    @staticmethod
    def bom_ref(dep: Dependency) -> str:
        return dep.purl or f'{dep.name}@{dep.version}'

    def _cyclonedx_licenses(self, dep: Dependency) -> list[dict[str, Any]] | None:
        if not dep.license:
            return None
        expr = _valid_license(dep)
        if expr is None:
            return [{'license': {'name': dep.license}}]
        if isinstance(expr, spdx.SimpleExpression) and not expr.or_later:
            return [{'license': {'id': expr.id}}]
        return [{'expression': dep.license}]

    def _cyclonedx_component(self, dep: Dependency) -> dict[str, Any]:
        component: dict[str, Any] = {
            'type': 'library',
            'bom-ref': self.bom_ref(dep),
            'name': dep.name,
            'version': dep.version,
            'scope': 'optional' if dep.dev else 'required',
        }
        if dep.purl:
            component['purl'] = dep.purl
        licenses = self._cyclonedx_licenses(dep)
        if licenses:
            component['licenses'] = licenses
        digest = _sha256(dep)
        if digest:
            component['hashes'] = [{'alg': 'SHA-256', 'content': digest}]
        if not dep.is_path:
            component['externalReferences'] = [{'type': 'vcs', 'url': dep.source}]
        return component

    def build_cyclonedx(self, snapshot: LockSnapshot, dependencies: list[Dependency]) -> dict[str, Any]:
        edges, roots = dependency_graph(dependencies)
        refs = {dep.name: self.bom_ref(dep) for dep in dependencies}
        root_ref = f'{self.project_name}@{self.project_version or "0.0.0"}'

        graph = [{'ref': root_ref, 'dependsOn': [refs[name] for name in roots]}]
        graph.extend(
            {'ref': refs[dep.name], 'dependsOn': [refs[t] for t in edges[dep.name]]}
            for dep in dependencies
        )
        return {
            'bomFormat': 'CycloneDX',
            'specVersion': '1.5',
            'serialNumber': f'urn:uuid:{self._document_uuid(snapshot, SbomFormat.CYCLONEDX)}',
            'version': 1,
            'metadata': {
                'timestamp': self._timestamp(snapshot),
                'tools': {
                    'components': [{'type': 'application', 'name': TOOL_NAME, 'version': __version__}],
                },
                'component': {
                    'type': 'application',
                    'bom-ref': root_ref,
                    'name': self.project_name,
                    'version': self.project_version or '0.0.0',
                },
            },
            'components': [self._cyclonedx_component(dep) for dep in dependencies],
            'dependencies': graph,
        }


def render_sbom(document: dict[str, Any]) -> str:
    return json.dumps(document, indent=2, ensure_ascii=False) + '\n'

import re
from pathlib import Path

import structlog
import yaml

from lockaudit.core.errors import InvalidLicenseExpression
from lockaudit.core.errors import MalformedPolicyFile
from lockaudit.models.license import LicenseCategory
from lockaudit.models.license import LicensePolicyConfig
from lockaudit.models.license import LicenseRecord
from lockaudit.models.license import LicenseReport
from lockaudit.models.license import LicenseSource
from lockaudit.models.license import Validity
from lockaudit.models.license import Verdict
from lockaudit.models.lock import Dependency
from lockaudit.models.lock import LockSnapshot
from lockaudit.services import spdx
from lockaudit.services.lockfile_service import locate_content
from lockaudit.services.spdx import COPYLEFT_CATEGORIES

logger = structlog.get_logger('license_service')

LICENSE_FILE_NAMES = (
    'LICENSE', 'LICENSE.md', 'LICENSE.txt',
    'LICENCE', 'LICENCE.md', 'LICENCE.txt',
    'LICENSE-MIT', 'LICENSE-APACHE',
    'COPYING', 'COPYING.md', 'COPYING.txt',
)

# More specific families first: LGPL and AGPL texts also mention the GPL.
LICENSE_SIGNATURES = [
    (re.compile(r'MIT License|Permission is hereby granted, free of charge', re.I), 'MIT'),
    (re.compile(r'Apache License.{0,80}Version 2\.0', re.I | re.S), 'Apache-2.0'),
    (re.compile(r'BSD 2-Clause|Redistribution and use.{0,200}two conditions', re.I | re.S), 'BSD-2-Clause'),
    (re.compile(r'BSD 3-Clause|Redistribution and use.{0,200}three conditions', re.I | re.S), 'BSD-3-Clause'),
    (re.compile(r'ISC License', re.I), 'ISC'),
    (re.compile(r'Mozilla Public License.{0,40}2\.0', re.I | re.S), 'MPL-2.0'),
    (re.compile(r'GNU Affero General Public License.{0,80}version 3', re.I | re.S), 'AGPL-3.0-only'),
    (re.compile(r'GNU Lesser General Public License.{0,80}version 3', re.I | re.S), 'LGPL-3.0-only'),
    (re.compile(r'GNU Lesser General Public License.{0,80}version 2\.1', re.I | re.S), 'LGPL-2.1-only'),
    (re.compile(r'GNU General Public License.{0,80}version 3', re.I | re.S), 'GPL-3.0-only'),
    (re.compile(r'GNU General Public License.{0,80}version 2', re.I | re.S), 'GPL-2.0-only'),
    (re.compile(r'The Unlicense|unlicense\.org', re.I), 'Unlicense'),
    (re.compile(r'Creative Commons Zero|CC0 1\.0', re.I), 'CC0-1.0'),
    (re.compile(r'zlib License', re.I), 'Zlib'),
]


def find_license_file(directory: Path) -> Path | None:
    for name in LICENSE_FILE_NAMES:
        candidate = directory / name
        if candidate.is_file():
            return candidate
    return None


def detect_license(content: str) -> str | None:
    for pattern, license_id in LICENSE_SIGNATURES:
        if pattern.search(content):
            return license_id
    return None


def scan_directory(directory: Path) -> tuple[str | None, str | None]:
    """Returns (license file name relative to ``directory``, detected identifier)."""
    license_file = find_license_file(directory)
    if license_file is None:
        return None, None
    content = license_file.read_text(encoding='utf-8', errors='replace')
    return license_file.name, detect_license(content)


def parse_license_policy(text: str, origin: str = '<memory>') -> LicensePolicyConfig:
    try:
        data = yaml.safe_load(text) or {}
    except yaml.YAMLError as e:
        raise MalformedPolicyFile(f'invalid YAML: {e}', path=origin)
    if not isinstance(data, dict) or not isinstance(data.get('policy'), dict):
        raise MalformedPolicyFile("expected a top-level 'policy' mapping", path=origin, field='policy')
    policy = data['policy']

    unknown = set(policy) - {'allowed', 'denied', 'require_license', 'overrides'}
    if unknown:
        raise MalformedPolicyFile(f"unknown key '{sorted(unknown)[0]}'", path=origin, field='policy')

    lists = {}
    for key in ('allowed', 'denied'):
        value = policy.get(key) or []
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            raise MalformedPolicyFile('must be a list of license identifiers', path=origin, field=f'policy.{key}')
        lists[key] = frozenset(value)

    require_license = policy.get('require_license', False)
    if not isinstance(require_license, bool):
        raise MalformedPolicyFile('must be true or false', path=origin, field='policy.require_license')

    overrides = {}
    for name, entry in (policy.get('overrides') or {}).items():
        if not isinstance(entry, dict) or not entry.get('license'):
            raise MalformedPolicyFile(
                'override needs a license', path=origin, field=f'policy.overrides.{name}',
            )
        overrides[str(name)] = (str(entry['license']), entry.get('reason'))

    return LicensePolicyConfig(
        allowed=lists['allowed'],
        denied=lists['denied'],
        require_license=require_license,
        overrides=overrides,
    )


def load_license_policy(path: str | Path | None) -> LicensePolicyConfig | None:
    if path is None:
        return None
    path = Path(path)
    if not path.is_file():
        return None
    return parse_license_policy(path.read_text(encoding='utf-8'), origin=str(path))


def policy_verdict(expression: str | None, policy: LicensePolicyConfig | None) -> Verdict:
    if not expression:
        if policy is not None and policy.require_license:
            return Verdict.DENIED
        return Verdict.UNLICENSED
    if policy is None:
        return Verdict.UNKNOWN
    try:
        expr = spdx.parse(expression)
    except InvalidLicenseExpression:
        if expression in policy.denied:
            return Verdict.DENIED
        if expression in policy.allowed:
            return Verdict.ALLOWED
        return Verdict.UNKNOWN
    if any(license_id in policy.denied for license_id in expr.license_ids()):
        return Verdict.DENIED
    if expr.satisfied_by(set(policy.allowed)):
        return Verdict.ALLOWED
    return Verdict.UNKNOWN


class LicenseAnalyzer:
    """Validates declared licenses and, optionally, detects undeclared ones from LICENSE files."""

    def __init__(self, install_dir: str | Path, project_dir: str | Path | None = None):
        self.install_dir = Path(install_dir)
        self.project_dir = project_dir

    def _detect(self, dep: Dependency) -> tuple[str | None, str | None]:
        directory = locate_content(dep, self.install_dir, self.project_dir)
        if not directory.is_dir():
            logger.debug('No local content for license detection', package=dep.name)
            return None, None
        return scan_directory(directory)

    def analyze_dependency(
        self,
        dep: Dependency,
        detect: bool = False,
        policy: LicensePolicyConfig | None = None,
    ) -> LicenseRecord:
        override = policy.overrides.get(dep.name) if policy else None
        license_file = None
        if override is not None:
            expression, source = override[0], LicenseSource.OVERRIDE
        elif dep.license:
            expression, source = dep.license, LicenseSource.DECLARED
        elif detect:
            license_file, expression = self._detect(dep)
            source = LicenseSource.HEURISTIC if expression else LicenseSource.NONE
        else:
            expression, source = None, LicenseSource.NONE

        identifiers: tuple[str, ...] = ()
        category = LicenseCategory.UNKNOWN
        note = None
        if expression is None:
            validity = Validity.MISSING
        else:
            try:
                expr = spdx.validate(expression)
            except InvalidLicenseExpression as e:
                validity = Validity.INVALID
                note = f'invalid license expression: {e}'
            else:
                validity = Validity.VALID
                identifiers = tuple(expr.license_ids())
                category = expr.category()

        copyleft = category in COPYLEFT_CATEGORIES
        if copyleft:
            note = f'{expression} is {category} ({dep.name})'

        verdict = None
        if policy is not None:
            verdict = Verdict.OVERRIDDEN if override is not None else policy_verdict(expression, policy)

        return LicenseRecord(
            dependency=dep.name,
            version=dep.version,
            expression=expression,
            validity=validity,
            source=source,
            identifiers=identifiers,
            category=category,
            copyleft=copyleft,
            note=note,
            license_file=license_file,
            verdict=verdict,
            override_reason=override[1] if override is not None else None,
            dev=dep.dev,
        )

    def analyze(
        self,
        snapshot: LockSnapshot,
        detect: bool = False,
        include_dev: bool = False,
        policy: LicensePolicyConfig | None = None,
    ) -> LicenseReport:
        records = [
            self.analyze_dependency(dep, detect=detect, policy=policy)
            for dep in snapshot.filtered(include_dev)
        ]
        report = LicenseReport(
            records=tuple(records),
            policy_used=policy is not None,
            detection_enabled=detect,
        )
        logger.info(
            'License analysis complete',
            dependencies=len(records),
            invalid=report.count(Validity.INVALID),
            missing=report.count(Validity.MISSING),
            copyleft=len(report.copyleft_notes),
        )
        return report

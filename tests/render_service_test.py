import csv
import io
import json
from datetime import datetime
from datetime import timezone

import pytest

from conftest import make_dep
from conftest import make_snapshot
from lockaudit.core.errors import UnknownFormat
from lockaudit.core.storage import SnapshotHistory
from lockaudit.models.advisory import Advisory
from lockaudit.models.advisory import AuditResult
from lockaudit.models.advisory import Finding
from lockaudit.models.change import ChangeEntry
from lockaudit.models.change import ChangeKind
from lockaudit.models.report import Section
from lockaudit.models.severity import Severity
from lockaudit.services.advisory_cache import AdvisoryCache
from lockaudit.services.audit_service import AuditService
from lockaudit.services.integrity_service import IntegrityVerifier
from lockaudit.services.license_service import LicenseAnalyzer
from lockaudit.services.policy_service import PolicyEvaluator
from lockaudit.services.render_service import audit_to_dict
from lockaudit.services.render_service import render_audit_sarif
from lockaudit.services.render_service import render_changes_json
from lockaudit.services.render_service import render_changes_markdown
from lockaudit.services.render_service import render_licenses_csv
from lockaudit.services.render_service import render_licenses_markdown
from lockaudit.services.render_service import render_report
from lockaudit.services.render_service import ReportFormat
from lockaudit.services.report_service import ComplianceService

NOW = datetime(2024, 3, 2, 9, 30, tzinfo=timezone.utc)


class FixedSource:
    def __init__(self, advisories):
        self.advisories = advisories

    def fetch(self, dependency):
        return list(self.advisories.get(dependency.name, []))


@pytest.fixture
def report(tmp_path):
    advisory = Advisory(
        id='GHSA-left-pad', package='left-pad', ranges=['<1.0.1'], severity='high',
        summary='Prototype pollution', fixed_versions=('1.0.1',),
    )
    service = ComplianceService(
        audit_service=AuditService(AdvisoryCache(), lambda: FixedSource({'left-pad': [advisory]}), 'crystal'),
        license_analyzer=LicenseAnalyzer(tmp_path / 'lib', tmp_path),
        integrity_verifier=IntegrityVerifier(tmp_path / 'lib', tmp_path),
        policy_evaluator=PolicyEvaluator(),
        history=SnapshotHistory(tmp_path / 'history.jsonl'),
        project_name='demo',
        clock=lambda: NOW,
    )
    snapshot = make_snapshot(
        make_dep('left-pad', '1.0.0', license='MIT'),
        make_dep('gpl-thing', '2.0.0', license='GPL-3.0-only'),
    )
    return service.build(snapshot, list(Section), reviewer='Sam <sam@example.com>')


def audit_result():
    findings = tuple(
        Finding(dependency='pkg', version='1.0.0', advisory_id=f'ADV-{level}', severity=level,
                matched_range='1.0.0 in <2.0.0')
        for level in Severity
    )
    return AuditResult(findings=findings, scanned=1, data_fetched_at=NOW)


def test_report_json_is_deterministic(report):
    first = render_report(report, ReportFormat.JSON)
    assert first == render_report(report, ReportFormat.JSON)

    data = json.loads(first)
    assert data['summary']['overall_status'] == 'FAIL'
    assert data['generated_at'] == '2024-03-02T09:30:00Z'
    assert data['sections']['audit']['findings'][0]['advisory_id'] == 'GHSA-left-pad'
    assert data['attestation']['reviewer'] == 'Sam <sam@example.com>'
    assert data['signature_ref'] is None


def test_report_markdown(report):
    text = render_report(report, ReportFormat.MARKDOWN)
    assert text == render_report(report, ReportFormat.MARKDOWN)
    assert text.startswith('# Compliance Report: demo\n')
    assert '| Status | **FAIL** |' in text
    assert '| high | left-pad@1.0.0 | GHSA-left-pad | 1.0.0 in <1.0.1 | 1.0.1 | active |' in text
    assert '- Note: GPL-3.0-only is strong-copyleft (gpl-thing)' in text
    assert 'No policy defined.' in text


def test_report_html_escapes_values(report):
    html = render_report(report, ReportFormat.HTML)
    assert html.startswith('<!DOCTYPE html>')
    assert 'Sam &lt;sam@example.com&gt;' in html
    assert 'Sam <sam@example.com>' not in html


def test_report_format_parse():
    assert ReportFormat.parse('md') == ReportFormat.MARKDOWN
    assert ReportFormat.parse('HTML') == ReportFormat.HTML
    assert ReportFormat.MARKDOWN.extension == '.md'
    with pytest.raises(UnknownFormat):
        ReportFormat.parse('pdf')


def test_sarif_levels():
    document = json.loads(render_audit_sarif(audit_result()))
    levels = {r['ruleId']: r['level'] for r in document['runs'][0]['results']}
    assert levels == {'ADV-low': 'note', 'ADV-medium': 'warning', 'ADV-high': 'error', 'ADV-critical': 'error'}
    assert document['version'] == '2.1.0'
    location = document['runs'][0]['results'][0]['locations'][0]
    assert location['physicalLocation']['artifactLocation']['uri'] == 'shard.lock'


def test_audit_dict_includes_exit_code():
    data = audit_to_dict(audit_result())
    assert data['worst_severity'] == 'critical'
    assert data['exit_code'] == 1


def test_license_csv_and_markdown(tmp_path):
    analyzer = LicenseAnalyzer(tmp_path / 'lib', tmp_path)
    licenses = analyzer.analyze(make_snapshot(
        make_dep('a', '1.0.0', license='MIT'),
        make_dep('b', '1.0.0'),
    ))

    rows = list(csv.reader(io.StringIO(render_licenses_csv(licenses))))
    assert rows[0] == ['dependency', 'version', 'expression', 'validity', 'source', 'category', 'verdict']
    assert rows[1] == ['a', '1.0.0', 'MIT', 'valid', 'declared', 'permissive', '']
    assert rows[2][:4] == ['b', '1.0.0', '', 'missing']

    markdown = render_licenses_markdown(licenses)
    assert markdown.startswith('# License Report')
    assert '| b | 1.0.0 | - | missing |' in markdown


def test_changes_rendering():
    changes = [
        ChangeEntry(kind=ChangeKind.ADDED, name='bar', new_version='1.0.0', timestamp=NOW),
        ChangeEntry(kind=ChangeKind.UPGRADED, name='foo', old_version='1.0.0', new_version='2.0.0', timestamp=NOW),
    ]
    data = json.loads(render_changes_json(changes, 'history:latest', 'current'))
    assert data['from'] == 'history:latest'
    assert [c['kind'] for c in data['changes']] == ['added', 'upgraded']

    markdown = render_changes_markdown(changes, 'history:latest', 'current')
    assert '| added | bar | - | 1.0.0 |' in markdown
    assert '| upgraded | foo | 1.0.0 | 2.0.0 |' in markdown
    assert 'No changes.' in render_changes_markdown([], 'a', 'b')

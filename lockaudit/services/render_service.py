"""
Output renderers.

Every renderer is a pure function of an already-built result object:
nothing is re-derived or fetched while rendering, so rendering the same
object twice yields byte-identical text.
"""
import csv
import io
import json
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from jinja2 import Environment
from jinja2 import FileSystemLoader
from jinja2 import select_autoescape

from lockaudit.__version__ import __version__
from lockaudit.core.errors import UnknownFormat
from lockaudit.models.advisory import AuditResult
from lockaudit.models.change import ChangeEntry
from lockaudit.models.license import LicenseReport
from lockaudit.models.report import ComplianceReport
from lockaudit.models.severity import Severity

TEMPLATES_DIR = Path(__file__).resolve().parent.parent / 'templates'

SARIF_SCHEMA = 'https://json.schemastore.org/sarif-2.1.0.json'
SARIF_LEVELS = {
    Severity.CRITICAL: 'error',
    Severity.HIGH: 'error',
    Severity.MEDIUM: 'warning',
    Severity.LOW: 'note',
}


class ReportFormat(str, Enum):
    JSON = 'json'
    HTML = 'html'
    MARKDOWN = 'markdown'

    def __str__(self) -> str:
        return self.value

    @property
    def extension(self) -> str:
        return {'json': '.json', 'html': '.html', 'markdown': '.md'}[self.value]

    @classmethod
    def parse(cls, value: str) -> 'ReportFormat':
        label = value.lower()
        if label == 'md':
            label = 'markdown'
        try:
            return cls(label)
        except ValueError:
            raise UnknownFormat(f"unknown report format '{value}' (expected json, html or markdown)")


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value else ''


def get_templates_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATES_DIR)),
        autoescape=select_autoescape(['html']),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
    )
    env.filters['iso'] = _iso
    return env


def render_template(name: str, **ctx: Any) -> str:
    return get_templates_env().get_template(name).render(**ctx)


def to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + '\n'


# --- Compliance report ---

def render_report(report: ComplianceReport, fmt: ReportFormat) -> str:
    if fmt == ReportFormat.JSON:
        return to_json(report.model_dump(mode='json'))
    template = 'report.html.j2' if fmt == ReportFormat.HTML else 'report.md.j2'
    return render_template(template, report=report, sections=report.sections, summary=report.summary)


# --- Audit ---

def audit_to_dict(result: AuditResult) -> dict[str, Any]:
    data = result.model_dump(mode='json')
    data['worst_severity'] = str(result.worst_severity) if result.worst_severity else None
    data['exit_code'] = result.exit_code
    return data


def render_audit_sarif(result: AuditResult, lockfile: str = 'shard.lock') -> str:
    rules: dict[str, dict[str, Any]] = {}
    results = []
    for finding in result.qualifying_findings:
        rules.setdefault(finding.advisory_id, {
            'id': finding.advisory_id,
            'shortDescription': {'text': finding.summary or finding.advisory_id},
            'properties': {'security-severity-level': str(finding.severity)},
        })
        fixed = ', '.join(finding.fixed_versions) or 'none'
        results.append({
            'ruleId': finding.advisory_id,
            'level': SARIF_LEVELS[finding.severity],
            'message': {
                'text': f'{finding.dependency}@{finding.version} is affected by {finding.advisory_id} '
                        f'({finding.matched_range}); fixed in: {fixed}',
            },
            'locations': [{'physicalLocation': {'artifactLocation': {'uri': lockfile}}}],
        })
    document = {
        '$schema': SARIF_SCHEMA,
        'version': '2.1.0',
        'runs': [{
            'tool': {'driver': {'name': 'lockaudit', 'version': __version__, 'rules': list(rules.values())}},
            'results': results,
        }],
    }
    return to_json(document)


# --- Licenses ---

LICENSE_COLUMNS = ('dependency', 'version', 'expression', 'validity', 'source', 'category', 'verdict')


def render_licenses_csv(report: LicenseReport) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator='\n')
    writer.writerow(LICENSE_COLUMNS)
    for record in report.records:
        writer.writerow([
            record.dependency,
            record.version,
            record.expression or '',
            str(record.validity),
            str(record.source),
            str(record.category),
            str(record.verdict) if record.verdict else '',
        ])
    return buffer.getvalue()


def render_licenses_markdown(report: LicenseReport) -> str:
    return render_template('licenses.md.j2', report=report)


# --- Diff ---

def render_changes_json(changes: list[ChangeEntry], older: str, newer: str) -> str:
    return to_json({
        'from': older,
        'to': newer,
        'changes': [change.model_dump(mode='json') for change in changes],
    })


def render_changes_markdown(changes: list[ChangeEntry], older: str, newer: str) -> str:
    return render_template('diff.md.j2', changes=changes, older=older, newer=newer)

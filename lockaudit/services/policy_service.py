import re
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog
import yaml
from pydantic import ValidationError

from lockaudit.core.errors import MalformedPolicyFile
from lockaudit.core.semver import SemVer
from lockaudit.models.advisory import Finding
from lockaudit.models.license import LicenseRecord
from lockaudit.models.lock import Dependency
from lockaudit.models.policy import Condition
from lockaudit.models.policy import Operator
from lockaudit.models.policy import PolicyResult
from lockaudit.models.policy import PolicyRule
from lockaudit.models.policy import PolicyViolation
from lockaudit.models.policy import SUBJECT_ATTRIBUTES
from lockaudit.models.policy import SubjectKind
from lockaudit.models.severity import Action
from lockaudit.models.severity import Severity

logger = structlog.get_logger('policy_service')

POLICY_VERSION = '1'
RULE_SECTIONS = ('sources', 'dependencies', 'security', 'custom')
ORDERING = (Operator.LT, Operator.LE, Operator.GT, Operator.GE)

STARTER_POLICY = """\
version: "1"
rules:
  sources:
    allowed_hosts:
      - github.com
    # allowed_orgs:
    #   github.com: [crystal-lang]
    deny_path_dependencies: false
  dependencies:
    blocked: []
    #  - name: some-shard
    #    reason: unmaintained
    minimum_versions: {}
  security:
    require_license: true
    require_checksum: false
  custom:
    - name: no-critical-findings
      subject: finding
      attribute: severity
      operator: ge
      value: critical
      action: fail
      message: "{subject} has a critical advisory"
"""


# --- Loading ---

class _PolicyParser:
    """Compiles a policy document into PolicyRule records."""

    def __init__(self, origin: str):
        self.origin = origin
        self.rules: list[PolicyRule] = []

    def fail(self, message: str, field: str | None = None):
        raise MalformedPolicyFile(message, path=self.origin, field=field)

    def mapping(self, value: Any, field: str) -> dict:
        if value is None:
            return {}
        if not isinstance(value, dict):
            self.fail('must be a mapping', field)
        return value

    def string_list(self, value: Any, field: str) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
            self.fail('must be a list of strings', field)
        return value

    def flag(self, value: Any, field: str) -> bool:
        if value is None:
            return False
        if not isinstance(value, bool):
            self.fail('must be true or false', field)
        return value

    def reject_unknown(self, data: dict, allowed: Iterable[str], field: str | None = None):
        unknown = sorted(set(data) - set(allowed))
        if unknown:
            location = f'{field}.{unknown[0]}' if field else unknown[0]
            self.fail(f"unknown key '{unknown[0]}'", location)

    def add(self, field: str, **kwargs):
        try:
            self.rules.append(PolicyRule(**kwargs))
        except ValidationError as e:
            self.fail(e.errors()[0]['msg'].removeprefix('Value error, '), field)

    def parse(self, data: Any) -> list[PolicyRule]:
        data = self.mapping(data, 'policy')
        self.reject_unknown(data, ('version', 'rules'))
        version = str(data.get('version', POLICY_VERSION))
        if version != POLICY_VERSION:
            self.fail(f"unsupported policy version '{version}'", 'version')
        rules = self.mapping(data.get('rules'), 'rules')
        self.reject_unknown(rules, RULE_SECTIONS, 'rules')
        self.parse_sources(self.mapping(rules.get('sources'), 'rules.sources'))
        self.parse_dependencies(self.mapping(rules.get('dependencies'), 'rules.dependencies'))
        self.parse_security(self.mapping(rules.get('security'), 'rules.security'))
        custom = rules.get('custom') or []
        if not isinstance(custom, list):
            self.fail('must be a list', 'rules.custom')
        for index, entry in enumerate(custom):
            self.parse_custom(entry, f'rules.custom[{index}]')
        return self.rules

    def parse_sources(self, sources: dict):
        field = 'rules.sources'
        self.reject_unknown(sources, ('allowed_hosts', 'allowed_orgs', 'deny_path_dependencies'), field)
        hosts = self.string_list(sources.get('allowed_hosts'), f'{field}.allowed_hosts')
        if hosts:
            self.add(
                f'{field}.allowed_hosts',
                name='allowed_hosts',
                subject=SubjectKind.DEPENDENCY,
                conditions=(
                    Condition(attribute='is_path', operator=Operator.EQ, value=False),
                    Condition(attribute='host', operator=Operator.NOT_IN, value=[h.lower() for h in hosts]),
                ),
                action=Action.FAIL,
                message="Source host '{host}' is not in the allowed hosts list for '{subject}'",
            )
        orgs = self.mapping(sources.get('allowed_orgs'), f'{field}.allowed_orgs')
        for host, owners in orgs.items():
            owners = self.string_list(owners, f'{field}.allowed_orgs.{host}')
            self.add(
                f'{field}.allowed_orgs.{host}',
                name='allowed_orgs',
                subject=SubjectKind.DEPENDENCY,
                conditions=(
                    Condition(attribute='host', operator=Operator.EQ, value=str(host).lower()),
                    Condition(attribute='owner', operator=Operator.NE, value=None),
                    Condition(attribute='owner', operator=Operator.NOT_IN, value=owners),
                ),
                action=Action.FAIL,
                message="Organization '{owner}' on '{host}' is not in the allowed orgs list for '{subject}'",
            )
        if self.flag(sources.get('deny_path_dependencies'), f'{field}.deny_path_dependencies'):
            self.add(
                f'{field}.deny_path_dependencies',
                name='deny_path_dependencies',
                subject=SubjectKind.DEPENDENCY,
                conditions=(Condition(attribute='is_path', operator=Operator.EQ, value=True),),
                action=Action.FAIL,
                message="Path dependencies are not allowed by policy: '{subject}' ({source})",
            )

    def parse_dependencies(self, deps: dict):
        field = 'rules.dependencies'
        self.reject_unknown(deps, ('blocked', 'minimum_versions'), field)
        blocked = deps.get('blocked') or []
        if not isinstance(blocked, list):
            self.fail('must be a list', f'{field}.blocked')
        for index, entry in enumerate(blocked):
            if isinstance(entry, str):
                entry = {'name': entry}
            if not isinstance(entry, dict) or not entry.get('name'):
                self.fail('entry needs a name', f'{field}.blocked[{index}]')
            reason = entry.get('reason') or 'Blocked by policy'
            self.add(
                f'{field}.blocked[{index}]',
                name='blocked_dependency',
                subject=SubjectKind.DEPENDENCY,
                conditions=(Condition(attribute='name', operator=Operator.EQ, value=str(entry['name'])),),
                action=Action.FAIL,
                message=f"Dependency '{{subject}}' is blocked: {reason}",
            )
        minimums = self.mapping(deps.get('minimum_versions'), f'{field}.minimum_versions')
        for name, requirement in minimums.items():
            entry_field = f'{field}.minimum_versions.{name}'
            minimum, ceiling = self.version_requirement(requirement, entry_field)
            message = f"Version {{version}} of '{{subject}}' does not satisfy minimum version '{requirement}'"
            bounds = [(Operator.LT, minimum)]
            if ceiling is not None:
                bounds.append((Operator.GE, ceiling))
            for operator, bound in bounds:
                self.add(
                    entry_field,
                    name='minimum_version',
                    subject=SubjectKind.DEPENDENCY,
                    conditions=(
                        Condition(attribute='name', operator=Operator.EQ, value=str(name)),
                        Condition(attribute='version', operator=operator, value=bound),
                    ),
                    action=Action.FAIL,
                    message=message,
                )

    def version_requirement(self, requirement: Any, field: str) -> tuple[str, str | None]:
        """
        Returns (lower bound, exclusive upper bound or None).

        ``>= X.Y.Z`` or a bare version is a floor. The pessimistic ``~>``
        pads a short version with zeros and bumps its second-to-last part:
        ``~> 1.2`` means >= 1.2.0, < 2.0.0 and ``~> 1.2.3`` means >= 1.2.3, < 1.3.0.
        """
        match = re.match(r'^\s*(>=|~>)?\s*(\S+)\s*$', str(requirement))
        if not match:
            self.fail(f"invalid version requirement '{requirement}'", field)
        operator, version = match.groups()
        if operator != '~>':
            try:
                SemVer.parse(version)
            except ValueError as e:
                self.fail(str(e), field)
            return version, None

        parts = version.split('.')
        if not 2 <= len(parts) <= 3 or not all(p.isdigit() for p in parts):
            self.fail(f"'~>' needs a MAJOR.MINOR or MAJOR.MINOR.PATCH version, got '{version}'", field)
        numbers = [int(p) for p in parts]
        floor = numbers + [0] * (3 - len(numbers))
        upper = numbers[:-1]
        upper[-1] += 1
        upper += [0] * (3 - len(upper))
        return '.'.join(map(str, floor)), '.'.join(map(str, upper))

    def parse_security(self, security: dict):
        field = 'rules.security'
        self.reject_unknown(security, ('require_license', 'require_checksum'), field)
        if self.flag(security.get('require_license'), f'{field}.require_license'):
            self.add(
                f'{field}.require_license',
                name='require_license',
                subject=SubjectKind.DEPENDENCY,
                conditions=(Condition(attribute='license', operator=Operator.EQ, value=None),),
                action=Action.WARN,
                message="Dependency '{subject}' has no license declared",
            )
        if self.flag(security.get('require_checksum'), f'{field}.require_checksum'):
            self.add(
                f'{field}.require_checksum',
                name='require_checksum',
                subject=SubjectKind.DEPENDENCY,
                conditions=(Condition(attribute='has_checksum', operator=Operator.EQ, value=False),),
                action=Action.WARN,
                message="Dependency '{subject}' has no checksum recorded",
            )

    def parse_custom(self, entry: Any, field: str):
        entry = self.mapping(entry, field)
        if not entry.get('name'):
            self.fail('custom rule needs a name', field)
        try:
            action = Action.parse(entry.get('action', 'warn'))
        except ValueError:
            self.fail(f"unknown action '{entry.get('action')}'", f'{field}.action')

        if 'pattern' in entry:
            self.reject_unknown(entry, ('name', 'pattern', 'action', 'reason'), field)
            pattern = str(entry['pattern'])
            self.compile_regex(pattern, f'{field}.pattern')
            reason = entry.get('reason') or 'matched custom pattern'
            self.add(
                field,
                name=str(entry['name']),
                subject=SubjectKind.DEPENDENCY,
                conditions=(Condition(attribute='name', operator=Operator.MATCHES, value=f'(?i){pattern}'),),
                action=action,
                message=f"Dependency '{{subject}}' matched custom rule '{entry['name']}': {reason}",
            )
            return

        self.reject_unknown(
            entry,
            ('name', 'subject', 'attribute', 'operator', 'value', 'conditions', 'action', 'message'),
            field,
        )
        try:
            subject = SubjectKind(entry.get('subject', 'dependency'))
        except ValueError:
            self.fail(f"unknown subject '{entry.get('subject')}'", f'{field}.subject')

        raw_conditions = entry.get('conditions')
        if raw_conditions is None:
            raw_conditions = [{k: entry[k] for k in ('attribute', 'operator', 'value') if k in entry}]
        elif 'attribute' in entry or 'operator' in entry:
            self.fail("use either 'conditions' or attribute/operator/value", field)
        if not isinstance(raw_conditions, list) or not raw_conditions:
            self.fail('must be a non-empty list', f'{field}.conditions')

        conditions = tuple(
            self.parse_condition(subject, raw, f'{field}.conditions[{index}]')
            for index, raw in enumerate(raw_conditions)
        )
        self.add(
            field,
            name=str(entry['name']),
            subject=subject,
            conditions=conditions,
            action=action,
            message=entry.get('message'),
        )

    def parse_condition(self, subject: SubjectKind, raw: Any, field: str) -> Condition:
        raw = self.mapping(raw, field)
        self.reject_unknown(raw, ('attribute', 'operator', 'value'), field)
        attribute = raw.get('attribute')
        if attribute not in SUBJECT_ATTRIBUTES[subject]:
            self.fail(f"unknown attribute '{attribute}' for subject '{subject}'", f'{field}.attribute')
        try:
            operator = Operator(raw.get('operator', 'eq'))
        except ValueError:
            self.fail(f"unknown operator '{raw.get('operator')}'", f'{field}.operator')
        value = raw.get('value')

        if operator in (Operator.IN, Operator.NOT_IN) and not isinstance(value, list):
            self.fail(f"operator '{operator}' needs a list value", f'{field}.value')
        if operator == Operator.MATCHES:
            self.compile_regex(value, f'{field}.value')
        if operator in ORDERING:
            if attribute == 'version':
                try:
                    SemVer.parse(str(value))
                except ValueError as e:
                    self.fail(str(e), f'{field}.value')
            elif attribute == 'severity':
                if str(value).lower() not in {s.value for s in Severity} | {'moderate'}:
                    self.fail(f"unknown severity '{value}'", f'{field}.value')
            else:
                self.fail(f"operator '{operator}' only applies to version or severity", f'{field}.operator')
        return Condition(attribute=attribute, operator=operator, value=value)

    def compile_regex(self, pattern: Any, field: str):
        try:
            re.compile(str(pattern))
        except re.error as e:
            self.fail(f'invalid regular expression: {e}', field)


def parse_policy(text: str, origin: str = '<memory>') -> list[PolicyRule]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise MalformedPolicyFile(f'invalid YAML: {e}', path=origin)
    if data is None:
        return []
    return _PolicyParser(origin).parse(data)


def load_policy(path: str | Path) -> list[PolicyRule]:
    path = Path(path)
    if not path.is_file():
        raise MalformedPolicyFile('policy file not found', path=path)
    rules = parse_policy(path.read_text(encoding='utf-8'), origin=str(path))
    logger.debug('Loaded policy', path=str(path), rules=len(rules))
    return rules


# --- Evaluation ---

def dependency_attributes(dep: Dependency) -> dict[str, Any]:
    return {
        'name': dep.name,
        'version': dep.version,
        'source': dep.source,
        'host': dep.host,
        'owner': dep.owner,
        'license': dep.license,
        'dev': dep.dev,
        'has_checksum': dep.checksum is not None,
        'is_path': dep.is_path,
    }


def finding_attributes(finding: Finding) -> dict[str, Any]:
    return {
        'severity': finding.severity,
        'advisory_id': finding.advisory_id,
        'package': finding.dependency,
        'ignored': finding.ignored,
    }


def license_attributes(record: LicenseRecord) -> dict[str, Any]:
    return {
        'validity': record.validity.value,
        'expression': record.expression,
        'identifiers': list(record.identifiers),
        'category': record.category.value,
        'copyleft': record.copyleft,
        'source': record.source.value,
    }


def _scalar(value: Any) -> Any:
    if isinstance(value, Severity):
        return value.value
    return value


def _ordered(attribute: str, actual: Any, expected: Any) -> tuple[Any, Any] | None:
    if actual is None:
        return None
    if attribute == 'version':
        return SemVer.parse(str(actual)), SemVer.parse(str(expected))
    if attribute == 'severity':
        return Severity.parse(str(actual)), Severity.parse(str(expected))
    return actual, expected


def condition_holds(condition: Condition, attributes: dict[str, Any]) -> bool:
    actual = attributes.get(condition.attribute)
    expected = condition.value
    op = condition.operator

    if op in ORDERING:
        pair = _ordered(condition.attribute, actual, expected)
        if pair is None:
            return False
        left, right = pair
        return {
            Operator.LT: left < right,
            Operator.LE: left <= right,
            Operator.GT: left > right,
            Operator.GE: left >= right,
        }[op]

    actual = _scalar(actual)
    if condition.attribute == 'severity' and expected is not None:
        expected = Severity.parse(str(expected)).value
    if op == Operator.EQ:
        return actual == expected
    if op == Operator.NE:
        return actual != expected
    if op == Operator.IN:
        return actual in expected
    if op == Operator.NOT_IN:
        return actual not in expected
    if op == Operator.CONTAINS:
        if actual is None:
            return False
        if isinstance(actual, list):
            return expected in actual
        return str(expected) in str(actual)
    if op == Operator.MATCHES:
        return actual is not None and re.search(str(expected), str(actual)) is not None
    raise ValueError(f'unsupported operator {op}')


def _message(rule: PolicyRule, subject: str, attributes: dict[str, Any]) -> str:
    if not rule.message:
        conditions = ' and '.join(str(c) for c in rule.conditions)
        return f"'{subject}' violates rule '{rule.name}' ({conditions})"
    message = rule.message.replace('{subject}', subject)
    for key, value in attributes.items():
        message = message.replace(f'{{{key}}}', str(_scalar(value)))
    return message


def evaluate(
    rules: Iterable[PolicyRule],
    dependencies: Iterable[Dependency] = (),
    findings: Iterable[Finding] = (),
    licenses: Iterable[LicenseRecord] = (),
) -> list[PolicyViolation]:
    """
    Pure rule evaluation: one violation per (rule, subject) whose conditions
    all hold. The result is sorted by action, subject, then rule name.
    """
    subjects: dict[SubjectKind, list[tuple[str, dict[str, Any]]]] = {
        SubjectKind.DEPENDENCY: [(d.name, dependency_attributes(d)) for d in dependencies],
        SubjectKind.FINDING: [(f'{f.dependency} {f.advisory_id}', finding_attributes(f)) for f in findings],
        SubjectKind.LICENSE: [(r.dependency, license_attributes(r)) for r in licenses],
    }
    violations = []
    for rule in rules:
        for subject, attributes in subjects[rule.subject]:
            if all(condition_holds(c, attributes) for c in rule.conditions):
                violations.append(
                    PolicyViolation(
                        rule=rule.name,
                        subject_kind=rule.subject,
                        subject=subject,
                        action=rule.action,
                        message=_message(rule, subject, attributes),
                    ),
                )
    violations.sort(key=lambda v: v.sort_key)
    return violations


class PolicyEvaluator:
    def check(
        self,
        rules: list[PolicyRule] | None,
        dependencies: Iterable[Dependency] = (),
        findings: Iterable[Finding] = (),
        licenses: Iterable[LicenseRecord] = (),
        source: str | None = None,
    ) -> PolicyResult:
        """``rules=None`` means no policy file; that is reported as undefined, not as clean."""
        if rules is None:
            return PolicyResult(defined=False)
        violations = evaluate(rules, dependencies, findings, licenses)
        logger.info(
            'Policy evaluated',
            rules=len(rules),
            violations=len(violations),
            failing=sum(1 for v in violations if v.action == Action.FAIL),
        )
        return PolicyResult(
            defined=True,
            source=source,
            rules=len(rules),
            violations=tuple(violations),
        )

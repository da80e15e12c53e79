import pytest

from conftest import make_dep
from conftest import make_snapshot
from lockaudit.core.errors import MalformedPolicyFile
from lockaudit.models.license import LicenseCategory
from lockaudit.models.license import LicensePolicyConfig
from lockaudit.models.license import LicenseSource
from lockaudit.models.license import Validity
from lockaudit.models.license import Verdict
from lockaudit.services.license_service import detect_license
from lockaudit.services.license_service import LicenseAnalyzer
from lockaudit.services.license_service import load_license_policy
from lockaudit.services.license_service import parse_license_policy
from lockaudit.services.license_service import policy_verdict

GPL3_TEXT = """
                    GNU GENERAL PUBLIC LICENSE
                       Version 3, 29 June 2007
 This program is free software: you can redistribute it under the terms of the
 GNU General Public License as published by the Free Software Foundation, either version 3
"""

LGPL_TEXT = 'GNU Lesser General Public License as published by the Free Software Foundation; version 2.1'


@pytest.fixture
def analyzer(tmp_path):
    return LicenseAnalyzer(tmp_path / 'lib', tmp_path)


def test_declared_licenses(analyzer):
    assert analyzer.analyze_dependency(make_dep('a', '1.0.0', license='MIT')).validity == Validity.VALID
    assert analyzer.analyze_dependency(make_dep('b', '1.0.0', license='MIT OR Apache-2.0')).validity == Validity.VALID

    record = analyzer.analyze_dependency(make_dep('c', '1.0.0', license='Foo-License'))
    assert record.validity == Validity.INVALID
    assert record.source == LicenseSource.DECLARED
    assert "unknown license identifier 'Foo-License'" in record.note


def test_absent_license_without_detection_is_missing(analyzer, tmp_path):
    (tmp_path / 'lib' / 'd').mkdir(parents=True)
    (tmp_path / 'lib' / 'd' / 'LICENSE').write_text('MIT License\n')

    record = analyzer.analyze_dependency(make_dep('d', '1.0.0'))
    assert record.validity == Validity.MISSING
    assert record.source == LicenseSource.NONE


def test_heuristic_detection(analyzer, tmp_path):
    (tmp_path / 'lib' / 'd').mkdir(parents=True)
    (tmp_path / 'lib' / 'd' / 'LICENSE.md').write_text('MIT License\n\nPermission is hereby granted, free of charge')

    record = analyzer.analyze_dependency(make_dep('d', '1.0.0'), detect=True)
    assert record.validity == Validity.VALID
    assert record.source == LicenseSource.HEURISTIC
    assert record.expression == 'MIT'
    assert record.license_file == 'LICENSE.md'


def test_detection_without_match_is_missing(analyzer, tmp_path):
    (tmp_path / 'lib' / 'e').mkdir(parents=True)
    (tmp_path / 'lib' / 'e' / 'COPYING').write_text('All rights reserved.')

    record = analyzer.analyze_dependency(make_dep('e', '1.0.0'), detect=True)
    assert record.validity == Validity.MISSING
    assert record.license_file == 'COPYING'


def test_detect_license_signatures():
    assert detect_license(GPL3_TEXT) == 'GPL-3.0-only'
    assert detect_license(LGPL_TEXT) == 'LGPL-2.1-only'
    assert detect_license('Apache License\n  Version 2.0, January 2004') == 'Apache-2.0'
    assert detect_license('nothing to see here') is None


def test_copyleft_is_a_note_not_a_failure(analyzer):
    record = analyzer.analyze_dependency(make_dep('g', '1.0.0', license='GPL-3.0-only'))
    assert record.validity == Validity.VALID
    assert record.copyleft is True
    assert record.category == LicenseCategory.STRONG_COPYLEFT
    assert record.note == 'GPL-3.0-only is strong-copyleft (g)'


def test_analyze_report(analyzer):
    snapshot = make_snapshot(
        make_dep('a', '1.0.0', license='MIT'),
        make_dep('g', '1.0.0', license='LGPL-3.0-only'),
        make_dep('x', '1.0.0', license='Foo-License'),
        make_dep('dev', '1.0.0', dev=True),
    )
    report = analyzer.analyze(snapshot)

    assert [r.dependency for r in report.records] == ['a', 'g', 'x']
    assert report.count(Validity.INVALID) == 1
    assert report.copyleft_notes == ['LGPL-3.0-only is weak-copyleft (g)']
    assert report.check_failed
    assert not report.policy_used

    with_dev = analyzer.analyze(snapshot, include_dev=True)
    assert with_dev.count(Validity.MISSING) == 1


def test_parse_license_policy():
    policy = parse_license_policy("""
policy:
  allowed: [MIT, Apache-2.0]
  denied: [GPL-3.0-only]
  require_license: true
  overrides:
    legacy:
      license: MIT
      reason: relicensed upstream
""")
    assert policy.allowed == frozenset({'MIT', 'Apache-2.0'})
    assert policy.require_license is True
    assert policy.overrides == {'legacy': ('MIT', 'relicensed upstream')}


@pytest.mark.parametrize('text,field', [
    ('allowed: [MIT]', 'policy'),
    ('policy:\n  alowed: [MIT]', 'policy'),
    ('policy:\n  allowed: MIT', 'policy.allowed'),
    ('policy:\n  require_license: maybe', 'policy.require_license'),
    ('policy:\n  overrides:\n    x: {reason: none}', 'policy.overrides.x'),
])
def test_malformed_license_policy(text, field):
    with pytest.raises(MalformedPolicyFile) as exc:
        parse_license_policy(text, origin='licenses.yml')
    assert exc.value.field == field


def test_load_license_policy_absent(tmp_path):
    assert load_license_policy(tmp_path / 'missing.yml') is None
    assert load_license_policy(None) is None


def test_policy_verdicts():
    policy = LicensePolicyConfig(
        allowed=frozenset({'MIT', 'Apache-2.0'}),
        denied=frozenset({'GPL-3.0-only'}),
    )
    assert policy_verdict('MIT', policy) == Verdict.ALLOWED
    assert policy_verdict('MIT OR GPL-3.0-only', policy) == Verdict.DENIED
    assert policy_verdict('ISC', policy) == Verdict.UNKNOWN
    assert policy_verdict(None, policy) == Verdict.UNLICENSED
    assert policy_verdict(None, policy.model_copy(update={'require_license': True})) == Verdict.DENIED
    assert policy_verdict('MIT', None) == Verdict.UNKNOWN


def test_override_takes_priority(analyzer):
    policy = LicensePolicyConfig(
        denied=frozenset({'GPL-3.0-only'}),
        overrides={'legacy': ('MIT', 'relicensed')},
    )
    record = analyzer.analyze_dependency(make_dep('legacy', '1.0.0', license='GPL-3.0-only'), policy=policy)

    assert record.source == LicenseSource.OVERRIDE
    assert record.expression == 'MIT'
    assert record.verdict == Verdict.OVERRIDDEN
    assert record.override_reason == 'relicensed'


def test_denied_verdict_fails_check(analyzer):
    policy = LicensePolicyConfig(denied=frozenset({'GPL-3.0-only'}))
    report = analyzer.analyze(make_snapshot(make_dep('g', '1.0.0', license='GPL-3.0-only')), policy=policy)
    assert report.policy_used
    assert report.verdict_count(Verdict.DENIED) == 1
    assert report.check_failed

import pytest
from pydantic import ValidationError

from lockaudit.core.semver import compare
from lockaudit.core.semver import is_semver
from lockaudit.core.semver import SemVer
from lockaudit.models.advisory import Advisory
from lockaudit.models.advisory import VersionRange


def test_semver_ordering():
    assert SemVer.parse('1.0.0') < SemVer.parse('1.0.1')
    assert SemVer.parse('1.10.0') > SemVer.parse('1.9.9')
    assert SemVer.parse('1.0.0-rc.1') < SemVer.parse('1.0.0')
    assert SemVer.parse('v2.0.0') == SemVer.parse('2.0.0')


def test_build_metadata_ignored_for_ordering():
    a = SemVer.parse('1.2.3+git.commit.aaa')
    b = SemVer.parse('1.2.3+git.commit.bbb')
    assert a == b
    assert compare(str(a), str(b)) == 0
    assert a.build == 'git.commit.aaa'


@pytest.mark.parametrize('value', ['1.0.0-x.7.z.92', '1.0.0-alpha.beta', '1.0.0-SNAPSHOT', '1.0.0-0.3.7'])
def test_prerelease_identifiers_accepted(value):
    assert is_semver(value)
    assert str(SemVer.parse(value)) == value


def test_prerelease_precedence():
    chain = [
        '1.0.0-alpha',
        '1.0.0-alpha.1',
        '1.0.0-alpha.beta',
        '1.0.0-beta',
        '1.0.0-beta.2',
        '1.0.0-beta.11',
        '1.0.0-rc.1',
        '1.0.0',
    ]
    versions = [SemVer.parse(v) for v in chain]
    for lower, higher in zip(versions, versions[1:]):
        assert lower < higher, f'{lower} < {higher}'
    assert sorted(reversed(versions)) == versions


def test_prerelease_labels_compare_as_ascii():
    assert SemVer.parse('1.0.0-alpha') < SemVer.parse('1.0.0-dev')
    assert SemVer.parse('1.0.0-SNAPSHOT') < SemVer.parse('1.0.0-alpha')
    assert SemVer.parse('1.0.0-rc.1') > SemVer.parse('0.9.9')


def test_prerelease_numeric_leading_zero_rejected():
    assert not is_semver('1.0.0-01')
    assert is_semver('1.0.0-0a')


@pytest.mark.parametrize('value', ['1.0', 'latest', '01.0.0', '1.0.0.0', '', '1.0.0-', '1.0.0-a..b'])
def test_invalid_semver(value):
    assert not is_semver(value)
    with pytest.raises(ValueError):
        SemVer.parse(value)


@pytest.mark.parametrize('expression,inside,outside', [
    ('<1.0.1', ['0.1.0', '1.0.0'], ['1.0.1', '2.0.0']),
    ('<=1.0.1', ['1.0.1'], ['1.0.2']),
    ('>=1.0.0', ['1.0.0', '3.0.0'], ['0.9.9']),
    ('>1.0.0', ['1.0.1'], ['1.0.0']),
    ('=1.2.3', ['1.2.3'], ['1.2.4']),
    ('1.2.3', ['1.2.3+build.1'], ['1.2.2']),
    ('>=1.0.0, <2.0.0', ['1.0.0', '1.9.9'], ['0.9.0', '2.0.0']),
])
def test_range_matching(expression, inside, outside):
    version_range = VersionRange.parse(expression)
    for version in inside:
        assert version_range.contains(SemVer.parse(version)), version
    for version in outside:
        assert not version_range.contains(SemVer.parse(version)), version


def test_fixed_shorthand_means_every_earlier_version():
    version_range = VersionRange(fixed='1.0.1')
    assert version_range.contains(SemVer.parse('0.0.1'))
    assert not version_range.contains(SemVer.parse('1.0.1'))
    assert str(version_range) == '<1.0.1'


def test_introduced_zero_is_unbounded():
    version_range = VersionRange(introduced='0', fixed='2.0.0')
    assert version_range.contains(SemVer.parse('0.0.0'))
    assert str(version_range) == '<2.0.0'


def test_range_shape_validation():
    with pytest.raises(ValidationError):
        VersionRange()
    with pytest.raises(ValidationError):
        VersionRange(exact='1.0.0', fixed='2.0.0')
    with pytest.raises(ValidationError):
        VersionRange(fixed='1.0.0', last_affected='1.0.0')
    with pytest.raises(ValidationError):
        VersionRange(fixed='not-a-version')


def test_advisory_accepts_range_strings_and_severity_labels():
    advisory = Advisory(
        id='GHSA-0001',
        package='left-pad',
        ranges=['<1.0.1'],
        severity='MODERATE',
    )
    assert str(advisory.severity) == 'medium'
    assert advisory.matching_range(SemVer.parse('1.0.0')) is not None
    assert advisory.matching_range(SemVer.parse('1.0.1')) is None


def test_advisory_requires_a_range():
    with pytest.raises(ValidationError):
        Advisory(id='GHSA-0002', package='x', ranges=[], severity='high')

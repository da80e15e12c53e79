from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_dep
from lockaudit.core.errors import NetworkFetchFailed
from lockaudit.core.semver import SemVer
from lockaudit.models.severity import Severity
from lockaudit.services.advisory_source import advisory_from_osv
from lockaudit.services.advisory_source import OsvAdvisorySource

OSV_VULN = {
    'id': 'GHSA-xxxx-yyyy-zzzz',
    'summary': 'Header injection',
    'aliases': ['CVE-2024-0001'],
    'database_specific': {'severity': 'MODERATE'},
    'references': [{'type': 'ADVISORY', 'url': 'https://example.com/GHSA-xxxx'}],
    'affected': [{
        'package': {'name': 'kemal', 'ecosystem': 'crystal'},
        'ranges': [
            {'type': 'SEMVER', 'events': [{'introduced': '0'}, {'fixed': '1.4.1'}]},
            {'type': 'GIT', 'events': [{'introduced': 'abc'}, {'fixed': 'def'}]},
        ],
        'versions': ['0.9.0'],
    }],
}


def response(status=200, body=None):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = body or {}
    return resp


def test_advisory_from_osv():
    advisory = advisory_from_osv(OSV_VULN, 'kemal')

    assert advisory.id == 'GHSA-xxxx-yyyy-zzzz'
    assert advisory.package == 'kemal'
    assert advisory.severity == Severity.MEDIUM
    assert advisory.fixed_versions == ('1.4.1',)
    assert advisory.aliases == ('CVE-2024-0001',)
    assert advisory.url == 'https://example.com/GHSA-xxxx'
    assert [str(r) for r in advisory.ranges] == ['<1.4.1', '=0.9.0']


def test_advisory_from_osv_last_affected_and_unknown_severity():
    vuln = {
        'id': 'OSV-2',
        'details': 'Long description',
        'affected': [{'ranges': [{'type': 'ECOSYSTEM', 'events': [
            {'introduced': '1.0.0'}, {'last_affected': '1.2.0'},
        ]}]}],
    }
    advisory = advisory_from_osv(vuln, 'radix')
    assert advisory.severity == Severity.MEDIUM
    assert advisory.summary == 'Long description'
    assert str(advisory.ranges[0]) == '>=1.0.0, <=1.2.0'


def test_multi_package_record_only_uses_matching_entries():
    vuln = {
        'id': 'GHSA-multi',
        'affected': [
            {
                'package': {'name': 'other-shard', 'ecosystem': 'crystal'},
                'ranges': [{'type': 'SEMVER', 'events': [{'introduced': '0'}, {'fixed': '9.9.9'}]}],
            },
            {
                'package': {'name': 'kemal', 'ecosystem': 'npm'},
                'ranges': [{'type': 'SEMVER', 'events': [{'introduced': '0'}, {'fixed': '5.0.0'}]}],
            },
            {
                'package': {'name': 'kemal', 'ecosystem': 'Crystal'},
                'ranges': [{'type': 'SEMVER', 'events': [{'introduced': '2.0.0'}, {'fixed': '2.1.0'}]}],
            },
        ],
    }
    advisory = advisory_from_osv(vuln, 'kemal', ecosystem='crystal')
    assert [str(r) for r in advisory.ranges] == ['>=2.0.0, <2.1.0']
    assert advisory.matching_range(SemVer.parse('1.0.0')) is None
    assert advisory.fixed_versions == ('2.1.0',)

    by_purl = {
        'id': 'GHSA-purl',
        'affected': [
            {
                'package': {'purl': 'pkg:github/someone/kemal'},
                'ranges': [{'type': 'SEMVER', 'events': [{'introduced': '0'}, {'fixed': '9.0.0'}]}],
            },
            {
                'package': {'purl': 'pkg:github/kemalcr/kemal'},
                'ranges': [{'type': 'SEMVER', 'events': [{'introduced': '0'}, {'fixed': '1.0.0'}]}],
            },
        ],
    }
    advisory = advisory_from_osv(by_purl, 'kemal', purl='pkg:github/kemalcr/kemal@1.4.0')
    assert [str(r) for r in advisory.ranges] == ['<1.0.0']

    assert advisory_from_osv(vuln, 'radix', ecosystem='crystal') is None


def test_advisory_without_usable_range_is_dropped():
    vuln = {'id': 'OSV-3', 'affected': [{'ranges': [{'type': 'GIT', 'events': [{'introduced': 'abc'}]}]}]}
    assert advisory_from_osv(vuln, 'radix') is None


def test_fetch_queries_by_purl_and_paginates():
    session = MagicMock()
    session.post.side_effect = [
        response(body={'vulns': [OSV_VULN], 'next_page_token': 'page-2'}),
        response(body={'vulns': []}),
    ]
    source = OsvAdvisorySource(session, ecosystem='crystal', base_url='https://api.osv.dev/v1/')

    advisories = source.fetch(make_dep('kemal', '1.4.0', source='https://github.com/kemalcr/kemal.git'))

    assert [a.id for a in advisories] == ['GHSA-xxxx-yyyy-zzzz']
    first, second = session.post.call_args_list
    assert first.args == ('https://api.osv.dev/v1/query',)
    assert first.kwargs['json'] == {'package': {'purl': 'pkg:github/kemalcr/kemal'}}
    assert second.kwargs['json']['page_token'] == 'page-2'
    assert 'force_refresh' not in first.kwargs


def test_fetch_generic_source_queries_by_name():
    session = MagicMock()
    session.post.return_value = response(body={})
    source = OsvAdvisorySource(session, ecosystem='crystal', base_url='https://api.osv.dev/v1')
    source.force_refresh = True

    assert source.fetch(make_dep('tool', '1.0.0', source='https://git.example.com/tool.git')) == []
    kwargs = session.post.call_args.kwargs
    assert kwargs['json'] == {'package': {'name': 'tool', 'ecosystem': 'crystal'}}
    assert kwargs['force_refresh'] is True


def test_fetch_failures_raise_network_error():
    session = MagicMock()
    source = OsvAdvisorySource(session, ecosystem='crystal', base_url='https://api.osv.dev/v1')
    dep = make_dep('kemal', '1.4.0')

    session.post.return_value = response(status=503)
    with pytest.raises(NetworkFetchFailed) as exc:
        source.fetch(dep)
    assert 'HTTP 503' in str(exc.value)

    session.post.side_effect = requests.ConnectionError('connection refused')
    with pytest.raises(NetworkFetchFailed):
        source.fetch(dep)

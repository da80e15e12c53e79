import json
from datetime import datetime
from datetime import timezone

import pytest

from lockaudit.core.errors import NetworkFetchFailed
from lockaudit.models.advisory import Advisory
from lockaudit.models.advisory import AdvisorySet
from lockaudit.services.advisory_cache import AdvisoryCache


def advisory_set(ecosystem='crystal', *ids):
    return AdvisorySet(
        ecosystem=ecosystem,
        fetched_at=datetime(2024, 5, 1, tzinfo=timezone.utc),
        packages={
            'radix': [Advisory(id=i, package='radix', ranges=['<1.0.0'], severity='medium') for i in ids],
        },
    )


def test_store_persists_and_reloads(tmp_path):
    cache = AdvisoryCache(tmp_path)
    cache.store(advisory_set('crystal', 'A-1'))

    path = tmp_path / 'advisories-crystal.json'
    assert path.exists()
    assert json.loads(path.read_text())['ecosystem'] == 'crystal'

    reloaded = AdvisoryCache(tmp_path).get('crystal')
    assert [a.id for a in reloaded.for_package('radix')] == ['A-1']
    assert reloaded.fetched_at == datetime(2024, 5, 1, tzinfo=timezone.utc)


def test_store_leaves_no_temporary_files(tmp_path):
    cache = AdvisoryCache(tmp_path)
    cache.store(advisory_set('crystal', 'A-1'))
    cache.store(advisory_set('crystal', 'A-2'))
    assert sorted(p.name for p in tmp_path.iterdir()) == ['advisories-crystal.json']


def test_missing_and_unreadable_cache(tmp_path):
    cache = AdvisoryCache(tmp_path)
    assert cache.get('crystal') is None
    assert not cache.has('crystal')

    (tmp_path / 'advisories-crystal.json').write_text('{not json')
    assert AdvisoryCache(tmp_path).get('crystal') is None


def test_ecosystems_are_independent(tmp_path):
    cache = AdvisoryCache(tmp_path)
    cache.store(advisory_set('crystal', 'A-1'))
    cache.store(advisory_set('other', 'B-1'))
    cache.clear('other')

    assert cache.has('crystal')
    assert not cache.has('other')
    assert not (tmp_path / 'advisories-other.json').exists()


def test_refresh_replaces_wholesale(tmp_path):
    cache = AdvisoryCache(tmp_path)
    cache.store(advisory_set('crystal', 'A-1', 'A-2'))

    cache.refresh('crystal', lambda: advisory_set('crystal', 'A-3'))

    assert [a.id for a in cache.get('crystal').for_package('radix')] == ['A-3']


def test_failed_refresh_keeps_previous_set(tmp_path):
    cache = AdvisoryCache(tmp_path)
    previous = advisory_set('crystal', 'A-1')
    cache.store(previous)

    def fetch():
        raise NetworkFetchFailed('offline')

    with pytest.raises(NetworkFetchFailed):
        cache.refresh('crystal', fetch)
    assert cache.get('crystal') == previous
    assert AdvisoryCache(tmp_path).get('crystal') == previous

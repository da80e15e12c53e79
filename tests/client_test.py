import requests_cache

from lockaudit.core.client import get_http_client


def test_get_http_client_returns_cached_session(tmp_path):
    """Test get_http_client returns a requests-cache session."""
    session = get_http_client(cache_name=tmp_path / 'http' / 'db.sqlite3')
    assert isinstance(session, requests_cache.CachedSession)
    assert callable(session.post)
    assert (tmp_path / 'http').is_dir()


def test_get_http_client_caches_post(tmp_path):
    """OSV queries are POSTs, so they must be cacheable."""
    session = get_http_client(cache_name=tmp_path / 'db.sqlite3', expire_after=60)
    assert 'POST' in session.settings.allowable_methods
    assert session.settings.expire_after.total_seconds() == 60


def test_get_http_client_has_adapters(tmp_path):
    """Test session has http and https adapters mounted."""
    session = get_http_client(cache_name=tmp_path / 'db.sqlite3')
    assert 'https://' in session.adapters
    assert 'http://' in session.adapters


def test_get_http_client_does_not_retry(tmp_path):
    """Failed lookups fall back to the advisory cache instead of retrying."""
    session = get_http_client(cache_name=tmp_path / 'db.sqlite3', pool_size=4)
    adapter = session.get_adapter('https://api.osv.dev/v1/query')
    assert adapter.max_retries.total == 0
    assert adapter._pool_maxsize == 4

from datetime import timedelta
from pathlib import Path

import requests_cache
import structlog
from requests.adapters import HTTPAdapter

logger = structlog.get_logger('client')


def get_http_client(
    cache_name: str | Path = '.lockaudit/http-cache/db.sqlite3',
    expire_after: int = 3600,
    pool_size: int = 16,
) -> requests_cache.CachedSession:
    """
    Returns a requests session with HTTP caching and connection pooling.

    Failed requests are never retried here; the advisory source falls back
    to the advisory cache and leaves retry decisions to the caller.

    OSV queries are POST requests, so POST is added to the cacheable methods;
    the request body is part of the cache key.
    """
    cache_path = Path(cache_name)
    cache_path.parent.mkdir(parents=True, exist_ok=True)

    session = requests_cache.CachedSession(
        cache_name=str(cache_path),
        backend='sqlite',
        expire_after=timedelta(seconds=expire_after),
        allowable_codes=[200],
        allowable_methods=['GET', 'POST'],
    )

    def logging_hook(response, *args, **kwargs):
        if getattr(response, '_logged', False):
            return
        response._logged = True

        is_cached = getattr(response, 'from_cache', False)
        log_kwargs = {
            'method': response.request.method,
            'url': response.url,
            'status': response.status_code,
            'content_length': len(response.content) if response.content else 0,
            'elapsed': f"{response.elapsed.total_seconds():.3f}s",
            'cached': is_cached,
        }
        if is_cached:
            logger.debug('HTTP Request', _style='dim', **log_kwargs)
        else:
            logger.debug('HTTP Request', **log_kwargs)
    session.hooks['response'].append(logging_hook)

    adapter = HTTPAdapter(
        pool_connections=pool_size,
        pool_maxsize=pool_size,
        max_retries=0,
    )

    session.mount('https://', adapter)
    session.mount('http://', adapter)

    logger.debug(
        'Initialized Cached HTTP Client',
        cache_name=str(cache_path),
        expire_after=expire_after,
    )

    return session

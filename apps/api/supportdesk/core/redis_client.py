"""Shared Redis connection for the TTL cache and rate limiter.

Redis is optional: with ``REDIS_URL`` unset (or ``memory://``) every caller
falls back to process-local state.
"""

from __future__ import annotations

from supportdesk.core.config import settings

REDIS_DISABLED_URL = "memory://"
REDIS_HEALTH_CHECK_SECONDS = 30

_client = None


def get_redis_url() -> str | None:
    url = (settings.REDIS_URL or "").strip()
    if not url or url.lower() == REDIS_DISABLED_URL:
        return None
    return url


def get_sync_redis_client():
    """Lazily build one pooled client per process; None when Redis is off."""
    url = get_redis_url()
    if not url:
        return None

    global _client
    if _client is None:
        import redis

        pool = redis.ConnectionPool.from_url(
            url,
            max_connections=max(1, settings.REDIS_MAX_CONNECTIONS),
            socket_connect_timeout=settings.REDIS_TIMEOUT_SECONDS,
            socket_timeout=settings.REDIS_TIMEOUT_SECONDS,
            health_check_interval=REDIS_HEALTH_CHECK_SECONDS,
            retry_on_timeout=True,
            decode_responses=True,
        )
        _client = redis.Redis(connection_pool=pool)
    return _client


def reset_redis_client() -> None:
    """Drop the cached client so the next call re-reads settings."""
    global _client
    _client = None

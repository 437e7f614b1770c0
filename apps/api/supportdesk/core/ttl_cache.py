"""Time-boxed key/value cache.

Setup codes and similar short-lived tokens go through this interface.
``InMemoryTTLCache`` only works inside one process; deployments running more
than one API or worker process must configure ``REDIS_URL`` so the Redis
implementation is used instead.
"""

from __future__ import annotations

import threading
import time
from typing import Callable, Protocol

from supportdesk.core.redis_client import get_sync_redis_client


class TTLCache(Protocol):
    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store value under key for ttl_seconds."""

    def get(self, key: str) -> str | None:
        """Return the live value for key, if any."""

    def pop(self, key: str) -> str | None:
        """Return and remove the live value for key (single use)."""

    def delete(self, key: str) -> None:
        """Remove key if present."""


class InMemoryTTLCache:
    """Process-local TTL cache with lazy eviction."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._items: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def _evict_expired(self, now: float) -> None:
        expired = [key for key, (_, expires_at) in self._items.items() if expires_at <= now]
        for key in expired:
            del self._items[key]

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            now = self._clock()
            self._evict_expired(now)
            self._items[key] = (value, now + ttl_seconds)

    def get(self, key: str) -> str | None:
        with self._lock:
            item = self._items.get(key)
            if not item:
                return None
            value, expires_at = item
            if expires_at <= self._clock():
                del self._items[key]
                return None
            return value

    def pop(self, key: str) -> str | None:
        with self._lock:
            item = self._items.pop(key, None)
            if not item:
                return None
            value, expires_at = item
            if expires_at <= self._clock():
                return None
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)


class RedisTTLCache:
    """Shared TTL cache backed by Redis (safe across processes)."""

    def __init__(self, client, prefix: str = "supportdesk:"):
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def set(self, key: str, value: str, ttl_seconds: int) -> None:
        self._client.set(self._key(key), value, ex=ttl_seconds)

    def get(self, key: str) -> str | None:
        value = self._client.get(self._key(key))
        return _as_str(value)

    def pop(self, key: str) -> str | None:
        # GETDEL keeps single-use reads atomic across processes
        value = self._client.getdel(self._key(key))
        return _as_str(value)

    def delete(self, key: str) -> None:
        self._client.delete(self._key(key))


def _as_str(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


_cache: TTLCache | None = None


def get_ttl_cache() -> TTLCache:
    """Return the process cache, preferring Redis when configured."""
    global _cache
    if _cache is None:
        client = get_sync_redis_client()
        _cache = RedisTTLCache(client) if client is not None else InMemoryTTLCache()
    return _cache


def set_ttl_cache(cache: TTLCache | None) -> None:
    """Override the process cache (tests, custom deployments)."""
    global _cache
    _cache = cache

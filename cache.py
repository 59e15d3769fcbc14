"""
cache.py
────────
Cache keys and cache stores for rendered pages.

Keys
────
``cache_key(url)`` is ``"prerender:" + sha256(url)``.  The URL is hashed
exactly as received: no reordering of query parameters, no trailing-slash or
case folding.  Two URLs that differ by one character are two entries.

Stores
──────
Every store speaks the same small async protocol (``CacheStore``):

  • ``get(key)``                 markup or ``None``.  Never raises.
  • ``put(key, value, ttl)``     ``True`` on success.  Never raises.
  • ``close()``                  release the backend.

Three implementations:

  • ``RedisCacheStore``   live backend, expiry enforced by Redis ``SET EX``.
  • ``MemoryCacheStore``  in-process TTL + LRU store (``memory://``).
  • ``NullCacheStore``    stores nothing, every read is a miss.

``connect_cache_store`` chooses one of them once, at startup.  If Redis does
not answer the ``PING`` probe the service runs with ``NullCacheStore`` for
its whole lifetime; there is no reconnect loop.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from collections import OrderedDict
from threading import Lock
from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol
from urllib.parse import urlparse

from redis.exceptions import RedisError

from config import MEMORY_CACHE_MAXSIZE, memory_cache_maxsize
from logging_config import get_logger

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = get_logger(__name__)

KEY_PREFIX           = "prerender:"
REDIS_SOCKET_TIMEOUT = 5.0


def cache_key(url: str) -> str:
    """Namespaced SHA-256 hex digest of ``url``."""
    return KEY_PREFIX + hashlib.sha256(url.encode("utf-8")).hexdigest()


class CacheStore(Protocol):
    name: str

    async def get(self, key: str) -> Optional[str]: ...

    async def put(self, key: str, value: str, ttl_seconds: int) -> bool: ...

    async def close(self) -> None: ...


# ──────────────────────────────────────────────────────────────────────────────
# Null store
# ──────────────────────────────────────────────────────────────────────────────

class NullCacheStore:
    """Used when no backend is configured or reachable."""

    name = "none"

    async def get(self, key: str) -> Optional[str]:
        return None

    async def put(self, key: str, value: str, ttl_seconds: int) -> bool:
        return True

    async def close(self) -> None:
        return None


# ──────────────────────────────────────────────────────────────────────────────
# In-process store
# ──────────────────────────────────────────────────────────────────────────────

class MemoryCacheStore:
    """
    TTL-aware LRU store living in the server process.

    Each entry carries its own expiry (the route's TTL).  Expired entries
    are dropped when they are read; the least-recently-used entry is evicted
    when ``maxsize`` is exceeded.  ``clock`` must be monotonic and is
    injectable so expiry can be driven from tests.
    """

    name = "memory"

    def __init__(
        self,
        maxsize: int = MEMORY_CACHE_MAXSIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if maxsize < 1:
            raise ValueError("maxsize must be >= 1")
        self._maxsize = maxsize
        self._clock   = clock
        self._store: OrderedDict[str, tuple[str, float]] = OrderedDict()
        self._lock    = Lock()

    async def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if self._clock() >= expires_at:
                del self._store[key]
                return None
            self._store.move_to_end(key)
            return value

    async def put(self, key: str, value: str, ttl_seconds: int) -> bool:
        expires_at = self._clock() + ttl_seconds
        with self._lock:
            if key in self._store:
                self._store.move_to_end(key)
            self._store[key] = (value, expires_at)
            while len(self._store) > self._maxsize:
                self._store.popitem(last=False)
        return True

    async def close(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._store


# ──────────────────────────────────────────────────────────────────────────────
# Redis store
# ──────────────────────────────────────────────────────────────────────────────

_BACKEND_ERRORS = (RedisError, OSError, asyncio.TimeoutError)


class RedisCacheStore:
    """Rendered markup in Redis, one string key per URL, expiry via ``EX``."""

    name = "redis"

    def __init__(self, client: "Redis") -> None:
        self._client = client

    async def get(self, key: str) -> Optional[str]:
        try:
            value = await self._client.get(key)
        except _BACKEND_ERRORS as exc:
            logger.warning("cache_read_failed", key=key, error=str(exc))
            return None
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    async def put(self, key: str, value: str, ttl_seconds: int) -> bool:
        try:
            await self._client.set(key, value, ex=ttl_seconds)
        except _BACKEND_ERRORS as exc:
            logger.warning("cache_write_failed", key=key, ttl=ttl_seconds, error=str(exc))
            return False
        return True

    async def close(self) -> None:
        try:
            await self._client.aclose()
        except _BACKEND_ERRORS as exc:
            logger.warning("cache_close_failed", error=str(exc))


def _redis_client(cache_url: str) -> "Redis":
    from redis.asyncio import Redis

    return Redis.from_url(
        cache_url,
        decode_responses=True,
        socket_timeout=REDIS_SOCKET_TIMEOUT,
        socket_connect_timeout=REDIS_SOCKET_TIMEOUT,
    )


def _masked(cache_url: str) -> str:
    parsed = urlparse(cache_url)
    host = parsed.hostname or "localhost"
    port = f":{parsed.port}" if parsed.port else ""
    return f"{parsed.scheme}://{host}{port}{parsed.path}"


# ──────────────────────────────────────────────────────────────────────────────
# Startup selection
# ──────────────────────────────────────────────────────────────────────────────

async def connect_cache_store(
    cache_url: str,
    *,
    client_factory: Optional[Callable[[str], Any]] = None,
) -> CacheStore:
    """
    Pick the cache store for this process.

    Never raises for an unreachable backend: the failure is logged and the
    service carries on with ``NullCacheStore``.  A malformed ``memory://``
    URL raises ``ConfigError`` like any other bad setting.
    """
    if not cache_url:
        logger.info("cache_disabled", reason="no cache url configured")
        return NullCacheStore()

    maxsize = memory_cache_maxsize(cache_url)
    if maxsize is not None:
        logger.info("cache_connected", backend="memory", maxsize=maxsize)
        return MemoryCacheStore(maxsize=maxsize)

    factory = client_factory or _redis_client
    client = None
    try:
        client = factory(cache_url)
        await client.ping()
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "cache_unavailable",
            target=_masked(cache_url),
            error=str(exc),
            detail="running without cache",
        )
        if client is not None:
            try:
                await client.aclose()
            except Exception as close_exc:  # noqa: BLE001
                logger.debug("cache_close_failed", error=str(close_exc))
        return NullCacheStore()

    logger.info("cache_connected", backend="redis", target=_masked(cache_url))
    return RedisCacheStore(client)

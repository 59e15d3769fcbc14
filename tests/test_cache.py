from unittest.mock import AsyncMock, MagicMock

import pytest
from fakeredis import aioredis as fakeredis_aioredis
from redis.exceptions import ConnectionError as RedisConnectionError

from config import ConfigError
from cache import (
    KEY_PREFIX,
    MemoryCacheStore,
    NullCacheStore,
    RedisCacheStore,
    cache_key,
    connect_cache_store,
)


class TestCacheKey:
    def test_deterministic(self):
        assert cache_key("https://origin.test/about") == cache_key("https://origin.test/about")

    def test_namespaced_sha256_hex(self):
        key = cache_key("https://origin.test/about")
        assert key.startswith(KEY_PREFIX)
        digest = key[len(KEY_PREFIX):]
        assert len(digest) == 64
        int(digest, 16)

    def test_known_digest(self):
        assert cache_key("") == (
            "prerender:e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
        )

    @pytest.mark.parametrize(
        "other",
        [
            "https://origin.test/about/",
            "https://origin.test/About",
            "https://origin.test/about?b=2&a=1",
        ],
    )
    def test_no_normalisation(self, other):
        base = "https://origin.test/about?a=1&b=2"
        assert cache_key(base) != cache_key(other)


class TestNullCacheStore:
    async def test_put_reports_success_but_stores_nothing(self):
        store = NullCacheStore()
        assert await store.put("k", "<html></html>", 60) is True
        assert await store.get("k") is None

    async def test_close_is_noop(self):
        await NullCacheStore().close()


class TestMemoryCacheStore:
    async def test_get_missing(self, clock):
        assert await MemoryCacheStore(clock=clock).get("nope") is None

    async def test_entry_expires_after_ttl(self, clock):
        store = MemoryCacheStore(clock=clock)
        await store.put("k", "v", 60)

        clock.advance(59)
        assert await store.get("k") == "v"

        clock.advance(1)
        assert await store.get("k") is None
        assert "k" not in store

    async def test_each_entry_keeps_its_own_ttl(self, clock):
        store = MemoryCacheStore(clock=clock)
        await store.put("short", "s", 10)
        await store.put("long", "l", 100)

        clock.advance(50)
        assert await store.get("short") is None
        assert await store.get("long") == "l"

    async def test_overwrite_resets_expiry(self, clock):
        store = MemoryCacheStore(clock=clock)
        await store.put("k", "old", 10)
        clock.advance(5)
        await store.put("k", "new", 10)
        clock.advance(8)
        assert await store.get("k") == "new"

    async def test_lru_eviction(self, clock):
        store = MemoryCacheStore(maxsize=2, clock=clock)
        await store.put("a", "1", 60)
        await store.put("b", "2", 60)
        await store.get("a")
        await store.put("c", "3", 60)

        assert len(store) == 2
        assert await store.get("b") is None
        assert await store.get("a") == "1"
        assert await store.get("c") == "3"

    async def test_size_and_membership_hold_the_lock(self, clock):
        store = MemoryCacheStore(clock=clock)
        await store.put("k", "v", 60)
        store._lock = MagicMock()

        assert len(store) == 1
        assert "k" in store
        assert store._lock.__enter__.call_count == 2
        assert store._lock.__exit__.call_count == 2

    def test_rejects_zero_maxsize(self):
        with pytest.raises(ValueError):
            MemoryCacheStore(maxsize=0)


class TestRedisCacheStore:
    @pytest.fixture
    async def client(self):
        client = fakeredis_aioredis.FakeRedis(decode_responses=True)
        yield client
        await client.flushall()

    async def test_put_then_get(self, client):
        store = RedisCacheStore(client)
        assert await store.put("prerender:abc", "<html>x</html>", 3600) is True
        assert await store.get("prerender:abc") == "<html>x</html>"

    async def test_put_sets_expiry(self, client):
        store = RedisCacheStore(client)
        await store.put("prerender:abc", "<html>x</html>", 86400)
        ttl = await client.ttl("prerender:abc")
        assert 86390 < ttl <= 86400

    async def test_missing_key_is_none(self, client):
        assert await RedisCacheStore(client).get("prerender:missing") is None

    async def test_read_failure_is_a_miss(self):
        client = AsyncMock()
        client.get.side_effect = RedisConnectionError("connection reset")
        assert await RedisCacheStore(client).get("k") is None

    async def test_write_failure_is_reported_not_raised(self):
        client = AsyncMock()
        client.set.side_effect = RedisConnectionError("connection reset")
        assert await RedisCacheStore(client).put("k", "v", 60) is False

    async def test_bytes_are_decoded(self):
        client = AsyncMock()
        client.get.return_value = "<p>é</p>".encode("utf-8")
        assert await RedisCacheStore(client).get("k") == "<p>é</p>"


class TestConnectCacheStore:
    async def test_empty_url_selects_null_store(self):
        assert isinstance(await connect_cache_store(""), NullCacheStore)

    async def test_memory_url(self):
        store = await connect_cache_store("memory://?maxsize=3")
        assert isinstance(store, MemoryCacheStore)
        assert store._maxsize == 3

    async def test_memory_url_default_maxsize(self):
        store = await connect_cache_store("memory://")
        assert isinstance(store, MemoryCacheStore)
        assert store._maxsize == 500

    @pytest.mark.parametrize("url", ["memory://?maxsize=abc", "memory://?maxsize=0"])
    async def test_bad_memory_maxsize_is_a_config_error(self, url):
        with pytest.raises(ConfigError, match="REDIS_URL maxsize"):
            await connect_cache_store(url)

    async def test_reachable_redis(self):
        fake = fakeredis_aioredis.FakeRedis(decode_responses=True)
        store = await connect_cache_store("redis://cache:6379/0", client_factory=lambda url: fake)
        assert isinstance(store, RedisCacheStore)
        assert store.name == "redis"

    async def test_failed_probe_falls_back_to_null_store(self):
        client = AsyncMock()
        client.ping.side_effect = RedisConnectionError("refused")

        store = await connect_cache_store("redis://cache:6379/0", client_factory=lambda url: client)

        assert isinstance(store, NullCacheStore)
        client.aclose.assert_awaited_once()

    async def test_bad_url_falls_back_to_null_store(self):
        def factory(url):
            raise ValueError("Redis URL must specify one of the following schemes")

        store = await connect_cache_store("nonsense://", client_factory=factory)
        assert isinstance(store, NullCacheStore)

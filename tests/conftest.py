import os

import pytest

TEST_ENV = {
    "SPA_URL": "https://origin.test",
    "REDIS_URL": "",
    "RENDER_SHARED_BROWSER": "false",
    "LOG_LEVEL": "WARNING",
}

for key, value in TEST_ENV.items():
    os.environ[key] = value

from cache import MemoryCacheStore
from config import PrerenderConfig, get_config
from renderer import RenderFailed, Rendered

ORIGIN = "https://origin.test"


class FakeClock:
    """Monotonic clock driven by the test."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRenderer:
    """Stands in for the Playwright renderer; records every render call."""

    def __init__(self, fail: str | None = None) -> None:
        self.fail = fail
        self.calls: list[tuple[str, float]] = []
        self.started = False
        self.closed = False

    @property
    def shared(self) -> bool:
        return False

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True

    async def render(self, url: str, timeout: float):
        self.calls.append((url, timeout))
        if self.fail is not None:
            return RenderFailed(self.fail)
        return Rendered(f"<html><body>{url} #{len(self.calls)}</body></html>")


class RecordingCacheStore(MemoryCacheStore):
    """Memory store that also remembers the TTL of every write."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.puts: list[tuple[str, int]] = []

    async def put(self, key: str, value: str, ttl_seconds: int) -> bool:
        self.puts.append((key, ttl_seconds))
        return await super().put(key, value, ttl_seconds)


@pytest.fixture(scope="session", autouse=True)
def _reset_config():
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def config() -> PrerenderConfig:
    return PrerenderConfig(origin_url=ORIGIN, cache_url="", log_level="WARNING")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> RecordingCacheStore:
    return RecordingCacheStore(clock=clock)


@pytest.fixture
def renderer() -> FakeRenderer:
    return FakeRenderer()

"""
dispatcher.py
─────────────
Per-request prerender flow.

    RECEIVED → POLICY_CHECKED ─┬─ SKIPPED                          (404)
                               └─ CACHE_CHECKED ─┬─ HIT            (200)
                                                 └─ MISS → RENDERING ─┬─ CACHE_WRITTEN   (200)
                                                                      └─ FALLBACK_SERVED (500)

The dispatcher never raises.  Cache and renderer failures are absorbed by
their own modules; anything unexpected that still reaches this layer is
logged and answered with the redirect fallback page.

Concurrent misses for the same URL are not coalesced: each one renders
and writes the key, and the last write wins.
"""

from __future__ import annotations

import html
import time
from typing import TYPE_CHECKING

from cache import cache_key
from logging_config import get_logger
from models import CacheStatus, DispatchResult, DispatchState, RenderRequest
from policy import Cacheable
from renderer import Rendered

if TYPE_CHECKING:
    from cache import CacheStore
    from config import PrerenderConfig
    from policy import RoutePolicy
    from renderer import Renderer

logger = get_logger(__name__)

NOT_FOUND_BODY = "Not found"

_FALLBACK_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta charset="UTF-8">
    <title>Redirecting...</title>
  </head>
  <body>
    <script>window.location.href = '{js_url}';</script>
    <noscript><a href="{href}">{href}</a></noscript>
  </body>
</html>
"""


def _js_string(value: str) -> str:
    """Escape ``value`` for a single-quoted JS literal inside a <script>."""
    return (
        value.replace("\\", "\\\\")
             .replace("'", "\\'")
             .replace("\n", "\\n")
             .replace("\r", "\\r")
             .replace("<", "\\x3c")
    )


def fallback_page(url: str) -> str:
    """Minimal document that sends a browser on to the live page."""
    return _FALLBACK_TEMPLATE.format(js_url=_js_string(url), href=html.escape(url))


class Dispatcher:
    def __init__(
        self,
        config:      "PrerenderConfig",
        policy:      "RoutePolicy",
        cache_store: "CacheStore",
        renderer:    "Renderer",
    ) -> None:
        self._origin      = config.origin_url.rstrip("/")
        self._timeout     = config.navigation_timeout
        self._policy      = policy
        self._cache_store = cache_store
        self._renderer    = renderer

    @property
    def cache_store(self) -> "CacheStore":
        return self._cache_store

    def build_render_request(self, original_url: str) -> RenderRequest:
        """``original_url`` is the request path plus query string."""
        return RenderRequest(original_url=original_url, full_url=self._origin + original_url)

    async def dispatch(self, path: str, original_url: str) -> DispatchResult:
        request = self.build_render_request(original_url)
        url = request.full_url
        logger.info("prerender_start", url=url, path=path)

        decision = self._policy.resolve(path)
        if not isinstance(decision, Cacheable):
            logger.info("prerender_skipped", path=path)
            return DispatchResult(
                state=DispatchState.SKIPPED,
                status_code=404,
                body=NOT_FOUND_BODY,
            )

        try:
            return await self._cached_or_render(url, decision.ttl_seconds)
        except Exception as exc:  # noqa: BLE001
            logger.exception("prerender_unexpected_error", url=url, error=str(exc))
            return self._fallback(url)

    async def _cached_or_render(self, url: str, ttl: int) -> DispatchResult:
        key = cache_key(url)

        cached = await self._cache_store.get(key)
        if cached is not None:
            logger.info("cache_hit", url=url, backend=self._cache_store.name)
            return DispatchResult(
                state=DispatchState.HIT,
                status_code=200,
                body=cached,
                cache_status=CacheStatus.HIT,
            )

        logger.info("cache_miss", url=url, backend=self._cache_store.name)
        started = time.monotonic()
        result = await self._renderer.render(url, self._timeout)

        if not isinstance(result, Rendered):
            logger.error(
                "prerender_failed",
                url=url,
                cause=result.cause,
                elapsed_ms=round((time.monotonic() - started) * 1000),
            )
            return self._fallback(url)

        stored = await self._cache_store.put(key, result.markup, ttl)
        logger.info("cache_write", url=url, ttl=ttl, stored=stored, backend=self._cache_store.name)
        return DispatchResult(
            state=DispatchState.CACHE_WRITTEN,
            status_code=200,
            body=result.markup,
            cache_status=CacheStatus.MISS,
        )

    @staticmethod
    def _fallback(url: str) -> DispatchResult:
        return DispatchResult(
            state=DispatchState.FALLBACK_SERVED,
            status_code=500,
            body=fallback_page(url),
            cache_status=CacheStatus.MISS,
        )

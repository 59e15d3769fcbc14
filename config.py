"""
config.py
─────────
Startup configuration for the prerender service.

Everything is read from the environment exactly once and frozen into a
``PrerenderConfig`` value.  Components receive the config (or the slice of
it they need) through their constructors; nothing re-reads ``os.environ``
while serving requests.

Environment variables
─────────────────────
  SPA_URL                 origin the pages are rendered from
  HOST / PORT             listen address (default 0.0.0.0:3000)
  REDIS_URL               cache backend; empty disables caching,
                          ``memory://`` selects the in-process store
  VIEWPORT_WIDTH/HEIGHT   browser viewport (default 1200x800)
  RENDER_TIMEOUT_MS       navigation timeout (default 30000)
  RENDER_SETTLE_MS        extra wait after network idle (default 1000)
  RENDER_SHARED_BROWSER   reuse one Chromium, one context per render
  PRERENDER_USER_AGENT    user agent presented to the origin
  CACHE_TTL_DEFAULT       TTL for ordinary routes (default 3600)
  CACHE_TTL_STATIC        TTL for static routes (default 86400)
  SKIP_ROUTES             comma-separated prefixes never prerendered
  STATIC_ROUTES           comma-separated paths on the static tier
  LOG_LEVEL               root log level (default INFO)
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Mapping, Optional
from urllib.parse import parse_qs, urlparse

DEFAULT_ORIGIN_URL = "https://yourdomain.com"
DEFAULT_CACHE_URL  = "redis://localhost:6379"
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (compatible; Prerender/+https://github.com/prerender/prerender)"
)

TTL_DEFAULT = 3600    # 1 hour
TTL_STATIC  = 86400   # 24 hours

MEMORY_CACHE_SCHEME  = "memory"
MEMORY_CACHE_MAXSIZE = 500

DEFAULT_SKIP_PREFIXES = ("/api/", "/admin/", "/cdn-cgi/")
DEFAULT_STATIC_PATHS  = ("/", "/about", "/contact", "/products")

_TRUTHY = ("1", "true", "yes", "on")


class ConfigError(ValueError):
    """A setting could not be parsed."""


@dataclass(frozen=True)
class PrerenderConfig:
    origin_url:         str              = DEFAULT_ORIGIN_URL
    host:               str              = "0.0.0.0"
    port:               int              = 3000
    cache_url:          str              = DEFAULT_CACHE_URL
    viewport_width:     int              = 1200
    viewport_height:    int              = 800
    navigation_timeout: float            = 30.0
    settle_delay:       float            = 1.0
    user_agent:         str              = DEFAULT_USER_AGENT
    default_ttl:        int              = TTL_DEFAULT
    static_ttl:         int              = TTL_STATIC
    skip_prefixes:      tuple[str, ...]  = DEFAULT_SKIP_PREFIXES
    static_paths:       tuple[str, ...]  = DEFAULT_STATIC_PATHS
    shared_browser:     bool             = False
    log_level:          str              = "INFO"

    @property
    def viewport(self) -> dict[str, int]:
        return {"width": self.viewport_width, "height": self.viewport_height}

    @property
    def cache_enabled(self) -> bool:
        return bool(self.cache_url)


# ──────────────────────────────────────────────────────────────────────────────
# Parsing helpers
# ──────────────────────────────────────────────────────────────────────────────

def _int(env: Mapping[str, str], name: str, default: int, minimum: int = 0) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from exc
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _list(env: Mapping[str, str], name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = env.get(name)
    if raw is None:
        return default
    return tuple(item.strip() for item in raw.split(",") if item.strip())


def _bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUTHY


def memory_cache_maxsize(cache_url: str) -> Optional[int]:
    """``maxsize`` of a ``memory://`` cache URL, ``None`` for any other backend."""
    parsed = urlparse(cache_url)
    if parsed.scheme != MEMORY_CACHE_SCHEME:
        return None
    params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
    try:
        return _int(params, "maxsize", MEMORY_CACHE_MAXSIZE, minimum=1)
    except ConfigError as exc:
        raise ConfigError(f"REDIS_URL {exc}") from exc


def load_config(env: Optional[Mapping[str, str]] = None) -> PrerenderConfig:
    """Build a ``PrerenderConfig`` from ``env`` (defaults to ``os.environ``)."""
    if env is None:
        env = os.environ

    cache_url = env.get("REDIS_URL", DEFAULT_CACHE_URL).strip()
    memory_cache_maxsize(cache_url)

    return PrerenderConfig(
        origin_url         = (env.get("SPA_URL", "").strip() or DEFAULT_ORIGIN_URL).rstrip("/"),
        host               = env.get("HOST", "").strip() or "0.0.0.0",
        port               = _int(env, "PORT", 3000, minimum=1),
        cache_url          = cache_url,
        viewport_width     = _int(env, "VIEWPORT_WIDTH", 1200, minimum=1),
        viewport_height    = _int(env, "VIEWPORT_HEIGHT", 800, minimum=1),
        navigation_timeout = _int(env, "RENDER_TIMEOUT_MS", 30000, minimum=1) / 1000,
        settle_delay       = _int(env, "RENDER_SETTLE_MS", 1000) / 1000,
        user_agent         = env.get("PRERENDER_USER_AGENT", "").strip() or DEFAULT_USER_AGENT,
        default_ttl        = _int(env, "CACHE_TTL_DEFAULT", TTL_DEFAULT, minimum=1),
        static_ttl         = _int(env, "CACHE_TTL_STATIC", TTL_STATIC, minimum=1),
        skip_prefixes      = _list(env, "SKIP_ROUTES", DEFAULT_SKIP_PREFIXES),
        static_paths       = _list(env, "STATIC_ROUTES", DEFAULT_STATIC_PATHS),
        shared_browser     = _bool(env, "RENDER_SHARED_BROWSER"),
        log_level          = env.get("LOG_LEVEL", "").strip() or "INFO",
    )


@lru_cache(maxsize=1)
def get_config() -> PrerenderConfig:
    """Process-wide config, resolved on first use."""
    return load_config()

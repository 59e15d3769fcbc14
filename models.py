"""
models.py
─────────
Pydantic V2 value and response models for the prerender service.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

# Starlette appends "; charset=utf-8" to text/* media types
HTML_MEDIA_TYPE = "text/html"
CACHE_HEADER    = "X-Prerender-Cache"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────────────────────
# Prerender request / result
# ──────────────────────────────────────────────────────────────────────────────

class RenderRequest(BaseModel):
    """One inbound request: the origin-relative URL and the page to render."""

    model_config = ConfigDict(frozen=True)

    original_url: str
    full_url:     str


class DispatchState(str, Enum):
    SKIPPED         = "skipped"
    HIT             = "hit"
    CACHE_WRITTEN   = "cache_written"
    FALLBACK_SERVED = "fallback_served"


class CacheStatus(str, Enum):
    HIT  = "HIT"
    MISS = "MISS"


class DispatchResult(BaseModel):
    state:        DispatchState
    status_code:  int
    body:         str
    cache_status: Optional[CacheStatus] = None

    @property
    def headers(self) -> dict[str, str]:
        if self.cache_status is None:
            return {}
        return {CACHE_HEADER: self.cache_status.value}


# ──────────────────────────────────────────────────────────────────────────────
# /health
# ──────────────────────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status:    str      = "ok"
    timestamp: datetime = Field(default_factory=_utcnow)

    @field_serializer("timestamp")
    def serialize_timestamp(self, ts: datetime) -> str:
        return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

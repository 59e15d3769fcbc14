"""
policy.py
─────────
Route classification: should a path be prerendered, and for how long may
the result be cached?

Rules, first match wins:

  1. path starts with a skip prefix          → ``Skip``
  2. path is a static route (or route + "?") → ``Cacheable(static_ttl)``
  3. anything else                           → ``Cacheable(default_ttl)``

Resolution is pure string matching on the path; it does no I/O and gives
the same answer for the same path every time.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, Union

if TYPE_CHECKING:
    from config import PrerenderConfig


@dataclass(frozen=True)
class Skip:
    """Route is never prerendered nor cached."""


@dataclass(frozen=True)
class Cacheable:
    ttl_seconds: int


PolicyDecision = Union[Skip, Cacheable]

SKIP = Skip()


class RoutePolicy:
    def __init__(
        self,
        skip_prefixes: Iterable[str],
        static_paths:  Iterable[str],
        static_ttl:    int,
        default_ttl:   int,
    ) -> None:
        self._skip_prefixes = tuple(skip_prefixes)
        self._static_paths  = frozenset(static_paths)
        self._static        = Cacheable(static_ttl)
        self._default       = Cacheable(default_ttl)

    @classmethod
    def from_config(cls, config: "PrerenderConfig") -> "RoutePolicy":
        return cls(
            skip_prefixes=config.skip_prefixes,
            static_paths=config.static_paths,
            static_ttl=config.static_ttl,
            default_ttl=config.default_ttl,
        )

    def resolve(self, path: str) -> PolicyDecision:
        if path.startswith(self._skip_prefixes):
            return SKIP

        if path in self._static_paths:
            return self._static
        route, sep, _ = path.partition("?")
        if sep and route in self._static_paths:
            return self._static

        return self._default

from __future__ import annotations

import enum
import typing as t
from dataclasses import dataclass

from cellar._config import CacheConfig
from cellar._core.models import Request

__all__ = (
    "Strategy",
    "RouteRule",
    "RouteClassifier",
    "contains",
    "is_fetchable",
)

# Only these URL schemes can be served by the network capability.
FETCHABLE_SCHEME_PREFIX = "http"


class Strategy(str, enum.Enum):
    NETWORK_FIRST = "network-first"
    CACHE_FIRST = "cache-first"
    STALE_WHILE_REVALIDATE = "stale-while-revalidate"


@dataclass(frozen=True)
class RouteRule:
    match: t.Callable[[str], bool]
    strategy: Strategy


def contains(*markers: str) -> t.Callable[[str], bool]:
    """
    Build a predicate that is true when the URL contains any of the markers.

    This is plain substring containment over the full URL, so ``".js"`` matches
    ``https://example.com/app.js`` as well as ``https://example.com/file.json``.
    """

    def predicate(url: str) -> bool:
        return any(marker in url for marker in markers)

    return predicate


def is_fetchable(request: Request) -> bool:
    """
    Requests the cache must never see, such as ``chrome-extension:`` URLs or non-GET methods.
    """
    return request.url.startswith(FETCHABLE_SCHEME_PREFIX) and request.method.upper() == "GET"


class RouteClassifier:
    """
    Maps a request to a strategy using an ordered, first-match-wins rule list.

    Requests matching no rule use stale-while-revalidate for navigations and
    cache-first for everything else.
    """

    def __init__(self, rules: t.Iterable[RouteRule]) -> None:
        self.rules: t.Tuple[RouteRule, ...] = tuple(rules)

    @classmethod
    def from_config(cls, config: CacheConfig) -> "RouteClassifier":
        return cls(
            [
                RouteRule(match=contains(*config.network_first_routes), strategy=Strategy.NETWORK_FIRST),
                RouteRule(match=contains(*config.cache_first_routes), strategy=Strategy.CACHE_FIRST),
            ]
        )

    def classify(self, request: Request) -> Strategy:
        for rule in self.rules:
            if rule.match(request.url):
                return rule.strategy
        if request.is_navigation:
            return Strategy.STALE_WHILE_REVALIDATE
        return Strategy.CACHE_FIRST

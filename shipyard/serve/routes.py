"""
Route table and request classification.

Classification is pure: it maps a request path to exactly one of
api / staticAsset / fallback without touching the filesystem or network.
"""

from __future__ import annotations

import posixpath
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Iterator
from urllib.parse import unquote, urlsplit

from shipyard.errors import ConfigError


class RouteKind(Enum):
    """What a matched request is routed to."""

    API = "api"
    STATIC_ASSET = "staticAsset"
    FALLBACK = "fallback"

    @classmethod
    def parse(cls, value: str) -> "RouteKind":
        """Parse a config value; accepts api, staticAsset/static_asset/static, fallback."""
        key = str(value).replace("_", "").replace("-", "").lower()
        aliases = {
            "api": cls.API,
            "staticasset": cls.STATIC_ASSET,
            "static": cls.STATIC_ASSET,
            "fallback": cls.FALLBACK,
        }
        if key not in aliases:
            raise ValueError(
                f"unknown route kind {value!r} (expected api, staticAsset or fallback)"
            )
        return aliases[key]


@dataclass(frozen=True)
class RouteRule:
    """A prefix (segment-aligned) or exact path pattern."""

    pattern: str
    kind: RouteKind
    exact: bool = False

    def matches(self, path: str) -> bool:
        if self.exact:
            return path == self.pattern

        prefix = self.pattern.rstrip("/")
        if not prefix:
            return True
        return path == prefix or path.startswith(prefix + "/")


@dataclass(frozen=True)
class RouteMatch:
    """Result of classifying a request path."""

    kind: RouteKind
    rule: RouteRule
    path: str


def normalize_path(target: str) -> str:
    """Reduce a request target to a decoded, dot-segment-free absolute path.

    "/api/../about?x=1" -> "/about", "//assets/%61.js" -> "/assets/a.js"
    """
    if "://" in target.split("?", 1)[0]:
        # absolute-form target
        target = urlsplit(target).path
    path = unquote(target.split("?", 1)[0].split("#", 1)[0]) or "/"
    normalized = posixpath.normpath("/" + path.lstrip("/"))
    return "/" + normalized.lstrip("/")


class RouteTable:
    """Ordered route rules: api rules first, exactly one trailing fallback."""

    def __init__(self, rules: Iterable[RouteRule]):
        self._rules = tuple(rules)
        self._validate()

    def _validate(self) -> None:
        fallbacks = [i for i, r in enumerate(self._rules) if r.kind is RouteKind.FALLBACK]
        if len(fallbacks) != 1:
            raise ConfigError(
                f"Route table needs exactly one fallback rule, found {len(fallbacks)}"
            )
        if fallbacks[0] != len(self._rules) - 1:
            raise ConfigError("The fallback rule must be the last route")

        seen_other = False
        for rule in self._rules:
            if rule.kind is RouteKind.API:
                if seen_other:
                    raise ConfigError(
                        f"api route '{rule.pattern}' must come before all "
                        f"staticAsset and fallback routes"
                    )
            else:
                seen_other = True

    @property
    def rules(self) -> tuple[RouteRule, ...]:
        return self._rules

    @property
    def fallback(self) -> RouteRule:
        return self._rules[-1]

    def __iter__(self) -> Iterator[RouteRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    def __repr__(self) -> str:
        return f"RouteTable({list(self._rules)!r})"

    def classify(self, path: str) -> RouteMatch:
        """Classify an already-normalized path.

        The fallback rule is evaluated last and catches anything no other
        rule matched, so the result is always defined.
        """
        for rule in self._rules:
            if rule.matches(path):
                return RouteMatch(rule.kind, rule, path)
        return RouteMatch(RouteKind.FALLBACK, self.fallback, path)

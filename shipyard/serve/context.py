"""
Serving mode and immutable serving context.

The mode is read once at startup; request handling only ever sees the
resulting ServingContext.
"""

from __future__ import annotations

import importlib
import json
import os
import sys
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Mapping, Optional, Union
from urllib.parse import urlsplit

from shipyard.build.config import DEFAULT_FALLBACK_DOCUMENT, DEFAULT_PROXY_TIMEOUT, ServeSettings
from shipyard.errors import ConfigError
from shipyard.serve.routes import RouteTable

MODE_ENV_VAR = "SHIPYARD_MODE"

HeaderList = list[tuple[str, str]]
Headers = Union[HeaderList, Mapping[str, str]]
ApiHandler = Callable[[str, str, HeaderList, bytes], tuple[int, Headers, Union[bytes, str]]]


class Mode(Enum):
    DEVELOPMENT = "development"
    PRODUCTION = "production"

    @classmethod
    def parse(cls, value: str) -> "Mode":
        key = value.strip().lower()
        if key in ("development", "dev"):
            return cls.DEVELOPMENT
        if key in ("production", "prod"):
            return cls.PRODUCTION
        raise ConfigError(
            f"Unknown serving mode {value!r} (expected 'development' or 'production')"
        )


def mode_from_env(environ: Optional[Mapping[str, str]] = None) -> Mode:
    """Read SHIPYARD_MODE; unset or empty means production."""
    if environ is None:
        environ = os.environ
    raw = environ.get(MODE_ENV_VAR, "")
    if not raw.strip():
        return Mode.PRODUCTION
    return Mode.parse(raw)


def unconfigured_api_handler(
    method: str, target: str, headers: HeaderList, body: bytes
) -> tuple[int, HeaderList, bytes]:
    """Default API handler used when serve.api_handler is not set."""
    payload = json.dumps({"error": "no API handler configured"}).encode()
    return 503, [("Content-Type", "application/json")], payload


def load_api_handler(spec: Optional[str], search_path: Optional[Path] = None) -> ApiHandler:
    """Import an API handler from a "module:attribute" string.

    search_path (usually the project root) is put on sys.path so project
    modules resolve.
    """
    if not spec:
        return unconfigured_api_handler

    module_name, sep, attr = spec.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigError(f"serve.api_handler must look like 'module:attribute', got {spec!r}")

    if search_path is not None and str(search_path) not in sys.path:
        sys.path.insert(0, str(search_path))

    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigError(f"Cannot import API handler module {module_name!r}: {e}") from e

    handler = module
    for part in attr.split("."):
        handler = getattr(handler, part, None)
        if handler is None:
            raise ConfigError(f"API handler {spec!r} not found")

    if not callable(handler):
        raise ConfigError(f"API handler {spec!r} is not callable")
    return handler


@dataclass(frozen=True)
class ServingContext:
    """Runtime configuration for the router, fixed for the process lifetime."""

    mode: Mode
    api_handler: ApiHandler = unconfigured_api_handler
    static_root: Optional[Path] = None
    dev_proxy_target: Optional[str] = None
    fallback_document: str = DEFAULT_FALLBACK_DOCUMENT
    proxy_timeout: float = DEFAULT_PROXY_TIMEOUT

    def __post_init__(self) -> None:
        if self.mode is Mode.PRODUCTION and self.static_root is None:
            raise ConfigError(
                "Production mode needs a static root (serve.static_root or a publish section)"
            )
        if self.mode is Mode.DEVELOPMENT:
            if not self.dev_proxy_target:
                raise ConfigError("Development mode needs serve.dev_proxy_target")
            parts = urlsplit(self.dev_proxy_target)
            if parts.scheme not in ("http", "https") or not parts.netloc:
                raise ConfigError(
                    f"serve.dev_proxy_target must be an http(s) origin, got {self.dev_proxy_target!r}"
                )

    @property
    def is_development(self) -> bool:
        return self.mode is Mode.DEVELOPMENT


def build_context(
    settings: ServeSettings,
    mode: Mode,
    api_handler: Optional[ApiHandler] = None,
) -> ServingContext:
    return ServingContext(
        mode=mode,
        api_handler=api_handler or unconfigured_api_handler,
        static_root=settings.static_root,
        dev_proxy_target=settings.dev_proxy_target,
        fallback_document=settings.fallback_document,
        proxy_timeout=settings.proxy_timeout,
    )


def context_from_env(
    settings: ServeSettings,
    environ: Optional[Mapping[str, str]] = None,
    mode_override: Optional[str] = None,
    api_handler: Optional[ApiHandler] = None,
) -> ServingContext:
    """Mode switch: pick the mode once (override, else environment) and build the context."""
    mode = Mode.parse(mode_override) if mode_override else mode_from_env(environ)
    return build_context(settings, mode, api_handler)


def describe(context: ServingContext, routes: Optional[RouteTable] = None) -> list[str]:
    """Human-readable summary lines for startup logging."""
    lines = [f"Mode: {context.mode.value}"]
    if context.is_development:
        lines.append(f"Proxy: {context.dev_proxy_target} (timeout {context.proxy_timeout:g}s)")
    else:
        lines.append(f"Static root: {context.static_root}")
        lines.append(f"Fallback: {context.fallback_document}")
    for rule in routes or ():
        pattern = ("=" if rule.exact else "") + rule.pattern
        lines.append(f"Route: {pattern} -> {rule.kind.value}")
    return lines

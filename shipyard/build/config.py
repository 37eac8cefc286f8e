"""
Build configuration for shipyard.

Workspace graph dataclasses and shipyard.yaml loading.
"""

from __future__ import annotations

import os
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional

import yaml

from shipyard.core.utils import CACHE_DIRNAME, CONFIG_FILENAME, find_config
from shipyard.errors import ConfigError
from shipyard.serve.routes import RouteKind, RouteRule, RouteTable

__all__ = [
    "DEFAULT_OUTPUT_DIR",
    "DEFAULT_PORT",
    "DEFAULT_FALLBACK_DOCUMENT",
    "DEFAULT_PROXY_TIMEOUT",
    "DEFAULT_ROUTES",
    "Workspace",
    "WorkspaceGraph",
    "PublishSpec",
    "ServeSettings",
    "ProjectConfig",
    "BuildConfig",
    "load_config",
    "load_project",
    "parse_command",
]

# =============================================================================
# Constants
# =============================================================================

DEFAULT_OUTPUT_DIR = "dist"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000
DEFAULT_FALLBACK_DOCUMENT = "index.html"
DEFAULT_PROXY_TIMEOUT = 10.0

DEFAULT_ROUTES = (
    RouteRule("/api", RouteKind.API),
    RouteRule("/", RouteKind.FALLBACK),
)


# =============================================================================
# Data Classes
# =============================================================================


@dataclass(frozen=True)
class Workspace:
    """One independently buildable package."""

    name: str
    path: Path
    build_command: tuple[str, ...]
    output_dir: Path
    depends_on: frozenset[str] = frozenset()
    sources: tuple[Path, ...] = ()
    timeout: Optional[float] = None
    env: dict[str, str] = field(default_factory=dict, hash=False)

    def source_paths(self) -> list[Path]:
        """Directories/files whose contents feed the cache key and watcher."""
        if not self.sources:
            return [self.path]
        return [self.path / s for s in self.sources]


@dataclass(frozen=True)
class WorkspaceGraph:
    """Workspaces keyed by name, in declaration order. Read-only once built."""

    workspaces: Mapping[str, Workspace] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "workspaces", MappingProxyType(dict(self.workspaces)))

    @classmethod
    def from_workspaces(cls, workspaces: Iterable[Workspace]) -> "WorkspaceGraph":
        by_name: dict[str, Workspace] = {}
        for ws in workspaces:
            if ws.name in by_name:
                raise ConfigError(f"Duplicate workspace name: {ws.name}")
            by_name[ws.name] = ws
        return cls(by_name)

    def __iter__(self) -> Iterator[Workspace]:
        return iter(self.workspaces.values())

    def __len__(self) -> int:
        return len(self.workspaces)

    def __contains__(self, name: object) -> bool:
        return name in self.workspaces

    def __getitem__(self, name: str) -> Workspace:
        return self.workspaces[name]

    def names(self) -> list[str]:
        return list(self.workspaces)


@dataclass(frozen=True)
class PublishSpec:
    """Copy producer's output into the consumer's static-serving directory."""

    producer: str
    consumer: str
    destination: Path


@dataclass(frozen=True)
class ServeSettings:
    """Unified-origin server settings from the `serve:` section."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    static_root: Optional[Path] = None
    fallback_document: str = DEFAULT_FALLBACK_DOCUMENT
    dev_proxy_target: Optional[str] = None
    dev_command: Optional[tuple[str, ...]] = None
    dev_command_cwd: Optional[Path] = None
    proxy_timeout: float = DEFAULT_PROXY_TIMEOUT
    api_handler: Optional[str] = None
    routes: RouteTable = field(default_factory=lambda: RouteTable(DEFAULT_ROUTES))


@dataclass(frozen=True)
class ProjectConfig:
    """Everything loaded from one shipyard.yaml."""

    root: Path
    graph: WorkspaceGraph
    publish: Optional[PublishSpec] = None
    serve: ServeSettings = field(default_factory=ServeSettings)
    cache_dir: Optional[Path] = None

    @property
    def state_dir(self) -> Path:
        return self.cache_dir or (self.root / CACHE_DIRNAME)


@dataclass
class BuildConfig:
    """Configuration for a build run."""

    project: ProjectConfig
    dry_run: bool = False
    verbose: bool = False
    force: bool = False  # Rebuild even if sources are unchanged
    publish: bool = True
    jobs: Optional[int] = None


# =============================================================================
# Parsing
# =============================================================================


def parse_command(value: Any, where: str) -> tuple[str, ...]:
    """Accept either a shell-like string or a list of arguments."""
    if isinstance(value, str):
        argv = shlex.split(value)
    elif isinstance(value, list) and all(isinstance(v, (str, int, float)) for v in value):
        argv = [str(v) for v in value]
    else:
        raise ConfigError(f"{where}: command must be a string or a list of strings")

    if not argv:
        raise ConfigError(f"{where}: command is empty")
    return tuple(argv)


def _as_list(value: Any, where: str) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if isinstance(value, list) and all(isinstance(v, str) for v in value):
        return list(value)
    raise ConfigError(f"{where}: expected a string or a list of strings")


def _resolve_link_path(path: Path) -> Path:
    """Resolve all but the last component; a published static root is a symlink."""
    path = Path(os.path.normpath(path))
    return path.parent.resolve() / path.name


def _parse_workspace(name: str, data: Any, root: Path) -> Workspace:
    where = f"workspaces.{name}"
    if not isinstance(data, dict):
        raise ConfigError(f"{where}: expected a mapping")

    if "build" not in data:
        raise ConfigError(f"{where}: missing required 'build' command")

    path = (root / data.get("path", name)).resolve()
    output = data.get("output", DEFAULT_OUTPUT_DIR)

    timeout = data.get("timeout")
    if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
        raise ConfigError(f"{where}.timeout: expected a positive number of seconds")

    env = data.get("env") or {}
    if not isinstance(env, dict):
        raise ConfigError(f"{where}.env: expected a mapping")

    return Workspace(
        name=name,
        path=path,
        build_command=parse_command(data["build"], f"{where}.build"),
        output_dir=(path / output).resolve(),
        depends_on=frozenset(_as_list(data.get("depends_on"), f"{where}.depends_on")),
        sources=tuple(Path(s) for s in _as_list(data.get("sources"), f"{where}.sources")),
        timeout=float(timeout) if timeout is not None else None,
        env={str(k): str(v) for k, v in env.items()},
    )


def _parse_publish(data: Any, graph: WorkspaceGraph) -> Optional[PublishSpec]:
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ConfigError("publish: expected a mapping")

    producer = data.get("producer")
    consumer = data.get("consumer")
    for key, value in (("producer", producer), ("consumer", consumer)):
        if not value:
            raise ConfigError(f"publish: missing required '{key}'")
        if value not in graph:
            raise ConfigError(f"publish.{key}: unknown workspace '{value}'")

    static_dir = data.get("static_dir", "public")
    return PublishSpec(
        producer=producer,
        consumer=consumer,
        destination=_resolve_link_path(graph[consumer].path / static_dir),
    )


def _parse_routes(data: Any) -> RouteTable:
    if data is None:
        return RouteTable(DEFAULT_ROUTES)
    if not isinstance(data, list):
        raise ConfigError("serve.routes: expected a list")

    rules: list[RouteRule] = []
    for i, entry in enumerate(data):
        where = f"serve.routes[{i}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"{where}: expected a mapping")
        exact = "exact" in entry
        pattern = entry.get("exact") if exact else entry.get("prefix")
        if not isinstance(pattern, str) or not pattern.startswith("/"):
            raise ConfigError(f"{where}: 'prefix' or 'exact' must be a path starting with '/'")
        try:
            kind = RouteKind.parse(entry.get("kind", ""))
        except ValueError as e:
            raise ConfigError(f"{where}: {e}") from e
        rules.append(RouteRule(pattern, kind, exact=exact))

    return RouteTable(rules)


def _parse_serve(data: Any, root: Path, publish: Optional[PublishSpec]) -> ServeSettings:
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError("serve: expected a mapping")

    static_root: Optional[Path] = None
    if data.get("static_root"):
        static_root = _resolve_link_path(root / data["static_root"])
    elif publish is not None:
        static_root = publish.destination

    dev_command = None
    if data.get("dev_command"):
        dev_command = parse_command(data["dev_command"], "serve.dev_command")

    port = data.get("port", DEFAULT_PORT)
    if not isinstance(port, int) or not 0 <= port <= 65535:
        raise ConfigError(f"serve.port: invalid port {port!r}")

    timeout = data.get("proxy_timeout", DEFAULT_PROXY_TIMEOUT)
    if not isinstance(timeout, (int, float)) or timeout <= 0:
        raise ConfigError("serve.proxy_timeout: expected a positive number of seconds")

    return ServeSettings(
        host=str(data.get("host", DEFAULT_HOST)),
        port=port,
        static_root=static_root,
        fallback_document=str(data.get("fallback_document", DEFAULT_FALLBACK_DOCUMENT)),
        dev_proxy_target=data.get("dev_proxy_target"),
        dev_command=dev_command,
        dev_command_cwd=(root / data["dev_command_cwd"]).resolve() if data.get("dev_command_cwd") else root,
        proxy_timeout=float(timeout),
        api_handler=data.get("api_handler"),
        routes=_parse_routes(data.get("routes")),
    )


def load_config(config_path: Path) -> ProjectConfig:
    """Load and validate a shipyard.yaml file.

    Raises:
        ConfigError: If the file is missing, unparseable or invalid.
    """
    if not config_path.is_file():
        raise ConfigError(f"{CONFIG_FILENAME} not found at {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"{config_path} is not valid YAML: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: expected a mapping at top level")

    root = config_path.parent.resolve()

    raw_workspaces = data.get("workspaces")
    if not isinstance(raw_workspaces, dict) or not raw_workspaces:
        raise ConfigError("workspaces: at least one workspace must be declared")

    graph = WorkspaceGraph.from_workspaces(
        _parse_workspace(str(name), ws, root) for name, ws in raw_workspaces.items()
    )
    publish = _parse_publish(data.get("publish"), graph)
    serve = _parse_serve(data.get("serve"), root, publish)

    cache_dir = None
    if data.get("cache_dir"):
        cache_dir = (root / data["cache_dir"]).resolve()

    return ProjectConfig(
        root=root,
        graph=graph,
        publish=publish,
        serve=serve,
        cache_dir=cache_dir,
    )


def load_project(config: Optional[str] = None) -> ProjectConfig:
    """Resolve --config (or search upward from cwd) and load it."""
    if config:
        return load_config(Path(config).resolve())

    found = find_config()
    if found is None:
        raise ConfigError(f"{CONFIG_FILENAME} not found in this directory or any parent")
    return load_config(found)

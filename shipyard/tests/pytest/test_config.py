"""
Tests for shipyard.yaml loading: workspaces, publish and serve sections.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from shipyard.build.config import (
    DEFAULT_FALLBACK_DOCUMENT,
    DEFAULT_OUTPUT_DIR,
    load_config,
    load_project,
    parse_command,
)
from shipyard.errors import ConfigError
from shipyard.serve.routes import RouteKind

from conftest import three_workspace_data, writes_file


# =============================================================================
# Workspaces
# =============================================================================


@pytest.mark.evergreen
class TestWorkspaceParsing:
    """Workspace entries become Workspace records rooted at the config directory."""

    def test_defaults(self, write_project, tmp_path: Path) -> None:
        config = write_project({"workspaces": {"api": {"build": "make all"}}})
        project = load_config(config)

        ws = project.graph["api"]
        assert ws.path == (tmp_path / "api").resolve()
        assert ws.output_dir == (tmp_path / "api" / DEFAULT_OUTPUT_DIR).resolve()
        assert ws.build_command == ("make", "all")
        assert ws.depends_on == frozenset()
        assert ws.timeout is None

    def test_declaration_order_is_kept(self, write_project) -> None:
        project = load_config(write_project(three_workspace_data()))
        assert project.graph.names() == ["shared", "server", "client"]

    def test_graph_is_read_only(self, write_project) -> None:
        graph = load_config(write_project(three_workspace_data())).graph
        with pytest.raises(TypeError):
            graph.workspaces["extra"] = graph["shared"]
        with pytest.raises(TypeError):
            del graph.workspaces["shared"]
        assert graph.names() == ["shared", "server", "client"]

    def test_explicit_fields(self, write_project, tmp_path: Path) -> None:
        config = write_project({
            "workspaces": {
                "ui": {
                    "path": "packages/ui",
                    "build": ["npm", "run", "build"],
                    "output": "build",
                    "depends_on": "core",
                    "sources": ["src", "package.json"],
                    "timeout": 30,
                    "env": {"NODE_ENV": "production", "LEVEL": 2},
                },
                "core": {"build": "true"},
            }
        })
        ws = load_config(config).graph["ui"]

        assert ws.path == (tmp_path / "packages" / "ui").resolve()
        assert ws.output_dir == ws.path / "build"
        assert ws.depends_on == frozenset({"core"})
        assert ws.source_paths() == [ws.path / "src", ws.path / "package.json"]
        assert ws.timeout == 30.0
        assert ws.env == {"NODE_ENV": "production", "LEVEL": "2"}

    def test_missing_build_command(self, write_project) -> None:
        config = write_project({"workspaces": {"api": {"path": "api"}}})
        with pytest.raises(ConfigError, match="build"):
            load_config(config)

    def test_no_workspaces(self, write_project) -> None:
        config = write_project({"workspaces": {}})
        with pytest.raises(ConfigError, match="at least one workspace"):
            load_config(config)

    def test_negative_timeout_rejected(self, write_project) -> None:
        config = write_project({"workspaces": {"api": {"build": "true", "timeout": -1}}})
        with pytest.raises(ConfigError, match="timeout"):
            load_config(config)

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        config = tmp_path / "shipyard.yaml"
        config.write_text("workspaces: [unclosed\n")
        with pytest.raises(ConfigError, match="not valid YAML"):
            load_config(config)

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "shipyard.yaml")


@pytest.mark.evergreen
class TestParseCommand:

    def test_string_is_shell_split(self) -> None:
        assert parse_command("npm run 'build app'", "x") == ("npm", "run", "build app")

    def test_list_values_are_stringified(self) -> None:
        assert parse_command(["sleep", 1], "x") == ("sleep", "1")

    def test_empty_command(self) -> None:
        with pytest.raises(ConfigError, match="empty"):
            parse_command("   ", "x")

    def test_mapping_rejected(self) -> None:
        with pytest.raises(ConfigError):
            parse_command({"run": "x"}, "x")


# =============================================================================
# Publish / Serve
# =============================================================================


@pytest.mark.evergreen
class TestPublishAndServe:

    def test_publish_destination_under_consumer(self, write_project, tmp_path: Path) -> None:
        project = load_config(write_project(three_workspace_data()))

        assert project.publish is not None
        assert project.publish.producer == "client"
        assert project.publish.destination == (tmp_path / "server" / "public").resolve()

    def test_serve_static_root_defaults_to_publish_destination(self, write_project) -> None:
        project = load_config(write_project(three_workspace_data()))

        assert project.serve.static_root == project.publish.destination
        assert project.serve.fallback_document == DEFAULT_FALLBACK_DOCUMENT

    def test_published_symlink_is_not_resolved(self, write_project, tmp_path: Path) -> None:
        config = write_project(three_workspace_data())
        version = tmp_path / "server" / ".public.v-0001"
        version.mkdir()
        (tmp_path / "server" / "public").symlink_to(version.name)

        project = load_config(config)

        assert project.publish.destination.name == "public"
        assert project.publish.destination.is_symlink()
        assert project.serve.static_root == project.publish.destination

    def test_publish_unknown_workspace(self, write_project) -> None:
        data = three_workspace_data()
        data["publish"]["producer"] = "web"
        with pytest.raises(ConfigError, match="unknown workspace 'web'"):
            load_config(write_project(data))

    def test_default_routes(self, write_project) -> None:
        project = load_config(write_project(three_workspace_data()))
        kinds = [rule.kind for rule in project.serve.routes]
        assert kinds == [RouteKind.API, RouteKind.FALLBACK]

    def test_custom_serve_section(self, write_project, tmp_path: Path) -> None:
        data = three_workspace_data()
        data["serve"] = {
            "port": 9100,
            "static_root": "site",
            "dev_proxy_target": "http://127.0.0.1:5173",
            "dev_command": "npm run dev",
            "dev_command_cwd": "client",
            "proxy_timeout": 2.5,
            "api_handler": "app:handle",
            "routes": [
                {"prefix": "/api", "kind": "api"},
                {"prefix": "/assets", "kind": "staticAsset"},
                {"exact": "/", "kind": "fallback"},
            ],
        }
        serve = load_config(write_project(data)).serve

        assert serve.port == 9100
        assert serve.static_root == (tmp_path / "site").resolve()
        assert serve.dev_command == ("npm", "run", "dev")
        assert serve.dev_command_cwd == (tmp_path / "client").resolve()
        assert serve.proxy_timeout == 2.5
        assert serve.api_handler == "app:handle"
        assert [r.kind for r in serve.routes] == [
            RouteKind.API, RouteKind.STATIC_ASSET, RouteKind.FALLBACK,
        ]
        assert serve.routes.rules[-1].exact

    def test_bad_route_kind(self, write_project) -> None:
        data = three_workspace_data()
        data["serve"] = {"routes": [{"prefix": "/", "kind": "cdn"}]}
        with pytest.raises(ConfigError, match=r"serve.routes\[0\]"):
            load_config(write_project(data))

    def test_invalid_port(self, write_project) -> None:
        data = three_workspace_data()
        data["serve"] = {"port": 70000}
        with pytest.raises(ConfigError, match="port"):
            load_config(write_project(data))


# =============================================================================
# Discovery
# =============================================================================


@pytest.mark.evergreen
class TestLoadProject:

    def test_searches_upward(self, write_project, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        write_project({"workspaces": {"api": {"build": writes_file("a", "b")}}})
        nested = tmp_path / "api" / "src"
        nested.mkdir(parents=True)
        monkeypatch.chdir(nested)

        project = load_project()
        assert project.root == tmp_path.resolve()

    def test_explicit_path(self, write_project, tmp_path: Path) -> None:
        config = write_project({"workspaces": {"api": {"build": "true"}}})
        project = load_project(str(config))
        assert project.state_dir == tmp_path.resolve() / ".shipyard"

    def test_not_found(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigError, match="not found"):
            load_project()

"""
Shared pytest fixtures for shipyard tests.

Provides fixtures for writing throwaway multi-workspace projects whose build
commands are small Python one-liners run with the current interpreter.

Test Tier Markers:
  @pytest.mark.evergreen - Tests that always run, never skip (production tests)
  @pytest.mark.dev       - Development/WIP tests, toggle-able
"""

from __future__ import annotations

import io
import sys
from contextlib import redirect_stdout
from pathlib import Path
from typing import Any, Callable, Optional

import pytest
import yaml

from shipyard.build.config import ProjectConfig, load_config


# =============================================================================
# Build Command Helpers
# =============================================================================


def py_command(code: str) -> list[str]:
    """Build command that runs `code` with the test interpreter."""
    return [sys.executable, "-c", code]


def writes_file(filename: str, content: str) -> list[str]:
    """Build command that writes one file into $SHIPYARD_OUTPUT_DIR."""
    return py_command(
        "import os, pathlib; "
        "p = pathlib.Path(os.environ['SHIPYARD_OUTPUT_DIR']) / %r; "
        "p.parent.mkdir(parents=True, exist_ok=True); "
        "p.write_text(%r)" % (filename, content)
    )


def fails_with(code: int, message: str = "boom") -> list[str]:
    """Build command that prints to stderr and exits nonzero."""
    return py_command(f"import sys; sys.stderr.write({message!r}); sys.exit({code})")


def sleeps(seconds: float) -> list[str]:
    return py_command(f"import time; time.sleep({seconds})")


def three_workspace_data(client_build: Optional[list[str]] = None) -> dict[str, Any]:
    """shared <- server, shared <- client; client publishes into server/public."""
    return {
        "workspaces": {
            "shared": {"build": writes_file("lib.js", "shared")},
            "server": {
                "build": writes_file("server.js", "server"),
                "depends_on": ["shared"],
            },
            "client": {
                "build": client_build or writes_file("index.html", "<html>app</html>"),
                "depends_on": ["shared"],
            },
        },
        "publish": {"producer": "client", "consumer": "server", "static_dir": "public"},
    }


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers for test tiers."""
    config.addinivalue_line(
        "markers",
        "evergreen: tests that always run, never skip (production tests)"
    )
    config.addinivalue_line(
        "markers",
        "dev: development/WIP tests, toggle-able for active development"
    )


# =============================================================================
# Project Fixtures
# =============================================================================


@pytest.fixture
def write_project(tmp_path: Path) -> Callable[[dict[str, Any]], Path]:
    """Factory: write a shipyard.yaml (and workspace dirs) under tmp_path.

    Returns the config path.
    """

    def _write(data: dict[str, Any]) -> Path:
        for name, ws in (data.get("workspaces") or {}).items():
            if isinstance(ws, dict):
                (tmp_path / ws.get("path", name)).mkdir(parents=True, exist_ok=True)
        config_path = tmp_path / "shipyard.yaml"
        config_path.write_text(yaml.safe_dump(data, sort_keys=False))
        return config_path

    return _write


@pytest.fixture
def three_workspace_project(write_project) -> ProjectConfig:
    """Loaded project with shared, server and client workspaces."""
    return load_config(write_project(three_workspace_data()))


@pytest.fixture
def static_root(tmp_path: Path) -> Path:
    """A published static directory with an entry document and one asset."""
    root = tmp_path / "public"
    (root / "assets").mkdir(parents=True)
    (root / "index.html").write_text("<html>index</html>")
    (root / "assets" / "app.js").write_text("console.log('app');")
    return root


# =============================================================================
# CLI Runner
# =============================================================================


class CLIResult:
    """Result of running a CLI command."""

    def __init__(self, returncode: int, stdout: str):
        self.returncode = returncode
        self.stdout = stdout

    def __repr__(self) -> str:
        return f"CLIResult(returncode={self.returncode}, stdout={self.stdout[:100]!r}...)"


class CLIRunner:
    """Helper class to run CLI commands in-process with captured output."""

    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = config_path

    def run(self, args: list[str]) -> CLIResult:
        """Run CLI with given args (without the 'shipyard' prefix)."""
        from shipyard.cli import main

        if self.config_path is not None and args and not args[0].startswith("-"):
            args = [args[0], "--config", str(self.config_path), *args[1:]]

        stdout_capture = io.StringIO()
        with redirect_stdout(stdout_capture):
            try:
                returncode = main(["--no-color", *args])
            except SystemExit as e:
                returncode = e.code if isinstance(e.code, int) else 1

        return CLIResult(returncode=returncode or 0, stdout=stdout_capture.getvalue())


@pytest.fixture
def cli_runner() -> CLIRunner:
    return CLIRunner()

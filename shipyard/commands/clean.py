"""shipyard clean -- Remove build outputs, staging leftovers and caches."""

from __future__ import annotations

import argparse
import shutil
from pathlib import Path

from shipyard.build.caching import workspace_cache_dir
from shipyard.build.config import ProjectConfig, Workspace, load_project
from shipyard.build.staging import published_versions, stale_leftovers
from shipyard.core.utils import log
from shipyard.errors import UnknownDependencyError


# =============================================================================
# Utilities
# =============================================================================


def _get_dir_size(path: Path) -> int:
    """Get total size of a directory in bytes (0 for symlinks)."""
    if path.is_symlink() or not path.exists():
        return 0
    if path.is_file():
        return path.stat().st_size
    total = 0
    try:
        for entry in path.rglob("*"):
            if entry.is_file():
                try:
                    total += entry.stat().st_size
                except OSError:
                    pass
    except OSError:
        pass
    return total


def _format_size(size_bytes: float) -> str:
    """Format bytes as human-readable string."""
    if size_bytes == 0:
        return "0 B"
    for unit in ("B", "KB", "MB", "GB"):
        if size_bytes < 1024:
            if unit == "B":
                return f"{int(size_bytes)} {unit}"
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024
    return f"{size_bytes:.1f} TB"


def _collect_clean_targets(ws: Workspace, cache_dir: Path) -> list[tuple[Path, int]]:
    """Collect paths that would be cleaned for a workspace.

    Returns list of (path, size_in_bytes) for existing targets.
    """
    targets: list[tuple[Path, int]] = []

    if ws.output_dir.exists():
        targets.append((ws.output_dir, _get_dir_size(ws.output_dir)))

    for leftover in stale_leftovers(ws.output_dir):
        targets.append((leftover, _get_dir_size(leftover)))

    # Removing the hash forces the next build to run
    ws_cache = workspace_cache_dir(cache_dir, ws.name)
    if ws_cache.exists():
        targets.append((ws_cache, _get_dir_size(ws_cache)))

    return targets


def _remove(path: Path) -> None:
    if path.is_symlink():
        path.unlink()
    elif path.is_dir():
        shutil.rmtree(path)
    else:
        path.unlink()


# =============================================================================
# Core Clean Logic
# =============================================================================


def clean_workspace(ws: Workspace, cache_dir: Path, dry_run: bool = False) -> list[str]:
    """Clean build artifacts for a single workspace.

    Returns list of removed (or would-remove) paths as strings.
    """
    removed: list[str] = []
    for path, size in _collect_clean_targets(ws, cache_dir):
        size_str = _format_size(size)
        if dry_run:
            log.dry_run(f"Would remove {path} ({size_str})")
        else:
            _remove(path)
            log.info(f"Removed {path} ({size_str})")
        removed.append(str(path))
    return removed


def clean_published(project: ProjectConfig, dry_run: bool = False) -> list[str]:
    """Remove the published static link, its versions and leftovers."""
    if project.publish is None:
        return []

    destination = project.publish.destination
    paths = [destination] if destination.exists() or destination.is_symlink() else []
    paths.extend(published_versions(destination))
    paths.extend(stale_leftovers(destination))

    removed: list[str] = []
    for path in paths:
        size_str = _format_size(_get_dir_size(path))
        if dry_run:
            log.dry_run(f"Would remove {path} ({size_str})")
        else:
            _remove(path)
            log.info(f"Removed {path} ({size_str})")
        removed.append(str(path))
    return removed


# =============================================================================
# CLI Handler
# =============================================================================


def cmd_clean(args: argparse.Namespace) -> int:
    """Handle 'shipyard clean' command."""
    dry_run = getattr(args, "check", False)
    project = load_project(args.config)

    names = getattr(args, "workspaces", None) or project.graph.names()
    for name in names:
        if name not in project.graph:
            raise UnknownDependencyError("<selection>", name)

    mode_label = "DRY RUN" if dry_run else "CLEAN"
    log.header(f"{mode_label}: {', '.join(names)}")

    summary: list[tuple[str, str, str]] = []  # (name, size, status)
    total_size = 0

    for name in names:
        ws = project.graph[name]
        targets = _collect_clean_targets(ws, project.state_dir)
        if not targets:
            summary.append((name, "0 B", "clean"))
            continue

        size = sum(s for _, s in targets)
        total_size += size
        clean_workspace(ws, project.state_dir, dry_run)
        summary.append((name, _format_size(size), "would remove" if dry_run else "removed"))

    if getattr(args, "published", False) and project.publish is not None:
        destination = project.publish.destination
        size = sum(_get_dir_size(p) for p in [destination, *published_versions(destination)])
        removed = clean_published(project, dry_run)
        if removed:
            total_size += size
            summary.append(("(published)", _format_size(size), "would remove" if dry_run else "removed"))

    log.header("Summary")
    name_w = max(len(s[0]) for s in summary) if summary else 10
    size_w = max(len(s[1]) for s in summary) if summary else 6
    for name, size, status in summary:
        log.info(f"{name:<{name_w}}  {size:>{size_w}}  {status}")

    log.info(f"Total: {_format_size(total_size)}")
    return 0

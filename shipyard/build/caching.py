"""
Build caching for shipyard.

Skips workspace builds whose sources, command and upstream inputs are
unchanged since the last successful build.
"""

from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Iterator, Optional

from shipyard.build.config import Workspace
from shipyard.core.utils import has_files, log


# =============================================================================
# Source Hashing
# =============================================================================


def _iter_source_files(ws: Workspace) -> Iterator[Path]:
    """Yield source files for a workspace, skipping its output and hidden entries."""
    output = ws.output_dir
    for root in ws.source_paths():
        if root.is_file():
            yield root
            continue
        if not root.is_dir():
            continue
        for path in sorted(root.rglob("*")):
            if not path.is_file():
                continue
            rel_parts = path.relative_to(root).parts
            if any(part.startswith(".") or part in ("node_modules", "__pycache__") for part in rel_parts):
                continue
            if path == output or output in path.parents:
                continue
            yield path


def get_source_hash(ws: Workspace, dependency_hashes: Optional[dict[str, str]] = None) -> str:
    """Hash the build command, source files and dependency hashes.

    Returns:
        16-char hex digest.
    """
    hasher = hashlib.sha256()
    hasher.update("\0".join(ws.build_command).encode())

    for name in sorted(ws.depends_on):
        hasher.update(name.encode())
        hasher.update((dependency_hashes or {}).get(name, "").encode())

    for path in _iter_source_files(ws):
        try:
            rel = path.relative_to(ws.path)
        except ValueError:
            rel = path
        hasher.update(str(rel).encode())
        hasher.update(path.read_bytes())

    return hasher.hexdigest()[:16]


# =============================================================================
# Hash Storage
# =============================================================================


def workspace_cache_dir(cache_dir: Path, name: str) -> Path:
    return cache_dir / name


def _hash_path(cache_dir: Path, name: str) -> Path:
    """Return the path where we store the last-known source hash."""
    return workspace_cache_dir(cache_dir, name) / "source_hash"


def save_source_hash(cache_dir: Path, name: str, source_hash: str) -> None:
    path = _hash_path(cache_dir, name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(source_hash)


def load_source_hash(cache_dir: Path, name: str) -> Optional[str]:
    """Load the last-saved hash, or None if never built."""
    path = _hash_path(cache_dir, name)
    if path.exists():
        return path.read_text().strip()
    return None


def clear_source_hash(cache_dir: Path, name: str) -> None:
    path = _hash_path(cache_dir, name)
    if path.exists():
        path.unlink()


def is_up_to_date(ws: Workspace, cache_dir: Path, source_hash: str) -> bool:
    """True if the stored hash matches and the output directory holds files."""
    saved = load_source_hash(cache_dir, ws.name)
    if saved is None:
        log.debug(f"{ws.name}: no previous source hash (first build)")
        return False
    if saved != source_hash:
        log.debug(f"{ws.name}: sources changed ({saved} -> {source_hash})")
        return False
    if not has_files(ws.output_dir):
        log.debug(f"{ws.name}: output missing, rebuilding")
        return False
    return True

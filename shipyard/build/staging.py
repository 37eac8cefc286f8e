"""
Write-temp-then-rename helpers.

Build outputs are replaced by renaming a fully written sibling directory
into place. Published static directories are versioned siblings behind a
symlink that is swapped with a single rename, so a server reading them
never sees a missing or half-populated directory. Killed writers leave only
hidden leftovers.
"""

from __future__ import annotations

import os
import shutil
import uuid
from pathlib import Path
from typing import Optional

from shipyard.core.utils import log


def staging_path(target: Path, kind: str = "staging") -> Path:
    """Hidden sibling of target, e.g. dist -> .dist.staging-1a2b3c4d."""
    return target.parent / f".{target.name}.{kind}-{uuid.uuid4().hex[:8]}"


def make_staging_dir(target: Path) -> Path:
    target.parent.mkdir(parents=True, exist_ok=True)
    staging = staging_path(target)
    staging.mkdir()
    return staging


def discard(path: Path) -> None:
    """Remove a staging directory if it is still there."""
    if path.exists():
        shutil.rmtree(path, ignore_errors=True)


def stale_leftovers(target: Path) -> list[Path]:
    """Staging/backup directories left behind by interrupted runs."""
    if not target.parent.is_dir():
        return []
    found: list[Path] = []
    for kind in ("staging", "old", "link"):
        found.extend(sorted(target.parent.glob(f".{target.name}.{kind}-*")))
    return found


def remove_stale(target: Path) -> None:
    for leftover in stale_leftovers(target):
        log.debug(f"Removing stale {leftover}")
        if leftover.is_symlink():
            leftover.unlink()
        else:
            shutil.rmtree(leftover, ignore_errors=True)


def swap_into_place(staging: Path, target: Path) -> None:
    """Replace target with the fully written staging directory.

    The previous target is renamed aside first and restored if the final
    rename fails.
    """
    backup = None
    if target.exists():
        backup = staging_path(target, "old")
        target.rename(backup)

    try:
        staging.rename(target)
    except OSError:
        if backup is not None:
            backup.rename(target)
        raise

    if backup is not None:
        shutil.rmtree(backup, ignore_errors=True)


# =============================================================================
# Versioned Publishing
# =============================================================================


def published_versions(target: Path) -> list[Path]:
    """Version directories published behind target."""
    if not target.parent.is_dir():
        return []
    return sorted(p for p in target.parent.glob(f".{target.name}.v-*") if p.is_dir())


def current_version(target: Path) -> Optional[Path]:
    """The version directory target points at, if target is a published symlink."""
    if not target.is_symlink():
        return None
    return target.parent / os.readlink(target)


def link_into_place(version: Path, target: Path) -> Optional[Path]:
    """Point target at version with one atomic rename.

    A plain directory at target (from a copy that predates versioning) is
    moved aside first; that is the only time target is briefly absent.

    Returns:
        The version directory target pointed at before, if any.
    """
    previous = current_version(target)

    backup = None
    if target.exists() and not target.is_symlink():
        backup = staging_path(target, "old")
        target.rename(backup)

    link = staging_path(target, "link")
    link.symlink_to(version.name)
    try:
        os.replace(link, target)
    except OSError:
        link.unlink()
        if backup is not None:
            backup.rename(target)
        raise

    if backup is not None:
        shutil.rmtree(backup, ignore_errors=True)
    return previous


def prune_versions(target: Path, keep: tuple[Path, ...]) -> list[Path]:
    """Remove published versions other than those in keep."""
    kept = {p.name for p in keep}
    removed: list[Path] = []
    for version in published_versions(target):
        if version.name not in kept:
            log.debug(f"Removing old published version {version}")
            shutil.rmtree(version, ignore_errors=True)
            removed.append(version)
    return removed

"""
Artifact publishing for shipyard.

Copies the producer workspace's build output into the consumer's
static-serving directory.
"""

from __future__ import annotations

import shutil
from pathlib import Path

from shipyard.build import staging
from shipyard.build.config import ProjectConfig
from shipyard.core.utils import has_files, log
from shipyard.errors import ConfigError, PublishError


def publish_artifacts(source: Path, destination: Path, dry_run: bool = False) -> int:
    """Replace destination with a copy of source.

    The copy is written to a new hidden version directory next to
    destination, and destination (a symlink) is then repointed at it in one
    rename. The version it replaced is kept for requests still reading from
    it; anything older is removed.

    Returns:
        Number of files published.

    Raises:
        PublishError: If source is missing or contains no files.
    """
    if dry_run:
        # source may not exist yet
        count = sum(1 for p in source.rglob("*") if p.is_file()) if source.is_dir() else 0
        log.dry_run(f"Would publish {source} to {destination} ({count} files now)")
        return count

    if not source.is_dir():
        raise PublishError(f"Nothing to publish: output directory {source} does not exist")
    if not has_files(source):
        raise PublishError(f"Nothing to publish: output directory {source} is empty")

    count = sum(1 for p in source.rglob("*") if p.is_file())

    staging.remove_stale(destination)
    destination.parent.mkdir(parents=True, exist_ok=True)
    version = staging.staging_path(destination, "v")

    try:
        shutil.copytree(source, version)
        previous = staging.link_into_place(version, destination)
    except BaseException:
        staging.discard(version)
        raise

    keep = (version,) if previous is None else (version, previous)
    staging.prune_versions(destination, keep)

    return count


def publish_project(project: ProjectConfig, dry_run: bool = False) -> int:
    """Publish according to the project's `publish:` section."""
    spec = project.publish
    if spec is None:
        raise ConfigError("No publish section configured in shipyard.yaml")

    producer = project.graph[spec.producer]
    log.header(f"Publishing {spec.producer} -> {spec.consumer}")
    count = publish_artifacts(producer.output_dir, spec.destination, dry_run=dry_run)
    log.success(f"Published {count} files to {spec.destination}")
    return count

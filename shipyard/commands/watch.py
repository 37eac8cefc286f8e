"""
Watch mode for shipyard.

Monitors workspace sources and rebuilds the changed workspaces plus
everything downstream of them, republishing when the producer rebuilt.
"""

from __future__ import annotations

import argparse
import threading
import time
from pathlib import Path
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from shipyard.build.config import ProjectConfig, load_project
from shipyard.build.orchestrator import print_report, report_path
from shipyard.build.publish import publish_project
from shipyard.build.resolver import dependents_closure, resolve_build_plan
from shipyard.build.runner import PipelineReport, PipelineRunner
from shipyard.core.utils import log

DEBOUNCE_SECONDS = 0.5

IGNORED_PARTS = ("node_modules", "__pycache__")


def _within(path: Path, root: Path) -> bool:
    return path == root or root in path.parents


# =============================================================================
# Change Mapping
# =============================================================================


class WorkspaceMapper:
    """Maps a changed file to the workspace whose sources contain it."""

    def __init__(self, project: ProjectConfig):
        self.project = project
        self._roots: list[tuple[Path, str]] = []
        for ws in project.graph:
            for source in ws.source_paths():
                self._roots.append((source.resolve(), ws.name))
        # Deepest root wins for nested workspaces
        self._roots.sort(key=lambda item: len(item[0].parts), reverse=True)

        self._ignored = [ws.output_dir for ws in project.graph]
        if project.publish is not None:
            self._ignored.append(project.publish.destination)
        self._ignored.append(project.state_dir)

    def classify(self, path: Path) -> Optional[str]:
        """Return the owning workspace name, or None if the change is ignored."""
        path = path.resolve()
        if any(_within(path, ignored) for ignored in self._ignored):
            return None

        for root, name in self._roots:
            if not _within(path, root):
                continue
            rel_parts = path.relative_to(root).parts
            if any(part.startswith(".") or part in IGNORED_PARTS for part in rel_parts):
                return None
            return name
        return None

    def watch_targets(self) -> list[tuple[str, Path, bool]]:
        """(label, path, recursive) for every existing source location."""
        targets: list[tuple[str, Path, bool]] = []
        seen: set[Path] = set()
        for root, name in reversed(self._roots):
            if root.is_dir():
                path, recursive = root, True
            elif root.is_file():
                path, recursive = root.parent, False
            else:
                log.warning(f"Source path not found for {name}: {root}")
                continue
            if path in seen:
                continue
            seen.add(path)
            targets.append((name, path, recursive))
        return targets


# =============================================================================
# Debouncer
# =============================================================================


class Debouncer:
    """Batches rapid change events into a single rebuild.

    Collects workspace names for `delay` seconds after the last event,
    then fires the callback once with everything collected.
    """

    def __init__(self, delay: float, callback: Callable[[set[str], list[Path]], None]):
        self.delay = delay
        self.callback = callback
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._pending_names: set[str] = set()
        self._pending_paths: list[Path] = []

    def trigger(self, name: str, path: Path) -> None:
        """Register a change event. Resets the debounce timer."""
        with self._lock:
            self._pending_names.add(name)
            self._pending_paths.append(path)

            if self._timer is not None:
                self._timer.cancel()

            self._timer = threading.Timer(self.delay, self._fire)
            self._timer.daemon = True
            self._timer.start()

    def _fire(self) -> None:
        with self._lock:
            if not self._pending_names:
                return
            names = set(self._pending_names)
            paths = list(self._pending_paths)
            self._pending_names.clear()
            self._pending_paths.clear()
            self._timer = None

        self.callback(names, paths)

    def cancel(self) -> None:
        """Cancel any pending debounce timer."""
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._pending_names.clear()
            self._pending_paths.clear()


# =============================================================================
# Rebuilder
# =============================================================================


class Rebuilder:
    """Rebuilds changed workspaces and their dependents."""

    def __init__(self, project: ProjectConfig, publish: bool = True):
        self.project = project
        self.publish = publish
        self._rebuild_count = 0
        self._lock = threading.Lock()
        self.last_report: Optional[PipelineReport] = None

    @property
    def rebuild_count(self) -> int:
        return self._rebuild_count

    def execute(self, changed: set[str], paths: list[Path]) -> Optional[PipelineReport]:
        """Rebuild `changed` and everything downstream; errors are logged, not raised."""
        with self._lock:
            self._rebuild_count += 1
            start = time.time()
            label = f"[{self._rebuild_count}] {', '.join(sorted(changed))}"

            try:
                graph = self.project.graph
                targets = dependents_closure(graph, changed)
                plan = resolve_build_plan(graph, only=targets)

                runner = PipelineRunner(graph, cache_dir=self.project.state_dir)
                report = runner.run(plan)
                self.last_report = report
                print_report(report)
                self._save_report(report)

                elapsed = time.time() - start
                if not report.succeeded:
                    log.error(f"{label} failed after {elapsed:.1f}s: {', '.join(report.failed)}")
                    return report

                spec = self.project.publish
                if self.publish and spec is not None and spec.producer in plan.workspaces:
                    publish_project(self.project)

                log.success(f"{label} rebuilt in {elapsed:.1f}s")
                return report
            except Exception as e:
                elapsed = time.time() - start
                log.error(f"{label} failed after {elapsed:.1f}s: {e}")
                return None

    def _save_report(self, report: PipelineReport) -> None:
        try:
            report.save(report_path(self.project.state_dir))
        except OSError as e:
            log.warning(f"Failed to save build report: {e}")


# =============================================================================
# File System Event Handler
# =============================================================================


class WorkspaceEventHandler(FileSystemEventHandler):
    """Maps file system events to workspaces and feeds the debouncer."""

    def __init__(self, mapper: WorkspaceMapper, debouncer: Debouncer):
        super().__init__()
        self.mapper = mapper
        self.debouncer = debouncer

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle(event.src_path)

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle(event.src_path)
        self._handle(event.dest_path)

    def _handle(self, src_path) -> None:
        path = Path(src_path)
        name = self.mapper.classify(path)
        if name is not None:
            log.info(f"  Change detected: {path.name} -> {name}")
            self.debouncer.trigger(name, path)


# =============================================================================
# Watch Command
# =============================================================================


def cmd_watch(args: argparse.Namespace) -> int:
    """Execute the watch command."""
    project = load_project(args.config)
    # Reject cycles and unknown dependencies before watching anything
    resolve_build_plan(project.graph)

    log.header("shipyard watch")

    mapper = WorkspaceMapper(project)
    rebuilder = Rebuilder(project, publish=not args.no_publish)
    debouncer = Debouncer(args.debounce, rebuilder.execute)
    handler = WorkspaceEventHandler(mapper, debouncer)

    watch_targets = mapper.watch_targets()
    if not watch_targets:
        log.error("No valid watch targets found")
        return 1

    observer = Observer()
    for label, path, recursive in watch_targets:
        try:
            observer.schedule(handler, str(path), recursive=recursive)
            log.info(f"  Watching: {label} ({path})")
        except OSError as e:
            log.warning(f"  Could not watch {label}: {e}")

    if args.initial_build:
        rebuilder.execute(set(project.graph.names()), [])

    observer.start()

    log.info("")
    log.info("Watching for changes... (Ctrl+C to stop)")
    log.info("")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        log.info("")
        log.header("Shutting down")

        debouncer.cancel()
        observer.stop()
        observer.join(timeout=5)

        log.info(f"Rebuilds performed: {rebuilder.rebuild_count}")
        log.success("Watch mode stopped")

    return 0

"""
Build pipeline runner for shipyard.

Executes a BuildPlan batch by batch. Workspaces inside a batch build
concurrently; a failed batch stops the pipeline after its siblings finish.
"""

from __future__ import annotations

import json
import os
import subprocess
import time
import traceback
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from shipyard.build import staging
from shipyard.build.caching import get_source_hash, is_up_to_date, save_source_hash
from shipyard.build.config import Workspace, WorkspaceGraph
from shipyard.build.resolver import BuildPlan
from shipyard.core.timing import batch_label, concurrency_savings, format_duration, timed
from shipyard.core.utils import log, run_cmd, tail
from shipyard.errors import BuildFailure

OUTPUT_ENV_VAR = "SHIPYARD_OUTPUT_DIR"
WORKSPACE_ENV_VAR = "SHIPYARD_WORKSPACE"
OUTPUT_PLACEHOLDER = "{output}"


# =============================================================================
# Results
# =============================================================================


class BuildStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"  # Never started: an earlier batch failed


@dataclass
class BuildResult:
    """Outcome of one workspace build."""

    workspace: str
    status: BuildStatus
    error_detail: Optional[str] = None
    duration: float = 0.0
    cached: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status is BuildStatus.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        return {
            "workspace": self.workspace,
            "status": self.status.value,
            "error_detail": self.error_detail,
            "duration": self.duration,
            "cached": self.cached,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BuildResult":
        return cls(
            workspace=data["workspace"],
            status=BuildStatus(data["status"]),
            error_detail=data.get("error_detail"),
            duration=data.get("duration", 0.0),
            cached=data.get("cached", False),
        )


def _generate_run_id() -> str:
    """Generate run_id as ISO timestamp + short hash."""
    timestamp = datetime.now().strftime("%Y-%m-%dT%H-%M-%S")
    return f"{timestamp}_{uuid.uuid4().hex[:6]}"


@dataclass
class PipelineReport:
    """Accumulates BuildResults for one pipeline run."""

    planned: list[str]
    run_id: str = field(default_factory=_generate_run_id)
    results: dict[str, BuildResult] = field(default_factory=dict)
    started_at: str = field(default_factory=lambda: datetime.now().isoformat())
    completed_at: Optional[str] = None
    batch_timings: dict[str, float] = field(default_factory=dict)

    @classmethod
    def for_plan(cls, plan: BuildPlan) -> "PipelineReport":
        return cls(planned=plan.workspaces)

    def record(self, result: BuildResult) -> None:
        self.results[result.workspace] = result

    def finish(self) -> None:
        self.completed_at = datetime.now().isoformat()

    @property
    def succeeded(self) -> bool:
        """Production-ready: every planned workspace built successfully."""
        return all(
            name in self.results and self.results[name].succeeded
            for name in self.planned
        )

    def with_status(self, status: BuildStatus) -> list[str]:
        return [name for name, r in self.results.items() if r.status is status]

    @property
    def failed(self) -> list[str]:
        return self.with_status(BuildStatus.FAILED)

    @property
    def skipped(self) -> list[str]:
        return self.with_status(BuildStatus.SKIPPED)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "succeeded": self.succeeded,
            "planned": self.planned,
            "batch_timings": self.batch_timings,
            "results": [self.results[n].to_dict() for n in self.planned if n in self.results],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PipelineReport":
        report = cls(
            planned=list(data.get("planned", [])),
            run_id=data.get("run_id", ""),
            started_at=data.get("started_at", ""),
            completed_at=data.get("completed_at"),
            batch_timings=dict(data.get("batch_timings", {})),
        )
        for item in data.get("results", []):
            report.record(BuildResult.from_dict(item))
        return report

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2))

    @classmethod
    def load(cls, path: Path) -> "PipelineReport":
        return cls.from_dict(json.loads(path.read_text()))


# =============================================================================
# Runner
# =============================================================================


def expand_command(command: tuple[str, ...], output: Path) -> list[str]:
    """Substitute the {output} placeholder with the staging directory."""
    return [arg.replace(OUTPUT_PLACEHOLDER, str(output)) for arg in command]


class PipelineRunner:
    """Runs workspace builds according to a BuildPlan."""

    def __init__(
        self,
        graph: WorkspaceGraph,
        cache_dir: Path,
        dry_run: bool = False,
        force: bool = False,
        jobs: Optional[int] = None,
    ):
        self.graph = graph
        self.cache_dir = cache_dir
        self.dry_run = dry_run
        self.force = force
        self.jobs = jobs
        self._hashes: dict[str, str] = {}

    def source_hash(self, name: str) -> str:
        """Source hash of a workspace, including its dependencies' hashes."""
        if name not in self._hashes:
            ws = self.graph[name]
            dep_hashes = {dep: self.source_hash(dep) for dep in ws.depends_on}
            self._hashes[name] = get_source_hash(ws, dep_hashes)
        return self._hashes[name]

    def run(self, plan: BuildPlan, report: Optional[PipelineReport] = None) -> PipelineReport:
        """Execute the plan; the report is returned even when builds fail."""
        if report is None:
            report = PipelineReport.for_plan(plan)
        self._hashes = {}

        for index, batch in enumerate(plan.batches):
            log.header(f"Batch {index + 1}/{len(plan)}: {', '.join(batch)}")

            label = batch_label(index)
            with timed(report.batch_timings, label):
                results = self._run_batch(batch)
            for result in results:
                report.record(result)

            saved = concurrency_savings(report.batch_timings[label], (r.duration for r in results))
            if saved:
                log.debug(f"{label}: concurrent builds saved {format_duration(saved)}")

            failed = [r.workspace for r in results if not r.succeeded]
            if failed:
                blocked = [name for later in plan.batches[index + 1:] for name in later]
                for name in blocked:
                    report.record(BuildResult(name, BuildStatus.SKIPPED))
                log.error(f"Batch failed ({', '.join(failed)})")
                if blocked:
                    log.warning(f"Not started: {', '.join(blocked)}")
                break

        report.finish()
        return report

    def _run_batch(self, batch: tuple[str, ...]) -> list[BuildResult]:
        results: dict[str, BuildResult] = {}

        # Hashes depend on earlier batches only; compute them up front.
        hashes: dict[str, str] = {}
        for name in batch:
            try:
                hashes[name] = self.source_hash(name)
            except OSError as e:
                results[name] = self._failed(name, f"Could not read sources: {e}", 0.0)

        workers = max(1, min(len(batch), self.jobs or len(batch)))
        pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="shipyard-build")
        try:
            futures = {
                pool.submit(self.build_workspace, self.graph[name], source_hash): name
                for name, source_hash in hashes.items()
            }
            for future in as_completed(futures):
                name = futures[future]
                try:
                    results[name] = future.result()
                except Exception as e:
                    log.debug(traceback.format_exc())
                    results[name] = self._failed(name, f"Unexpected error: {e!r}", 0.0)
        except KeyboardInterrupt:
            pool.shutdown(wait=False, cancel_futures=True)
            raise
        finally:
            pool.shutdown(wait=True)

        return [results[name] for name in batch]

    def build_workspace(self, ws: Workspace, source_hash: str) -> BuildResult:
        """Build one workspace and return its result; never raises BuildFailure."""
        start = time.monotonic()

        if not self.force and not self.dry_run and is_up_to_date(ws, self.cache_dir, source_hash):
            log.info(f"{ws.name}: Sources unchanged, skipping")
            return BuildResult(ws.name, BuildStatus.SUCCEEDED, duration=0.0, cached=True)

        try:
            self._execute(ws)
        except BuildFailure as e:
            return self._failed(ws.name, e.detail, round(time.monotonic() - start, 3))

        if not self.dry_run:
            try:
                save_source_hash(self.cache_dir, ws.name, source_hash)
            except OSError as e:
                # output is already in place; the next run just rebuilds
                log.warning(f"{ws.name}: Could not save source hash: {e}")

        duration = round(time.monotonic() - start, 3)
        log.success(f"{ws.name}: Built in {duration:.1f}s")
        return BuildResult(ws.name, BuildStatus.SUCCEEDED, duration=duration)

    def _failed(self, name: str, detail: str, duration: float) -> BuildResult:
        log.error(f"{name}: Build failed")
        for line in detail.splitlines():
            log.dim(f"  {line}")
        return BuildResult(name, BuildStatus.FAILED, error_detail=detail, duration=duration)

    def _execute(self, ws: Workspace) -> None:
        """Run the build command into a staging dir and swap it into place.

        Raises:
            BuildFailure: On nonzero exit, timeout, a command that cannot start,
                or a staging directory that cannot be created or swapped in.
        """
        if self.dry_run:
            cmd = expand_command(ws.build_command, ws.output_dir)
            log.dry_run(f"Would run: {' '.join(cmd)} in {ws.path}")
            return

        try:
            staging.remove_stale(ws.output_dir)
            staging_dir = staging.make_staging_dir(ws.output_dir)
        except OSError as e:
            raise BuildFailure(ws.name, f"Could not create staging directory for {ws.output_dir}: {e}") from e
        cmd = expand_command(ws.build_command, staging_dir)

        env = os.environ.copy()
        env.update(ws.env)
        env[OUTPUT_ENV_VAR] = str(staging_dir)
        env[WORKSPACE_ENV_VAR] = ws.name

        log.info(f"{ws.name}: Building...")
        log.debug(f"{ws.name}: {' '.join(cmd)} (cwd={ws.path})")

        try:
            result = run_cmd(cmd, cwd=ws.path, capture=True, check=False, env=env, timeout=ws.timeout)
        except subprocess.TimeoutExpired:
            staging.discard(staging_dir)
            raise BuildFailure(ws.name, f"Timed out after {ws.timeout:g}s")
        except OSError as e:
            staging.discard(staging_dir)
            raise BuildFailure(ws.name, f"Could not run {cmd[0]}: {e}")
        except BaseException:
            staging.discard(staging_dir)
            raise

        if result.returncode != 0:
            staging.discard(staging_dir)
            detail = f"Exited with code {result.returncode}"
            output = tail(result.stderr or "") or tail(result.stdout or "")
            if output:
                detail += f"\n{output}"
            raise BuildFailure(ws.name, detail)

        try:
            staging.swap_into_place(staging_dir, ws.output_dir)
        except OSError as e:
            staging.discard(staging_dir)
            raise BuildFailure(ws.name, f"Could not move output into {ws.output_dir}: {e}") from e

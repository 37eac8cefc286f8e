"""
Build orchestrator for shipyard.

Coordinates resolve -> build -> publish with timing and a persisted report.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Optional

from shipyard.build.config import BuildConfig
from shipyard.build.publish import publish_project
from shipyard.build.resolver import BuildPlan, resolve_build_plan
from shipyard.build.runner import BuildStatus, PipelineReport, PipelineRunner
from shipyard.core.timing import format_duration, timed, timing_summary
from shipyard.core.utils import log

REPORT_FILENAME = "last_build.json"


def report_path(state_dir: Path) -> Path:
    return state_dir / REPORT_FILENAME


def print_plan(plan: BuildPlan) -> None:
    for index, batch in enumerate(plan.batches):
        log.table_row(f"Batch {index + 1}", ", ".join(batch), col1_width=10)


def print_report(report: PipelineReport) -> None:
    """Print one row per planned workspace."""
    for name in report.planned:
        result = report.results.get(name)
        if result is None:
            log.table_row(name, "not run")
            continue
        status = result.status.value
        if result.cached:
            status += " (cached)"
        elif result.status is not BuildStatus.SKIPPED:
            status += f" ({format_duration(result.duration)})"
        log.table_row(name, status)
    if report.batch_timings:
        log.dim(timing_summary(report.batch_timings))


class BuildOrchestrator:
    """Orchestrates the multi-workspace build process."""

    def __init__(self, config: BuildConfig):
        self.config = config
        self.project = config.project
        self.plan: Optional[BuildPlan] = None
        self.report: Optional[PipelineReport] = None
        self.published = False

        # Timing tracking
        self._phase_timings: dict[str, float] = {}
        self._build_start: Optional[float] = None

    def resolve(self) -> BuildPlan:
        """Compute the build plan; configuration errors propagate."""
        log.header("Resolving build order")
        self.plan = resolve_build_plan(self.project.graph)
        print_plan(self.plan)
        return self.plan

    def build(self, plan: BuildPlan) -> PipelineReport:
        runner = PipelineRunner(
            self.project.graph,
            cache_dir=self.project.state_dir,
            dry_run=self.config.dry_run,
            force=self.config.force,
            jobs=self.config.jobs,
        )
        self.report = runner.run(plan)
        return self.report

    def publish(self) -> None:
        publish_project(self.project, dry_run=self.config.dry_run)
        self.published = True

    def _save_report(self) -> None:
        """Persist the report for `shipyard report` (best-effort)."""
        if self.report is None or self.config.dry_run:
            return
        path = report_path(self.project.state_dir)
        try:
            self.report.save(path)
            log.debug(f"Report saved to {path}")
        except OSError as e:
            log.warning(f"Failed to save build report: {e}")

    def run(self) -> PipelineReport:
        """Run the full build process.

        Raises:
            ConfigError: Unknown or cyclic dependencies (nothing is built).
            PublishError: The producer built successfully but produced nothing.
        """
        self._build_start = time.time()

        with timed(self._phase_timings, "resolve"):
            plan = self.resolve()

        try:
            with timed(self._phase_timings, "build"):
                report = self.build(plan)

            log.header("Build summary")
            print_report(report)

            if not report.succeeded:
                log.error(f"Build failed: {', '.join(report.failed)}")
                return report

            if self.config.publish and self.project.publish is not None:
                with timed(self._phase_timings, "publish"):
                    self.publish()

            log.header("BUILD COMPLETE")
            total = time.time() - self._build_start
            log.info(f"Run ID: {report.run_id}")
            log.info(f"Total time: {format_duration(total)}")
            if self.config.verbose:
                log.info(timing_summary(self._phase_timings, total=total))
            return report

        finally:
            self._save_report()

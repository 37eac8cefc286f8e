"""shipyard plan / build / publish / report -- build-side commands."""

from __future__ import annotations

import argparse
import json

from shipyard.build.config import BuildConfig, load_project
from shipyard.build.orchestrator import (
    BuildOrchestrator,
    print_plan,
    print_report,
    report_path,
)
from shipyard.build.publish import publish_project
from shipyard.build.resolver import resolve_build_plan
from shipyard.build.runner import PipelineReport
from shipyard.core.utils import log


def cmd_plan(args: argparse.Namespace) -> int:
    """Print the resolved build batches."""
    project = load_project(args.config)
    plan = resolve_build_plan(project.graph)

    if getattr(args, "json", False):
        print(json.dumps(plan.as_lists()))
        return 0

    log.header("Build plan")
    print_plan(plan)
    return 0


def cmd_build(args: argparse.Namespace) -> int:
    """Build every workspace in dependency order, then publish.

    Exit code 0 means production-ready: every workspace built and the
    publish step (if configured) succeeded.
    """
    project = load_project(args.config)
    config = BuildConfig(
        project=project,
        dry_run=args.dry_run,
        verbose=args.verbose,
        force=args.force,
        publish=not args.no_publish,
        jobs=args.jobs,
    )
    report = BuildOrchestrator(config).run()
    return 0 if report.succeeded else 1


def cmd_publish(args: argparse.Namespace) -> int:
    """Publish the producer's current output without building."""
    project = load_project(args.config)
    publish_project(project, dry_run=args.dry_run)
    return 0


def cmd_report(args: argparse.Namespace) -> int:
    """Show the most recent build report."""
    project = load_project(args.config)
    path = report_path(project.state_dir)
    if not path.exists():
        log.warning("No build report yet. Run `shipyard build` first.")
        return 1

    report = PipelineReport.load(path)
    log.header(f"Last build: {report.run_id}")
    log.info(f"Started:   {report.started_at}")
    log.info(f"Completed: {report.completed_at or '-'}")
    print_report(report)
    for name in report.failed:
        detail = report.results[name].error_detail or ""
        log.error(f"{name}:")
        for line in detail.splitlines():
            log.dim(f"  {line}")

    if report.succeeded:
        log.success("Production-ready")
        return 0
    log.error("Not production-ready")
    return 1

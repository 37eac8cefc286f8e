"""
Main CLI for shipyard.

Build every workspace in dependency order, publish the UI bundle, and serve
API and UI from one origin.
"""

from __future__ import annotations

import argparse
import sys
import traceback

from shipyard import __version__
from shipyard.core.utils import log
from shipyard.errors import ShipyardError


# =============================================================================
# Argument Parsing
# =============================================================================


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        help="Path to shipyard.yaml (default: search upward from the current directory)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show debug output",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with all subcommands."""

    parser = argparse.ArgumentParser(
        prog="shipyard",
        description="Multi-workspace build orchestrator and unified-origin server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  plan        Show the resolved build batches
  build       Build all workspaces in dependency order, then publish
  publish     Copy the producer's output into the consumer's static directory
  report      Show the most recent build report
  serve       Serve API and UI from a single origin
  watch       Rebuild affected workspaces when sources change
  clean       Remove build outputs, staging leftovers and caches

Examples:
  shipyard build                       # Full build + publish
  shipyard build --dry-run             # Show what would run
  SHIPYARD_MODE=development shipyard serve
  shipyard clean --check               # Preview what would be removed
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--no-color",
        action="store_true",
        help="Disable colored output",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        metavar="<command>",
    )

    # --- plan ---
    plan_parser = subparsers.add_parser(
        "plan",
        help="Show the resolved build batches",
        description="Resolve workspace dependencies into ordered batches without building.",
    )
    _add_common(plan_parser)
    plan_parser.add_argument(
        "--json",
        action="store_true",
        help="Print batches as a JSON list of lists",
    )

    # --- build ---
    build_parser = subparsers.add_parser(
        "build",
        help="Build all workspaces, then publish",
        description="Build every workspace in dependency order. Independent workspaces run concurrently.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  shipyard build                # Build + publish
  shipyard build --force        # Ignore the source-hash cache
  shipyard build --jobs 1       # One workspace at a time
  shipyard build --no-publish   # Skip the publish step
        """,
    )
    _add_common(build_parser)
    build_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without doing it",
    )
    build_parser.add_argument(
        "--force",
        action="store_true",
        help="Rebuild even if sources are unchanged",
    )
    build_parser.add_argument(
        "--no-publish",
        action="store_true",
        help="Do not publish after a successful build",
    )
    build_parser.add_argument(
        "-j", "--jobs",
        type=int,
        default=None,
        help="Maximum concurrent builds per batch (default: batch size)",
    )

    # --- publish ---
    publish_parser = subparsers.add_parser(
        "publish",
        help="Publish the producer's output",
        description="Copy the producer's current output into the consumer's static directory.",
    )
    _add_common(publish_parser)
    publish_parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without doing it",
    )

    # --- report ---
    report_parser = subparsers.add_parser(
        "report",
        help="Show the most recent build report",
    )
    _add_common(report_parser)

    # --- serve ---
    serve_parser = subparsers.add_parser(
        "serve",
        help="Serve API and UI from a single origin",
        description=(
            "Serve the API and the UI from one port. The mode comes from "
            "SHIPYARD_MODE (development or production, default production)."
        ),
    )
    _add_common(serve_parser)
    serve_parser.add_argument(
        "--mode",
        choices=["development", "production", "dev", "prod"],
        default=None,
        help="Override SHIPYARD_MODE",
    )
    serve_parser.add_argument(
        "--host",
        default=None,
        help="Bind address (default: serve.host)",
    )
    serve_parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Listening port (default: serve.port)",
    )
    serve_parser.add_argument(
        "--no-dev-command",
        action="store_true",
        help="Do not start serve.dev_command in development mode",
    )

    # --- watch ---
    watch_parser = subparsers.add_parser(
        "watch",
        help="Rebuild affected workspaces on change",
        description="Watch workspace sources and rebuild changed workspaces plus their dependents.",
    )
    _add_common(watch_parser)
    watch_parser.add_argument(
        "--no-publish",
        action="store_true",
        help="Do not republish after the producer rebuilds",
    )
    watch_parser.add_argument(
        "--initial-build",
        action="store_true",
        help="Build everything once before watching",
    )
    watch_parser.add_argument(
        "--debounce",
        type=float,
        default=0.5,
        help="Seconds to wait for more changes before rebuilding (default: 0.5)",
    )

    # --- clean ---
    clean_parser = subparsers.add_parser(
        "clean",
        help="Remove build outputs and caches",
        description="Remove workspace outputs, staging leftovers and cached source hashes.",
    )
    _add_common(clean_parser)
    clean_parser.add_argument(
        "workspaces",
        nargs="*",
        help="Workspaces to clean (default: all)",
    )
    clean_parser.add_argument(
        "--check",
        action="store_true",
        help="Show what would be removed without removing it",
    )
    clean_parser.add_argument(
        "--published",
        action="store_true",
        help="Also remove the published static directory",
    )

    return parser


# =============================================================================
# Main
# =============================================================================


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.no_color:
        log.set_color(False)

    if not args.command:
        parser.print_help()
        return 0

    log.set_verbose(args.verbose)

    try:
        if args.command == "plan":
            from shipyard.commands.build import cmd_plan
            return cmd_plan(args)

        elif args.command == "build":
            from shipyard.commands.build import cmd_build
            return cmd_build(args)

        elif args.command == "publish":
            from shipyard.commands.build import cmd_publish
            return cmd_publish(args)

        elif args.command == "report":
            from shipyard.commands.build import cmd_report
            return cmd_report(args)

        elif args.command == "serve":
            from shipyard.commands.serve import cmd_serve
            return cmd_serve(args)

        elif args.command == "watch":
            from shipyard.commands.watch import cmd_watch
            return cmd_watch(args)

        elif args.command == "clean":
            from shipyard.commands.clean import cmd_clean
            return cmd_clean(args)

        else:
            log.error(f"Unknown command: {args.command}")
            return 1

    except KeyboardInterrupt:
        log.warning("\nInterrupted")
        return 130
    except ShipyardError as e:
        log.error(str(e))
        return 1
    except Exception as e:
        log.error(f"{type(e).__name__}: {e}")
        log.debug(traceback.format_exc())
        return 1


if __name__ == "__main__":
    sys.exit(main())

"""
Unified-origin server.

One listening port for API and UI. Production serves the published static
root with client-side-routing fallback; development forwards non-API
requests to the live-compiling dev server.
"""

from __future__ import annotations

import argparse
import os
import threading
import time

from shipyard.build.config import load_project
from shipyard.core.utils import log
from shipyard.serve.context import context_from_env, describe, load_api_handler
from shipyard.serve.router import Router
from shipyard.serve.server import create_server, start_dev_process, stop_process


def cmd_serve(args: argparse.Namespace) -> int:
    """Execute the serve command."""
    project = load_project(args.config)
    settings = project.serve

    handler = load_api_handler(settings.api_handler, search_path=project.root)
    context = context_from_env(
        settings,
        environ=os.environ,
        mode_override=args.mode,
        api_handler=handler,
    )

    # raises StaticRootUnreadable before binding
    router = Router(settings.routes, context)

    host = args.host or settings.host
    port = settings.port if args.port is None else args.port

    log.header(f"shipyard serve ({context.mode.value})")
    for line in describe(context, settings.routes):
        log.info(f"  {line}")

    dev_proc = None
    if context.is_development and settings.dev_command and not args.no_dev_command:
        dev_proc = start_dev_process(settings.dev_command, settings.dev_command_cwd or project.root)

    httpd = create_server(router, host, port, quiet=not args.verbose)
    bound_host, bound_port = httpd.server_address[:2]
    http_thread = threading.Thread(target=httpd.serve_forever, daemon=True)
    http_thread.start()

    log.success(f"Listening on http://{bound_host}:{bound_port}")
    log.info("Press Ctrl+C to stop")

    try:
        while True:
            time.sleep(1)
            if dev_proc is not None and dev_proc.poll() is not None:
                log.warning(f"Dev process exited with code {dev_proc.returncode}")
                dev_proc = None
    except KeyboardInterrupt:
        log.info("")
        log.header("Shutting down")
    finally:
        httpd.shutdown()
        httpd.server_close()
        router.close()
        stop_process(dev_proc)

    log.success("Server stopped")
    return 0

"""
Unified-origin router.

Every request is classified by the route table, then answered by the API
handler, the static root (production) or the development proxy. Both modes
share the classification; only the terminal non-API action differs.
"""

from __future__ import annotations

import mimetypes
import os
import traceback
from pathlib import Path
from typing import Optional

from shipyard.core.utils import log
from shipyard.errors import ProxyError, ProxyTimeout, StaticRootUnreadable
from shipyard.serve.context import Mode, ServingContext
from shipyard.serve.messages import Response, Request, header_list
from shipyard.serve.proxy import DevProxy
from shipyard.serve.routes import RouteKind, RouteMatch, RouteTable

ASSET_CACHE_CONTROL = "public, max-age=3600"
DOCUMENT_CACHE_CONTROL = "no-cache"
UPSTREAM_ERROR_HEADER = "X-Shipyard-Upstream-Error"
READ_METHODS = ("GET", "HEAD")


def check_static_root(static_root: Optional[Path], fallback_document: str) -> tuple[Path, Path]:
    """Validate the production static root at startup.

    The returned root is absolute but not resolved, so a published symlink
    is followed again on every request.

    Returns:
        (static root, fallback document path)

    Raises:
        StaticRootUnreadable: Missing, not a directory, unreadable, or
            lacking the fallback document.
    """
    if static_root is None:
        raise StaticRootUnreadable("No static root configured")

    root = static_root.resolve()
    if not root.exists():
        raise StaticRootUnreadable(
            f"Static root {root} does not exist\n"
            f"  Fix: run `shipyard build` (or `shipyard publish`) first"
        )
    if not root.is_dir():
        raise StaticRootUnreadable(f"Static root {root} is not a directory")
    if not os.access(root, os.R_OK | os.X_OK):
        raise StaticRootUnreadable(f"Static root {root} is not readable")
    try:
        next(root.iterdir(), None)
    except OSError as e:
        raise StaticRootUnreadable(f"Static root {root} is not readable: {e}") from e

    fallback = root / fallback_document
    if not fallback.is_file() or not os.access(fallback, os.R_OK):
        raise StaticRootUnreadable(
            f"Fallback document {fallback_document!r} missing or unreadable in {root}"
        )
    served = static_root.absolute()
    return served, served / fallback_document


def guess_content_type(path: Path, default: str = "application/octet-stream") -> str:
    content_type, _ = mimetypes.guess_type(path.name)
    return content_type or default


class Router:
    """Stateless per-request dispatcher over an immutable ServingContext."""

    def __init__(
        self,
        routes: RouteTable,
        context: ServingContext,
        proxy: Optional[DevProxy] = None,
    ):
        self.routes = routes
        self.context = context
        self._static_root: Optional[Path] = None
        self._fallback: Optional[Path] = None
        self._proxy: Optional[DevProxy] = None

        if context.mode is Mode.PRODUCTION:
            self._static_root, self._fallback = check_static_root(
                context.static_root, context.fallback_document
            )
        else:
            self._proxy = proxy or DevProxy(context.dev_proxy_target, context.proxy_timeout)

    def close(self) -> None:
        if self._proxy is not None:
            self._proxy.close()

    def classify(self, request: Request) -> RouteMatch:
        return self.routes.classify(request.path)

    def dispatch(self, request: Request) -> Response:
        match = self.classify(request)
        if match.kind is RouteKind.API:
            return self._call_api(request)
        if self.context.mode is Mode.DEVELOPMENT:
            return self._forward(request)
        return self._serve_static(request, match)

    # -------------------------------------------------------------------------
    # API
    # -------------------------------------------------------------------------

    def _call_api(self, request: Request) -> Response:
        try:
            status, headers, body = self.context.api_handler(
                request.method, request.target, list(request.headers), request.body
            )
        except Exception as e:
            log.error(f"API handler failed for {request.method} {request.target}: {e!r}")
            log.dim(traceback.format_exc())
            return Response.text(500, "Internal Server Error\n")

        if isinstance(body, str):
            body = body.encode("utf-8")
        return Response(int(status), header_list(headers), body or b"")

    # -------------------------------------------------------------------------
    # Development
    # -------------------------------------------------------------------------

    def _forward(self, request: Request) -> Response:
        try:
            return self._proxy.forward(request)
        except ProxyError as e:
            status = 504 if isinstance(e, ProxyTimeout) else 502
            kind = "timeout" if isinstance(e, ProxyTimeout) else "unreachable"
            log.warning(f"{request.method} {request.target}: {e}")
            return Response.text(
                status,
                f"Upstream unavailable: {e}\n",
                [(UPSTREAM_ERROR_HEADER, kind)],
            )

    # -------------------------------------------------------------------------
    # Production
    # -------------------------------------------------------------------------

    def resolve_file(self, path: str) -> Optional[Path]:
        """Map a normalized request path to a regular file inside the static root."""
        try:
            root = self._static_root.resolve()
            candidate = (root / path.lstrip("/")).resolve()
            if candidate != root and root not in candidate.parents:
                return None
            if candidate.is_file():
                return candidate
        except (OSError, ValueError):
            # NUL bytes, overlong names, a root swapped out mid-request
            return None
        return None

    def _serve_static(self, request: Request, match: RouteMatch) -> Response:
        if request.method not in READ_METHODS:
            return Response.text(405, "Method Not Allowed\n", [("Allow", ", ".join(READ_METHODS))])

        found = self.resolve_file(match.path)
        if found is not None:
            cache = ASSET_CACHE_CONTROL if match.kind is RouteKind.STATIC_ASSET else DOCUMENT_CACHE_CONTROL
            response = self._file_response(found, request, guess_content_type(found), cache)
            if response is not None:
                return response

        # Unknown non-API paths resolve to the entry document for client-side routing.
        response = self._file_response(
            self._fallback,
            request,
            guess_content_type(self._fallback, "text/html; charset=utf-8"),
            DOCUMENT_CACHE_CONTROL,
        )
        if response is None:
            return Response.text(503, "Static root unavailable\n", [("Retry-After", "1")])
        return response

    def _file_response(
        self, path: Path, request: Request, content_type: str, cache: str
    ) -> Optional[Response]:
        try:
            body = path.read_bytes()
        except OSError as e:
            log.warning(f"Could not read {path}: {e}")
            return None
        headers = [
            ("Content-Type", content_type),
            ("Content-Length", str(len(body))),
            ("Cache-Control", cache),
        ]
        if request.method == "HEAD":
            body = b""
        return Response(200, headers, body)


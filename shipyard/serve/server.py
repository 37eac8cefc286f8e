"""
HTTP binding for the router, plus dev process management.

Uses the standard library ThreadingHTTPServer; each request is handed to
Router.dispatch and the Response is written back as-is.
"""

from __future__ import annotations

import functools
import subprocess
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Optional

from shipyard import __version__
from shipyard.core.utils import log
from shipyard.serve.messages import Request, Response
from shipyard.serve.router import Router

NO_BODY_STATUSES = (204, 304)
MAX_CHUNK_LINE = 8192


class MalformedBody(ValueError):
    """The request body framing could not be parsed."""


class RouterRequestHandler(BaseHTTPRequestHandler):
    """Hands every request to the router, whatever its method."""

    server_version = f"shipyard/{__version__}"
    protocol_version = "HTTP/1.1"

    def __init__(self, *args, router: Router, quiet: bool = True, **kwargs):
        self.router = router
        self.quiet = quiet
        super().__init__(*args, **kwargs)

    def log_message(self, format, *args):
        """Suppress default HTTP logging unless verbose."""
        if not self.quiet:
            log.dim(f"{self.address_string()} {format % args}")

    def _is_chunked(self) -> bool:
        encodings = self.headers.get("Transfer-Encoding") or ""
        return "chunked" in [e.strip().lower() for e in encodings.split(",")]

    def _read_chunked(self) -> bytes:
        """Decode a chunked request body, consuming trailers."""
        chunks: list[bytes] = []
        while True:
            line = self.rfile.readline(MAX_CHUNK_LINE + 1)
            if not line.endswith(b"\n"):
                raise MalformedBody("truncated chunk size line")
            try:
                size = int(line.split(b";", 1)[0].strip(), 16)
            except ValueError:
                raise MalformedBody(f"bad chunk size {line[:40]!r}") from None
            if size < 0:
                raise MalformedBody("negative chunk size")
            if size == 0:
                break
            data = self.rfile.read(size)
            if len(data) != size or self.rfile.readline(MAX_CHUNK_LINE + 1) not in (b"\r\n", b"\n"):
                raise MalformedBody("truncated chunk")
            chunks.append(data)

        while True:
            trailer = self.rfile.readline(MAX_CHUNK_LINE + 1)
            if trailer in (b"\r\n", b"\n", b""):
                break
        return b"".join(chunks)

    def _read_body(self) -> bytes:
        if self._is_chunked():
            return self._read_chunked()
        length = self.headers.get("Content-Length")
        if not length:
            return b""
        try:
            size = int(length)
        except ValueError:
            raise MalformedBody(f"bad Content-Length {length!r}") from None
        if size < 0:
            raise MalformedBody(f"bad Content-Length {length!r}")
        return self.rfile.read(size) if size > 0 else b""

    def _request_headers(self, body: bytes) -> tuple[tuple[str, str], ...]:
        headers = list(self.headers.items())
        if self._is_chunked():
            # The body handed on is already decoded
            headers = [(k, v) for k, v in headers if k.lower() not in ("transfer-encoding", "content-length")]
            headers.append(("Content-Length", str(len(body))))
        return tuple(headers)

    def _handle(self) -> None:
        try:
            body = self._read_body()
        except MalformedBody as e:
            self.close_connection = True
            self._send(Response.text(400, f"Bad Request: {e}\n", [("Connection", "close")]), head=False)
            return

        request = Request(
            method=self.command,
            target=self.path,
            headers=self._request_headers(body),
            body=body,
        )
        response = self.router.dispatch(request)
        self._send(response, head=self.command == "HEAD")

    def _send(self, response: Response, head: bool) -> None:
        # send_response_only: no Server/Date injected into relayed responses
        self.log_request(response.status)
        self.send_response_only(response.status)
        for name, value in response.headers:
            self.send_header(name, value)

        wants_body = response.status >= 200 and response.status not in NO_BODY_STATUSES
        if wants_body and response.header("Content-Length") is None:
            self.send_header("Content-Length", str(len(response.body)))
        self.end_headers()

        if wants_body and not head and response.body:
            self.wfile.write(response.body)

    do_GET = _handle
    do_HEAD = _handle
    do_POST = _handle
    do_PUT = _handle
    do_PATCH = _handle
    do_DELETE = _handle
    do_OPTIONS = _handle


def create_server(router: Router, host: str, port: int, quiet: bool = True) -> ThreadingHTTPServer:
    """Bind a threading HTTP server for the router (port 0 picks a free port)."""
    handler_factory = functools.partial(RouterRequestHandler, router=router, quiet=quiet)
    return ThreadingHTTPServer((host, port), handler_factory)


# =============================================================================
# Dev Process
# =============================================================================


def start_dev_process(command: tuple[str, ...], cwd: Path) -> subprocess.Popen:
    """Start the live-compiling dev process in the background."""
    log.info(f"Starting dev process: {' '.join(command)} (cwd={cwd})")
    return subprocess.Popen(list(command), cwd=cwd)


def stop_process(proc: Optional[subprocess.Popen], timeout: float = 5.0) -> None:
    """Terminate a child process, killing it if it does not exit in time."""
    if proc is None or proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()

"""
Development-mode forwarding to the live compiling process.

Requests are relayed unchanged and upstream responses are returned
verbatim, redirects and error statuses included. Response bodies are read
raw, so compressed payloads pass through with their Content-Encoding.
"""

from __future__ import annotations

from typing import Optional

import httpx

from shipyard.errors import ProxyTimeout, ProxyUnreachable
from shipyard.serve.messages import HeaderList, Request, Response

# Connection-level headers that are never forwarded (RFC 9110 section 7.6.1)
HOP_BY_HOP = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})

BODYLESS_METHODS = ("GET", "HEAD", "OPTIONS", "DELETE")


def connection_tokens(headers: HeaderList) -> set[str]:
    """Header names listed in Connection, which are hop-by-hop for this message."""
    tokens: set[str] = set()
    for name, value in headers:
        if name.lower() == "connection":
            tokens.update(t.strip().lower() for t in value.split(",") if t.strip())
    return tokens


def _request_headers(headers: HeaderList) -> dict[str, str]:
    dropped = HOP_BY_HOP | connection_tokens(headers) | {"host", "content-length"}
    merged: dict[str, str] = {}
    for name, value in headers:
        if name.lower() in dropped:
            continue
        if name in merged:
            merged[name] = f"{merged[name]}, {value}"
        else:
            merged[name] = value
    return merged


def _response_headers(response: httpx.Response) -> HeaderList:
    raw = [(k.decode("latin-1"), v.decode("latin-1")) for k, v in response.headers.raw]
    dropped = HOP_BY_HOP | connection_tokens(raw)
    return [(k, v) for k, v in raw if k.lower() not in dropped]


class DevProxy:
    """Forwards requests to dev_proxy_target with a bounded timeout."""

    def __init__(self, target: str, timeout: float, transport: Optional[httpx.BaseTransport] = None):
        self.target = target.rstrip("/")
        self.timeout = timeout
        # trust_env=False: the dev server is addressed directly, never via HTTP_PROXY
        self._client = httpx.Client(
            timeout=timeout,
            follow_redirects=False,
            trust_env=False,
            transport=transport,
        )

    def url_for(self, request: Request) -> str:
        target = request.target if request.target.startswith("/") else "/" + request.target
        return self.target + target

    def forward(self, request: Request) -> Response:
        """Relay a request and return the upstream response.

        Raises:
            ProxyTimeout: The upstream did not answer within the timeout.
            ProxyUnreachable: The upstream refused or dropped the connection.
        """
        content: Optional[bytes] = request.body
        if not content and request.method in BODYLESS_METHODS:
            content = None

        try:
            with self._client.stream(
                request.method,
                self.url_for(request),
                headers=_request_headers(list(request.headers)),
                content=content,
            ) as upstream:
                body = b"".join(upstream.iter_raw())
                return Response(upstream.status_code, _response_headers(upstream), body)
        except httpx.TimeoutException as e:
            raise ProxyTimeout(self.target, str(e) or type(e).__name__) from e
        except httpx.TransportError as e:
            raise ProxyUnreachable(self.target, str(e) or type(e).__name__) from e

    def close(self) -> None:
        self._client.close()

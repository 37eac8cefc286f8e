"""
Tests for request dispatch in both serving modes.

Production scenarios run against a real static root on disk; development
scenarios use a stub proxy so no network is involved.
"""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from shipyard.build.config import DEFAULT_ROUTES
from shipyard.errors import ProxyTimeout, ProxyUnreachable, StaticRootUnreadable
from shipyard.serve.context import Mode, ServingContext
from shipyard.serve.messages import Request, Response
from shipyard.serve.router import UPSTREAM_ERROR_HEADER, Router, check_static_root
from shipyard.serve.routes import RouteKind, RouteRule, RouteTable


class RecordingHandler:
    """API handler that records what it was given."""

    def __init__(self, response=(200, [("Content-Type", "application/json")], b'{"ok": true}')):
        self.calls: list[tuple] = []
        self.response = response

    def __call__(self, method, target, headers, body):
        self.calls.append((method, target, headers, body))
        return self.response


class StubProxy:
    def __init__(self, response: Response | None = None, error: Exception | None = None):
        self.response = response or Response(200, [("Content-Type", "text/html")], b"<html>vite</html>")
        self.error = error
        self.requests: list[Request] = []

    def forward(self, request: Request) -> Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return self.response


ROUTES = RouteTable([
    RouteRule("/api", RouteKind.API),
    RouteRule("/assets", RouteKind.STATIC_ASSET),
    RouteRule("/", RouteKind.FALLBACK),
])


def _production(static_root: Path, handler=None) -> Router:
    context = ServingContext(
        mode=Mode.PRODUCTION,
        static_root=static_root,
        api_handler=handler or RecordingHandler(),
    )
    return Router(ROUTES, context)


def _development(proxy: StubProxy, handler=None) -> Router:
    context = ServingContext(
        mode=Mode.DEVELOPMENT,
        dev_proxy_target="http://127.0.0.1:5173",
        api_handler=handler or RecordingHandler(),
    )
    return Router(ROUTES, context, proxy=proxy)


# =============================================================================
# Production
# =============================================================================


@pytest.mark.evergreen
class TestProductionDispatch:

    def test_client_route_serves_index(self, static_root: Path) -> None:
        response = _production(static_root).dispatch(Request("GET", "/about"))

        assert response.status == 200
        assert response.body == b"<html>index</html>"
        assert response.header("Content-Type").startswith("text/html")
        assert response.header("Cache-Control") == "no-cache"

    def test_root_serves_index(self, static_root: Path) -> None:
        response = _production(static_root).dispatch(Request("GET", "/"))
        assert response.body == b"<html>index</html>"

    def test_deep_link_with_query_serves_index(self, static_root: Path) -> None:
        response = _production(static_root).dispatch(Request("GET", "/settings/profile?tab=2"))
        assert response.status == 200
        assert response.body == b"<html>index</html>"

    def test_existing_asset(self, static_root: Path) -> None:
        response = _production(static_root).dispatch(Request("GET", "/assets/app.js"))

        assert response.status == 200
        assert response.body == b"console.log('app');"
        assert "javascript" in response.header("Content-Type")
        assert response.header("Cache-Control") == "public, max-age=3600"
        assert response.header("Content-Length") == str(len(response.body))

    def test_missing_asset_serves_index(self, static_root: Path) -> None:
        response = _production(static_root).dispatch(Request("GET", "/assets/missing.js"))
        assert response.status == 200
        assert response.body == b"<html>index</html>"

    def test_file_under_fallback_prefix_is_served(self, static_root: Path) -> None:
        (static_root / "robots.txt").write_text("User-agent: *")
        response = _production(static_root).dispatch(Request("GET", "/robots.txt"))
        assert response.body == b"User-agent: *"
        assert response.header("Cache-Control") == "no-cache"

    def test_api_request_reaches_handler_unmodified(self, static_root: Path) -> None:
        handler = RecordingHandler()
        router = _production(static_root, handler)
        request = Request(
            "POST",
            "/api/widgets?limit=5",
            headers=(("Content-Type", "application/json"), ("X-Trace", "abc")),
            body=b'{"name": "gear"}',
        )

        response = router.dispatch(request)

        assert handler.calls == [(
            "POST",
            "/api/widgets?limit=5",
            [("Content-Type", "application/json"), ("X-Trace", "abc")],
            b'{"name": "gear"}',
        )]
        assert response.status == 200
        assert response.body == b'{"ok": true}'

    def test_api_404_is_not_replaced_by_index(self, static_root: Path) -> None:
        handler = RecordingHandler((404, {"Content-Type": "application/json"}, '{"error": "nope"}'))
        response = _production(static_root, handler).dispatch(Request("GET", "/api/missing"))

        assert response.status == 404
        assert response.body == b'{"error": "nope"}'

    def test_api_handler_exception_is_500(self, static_root: Path) -> None:
        def broken(method, target, headers, body):
            raise RuntimeError("database down")

        response = _production(static_root, broken).dispatch(Request("GET", "/api/widgets"))
        assert response.status == 500

    def test_traversal_stays_inside_static_root(self, static_root: Path, tmp_path: Path) -> None:
        (tmp_path / "secret.txt").write_text("secret")
        router = _production(static_root)

        for target in ("/../secret.txt", "/assets/../../secret.txt", "/%2e%2e/secret.txt"):
            response = router.dispatch(Request("GET", target))
            assert response.body != b"secret"
            assert response.status == 200

    def test_symlink_escape_is_not_served(self, static_root: Path, tmp_path: Path) -> None:
        (tmp_path / "secret.txt").write_text("secret")
        os.symlink(tmp_path / "secret.txt", static_root / "link.txt")

        response = _production(static_root).dispatch(Request("GET", "/link.txt"))
        assert response.body == b"<html>index</html>"

    def test_write_methods_not_allowed(self, static_root: Path) -> None:
        response = _production(static_root).dispatch(Request("POST", "/about", body=b"x"))
        assert response.status == 405
        assert response.header("Allow") == "GET, HEAD"

    def test_head_has_length_but_no_body(self, static_root: Path) -> None:
        response = _production(static_root).dispatch(Request("HEAD", "/assets/app.js"))
        assert response.status == 200
        assert response.body == b""
        assert response.header("Content-Length") == str(len(b"console.log('app');"))

    def test_nul_byte_serves_index(self, static_root: Path) -> None:
        response = _production(static_root).dispatch(Request("GET", "/%00"))
        assert response.status == 200
        assert response.body == b"<html>index</html>"

    def test_fallback_removed_after_startup_is_503(self, static_root: Path) -> None:
        router = _production(static_root)
        (static_root / "index.html").unlink()

        response = router.dispatch(Request("GET", "/about"))
        assert response.status == 503
        assert response.header("Retry-After") == "1"


@pytest.mark.evergreen
class TestPublishedSymlink:
    """The published static root is a symlink that is swapped between versions."""

    def _version(self, tmp_path: Path, name: str, body: str) -> Path:
        version = tmp_path / "server" / name
        (version / "assets").mkdir(parents=True)
        (version / "index.html").write_text(body)
        return version

    def test_follows_swapped_symlink(self, tmp_path: Path) -> None:
        v1 = self._version(tmp_path, ".public.v-1", "<html>v1</html>")
        v2 = self._version(tmp_path, ".public.v-2", "<html>v2</html>")
        link = tmp_path / "server" / "public"
        link.symlink_to(v1.name)
        router = _production(link)
        assert router.dispatch(Request("GET", "/")).body == b"<html>v1</html>"

        tmp_link = tmp_path / "server" / ".public.link"
        tmp_link.symlink_to(v2.name)
        os.replace(tmp_link, link)

        assert router.dispatch(Request("GET", "/about")).body == b"<html>v2</html>"
        assert router.dispatch(Request("GET", "/index.html")).body == b"<html>v2</html>"


@pytest.mark.evergreen
class TestStaticRootCheck:

    def test_missing_root(self, tmp_path: Path) -> None:
        with pytest.raises(StaticRootUnreadable, match="does not exist"):
            _production(tmp_path / "public")

    def test_root_is_a_file(self, tmp_path: Path) -> None:
        path = tmp_path / "public"
        path.write_text("x")
        with pytest.raises(StaticRootUnreadable, match="not a directory"):
            _production(path)

    def test_missing_fallback_document(self, tmp_path: Path) -> None:
        (tmp_path / "public").mkdir()
        with pytest.raises(StaticRootUnreadable, match="index.html"):
            _production(tmp_path / "public")

    def test_returns_unresolved_root(self, static_root: Path) -> None:
        root, fallback = check_static_root(static_root, "index.html")
        assert root == static_root.absolute()
        assert fallback == root / "index.html"

    def test_custom_fallback_document(self, static_root: Path) -> None:
        (static_root / "app.html").write_text("<html>app</html>")
        context = ServingContext(
            mode=Mode.PRODUCTION, static_root=static_root, fallback_document="app.html"
        )
        response = Router(RouteTable(DEFAULT_ROUTES), context).dispatch(Request("GET", "/x"))
        assert response.body == b"<html>app</html>"


# =============================================================================
# Development
# =============================================================================


@pytest.mark.evergreen
class TestDevelopmentDispatch:

    def test_non_api_is_forwarded(self) -> None:
        proxy = StubProxy()
        response = _development(proxy).dispatch(Request("GET", "/about?x=1"))

        assert response.body == b"<html>vite</html>"
        assert [r.target for r in proxy.requests] == ["/about?x=1"]

    def test_assets_are_forwarded_too(self) -> None:
        proxy = StubProxy()
        _development(proxy).dispatch(Request("GET", "/assets/app.js"))
        assert len(proxy.requests) == 1

    def test_api_never_reaches_proxy(self) -> None:
        proxy = StubProxy()
        handler = RecordingHandler()
        _development(proxy, handler).dispatch(Request("GET", "/api/widgets"))

        assert proxy.requests == []
        assert len(handler.calls) == 1

    def test_upstream_404_is_relayed(self) -> None:
        proxy = StubProxy(Response(404, [("Content-Type", "text/plain")], b"not here"))
        response = _development(proxy).dispatch(Request("GET", "/nope"))
        assert response.status == 404
        assert response.body == b"not here"

    def test_timeout_maps_to_504(self) -> None:
        proxy = StubProxy(error=ProxyTimeout("http://127.0.0.1:5173/x", "timed out"))
        response = _development(proxy).dispatch(Request("GET", "/x"))

        assert response.status == 504
        assert response.header(UPSTREAM_ERROR_HEADER) == "timeout"

    def test_unreachable_maps_to_502(self) -> None:
        proxy = StubProxy(error=ProxyUnreachable("http://127.0.0.1:5173/x", "refused"))
        response = _development(proxy).dispatch(Request("GET", "/x"))

        assert response.status == 502
        assert response.header(UPSTREAM_ERROR_HEADER) == "unreachable"

    def test_static_root_not_required(self, tmp_path: Path) -> None:
        router = _development(StubProxy())
        assert router.context.static_root is None

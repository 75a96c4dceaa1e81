"""
End-to-end tests for the proxy front door.

Requests go through the real ASGI app with the upstream replaced by a
scripted ``httpx.MockTransport``.
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import httpx
import pytest
from fastapi.testclient import TestClient

from macaw_proxy.exceptions import AssetLoadError, ClientDisconnectedError
from macaw_proxy.routes import abort_on_disconnect
from macaw_proxy.utils_tests.upstream_mock import html, raises, redirect

PAGE = "<html><head><title>t</title></head><body><p>hi</p></body></html>"
INJECTED = (
    "<html><head><title>t</title><style>.x{}</style>\n</head>"
    "<body><p>hi</p><script>run()</script>\n</body></html>"
)


@pytest.fixture
def proxy_client(fake_upstream, asset_dir, monkeypatch):
    from macaw_proxy.server import app

    monkeypatch.setattr("macaw_proxy.lifecycle.ASSET_DIR", str(asset_dir))
    app.state.upstream_transport = fake_upstream.transport()
    try:
        with TestClient(app) as client:
            yield client
    finally:
        del app.state.upstream_transport


class TestRootRedirect:
    def test_root_redirects_to_entry_path(self, proxy_client, fake_upstream):
        response = proxy_client.get("/", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "/macaw45/"
        assert fake_upstream.calls == []

    def test_post_to_root_is_proxied(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/", httpx.Response(200, text="ok"))

        response = proxy_client.post("/", content=b"x")

        assert response.status_code == 200
        assert fake_upstream.paths == ["/macaw45/"]


class TestProxying:
    def test_html_gets_payload(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/watch/42", html(PAGE))

        response = proxy_client.get("/watch/42")

        assert response.status_code == 200
        assert response.text == INJECTED
        assert "content-length" not in response.headers

    def test_html_headers_preserved(self, proxy_client, fake_upstream):
        fake_upstream.route(
            "/macaw45/page",
            httpx.Response(
                200,
                headers=[
                    ("content-type", "text/html"),
                    ("set-cookie", "a=1; Path=/"),
                    ("set-cookie", "b=2; Path=/"),
                    ("x-upstream", "yes"),
                ],
                content=PAGE.encode("utf-8"),
            ),
        )

        response = proxy_client.get("/page")

        assert response.headers.get_list("set-cookie") == ["a=1; Path=/", "b=2; Path=/"]
        assert response.headers["x-upstream"] == "yes"
        assert "content-length" not in response.headers

    def test_binary_streamed_unchanged(self, proxy_client, fake_upstream):
        png = bytes(range(256)) * 8
        fake_upstream.route(
            "/macaw45/img/cover.png",
            httpx.Response(200, headers={"content-type": "image/png"}, content=png),
        )

        response = proxy_client.get("/img/cover.png")

        assert response.status_code == 200
        assert response.content == png
        assert response.headers["content-length"] == str(len(png))

    def test_prefixed_path_not_prefixed_again(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/watch/1?t=5", httpx.Response(200, text="ok"))

        response = proxy_client.get("/macaw45/watch/1?t=5")

        assert response.status_code == 200
        assert fake_upstream.paths == ["/macaw45/watch/1?t=5"]

    def test_upstream_status_passed_through(self, proxy_client, fake_upstream):
        response = proxy_client.get("/missing")

        assert response.status_code == 404
        assert response.text == "not found"

    def test_request_headers_rewritten(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/h", httpx.Response(200))

        proxy_client.get(
            "/h", headers={"user-agent": "browser/1.0", "accept-encoding": "gzip", "x-a": "1"}
        )

        sent = fake_upstream.calls[0].headers
        assert sent["host"] == "barbarian.men"
        assert sent["referer"] == "https://barbarian.men/macaw45"
        assert sent["user-agent"] == "browser/1.0"
        assert sent["accept-encoding"] == "identity"
        assert sent["x-a"] == "1"

    def test_non_ascii_cookie_forwarded(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/watch/42", html(PAGE))

        response = proxy_client.get(
            "/watch/42", headers={"cookie": "name=café".encode("utf-8")}
        )

        assert response.status_code == 200
        assert len(fake_upstream.calls) == 1
        sent = {name.lower(): value for name, value in fake_upstream.calls[0].headers.raw}
        assert sent[b"cookie"] == b"name=caf\xc3\xa9"

    def test_post_body_forwarded(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/api/progress", httpx.Response(204))

        response = proxy_client.post(
            "/api/progress",
            content=b'{"position": 120}',
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 204
        sent = fake_upstream.calls[0]
        assert sent.method == "POST"
        assert sent.content == b'{"position": 120}'

    def test_get_sends_no_body(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/list", httpx.Response(200))

        proxy_client.get("/list")

        assert fake_upstream.calls[0].content == b""

    def test_other_methods_passed_verbatim(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/item/3", httpx.Response(204))

        response = proxy_client.delete("/item/3")

        assert response.status_code == 204
        assert fake_upstream.calls[0].method == "DELETE"


class TestRedirects:
    def test_internal_redirect_resolved_server_side(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/watch/42", redirect("/login", 301))
        fake_upstream.route("/macaw45/login", html(PAGE))

        response = proxy_client.get("/watch/42", follow_redirects=False)

        assert response.status_code == 200
        assert response.text == INJECTED
        assert fake_upstream.paths == ["/macaw45/watch/42", "/macaw45/login"]

    def test_external_redirect_relayed(self, proxy_client, fake_upstream):
        fake_upstream.route(
            "/macaw45/sso",
            httpx.Response(
                302,
                headers={
                    "location": "https://accounts.example.com/auth?x=1",
                    "set-cookie": "state=abc",
                },
            ),
        )

        response = proxy_client.get("/sso", follow_redirects=False)

        assert response.status_code == 302
        assert response.headers["location"] == "https://accounts.example.com/auth?x=1"
        assert response.headers["set-cookie"] == "state=abc"
        assert len(fake_upstream.calls) == 1

    def test_too_many_redirects(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/loop", redirect("/macaw45/loop"))

        response = proxy_client.get("/loop", follow_redirects=False)

        assert response.status_code == 508
        assert response.text == "Too many redirects"
        assert len(fake_upstream.calls) == 5


class TestFailures:
    def test_timeout_is_504(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/slow", raises(httpx.ReadTimeout))

        response = proxy_client.get("/slow")

        assert response.status_code == 504
        assert response.text == "Gateway timeout"

    def test_connection_failure_is_502(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/down", raises(httpx.ConnectError))

        response = proxy_client.get("/down")

        assert response.status_code == 502
        assert response.text == "Proxy error occurred"

    def test_failure_body_is_plain_text(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/down", raises(httpx.ConnectError))

        response = proxy_client.get("/down")

        assert response.headers["content-type"].startswith("text/plain")

    def test_failure_does_not_affect_next_request(self, proxy_client, fake_upstream):
        fake_upstream.route("/macaw45/down", raises(httpx.ConnectError))
        fake_upstream.route("/macaw45/up", httpx.Response(200, text="ok"))

        assert proxy_client.get("/down").status_code == 502
        assert proxy_client.get("/up").text == "ok"


class TestLocalRoutes:
    def test_static_assets_served_locally(self, proxy_client, fake_upstream):
        response = proxy_client.get("/public/custom.css")

        assert response.status_code == 200
        assert "macaw-proxied" in response.text
        assert fake_upstream.calls == []

    def test_metrics_exposed(self, proxy_client, fake_upstream):
        response = proxy_client.get("/_proxy/metrics")

        assert response.status_code == 200
        assert "fastapi_app_info" in response.text
        assert fake_upstream.calls == []


class TestStartup:
    def test_missing_assets_abort_startup(self, tmp_path, monkeypatch):
        from macaw_proxy.server import app

        monkeypatch.setattr("macaw_proxy.lifecycle.ASSET_DIR", str(tmp_path))

        with pytest.raises(AssetLoadError):
            with TestClient(app):
                pass


class TestAbortOnDisconnect:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        request = Mock()
        request.is_disconnected = AsyncMock(return_value=False)

        async def work():
            return "done"

        assert await abort_on_disconnect(request, work()) == "done"

    @pytest.mark.asyncio
    async def test_cancels_work_when_client_leaves(self, monkeypatch):
        monkeypatch.setattr("macaw_proxy.routes.DISCONNECT_POLL_INTERVAL", 0.01)
        request = Mock()
        request.method = "GET"
        request.url.path = "/watch/42"
        request.is_disconnected = AsyncMock(return_value=True)
        cancelled = asyncio.Event()

        async def work():
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        with pytest.raises(ClientDisconnectedError):
            await abort_on_disconnect(request, work())

        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_propagates_work_errors(self):
        request = Mock()
        request.is_disconnected = AsyncMock(return_value=False)

        async def work():
            raise ValueError("bad")

        with pytest.raises(ValueError):
            await abort_on_disconnect(request, work())

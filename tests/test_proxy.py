"""Tests for the reverse proxy and static file apps."""

import asyncio

import httpx
import pytest
from fastapi.testclient import TestClient

from livebuild.models import HttpTarget, StaticServer
from livebuild.proxy import (
    create_proxy_app,
    create_static_app,
    downstream_path,
    match_route,
    Route,
)


class BodyStream(httpx.AsyncByteStream):
    """A response body that is streamed rather than read up front."""

    def __init__(self, body: bytes):
        self.body = body

    async def __aiter__(self):
        yield self.body


class Upstream:
    """Records requests and answers them like a tiny web server."""

    def __init__(self, fail: bool = False):
        self.requests: list[httpx.Request] = []
        self.fail = fail

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            raise httpx.ConnectError("connection refused", request=request)
        self.requests.append(request)
        return httpx.Response(
            200,
            headers=[("X-Upstream", request.url.host), ("Set-Cookie", "a=1"), ("Set-Cookie", "b=2")],
            stream=BodyStream(b"upstream:" + request.url.path.encode()),
        )


def client_for(routes, upstream):
    app = create_proxy_app(routes, transport=httpx.MockTransport(upstream))
    return TestClient(app)


def test_prefix_is_stripped_and_headers_added():
    upstream = Upstream()
    client = client_for(
        {"/api/": HttpTarget(host="http://backend:8082", custom_headers={"Speak-Friend": "mellon"})},
        upstream,
    )

    response = client.get("/api/users?page=2")

    assert response.status_code == 200
    assert response.text == "upstream:/users"
    [request] = upstream.requests
    assert request.url.host == "backend"
    assert request.url.port == 8082
    assert request.url.query == b"page=2"
    assert request.headers["speak-friend"] == "mellon"


def test_longest_route_wins():
    upstream = Upstream()
    client = client_for(
        {
            "/": HttpTarget(host="http://web:8081"),
            "/api/": HttpTarget(host="http://api:8082"),
        },
        upstream,
    )

    assert client.get("/index.html").text == "upstream:/index.html"
    assert client.get("/api/health").text == "upstream:/health"
    assert [r.url.host for r in upstream.requests] == ["web", "api"]


def test_upstream_headers_are_relayed():
    client = client_for({"/": HttpTarget(host="http://web:8081")}, Upstream())

    response = client.get("/")

    assert response.headers["x-upstream"] == "web"
    assert response.headers.get_list("set-cookie") == ["a=1", "b=2"]


def test_body_is_forwarded():
    upstream = Upstream()
    client = client_for({"/": HttpTarget(host="http://web:8081")}, upstream)

    client.post("/submit", content=b"payload")

    assert upstream.requests[0].method == "POST"
    assert upstream.requests[0].content == b"payload"


def test_unmatched_path_is_404():
    client = client_for({"/api/": HttpTarget(host="http://api:8082")}, Upstream())
    assert client.get("/other").status_code == 404


def test_upstream_failure_is_502():
    client = client_for({"/": HttpTarget(host="http://web:8081")}, Upstream(fail=True))

    response = client.get("/")

    assert response.status_code == 502
    assert "connection refused" in response.text


def test_subtree_route_without_slash_redirects():
    upstream = Upstream()
    client = client_for(
        {
            "/": HttpTarget(host="http://web:8081"),
            "/api/": HttpTarget(host="http://api:8082"),
        },
        upstream,
    )

    response = client.get("/api?page=2", follow_redirects=False)

    assert response.status_code == 301
    assert response.headers["location"] == "/api/?page=2"
    assert upstream.requests == []


def test_exact_route_is_not_redirected():
    upstream = Upstream()
    client = client_for(
        {
            "/api": HttpTarget(host="http://exact:8081"),
            "/api/": HttpTarget(host="http://tree:8082"),
        },
        upstream,
    )

    response = client.get("/api", follow_redirects=False)

    assert response.status_code == 200
    assert upstream.requests[0].url.host == "exact"


async def send_raw(app, path: str, query_string: bytes):
    """Drive the ASGI app with an undecoded query string, as a server would."""
    sent = []
    finished = asyncio.Event()
    requested = False

    async def receive():
        nonlocal requested
        if not requested:
            requested = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await finished.wait()
        return {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)
        if message["type"] == "http.response.body" and not message.get("more_body", False):
            finished.set()

    scope = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "query_string": query_string,
        "root_path": "",
        "headers": [(b"host", b"proxy")],
        "client": ("127.0.0.1", 50000),
        "server": ("proxy", 80),
    }
    await app(scope, receive, send)
    return sent


@pytest.mark.asyncio
async def test_non_ascii_query_is_forwarded_encoded():
    upstream = Upstream()
    app = create_proxy_app(
        {"/": HttpTarget(host="http://web:8081")},
        transport=httpx.MockTransport(upstream),
    )

    sent = await send_raw(app, "/search", "q=é&lang=fr".encode("utf-8"))

    assert sent[0]["status"] == 200
    [request] = upstream.requests
    assert request.url.query == b"q=%C3%A9&lang=fr"
    assert request.url.params["q"] == "é"


def test_encoded_query_is_passed_through():
    upstream = Upstream()
    client = client_for({"/": HttpTarget(host="http://web:8081")}, upstream)

    client.get("/search?q=a%20b%26c")

    assert upstream.requests[0].url.query == b"q=a%20b%26c"


@pytest.mark.parametrize(
    "route, incoming, expected",
    [
        ("/", "/index.html", "/index.html"),
        ("/api/", "/api/users", "/users"),
        ("/api/", "/api/", "/"),
        ("/api/", "/api", "/"),
        ("/exact", "/exact", "/"),
    ],
)
def test_downstream_path(route, incoming, expected):
    assert downstream_path(route, incoming) == expected


def test_match_route_semantics():
    target = HttpTarget(host="http://x:1")
    routes = [Route("/exact", target, None), Route("/tree/", target, None)]

    assert match_route(routes, "/exact").path == "/exact"
    assert match_route(routes, "/exact/more") is None
    assert match_route(routes, "/tree/a/b").path == "/tree/"
    assert match_route(routes, "/tree") is None
    assert match_route(routes, "/elsewhere") is None


def test_static_app_serves_directory(tmp_path):
    (tmp_path / "index.html").write_text("<h1>hello</h1>")
    (tmp_path / "app.js").write_text("console.log(1)")
    app = create_static_app(StaticServer(bind_addr=":0", static_dir=str(tmp_path)))
    client = TestClient(app)

    assert client.get("/").text == "<h1>hello</h1>"
    assert client.get("/app.js").text == "console.log(1)"
    assert client.get("/missing.css").status_code == 404


def test_static_app_missing_directory(tmp_path):
    assert create_static_app(StaticServer(static_dir=str(tmp_path / "nope"))) is None

"""
Reverse proxy and static file server.

The proxy maps path prefixes to upstream hosts. Routes ending in "/" match
their whole subtree, other routes match exactly, and the longest matching
route wins. As with Go's ServeMux, a request for "/api" when only "/api/" is
routed gets a 301 redirect to "/api/". The route prefix is stripped before
forwarding, so "/api/users" on route "/api/" reaches the upstream as
"/users". Custom headers configured for the route are added to every
forwarded request.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import NamedTuple, Optional
from urllib.parse import quote_from_bytes, urlsplit

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, RedirectResponse, Response, StreamingResponse
from fastapi.staticfiles import StaticFiles
from starlette.background import BackgroundTask

from .models import HttpTarget, StaticServer

logger = logging.getLogger(__name__)

PROXY_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

# Printable ASCII a query string may carry as-is; "%" keeps client escapes intact
QUERY_SAFE = "!$&'()*+,-./:;=?@[]^_`{|}~%"

# Headers that describe a single connection and must not be forwarded
HOP_BY_HOP = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "host",
}


class Route(NamedTuple):
    path: str
    target: HttpTarget
    client: httpx.AsyncClient


def match_route(routes: list[Route], path: str) -> Optional[Route]:
    """Find the longest route matching path."""
    best = None
    for route in routes:
        if route.path.endswith("/"):
            matched = path.startswith(route.path)
        else:
            matched = path == route.path
        if matched and (best is None or len(route.path) > len(best.path)):
            best = route
    return best


def needs_slash_redirect(routes: list[Route], path: str) -> bool:
    """True if path is not routed itself but path + '/' is a subtree route."""
    paths = {route.path for route in routes}
    return not path.endswith("/") and path not in paths and path + "/" in paths


def downstream_path(route_path: str, incoming: str) -> str:
    """Strip the route prefix from incoming; the result always starts with '/'."""
    prefix = route_path.rstrip("/")
    path = incoming[len(prefix):] if prefix and incoming.startswith(prefix) else incoming
    if not path.startswith("/"):
        path = "/" + path
    return path


def quote_query(raw: bytes) -> str:
    """Percent-encode bytes that are not URL-safe ASCII, keeping existing escapes."""
    return quote_from_bytes(raw, safe=QUERY_SAFE)


def upstream_url(target: HttpTarget, path: str, query: bytes = b"") -> httpx.URL:
    """Join the upstream host, downstream path and the raw client query string."""
    parts = urlsplit(target.host)
    base = parts.path.rstrip("/")
    url = httpx.URL(f"{parts.scheme}://{parts.netloc}{base}{path}")
    if query:
        url = url.copy_with(query=quote_query(query).encode("ascii"))
    return url


def create_proxy_app(
    reverse_proxy: dict[str, HttpTarget],
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the reverse proxy application for the configured routes."""
    routes = []
    for path, target in reverse_proxy.items():
        client = httpx.AsyncClient(
            verify=not target.insecure_skip_verify,
            transport=transport,
            follow_redirects=False,
            timeout=None,
        )
        routes.append(Route(path, target, client))
        logger.info(f"Proxy route {path} -> {target.host}")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        for route in routes:
            await route.client.aclose()

    app = FastAPI(
        title="livebuild proxy",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    @app.api_route("/{full_path:path}", methods=PROXY_METHODS)
    async def forward(request: Request, full_path: str) -> Response:
        incoming = request.url.path
        query = request.scope.get("query_string", b"")
        if needs_slash_redirect(routes, incoming):
            location = incoming + "/"
            if query:
                location += "?" + quote_query(query)
            return RedirectResponse(location, status_code=301)

        route = match_route(routes, incoming)
        if route is None:
            return PlainTextResponse("404 page not found", status_code=404)

        path = downstream_path(route.path, incoming)
        url = upstream_url(route.target, path, query)

        headers = [
            (key, value)
            for key, value in request.headers.items()
            if key.lower() not in HOP_BY_HOP
        ]
        for key, value in route.target.custom_headers.items():
            logger.debug(f"Proxy add header {key}: {value}")
            headers.append((key, value))

        logger.info(f"Proxy {route.path} -> {route.target.host}: {incoming} => {path}")

        upstream_request = route.client.build_request(
            request.method,
            url,
            headers=headers,
            content=await request.body(),
        )
        try:
            upstream = await route.client.send(upstream_request, stream=True)
        except httpx.HTTPError as e:
            logger.error(f"Proxy {route.path} -> {route.target.host} failed: {e!r}")
            return PlainTextResponse(str(e) or e.__class__.__name__, status_code=502)

        response = StreamingResponse(
            upstream.aiter_raw(),
            status_code=upstream.status_code,
            background=BackgroundTask(upstream.aclose),
        )
        response.raw_headers = [
            (key.encode("latin-1"), value.encode("latin-1"))
            for key, value in upstream.headers.multi_items()
            if key.lower() not in HOP_BY_HOP
        ]
        return response

    return app


def create_static_app(static: StaticServer) -> Optional[FastAPI]:
    """Build a static file application, or None if the directory is missing."""
    directory = Path(static.static_dir)
    if not directory.is_dir():
        logger.error(f"Static directory not found: {directory}")
        return None

    app = FastAPI(title="livebuild static", docs_url=None, redoc_url=None, openapi_url=None)
    app.mount("/", StaticFiles(directory=str(directory), html=True), name="static")
    logger.info(f"Serving static files from {directory}")
    return app

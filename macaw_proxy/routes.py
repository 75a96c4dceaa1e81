import asyncio
import logging
from typing import Awaitable, TypeVar

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse, Response
from opentelemetry import trace

from macaw_proxy.exceptions import ClientDisconnectedError, ProxyError
from macaw_proxy.proxy import deliver, inbound_path, map_upstream_path, resolve
from macaw_proxy.proxy.body import ReplayableBody
from macaw_proxy.proxy.forwarder import BODY_METHODS
from macaw_proxy.utils.traced_requests import traced_request
from macaw_proxy.vars import (
    DISCONNECT_POLL_INTERVAL,
    ENTRY_PATH,
    MAX_REDIRECTS,
    UPSTREAM_ORIGIN,
)

router = APIRouter()
tracer = trace.get_tracer(__name__)
logger = logging.getLogger("uvicorn.error")

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS", "TRACE"]

T = TypeVar("T")


async def abort_on_disconnect(request: Request, work: Awaitable[T]) -> T:
    """
    Await ``work`` but cancel it if the client disconnects first.

    Only safe for requests whose body is not being read, since polling for
    disconnect consumes ASGI receive messages.
    """
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_INTERVAL)
            if done:
                return task.result()
            if await request.is_disconnected():
                logger.info(f"Client went away, abandoning {request.method} {request.url.path}")
                raise ClientDisconnectedError()
    finally:
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


async def forward_to_upstream(request: Request) -> Response:
    """
    Proxy one inbound request: map the path, resolve redirects upstream and
    deliver the terminal response, injecting the payload into HTML.
    """
    local_path = inbound_path(request)
    upstream_path = map_upstream_path(local_path)

    with traced_request(
        tracer,
        operation="proxy_request",
        method=request.method,
        upstream_path=upstream_path,
        start_message=f"Proxying: {local_path} -> {UPSTREAM_ORIGIN}{upstream_path}",
    ) as span:
        body = None
        if request.method in BODY_METHODS:
            body = ReplayableBody(request.stream())

        work = resolve(
            request.app.state.upstream_client,
            request.method,
            upstream_path,
            request.headers.raw,
            body,
            budget=MAX_REDIRECTS,
        )
        try:
            if body is None:
                resolution = await abort_on_disconnect(request, work)
            else:
                resolution = await work

            span.set_attribute("proxy.status_code", resolution.response.status_code)
            span.set_attribute("proxy.redirect_hops", resolution.hops)
            return await deliver(resolution, request.app.state.payload)
        except ProxyError as e:
            span.set_attribute("proxy.error", type(e).__name__)
            raise


@router.api_route("/", methods=["GET", "HEAD"], include_in_schema=False)
async def root_redirect():
    """Send the bare root to the canonical entry path."""
    return RedirectResponse(ENTRY_PATH, status_code=302)


@router.api_route("/{path:path}", methods=PROXY_METHODS, include_in_schema=False)
async def proxy_all(request: Request, path: str):
    """Catch-all route that proxies every other request to the upstream."""
    return await forward_to_upstream(request)

"""
Redirect resolution against the upstream.

Redirects that stay on the upstream origin are followed server-side so the
browser never leaves the proxy. Each hop re-maps the target into the upstream
prefix and is a separate upstream call with its own timeout; the number of
calls per request is capped by the redirect budget.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple
from urllib.parse import urlsplit, urlunsplit

import httpx

from macaw_proxy.exceptions import TooManyRedirectsError
from macaw_proxy.proxy.body import ReplayableBody
from macaw_proxy.proxy.forwarder import UpstreamResponse, forward, prepare_headers
from macaw_proxy.proxy.path_mapper import map_upstream_path
from macaw_proxy.vars import MAX_REDIRECTS, UPSTREAM_HOST, UPSTREAM_PORT

logger = logging.getLogger("uvicorn.error")


@dataclass
class Resolution:
    """
    Outcome of resolving one inbound request.

    ``passthrough`` marks a redirect that must reach the client unmodified
    (it leaves the upstream origin, or its body can not be replayed).
    """

    response: UpstreamResponse
    hops: int = 0
    passthrough: bool = False


def location_to_upstream_path(location: str) -> Optional[str]:
    """
    Upstream path for a ``Location`` on the upstream origin, else None.

    Root-relative locations and absolute URLs on the upstream origin qualify;
    anything else (other hosts, document-relative references) does not.
    """
    if location.startswith("/") and not location.startswith("//"):
        return location

    parts = urlsplit(location if not location.startswith("//") else "https:" + location)
    if parts.scheme.lower() != "https" or not parts.hostname:
        return None
    try:
        port = parts.port or 443
    except ValueError:
        return None
    if parts.hostname.lower() != UPSTREAM_HOST.lower() or port != UPSTREAM_PORT:
        return None
    return urlunsplit(("", "", parts.path or "/", parts.query, ""))


def redirect_method(status_code: int, method: str) -> Tuple[str, bool]:
    """
    Method for the next hop and whether the request body goes with it.

    303 turns everything but HEAD into a bodyless GET, 301 and 302 do the same
    for POST only; every other redirect replays method and body unchanged.
    """
    if status_code == 303 and method != "HEAD":
        return "GET", False
    if status_code in (301, 302) and method == "POST":
        return "GET", False
    return method, True


async def resolve(
    client: httpx.AsyncClient,
    method: str,
    upstream_path: str,
    inbound_headers,
    body: Optional[ReplayableBody] = None,
    budget: int = MAX_REDIRECTS,
) -> Resolution:
    """
    Call the upstream, following same-origin redirects.

    Raises:
        TooManyRedirectsError: ``budget`` upstream calls all answered with an
            internal redirect; no further call is made
        GatewayTimeoutError, UpstreamUnavailableError: from the forwarder
    """
    for hop in range(budget):
        headers = prepare_headers(inbound_headers, with_body=body is not None)
        response = await forward(client, method, upstream_path, headers, body)

        location = response.location
        if location is None:
            return Resolution(response=response, hops=hop)

        redirect_path = location_to_upstream_path(location)
        if redirect_path is None:
            logger.info(f"Passing external redirect to client: {upstream_path} -> {location}")
            return Resolution(response=response, hops=hop, passthrough=True)

        next_method, keep_body = redirect_method(response.status_code, method)
        if keep_body and body is not None and not body.replayable:
            logger.warning(
                f"Request body for {upstream_path} was not retained; "
                f"passing {response.status_code} redirect to client"
            )
            return Resolution(response=response, hops=hop, passthrough=True)

        await response.aclose()
        next_path = map_upstream_path(redirect_path)
        logger.info(f"Redirecting internally: {upstream_path} -> {next_path}")
        method = next_method
        body = body if keep_body else None
        upstream_path = next_path

    raise TooManyRedirectsError(upstream_path, budget)

"""
Upstream forwarder: one outbound call to the fixed upstream host.

Inbound headers are copied (minus hop-by-hop headers) with ``host``,
``referer`` and ``user-agent`` overridden and ``accept-encoding`` forced to
``identity`` so HTML arrives in a form that can be rewritten. The response is
returned unread; callers own it and must close it.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Mapping, Optional, Tuple, Union

import httpx

from macaw_proxy.exceptions import GatewayTimeoutError, UpstreamUnavailableError
from macaw_proxy.proxy.body import ReplayableBody
from macaw_proxy.vars import (
    DEFAULT_USER_AGENT,
    UPSTREAM_AUTHORITY,
    UPSTREAM_MAX_CONNECTIONS,
    UPSTREAM_MAX_KEEPALIVE,
    UPSTREAM_ORIGIN,
    UPSTREAM_REFERER,
)

logger = logging.getLogger("uvicorn.error")

# Hop-by-hop headers that should NOT be forwarded (RFC 2616)
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}

# Headers that only make sense alongside a request body
BODY_HEADERS = {"content-length", "content-type", "expect"}

# Methods whose inbound body is streamed upstream
BODY_METHODS = {"POST", "PUT"}

HeaderValue = Union[str, bytes]
HeaderSource = Union[Mapping[str, str], Iterable[Tuple[HeaderValue, HeaderValue]]]


def _as_bytes(value: HeaderValue) -> bytes:
    # Starlette decodes header bytes as latin-1, so this restores the wire form
    return value if isinstance(value, bytes) else value.encode("latin-1")


def prepare_headers(inbound: HeaderSource, with_body: bool = False) -> httpx.Headers:
    """
    Build the outbound header set from the inbound one.

    Accepts a mapping or ``(name, value)`` pairs of ``str`` or raw ``bytes``
    (``request.headers.raw``). Values are forwarded byte for byte, including
    non-ASCII ones. Duplicate headers survive; lookups and overrides are
    case-insensitive.
    """
    items = inbound.items() if hasattr(inbound, "items") else inbound
    pairs = [(_as_bytes(name), _as_bytes(value)) for name, value in items]
    headers = httpx.Headers(
        [
            (name, value)
            for name, value in pairs
            if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
        ]
    )
    user_agent = headers.get("user-agent") or DEFAULT_USER_AGENT

    headers["host"] = UPSTREAM_AUTHORITY
    headers["referer"] = UPSTREAM_REFERER
    headers["user-agent"] = user_agent
    headers["accept-encoding"] = "identity"

    if not with_body:
        for name in BODY_HEADERS:
            headers.pop(name, None)
    return headers


@dataclass
class UpstreamResponse:
    """Status, headers and the still-unread body stream of one upstream call."""

    upstream_path: str
    raw: httpx.Response

    @property
    def status_code(self) -> int:
        return self.raw.status_code

    @property
    def headers(self) -> httpx.Headers:
        return self.raw.headers

    @property
    def content_type(self) -> str:
        return self.raw.headers.get("content-type", "")

    @property
    def is_html(self) -> bool:
        return self.content_type.strip().lower().startswith("text/html")

    @property
    def location(self) -> Optional[str]:
        if 300 <= self.status_code < 400:
            return self.raw.headers.get("location") or None
        return None

    async def aclose(self) -> None:
        await self.raw.aclose()


def build_upstream_client(
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    max_connections: Optional[int] = UPSTREAM_MAX_CONNECTIONS,
    max_keepalive: int = UPSTREAM_MAX_KEEPALIVE,
) -> httpx.AsyncClient:
    """
    Shared client for all upstream calls; redirects are resolved by hand.

    Streamed bodies hold their connection until the client has read them, so
    the pool is uncapped unless ``max_connections`` is given.
    """
    return httpx.AsyncClient(
        timeout=httpx.Timeout(timeout, pool=timeout),
        limits=httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive,
        ),
        follow_redirects=False,
        transport=transport,
    )


async def forward(
    client: httpx.AsyncClient,
    method: str,
    upstream_path: str,
    headers: httpx.Headers,
    body: Optional[ReplayableBody] = None,
) -> UpstreamResponse:
    """
    Send one request upstream and return as soon as response headers arrive.

    Raises:
        GatewayTimeoutError: no response within the client's timeout
        UpstreamUnavailableError: any other transport failure
    """
    target_url = f"{UPSTREAM_ORIGIN}{upstream_path}"
    request = client.build_request(
        method,
        target_url,
        headers=headers,
        content=body.stream() if body is not None else None,
    )
    try:
        response = await client.send(request, stream=True)
    except httpx.PoolTimeout as e:
        logger.error(f"No free upstream connection for {target_url}: {e}")
        raise UpstreamUnavailableError(upstream_path, e) from e
    except httpx.TimeoutException as e:
        logger.error(f"Proxy timeout for {target_url}: {e}")
        raise GatewayTimeoutError(upstream_path) from e
    except httpx.RequestError as e:
        logger.error(f"Failed to reach upstream {target_url}: {e}")
        raise UpstreamUnavailableError(upstream_path, e) from e

    logger.info(f"{method} {upstream_path} -> {response.status_code}")
    return UpstreamResponse(upstream_path=upstream_path, raw=response)

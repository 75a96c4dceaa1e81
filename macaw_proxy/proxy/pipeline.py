"""
Response pipeline: turn the terminal upstream response into the client response.

HTML is buffered, decoded and handed to the rewriter; everything else is
relayed chunk by chunk exactly as the upstream sent it, so the client's read
pace throttles the upstream read.
"""

import logging
from typing import AsyncIterator, Iterable, List, Set

import httpx
from fastapi.responses import StreamingResponse
from starlette.background import BackgroundTask

from macaw_proxy.assets import InjectionPayload
from macaw_proxy.exceptions import (
    GatewayTimeoutError,
    RewriteError,
    UpstreamUnavailableError,
)
from macaw_proxy.proxy.forwarder import HOP_BY_HOP_HEADERS, UpstreamResponse
from macaw_proxy.proxy.redirects import Resolution
from macaw_proxy.rewrite import inject
from macaw_proxy.vars import MAX_HTML_BYTES

logger = logging.getLogger("uvicorn.error")

# Headers invalidated once the body is buffered, decoded and rewritten
REWRITTEN_BODY_HEADERS = {"content-length", "content-encoding"}


def relay_headers(response: UpstreamResponse, skip: Set[str] = frozenset()) -> list:
    """Upstream headers as raw ASGI pairs, duplicates and order preserved."""
    return [
        (name, value)
        for name, value in response.headers.raw
        if name.decode("latin-1").lower() not in HOP_BY_HOP_HEADERS
        and name.decode("latin-1").lower() not in skip
    ]


def _streaming_response(
    response: UpstreamResponse, content: AsyncIterator[bytes], skip: Set[str] = frozenset()
) -> StreamingResponse:
    client_response = StreamingResponse(
        content,
        status_code=response.status_code,
        background=BackgroundTask(response.aclose),
    )
    client_response.raw_headers = relay_headers(response, skip)
    return client_response


async def _relay_raw(response: UpstreamResponse) -> AsyncIterator[bytes]:
    try:
        async for chunk in response.raw.aiter_raw():
            yield chunk
    except httpx.RequestError as e:
        logger.error(f"Upstream stream for {response.upstream_path} broke off: {e}")
        raise
    finally:
        await response.aclose()


async def _relay_buffered(
    response: UpstreamResponse, buffered: Iterable[bytes], rest: AsyncIterator[bytes]
) -> AsyncIterator[bytes]:
    try:
        for chunk in buffered:
            yield chunk
        async for chunk in rest:
            yield chunk
    except httpx.RequestError as e:
        logger.error(f"Upstream stream for {response.upstream_path} broke off: {e}")
        raise
    finally:
        await response.aclose()


async def _single_chunk(body: bytes) -> AsyncIterator[bytes]:
    yield body


def rewrite_html(body: bytes, encoding: str, payload: InjectionPayload) -> bytes:
    """
    Inject the payload into an encoded HTML body.

    Raises:
        RewriteError: if the body can not be decoded or re-encoded
    """
    try:
        html = body.decode(encoding)
        return inject(html, payload).encode(encoding)
    except (UnicodeError, LookupError) as e:
        raise RewriteError(f"cannot rewrite body as {encoding}: {e}") from e


async def deliver_html(
    response: UpstreamResponse,
    payload: InjectionPayload,
    max_bytes: int = MAX_HTML_BYTES,
) -> StreamingResponse:
    """
    Buffer the HTML body and return it with the payload spliced in.

    The upstream is fully read before the client sees anything, so read
    failures still become a regular error response. Bodies above
    ``max_bytes`` are relayed unmodified instead.
    """
    chunks: List[bytes] = []
    size = 0
    body_iter = response.raw.aiter_bytes()
    try:
        async for chunk in body_iter:
            chunks.append(chunk)
            size += len(chunk)
            if size > max_bytes:
                logger.warning(
                    f"HTML for {response.upstream_path} exceeds {max_bytes} bytes; "
                    "relaying without injection"
                )
                return _streaming_response(
                    response,
                    _relay_buffered(response, chunks, body_iter),
                    skip=REWRITTEN_BODY_HEADERS,
                )
    except httpx.TimeoutException as e:
        await response.aclose()
        raise GatewayTimeoutError(response.upstream_path) from e
    except httpx.RequestError as e:
        await response.aclose()
        raise UpstreamUnavailableError(response.upstream_path, e) from e

    await response.aclose()
    body = b"".join(chunks)
    encoding = response.raw.charset_encoding or "utf-8"
    try:
        body = rewrite_html(body, encoding, payload)
    except RewriteError as e:
        logger.error(f"Error injecting assets into {response.upstream_path}: {e}", exc_info=True)

    return _streaming_response(response, _single_chunk(body), skip=REWRITTEN_BODY_HEADERS)


def deliver_stream(response: UpstreamResponse) -> StreamingResponse:
    """Relay status, headers and body bytes exactly as received."""
    return _streaming_response(response, _relay_raw(response))


async def deliver(resolution: Resolution, payload: InjectionPayload) -> StreamingResponse:
    response = resolution.response
    if response.is_html and not resolution.passthrough:
        return await deliver_html(response, payload)
    return deliver_stream(response)

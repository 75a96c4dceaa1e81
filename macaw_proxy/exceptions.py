"""
Proxy error taxonomy and the FastAPI handler that renders it.

Every per-request failure is a ``ProxyError`` carrying the status code and the
short plain-text message the client receives. Errors that happen after the
response has started streaming never reach the handler; they abort the
connection instead.
"""

import logging

from fastapi import Request
from fastapi.responses import PlainTextResponse

logger = logging.getLogger("uvicorn.error")


class ProxyError(Exception):
    """Base class for failures that terminate a single proxied request."""

    status_code = 500
    message = "Proxy error occurred"

    def __init__(self, detail: str = ""):
        self.detail = detail
        super().__init__(detail or self.message)


class UpstreamUnavailableError(ProxyError):
    """Transport-level failure connecting to or talking with the upstream."""

    status_code = 502

    def __init__(self, upstream_path: str, cause: Exception):
        self.upstream_path = upstream_path
        self.cause = cause
        super().__init__(f"Upstream unavailable for {upstream_path}: {cause}")


class GatewayTimeoutError(ProxyError):
    """The upstream did not answer within the timeout window."""

    status_code = 504
    message = "Gateway timeout"

    def __init__(self, upstream_path: str):
        self.upstream_path = upstream_path
        super().__init__(f"Upstream timed out for {upstream_path}")


class TooManyRedirectsError(ProxyError):
    """The redirect budget ran out before a terminal response was reached."""

    status_code = 508
    message = "Too many redirects"

    def __init__(self, upstream_path: str, budget: int):
        self.upstream_path = upstream_path
        self.budget = budget
        super().__init__(
            f"Redirect budget of {budget} exhausted while resolving {upstream_path}"
        )


class ClientDisconnectedError(ProxyError):
    """The client went away before a response could be produced."""

    # nginx convention; the client is gone so nobody reads it
    status_code = 499
    message = "Client closed request"


class RewriteError(Exception):
    """HTML decoding or injection failed; recovered by serving the original body."""


class AssetLoadError(Exception):
    """The injection payload could not be loaded at startup."""

    def __init__(self, path: str, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to load injection asset {path}: {cause}")


async def proxy_exception_handler(request: Request, exc: ProxyError) -> PlainTextResponse:
    """Render a proxy failure as its status code and short plain-text message."""
    if isinstance(exc, ClientDisconnectedError):
        logger.info(f"Client disconnected: {request.method} {request.url.path}")
    else:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return PlainTextResponse(exc.message, status_code=exc.status_code)

"""
Startup and shutdown of the process-wide resources.

The injection payload and the upstream client live on ``app.state`` for the
lifetime of the server; nothing else is shared between requests.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from macaw_proxy.assets import load_payload
from macaw_proxy.proxy import build_upstream_client
from macaw_proxy.vars import (
    ASSET_DIR,
    PROXY_TIMEOUT,
    SCRIPT_ASSET,
    STYLE_ASSET,
    UPSTREAM_ORIGIN,
    UPSTREAM_PREFIX,
)

logger = logging.getLogger("uvicorn.error")


async def startup(app: FastAPI) -> None:
    """
    Load the payload and open the upstream client.

    An ``AssetLoadError`` propagates and aborts server startup.
    """
    app.state.payload = load_payload(ASSET_DIR, STYLE_ASSET, SCRIPT_ASSET)
    app.state.upstream_client = build_upstream_client(
        PROXY_TIMEOUT, transport=getattr(app.state, "upstream_transport", None)
    )
    logger.info(
        f"Proxying to {UPSTREAM_ORIGIN}{UPSTREAM_PREFIX}/* with custom CSS and JS injected"
    )


async def shutdown(app: FastAPI) -> None:
    client = getattr(app.state, "upstream_client", None)
    if client is not None:
        await client.aclose()
        app.state.upstream_client = None
    logger.info("Proxy shut down")


@asynccontextmanager
async def manage_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    await startup(app)
    try:
        yield
    finally:
        await shutdown(app)

import logging
import os
from dataclasses import dataclass

from macaw_proxy.exceptions import AssetLoadError
from macaw_proxy.vars import ASSET_DIR, SCRIPT_ASSET, STYLE_ASSET

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class InjectionPayload:
    """Markup blocks spliced into every proxied HTML document."""

    style_block: str
    script_block: str


def _read_asset(path: str) -> str:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise AssetLoadError(path, e) from e


def load_payload(
    asset_dir: str = ASSET_DIR,
    style_asset: str = STYLE_ASSET,
    script_asset: str = SCRIPT_ASSET,
) -> InjectionPayload:
    """
    Read the style and script assets and wrap them in their tags.

    Raises:
        AssetLoadError: if either file is missing or unreadable
    """
    css = _read_asset(os.path.join(asset_dir, style_asset))
    js = _read_asset(os.path.join(asset_dir, script_asset))
    logger.info(
        f"Loaded injection payload from {asset_dir} "
        f"({len(css)} chars of style, {len(js)} chars of script)"
    )
    return InjectionPayload(
        style_block=f"<style>{css}</style>\n",
        script_block=f"<script>{js}</script>\n",
    )

"""Splice the injection payload into an HTML document."""

import re

from macaw_proxy.assets import InjectionPayload

HEAD_CLOSE = re.compile(r"</head>", re.IGNORECASE)
BODY_CLOSE = re.compile(r"</body>", re.IGNORECASE)


def _insert_before(pattern: re.Pattern, html: str, block: str) -> str:
    match = pattern.search(html)
    if match is None:
        return html
    return html[: match.start()] + block + html[match.start():]


def inject(html: str, payload: InjectionPayload) -> str:
    """
    Insert the style block before the first ``</head>`` and the script block
    before the first ``</body>``. A missing tag skips that insertion; the rest
    of the document is left byte-for-byte untouched.
    """
    html = _insert_before(HEAD_CLOSE, html, payload.style_block)
    return _insert_before(BODY_CLOSE, html, payload.script_block)

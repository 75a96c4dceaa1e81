from urllib.parse import quote

from starlette.requests import Request

from macaw_proxy.vars import UPSTREAM_PREFIX

# RFC 3986 pchar delimiters plus "/" and "%"
PATH_SAFE = "/%!$&'()*+,;=:@"


def has_prefix(path: str, prefix: str = UPSTREAM_PREFIX) -> bool:
    """True when ``path`` starts with the whole ``prefix`` segment."""
    if not path.startswith(prefix):
        return False
    rest = path[len(prefix):]
    return rest == "" or rest[0] in "/?#"


def map_upstream_path(path: str, prefix: str = UPSTREAM_PREFIX) -> str:
    """Place a local path (query included) under the upstream prefix."""
    if has_prefix(path, prefix):
        return path
    if not path.startswith("/"):
        path = "/" + path
    return prefix + path


def inbound_path(request: Request) -> str:
    """Original request target (path plus query), percent-encoding preserved."""
    raw_path = request.scope.get("raw_path")
    if raw_path:
        # Non-ASCII bytes are escaped one by one; existing escapes stay as sent
        path = quote(raw_path.split(b"?", 1)[0], safe=PATH_SAFE)
    else:
        path = quote(request.url.path)
    query_string = request.url.query
    if query_string:
        path = f"{path}?{query_string}"
    return path

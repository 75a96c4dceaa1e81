from .forwarder import UpstreamResponse, build_upstream_client, forward, prepare_headers
from .path_mapper import inbound_path, map_upstream_path
from .pipeline import deliver
from .redirects import Resolution, resolve

__all__ = [
    "UpstreamResponse",
    "build_upstream_client",
    "forward",
    "prepare_headers",
    "inbound_path",
    "map_upstream_path",
    "deliver",
    "Resolution",
    "resolve",
]

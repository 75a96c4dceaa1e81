import os

SERVICE_NAME = os.getenv("SERVICE_NAME", "macaw-proxy")
LOG_LEVEL = os.getenv("LOG_LEVEL", "info").lower()

BIND_HOST = os.environ.get("BIND_HOST", "0.0.0.0")
PORT = int(os.environ.get("PORT", "3000"))

UPSTREAM_HOST = os.environ.get("UPSTREAM_HOST", "barbarian.men")
UPSTREAM_PORT = int(os.environ.get("UPSTREAM_PORT", "443"))
UPSTREAM_ORIGIN = (
    f"https://{UPSTREAM_HOST}"
    if UPSTREAM_PORT == 443
    else f"https://{UPSTREAM_HOST}:{UPSTREAM_PORT}"
)
# Host header value sent upstream
UPSTREAM_AUTHORITY = UPSTREAM_ORIGIN[len("https://"):]

UPSTREAM_PREFIX = "/" + os.environ.get("UPSTREAM_PREFIX", "/macaw45").strip("/")
ENTRY_PATH = os.environ.get("ENTRY_PATH", UPSTREAM_PREFIX + "/")
UPSTREAM_REFERER = os.environ.get("UPSTREAM_REFERER", UPSTREAM_ORIGIN + UPSTREAM_PREFIX)
DEFAULT_USER_AGENT = os.environ.get(
    "DEFAULT_USER_AGENT", "Mozilla/5.0 (compatible; barbarian-proxy)"
)

PROXY_TIMEOUT = float(os.environ.get("PROXY_TIMEOUT", "30"))
MAX_REDIRECTS = int(os.environ.get("MAX_REDIRECTS", "5"))
MAX_HTML_BYTES = int(os.environ.get("MAX_HTML_BYTES", str(10 * 1024 * 1024)))
MAX_REPLAY_BODY_BYTES = int(os.environ.get("MAX_REPLAY_BODY_BYTES", str(1024 * 1024)))
DISCONNECT_POLL_INTERVAL = float(os.environ.get("DISCONNECT_POLL_INTERVAL", "0.5"))

# Unset means no cap on concurrent upstream connections
_max_connections = os.environ.get("UPSTREAM_MAX_CONNECTIONS")
UPSTREAM_MAX_CONNECTIONS = int(_max_connections) if _max_connections else None
UPSTREAM_MAX_KEEPALIVE = int(os.environ.get("UPSTREAM_MAX_KEEPALIVE", "20"))

ASSET_DIR = os.environ.get(
    "ASSET_DIR", os.path.join(os.path.dirname(__file__), "public")
)
STYLE_ASSET = os.environ.get("STYLE_ASSET", "custom.css")
SCRIPT_ASSET = os.environ.get("SCRIPT_ASSET", "custom.js")

STATIC_MOUNT_PATH = os.environ.get("STATIC_MOUNT_PATH", "/public")
METRICS_PATH = os.environ.get("METRICS_PATH", "/_proxy/metrics")

OTLP_ENDPOINT = os.getenv("OTLP_ENDPOINT")
OTLP_HEADERS = os.getenv("OTLP_HEADERS", "")

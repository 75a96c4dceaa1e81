import uvicorn

from macaw_proxy.vars import BIND_HOST, LOG_LEVEL, PORT


def main() -> None:
    """Run the proxy until SIGINT/SIGTERM; uvicorn handles graceful shutdown."""
    uvicorn.run(
        "macaw_proxy.server:app",
        host=BIND_HOST,
        port=PORT,
        log_level=LOG_LEVEL,
    )


if __name__ == "__main__":
    main()

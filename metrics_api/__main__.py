from __future__ import annotations

import argparse

import uvicorn

from metrics_api.config import get_settings


def main() -> None:
    settings = get_settings()

    parser = argparse.ArgumentParser(description="Metrics API demo service")
    parser.add_argument("--host", default=settings.host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=settings.port, help="Port to listen on")
    parser.add_argument(
        "--shutdown-timeout",
        type=float,
        default=settings.shutdown_timeout_seconds,
        help="Seconds to wait for in-flight requests and telemetry flush on shutdown",
    )
    args = parser.parse_args()

    # SIGINT/SIGTERM: uvicorn stops accepting, drains in-flight requests, then
    # the lifespan shutdown flushes telemetry.
    uvicorn.run(
        "metrics_api.main:app_factory",
        factory=True,
        host=args.host,
        port=args.port,
        timeout_graceful_shutdown=args.shutdown_timeout,
        log_config=None,
        access_log=False,
    )


if __name__ == "__main__":
    main()

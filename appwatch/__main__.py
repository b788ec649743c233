"""CLI entry point: python -m appwatch"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="appwatch",
        description="appwatch telemetry service and one-shot health checks",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the telemetry HTTP API")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")

    health = sub.add_parser("check-health", help="Probe one provider and print its status")
    health.add_argument("provider", help="Provider name, e.g. ollama or lmstudio")
    health.add_argument("base_url", help="Provider base URL, e.g. http://localhost:11434")
    health.add_argument("--timeout", type=float, default=None, help="Probe timeout in seconds")

    sub.add_parser("check-connection", help="Check network reachability and print the result")

    return parser.parse_args(argv)


async def _check_health(provider: str, base_url: str, timeout: float | None) -> dict:
    from .config import config
    from .services.health_monitor import HealthMonitor

    monitor = HealthMonitor(timeout=timeout or config.health_check_timeout_secs)
    status = await monitor.perform_health_check(provider, base_url)
    return status.to_dict()


async def _check_connection() -> dict:
    from .config import config
    from .services.connection_monitor import ConnectionMonitor

    monitor = ConnectionMonitor(
        urls=config.connection_check_urls,
        timeout=config.connection_timeout_secs,
        latency_threshold_ms=config.connection_latency_threshold_ms,
    )
    status = await monitor.check_connection()
    return status.to_dict()


def main(argv: list[str] | None = None) -> int:
    from .config import config

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    args = _parse_args(argv)

    if args.command == "serve":
        import uvicorn

        uvicorn.run("appwatch.main:app", host=args.host, port=args.port)
        return 0

    loop = asyncio.new_event_loop()
    try:
        if args.command == "check-health":
            result = loop.run_until_complete(_check_health(args.provider, args.base_url, args.timeout))
            ok = result["status"] == "healthy"
        else:
            result = loop.run_until_complete(_check_connection())
            ok = result["issue"] is None
    finally:
        loop.close()

    print(json.dumps(result, indent=2))
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())

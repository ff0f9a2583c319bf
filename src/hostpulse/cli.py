"""Command line entry point for hostpulse."""

import argparse
import logging
import sys

import uvicorn

from hostpulse.config import LOG_LEVELS, Settings, parse_log_level
from hostpulse.server import create_app

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    """Configure root logging for the server process."""
    logging.basicConfig(level=level, format=LOG_FORMAT)


def parse_args(argv: list[str] | None = None, defaults: Settings | None = None) -> Settings:
    """Parse command line options on top of environment settings."""
    defaults = defaults or Settings.from_env()
    parser = argparse.ArgumentParser(
        prog="hostpulse",
        description="Live CPU, memory and process dashboard over WebSockets.",
    )
    parser.add_argument("--host", default=defaults.host, help="Interface to bind")
    parser.add_argument("--port", type=int, default=defaults.port, help="Port to listen on")
    parser.add_argument(
        "--interval",
        type=float,
        default=defaults.interval,
        help="Seconds between CPU samples",
    )
    parser.add_argument(
        "--decimation",
        type=int,
        default=defaults.decimation,
        help="Refresh memory and processes every N CPU samples",
    )
    parser.add_argument(
        "--log-level",
        default=defaults.log_level,
        choices=LOG_LEVELS,
        type=parse_log_level,
    )
    args = parser.parse_args(argv)
    return Settings(
        host=args.host,
        port=args.port,
        interval=args.interval,
        decimation=args.decimation,
        top_processes=defaults.top_processes,
        channel_capacity=defaults.channel_capacity,
        log_level=args.log_level,
    )


def main(argv: list[str] | None = None) -> None:
    """Entry point for the hostpulse server."""
    try:
        settings = parse_args(argv)
    except ValueError as exc:
        sys.exit(f"hostpulse: {exc}")

    configure_logging(settings.log_level)
    try:
        app = create_app(settings)
    except RuntimeError as exc:
        sys.exit(f"hostpulse: {exc}")

    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()

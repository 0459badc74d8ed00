"""Command-line interface.

This module provides:
- ``serve``: run the dashboard API with uvicorn
- ``check``: validate a dashboard file and print its panel URIs
"""

import argparse
import json
import sys
from dataclasses import replace

import structlog
import uvicorn

from heracles.api.routes import build_index, create_app
from heracles.config import configure_logging, settings
from heracles.dashboard.loader import read_dashboard_list
from heracles.orchestration.errors import HeraclesError

logger = structlog.get_logger(__name__)

DEFAULT_LISTEN = "127.0.0.1:3000"


def parse_listen(value: str) -> tuple[str, int]:
    """Split ``host:port`` into its parts.

    Raises:
        argparse.ArgumentTypeError: If the port is missing or not a number.
    """
    host, sep, port = value.rpartition(":")
    if not sep or not port.isdigit():
        raise argparse.ArgumentTypeError(f"expected host:port, got {value!r}")
    return host.strip("[]") or "127.0.0.1", int(port)


def serve_command(args: argparse.Namespace) -> int:
    host, port = args.listen
    app_settings = replace(settings, HERACLES_CONFIG=args.config or settings.HERACLES_CONFIG)
    app = create_app(app_settings=app_settings)
    uvicorn.run(app, host=host, port=port, log_level=app_settings.LOG_LEVEL.lower())
    return 0


def check_command(args: argparse.Namespace) -> int:
    path = args.config or settings.HERACLES_CONFIG
    try:
        config = read_dashboard_list(path)
    except HeraclesError as e:
        logger.error("dashboard_check_failed", path=path, error=e.message, details=e.details)
        return 1
    print(json.dumps(build_index(config).model_dump(), indent=2))
    return 0


def main() -> int:
    """Main entry point for CLI.

    Returns:
        Exit code.
    """
    parser = argparse.ArgumentParser(description="Heracles dashboard server")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Run the dashboard API")
    serve_parser.add_argument(
        "--listen",
        type=parse_listen,
        default=parse_listen(DEFAULT_LISTEN),
        help=f"Address to bind (default {DEFAULT_LISTEN})",
    )
    serve_parser.add_argument("--config", help="Dashboard YAML file (overrides HERACLES_CONFIG)")

    check_parser = subparsers.add_parser("check", help="Validate a dashboard file")
    check_parser.add_argument("--config", help="Dashboard YAML file (overrides HERACLES_CONFIG)")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    configure_logging(settings.LOG_LEVEL)
    if args.command == "serve":
        return serve_command(args)
    elif args.command == "check":
        return check_command(args)

    return 1


if __name__ == "__main__":
    sys.exit(main())

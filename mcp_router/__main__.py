"""Command-line entry point: ``python -m mcp_router --services services.json``."""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Sequence

from . import __version__
from .config import Config
from .server_manager import ServerManager

logger = logging.getLogger("mcp_router")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mcp_router",
        description="Route JSON-RPC requests to MCP worker processes over stdio.",
    )
    parser.add_argument("--services", help="JSON file with service definitions (env: MCP_SERVICES_FILE)")
    parser.add_argument("--host", help="Gateway listen address (env: HOST)")
    parser.add_argument("--port", type=int, help="Gateway listen port (env: PORT)")
    parser.add_argument(
        "--strategy",
        choices=("persistent", "transient"),
        help="Default strategy for gateway tool calls",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Logging level (default: INFO)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        config = Config.from_env()
    except ValueError as e:
        logger.error("Invalid environment configuration: %s", e)
        return 2
    if args.services:
        config.services_file = args.services
    if args.host:
        config.http_host = args.host
    if args.port is not None:
        config.http_port = args.port
    if args.strategy:
        config.default_strategy = args.strategy

    valid, message = config.is_valid()
    if not valid:
        logger.error("Invalid configuration: %s", message)
        return 2

    try:
        manager = ServerManager(config)
    except (OSError, ValueError) as e:
        logger.error("Failed to load services: %s", e)
        return 1

    try:
        asyncio.run(manager.serve())
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())

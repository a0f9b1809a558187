"""Command line entry point: start the server or manage the stored credential."""

import argparse
import logging
import os
import sys
from typing import List, Optional

import anyio

from . import __version__, auth_cli
from .config import ServerSettings
from .session import configure_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="teams-mcp",
        description="Microsoft Teams MCP server (stdio by default, --http for remote clients).",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--http", action="store_true", help="serve MCP over streamable HTTP")
    parser.add_argument("--port", type=int, help="HTTP port (the PORT env var wins)")
    parser.add_argument("--host", help="HTTP bind address")

    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    commands.add_parser("authenticate", aliases=["auth"], help="sign in with the device code flow")
    commands.add_parser("check", help="show the stored authentication status")
    commands.add_parser("logout", help="remove stored credentials")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    settings = ServerSettings.from_env()
    configure_logging(settings.log_level)

    if args.command in ("authenticate", "auth"):
        sys.exit(auth_cli.authenticate(settings))
    if args.command == "check":
        sys.exit(auth_cli.check(settings))
    if args.command == "logout":
        sys.exit(auth_cli.logout(settings))

    try:
        if args.http:
            # imported lazily: stdio mode never needs uvicorn
            from .http_server import run_http

            if args.host:
                settings.host = args.host
            if args.port is not None and "PORT" not in os.environ:
                settings.port = args.port
            run_http(settings)
        else:
            from .server import run_stdio

            anyio.run(run_stdio, settings)
    except KeyboardInterrupt:
        pass
    except Exception:
        logger.exception("Failed to start")
        sys.exit(1)

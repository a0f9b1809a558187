"""
Teams MCP Server - server factory and the stdio transport.

Each server instance gets every Teams/Graph tool registered against an explicitly
passed client provider; HTTP mode builds one per cached session, stdio mode builds one.
"""

import logging

from mcp.server.fastmcp import FastMCP
from mcp.server.lowlevel import Server

from .auth import CredentialStore
from .config import ServerSettings
from .graph import GraphClientProvider
from .tools import register_tools

logger = logging.getLogger(__name__)

INSTRUCTIONS = (
    "Tools for Microsoft Teams via Microsoft Graph: teams, channels, chats, users and "
    "message search. Call auth_status first if a tool reports that it is not authenticated."
)


def build_provider(settings: ServerSettings) -> GraphClientProvider:
    store = CredentialStore(settings.auth_info_path, settings.access_token)
    return GraphClientProvider(
        store,
        pool_size=settings.client_pool_size,
        client_ttl=settings.client_ttl,
    )


def build_server(provider: GraphClientProvider, request_timeout: float = 25.0) -> FastMCP:
    server = FastMCP("teams-mcp", instructions=INSTRUCTIONS)
    register_tools(server, provider, request_timeout)
    return server


async def run_stdio(settings: ServerSettings) -> None:
    """Serve one client over stdin/stdout with the cached credential."""
    provider = build_provider(settings)
    server = build_server(provider, settings.request_timeout)
    logger.info("Microsoft Graph MCP Server running on stdio")
    try:
        await server.run_stdio_async()
    finally:
        await provider.aclose()


def lowlevel_server(server: FastMCP) -> Server:
    """The protocol server behind ``server``, for running it over raw transport streams.

    FastMCP exposes it only as a private attribute; every caller goes through here.
    """
    return server._mcp_server

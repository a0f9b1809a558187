"""Tool registry: attaches every Teams/Graph tool to a FastMCP server instance."""

from mcp.server.fastmcp import FastMCP

from ..graph import GraphClientProvider
from .auth import register_auth_tools
from .chats import register_chat_tools
from .common import GraphAccess
from .search import register_search_tools
from .teams import register_teams_tools
from .users import register_users_tools


def register_tools(server: FastMCP, provider: GraphClientProvider, request_timeout: float = 25.0) -> None:
    """Register all tools on a freshly constructed server.

    Handlers close over ``provider`` only, so nothing outlives the server instance.
    """
    access = GraphAccess(provider, request_timeout)
    register_auth_tools(server, access)
    register_users_tools(server, access)
    register_teams_tools(server, access)
    register_chat_tools(server, access)
    register_search_tools(server, access)


__all__ = ["GraphAccess", "register_tools"]

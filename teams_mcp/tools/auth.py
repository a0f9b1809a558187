from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.server import Context

from ..auth import AUTHENTICATE_HINT, identity_from_context
from ..helpers import handle_graph_error
from .common import GraphAccess


def register_auth_tools(server: FastMCP, access: GraphAccess) -> None:

    @server.tool(
        name="auth_status",
        annotations={
            "title": "Authentication Status",
            "readOnlyHint": True,
            "destructiveHint": False,
            "idempotentHint": True,
            "openWorldHint": True,
        },
    )
    async def auth_status(ctx: Context = None) -> str:
        """Check whether the server can call Microsoft Graph and as which user."""
        try:
            with access.deadline():
                status = await access.provider.get_auth_status(identity_from_context(ctx))
        except Exception as e:
            return handle_graph_error(e)

        if not status.is_authenticated:
            return f"❌ {AUTHENTICATE_HINT}"
        text = f"✅ Authenticated as {status.display_name} ({status.user_principal_name})"
        if status.expires_at:
            text += f"\nToken expires: {status.expires_at}"
        return text

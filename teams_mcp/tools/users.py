from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.server import Context

from ..helpers import handle_graph_error, summarize_user, to_json
from ..messages import mention_text
from ..models import GetUserInput, SearchUsersForMentionsInput, SearchUsersInput
from .common import READ_ONLY, GraphAccess


def _odata_literal(value: str) -> str:
    return value.replace("'", "''")


def register_users_tools(server: FastMCP, access: GraphAccess) -> None:

    @server.tool(name="get_current_user", annotations=READ_ONLY)
    async def get_current_user(ctx: Context = None) -> str:
        """Get the current user's profile: display name, email, job title and department."""
        try:
            with access.deadline():
                graph = await access.client(ctx)
                user = await graph.get("/me")
            return to_json(summarize_user(user, detailed=True))
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="search_users", annotations=READ_ONLY)
    async def search_users(params: SearchUsersInput, ctx: Context = None) -> str:
        """Search users in the organization by name or email address."""
        try:
            q = _odata_literal(params.query)
            with access.deadline():
                graph = await access.client(ctx)
                data = await graph.get(
                    "/users",
                    params={
                        "$filter": (
                            f"startswith(displayName,'{q}') or startswith(mail,'{q}') "
                            f"or startswith(userPrincipalName,'{q}')"
                        )
                    },
                )
            users = data.get("value", [])
            if not users:
                return "No users found matching your search."
            return to_json([summarize_user(u) for u in users])
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="get_user", annotations=READ_ONLY)
    async def get_user(params: GetUserInput, ctx: Context = None) -> str:
        """Get profile details of a specific user by ID or email address."""
        try:
            with access.deadline():
                graph = await access.client(ctx)
                user = await graph.get(f"/users/{params.user_id}")
            return to_json(summarize_user(user, detailed=True))
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="search_users_for_mentions", annotations=READ_ONLY)
    async def search_users_for_mentions(params: SearchUsersForMentionsInput, ctx: Context = None) -> str:
        """Find users to @mention in a message; returns their IDs and a suggested mention text."""
        try:
            q = _odata_literal(params.query)
            with access.deadline():
                graph = await access.client(ctx)
                data = await graph.get(
                    "/users",
                    params={
                        "$filter": f"startswith(displayName,'{q}') or startswith(userPrincipalName,'{q}')",
                        "$top": params.limit,
                        "$select": "id,displayName,userPrincipalName",
                    },
                )
            users = data.get("value", [])
            if not users:
                return f'No users found matching "{params.query}".'
            return to_json({
                "query": params.query,
                "totalResults": len(users),
                "users": [
                    {
                        "id": u.get("id"),
                        "displayName": u.get("displayName") or "Unknown User",
                        "userPrincipalName": u.get("userPrincipalName"),
                        "mentionText": mention_text(u),
                    }
                    for u in users
                ],
            })
        except Exception as e:
            return handle_graph_error(e)

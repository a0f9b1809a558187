from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.server import Context

from ..helpers import (
    handle_graph_error,
    sort_newest_first,
    summarize_message,
    to_json,
)
from ..messages import compose_message
from ..models import (
    ChannelMessagesInput,
    MessageRepliesInput,
    ReplyChannelMessageInput,
    SendChannelMessageInput,
    TeamInput,
)
from .common import READ_ONLY, WRITE, GraphAccess


def register_teams_tools(server: FastMCP, access: GraphAccess) -> None:

    @server.tool(name="list_teams", annotations=READ_ONLY)
    async def list_teams(ctx: Context = None) -> str:
        """List the Microsoft Teams the current user is a member of."""
        try:
            with access.deadline():
                graph = await access.client(ctx)
                data = await graph.get("/me/joinedTeams")
            teams = data.get("value", [])
            if not teams:
                return "No teams found."
            return to_json([
                {
                    "id": t.get("id"),
                    "displayName": t.get("displayName"),
                    "description": t.get("description"),
                    "isArchived": t.get("isArchived"),
                }
                for t in teams
            ])
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="list_channels", annotations=READ_ONLY)
    async def list_channels(params: TeamInput, ctx: Context = None) -> str:
        """List the channels of a team with their names, descriptions, types and IDs."""
        try:
            with access.deadline():
                graph = await access.client(ctx)
                data = await graph.get(f"/teams/{params.team_id}/channels")
            channels = data.get("value", [])
            if not channels:
                return "No channels found in this team."
            return to_json([
                {
                    "id": c.get("id"),
                    "displayName": c.get("displayName"),
                    "description": c.get("description"),
                    "membershipType": c.get("membershipType"),
                }
                for c in channels
            ])
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="get_channel_messages", annotations=READ_ONLY)
    async def get_channel_messages(params: ChannelMessagesInput, ctx: Context = None) -> str:
        """Retrieve recent messages of a channel, newest first."""
        try:
            with access.deadline():
                graph = await access.client(ctx)
                # channel messages support $top only; ordering happens here
                data = await graph.get(
                    f"/teams/{params.team_id}/channels/{params.channel_id}/messages",
                    params={"$top": params.limit},
                )
            messages = data.get("value", [])
            if not messages:
                return "No messages found in this channel."
            summaries = sort_newest_first([summarize_message(m) for m in messages])
            return to_json({
                "totalReturned": len(summaries),
                "hasMore": bool(data.get("@odata.nextLink")),
                "messages": summaries,
            })
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="send_channel_message", annotations=WRITE)
    async def send_channel_message(params: SendChannelMessageInput, ctx: Context = None) -> str:
        """Send a message to a channel of a team.

        Supports text, markdown and HTML, @mentions (see search_users_for_mentions), an
        attached image (URL or base64) and importance levels.
        """
        try:
            with access.deadline():
                graph = await access.client(ctx)
                payload, notes = await compose_message(graph, params)
                result = await graph.post(
                    f"/teams/{params.team_id}/channels/{params.channel_id}/messages",
                    json_data=payload,
                )
            return "\n".join([f"✅ Message sent successfully. Message ID: {result.get('id')}", *notes])
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="get_channel_message_replies", annotations=READ_ONLY)
    async def get_channel_message_replies(params: MessageRepliesInput, ctx: Context = None) -> str:
        """Retrieve the replies to a channel message, newest first."""
        try:
            endpoint = (
                f"/teams/{params.team_id}/channels/{params.channel_id}"
                f"/messages/{params.message_id}/replies"
            )
            with access.deadline():
                graph = await access.client(ctx)
                data = await graph.get(endpoint, params={"$top": params.limit})
            replies = data.get("value", [])
            if not replies:
                return "No replies found for this message."
            summaries = sort_newest_first([summarize_message(r) for r in replies])
            return to_json({
                "parentMessageId": params.message_id,
                "totalReplies": len(summaries),
                "hasMore": bool(data.get("@odata.nextLink")),
                "replies": summaries,
            })
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="reply_to_channel_message", annotations=WRITE)
    async def reply_to_channel_message(params: ReplyChannelMessageInput, ctx: Context = None) -> str:
        """Reply to a message in a channel, with the same formatting options as send_channel_message."""
        try:
            endpoint = (
                f"/teams/{params.team_id}/channels/{params.channel_id}"
                f"/messages/{params.message_id}/replies"
            )
            with access.deadline():
                graph = await access.client(ctx)
                payload, notes = await compose_message(graph, params)
                result = await graph.post(endpoint, json_data=payload)
            return "\n".join([
                f"✅ Reply sent successfully. Reply ID: {result.get('id')}",
                f"Parent message: {params.message_id}",
                *notes,
            ])
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="list_team_members", annotations=READ_ONLY)
    async def list_team_members(params: TeamInput, ctx: Context = None) -> str:
        """List the members of a team with their roles."""
        try:
            with access.deadline():
                graph = await access.client(ctx)
                data = await graph.get(f"/teams/{params.team_id}/members")
            members = data.get("value", [])
            if not members:
                return "No members found in this team."
            return to_json([
                {
                    "id": m.get("id"),
                    "displayName": m.get("displayName"),
                    "roles": m.get("roles", []),
                    "email": m.get("email"),
                }
                for m in members
            ])
        except Exception as e:
            return handle_graph_error(e)

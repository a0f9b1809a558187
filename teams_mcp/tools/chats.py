from typing import Any, Dict, List

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.server import Context

from ..helpers import (
    handle_graph_error,
    parse_graph_datetime,
    summarize_message,
    to_json,
)
from ..messages import compose_message
from ..models import ChatMessagesInput, CreateChatInput, SendChatMessageInput
from .common import READ_ONLY, WRITE, GraphAccess

AAD_MEMBER = "#microsoft.graph.aadUserConversationMember"


def _within_window(message: dict, since, until) -> bool:
    created = parse_graph_datetime(message.get("createdDateTime"))
    if created is None:
        return True
    if since is not None and created <= since:
        return False
    if until is not None and created >= until:
        return False
    return True


def register_chat_tools(server: FastMCP, access: GraphAccess) -> None:

    @server.tool(name="list_chats", annotations=READ_ONLY)
    async def list_chats(ctx: Context = None) -> str:
        """List the user's recent 1:1 and group chats."""
        try:
            with access.deadline():
                graph = await access.client(ctx)
                data = await graph.get("/me/chats", params={"$expand": "members"})
            chats = data.get("value", [])
            if not chats:
                return "No chats found."
            return to_json([
                {
                    "id": c.get("id"),
                    "topic": c.get("topic") or "No topic",
                    "chatType": c.get("chatType"),
                    "memberCount": len(c["members"]) if c.get("members") is not None else None,
                }
                for c in chats
            ])
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="get_chat_messages", annotations=READ_ONLY)
    async def get_chat_messages(params: ChatMessagesInput, ctx: Context = None) -> str:
        """Retrieve messages of a chat with optional sender and date filters.

        The sender filter runs on the server; the since/until window is applied here
        because Graph does not filter chat messages by date.
        """
        try:
            query: Dict[str, Any] = {
                "$top": params.limit,
                "$orderby": f"{params.order_by} {'desc' if params.descending else 'asc'}",
            }
            if params.from_user:
                query["$filter"] = f"from/user/id eq '{params.from_user}'"

            with access.deadline():
                graph = await access.client(ctx)
                data = await graph.get(f"/me/chats/{params.chat_id}/messages", params=query)

            messages = data.get("value", [])
            if not messages:
                return "No messages found in this chat with the specified filters."

            since = parse_graph_datetime(params.since)
            until = parse_graph_datetime(params.until)
            if since or until:
                messages = [m for m in messages if _within_window(m, since, until)]

            summaries: List[Dict[str, Any]] = [summarize_message(m) for m in messages]
            return to_json({
                "filters": {"since": params.since, "until": params.until, "fromUser": params.from_user},
                "filteringMethod": "client-side" if (since or until) else "server-side",
                "totalReturned": len(summaries),
                "hasMore": bool(data.get("@odata.nextLink")),
                "messages": summaries,
            })
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="send_chat_message", annotations=WRITE)
    async def send_chat_message(params: SendChatMessageInput, ctx: Context = None) -> str:
        """Send a message to a chat: text, markdown or HTML, with optional @mentions and an image."""
        try:
            with access.deadline():
                graph = await access.client(ctx)
                payload, notes = await compose_message(graph, params)
                result = await graph.post(f"/me/chats/{params.chat_id}/messages", json_data=payload)
            return "\n".join([f"✅ Message sent successfully. Message ID: {result.get('id')}", *notes])
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="create_chat", annotations=WRITE)
    async def create_chat(params: CreateChatInput, ctx: Context = None) -> str:
        """Create a 1:1 chat (one email) or a group chat (several emails, optional topic)."""
        try:
            with access.deadline():
                graph = await access.client(ctx)
                me = await graph.get("/me", params={"$select": "id"})
                members = [{
                    "@odata.type": AAD_MEMBER,
                    "user@odata.bind": f"https://graph.microsoft.com/v1.0/users('{me.get('id')}')",
                    "roles": ["owner"],
                }]
                for email in params.user_emails:
                    user = await graph.get(f"/users/{email}", params={"$select": "id"})
                    members.append({
                        "@odata.type": AAD_MEMBER,
                        "user@odata.bind": f"https://graph.microsoft.com/v1.0/users('{user.get('id')}')",
                        "roles": ["owner"],
                    })

                payload: Dict[str, Any] = {
                    "chatType": "oneOnOne" if len(params.user_emails) == 1 else "group",
                    "members": members,
                }
                if params.topic and len(params.user_emails) > 1:
                    payload["topic"] = params.topic

                chat = await graph.post("/chats", json_data=payload)
            return f"✅ Chat created successfully. Chat ID: {chat.get('id')}"
        except Exception as e:
            return handle_graph_error(e)

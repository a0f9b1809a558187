import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import httpx
from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.server import Context

from ..graph import GraphClient
from ..helpers import (
    first_hits_container,
    handle_graph_error,
    parse_graph_datetime,
    sort_newest_first,
    summarize_search_hit,
    to_json,
)
from ..models import MyMentionsInput, RecentMessagesInput, SearchMessagesInput
from .common import READ_ONLY, GraphAccess

logger = logging.getLogger(__name__)

# chats read directly per call, to stay clear of Graph throttling
MAX_DIRECT_CHATS = 10


def _in_scope(hit: dict, scope: str) -> bool:
    resource = hit.get("resource") or {}
    is_channel = bool((resource.get("channelIdentity") or {}).get("channelId"))
    is_chat = bool(resource.get("chatId")) and not is_channel
    if scope == "channels":
        return is_channel
    if scope == "chats":
        return is_chat
    return True


def _search_request(query: str, size: int, enable_top_results: bool) -> dict:
    return {
        "requests": [{
            "entityTypes": ["chatMessage"],
            "query": {"queryString": query},
            "from": 0,
            "size": size,
            "enableTopResults": enable_top_results,
        }]
    }


def _kql_phrase(text: str) -> str:
    return '"' + text.replace('"', " ") + '"'


async def _recent_from_search(
    graph: GraphClient, params: RecentMessagesInput, since: datetime
) -> Optional[List[Dict[str, Any]]]:
    """Recent messages via the Search API; None when it fails or returns mostly empty hits."""
    parts = [f"sent>={since.date().isoformat()}"]
    if params.mentions_user:
        parts.append(f"mentions:{params.mentions_user}")
    if params.from_user:
        parts.append(f"from:{params.from_user}")
    if params.has_attachments is not None:
        parts.append(f"hasAttachment:{str(params.has_attachments).lower()}")
    if params.importance:
        parts.append(f"importance:{params.importance}")
    if params.keywords:
        parts.append(_kql_phrase(params.keywords))

    try:
        response = await graph.post(
            "/search/query",
            json_data=_search_request(" AND ".join(parts), params.limit, False),
        )
    except httpx.HTTPStatusError as e:
        logger.warning("Search API failed (%s), falling back to direct chat queries", e.response.status_code)
        return None

    messages = []
    for hit in (first_hits_container(response) or {}).get("hits") or []:
        summary = summarize_search_hit(hit)
        if summary["type"] == "channel":
            if not params.include_channels:
                continue
            if params.team_ids and summary["teamId"] not in params.team_ids:
                continue
        elif not params.include_chats:
            continue
        messages.append(summary)
    messages = messages[: params.limit]

    poor = sum(1 for m in messages if m["content"] == "No content" or m["from"] == "Unknown")
    if messages and poor / len(messages) > 0.5:
        logger.info("Search API returned mostly empty hits, falling back to direct chat queries")
        return None
    return messages


async def _recent_from_chats(
    graph: GraphClient, params: RecentMessagesInput, since: datetime
) -> List[Dict[str, Any]]:
    """Recent messages read chat by chat. Channel messages are not covered here."""
    if not params.include_chats:
        return []
    chats = (await graph.get("/me/chats")).get("value", [])
    keywords = (params.keywords or "").lower()
    query: Dict[str, Any] = {"$top": min(params.limit, 50), "$orderby": "createdDateTime desc"}
    if params.from_user:
        query["$filter"] = f"from/user/id eq '{params.from_user}'"

    collected: List[Dict[str, Any]] = []
    for chat in chats[:MAX_DIRECT_CHATS]:
        try:
            data = await graph.get(f"/me/chats/{chat.get('id')}/messages", params=query)
        except httpx.HTTPStatusError as e:
            logger.warning("Error reading messages of chat %s: %s", chat.get("id"), e.response.status_code)
            continue
        for message in data.get("value", []):
            created = parse_graph_datetime(message.get("createdDateTime"))
            if created is not None and created < since:
                continue
            content = (message.get("body") or {}).get("content") or ""
            if keywords and keywords not in content.lower():
                continue
            sender = (message.get("from") or {}).get("user") or {}
            collected.append({
                "id": message.get("id"),
                "content": content or "No content",
                "from": sender.get("displayName") or "Unknown",
                "fromUserId": sender.get("id"),
                "createdDateTime": message.get("createdDateTime"),
                "chatId": message.get("chatId") or chat.get("id"),
                "type": "chat",
            })
        if len(collected) >= params.limit:
            break
    return sort_newest_first(collected)[: params.limit]


def register_search_tools(server: FastMCP, access: GraphAccess) -> None:

    @server.tool(name="search_messages", annotations=READ_ONLY)
    async def search_messages(params: SearchMessagesInput, ctx: Context = None) -> str:
        """Search Teams channel and chat messages with the Microsoft Search API (KQL)."""
        try:
            query = params.query
            if params.scope == "channels":
                query = f"{query} AND (channelIdentity/channelId:*)"
            elif params.scope == "chats":
                query = f"{query} AND (chatId:* AND NOT channelIdentity/channelId:*)"

            with access.deadline():
                graph = await access.client(ctx)
                response = await graph.post(
                    "/search/query",
                    json_data=_search_request(query, params.limit, params.enable_top_results),
                )

            container = first_hits_container(response)
            if not container or not container.get("hits"):
                return "No messages found matching your search criteria."
            return to_json({
                "query": params.query,
                "scope": params.scope,
                "totalResults": container.get("total"),
                "results": [summarize_search_hit(h) for h in container["hits"]],
                "moreResultsAvailable": container.get("moreResultsAvailable", False),
            })
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="get_my_mentions", annotations=READ_ONLY)
    async def get_my_mentions(params: MyMentionsInput, ctx: Context = None) -> str:
        """Find recent messages that @mention the current user."""
        try:
            since = datetime.now(timezone.utc) - timedelta(hours=params.hours)
            with access.deadline():
                graph = await access.client(ctx)
                me = await graph.get("/me", params={"$select": "id"})
                user_id = me.get("id")
                if not user_id:
                    return "❌ Error: Could not determine current user ID"
                # KQL date filters accept the date part only
                query = f"sent>={since.date().isoformat()} AND mentions:{user_id}"
                response = await graph.post(
                    "/search/query",
                    json_data=_search_request(query, params.limit, False),
                )

            container = first_hits_container(response)
            hits = [h for h in (container or {}).get("hits") or [] if _in_scope(h, params.scope)]
            if not hits:
                return "No recent mentions found."
            return to_json({
                "timeRange": f"Last {params.hours} hours",
                "scope": params.scope,
                "totalMentions": len(hits),
                "mentions": [summarize_search_hit(h) for h in hits],
            })
        except Exception as e:
            return handle_graph_error(e)

    @server.tool(name="get_recent_messages", annotations=READ_ONLY)
    async def get_recent_messages(params: RecentMessagesInput, ctx: Context = None) -> str:
        """Recent messages from the last N hours with optional filters.

        Keyword, mention, attachment and importance filters go through the Search API; if it
        fails or returns mostly empty hits, the user's chats are read directly instead.
        """
        try:
            since = datetime.now(timezone.utc) - timedelta(hours=params.hours)
            filters = {
                "mentionsUser": params.mentions_user,
                "fromUser": params.from_user,
                "hasAttachments": params.has_attachments,
                "importance": params.importance,
                "keywords": params.keywords,
            }
            with access.deadline():
                graph = await access.client(ctx)
                if params.uses_search:
                    messages = await _recent_from_search(graph, params, since)
                    if messages is not None:
                        return to_json({
                            "method": "search_api",
                            "timeRange": f"Last {params.hours} hours",
                            "filters": filters,
                            "totalFound": len(messages),
                            "messages": messages,
                        })
                messages = await _recent_from_chats(graph, params, since)

            return to_json({
                "method": "direct_chat_queries_fallback" if params.uses_search else "direct_chat_queries",
                "timeRange": f"Last {params.hours} hours",
                "filters": filters,
                "totalFound": len(messages),
                "messages": messages,
            })
        except Exception as e:
            return handle_graph_error(e)

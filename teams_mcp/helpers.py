"""Formatting helpers shared by the tool handlers."""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx

from .auth import NotAuthenticatedError
from .messages import InvalidMessageError


def to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


def parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse a Graph ISO timestamp; returns None when missing or malformed."""
    if not value:
        return None
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def summarize_user(user: dict, detailed: bool = False) -> Dict[str, Any]:
    summary = {
        "displayName": user.get("displayName"),
        "userPrincipalName": user.get("userPrincipalName"),
        "mail": user.get("mail"),
        "id": user.get("id"),
    }
    if detailed:
        summary["jobTitle"] = user.get("jobTitle")
        summary["department"] = user.get("department")
        summary["officeLocation"] = user.get("officeLocation")
    return summary


def summarize_message(message: dict) -> Dict[str, Any]:
    return {
        "id": message.get("id"),
        "content": (message.get("body") or {}).get("content"),
        "from": ((message.get("from") or {}).get("user") or {}).get("displayName"),
        "createdDateTime": message.get("createdDateTime"),
        "importance": message.get("importance"),
    }


def sort_newest_first(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(
        messages,
        key=lambda m: parse_graph_datetime(m.get("createdDateTime")) or epoch,
        reverse=True,
    )


def summarize_search_hit(hit: dict) -> Dict[str, Any]:
    resource = hit.get("resource") or {}
    channel = resource.get("channelIdentity") or {}
    sender = (resource.get("from") or {}).get("user") or {}
    return {
        "id": resource.get("id"),
        "summary": hit.get("summary"),
        "rank": hit.get("rank"),
        "content": (resource.get("body") or {}).get("content") or "No content",
        "from": sender.get("displayName") or "Unknown",
        "fromUserId": sender.get("id"),
        "createdDateTime": resource.get("createdDateTime"),
        "chatId": resource.get("chatId"),
        "teamId": channel.get("teamId"),
        "channelId": channel.get("channelId"),
        "type": "channel" if channel.get("channelId") else "chat",
    }


def first_hits_container(response: dict) -> Optional[dict]:
    """Return the first hits container of a /search/query response, if any."""
    values = response.get("value") or []
    if not values:
        return None
    containers = values[0].get("hitsContainers") or []
    return containers[0] if containers else None


def handle_graph_error(e: Exception) -> str:
    """Format Graph API errors into actionable messages."""
    if isinstance(e, NotAuthenticatedError):
        return f"❌ Error: {e}"
    if isinstance(e, InvalidMessageError):
        return f"❌ {e}"
    if isinstance(e, httpx.HTTPStatusError):
        status = e.response.status_code
        try:
            error_body = e.response.json()
            error_msg = error_body.get("error", {}).get("message", str(e))
        except (ValueError, AttributeError):
            error_msg = str(e)

        if status == 401:
            return (
                "❌ Error 401: Authentication failed. Token may be expired. "
                "Re-run: teams-mcp authenticate\n"
                f"Detail: {error_msg}"
            )
        elif status == 403:
            return f"❌ Error 403: Insufficient permissions. Check the granted Graph scopes.\nDetail: {error_msg}"
        elif status == 404:
            return f"❌ Error 404: Resource not found. Verify the ID is correct.\nDetail: {error_msg}"
        elif status == 429:
            retry_after = e.response.headers.get("Retry-After", "60")
            return f"❌ Error 429: Rate limited. Retry after {retry_after} seconds."
        else:
            return f"❌ Error {status}: {error_msg}"
    elif isinstance(e, httpx.TimeoutException):
        return "❌ Error: Request timed out. The Graph API may be slow. Please retry."
    elif isinstance(e, TimeoutError):
        return "❌ Error: Tool call exceeded its time budget and was cancelled."
    return f"❌ Error: {type(e).__name__}: {e}"

"""Pydantic input models for all MCP tools."""

from typing import Optional, List, Literal

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator


class _ToolInput(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")


# =============================================================================
# Users
# =============================================================================

class SearchUsersInput(_ToolInput):
    """Input for searching users."""

    query: str = Field(..., description="Search query (name or email)", min_length=1)


class GetUserInput(_ToolInput):
    """Input for getting a specific user."""

    user_id: str = Field(..., description="User ID or email address", min_length=1)


class SearchUsersForMentionsInput(_ToolInput):
    """Input for finding users to @mention."""

    query: str = Field(..., description="Search query (name or email)", min_length=1)
    limit: int = Field(default=10, description="Maximum number of results", ge=1, le=50)


# =============================================================================
# Message composition
# =============================================================================

class MentionInput(_ToolInput):
    """One @mention to render in an outgoing message."""

    mention: str = Field(
        ...,
        description="The @mention text as it appears in the message (e.g. 'john.doe')",
        min_length=1,
    )
    user_id: str = Field(..., description="Azure AD user ID of the mentioned user", min_length=1)


class _MessageContent(_ToolInput):
    """Body, formatting, mentions and optional image of an outgoing message."""

    message: str = Field(..., description="Message content", min_length=1)
    importance: Literal["normal", "high", "urgent"] = Field(
        default="normal", description="Message importance"
    )
    format: Literal["text", "markdown", "html"] = Field(
        default="text",
        description="Message format: plain text, markdown (converted to HTML) or HTML (sanitized)",
    )
    mentions: Optional[List[MentionInput]] = Field(
        default=None, description="@mentions to render; each 'mention' text must occur as @text"
    )
    image_url: Optional[str] = Field(default=None, description="URL of an image to attach")
    image_data: Optional[str] = Field(default=None, description="Base64 encoded image to attach")
    image_content_type: Optional[str] = Field(
        default=None, description="MIME type of image_data (e.g. 'image/png')"
    )
    image_file_name: Optional[str] = Field(default=None, description="Name for the attached image")

    @model_validator(mode="after")
    def check_image(self):
        if self.image_url and self.image_data:
            raise ValueError("pass either image_url or image_data, not both")
        if self.image_data and not self.image_content_type:
            raise ValueError("image_content_type is required with image_data")
        return self


# =============================================================================
# Teams and channels
# =============================================================================

class TeamInput(_ToolInput):
    """Input for operations scoped to a team."""

    team_id: str = Field(..., description="Team ID", min_length=1)


class ChannelMessagesInput(_ToolInput):
    """Input for reading channel messages."""

    team_id: str = Field(..., description="Team ID", min_length=1)
    channel_id: str = Field(..., description="Channel ID", min_length=1)
    limit: int = Field(default=20, description="Number of messages to retrieve", ge=1, le=50)


class SendChannelMessageInput(_MessageContent):
    """Input for posting a message to a channel."""

    team_id: str = Field(..., description="Team ID", min_length=1)
    channel_id: str = Field(..., description="Channel ID", min_length=1)


class MessageRepliesInput(_ToolInput):
    """Input for reading the replies of a channel message."""

    team_id: str = Field(..., description="Team ID", min_length=1)
    channel_id: str = Field(..., description="Channel ID", min_length=1)
    message_id: str = Field(..., description="Parent message ID", min_length=1)
    limit: int = Field(default=20, description="Number of replies to retrieve", ge=1, le=50)


class ReplyChannelMessageInput(_MessageContent):
    """Input for replying to a channel message."""

    team_id: str = Field(..., description="Team ID", min_length=1)
    channel_id: str = Field(..., description="Channel ID", min_length=1)
    message_id: str = Field(..., description="Message ID to reply to", min_length=1)


# =============================================================================
# Chats
# =============================================================================

class ChatMessagesInput(_ToolInput):
    """Input for reading chat messages."""

    chat_id: str = Field(..., description="Chat ID", min_length=1)
    limit: int = Field(default=20, description="Number of messages to retrieve", ge=1, le=50)
    since: Optional[str] = Field(default=None, description="Only messages after this ISO datetime")
    until: Optional[str] = Field(default=None, description="Only messages before this ISO datetime")
    from_user: Optional[str] = Field(default=None, description="Only messages from this user ID")
    order_by: Literal["createdDateTime", "lastModifiedDateTime"] = Field(default="createdDateTime")
    descending: bool = Field(default=True, description="Newest first")


class SendChatMessageInput(_MessageContent):
    """Input for sending a chat message."""

    chat_id: str = Field(..., description="Chat ID", min_length=1)


class CreateChatInput(_ToolInput):
    """Input for creating a 1:1 or group chat."""

    user_emails: List[str] = Field(
        ..., description="Email addresses of the users to add to the chat", min_length=1
    )
    topic: Optional[str] = Field(default=None, description="Chat topic (group chats only)")

    @field_validator("user_emails")
    @classmethod
    def validate_emails(cls, v: List[str]) -> List[str]:
        cleaned = [e.strip() for e in v if e and e.strip()]
        if not cleaned:
            raise ValueError("at least one user email is required")
        return cleaned


# =============================================================================
# Search
# =============================================================================

class SearchMessagesInput(_ToolInput):
    """Input for searching Teams messages."""

    query: str = Field(
        ...,
        description="Search query. Supports KQL syntax like 'from:user hasAttachment:true'",
        min_length=1,
    )
    scope: Literal["all", "channels", "chats"] = Field(default="all")
    limit: int = Field(default=25, description="Number of results to return", ge=1, le=100)
    enable_top_results: bool = Field(default=True, description="Enable relevance ranking")


class RecentMessagesInput(_ToolInput):
    """Input for collecting recent messages across chats and channels."""

    hours: int = Field(default=24, description="Look back this many hours (max one week)", ge=1, le=168)
    limit: int = Field(default=50, description="Maximum number of messages", ge=1, le=100)
    mentions_user: Optional[str] = Field(default=None, description="Only messages mentioning this user ID")
    from_user: Optional[str] = Field(default=None, description="Only messages from this user ID")
    has_attachments: Optional[bool] = Field(default=None, description="Filter on attachments")
    importance: Optional[Literal["low", "normal", "high", "urgent"]] = Field(default=None)
    include_channels: bool = Field(default=True, description="Include channel messages")
    include_chats: bool = Field(default=True, description="Include chat messages")
    team_ids: Optional[List[str]] = Field(default=None, description="Restrict channel hits to these teams")
    keywords: Optional[str] = Field(default=None, description="Keywords to look for in message content")

    @property
    def uses_search(self) -> bool:
        """Content filters need the Search API; plain recency reads chats directly."""
        return bool(
            self.keywords or self.mentions_user or self.has_attachments is not None or self.importance
        )


class MyMentionsInput(_ToolInput):
    """Input for listing recent mentions of the current user."""

    hours: int = Field(default=24, description="Look back this many hours", ge=1, le=168)
    limit: int = Field(default=20, description="Maximum number of mentions", ge=1, le=50)
    scope: Literal["all", "channels", "chats"] = Field(default="all")

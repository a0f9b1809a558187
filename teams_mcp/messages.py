"""Outgoing message composition: markdown/HTML bodies, @mentions and inline images."""

import base64
import binascii
import html
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import httpx
import markdown
import nh3

from .graph import GraphClient

logger = logging.getLogger(__name__)

ALLOWED_TAGS = {
    "p", "br", "strong", "em", "b", "i", "u", "s", "del", "a", "ul", "ol", "li",
    "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "code", "pre", "hr",
    "table", "thead", "tbody", "tr", "th", "td", "img",
}
ALLOWED_ATTRIBUTES = {
    "a": {"href", "target", "title"},
    "img": {"src", "alt", "title", "width", "height"},
}

IMAGE_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/bmp": "bmp",
    "image/svg+xml": "svg",
}
# Graph rejects hosted contents above roughly 4 MB
MAX_IMAGE_BYTES = 4 * 1024 * 1024

HOSTED_IMAGE_ID = "1"


class InvalidMessageError(ValueError):
    """The message cannot be composed from the given input (bad image, unknown type...)."""


# =============================================================================
# Body formatting
# =============================================================================

def sanitize_html(content: str) -> str:
    """Keep only the formatting tags Teams renders; drop scripts, styles and handlers."""
    return nh3.clean(content, tags=ALLOWED_TAGS, attributes=ALLOWED_ATTRIBUTES)


def markdown_to_html(text: str) -> str:
    """GitHub-style markdown (tables, fenced code, hard line breaks) to sanitized HTML."""
    rendered = markdown.markdown(text, extensions=["extra", "nl2br", "sane_lists"])
    return sanitize_html(rendered)


def render_body(message: str, fmt: str) -> Tuple[str, str]:
    """Return ``(content, contentType)`` for a Graph chatMessage body."""
    if fmt == "markdown":
        return markdown_to_html(message), "html"
    if fmt == "html":
        return sanitize_html(message), "html"
    return message, "text"


def as_html(content: str, content_type: str) -> str:
    if content_type == "html":
        return content
    return html.escape(content).replace("\n", "<br>")


# =============================================================================
# Mentions
# =============================================================================

@dataclass
class MentionTarget:
    mention: str
    user_id: str
    display_name: str


async def resolve_mentions(graph: GraphClient, mentions) -> List[MentionTarget]:
    """Look up display names; an unresolvable user keeps its mention text."""
    targets = []
    for m in mentions:
        try:
            user = await graph.get(f"/users/{m.user_id}", params={"$select": "displayName"})
            display_name = user.get("displayName") or m.mention
        except httpx.HTTPStatusError as e:
            logger.warning(
                "Could not resolve user %s (%s), using mention text as display name",
                m.user_id, e.response.status_code,
            )
            display_name = m.mention
        targets.append(MentionTarget(m.mention, m.user_id, display_name))
    return targets


def apply_mentions(content: str, targets: List[MentionTarget]) -> Tuple[str, List[Dict[str, Any]]]:
    """Replace ``@text`` / ``@"text"`` with ``<at>`` tags and build the mention entities.

    Graph requires every mention entity to appear in the body, so a mention whose text
    does not occur is appended at the end.
    """
    entities = []
    for index, target in enumerate(targets):
        tag = f'<at id="{index}">{html.escape(target.display_name)}</at>'
        # text bodies are escaped with quotes, sanitized HTML keeps them literal
        variants = {html.escape(target.mention), html.escape(target.mention, quote=False)}
        escaped = "|".join(re.escape(v) for v in sorted(variants, key=len, reverse=True))
        pattern = re.compile(rf'@(?:(?:"|&quot;)(?:{escaped})(?:"|&quot;)|(?:{escaped}))')
        content, count = pattern.subn(lambda _: tag, content)
        if not count:
            content = f"{content} {tag}"
        entities.append({
            "id": index,
            "mentionText": target.display_name,
            "mentioned": {"user": {"id": target.user_id}},
        })
    return content, entities


def mention_text(user: dict) -> str:
    """Suggested ``@`` handle: the UPN local part, else the squashed display name."""
    upn = user.get("userPrincipalName")
    if upn:
        return upn.split("@")[0]
    return re.sub(r"\s+", "", (user.get("displayName") or "")).lower()


# =============================================================================
# Images
# =============================================================================

@dataclass
class ImageContent:
    data: str  # base64
    content_type: str
    name: str


def is_valid_image_type(content_type: str) -> bool:
    return content_type.lower() in IMAGE_EXTENSIONS


def _image_name(content_type: str, file_name: Optional[str]) -> str:
    return file_name or f"image.{IMAGE_EXTENSIONS.get(content_type.lower(), 'img')}"


def _check_size(raw: bytes) -> None:
    if len(raw) > MAX_IMAGE_BYTES:
        raise InvalidMessageError(
            f"Image is {len(raw)} bytes; the limit is {MAX_IMAGE_BYTES} bytes"
        )


async def load_image(graph: GraphClient, params) -> Optional[ImageContent]:
    """Resolve ``image_url`` / ``image_data`` of a message input into hosted content."""
    if params.image_url:
        try:
            response = await graph.download(params.image_url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise InvalidMessageError(f"Failed to download image from URL: {params.image_url} ({e})") from e
        content_type = response.headers.get("content-type", "image/jpeg").split(";")[0].strip().lower()
        if not is_valid_image_type(content_type):
            raise InvalidMessageError(f"Unsupported image type: {content_type}")
        _check_size(response.content)
        return ImageContent(
            base64.b64encode(response.content).decode("ascii"),
            content_type,
            _image_name(content_type, params.image_file_name),
        )

    if params.image_data:
        content_type = params.image_content_type.lower()
        if not is_valid_image_type(content_type):
            raise InvalidMessageError(f"Unsupported image type: {params.image_content_type}")
        try:
            raw = base64.b64decode(params.image_data, validate=True)
        except binascii.Error as e:
            raise InvalidMessageError(f"image_data is not valid base64: {e}") from e
        _check_size(raw)
        return ImageContent(
            base64.b64encode(raw).decode("ascii"),
            content_type,
            _image_name(content_type, params.image_file_name),
        )
    return None


# =============================================================================
# Payload
# =============================================================================

async def compose_message(graph: GraphClient, params) -> Tuple[Dict[str, Any], List[str]]:
    """Build the chatMessage payload for a send/reply input.

    Returns the payload and the extra lines for the tool's success text.
    """
    content, content_type = render_body(params.message, params.format)
    payload: Dict[str, Any] = {"importance": params.importance}
    notes: List[str] = []

    if params.mentions:
        targets = await resolve_mentions(graph, params.mentions)
        content, entities = apply_mentions(as_html(content, content_type), targets)
        content_type = "html"
        payload["mentions"] = entities
        notes.append("📱 Mentions: " + ", ".join(t.display_name for t in targets))

    image = await load_image(graph, params)
    if image is not None:
        content = (
            f"{as_html(content, content_type)}"
            f'<div><img src="../hostedContents/{HOSTED_IMAGE_ID}/$value" alt="{html.escape(image.name)}"></div>'
        )
        content_type = "html"
        payload["hostedContents"] = [{
            "@microsoft.graph.temporaryId": HOSTED_IMAGE_ID,
            "contentBytes": image.data,
            "contentType": image.content_type,
        }]
        notes.append(f"🖼️ Image attached: {image.name}")

    payload["body"] = {"content": content, "contentType": content_type}
    return payload, notes

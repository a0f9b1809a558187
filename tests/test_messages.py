import base64
from types import SimpleNamespace

import httpx
import pytest

from teams_mcp import messages
from teams_mcp.auth import StaticTokenSource
from teams_mcp.graph import GRAPH_BASE_URL, GraphClient
from teams_mcp.messages import (
    InvalidMessageError,
    MentionTarget,
    apply_mentions,
    as_html,
    load_image,
    markdown_to_html,
    mention_text,
    render_body,
    sanitize_html,
)
from teams_mcp.models import SendChatMessageInput

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16


def image_params(**kwargs):
    values = {"image_url": None, "image_data": None, "image_content_type": None, "image_file_name": None}
    values.update(kwargs)
    return SimpleNamespace(**values)


def graph_for(handler):
    http = httpx.AsyncClient(base_url=GRAPH_BASE_URL, transport=httpx.MockTransport(handler))
    return GraphClient(StaticTokenSource("token"), http)


# =============================================================================
# Body formatting
# =============================================================================

def test_markdown_becomes_html():
    html = markdown_to_html("**bold** and *italic*\n\n- one\n- two")
    assert "<strong>bold</strong>" in html
    assert "<em>italic</em>" in html
    assert "<li>one</li>" in html


def test_markdown_tables_are_kept():
    html = markdown_to_html("| a | b |\n|---|---|\n| 1 | 2 |")
    assert "<table>" in html
    assert "<td>1</td>" in html


def test_sanitizer_strips_scripts_and_handlers():
    assert sanitize_html('<p onclick="steal()">hi</p><script>alert(1)</script>') == "<p>hi</p>"


def test_render_body_content_types():
    assert render_body("plain", "text") == ("plain", "text")
    assert render_body("<b>x</b>", "html") == ("<b>x</b>", "html")
    assert render_body("**x**", "markdown")[1] == "html"


def test_text_is_escaped_when_html_is_needed():
    assert as_html("a < b\nnext", "text") == "a &lt; b<br>next"
    assert as_html("<b>x</b>", "html") == "<b>x</b>"


# =============================================================================
# Mentions
# =============================================================================

def test_mention_text_is_replaced_with_at_tag():
    content, entities = apply_mentions("ping @john", [MentionTarget("john", "u1", "John Doe")])

    assert content == 'ping <at id="0">John Doe</at>'
    assert entities == [{"id": 0, "mentionText": "John Doe", "mentioned": {"user": {"id": "u1"}}}]


def test_quoted_mention_in_escaped_text():
    content, _ = apply_mentions(
        as_html('hey @"John Doe"', "text"), [MentionTarget("John Doe", "u1", "John Doe")]
    )
    assert content == 'hey <at id="0">John Doe</at>'


def test_unmatched_mention_is_appended():
    content, entities = apply_mentions(
        "hello", [MentionTarget("jane", "u2", "Jane"), MentionTarget("bob", "u3", "Bob")]
    )
    assert content == 'hello <at id="0">Jane</at> <at id="1">Bob</at>'
    assert [e["id"] for e in entities] == [0, 1]


def test_suggested_mention_text():
    assert mention_text({"userPrincipalName": "john.doe@contoso.com", "displayName": "John"}) == "john.doe"
    assert mention_text({"displayName": "Jane Q Public"}) == "janeqpublic"


# =============================================================================
# Images
# =============================================================================

@pytest.mark.asyncio
async def test_base64_image_is_accepted():
    data = base64.b64encode(PNG).decode()
    image = await load_image(None, image_params(image_data=data, image_content_type="image/PNG"))

    assert image.content_type == "image/png"
    assert image.name == "image.png"
    assert base64.b64decode(image.data) == PNG


@pytest.mark.asyncio
async def test_invalid_base64_is_rejected():
    with pytest.raises(InvalidMessageError, match="not valid base64"):
        await load_image(None, image_params(image_data="not base64!", image_content_type="image/png"))


@pytest.mark.asyncio
async def test_unsupported_image_type_is_rejected():
    data = base64.b64encode(b"%PDF").decode()
    with pytest.raises(InvalidMessageError, match="Unsupported image type"):
        await load_image(None, image_params(image_data=data, image_content_type="application/pdf"))


@pytest.mark.asyncio
async def test_oversized_image_is_rejected(monkeypatch):
    monkeypatch.setattr(messages, "MAX_IMAGE_BYTES", 8)
    data = base64.b64encode(PNG).decode()
    with pytest.raises(InvalidMessageError, match="limit"):
        await load_image(None, image_params(image_data=data, image_content_type="image/png"))


@pytest.mark.asyncio
async def test_image_url_is_downloaded_without_graph_token():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, content=PNG, headers={"content-type": "image/png; charset=binary"})

    image = await load_image(
        graph_for(handler),
        image_params(image_url="https://images.example.com/cat.png", image_file_name="cat.png"),
    )

    assert image.name == "cat.png"
    assert seen[0].url.host == "images.example.com"
    assert "authorization" not in seen[0].headers


@pytest.mark.asyncio
async def test_failed_download_is_reported():
    graph = graph_for(lambda request: httpx.Response(404))
    with pytest.raises(InvalidMessageError, match="Failed to download image"):
        await load_image(graph, image_params(image_url="https://images.example.com/gone.png"))


def test_image_inputs_are_validated():
    with pytest.raises(ValueError):
        SendChatMessageInput(chat_id="c", message="m", image_url="https://x/y.png", image_data="AAAA")
    with pytest.raises(ValueError):
        SendChatMessageInput(chat_id="c", message="m", image_data="AAAA")

"""
messaging/elements.py — Message Element Model

A message is an ordered list of elements. Each element is a plain dict with
a "type" key plus type-specific fields, so it serialises to JSON unchanged
for front-end subscribers:

    {"type": "text", "text": "hello "}
    {"type": "at", "user_id": "42", "username": "bob"}
    {"type": "face", "id": "1"}
    {"type": "link", "channel_id": "99"}
    {"type": "image", "file": "https://cdn.example/a.png"}
    {"type": "reply", "id": "1234"}

Outbound messages ("Sendable") may also be a bare string, or a list mixing
strings and element dicts; strings are re-expanded through the tag grammar.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Union

Element = dict[str, Any]
Sendable = Union[str, Element, list[Union[str, Element]]]


class ElementType(str, Enum):
    TEXT     = "text"
    AT       = "at"
    FACE     = "face"
    LINK     = "link"
    IMAGE    = "image"
    AUDIO    = "audio"
    VIDEO    = "video"
    MARKDOWN = "markdown"
    KEYBOARD = "keyboard"
    BUTTON   = "button"
    ARK      = "ark"
    EMBED    = "embed"
    REPLY    = "reply"


# Tag kinds the inbound grammar accepts; everything else degrades to text.
TAG_KINDS: frozenset[str] = frozenset({
    "text", "face", "at", "image", "video", "audio",
    "markdown", "button", "link", "reply", "ark", "embed",
})

MEDIA_KINDS: tuple[str, ...] = ("image", "video", "audio")


# ─────────────────────────────────────────────────────────────────────────────
# Constructors
# ─────────────────────────────────────────────────────────────────────────────

def text(content: str) -> Element:
    return {"type": "text", "text": content}


def at(user_id: str | int) -> Element:
    """Mention a user; user_id "all" mentions everyone."""
    return {"type": "at", "user_id": str(user_id)}


def face(face_id: str | int) -> Element:
    return {"type": "face", "id": str(face_id)}


def link(channel_id: str | int) -> Element:
    return {"type": "link", "channel_id": str(channel_id)}


def image(file: str) -> Element:
    return {"type": "image", "file": file}


def audio(file: str) -> Element:
    return {"type": "audio", "file": file}


def video(file: str) -> Element:
    return {"type": "video", "file": file}


def reply(message_id: str | int) -> Element:
    return {"type": "reply", "id": str(message_id)}


def markdown(content: str, **extra: Any) -> Element:
    return {"type": "markdown", "content": content, **extra}


def button(**data: Any) -> Element:
    return {"type": "button", **data}


# ─────────────────────────────────────────────────────────────────────────────
# Brief rendering
# ─────────────────────────────────────────────────────────────────────────────

def render_tag(kind: str, attrs: dict[str, Any]) -> str:
    """Render `<kind,key=val,...>`; a tag with no attributes renders as `<kind>`."""
    if not attrs:
        return f"<{kind}>"
    body = ",".join(f"{k}={v}" for k, v in attrs.items())
    return f"<{kind},{body}>"


def brief_of(element: Element) -> str:
    """Human-readable transcript of one element. Logs only, never re-parsed."""
    kind = element.get("type", "text")
    if kind == "text":
        return str(element.get("text", ""))
    return render_tag(kind, {k: v for k, v in element.items() if k != "type"})


def normalize(message: Sendable) -> list[Union[str, Element]]:
    """Wrap a single element or string into a list; copy lists."""
    if isinstance(message, (str, dict)):
        return [message]
    return list(message)

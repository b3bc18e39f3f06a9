"""
messaging/codec.py — Inbound Message Codec

Turns a platform message payload into an ordered element list plus a brief
(log-friendly transcript).

Content grammar: plain text mixed with bracketed tags `<kind,key=val,...>`.
Quoted spans ("…", '…', `…`, “…”, ‘…’) are opaque literal text and are not
scanned for tags, so user-typed angle brackets inside quotes stay text.

Kind aliases:
    <faceType,faceId=1>      → face{id}
    <@!123> / <@123>         → at{user_id, ...mention fields}
    <@everyone>              → at{user_id: "all"}
    <#99>                    → link{channel_id}
    <emoji:7> / <:name:7>    → face{id}

Unknown kinds degrade to a text element holding the original bracket text.
The codec never raises.
"""

from __future__ import annotations

import re
from typing import Any, Iterable

from messaging.elements import TAG_KINDS, Element, brief_of, reply, text

_TOKEN = re.compile(r"(\"[^\"]*?\"|'[^']*?'|`[^`]*?`|“[^”]*?”|‘[^’]*?’|<[^>]+?>)")
_MENTION = re.compile(r"^@!?(\d+)$")
_CHANNEL = re.compile(r"^#(\d+)$")
_FACE_SHORTHAND = re.compile(r"^(?:[a-z]+|a?:\w+):(\d+)$")

_QUOTE_PAIRS = {'"': '"', "'": "'", "`": "`", "“": "”", "‘": "’"}


def trim_quote(value: str) -> str:
    """Strip one pair of matching surrounding quotes, if present."""
    if len(value) >= 2 and _QUOTE_PAIRS.get(value[0]) == value[-1]:
        return value[1:-1]
    return value


def _parse_attrs(raw_attrs: Iterable[str]) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for raw in raw_attrs:
        key, _, value = raw.partition("=")
        key = key.strip().lower()
        if key:
            attrs[key] = trim_quote(value.strip())
    return attrs


def _find_mention(mentions: Iterable[Any], user_id: str) -> dict[str, Any]:
    for mention in mentions:
        if isinstance(mention, dict) and str(mention.get("id")) == user_id:
            return mention
    return {}


def _parse_tag(token: str, mentions: Iterable[Any]) -> Element:
    kind, *raw_attrs = token[1:-1].split(",")
    kind = kind.strip()
    attrs: dict[str, Any] = _parse_attrs(raw_attrs)

    if kind.startswith("faceType"):
        kind = "face"
        attrs = {("id" if k == "faceid" else k): v for k, v in attrs.items()}
    elif kind == "@everyone":
        kind = "at"
        attrs = {"user_id": "all"}
    elif _MENTION.match(kind):
        user_id = _MENTION.match(kind).group(1)
        kind = "at"
        attrs = {"user_id": user_id}
        for key, value in _find_mention(mentions, user_id).items():
            attrs["user_id" if key == "id" else key] = value
    elif _CHANNEL.match(kind):
        attrs = {"channel_id": _CHANNEL.match(kind).group(1)}
        kind = "link"
    elif _FACE_SHORTHAND.match(kind):
        attrs = {"id": _FACE_SHORTHAND.match(kind).group(1)}
        kind = "face"

    if kind not in TAG_KINDS:
        return text(token)
    return {"type": kind, **attrs}


def parse_template(content: str, mentions: Iterable[Any] = ()) -> tuple[list[Element], str]:
    """
    Scan a content string into elements using the tag grammar.

    `mentions` supplies the user objects that `<@!id>` tags are resolved
    against; the outbound Sender calls this without any.
    """
    mentions = list(mentions)
    elements: list[Element] = []
    brief: list[str] = []

    # re.split with one capture group alternates text / token / text / ...
    for index, part in enumerate(_TOKEN.split(content or "")):
        if not part:
            continue
        if index % 2 and part.startswith("<"):
            element = _parse_tag(part, mentions)
        else:
            element = text(part)
        elements.append(element)
        brief.append(brief_of(element))

    return elements, "".join(brief)


def _attachment_element(attachment: dict[str, Any]) -> Element:
    data = dict(attachment)
    content_type = str(data.pop("content_type", None) or "")
    kind = content_type.split("/")[0] or "file"
    url = str(data.get("src") or data.get("url") or "")
    if not url.startswith("http"):
        url = f"https://{url}"
    return {"type": kind, **data, "file": url}


def parse(payload: dict[str, Any]) -> tuple[list[Element], str]:
    """
    Parse a raw message payload into (elements, brief).

    Order: reply reference (if any), content grammar, then attachments.
    Mutates `payload`: "attachments" and "mentions" are popped so they don't
    leak into the canonical event alongside the parsed elements.
    """
    elements: list[Element] = []
    brief: list[str] = []

    reference = payload.get("message_reference")
    if isinstance(reference, dict) and reference.get("message_id"):
        element = reply(reference["message_id"])
        elements.append(element)
        brief.append(brief_of(element))

    mentions = payload.pop("mentions", None)
    if not isinstance(mentions, list):
        mentions = []

    content = payload.get("content")
    body, body_brief = parse_template(content if isinstance(content, str) else "", mentions)
    elements.extend(body)
    brief.append(body_brief)

    attachments = payload.pop("attachments", None)
    for attachment in attachments if isinstance(attachments, list) else []:
        if not isinstance(attachment, dict):
            continue
        element = _attachment_element(attachment)
        elements.append(element)
        brief.append(brief_of(element))

    return elements, "".join(brief)

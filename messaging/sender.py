"""
messaging/sender.py — Outbound Message Encoder

Converts a Sendable (element, string, or list of both) plus optional reply
context into REST payloads, and issues exactly one send call.

Two API surfaces share one encoder; the base path decides which:
  primary — /channels/{id}, /dms/{guild_id}
  v2      — /v2/groups/{id}, /v2/users/{id}

Differences on v2: media must be uploaded to {base}/files and referenced by
the returned file_info; ark/embed elements are not supported and are dropped.

Usage:
    sender = Sender(client, "/channels/42", ["hi ", at("7")], source={"id": "m1"})
    result = await sender.send_msg()
    log.info("bot.message.sent", brief=sender.brief)

REST failures (httpx.HTTPStatusError, transport errors) propagate unchanged.
"""

from __future__ import annotations

import random
from collections import deque
from typing import Any, Optional

import httpx

from exceptions import EmptyMessageError
from messaging.codec import parse_template
from messaging.elements import MEDIA_KINDS, Element, Sendable, brief_of, normalize
from observability.logger import get_logger

log = get_logger(__name__)

MAX_BUTTONS_PER_ROW = 5

# msg_type values understood by the messages endpoint
MSG_TYPE_MARKDOWN = 2
MSG_TYPE_ARK = 3
MSG_TYPE_EMBED = 4
MSG_TYPE_MEDIA = 7

_RICH_KEYS = ("markdown", "keyboard", "ark", "embed", "image", "media")


def _with_scheme(url: str) -> str:
    return url if url.startswith("http") else f"http://{url}"


def _file_type(kind: str) -> int:
    """image → 1, video → 2, audio → 3."""
    return MEDIA_KINDS.index(kind) + 1


class Sender:
    """
    One-shot encoder for a single outbound message.

    Keeps one accumulating payload for text/markdown/keyboard/ark/embed and a
    separate one for file sends; `brief` mirrors what was encoded for logs.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        message: Sendable,
        source: Optional[dict[str, Any]] = None,
    ) -> None:
        self.brief = ""
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._message = message
        self._is_file = False
        self._buttons: list[dict[str, Any]] = []
        self._message_payload: dict[str, Any] = {
            "msg_seq": random.randint(1, 1_000_000),
            "content": "",
        }
        self._file_payload: dict[str, Any] = {"srv_send_msg": True}

        source_id = (source or {}).get("id")
        if source_id:
            self._message_payload["msg_id"] = source_id

    @property
    def is_v2(self) -> bool:
        return self._base_url.startswith("/v2")

    @property
    def message_payload(self) -> dict[str, Any]:
        return self._message_payload

    @property
    def file_payload(self) -> dict[str, Any]:
        return self._file_payload

    # ── Encoding ──────────────────────────────────────────────────────────────

    async def process_message(self) -> None:
        """Walk the elements in order, filling the payloads and the brief."""
        queue: deque[str | Element] = deque(normalize(self._message))
        while queue:
            elem = queue.popleft()
            if isinstance(elem, str):
                expanded, _ = parse_template(elem)
                queue.extendleft(reversed(expanded))
                continue
            await self._encode(elem)

        if self._buttons:
            self._message_payload["keyboard"] = {
                "content": {"rows": [{"buttons": row} for row in self._button_rows()]},
            }

    async def _encode(self, elem: Element) -> None:
        kind = elem.get("type")
        data = {k: v for k, v in elem.items() if k != "type"}
        payload = self._message_payload

        if kind == "reply":
            payload["msg_id"] = elem.get("id")
            self._file_payload["msg_id"] = elem.get("id")
            self.brief += brief_of({"type": "reply", "id": elem.get("id")})

        elif kind == "at":
            user_id = str(elem.get("user_id", ""))
            payload["content"] += "<@everyone>" if user_id == "all" else f"<@{user_id}>"
            self.brief += brief_of({"type": "at", "user_id": user_id})

        elif kind == "link":
            payload["content"] += f"<#{elem.get('channel_id')}>"
            self.brief += brief_of({"type": "link", "channel_id": elem.get("channel_id")})

        elif kind == "text":
            payload["content"] += str(elem.get("text", ""))
            self.brief += str(elem.get("text", ""))

        elif kind == "face":
            payload["content"] += f"<emoji:{elem.get('id')}>"
            self.brief += brief_of({"type": "face", "id": elem.get("id")})

        elif kind in MEDIA_KINDS:
            await self._encode_media(kind, elem)

        elif kind == "markdown":
            payload["markdown"] = data
            payload["msg_type"] = MSG_TYPE_MARKDOWN
            self.brief += brief_of(elem)

        elif kind == "keyboard":
            payload["keyboard"] = data
            payload["msg_type"] = MSG_TYPE_MARKDOWN
            self.brief += brief_of(elem)

        elif kind == "button":
            self._buttons.append(data)
            self.brief += brief_of(elem)

        elif kind in ("ark", "embed"):
            if self.is_v2:
                log.debug("sender.element.dropped", type=kind, surface="v2")
                return
            payload["msg_type"] = MSG_TYPE_ARK if kind == "ark" else MSG_TYPE_EMBED
            payload[kind] = data
            self.brief += brief_of(elem)

        else:
            log.debug("sender.element.unsupported", type=kind)

    async def _encode_media(self, kind: str, elem: Element) -> None:
        url = _with_scheme(str(elem.get("file") or elem.get("url") or ""))
        payload = self._message_payload

        if not self.is_v2:
            payload["image"] = url
            if payload.get("msg_id"):
                payload["content"] = payload["content"] or " "
        elif payload.get("msg_id"):
            payload["content"] = payload["content"] or " "
            payload["msg_type"] = MSG_TYPE_MEDIA
            uploaded = await self._upload(url, _file_type(kind))
            payload["media"] = {"file_info": uploaded.get("file_info")}
        else:
            self._file_payload["file_type"] = _file_type(kind)
            self._file_payload["url"] = url
            self._is_file = True

        self.brief += brief_of({"type": kind, "file": url})

    def _button_rows(self) -> list[list[dict[str, Any]]]:
        rows: list[list[dict[str, Any]]] = []
        row: list[dict[str, Any]] = []
        for btn in self._buttons:
            if isinstance(btn.get("buttons"), list):
                if row:
                    rows.append(row)
                    row = []
                rows.append(btn["buttons"])
                continue
            if len(row) >= MAX_BUTTONS_PER_ROW:
                rows.append(row)
                row = []
            row.append(btn)
        if row:
            rows.append(row)
        return rows

    def _has_rich_content(self) -> bool:
        payload = self._message_payload
        return bool(payload["content"].strip()) or any(k in payload for k in _RICH_KEYS)

    # ── Network ───────────────────────────────────────────────────────────────

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        response = await self._client.post(self._base_url + path, json=payload)
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    async def _upload(self, url: str, file_type: int) -> dict[str, Any]:
        """Upload media by URL without sending it; returns the file handle."""
        result = await self._post(
            "/files",
            {"file_type": file_type, "url": url, "srv_send_msg": False},
        )
        return result or {}

    async def send_msg(self) -> Any:
        """Encode the message and issue the single send call."""
        await self.process_message()

        if self._is_file:
            if not self._has_rich_content():
                return await self._post("/files", self._file_payload)
            # Text (or richer) content alongside a v2 file: upload, then embed.
            uploaded = await self._upload(
                self._file_payload["url"], self._file_payload["file_type"]
            )
            self._message_payload["msg_type"] = MSG_TYPE_MEDIA
            self._message_payload["media"] = {"file_info": uploaded.get("file_info")}
        elif not self._has_rich_content():
            raise EmptyMessageError(
                f"Nothing to send to {self._base_url}: message encoded to an empty payload."
            )

        return await self._post("/messages", self._message_payload)

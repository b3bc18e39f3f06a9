"""
gateway/dispatcher.py — Event Dispatcher

Turns raw DISPATCH frames into canonical events and fans them out to
subscribers.

  map()     — raw dispatch name → canonical dotted name ("system" if unknown)
  build()   — canonical event; message events are run through the codec and
              get a reply() bound to their conversation
  publish() — deliver under every prefix of the canonical name, least
              specific first: "message" → "message.guild" → ...

Subscriber failures are logged and isolated; they never reach the gateway
session or other subscribers.

Usage:
    dispatcher = EventDispatcher(messenger=bot, self_id=lambda: bot.self_id)
    dispatcher.subscribe("message.guild", on_guild_message)
    await dispatcher.dispatch("MESSAGE_CREATE", frame_body, event_id="")
"""

from __future__ import annotations

import inspect
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, Union

from messaging import codec
from messaging.events import MESSAGE_EVENT_TYPES, CanonicalEvent, MessageEvent, Messenger
from observability.logger import get_logger

log = get_logger(__name__)

Subscriber = Callable[[CanonicalEvent], Union[None, Awaitable[None]]]

SYSTEM_EVENT = "system"

EVENT_MAP: dict[str, str] = {
    # Messages
    "MESSAGE_CREATE":           "message.guild",
    "AT_MESSAGE_CREATE":        "message.guild",
    "DIRECT_MESSAGE_CREATE":    "message.direct",
    "GROUP_AT_MESSAGE_CREATE":  "message.group",
    "C2C_MESSAGE_CREATE":       "message.private",
    "MESSAGE_UPDATE":           "notice.message.update",
    "MESSAGE_DELETE":           "notice.message.recall",
    "MESSAGE_DELETE_BULK":      "notice.message.recall.bulk",
    "DIRECT_MESSAGE_DELETE":    "notice.direct.recall",
    # Reactions
    "MESSAGE_REACTION_ADD":     "notice.reaction.add",
    "MESSAGE_REACTION_REMOVE":  "notice.reaction.remove",
    # Guilds
    "GUILD_CREATE":             "notice.guild.increase",
    "GUILD_UPDATE":             "notice.guild.update",
    "GUILD_DELETE":             "notice.guild.decrease",
    # Channels
    "CHANNEL_CREATE":           "notice.channel.increase",
    "CHANNEL_UPDATE":           "notice.channel.update",
    "CHANNEL_DELETE":           "notice.channel.decrease",
    # Members
    "GUILD_MEMBER_ADD":         "notice.member.increase",
    "GUILD_MEMBER_UPDATE":      "notice.member.update",
    "GUILD_MEMBER_REMOVE":      "notice.member.decrease",
    # Misc
    "INTERACTION_CREATE":       "notice.interaction.create",
    "TYPING_START":             "notice.typing.start",
    "PRESENCE_UPDATE":          "notice.presence.update",
    "VOICE_STATE_UPDATE":       "notice.voice.update",
}


def to_unix_seconds(value: Any) -> float:
    """ISO-8601 (or epoch seconds) → unix seconds; 0.0 if unparseable."""
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            pass
    return 0.0


def prefixes(name: str) -> list[str]:
    """"a.b.c" → ["a", "a.b", "a.b.c"]."""
    parts = name.split(".")
    return [".".join(parts[: i + 1]) for i in range(len(parts))]


class EventDispatcher:
    """
    Typed publish/subscribe keyed by canonical event name.

    One instance per bot. Only the gateway session calls dispatch(); anyone
    may subscribe.
    """

    def __init__(
        self,
        messenger: Optional[Messenger] = None,
        self_id: Callable[[], str] = lambda: "",
        ignore_self: bool = True,
    ) -> None:
        self._messenger = messenger
        self._self_id = self_id
        self._ignore_self = ignore_self
        self._subscribers: dict[str, list[Subscriber]] = {}

    # ── Subscription ──────────────────────────────────────────────────────────

    def subscribe(self, name: str, handler: Subscriber) -> None:
        self._subscribers.setdefault(name, []).append(handler)

    def unsubscribe(self, name: str, handler: Subscriber) -> None:
        handlers = self._subscribers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, name: str) -> int:
        return len(self._subscribers.get(name, []))

    # ── Mapping / building ────────────────────────────────────────────────────

    @staticmethod
    def map(raw_name: str) -> str:
        return EVENT_MAP.get(raw_name, SYSTEM_EVENT)

    def build(self, event_id: str, name: str, raw_payload: dict[str, Any]) -> CanonicalEvent:
        post_type, _, rest = name.partition(".")
        detail_type, _, sub_type = rest.partition(".")
        payload = dict(raw_payload)

        event_type = MESSAGE_EVENT_TYPES.get(name)
        if event_type is None:
            user_id = payload.get("user_id")
            return CanonicalEvent(
                name=name,
                event_id=event_id,
                post_type=post_type,
                detail_type=detail_type,
                sub_type=sub_type,
                payload=payload,
                user_id=str(user_id) if user_id is not None else None,
            )

        return self._build_message(event_type, event_id, name, post_type, detail_type, sub_type, payload)

    def _build_message(
        self,
        event_type: type[MessageEvent],
        event_id: str,
        name: str,
        post_type: str,
        detail_type: str,
        sub_type: str,
        payload: dict[str, Any],
    ) -> MessageEvent:
        elements, brief = codec.parse(payload)
        author = payload.get("author") if isinstance(payload.get("author"), dict) else {}
        member = payload.get("member") if isinstance(payload.get("member"), dict) else {}
        roles = member.get("roles") or []
        user_id = author.get("id")
        message_id = payload.get("event_id") or payload.get("id") or ""

        return event_type(
            name=name,
            event_id=event_id,
            post_type=post_type,
            detail_type=detail_type,
            sub_type=sub_type,
            payload=payload,
            user_id=str(user_id) if user_id is not None else None,
            message_id=str(message_id),
            message=elements,
            raw_message=brief,
            sender={
                "user_id": user_id,
                "user_name": author.get("username"),
                "permissions": ["normal", *roles],
                "user_openid": author.get("user_openid") or author.get("member_openid"),
            },
            timestamp=to_unix_seconds(payload.get("timestamp")),
            messenger=self._messenger,
        )

    # ── Dispatch / fan-out ────────────────────────────────────────────────────

    async def dispatch(self, raw_name: str, body: Any, event_id: str = "") -> Optional[CanonicalEvent]:
        """
        Translate one DISPATCH body and publish it. Returns the event, or None
        when the frame carried nothing or the event was self-filtered.
        """
        if not raw_name or not isinstance(body, dict):
            return None

        name = self.map(raw_name)
        if name == "message.guild" and not body.get("guild_id"):
            name = "message.direct"
        event = self.build(event_id, name, body)

        if self._ignore_self and event.user_id and event.user_id == self._self_id():
            log.debug("dispatcher.self_filtered", event_name=name, user_id=event.user_id)
            return None

        if isinstance(event, MessageEvent):
            log.info(
                "bot.message.received",
                message_type=event.message_type,
                guild_id=event.guild_id,
                channel_id=event.channel_id,
                raw_message=event.raw_message,
            )

        await self.publish(event)
        return event

    async def publish(self, event: CanonicalEvent) -> None:
        """Deliver to subscribers of each prefix of event.name, least specific first."""
        for name in prefixes(event.name):
            for handler in list(self._subscribers.get(name, [])):
                try:
                    result = handler(event)
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    log.exception("dispatcher.subscriber_failed", event_name=name, handler=repr(handler))

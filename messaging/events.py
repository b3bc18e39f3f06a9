"""
messaging/events.py — Canonical Event Types

CanonicalEvent is the platform-agnostic form of one inbound dispatch.
Message-shaped events get a typed subclass whose reply() is bound to the
conversation the message came from:

    GuildMessageEvent    → Messenger.send_guild_message(channel_id, ...)
    DirectMessageEvent   → Messenger.send_direct_message(guild_id, ...)
    GroupMessageEvent    → Messenger.send_group_message(group_id, ...)
    PrivateMessageEvent  → Messenger.send_private_message(user_id, ...)

to_dict() is the JSON shape pushed to front-end subscribers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Protocol

from exceptions import NoMessengerError
from messaging.elements import Element, Sendable, normalize, reply


class Messenger(Protocol):
    """The sending half of the bot, as seen by message events."""

    async def send_guild_message(
        self, channel_id: str, message: Sendable, source: Optional[dict[str, Any]] = None
    ) -> Any: ...

    async def send_direct_message(
        self, guild_id: str, message: Sendable, source: Optional[dict[str, Any]] = None
    ) -> Any: ...

    async def send_group_message(
        self, group_id: str, message: Sendable, source: Optional[dict[str, Any]] = None
    ) -> Any: ...

    async def send_private_message(
        self, user_id: str, message: Sendable, source: Optional[dict[str, Any]] = None
    ) -> Any: ...


@dataclass
class CanonicalEvent:
    name: str
    event_id: str
    post_type: str
    detail_type: str = ""
    sub_type: str = ""
    payload: dict[str, Any] = field(default_factory=dict)
    user_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        result = dict(self.payload)
        result.update(
            event_id=self.event_id,
            post_type=self.post_type,
            sub_type=self.sub_type,
        )
        result[f"{self.post_type}_type"] = self.detail_type
        if self.user_id is not None:
            result["user_id"] = self.user_id
        return result


@dataclass
class MessageEvent(CanonicalEvent, ABC):
    """A message event. Each concrete subclass decides where reply() goes."""

    message_type: ClassVar[str] = ""

    message_id: str = ""
    message: list[Element] = field(default_factory=list)
    raw_message: str = ""
    sender: dict[str, Any] = field(default_factory=dict)
    timestamp: float = 0.0
    messenger: Optional[Messenger] = field(default=None, repr=False, compare=False)

    @property
    def guild_id(self) -> Optional[str]:
        return self.payload.get("guild_id")

    @property
    def channel_id(self) -> Optional[str]:
        return self.payload.get("channel_id")

    def _outgoing(self, message: Sendable, quote: bool) -> Sendable:
        if not quote:
            return message
        return [reply(self.message_id), *normalize(message)]

    def _source(self) -> dict[str, Any]:
        return {"id": self.message_id}

    @abstractmethod
    async def reply(self, message: Sendable, quote: bool = False) -> Any:
        """Send `message` back to the conversation this event came from."""

    def _require_messenger(self) -> Messenger:
        if self.messenger is None:
            raise NoMessengerError(type(self).__name__, self.message_id)
        return self.messenger

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        result.update(
            message_type=self.message_type,
            id=self.message_id,
            message_id=self.message_id,
            message=self.message,
            raw_message=self.raw_message,
            sender=self.sender,
            timestamp=self.timestamp,
        )
        return result


@dataclass
class GuildMessageEvent(MessageEvent):
    message_type: ClassVar[str] = "guild"

    async def reply(self, message: Sendable, quote: bool = False) -> Any:
        return await self._require_messenger().send_guild_message(
            self.channel_id, self._outgoing(message, quote), self._source()
        )


@dataclass
class DirectMessageEvent(MessageEvent):
    message_type: ClassVar[str] = "direct"

    async def reply(self, message: Sendable, quote: bool = False) -> Any:
        # DM sessions are addressed by their guild id when the platform
        # provides one, otherwise by the DM channel.
        target = self.guild_id or self.channel_id
        return await self._require_messenger().send_direct_message(
            target, self._outgoing(message, quote), self._source()
        )


@dataclass
class GroupMessageEvent(MessageEvent):
    message_type: ClassVar[str] = "group"

    @property
    def group_id(self) -> Optional[str]:
        return self.payload.get("group_openid") or self.payload.get("group_id")

    async def reply(self, message: Sendable, quote: bool = False) -> Any:
        return await self._require_messenger().send_group_message(
            self.group_id, self._outgoing(message, quote), self._source()
        )


@dataclass
class PrivateMessageEvent(MessageEvent):
    message_type: ClassVar[str] = "private"

    async def reply(self, message: Sendable, quote: bool = False) -> Any:
        target = self.sender.get("user_openid") or self.user_id
        return await self._require_messenger().send_private_message(
            target, self._outgoing(message, quote), self._source()
        )


MESSAGE_EVENT_TYPES: dict[str, type[MessageEvent]] = {
    "message.guild": GuildMessageEvent,
    "message.direct": DirectMessageEvent,
    "message.group": GroupMessageEvent,
    "message.private": PrivateMessageEvent,
}

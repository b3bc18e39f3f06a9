"""
bot/bot.py — Bot

Composition root for one bot account:

  GatewaySession   — websocket lifecycle, heartbeat, reconnect
  EventDispatcher  — raw dispatch → canonical events → subscribers
  ActionRegistry   — named capabilities for front-ends (apply_action)
  httpx client     — REST calls (messages, files, pagination)

The Bot is also the Messenger that message events reply through.

Usage:
    bot = Bot(settings.token, settings.bot)
    bot.on("message.guild", handler)
    await bot.start()
    await bot.wait_closed()
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import httpx
import websockets

from bot.actions import ActionRegistry, ActionSchema
from config.settings import BotConfig
from gateway.dispatcher import EventDispatcher, Subscriber, to_unix_seconds
from gateway.protocol import SessionEvent
from gateway.session import ConnectionState, GatewaySession, LifecycleListener
from messaging.elements import Sendable
from messaging.sender import Sender
from observability.logger import get_logger

log = get_logger(__name__)

USER_AGENT = "DiscordBot (clawcord, 10)"
PAGE_LIMIT = 100

_MESSAGE_PARAM = {"description": "string, element, or list of strings and elements"}
_SOURCE_PARAM = {"type": "object", "description": "message being replied to: {id}"}


def _target_schema(target: str, description: str) -> dict[str, Any]:
    return {
        "type": "object",
        "properties": {
            target: {"type": "string", "description": description},
            "message": _MESSAGE_PARAM,
            "source": _SOURCE_PARAM,
        },
        "required": [target, "message"],
    }


def _guild_entry(guild: dict[str, Any]) -> dict[str, Any]:
    """Guild object → {guild_id, guild_name, join_time, ...rest}."""
    rest = {k: v for k, v in guild.items() if k not in ("id", "name", "joined_at")}
    return {
        "guild_id": guild.get("id"),
        "guild_name": guild.get("name"),
        "join_time": to_unix_seconds(guild.get("joined_at")),
        **rest,
    }


def _member_entry(member: dict[str, Any]) -> dict[str, Any]:
    """Guild member object → {member_id, member_name, roles, join_time, ...rest}."""
    user = member.get("user") if isinstance(member.get("user"), dict) else {}
    rest = {k: v for k, v in member.items() if k not in ("nick", "roles", "joined_at")}
    return {
        "member_id": user.get("id") or member.get("id"),
        "member_name": member.get("nick") or user.get("global_name") or user.get("username"),
        "roles": member.get("roles", []),
        "join_time": to_unix_seconds(member.get("joined_at")),
        **rest,
    }


class Bot:
    """One bot account: gateway session, dispatcher, actions and REST client."""

    def __init__(
        self,
        token: str,
        config: Optional[BotConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self._config = config or BotConfig()
        cfg = self._config

        self.dispatcher = EventDispatcher(
            messenger=self,
            self_id=lambda: self.self_id,
            ignore_self=cfg.ignore_self,
        )
        self.session = GatewaySession(
            token,
            cfg.intents,
            self.dispatcher,
            gateway_url=cfg.gateway_url,
            max_retries=cfg.max_reconnect_count,
            heartbeat_interval=cfg.heartbeat_interval,
            reconnect_delay=cfg.reconnect_delay,
            proxy=cfg.proxy_url,
            connect=connect,
        )
        self.actions = ActionRegistry()
        self._client = httpx.AsyncClient(
            base_url=cfg.rest_base_url,
            headers={
                "Authorization": f"Bot {token}",
                "User-Agent": USER_AGENT,
            },
            timeout=cfg.request_timeout,
            proxy=cfg.proxy_url,
            transport=transport,
        )
        self._register_actions()

    # ── Identity ──────────────────────────────────────────────────────────────

    @property
    def self_id(self) -> str:
        return self.session.self_id

    @property
    def nickname(self) -> str:
        return self.session.nickname

    @property
    def status(self) -> Any:
        return self.session.status

    @property
    def is_dead(self) -> bool:
        return self.session.state is ConnectionState.DEAD

    async def get_self_info(self) -> dict[str, Any]:
        return {
            "user_id": self.self_id,
            "nickname": self.nickname,
            "status": self.status,
        }

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def start(self) -> None:
        log.info("bot.starting", api=str(self._client.base_url), sandbox=self._config.sandbox)
        await self.session.start()

    async def stop(self) -> None:
        await self.session.stop()
        await self._client.aclose()
        log.info("bot.stopped")

    async def wait_closed(self) -> None:
        await self.session.wait_closed()

    # ── Subscription surface ──────────────────────────────────────────────────

    def on(self, name: str, handler: Subscriber) -> None:
        """Subscribe to a canonical event name or any dotted prefix of one."""
        self.dispatcher.subscribe(name, handler)

    def on_lifecycle(self, event: SessionEvent, listener: LifecycleListener) -> None:
        self.session.on(event, listener)

    async def apply_action(self, name: str, params: Optional[dict[str, Any]] = None) -> Any:
        return await self.actions.apply_action(name, params)

    # ── Sending ───────────────────────────────────────────────────────────────

    async def _send(
        self,
        message_type: str,
        base_url: str,
        message: Sendable,
        source: Optional[dict[str, Any]],
    ) -> Any:
        sender = Sender(self._client, base_url, message, source)
        result = await sender.send_msg()
        log.info("bot.message.sent", message_type=message_type, target=base_url, brief=sender.brief)
        return result

    async def send_guild_message(
        self, channel_id: str, message: Sendable, source: Optional[dict[str, Any]] = None
    ) -> Any:
        return await self._send("guild", f"/channels/{channel_id}", message, source)

    async def send_direct_message(
        self, guild_id: str, message: Sendable, source: Optional[dict[str, Any]] = None
    ) -> Any:
        return await self._send("direct", f"/dms/{guild_id}", message, source)

    async def send_group_message(
        self, group_id: str, message: Sendable, source: Optional[dict[str, Any]] = None
    ) -> Any:
        return await self._send("group", f"/v2/groups/{group_id}", message, source)

    async def send_private_message(
        self, user_id: str, message: Sendable, source: Optional[dict[str, Any]] = None
    ) -> Any:
        return await self._send("private", f"/v2/users/{user_id}", message, source)

    # ── Listing / pagination ──────────────────────────────────────────────────

    async def _get_page(self, path: str, params: dict[str, Any]) -> list[dict[str, Any]]:
        """One page of a list endpoint. A failed page reads as empty."""
        try:
            response = await self._client.get(path, params=params)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            log.warning(
                "bot.pagination.failed",
                path=path,
                after=params.get("after"),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return []
        return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []

    async def _paginate(
        self,
        path: str,
        shape: Callable[[dict[str, Any]], dict[str, Any]],
        cursor_key: str,
    ) -> list[dict[str, Any]]:
        """Follow the `after` cursor until an empty page. Items are reshaped as they arrive."""
        results: list[dict[str, Any]] = []
        after: Optional[str] = None
        while True:
            params: dict[str, Any] = {"limit": PAGE_LIMIT}
            if after is not None:
                params["after"] = after
            page = [shape(item) for item in await self._get_page(path, params)]
            if not page:
                break
            results.extend(page)
            next_after = page[-1].get(cursor_key)
            if next_after is None or next_after == after:
                break
            after = next_after
        log.debug("bot.pagination.done", path=path, count=len(results))
        return results

    async def get_guild_list(self) -> list[dict[str, Any]]:
        return await self._paginate("/users/@me/guilds", _guild_entry, "guild_id")

    async def get_guild_member_list(self, guild_id: str) -> list[dict[str, Any]]:
        return await self._paginate(f"/guilds/{guild_id}/members", _member_entry, "member_id")

    # ── Actions ───────────────────────────────────────────────────────────────

    def _register_actions(self) -> None:
        register = self.actions.register_action
        register(
            ActionSchema(
                "send_guild_message", "Send a message to a guild channel",
                _target_schema("channel_id", "channel to post in"),
            ),
            self.send_guild_message,
        )
        register(
            ActionSchema(
                "send_direct_message", "Send a direct message",
                _target_schema("guild_id", "DM session id"),
            ),
            self.send_direct_message,
        )
        register(
            ActionSchema(
                "send_group_message", "Send a message to a group",
                _target_schema("group_id", "group openid"),
            ),
            self.send_group_message,
        )
        register(
            ActionSchema(
                "send_private_message", "Send a message to a single user",
                _target_schema("user_id", "user openid"),
            ),
            self.send_private_message,
        )
        register(ActionSchema("get_guild_list", "List every guild the bot is in"), self.get_guild_list)
        register(
            ActionSchema(
                "get_guild_member_list", "List every member of a guild",
                {
                    "type": "object",
                    "properties": {"guild_id": {"type": "string"}},
                    "required": ["guild_id"],
                },
            ),
            self.get_guild_member_list,
        )
        register(ActionSchema("get_self_info", "The bot's own id, nickname and status"), self.get_self_info)

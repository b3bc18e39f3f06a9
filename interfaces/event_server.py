"""
interfaces/event_server.py — Local Event Server

Re-exposes the bot to local front-ends over one port:

  WebSocket  ws://host:port/?access_token=...
      ← {"type": "event", "data": <canonical event>}        every message event
      → {"action": "...", "params": {...}, "echo": ...}
      ← {"type": "action_result", "echo": ..., "data": {"action", "result"}}
      ← {"type": "server.error", "data": "<reason>"}

  HTTP GET   /                                 → banner
  HTTP GET   /?action=...&params=<json>         → action result as JSON

When an access_token is configured, both require ?access_token=<token>.

Usage:
    server = EventServer(settings.server, bot.apply_action)
    server.attach(bot.dispatcher)
    await server.start()
"""

from __future__ import annotations

import json
from http import HTTPStatus
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import parse_qs, urlsplit

import websockets
from websockets.asyncio.server import ServerConnection
from websockets.http11 import Request, Response

from config.settings import ServerConfig
from exceptions import ActionNotFoundError, ClawCordError
from gateway.dispatcher import EventDispatcher
from messaging.events import CanonicalEvent
from observability.logger import get_logger

log = get_logger(__name__)

ApplyAction = Callable[[str, Optional[dict[str, Any]]], Awaitable[Any]]

BANNER = "ClawCord event server is running."


def _dumps(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False, default=str)


def make_event(event: CanonicalEvent) -> str:
    return _dumps({"type": "event", "data": event.to_dict()})


def make_action_result(action: str, result: Any, echo: Any = None) -> str:
    return _dumps({"type": "action_result", "echo": echo, "data": {"action": action, "result": result}})


def make_error(message: str) -> str:
    return _dumps({"type": "server.error", "data": message})


class EventServer:
    """WebSocket + plain-HTTP front-end for one bot."""

    def __init__(self, config: ServerConfig, apply_action: ApplyAction) -> None:
        self._config = config
        self._apply_action = apply_action
        self._server = None
        self._clients: set[ServerConnection] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    # ─────────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def attach(self, dispatcher: EventDispatcher) -> None:
        """Forward every message event from `dispatcher` to connected clients."""
        dispatcher.subscribe("message", self.broadcast)

    async def start(self) -> None:
        self._server = await websockets.serve(
            self._handler,
            self._config.host,
            self._config.port,
            process_request=self._process_request,
            max_size=2**20,
        )
        log.info(
            "server.started",
            host=self._config.host,
            port=self._config.port,
            auth=bool(self._config.access_token),
        )

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        log.info("server.stopped")

    # ─────────────────────────────────────────────────────────────────────────
    # HTTP side
    # ─────────────────────────────────────────────────────────────────────────

    def _authorized(self, query: dict[str, list[str]]) -> bool:
        expected = self._config.access_token
        if not expected:
            return True
        return query.get("access_token", [""])[0] == expected

    async def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Optional[Response]:
        """
        Runs before the websocket handshake. Returns a Response to answer
        plain HTTP (or reject), None to proceed with the upgrade.
        """
        query = parse_qs(urlsplit(request.path).query)

        if not self._authorized(query):
            log.warning("server.unauthorized", path=urlsplit(request.path).path)
            return connection.respond(HTTPStatus.UNAUTHORIZED, "Unauthorized\n")

        if request.headers.get("Upgrade", "").lower() == "websocket":
            return None

        action = query.get("action", [""])[0]
        if not action:
            return connection.respond(HTTPStatus.OK, BANNER + "\n")

        try:
            params = json.loads(query.get("params", ["{}"])[0] or "{}")
            if not isinstance(params, dict):
                raise ValueError("params must be a JSON object")
        except ValueError as exc:
            return self._json_response(
                connection, HTTPStatus.BAD_REQUEST, make_error(f"Bad params: {exc}")
            )

        try:
            result = await self._apply_action(action, params)
        except ActionNotFoundError as exc:
            return self._json_response(connection, HTTPStatus.NOT_FOUND, make_error(str(exc)))
        except Exception as exc:
            log.exception("server.http_action_failed", action=action)
            status = HTTPStatus.BAD_REQUEST if isinstance(exc, ClawCordError) else HTTPStatus.INTERNAL_SERVER_ERROR
            return self._json_response(connection, status, make_error(str(exc)))

        return self._json_response(connection, HTTPStatus.OK, make_action_result(action, result))

    @staticmethod
    def _json_response(connection: ServerConnection, status: HTTPStatus, body: str) -> Response:
        response = connection.respond(status, body)
        del response.headers["Content-Type"]
        response.headers["Content-Type"] = "application/json; charset=utf-8"
        return response

    # ─────────────────────────────────────────────────────────────────────────
    # WebSocket side
    # ─────────────────────────────────────────────────────────────────────────

    async def _handler(self, websocket: ServerConnection) -> None:
        self._clients.add(websocket)
        remote = getattr(websocket, "remote_address", ("?", 0))
        log.info("server.client_connected", remote=str(remote), clients=len(self._clients))
        try:
            async for raw in websocket:
                await websocket.send(await self.handle_message(raw))
        except websockets.ConnectionClosed:
            pass
        finally:
            self._clients.discard(websocket)
            log.info("server.client_disconnected", remote=str(remote))

    async def handle_message(self, raw: str | bytes) -> str:
        """Run one client action request; returns the reply frame."""
        try:
            request = json.loads(raw)
        except ValueError:
            return make_error("Request is not valid JSON.")
        if not isinstance(request, dict) or not request.get("action"):
            return make_error("Request must be an object with an 'action' field.")

        action = str(request["action"])
        params = request.get("params") or {}
        echo = request.get("echo")
        if not isinstance(params, dict):
            return make_error("'params' must be an object.")

        try:
            result = await self._apply_action(action, params)
        except Exception as exc:
            log.exception("server.action_failed", action=action)
            return make_error(str(exc))
        return make_action_result(action, result, echo)

    async def broadcast(self, event: CanonicalEvent) -> None:
        """Push one event to every client. A failing client doesn't stop the rest."""
        if not self._clients:
            return
        frame = make_event(event)
        for client in list(self._clients):
            try:
                await client.send(frame)
            except Exception as exc:
                log.warning(
                    "server.broadcast.failed",
                    remote=str(getattr(client, "remote_address", "?")),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                self._clients.discard(client)

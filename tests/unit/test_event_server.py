"""
tests/unit/test_event_server.py — Local Event Server Tests

handle_message() and broadcast() are exercised directly; the HTTP and
WebSocket surfaces are exercised against a real server bound to a free
localhost port.
"""

import json
import socket
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
import pytest_asyncio
import websockets
from websockets.exceptions import InvalidStatus

from config.settings import ServerConfig
from exceptions import ActionNotFoundError
from gateway.dispatcher import EventDispatcher
from interfaces.event_server import BANNER, EventServer
from messaging.events import CanonicalEvent


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


def _event() -> CanonicalEvent:
    return CanonicalEvent(
        name="message.guild", event_id="e1", post_type="message",
        detail_type="guild", payload={"content": "hi"},
    )


# ─────────────────────────────────────────────────────────────────────────────
# Message handling
# ─────────────────────────────────────────────────────────────────────────────

class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_action_result_echoes(self):
        apply = AsyncMock(return_value={"ok": True})
        server = EventServer(ServerConfig(), apply)
        reply = json.loads(await server.handle_message(
            json.dumps({"action": "get_self_info", "params": {"a": 1}, "echo": "req-7"})
        ))
        apply.assert_awaited_once_with("get_self_info", {"a": 1})
        assert reply == {
            "type": "action_result",
            "echo": "req-7",
            "data": {"action": "get_self_info", "result": {"ok": True}},
        }

    @pytest.mark.asyncio
    async def test_missing_params_is_empty_dict(self):
        apply = AsyncMock(return_value=None)
        server = EventServer(ServerConfig(), apply)
        await server.handle_message(json.dumps({"action": "get_guild_list"}))
        apply.assert_awaited_once_with("get_guild_list", {})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["nope", "[]", '{"params": {}}', '{"action": "x", "params": [1]}'])
    async def test_bad_requests(self, raw):
        apply = AsyncMock()
        server = EventServer(ServerConfig(), apply)
        reply = json.loads(await server.handle_message(raw))
        assert reply["type"] == "server.error"
        apply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_action_failure_becomes_error_frame(self):
        apply = AsyncMock(side_effect=ActionNotFoundError("nope", ["a"]))
        server = EventServer(ServerConfig(), apply)
        reply = json.loads(await server.handle_message('{"action": "nope"}'))
        assert reply["type"] == "server.error"
        assert "nope" in reply["data"]


class TestBroadcast:
    @pytest.mark.asyncio
    async def test_failing_client_isolated(self):
        server = EventServer(ServerConfig(), AsyncMock())
        bad, good = MagicMock(), MagicMock()
        bad.send = AsyncMock(side_effect=ConnectionResetError("gone"))
        good.send = AsyncMock()
        server._clients.update({bad, good})

        await server.broadcast(_event())

        good.send.assert_awaited_once()
        frame = json.loads(good.send.call_args.args[0])
        assert frame["type"] == "event"
        assert frame["data"]["message_type"] == "guild"
        assert server.client_count == 1

    @pytest.mark.asyncio
    async def test_attach_subscribes_to_message_events(self):
        dispatcher = EventDispatcher()
        server = EventServer(ServerConfig(), AsyncMock())
        server.attach(dispatcher)
        assert dispatcher.subscriber_count("message") == 1


# ─────────────────────────────────────────────────────────────────────────────
# Live server
# ─────────────────────────────────────────────────────────────────────────────

@pytest_asyncio.fixture
async def live_server():
    apply = AsyncMock(return_value={"user_id": "b1"})
    config = ServerConfig(port=_free_port(), access_token="s3cret")
    server = EventServer(config, apply)
    await server.start()
    try:
        yield server, config, apply
    finally:
        await server.stop()


class TestLiveServer:
    @pytest.mark.asyncio
    async def test_http_banner_and_action(self, live_server):
        server, config, apply = live_server
        base = f"http://127.0.0.1:{config.port}/"
        async with httpx.AsyncClient(trust_env=False) as client:
            banner = await client.get(base, params={"access_token": "s3cret"})
            result = await client.get(
                base,
                params={"access_token": "s3cret", "action": "get_self_info", "params": "{}"},
            )
        assert banner.status_code == 200
        assert BANNER in banner.text
        assert result.status_code == 200
        assert result.json()["data"] == {"action": "get_self_info", "result": {"user_id": "b1"}}

    @pytest.mark.asyncio
    async def test_http_requires_token(self, live_server):
        server, config, apply = live_server
        async with httpx.AsyncClient(trust_env=False) as client:
            response = await client.get(f"http://127.0.0.1:{config.port}/", params={"action": "x"})
        assert response.status_code == 401
        apply.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_http_bad_params(self, live_server):
        server, config, apply = live_server
        async with httpx.AsyncClient(trust_env=False) as client:
            response = await client.get(
                f"http://127.0.0.1:{config.port}/",
                params={"access_token": "s3cret", "action": "x", "params": "{oops"},
            )
        assert response.status_code == 400
        assert response.json()["type"] == "server.error"

    @pytest.mark.asyncio
    async def test_websocket_requires_token(self, live_server):
        server, config, apply = live_server
        with pytest.raises(InvalidStatus):
            async with websockets.connect(f"ws://127.0.0.1:{config.port}/", proxy=None):
                pass

    @pytest.mark.asyncio
    async def test_websocket_action_and_event(self, live_server):
        server, config, apply = live_server
        url = f"ws://127.0.0.1:{config.port}/?access_token=s3cret"
        async with websockets.connect(url, proxy=None) as ws:
            await ws.send(json.dumps({"action": "get_self_info", "echo": 1}))
            reply = json.loads(await ws.recv())
            assert reply["type"] == "action_result"
            assert reply["echo"] == 1

            await server.broadcast(_event())
            pushed = json.loads(await ws.recv())
            assert pushed["type"] == "event"
            assert pushed["data"]["event_id"] == "e1"

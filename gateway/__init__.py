"""
gateway/ — Bot Gateway Client

One websocket session per bot (session.py) speaking the opcode protocol in
protocol.py, with inbound DISPATCH frames translated and fanned out by the
EventDispatcher (dispatcher.py).
"""

from gateway.dispatcher import EventDispatcher
from gateway.intents import Intent, resolve_intents
from gateway.protocol import GatewayFrame, OpCode, SessionEvent
from gateway.session import ConnectionState, GatewaySession, HeartbeatState, SessionRecord

__all__ = [
    "EventDispatcher",
    "Intent",
    "resolve_intents",
    "GatewayFrame",
    "OpCode",
    "SessionEvent",
    "ConnectionState",
    "GatewaySession",
    "HeartbeatState",
    "SessionRecord",
]

"""
gateway/protocol.py — Gateway Wire Protocol

Typed frame schema for all client↔gateway communication.
Every frame is a JSON object {op, d, s, t}:
  op — opcode (see OpCode)
  d  — opcode-specific payload
  s  — sequence number (DISPATCH frames only)
  t  — dispatch event name (DISPATCH frames only)
  id — optional event id some gateways attach to DISPATCH frames

Also home to the static close-code table consulted by the session's
reconnect policy and the lifecycle event names the session emits.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Optional

from exceptions import FrameDecodeError


# ─────────────────────────────────────────────────────────────────────────────
# Opcodes
# ─────────────────────────────────────────────────────────────────────────────

class OpCode(IntEnum):
    """Gateway control opcodes."""

    DISPATCH        = 0    # server → client: application event
    HEARTBEAT       = 1    # both directions
    IDENTIFY        = 2    # client → server: new session
    RESUME          = 6    # client → server: restore session
    RECONNECT       = 7    # server → client: please reconnect
    INVALID_SESSION = 9    # server → client: identify/resume rejected
    HELLO           = 10   # server → client: heartbeat interval
    HEARTBEAT_ACK   = 11   # server → client


class SessionEvent(str, Enum):
    """Lifecycle events emitted by GatewaySession."""

    READY        = "READY"
    RESUMED      = "RESUMED"
    ALIVE        = "ALIVE"
    RECONNECT    = "RECONNECT"
    DISCONNECTED = "DISCONNECTED"
    DEAD         = "DEAD"


# Dispatch names the session consumes itself instead of forwarding
READY_EVENT = "READY"
RESUMED_EVENT = "RESUMED"


# ─────────────────────────────────────────────────────────────────────────────
# Close codes
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class CloseReason:
    code: int
    resumable: bool
    reason: str


_CLOSE_REASONS: tuple[CloseReason, ...] = (
    CloseReason(1000, False, "Normal closure; session invalidated"),
    CloseReason(1001, False, "Going away; session invalidated"),
    CloseReason(1006, True,  "Abnormal closure (no close frame)"),
    CloseReason(1011, True,  "Server internal error"),
    CloseReason(1012, True,  "Service restart"),
    CloseReason(4000, True,  "Unknown error"),
    CloseReason(4001, True,  "Unknown opcode sent"),
    CloseReason(4002, True,  "Payload could not be decoded"),
    CloseReason(4003, True,  "Payload sent before identifying"),
    CloseReason(4004, False, "Authentication failed; check the token"),
    CloseReason(4005, True,  "Already authenticated"),
    CloseReason(4007, False, "Invalid sequence number on resume"),
    CloseReason(4008, True,  "Rate limited"),
    CloseReason(4009, False, "Session timed out"),
    CloseReason(4010, False, "Invalid shard"),
    CloseReason(4011, False, "Sharding required"),
    CloseReason(4012, False, "Invalid API version"),
    CloseReason(4013, False, "Invalid intent(s)"),
    CloseReason(4014, False, "Disallowed intent(s); enable them in the developer portal"),
)

CLOSE_REASONS: dict[int, CloseReason] = {r.code: r for r in _CLOSE_REASONS}

# Reported for a connection that ended without a close frame
ABNORMAL_CLOSURE = 1006


def classify_close(code: Optional[int]) -> CloseReason:
    """Look up a close code. Unknown (or missing) codes are non-resumable."""
    if code is not None and code in CLOSE_REASONS:
        return CLOSE_REASONS[code]
    return CloseReason(code if code is not None else 0, False, "Connection closed")


# ─────────────────────────────────────────────────────────────────────────────
# Frame
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GatewayFrame:
    """One gateway frame in either direction."""
    op: int
    d: Any = None
    s: Optional[int] = None
    t: Optional[str] = None
    id: Optional[str] = None

    def to_json(self) -> str:
        """Serialize for sending. Outbound frames never carry s/t."""
        return json.dumps({"op": int(self.op), "d": self.d}, ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "GatewayFrame":
        """
        Parse an inbound frame. Raises FrameDecodeError for anything that is
        not a JSON object with an integer `op`.
        """
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise FrameDecodeError(raw) from exc
        if not isinstance(data, dict) or not isinstance(data.get("op"), int):
            raise FrameDecodeError(raw)
        seq = data.get("s")
        return cls(
            op=data["op"],
            d=data.get("d"),
            s=seq if isinstance(seq, int) else None,
            t=data.get("t"),
            id=data.get("id"),
        )


# ─────────────────────────────────────────────────────────────────────────────
# Factory helpers — client → server frames
# ─────────────────────────────────────────────────────────────────────────────

CLIENT_PROPERTIES = {
    "os": "linux",
    "browser": "clawcord",
    "device": "clawcord",
}


def make_identify(token: str, intents: int) -> GatewayFrame:
    """Build an IDENTIFY frame for a fresh session."""
    return GatewayFrame(
        op=OpCode.IDENTIFY,
        d={
            "token": token,
            "intents": intents,
            "properties": dict(CLIENT_PROPERTIES),
        },
    )


def make_resume(token: str, session_id: str, seq: int) -> GatewayFrame:
    """Build a RESUME frame restoring an existing session."""
    return GatewayFrame(
        op=OpCode.RESUME,
        d={"token": token, "session_id": session_id, "seq": seq},
    )


def make_heartbeat(seq: Optional[int]) -> GatewayFrame:
    """Build a HEARTBEAT frame carrying the last-seen sequence (or null)."""
    return GatewayFrame(op=OpCode.HEARTBEAT, d=seq)

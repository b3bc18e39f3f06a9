"""
exceptions.py — ClawCord Unified Error Hierarchy

All ClawCord-specific exceptions live here. Every layer of the stack
raises typed subclasses of ClawCordError — never bare Exception.

REST failures from the HTTP client (httpx.HTTPStatusError and friends) are
NOT wrapped: senders propagate them to the caller unchanged.

Import from here, not from individual modules:
    from exceptions import ActionNotFoundError, SessionDeadError

Hierarchy:
    ClawCordError
    ├── GatewayError
    │   ├── FrameDecodeError
    │   └── SessionDeadError
    ├── ActionError
    │   ├── ActionNotFoundError
    │   └── ActionArgumentError
    └── SendError
        └── EmptyMessageError
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class ClawCordError(Exception):
    """Base class for all ClawCord exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Gateway layer
# ─────────────────────────────────────────────────────────────────────────────

class GatewayError(ClawCordError):
    """Base for gateway session errors."""


class FrameDecodeError(GatewayError):
    """An inbound gateway frame was not valid JSON or not a JSON object."""

    def __init__(self, raw: str | bytes, message: str = "") -> None:
        self.raw = raw
        preview = raw[:120] if isinstance(raw, (str, bytes)) else raw
        super().__init__(message or f"Malformed gateway frame: {preview!r}")


class SessionDeadError(GatewayError):
    """The session exhausted its reconnect budget and will not connect again."""

    def __init__(self, retries: int, message: str = "") -> None:
        self.retries = retries
        super().__init__(
            message or f"Gateway connection is dead after {retries} reconnect attempt(s). "
            "Check the network or restart."
        )


# ─────────────────────────────────────────────────────────────────────────────
# Action layer
# ─────────────────────────────────────────────────────────────────────────────

class ActionError(ClawCordError):
    """Base for errors raised while applying a named bot action."""


class ActionNotFoundError(ActionError):
    """Requested action is not registered in the ActionRegistry."""

    def __init__(self, action: str, available: list[str] | None = None) -> None:
        self.action = action
        self.available = sorted(available or [])
        super().__init__(
            f"Action '{action}' is not registered. Available actions: {self.available}"
        )


class ActionArgumentError(ActionError):
    """Arguments supplied for an action do not match its declared parameters."""

    def __init__(self, action: str, missing: list[str], message: str = "") -> None:
        self.action = action
        self.missing = missing
        super().__init__(
            message or f"Action '{action}' is missing required parameter(s): {missing}"
        )


# ─────────────────────────────────────────────────────────────────────────────
# Send layer
# ─────────────────────────────────────────────────────────────────────────────

class SendError(ClawCordError):
    """Base for outbound message construction errors."""


class EmptyMessageError(SendError):
    """The outbound message normalised to nothing that can be sent."""


class NoMessengerError(SendError):
    """A message event was asked to reply but has no sender bound to it."""

    def __init__(self, event_type: str, message_id: str) -> None:
        self.event_type = event_type
        self.message_id = message_id
        super().__init__(f"{event_type} {message_id} has no messenger bound; cannot reply")


# ─────────────────────────────────────────────────────────────────────────────
# Convenience: all public names
# ─────────────────────────────────────────────────────────────────────────────

__all__ = [
    "ClawCordError",
    # Gateway
    "GatewayError",
    "FrameDecodeError",
    "SessionDeadError",
    # Action
    "ActionError",
    "ActionNotFoundError",
    "ActionArgumentError",
    # Send
    "SendError",
    "EmptyMessageError",
    "NoMessengerError",
]

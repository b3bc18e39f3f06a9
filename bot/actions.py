"""
bot/actions.py — Action Registry

Named bot capabilities, callable from front-ends by name with a params dict.
Each action is an async handler plus a JSON-schema-style parameter
declaration; apply_action() binds params to handler arguments by declared
name, so front-ends can send extra keys without breaking anything.

Usage:
    actions = ActionRegistry()

    @actions.register(
        name="send_guild_message",
        description="Send a message to a guild channel",
        parameters={
            "type": "object",
            "properties": {
                "channel_id": {"type": "string"},
                "message": {},
            },
            "required": ["channel_id", "message"],
        },
    )
    async def send_guild_message(channel_id: str, message) -> dict:
        ...

    result = await actions.apply_action("send_guild_message", {"channel_id": "1", "message": "hi"})
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

from exceptions import ActionArgumentError, ActionNotFoundError
from observability.logger import get_logger

log = get_logger(__name__)

ActionHandler = Callable[..., Awaitable[Any]]


@dataclass
class ActionSchema:
    name: str
    description: str = ""
    parameters: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}, "required": []}
    )

    @property
    def declared(self) -> list[str]:
        return list((self.parameters.get("properties") or {}).keys())

    @property
    def required(self) -> list[str]:
        return list(self.parameters.get("required") or [])

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


class ActionRegistry:
    """Maps action names to their schemas and async handlers."""

    def __init__(self) -> None:
        self._schemas: dict[str, ActionSchema] = {}
        self._handlers: dict[str, ActionHandler] = {}

    def register(
        self,
        name: str,
        description: str = "",
        parameters: Optional[dict[str, Any]] = None,
    ) -> Callable[[ActionHandler], ActionHandler]:
        """Decorator form of register_action(). Returns the handler unchanged."""
        def decorator(fn: ActionHandler) -> ActionHandler:
            self.register_action(ActionSchema(name, description, parameters or {
                "type": "object", "properties": {}, "required": [],
            }), fn)
            return fn

        return decorator

    def register_action(self, schema: ActionSchema, handler: ActionHandler) -> None:
        """Programmatic registration. Re-registering a name replaces it."""
        self._schemas[schema.name] = schema
        self._handlers[schema.name] = handler
        log.debug("action.registered", action=schema.name, params=schema.declared)

    def get_schema(self, name: str) -> Optional[ActionSchema]:
        return self._schemas.get(name)

    def is_registered(self, name: str) -> bool:
        return name in self._schemas

    def list_names(self) -> list[str]:
        return list(self._schemas)

    def list_schemas(self) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self._schemas.values()]

    async def apply_action(self, name: str, params: Optional[dict[str, Any]] = None) -> Any:
        """
        Run a registered action.

        Raises:
            ActionNotFoundError:  no action registered under `name`.
            ActionArgumentError:  a required parameter is absent from `params`.

        Errors raised by the handler itself propagate unchanged.
        """
        schema = self._schemas.get(name)
        if schema is None:
            raise ActionNotFoundError(name, self.list_names())

        params = params or {}
        missing = [p for p in schema.required if p not in params]
        if missing:
            raise ActionArgumentError(name, missing)

        kwargs = {p: params[p] for p in schema.declared if p in params}
        ignored = sorted(set(params) - set(kwargs))
        log.info("action.apply", action=name, params=list(kwargs), ignored=ignored or None)
        return await self._handlers[name](**kwargs)

    def __len__(self) -> int:
        return len(self._schemas)

    def __repr__(self) -> str:
        return f"<ActionRegistry actions={list(self._schemas.keys())}>"

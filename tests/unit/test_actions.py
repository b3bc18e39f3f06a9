"""
tests/unit/test_actions.py — Action Registry Tests
"""

from unittest.mock import AsyncMock

import pytest

from bot.actions import ActionRegistry, ActionSchema
from exceptions import ActionArgumentError, ActionNotFoundError


@pytest.fixture
def registry():
    registry = ActionRegistry()

    @registry.register(
        name="greet",
        description="Say hello",
        parameters={
            "type": "object",
            "properties": {"name": {"type": "string"}, "punct": {"type": "string"}},
            "required": ["name"],
        },
    )
    async def greet(name: str, punct: str = "!") -> str:
        return f"hello {name}{punct}"

    return registry


class TestRegistration:
    def test_decorator_registers(self, registry):
        assert registry.is_registered("greet")
        assert registry.list_names() == ["greet"]
        assert len(registry) == 1

    def test_decorator_returns_handler(self):
        registry = ActionRegistry()

        async def fn():
            return 1

        assert registry.register("fn")(fn) is fn

    def test_schema_lists(self, registry):
        schema = registry.get_schema("greet")
        assert schema.declared == ["name", "punct"]
        assert schema.required == ["name"]
        assert registry.list_schemas()[0]["description"] == "Say hello"

    def test_default_parameters(self):
        schema = ActionSchema("noop")
        assert schema.declared == []
        assert schema.required == []


class TestApplyAction:
    @pytest.mark.asyncio
    async def test_binds_declared_params(self, registry):
        assert await registry.apply_action("greet", {"name": "bob", "punct": "?"}) == "hello bob?"

    @pytest.mark.asyncio
    async def test_optional_param_defaults(self, registry):
        assert await registry.apply_action("greet", {"name": "bob"}) == "hello bob!"

    @pytest.mark.asyncio
    async def test_undeclared_params_ignored(self, registry):
        assert await registry.apply_action("greet", {"name": "bob", "extra": 1}) == "hello bob!"

    @pytest.mark.asyncio
    async def test_unknown_action_rejected(self, registry):
        with pytest.raises(ActionNotFoundError) as exc_info:
            await registry.apply_action("nope", {})
        assert exc_info.value.available == ["greet"]

    @pytest.mark.asyncio
    async def test_missing_required_rejected(self, registry):
        with pytest.raises(ActionArgumentError) as exc_info:
            await registry.apply_action("greet", {"punct": "."})
        assert exc_info.value.missing == ["name"]

    @pytest.mark.asyncio
    async def test_none_params(self):
        registry = ActionRegistry()
        handler = AsyncMock(return_value=42)
        registry.register_action(ActionSchema("answer"), handler)
        assert await registry.apply_action("answer") == 42
        handler.assert_awaited_once_with()

    @pytest.mark.asyncio
    async def test_handler_errors_propagate(self):
        registry = ActionRegistry()
        registry.register_action(ActionSchema("bad"), AsyncMock(side_effect=ValueError("x")))
        with pytest.raises(ValueError):
            await registry.apply_action("bad", {})

"""Unit tests for ToolRegistry - the worker's dispatcher."""

import pytest

from content_bridge.errors import InvalidArgumentsError, UnknownToolError
from content_bridge.types import ToolDescriptor
from content_bridge.worker.registry import ToolRegistry

pytestmark = [pytest.mark.worker]

GREET = ToolDescriptor(
    name="greet",
    description="Say hello",
    input_schema={
        "type": "object",
        "properties": {"name": {"type": "string"}},
        "required": ["name"],
    },
)


async def greet(arguments):
    return {"greeting": f"Hello {arguments['name']}", "fallback": False}


async def explode(arguments):
    raise RuntimeError("remote went away")


def no_bob(arguments):
    return ["name must not be Bob"] if arguments.get("name") == "Bob" else []


@pytest.fixture
def greet_registry() -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(GREET, greet, no_bob)
    return registry


class TestRegistration:
    def test_list_tools_in_registration_order(self, greet_registry):
        other = ToolDescriptor("other", "", {"type": "object"})
        greet_registry.register(other, greet)

        assert [tool.name for tool in greet_registry.list_tools()] == ["greet", "other"]
        assert "other" in greet_registry

    def test_duplicate_rejected(self, greet_registry):
        with pytest.raises(ValueError, match="already registered"):
            greet_registry.register(GREET, greet)

    def test_unknown_tool_absent_and_rejected(self, greet_registry):
        assert "missing" not in greet_registry
        assert "missing" not in [tool.name for tool in greet_registry.list_tools()]

        with pytest.raises(UnknownToolError, match="Unknown tool: missing"):
            greet_registry.get("missing")


class TestCallTool:
    """Tests for ToolRegistry.call_tool."""

    async def test_success_returns_json_payload(self, greet_registry):
        result = await greet_registry.call_tool("greet", {"name": "Ada"})

        assert result.is_error is False
        assert result.payload() == {"greeting": "Hello Ada", "fallback": False}

    async def test_unknown_tool(self, greet_registry):
        with pytest.raises(UnknownToolError):
            await greet_registry.call_tool("missing", {})

    async def test_schema_failure(self, greet_registry):
        with pytest.raises(InvalidArgumentsError) as exc_info:
            await greet_registry.call_tool("greet", {})

        assert exc_info.value.data == {"tool": "greet", "problems": ["name is required"]}

    async def test_predicate_failure(self, greet_registry):
        with pytest.raises(InvalidArgumentsError, match="name must not be Bob"):
            await greet_registry.call_tool("greet", {"name": "Bob"})

    async def test_non_object_arguments(self, greet_registry):
        with pytest.raises(InvalidArgumentsError, match="must be an object"):
            await greet_registry.call_tool("greet", ["Ada"])

    async def test_handler_exception_becomes_error_result(self):
        registry = ToolRegistry()
        registry.register(ToolDescriptor("explode", "", {"type": "object"}), explode)

        result = await registry.call_tool("explode", None)

        assert result.is_error is True
        assert result.text == "Error executing explode: remote went away"

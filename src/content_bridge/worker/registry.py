"""ToolRegistry - named tools, their validators and handlers.

The registry is the worker's dispatcher: it advertises the catalog, rejects
unknown tools and bad arguments, and turns handler failures into error
results so that a failing tool never takes the worker down.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..errors import InvalidArgumentsError, UnknownToolError
from ..types import ToolCallResult, ToolDescriptor
from .validation import Validator, check_schema

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class ToolRegistry:
    """Registry of tools callable through tools/call."""

    def __init__(self) -> None:
        self._descriptors: dict[str, ToolDescriptor] = {}
        self._handlers: dict[str, Handler] = {}
        self._validators: dict[str, Validator] = {}

    def register(
        self,
        descriptor: ToolDescriptor,
        handler: Handler,
        validator: Validator | None = None,
    ) -> None:
        """Register a tool.

        Args:
            descriptor: Name, description and input schema
            handler: Coroutine function returning a JSON payload
            validator: Optional predicate returning a list of problems

        Raises:
            ValueError: If a tool with the same name is already registered
        """
        if descriptor.name in self._descriptors:
            raise ValueError(f"Tool already registered: {descriptor.name}")
        self._descriptors[descriptor.name] = descriptor
        self._handlers[descriptor.name] = handler
        if validator is not None:
            self._validators[descriptor.name] = validator

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def list_tools(self) -> list[ToolDescriptor]:
        """Registered tools in registration order."""
        return list(self._descriptors.values())

    def get(self, name: str) -> ToolDescriptor:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise UnknownToolError(message=f"Unknown tool: {name}", data={"tool": name})
        return descriptor

    def validate(self, name: str, arguments: dict[str, Any]) -> None:
        """Run schema and predicate checks.

        Raises:
            UnknownToolError: If the tool is not registered
            InvalidArgumentsError: Listing every problem found
        """
        descriptor = self.get(name)
        problems = check_schema(descriptor, arguments)
        validator = self._validators.get(name)
        if validator is not None and not problems:
            problems = validator(arguments)
        if problems:
            raise InvalidArgumentsError(
                message=f"Invalid arguments for {name}: {'; '.join(problems)}",
                data={"tool": name, "problems": problems},
            )

    async def call_tool(self, name: str, arguments: dict[str, Any] | None) -> ToolCallResult:
        """Validate and run a tool.

        Returns:
            ToolCallResult with the handler's payload as a JSON text block, or
            an error result if the handler raised

        Raises:
            UnknownToolError: If the tool is not registered
            InvalidArgumentsError: If validation fails
        """
        arguments = arguments or {}
        if not isinstance(arguments, dict):
            raise InvalidArgumentsError(
                message=f"Arguments for {name} must be an object", data={"tool": name}
            )
        self.validate(name, arguments)

        handler = self._handlers[name]
        try:
            payload = await handler(arguments)
        except InvalidArgumentsError:
            raise
        except Exception as e:
            logger.exception(f"Tool {name} failed: {e}")
            return ToolCallResult.from_text(f"Error executing {name}: {e}", is_error=True)

        return ToolCallResult.from_payload(payload)

"""Data model shared by the worker and the supervisor."""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

# Key carried by every tool payload; True marks locally manufactured data
FALLBACK_KEY = "fallback"


class ConnectionState(str, Enum):
    """Supervisor connection state."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class ToolDescriptor:
    """A named tool and the JSON-Schema-shaped description of its input."""

    name: str
    description: str
    input_schema: dict[str, Any]

    @property
    def required(self) -> list[str]:
        return list(self.input_schema.get("required", []))

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolDescriptor":
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            input_schema=data.get("inputSchema", {"type": "object", "properties": {}}),
        )


@dataclass(frozen=True)
class ToolCallRequest:
    """A single tools/call invocation keyed by its correlation id."""

    id: int
    tool_name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_jsonrpc(self) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": self.id,
            "method": "tools/call",
            "params": {"name": self.tool_name, "arguments": self.arguments},
        }


@dataclass
class ToolCallResult:
    """Outcome of a tool call: ordered text blocks plus an error flag."""

    content: list[dict[str, Any]] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def from_text(cls, text: str, is_error: bool = False) -> "ToolCallResult":
        return cls(content=[{"type": "text", "text": text}], is_error=is_error)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ToolCallResult":
        return cls.from_text(json.dumps(payload, indent=2, default=str))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCallResult":
        return cls(
            content=list(data.get("content") or []),
            is_error=bool(data.get("isError", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"content": self.content, "isError": self.is_error}

    @property
    def text(self) -> str:
        """Concatenated text of all text blocks."""
        return "\n".join(
            block.get("text", "") for block in self.content if block.get("type") == "text"
        )

    def payload(self) -> dict[str, Any]:
        """Decode the first text block as JSON.

        Non-JSON text (or JSON that is not an object) is wrapped as
        ``{"message": text}``.
        """
        for block in self.content:
            if block.get("type") != "text":
                continue
            text = block.get("text", "")
            try:
                data = json.loads(text)
            except (json.JSONDecodeError, TypeError):
                return {"message": text}
            if isinstance(data, dict):
                return data
            return {"message": text, "data": data}
        return {}

    @property
    def is_fallback(self) -> bool:
        """Whether the payload was manufactured locally instead of by Azure DevOps."""
        return bool(self.payload().get(FALLBACK_KEY, False))

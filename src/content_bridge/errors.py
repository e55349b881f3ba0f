"""Error taxonomy for the content request bridge.

Errors are shared by both sides of the stdio channel: the worker raises them
and serialises them as JSON-RPC errors, the supervisor rebuilds them from the
JSON-RPC error objects it receives.
"""

from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

# JSON-RPC error codes
JSONRPC_PARSE_ERROR = -32700
JSONRPC_INVALID_REQUEST = -32600
JSONRPC_METHOD_NOT_FOUND = -32601
JSONRPC_INVALID_PARAMS = -32602
JSONRPC_INTERNAL_ERROR = -32603
JSONRPC_SERVER_ERROR = -32000  # -32000 to -32099 reserved for implementation-defined server errors

# Custom error codes for the bridge
BRIDGE_CONNECTION_ERROR = -32002
BRIDGE_TIMEOUT_ERROR = -32003
BRIDGE_REMOTE_ERROR = -32004

# Substrings that classify an arbitrary exception as a broken channel
CONNECTION_ERROR_MARKERS = ("connection", "transport")


@dataclass
class BridgeError(Exception):
    """Base error class for bridge errors."""

    code: int
    message: str
    retryable: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message

    def to_jsonrpc(self) -> dict[str, Any]:
        """Convert to JSON-RPC error object."""
        error = {"code": self.code, "message": self.message}
        if self.data:
            error["data"] = self.data
        return error


@dataclass
class UnknownToolError(BridgeError):
    """Tool name is not registered with the worker."""

    code: int = JSONRPC_METHOD_NOT_FOUND
    message: str = "Unknown tool"
    retryable: bool = False


@dataclass
class InvalidArgumentsError(BridgeError):
    """Tool arguments failed validation."""

    code: int = JSONRPC_INVALID_PARAMS
    message: str = "Invalid tool arguments"
    retryable: bool = False


@dataclass
class RemoteUnavailableError(BridgeError):
    """Azure DevOps could not be reached or answered with an error."""

    code: int = BRIDGE_REMOTE_ERROR
    message: str = "Azure DevOps unavailable"
    retryable: bool = True


@dataclass
class ConnectionLostError(BridgeError):
    """Worker process died or the stdio channel broke."""

    code: int = BRIDGE_CONNECTION_ERROR
    message: str = "Connection to worker lost"
    retryable: bool = True


@dataclass
class BridgeUnavailableError(BridgeError):
    """Supervisor has no live connection to a worker."""

    code: int = BRIDGE_CONNECTION_ERROR
    message: str = "Bridge is not connected"
    retryable: bool = True


@dataclass
class RequestTimeoutError(BridgeError):
    """No response arrived within the caller's deadline."""

    code: int = BRIDGE_TIMEOUT_ERROR
    message: str = "Request timeout"
    retryable: bool = True


def map_http_error(status_code: int, message: str) -> RemoteUnavailableError:
    """Map an Azure DevOps HTTP error status to RemoteUnavailableError.

    Args:
        status_code: HTTP status code
        message: Error message from response

    Returns:
        RemoteUnavailableError carrying the status
    """
    if status_code in (401, 403):
        text = "Authentication failed"
    elif status_code == 404:
        text = "Resource not found"
    elif status_code in (408, 504):
        text = "Request timeout"
    elif status_code >= 500:
        text = "Server error"
    else:
        text = f"HTTP error {status_code}"

    return RemoteUnavailableError(
        message=f"{text}: {message}" if message else text,
        retryable=status_code in (408, 429, 502, 503, 504),
        data={"original_message": message, "http_status": status_code},
    )


def map_connection_error(
    error_message: str, url: str, is_timeout: bool = False
) -> RemoteUnavailableError:
    """Map a network failure against Azure DevOps to RemoteUnavailableError.

    Args:
        error_message: Error message from exception
        url: URL that was being accessed
        is_timeout: Whether this was a timeout error

    Returns:
        RemoteUnavailableError
    """
    if is_timeout:
        return RemoteUnavailableError(
            message=f"Request timeout connecting to {url}",
            data={"url": url, "original_error": error_message},
        )

    parsed = urlparse(url)
    host_port = f"{parsed.hostname}:{parsed.port}" if parsed.port else parsed.hostname

    return RemoteUnavailableError(
        message=f"Cannot reach Azure DevOps at {host_port}",
        data={"url": url, "original_error": error_message},
    )


def error_from_jsonrpc(error: dict[str, Any]) -> BridgeError:
    """Rebuild a typed error from a JSON-RPC error object sent by the worker.

    Args:
        error: JSON-RPC error object

    Returns:
        The matching BridgeError subclass
    """
    code = error.get("code", JSONRPC_SERVER_ERROR)
    message = error.get("message", "Unknown error")
    data = error.get("data") or {}
    if not isinstance(data, dict):
        data = {"detail": data}

    if code == JSONRPC_METHOD_NOT_FOUND:
        return UnknownToolError(message=message, data=data)
    if code == JSONRPC_INVALID_PARAMS:
        return InvalidArgumentsError(message=message, data=data)
    if code == BRIDGE_TIMEOUT_ERROR:
        return RequestTimeoutError(message=message, data=data)
    return BridgeError(code=code, message=message, data=data)


def is_connection_error(error: BaseException) -> bool:
    """Whether an error means the channel to the worker is broken."""
    if isinstance(error, (ConnectionLostError, BridgeUnavailableError)):
        return True
    if isinstance(error, (BrokenPipeError, ConnectionResetError, EOFError)):
        return True
    if isinstance(error, BridgeError):
        return False
    text = str(error).lower()
    return any(marker in text for marker in CONNECTION_ERROR_MARKERS)

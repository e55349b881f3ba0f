"""WorkerServer - stdio JSON-RPC server exposing the tool registry.

Reads newline-delimited JSON-RPC requests on stdin and writes responses on
stdout. Every request runs in its own task, so responses can leave in a
different order than the requests arrived. The loop ends on stdin EOF, which
is what makes the worker exit when its parent goes away.
"""

import asyncio
import json
import logging
import signal
import sys
from collections.abc import Awaitable, Callable
from typing import Any

from .. import __version__
from ..config import MAX_FRAME_BYTES, SERVER_NAME
from ..errors import (
    JSONRPC_INTERNAL_ERROR,
    JSONRPC_INVALID_REQUEST,
    JSONRPC_METHOD_NOT_FOUND,
    JSONRPC_PARSE_ERROR,
    BridgeError,
)
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"

# Attachment uploads arrive as one base64 line
STDIN_LIMIT = MAX_FRAME_BYTES

Writer = Callable[[dict[str, Any]], Awaitable[None]]


class WorkerServer:
    """Dispatches MCP-shaped JSON-RPC methods to a ToolRegistry."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry
        self.initialized = False

    async def handle_request(self, request: Any) -> dict[str, Any] | None:
        """Handle one JSON-RPC message.

        Returns:
            JSON-RPC response object, or None for notifications (no id)
        """
        if not isinstance(request, dict) or not isinstance(request.get("method"), str):
            request_id = request.get("id") if isinstance(request, dict) else None
            return self._make_error_response(
                request_id, JSONRPC_INVALID_REQUEST, "Invalid JSON-RPC request"
            )

        method = request["method"]
        request_id = request.get("id")
        params = request.get("params") or {}
        is_notification = "id" not in request

        if is_notification:
            if method == "notifications/initialized":
                self.initialized = True
            logger.debug(f"Received notification: {method}")
            return None

        try:
            if method == "initialize":
                result = self._initialize()
            elif method == "ping":
                result = {}
            elif method == "tools/list":
                result = {"tools": [tool.to_dict() for tool in self.registry.list_tools()]}
            elif method == "tools/call":
                name = params.get("name", "")
                logger.debug(f"Handling tools/call: tool={name} id={request_id}")
                tool_result = await self.registry.call_tool(name, params.get("arguments"))
                result = tool_result.to_dict()
            else:
                return self._make_error_response(
                    request_id, JSONRPC_METHOD_NOT_FOUND, f"Method not found: {method}"
                )
        except BridgeError as e:
            logger.info(f"{method} id={request_id} rejected: {e.message}")
            return {"jsonrpc": "2.0", "id": request_id, "error": e.to_jsonrpc()}
        except Exception as e:
            logger.exception(f"Error handling {method}: {e}")
            return self._make_error_response(
                request_id, JSONRPC_INTERNAL_ERROR, f"Internal worker error: {e}"
            )

        return {"jsonrpc": "2.0", "id": request_id, "result": result}

    def _initialize(self) -> dict[str, Any]:
        return {
            "protocolVersion": PROTOCOL_VERSION,
            "capabilities": {"tools": {}},
            "serverInfo": {"name": SERVER_NAME, "version": __version__},
        }

    def _make_error_response(self, request_id: Any, code: int, message: str) -> dict[str, Any]:
        """Create JSON-RPC error response."""
        return {
            "jsonrpc": "2.0",
            "id": request_id,
            "error": {"code": code, "message": message},
        }

    async def serve(self, reader: asyncio.StreamReader, write: Writer) -> None:
        """Process requests from ``reader`` until EOF, then drain in-flight work."""
        in_flight: set[asyncio.Task] = set()

        async def respond(message: Any) -> None:
            response = await self.handle_request(message)
            if response is not None:
                await write(response)

        while True:
            try:
                line = await reader.readline()
            except ValueError as e:
                # StreamReader drops the oversized frame before raising
                logger.warning(f"Discarding oversized request: {e}")
                await write(
                    self._make_error_response(
                        None, JSONRPC_INVALID_REQUEST, "Request exceeds size limit"
                    )
                )
                continue
            if not line:
                logger.info("stdin closed")
                break

            text = line.decode("utf-8", errors="replace").strip()
            if not text:
                continue

            try:
                message = json.loads(text)
            except json.JSONDecodeError as e:
                logger.warning(f"Invalid JSON: {e}")
                await write(self._make_error_response(None, JSONRPC_PARSE_ERROR, "Parse error"))
                continue

            task = asyncio.create_task(respond(message))
            in_flight.add(task)
            task.add_done_callback(in_flight.discard)

        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)


def stdout_writer() -> Writer:
    """Serialized newline-delimited JSON writer on stdout."""
    lock = asyncio.Lock()
    stream = sys.stdout.buffer

    async def write(message: dict[str, Any]) -> None:
        data = (json.dumps(message) + "\n").encode("utf-8")
        async with lock:
            stream.write(data)
            stream.flush()

    return write


async def run_stdio(server: WorkerServer) -> None:
    """Serve on this process's stdin/stdout until EOF or SIGTERM/SIGINT."""
    reader = asyncio.StreamReader(limit=STDIN_LIMIT)
    protocol = asyncio.StreamReaderProtocol(reader)

    loop = asyncio.get_running_loop()
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)

    serve_task = asyncio.create_task(server.serve(reader, stdout_writer()))

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        serve_task.cancel()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await serve_task
    except asyncio.CancelledError:
        logger.info("Worker stopped")

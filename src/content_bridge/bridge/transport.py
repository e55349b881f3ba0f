"""StdioTransport - JSON-RPC client over a worker's stdin/stdout.

Frames are newline-delimited JSON-RPC 2.0 messages. Requests are correlated
with responses strictly by id; the worker may answer out of order.
"""

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from .. import __version__
from ..config import MAX_FRAME_BYTES
from ..errors import (
    ConnectionLostError,
    InvalidArgumentsError,
    RequestTimeoutError,
    error_from_jsonrpc,
)
from ..types import ToolCallRequest, ToolCallResult, ToolDescriptor

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2024-11-05"
CLIENT_NAME = "content-request-bridge"

# Ids of timed-out requests kept to recognise late responses
MAX_ABANDONED_IDS = 1024

CloseCallback = Callable[[str], None]


class StdioTransport:
    """JSON-RPC client bound to one worker process's pipes."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        stderr: asyncio.StreamReader | None = None,
        on_close: CloseCallback | None = None,
    ):
        """Initialize StdioTransport.

        Args:
            reader: Worker stdout
            writer: Worker stdin
            stderr: Worker stderr, relayed into the log when given
            on_close: Called once with a reason when the worker side closes
        """
        self.reader = reader
        self.writer = writer
        self.stderr = stderr
        self.on_close = on_close

        self._next_id = 0
        self._pending: dict[int, asyncio.Future] = {}
        self._abandoned: dict[int, str] = {}
        self._closed = False
        self._close_reason: str | None = None
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def close_reason(self) -> str | None:
        return self._close_reason

    @property
    def pending_count(self) -> int:
        """Number of requests awaiting a response."""
        return len(self._pending)

    def start(self) -> None:
        """Start the stdout reader and stderr pump tasks."""
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_loop())
        if self.stderr is not None and self._stderr_task is None:
            self._stderr_task = asyncio.create_task(self._pump_stderr(self.stderr))

    def _allocate_id(self) -> int:
        self._next_id += 1
        return self._next_id

    # -------------------------------------------------------------------------
    # Outgoing
    # -------------------------------------------------------------------------

    async def _write(self, message: dict[str, Any]) -> None:
        if self._closed:
            raise ConnectionLostError(
                message=f"Transport closed: {self._close_reason or 'closed'}"
            )
        data = (json.dumps(message) + "\n").encode("utf-8")
        if len(data) > MAX_FRAME_BYTES:
            raise InvalidArgumentsError(
                message=f"Request of {len(data)} bytes exceeds the {MAX_FRAME_BYTES} byte limit",
                data={"size": len(data), "limit": MAX_FRAME_BYTES},
            )
        try:
            self.writer.write(data)
            await self.writer.drain()
        except (ConnectionError, OSError, RuntimeError) as e:
            raise ConnectionLostError(message=f"Transport write failed: {e}") from e

    async def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        """Send a notification (no id, no response)."""
        message: dict[str, Any] = {"jsonrpc": "2.0", "method": method}
        if params is not None:
            message["params"] = params
        await self._write(message)

    async def _exchange(
        self, request_id: int, message: dict[str, Any], timeout: float | None
    ) -> Any:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        method = message.get("method", "")

        try:
            await self._write(message)
            response = await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            self._abandon(request_id, method)
            raise RequestTimeoutError(
                message=f"Request {method} (id={request_id}) timed out after {timeout}s",
                data={"id": request_id, "method": method, "timeout": timeout},
            ) from None
        except asyncio.CancelledError:
            self._abandon(request_id, method)
            raise
        finally:
            self._pending.pop(request_id, None)

        if "error" in response:
            raise error_from_jsonrpc(response["error"] or {})
        return response.get("result")

    def _abandon(self, request_id: int, method: str) -> None:
        if self._pending.pop(request_id, None) is None:
            return
        self._abandoned[request_id] = method
        while len(self._abandoned) > MAX_ABANDONED_IDS:
            self._abandoned.pop(next(iter(self._abandoned)))

    async def request(
        self, method: str, params: dict[str, Any] | None = None, timeout: float | None = None
    ) -> Any:
        """Send a request and wait for its correlated result.

        Raises:
            RequestTimeoutError: If no response arrives within ``timeout``
            ConnectionLostError: If the worker side closes first
            BridgeError: If the worker answers with a JSON-RPC error
        """
        request_id = self._allocate_id()
        message: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
        if params is not None:
            message["params"] = params
        return await self._exchange(request_id, message, timeout)

    async def initialize(self, timeout: float | None = None) -> dict[str, Any]:
        """Perform the initialize handshake and send notifications/initialized."""
        result = await self.request(
            "initialize",
            {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {},
                "clientInfo": {"name": CLIENT_NAME, "version": __version__},
            },
            timeout=timeout,
        )
        await self.notify("notifications/initialized")
        return result or {}

    async def list_tools(self, timeout: float | None = None) -> list[ToolDescriptor]:
        result = await self.request("tools/list", {}, timeout=timeout) or {}
        return [ToolDescriptor.from_dict(tool) for tool in result.get("tools", [])]

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None, timeout: float | None = None
    ) -> ToolCallResult:
        call = ToolCallRequest(id=self._allocate_id(), tool_name=name, arguments=arguments or {})
        result = await self._exchange(call.id, call.to_jsonrpc(), timeout)
        return ToolCallResult.from_dict(result or {})

    # -------------------------------------------------------------------------
    # Incoming
    # -------------------------------------------------------------------------

    def _dispatch(self, message: Any) -> None:
        if not isinstance(message, dict):
            logger.warning(f"Ignoring non-object message from worker: {message!r}")
            return

        request_id = message.get("id")
        if request_id is None:
            logger.debug(f"Worker notification: {message.get('method')}")
            return

        future = self._pending.pop(request_id, None)
        if future is None:
            method = self._abandoned.pop(request_id, None)
            if method is not None:
                logger.info(f"Discarding late response for timed-out {method} (id={request_id})")
            else:
                logger.warning(f"Discarding response with unknown id {request_id}")
            return

        if not future.done():
            future.set_result(message)

    async def _read_loop(self) -> None:
        reason = "worker closed stdout"
        try:
            while True:
                try:
                    line = await self.reader.readline()
                except (ConnectionError, OSError, ValueError) as e:
                    reason = f"transport read failed: {e}"
                    break
                if not line:
                    break

                text = line.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                try:
                    message = json.loads(text)
                except json.JSONDecodeError:
                    logger.warning(f"Ignoring unparseable line from worker: {text[:200]}")
                    continue
                self._dispatch(message)
        finally:
            self._shutdown(reason, notify=True)

    async def _pump_stderr(self, stderr: asyncio.StreamReader) -> None:
        while True:
            try:
                line = await stderr.readline()
            except (ConnectionError, OSError, ValueError):
                return
            if not line:
                return
            text = line.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.info(f"[worker] {text}")

    # -------------------------------------------------------------------------
    # Closing
    # -------------------------------------------------------------------------

    def _shutdown(self, reason: str, notify: bool) -> None:
        if self._closed:
            return
        self._closed = True
        self._close_reason = reason

        pending = list(self._pending.values())
        self._pending.clear()
        for future in pending:
            if not future.done():
                future.set_exception(ConnectionLostError(message=f"Connection lost: {reason}"))
        if pending:
            logger.warning(f"Failed {len(pending)} in-flight request(s): {reason}")

        if notify and self.on_close is not None:
            self.on_close(reason)

    async def close(self, reason: str = "transport closed") -> None:
        """Close the channel; pending requests fail with ConnectionLostError."""
        self._shutdown(reason, notify=False)

        current = asyncio.current_task()
        for task in (self._reader_task, self._stderr_task):
            if task is not None and task is not current and not task.done():
                task.cancel()

        try:
            self.writer.close()
            await self.writer.wait_closed()
        except (ConnectionError, OSError, RuntimeError) as e:
            logger.debug(f"Ignoring error while closing worker stdin: {e}")

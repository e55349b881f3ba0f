"""Supervisor - owns the worker process and the connection state machine.

States: DISCONNECTED -> CONNECTING -> CONNECTED (or DEGRADED) -> DISCONNECTED.
A connection attempt spawns the worker, performs the initialize handshake,
lists tools and runs one smoke-test call. Failed attempts are retried with
capped exponential backoff; a lost worker is replaced on the next demand or
after the base retry delay, whichever comes first.
"""

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..config import BridgeConfig
from ..errors import BridgeError, BridgeUnavailableError, is_connection_error
from ..types import ConnectionState, ToolCallResult, ToolDescriptor
from .health import HealthMonitor
from .process import WorkerProcess
from .transport import CloseCallback, StdioTransport

logger = logging.getLogger(__name__)

SpawnFn = Callable[[], Awaitable[WorkerProcess]]
TransportFactory = Callable[[WorkerProcess, CloseCallback], StdioTransport]


def backoff_delay(attempt: int, base: float, max_delay: float) -> float:
    """Delay before retry number ``attempt`` (1-based): base * 2^(attempt-1), capped."""
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return min(base * (2 ** (attempt - 1)), max_delay)


def default_transport_factory(process: WorkerProcess, on_close: CloseCallback) -> StdioTransport:
    return StdioTransport(process.stdout, process.stdin, process.stderr, on_close=on_close)


class InvalidTransitionError(RuntimeError):
    """A state change the connection state machine does not allow."""


_TRANSITIONS: dict[ConnectionState, frozenset[ConnectionState]] = {
    ConnectionState.DISCONNECTED: frozenset({ConnectionState.CONNECTING}),
    ConnectionState.CONNECTING: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.DEGRADED, ConnectionState.DISCONNECTED}
    ),
    ConnectionState.CONNECTED: frozenset(
        {ConnectionState.DEGRADED, ConnectionState.DISCONNECTED}
    ),
    ConnectionState.DEGRADED: frozenset(
        {ConnectionState.CONNECTED, ConnectionState.DISCONNECTED}
    ),
}


class Connection:
    """The supervisor's single connection: state plus the resources it holds.

    State only changes through the transition methods, which also hand
    resources over so that nothing outlives the state that owned it.
    """

    def __init__(self) -> None:
        self._state = ConnectionState.DISCONNECTED
        self.process: WorkerProcess | None = None
        self.transport: StdioTransport | None = None
        self.tools: list[ToolDescriptor] = []
        self.connected_since: datetime | None = None
        self.last_error: str | None = None
        self.degraded_reason: str | None = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """CONNECTED or DEGRADED: calls can be sent."""
        return self._state in (ConnectionState.CONNECTED, ConnectionState.DEGRADED)

    def _move(self, target: ConnectionState) -> None:
        if target not in _TRANSITIONS[self._state]:
            raise InvalidTransitionError(f"Cannot go from {self._state.value} to {target.value}")
        logger.info(f"Connection {self._state.value} -> {target.value}")
        self._state = target

    def begin_connecting(self) -> None:
        self._move(ConnectionState.CONNECTING)

    def mark_connected(
        self,
        process: WorkerProcess,
        transport: StdioTransport,
        tools: list[ToolDescriptor],
        degraded_reason: str | None = None,
    ) -> None:
        self._move(ConnectionState.DEGRADED if degraded_reason else ConnectionState.CONNECTED)
        self.process = process
        self.transport = transport
        self.tools = tools
        self.connected_since = datetime.now(timezone.utc)
        self.degraded_reason = degraded_reason
        self.last_error = None

    def mark_degraded(self, reason: str) -> None:
        if self._state == ConnectionState.CONNECTED:
            self._move(ConnectionState.DEGRADED)
        self.degraded_reason = reason

    def mark_healthy(self) -> None:
        if self._state == ConnectionState.DEGRADED:
            self._move(ConnectionState.CONNECTED)
        self.degraded_reason = None

    def mark_disconnected(
        self, error: str | None = None
    ) -> tuple[WorkerProcess | None, StdioTransport | None]:
        """Move to DISCONNECTED and release the process and transport to the caller."""
        self._move(ConnectionState.DISCONNECTED)
        released = (self.process, self.transport)
        self.process = None
        self.transport = None
        self.tools = []
        self.connected_since = None
        self.degraded_reason = None
        if error:
            self.last_error = error
        return released


class Supervisor:
    """Keeps one worker alive and routes tool calls to it."""

    def __init__(
        self,
        config: BridgeConfig | None = None,
        spawn: SpawnFn | None = None,
        transport_factory: TransportFactory | None = None,
        env: Mapping[str, str] | None = None,
    ):
        """Initialize Supervisor.

        Args:
            config: Timeouts, retry policy and worker command
            spawn: Coroutine function starting a worker (default: worker_command)
            transport_factory: Builds the transport for a spawned worker
            env: Worker environment (default: this process's environment)
        """
        self.config = config or BridgeConfig()
        self.env = dict(os.environ if env is None else env)
        self._spawn = spawn or self._spawn_worker
        self._transport_factory = transport_factory or default_transport_factory

        self.connection = Connection()
        self.health_monitor = HealthMonitor(self, check_interval=self.config.health_check_interval)

        self._lock = asyncio.Lock()
        self._attempt_task: asyncio.Task | None = None
        self._retry_task: asyncio.Task | None = None
        self._exit_watcher: asyncio.Task | None = None
        self._health_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()
        self._failures = 0
        self._spawn_count = 0
        self._shutdown = False

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self.connection.state

    @property
    def spawn_count(self) -> int:
        """Number of workers spawned so far."""
        return self._spawn_count

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    @property
    def retry_scheduled(self) -> bool:
        return self._retry_task is not None and not self._retry_task.done()

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown

    def status(self) -> dict[str, Any]:
        """JSON-ready snapshot of the connection."""
        connection = self.connection
        return {
            "state": connection.state.value,
            "connected": connection.is_connected,
            "pid": connection.process.pid if connection.process else None,
            "attempt": self._failures,
            "spawnCount": self._spawn_count,
            "retryScheduled": self.retry_scheduled,
            "lastError": connection.last_error,
            "degradedReason": connection.degraded_reason,
            "connectedSince": (
                connection.connected_since.isoformat() if connection.connected_since else None
            ),
            "tools": [tool.name for tool in connection.tools],
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> bool:
        """Connect and start the health monitor.

        Returns:
            True if the first connection attempt succeeded. A failure is not
            fatal: retries are already scheduled.
        """
        if self._health_task is None:
            self._health_task = asyncio.create_task(self.health_monitor.run())
        try:
            await self.ensure_connected()
        except BridgeError as e:
            logger.warning(f"Initial connection to worker failed: {e}")
            return False
        return True

    async def shutdown(self) -> None:
        """Stop everything and terminate the worker. Never reconnects afterwards."""
        if self._shutdown:
            return
        self._shutdown = True
        logger.info("Shutting down supervisor")

        self.health_monitor.stop()
        tasks = [
            task
            for task in (
                self._health_task,
                self._retry_task,
                self._attempt_task,
                self._exit_watcher,
                *self._background,
            )
            if task is not None and task is not asyncio.current_task() and not task.done()
        ]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self.connection.is_connected:
            process, transport = self.connection.mark_disconnected("shutdown")
            await self._teardown(process, transport)
        logger.info("Supervisor shut down")

    async def _spawn_worker(self) -> WorkerProcess:
        return await WorkerProcess.spawn(self.config.worker_argv(), env=self.env)

    # -------------------------------------------------------------------------
    # Connecting
    # -------------------------------------------------------------------------

    async def ensure_connected(self) -> StdioTransport:
        """Return a live transport, connecting first if needed.

        Concurrent callers share one connection attempt.

        Raises:
            BridgeUnavailableError: If the attempt fails or the supervisor is shut down
        """
        if self._shutdown:
            raise BridgeUnavailableError(message="Supervisor is shut down")
        if self.connection.is_connected and self.connection.transport is not None:
            return self.connection.transport

        async with self._lock:
            if self.connection.is_connected and self.connection.transport is not None:
                return self.connection.transport
            if self._attempt_task is None or self._attempt_task.done():
                self._cancel_retry()
                self._attempt_task = asyncio.create_task(self._connect())
            attempt = self._attempt_task

        return await asyncio.shield(attempt)

    async def _connect(self) -> StdioTransport:
        self.connection.begin_connecting()
        process: WorkerProcess | None = None
        transport: StdioTransport | None = None
        try:
            process = await self._spawn()
            self._spawn_count += 1
            transport = self._transport_factory(
                process, lambda reason, p=process: self._on_transport_closed(p, reason)
            )
            transport.start()

            timeout = self.config.handshake_timeout
            info = await transport.initialize(timeout=timeout)
            logger.info(f"Worker initialized: {info.get('serverInfo', {})}")
            tools = await transport.list_tools(timeout=timeout)
            smoke = await transport.call_tool(
                self.config.smoke_test_tool, {}, timeout=self.config.smoke_test_timeout
            )
        except asyncio.CancelledError:
            self.connection.mark_disconnected("connection attempt cancelled")
            await self._teardown(process, transport)
            raise
        except Exception as e:
            self._failures += 1
            message = f"{type(e).__name__}: {e}"
            logger.warning(f"Connection attempt {self._failures} failed: {message}")
            self.connection.mark_disconnected(message)
            await self._teardown(process, transport)
            self._after_failed_attempt()
            raise BridgeUnavailableError(
                message=f"Failed to connect to worker: {e}",
                data={"attempt": self._failures},
            ) from e

        self._failures = 0
        self.connection.mark_connected(process, transport, tools, self._degraded_reason(smoke))
        self._exit_watcher = asyncio.create_task(self._watch_exit(process))
        logger.info(f"Connected to worker (PID {process.pid}, {len(tools)} tools)")
        return transport

    @staticmethod
    def _degraded_reason(result: ToolCallResult) -> str | None:
        if result.is_error:
            return f"smoke test returned an error: {result.text[:200]}"
        if result.is_fallback:
            return "smoke test answered in fallback mode"
        return None

    def _after_failed_attempt(self) -> None:
        if self._shutdown:
            return
        if self._failures >= self.config.max_retry_attempts:
            logger.error(
                f"Giving up after {self._failures} failed connection attempts; "
                "next request will retry"
            )
            self._failures = 0
            return
        delay = backoff_delay(
            self._failures, self.config.retry_base_delay, self.config.max_retry_delay
        )
        self._schedule_retry(delay)

    def _schedule_retry(self, delay: float) -> None:
        if self._shutdown or self.retry_scheduled:
            return
        logger.info(f"Reconnecting in {delay:.1f}s")
        self._retry_task = asyncio.create_task(self._retry_after(delay))

    def _cancel_retry(self) -> None:
        task = self._retry_task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        self._retry_task = None

    async def _retry_after(self, delay: float) -> None:
        await asyncio.sleep(delay)
        self._retry_task = None
        try:
            await self.ensure_connected()
        except BridgeError as e:
            logger.debug(f"Scheduled reconnect failed: {e}")

    # -------------------------------------------------------------------------
    # Losing the worker
    # -------------------------------------------------------------------------

    async def _watch_exit(self, process: WorkerProcess) -> None:
        code = await process.wait()
        logger.warning(f"Worker (PID {process.pid}) exited with code {code}")
        await self._drop(process, f"worker exited with code {code}", reconnect=True)

    def _on_transport_closed(self, process: WorkerProcess, reason: str) -> None:
        if self._shutdown:
            return
        self._run_background(self._drop(process, reason, reconnect=True))

    def _run_background(self, coro: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _drop(self, process: WorkerProcess, reason: str, reconnect: bool) -> None:
        """Release ``process`` if it is still the live one.

        Stale notifications about an already replaced worker are ignored.
        """
        if self.connection.process is not process or not self.connection.is_connected:
            return
        released_process, transport = self.connection.mark_disconnected(reason)

        watcher = self._exit_watcher
        self._exit_watcher = None
        if watcher is not None and watcher is not asyncio.current_task():
            watcher.cancel()

        await self._teardown(released_process, transport, reason)
        if reconnect:
            self._schedule_retry(self.config.retry_base_delay)

    async def _teardown(
        self,
        process: WorkerProcess | None,
        transport: StdioTransport | None,
        reason: str = "connection closed",
    ) -> None:
        if transport is not None:
            await transport.close(reason)
        if process is not None:
            await process.terminate()

    # -------------------------------------------------------------------------
    # Calls
    # -------------------------------------------------------------------------

    async def call_tool(
        self,
        name: str,
        arguments: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> ToolCallResult:
        """Invoke a tool on the worker, connecting first if needed.

        Tool calls are never retried: a call whose response was lost may
        still have taken effect.

        Raises:
            BridgeUnavailableError: If no connection can be made
            ConnectionLostError: If the worker goes away mid-call
            RequestTimeoutError: If the worker does not answer in time
            UnknownToolError, InvalidArgumentsError: If the worker rejects the call
        """
        transport = await self.ensure_connected()
        process = self.connection.process
        try:
            return await transport.call_tool(
                name, arguments or {}, timeout=timeout or self.config.call_timeout
            )
        except Exception as e:
            if process is not None and is_connection_error(e):
                await self._drop(process, f"{type(e).__name__}: {e}", reconnect=True)
            raise

    async def list_tools(self) -> list[ToolDescriptor]:
        """Tools advertised by the connected worker."""
        await self.ensure_connected()
        return list(self.connection.tools)

    async def probe(self) -> ToolCallResult | None:
        """Run the smoke-test tool against the live worker.

        Returns None when there is nothing to probe (not connected or shut
        down). A failing probe drops the worker and reconnects immediately.
        """
        transport = self.connection.transport
        process = self.connection.process
        if self._shutdown or transport is None or process is None:
            return None

        try:
            result = await transport.call_tool(
                self.config.smoke_test_tool, {}, timeout=self.config.smoke_test_timeout
            )
        except Exception as e:
            logger.warning(f"Health probe failed: {type(e).__name__}: {e}")
            await self._drop(process, f"health probe failed: {e}", reconnect=False)
            await self.ensure_connected()
            raise

        reason = self._degraded_reason(result)
        if reason:
            self.connection.mark_degraded(reason)
        else:
            self.connection.mark_healthy()
        return result

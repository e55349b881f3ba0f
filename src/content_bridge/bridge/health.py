"""HealthMonitor - periodic smoke-test probe of the worker.

Each check asks the supervisor to run its smoke-test tool. The supervisor
owns the consequences (demoting to DEGRADED, reconnecting); the monitor keeps
the schedule and a consecutive-failure count for reporting.
"""

import asyncio
import logging
from typing import TYPE_CHECKING

from ..types import ToolCallResult

if TYPE_CHECKING:
    from .supervisor import Supervisor

logger = logging.getLogger(__name__)

DEFAULT_CHECK_INTERVAL = 30.0
DEFAULT_MAX_FAILURES = 3


class HealthMonitor:
    """Runs the supervisor's probe at a fixed interval."""

    def __init__(
        self,
        supervisor: "Supervisor",
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        max_failures: int = DEFAULT_MAX_FAILURES,
    ):
        """Initialize HealthMonitor.

        Args:
            supervisor: Supervisor whose probe() is called
            check_interval: Seconds between checks
            max_failures: Consecutive failures before reporting unhealthy
        """
        self.supervisor = supervisor
        self.check_interval = check_interval
        self.max_failures = max_failures

        self._failure_count = 0
        self._running = False
        self._last_result: ToolCallResult | None = None

    @property
    def is_healthy(self) -> bool:
        return self._failure_count < self.max_failures

    @property
    def failure_count(self) -> int:
        """Current consecutive failure count."""
        return self._failure_count

    @property
    def last_result(self) -> ToolCallResult | None:
        return self._last_result

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Probe every ``check_interval`` seconds until stopped."""
        self._running = True
        logger.info(f"Starting health monitor (interval: {self.check_interval}s)")

        while self._running:
            await asyncio.sleep(self.check_interval)
            if not self._running:
                break
            await self._check_health()

    def stop(self) -> None:
        self._running = False
        logger.info("Health monitor stopped")

    async def _check_health(self) -> None:
        """Perform a single health check."""
        try:
            result = await self.supervisor.probe()
        except Exception as e:
            self._on_failure(e)
            return
        if result is not None:
            self._on_success(result)

    def _on_success(self, result: ToolCallResult) -> None:
        if self._failure_count > 0:
            logger.info(f"Health check recovered after {self._failure_count} failures")
        self._failure_count = 0
        self._last_result = result

    def _on_failure(self, error: Exception) -> None:
        self._failure_count += 1
        logger.warning(f"Health check failed ({self._failure_count}/{self.max_failures}): {error}")
        if self._failure_count == self.max_failures:
            logger.error(f"Worker unhealthy after {self._failure_count} consecutive failures")

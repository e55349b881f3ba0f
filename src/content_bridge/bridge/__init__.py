"""Supervisor side of the stdio bridge: process handle, transport, state machine."""

from .health import HealthMonitor
from .process import WorkerProcess
from .supervisor import Connection, Supervisor, backoff_delay
from .transport import StdioTransport

__all__ = [
    "Connection",
    "HealthMonitor",
    "StdioTransport",
    "Supervisor",
    "WorkerProcess",
    "backoff_delay",
]

"""Shared infrastructure used by both the supervisor and the worker."""

from .logging import configure_logging, get_logger
from .paths import BRIDGE_DIR, CONFIG_FILE, LOG_DIR, ensure_dirs, get_log_file

__all__ = [
    "BRIDGE_DIR",
    "CONFIG_FILE",
    "LOG_DIR",
    "configure_logging",
    "ensure_dirs",
    "get_log_file",
    "get_logger",
]

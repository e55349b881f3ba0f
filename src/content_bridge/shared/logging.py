"""Logging configuration for content-bridge.

structlog on top of standard logging. The HTTP server renders for humans in
the foreground and JSON when writing a log file. The worker always logs to
stderr because its stdout carries the JSON-RPC stream.
"""

import logging
import sys
from pathlib import Path

import structlog


def configure_logging(
    level: str = "info",
    log_file: str | Path | None = None,
    json_output: bool = False,
) -> None:
    """Configure standard logging and structlog. Call once per process.

    Args:
        level: Log level (debug, info, warning, error, critical)
        log_file: Optional path to a log file; stderr when omitted
        json_output: Render JSON lines instead of the console format
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler: logging.Handler
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(str(log_file))
    else:
        handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(log_level)

    logging.basicConfig(
        level=log_level,
        handlers=[handler],
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        force=True,
    )

    processors: list[structlog.types.Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger bound to ``name`` (typically __name__)."""
    return structlog.get_logger(name)

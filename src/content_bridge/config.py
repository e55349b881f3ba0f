"""Bridge configuration management.

Server-side settings are stored in ~/.content-bridge/config.yaml and can be
overridden through ``CONTENT_BRIDGE_*`` environment variables. Worker-side
settings (Azure DevOps credentials and defaults) are read from the worker's
environment once at startup.
"""

import logging
import os
import shlex
import sys
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .shared.paths import CONFIG_FILE

logger = logging.getLogger(__name__)

# Default values
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3003
DEFAULT_WORKER_COMMAND = "python -m content_bridge.worker"
DEFAULT_CALL_TIMEOUT = 30.0
DEFAULT_HANDSHAKE_TIMEOUT = 15.0
DEFAULT_RETRY_BASE_DELAY = 5.0
DEFAULT_MAX_RETRY_DELAY = 60.0
DEFAULT_MAX_RETRY_ATTEMPTS = 5
DEFAULT_HEALTH_CHECK_INTERVAL = 30.0
DEFAULT_SMOKE_TEST_TOOL = "get_team_dashboard"
# Covers the dashboard's sequential ADO requests at DEFAULT_REQUEST_TIMEOUT each
DEFAULT_SMOKE_TEST_TIMEOUT = 120.0
DEFAULT_LOG_LEVEL = "info"

ENV_PREFIX = "CONTENT_BRIDGE_"

# Largest newline-delimited JSON-RPC frame either side will read
MAX_FRAME_BYTES = 16 * 1024 * 1024
# Decoded attachment size; its base64 form must fit in one frame
MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024

# Name of the worker's MCP server, also accepted by POST /api/mcp
SERVER_NAME = "content-request-server"

# Worker environment
DEFAULT_ORGANIZATION_URL = "https://dev.azure.com/msft-skilling"
DEFAULT_PROJECT = "Content"
DEFAULT_TEAM_NAME = "Content Team"
DEFAULT_AREA_PATH_FILTER = "MSec Docs\\Security"
DEFAULT_REQUEST_TIMEOUT = 30.0


class ConfigError(ValueError):
    """Configuration is missing or malformed."""


@dataclass
class BridgeConfig:
    """Supervisor and HTTP server configuration."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    worker_command: str = DEFAULT_WORKER_COMMAND
    call_timeout: float = DEFAULT_CALL_TIMEOUT
    handshake_timeout: float = DEFAULT_HANDSHAKE_TIMEOUT
    retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY
    max_retry_delay: float = DEFAULT_MAX_RETRY_DELAY
    max_retry_attempts: int = DEFAULT_MAX_RETRY_ATTEMPTS
    health_check_interval: float = DEFAULT_HEALTH_CHECK_INTERVAL
    smoke_test_tool: str = DEFAULT_SMOKE_TEST_TOOL
    smoke_test_timeout: float = DEFAULT_SMOKE_TEST_TIMEOUT
    log_level: str = DEFAULT_LOG_LEVEL

    # Track where each value came from
    _sources: dict[str, str] = field(default_factory=dict, repr=False)

    def get_source(self, key: str) -> str:
        """Get the source of a config value."""
        return self._sources.get(key, "default")

    def to_dict(self) -> dict[str, Any]:
        return {key: getattr(self, key) for key in CONFIG_KEYS}

    def worker_argv(self) -> list[str]:
        """Split ``worker_command``; a bare ``python`` means this interpreter."""
        argv = shlex.split(self.worker_command)
        if not argv:
            raise ConfigError("worker_command is empty")
        if argv[0] in ("python", "python3"):
            argv[0] = sys.executable
        return argv


CONFIG_KEYS: tuple[str, ...] = tuple(
    f.name for f in fields(BridgeConfig) if not f.name.startswith("_")
)

_CASTERS: dict[str, Callable[[Any], Any]] = {
    "host": str,
    "port": int,
    "worker_command": str,
    "call_timeout": float,
    "handshake_timeout": float,
    "retry_base_delay": float,
    "max_retry_delay": float,
    "max_retry_attempts": int,
    "health_check_interval": float,
    "smoke_test_tool": str,
    "smoke_test_timeout": float,
    "log_level": str,
}


def env_var(key: str) -> str:
    """Environment variable that overrides ``key``."""
    return f"{ENV_PREFIX}{key.upper()}"


def coerce_value(key: str, value: Any) -> Any:
    """Convert a raw value to the type of config ``key``.

    Raises:
        ConfigError: If the key is unknown or the value cannot be converted
    """
    if key not in _CASTERS:
        raise ConfigError(f"Unknown config key: {key}. Valid keys: {', '.join(CONFIG_KEYS)}")
    try:
        return _CASTERS[key](value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from e


def get_config_path() -> Path:
    """Get the config file path (~/.content-bridge/config.yaml)."""
    return CONFIG_FILE


def _read_file(config_path: Path) -> dict[str, Any]:
    with open(config_path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping")
    return data


def load_config(
    config_path: Path | None = None, environ: Mapping[str, str] | None = None
) -> BridgeConfig:
    """Load bridge configuration.

    Precedence (highest to lowest):
    1. Environment variables (CONTENT_BRIDGE_<KEY>)
    2. Config file (~/.content-bridge/config.yaml)
    3. Defaults

    An unreadable config file is logged and ignored, as are environment
    values that cannot be converted.

    Returns:
        BridgeConfig with values and sources
    """
    config = BridgeConfig()
    sources = {key: "default" for key in CONFIG_KEYS}
    config_path = config_path or get_config_path()
    environ = os.environ if environ is None else environ

    if config_path.exists():
        try:
            file_config = _read_file(config_path)
        except (OSError, yaml.YAMLError, ConfigError) as e:
            logger.warning(f"Ignoring unreadable config file {config_path}: {e}")
            file_config = {}

        for key, raw in file_config.items():
            try:
                setattr(config, key, coerce_value(key, raw))
            except ConfigError as e:
                logger.warning(f"Ignoring config file entry: {e}")
                continue
            sources[key] = "config file"

    for key in CONFIG_KEYS:
        raw = environ.get(env_var(key))
        if not raw:
            continue
        try:
            setattr(config, key, coerce_value(key, raw))
        except ConfigError as e:
            logger.warning(f"Ignoring {env_var(key)}: {e}")
            continue
        sources[key] = "environment"

    config._sources = sources
    return config


def save_config(key: str, value: Any, config_path: Path | None = None) -> None:
    """Save a config value to the config file.

    Raises:
        ConfigError: If the key is unknown or the value has the wrong type
    """
    value = coerce_value(key, value)
    config_path = config_path or get_config_path()

    existing: dict[str, Any] = {}
    if config_path.exists():
        existing = _read_file(config_path)

    existing[key] = value

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        yaml.safe_dump(existing, f, default_flow_style=False)


def unset_config(key: str, config_path: Path | None = None) -> bool:
    """Remove a config value from the config file.

    Returns:
        True if key was removed, False if not found
    """
    config_path = config_path or get_config_path()
    if not config_path.exists():
        return False

    existing = _read_file(config_path)
    if key not in existing:
        return False

    del existing[key]

    with open(config_path, "w") as f:
        yaml.safe_dump(existing, f, default_flow_style=False)

    return True


# -----------------------------------------------------------------------------
# Worker settings
# -----------------------------------------------------------------------------


@dataclass(frozen=True)
class WorkerSettings:
    """Azure DevOps connection settings for the worker process."""

    personal_access_token: str = field(repr=False)
    organization_url: str = DEFAULT_ORGANIZATION_URL
    project: str = DEFAULT_PROJECT
    team_name: str = DEFAULT_TEAM_NAME
    area_path_filter: str = DEFAULT_AREA_PATH_FILTER
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "WorkerSettings":
        """Read worker settings from the environment.

        Raises:
            ConfigError: If ADO_PERSONAL_ACCESS_TOKEN is missing or a value is malformed
        """
        environ = os.environ if environ is None else environ
        token = environ.get("ADO_PERSONAL_ACCESS_TOKEN", "").strip()
        if not token:
            raise ConfigError("ADO_PERSONAL_ACCESS_TOKEN environment variable is required")

        raw_timeout = environ.get("ADO_REQUEST_TIMEOUT") or DEFAULT_REQUEST_TIMEOUT
        try:
            request_timeout = float(raw_timeout)
        except ValueError as e:
            raise ConfigError(f"Invalid ADO_REQUEST_TIMEOUT: {raw_timeout!r}") from e

        return cls(
            personal_access_token=token,
            organization_url=(
                environ.get("ADO_ORGANIZATION_URL") or DEFAULT_ORGANIZATION_URL
            ).rstrip("/"),
            project=environ.get("ADO_DEFAULT_PROJECT") or DEFAULT_PROJECT,
            team_name=environ.get("ADO_TEAM_NAME") or DEFAULT_TEAM_NAME,
            area_path_filter=environ.get("ADO_AREA_PATH_FILTER") or DEFAULT_AREA_PATH_FILTER,
            request_timeout=request_timeout,
        )


def describe_environment(environ: Mapping[str, str] | None = None) -> dict[str, str]:
    """Organization and project reported by the health endpoint (no secrets)."""
    environ = os.environ if environ is None else environ
    return {
        "organization": environ.get("ADO_ORGANIZATION_URL") or DEFAULT_ORGANIZATION_URL,
        "project": environ.get("ADO_DEFAULT_PROJECT") or DEFAULT_PROJECT,
    }

"""Filesystem locations under ~/.content-bridge/."""

from pathlib import Path

# Base directory for bridge data
BRIDGE_DIR = Path.home() / ".content-bridge"

CONFIG_FILE = BRIDGE_DIR / "config.yaml"

LOG_DIR = BRIDGE_DIR / "logs"


def ensure_dirs() -> None:
    """Create ~/.content-bridge/ and its log directory (user-only access)."""
    BRIDGE_DIR.mkdir(mode=0o700, exist_ok=True)
    LOG_DIR.mkdir(mode=0o700, exist_ok=True)


def get_log_file(name: str = "server") -> Path:
    """Get path to a log file.

    Args:
        name: Log file name (without extension)

    Returns:
        Path to the log file
    """
    return LOG_DIR / f"{name}.log"

"""cmdstream environment configuration.

Environment variables:
    CMDSTREAM_TERM_TIMEOUT: SIGTERM grace period before SIGKILL (seconds)
        - 0 = kill immediately (default)
        - clamped to 0-60

    CMDSTREAM_KILL_TIMEOUT: Time to wait for a killed child to be reaped
        - default 1.0 seconds
        - clamped to 0.1-60

    CMDSTREAM_READ_CHUNK_SIZE: Chunk size when iterating a handle's stream
        - default 4096 bytes
        - clamped to 1 byte - 1 MiB

    CMDSTREAM_LOG_DEBUG: Debug logging
        - true/1/yes/on = debug log written to a temp file
        - false/0/no = off (default, INFO to stderr)
"""

from __future__ import annotations

import os
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config"]

DEFAULT_TERM_TIMEOUT = 0.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_READ_CHUNK_SIZE = 4096
MAX_READ_CHUNK_SIZE = 1024 * 1024


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_float(value: str | None, default: float, low: float, high: float) -> float:
    """Parse a float environment variable, clamped to [low, high]."""
    if not value:
        return default
    try:
        parsed = float(value)
    except ValueError:
        return default
    return max(low, min(parsed, high))


def _parse_int(value: str | None, default: int, low: int, high: int) -> int:
    """Parse an integer environment variable, clamped to [low, high]."""
    if not value:
        return default
    try:
        parsed = int(value)
    except ValueError:
        return default
    return max(low, min(parsed, high))


@dataclass
class Config:
    """cmdstream configuration.

    Attributes:
        term_timeout: SIGTERM grace period; 0 sends SIGKILL straight away
        kill_timeout: How long to wait for a killed child to exit
        read_chunk_size: Chunk size used by ``async for`` over a handle
        log_debug: Debug logging to a file
        log_file: Log file path (set automatically when log_debug=True)
    """

    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE
    log_debug: bool = False
    log_file: str | None = None

    def __repr__(self) -> str:
        return (
            f"Config(term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"read_chunk_size={self.read_chunk_size}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file})"
        )


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "cmdstream"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"cmdstream_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from the environment."""
    log_debug = _parse_bool(os.environ.get("CMDSTREAM_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        term_timeout=_parse_float(
            os.environ.get("CMDSTREAM_TERM_TIMEOUT"), DEFAULT_TERM_TIMEOUT, 0.0, 60.0
        ),
        kill_timeout=_parse_float(
            os.environ.get("CMDSTREAM_KILL_TIMEOUT"), DEFAULT_KILL_TIMEOUT, 0.1, 60.0
        ),
        read_chunk_size=_parse_int(
            os.environ.get("CMDSTREAM_READ_CHUNK_SIZE"),
            DEFAULT_READ_CHUNK_SIZE,
            1,
            MAX_READ_CHUNK_SIZE,
        ),
        log_debug=log_debug,
        log_file=log_file,
    )


# Global config instance (lazy)
_config: Config | None = None


def get_config() -> Config:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration (used by tests)."""
    global _config
    _config = load_config()
    return _config

"""Logging setup for applications embedding cmdstream."""

from __future__ import annotations

import logging
import sys

from .config import Config, get_config

__all__ = ["setup_logging", "LOG_FORMAT"]

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def setup_logging(config: Config | None = None) -> list[logging.Handler]:
    """Route cmdstream logs to stderr, or to a debug file.

    Third-party loggers stay at WARNING; only the ``cmdstream`` namespace
    is raised to INFO (or DEBUG in log_debug mode).

    Args:
        config: Configuration to use (default: global config)

    Returns:
        The handlers that were installed
    """
    config = config or get_config()
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    logging.basicConfig(
        level=logging.WARNING,
        handlers=log_handlers,
    )
    logging.getLogger("cmdstream").setLevel(log_level)

    return log_handlers

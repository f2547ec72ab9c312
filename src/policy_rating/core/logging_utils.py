"""Central logging utilities for the rating engine.

All modules obtain their logger through :func:`get_logger`, which makes sure
the root logger is configured exactly once. The package logger level follows
``Settings.log_level``.

Key Features
------------
1. configure_logging(): idempotent initialization of the root logger.
2. get_logger(name): typed helper that always returns a configured logger.
"""

from __future__ import annotations

import logging
from typing import Final

from beartype import beartype

__all__: Final = [
    "PACKAGE_LOGGER",
    "configure_logging",
    "get_logger",
    "reset_logging",
]

PACKAGE_LOGGER: Final = "policy_rating"
_DEFAULT_LOG_FORMAT: Final = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_is_configured: bool = False


@beartype
def configure_logging(
    *, level: int | None = None, fmt: str = _DEFAULT_LOG_FORMAT
) -> None:
    """Configure the root logger exactly once.

    When ``level`` is omitted the level configured in the settings is used.
    Calling this function multiple times is safe.
    """
    global _is_configured
    if _is_configured:
        return

    if level is None:
        from .config import get_settings

        level = get_settings().log_level_value

    logging.basicConfig(format=fmt)
    logging.getLogger(PACKAGE_LOGGER).setLevel(level)
    _is_configured = True


@beartype
def get_logger(name: str | None = None, *, level: int | None = None) -> logging.Logger:
    """Return a module-scoped logger that is guaranteed to be configured."""
    configure_logging()
    logger = logging.getLogger(name or PACKAGE_LOGGER)
    if level is not None:
        logger.setLevel(level)
    return logger


@beartype
def reset_logging() -> None:
    """Allow :func:`configure_logging` to run again (for testing)."""
    global _is_configured
    _is_configured = False

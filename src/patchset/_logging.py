"""Logging levels shared by the reconciliation engine.

The engine logs through standard module loggers. Scheduling decisions and
skipped patches are reported on an extra ``NOTICE`` level that sits
between ``INFO`` and ``WARNING``.
"""

from __future__ import annotations

import logging
import sys
from typing import Any

NOTICE = 25
LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"

logging.addLevelName(NOTICE, "NOTICE")


def notice(logger: logging.Logger, message: str, *args: Any) -> None:
    """Emit ``message`` on the ``NOTICE`` level."""

    logger.log(NOTICE, message, *args)


def parse_level(value: str | int) -> int:
    """Translate a level name (``debug``, ``notice`` ...) into its number."""

    if isinstance(value, int):
        return value
    name = value.strip().upper()
    if name == "NOTICE":
        return NOTICE
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {value}")
    return level


def configure_logging(level: str | int = logging.INFO) -> None:
    """Attach a stderr handler to the ``patchset`` logger tree."""

    logger = logging.getLogger("patchset")
    logger.setLevel(parse_level(level))
    for existing in list(logger.handlers):
        if getattr(existing, "_patchset_handler", False):
            logger.removeHandler(existing)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._patchset_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)


__all__ = ["LOG_FORMAT", "NOTICE", "configure_logging", "notice", "parse_level"]

"""Logging setup for the ``chatbridge`` namespace.

Library modules only call ``logging.getLogger(__name__)``; applications call
``configure_logging()`` once to get rich console output. Secrets are never
passed to a logger.
"""
import logging
import os
from typing import Optional, Union

from rich.logging import RichHandler

ROOT_LOGGER = "chatbridge"
_HANDLER_ATTR = "_chatbridge_handler"


def _parse_level(raw: Optional[str], default: int) -> int:
    if not raw:
        return default
    raw = raw.strip()
    if raw.isdigit():
        return int(raw)
    level = logging.getLevelName(raw.upper())
    return level if isinstance(level, int) else default


def configure_logging(level: Union[int, str, None] = None) -> logging.Logger:
    """
    Install a single rich console handler on the ``chatbridge`` logger.

    The level comes from the argument, then ``CHATBRIDGE_LOG_LEVEL``, then
    WARNING. Calling this again only adjusts the level.

    Args:
        level (int | str, optional): Explicit log level.

    Returns:
        logging.Logger: The configured package logger.
    """
    if isinstance(level, str):
        resolved = _parse_level(level, logging.WARNING)
    elif isinstance(level, int):
        resolved = level
    else:
        resolved = _parse_level(os.getenv("CHATBRIDGE_LOG_LEVEL"), logging.WARNING)

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(resolved)

    existing = [h for h in logger.handlers if getattr(h, _HANDLER_ATTR, False)]
    if existing:
        for handler in existing:
            handler.setLevel(resolved)
        return logger

    handler = RichHandler(show_path=False, rich_tracebacks=True)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    setattr(handler, _HANDLER_ATTR, True)
    logger.addHandler(handler)
    logger.propagate = False
    return logger

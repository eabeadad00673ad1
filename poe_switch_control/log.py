"""Console logging for the poe-switch command line.

Library modules only create ``_LOGGER`` instances; handlers are installed
here, once, by the CLI entry point.
"""

from __future__ import annotations

import logging
import os

import coloredlogs  # type: ignore[import]

LOGLEVEL_ENV = "LOGLEVEL"

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
CONSOLE_DATE_FORMAT = "%H:%M:%S"

# Request lines from the HTTP stack drown out switch-level messages
HTTP_LOGGERS = ("httpx", "httpcore")


def resolve_level(level: str | None = None) -> str:
    """Return the level name to log at.

    An explicit ``level`` wins over the ``LOGLEVEL`` environment variable;
    unknown names fall back to INFO.
    """
    name = (level or os.environ.get(LOGLEVEL_ENV) or "INFO").upper()
    if not isinstance(logging.getLevelName(name), int):
        return "INFO"
    return name


def setup_logging(level: str | None = None) -> str:
    """Install coloured console logging and return the level in use."""
    resolved = resolve_level(level)
    coloredlogs.install(
        level=resolved,
        fmt=CONSOLE_FORMAT,
        datefmt=CONSOLE_DATE_FORMAT,
    )

    # Debug output of the HTTP stack only helps when chasing wire issues
    http_level = logging.DEBUG if resolved == "DEBUG" else logging.WARNING
    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(http_level)
    return resolved

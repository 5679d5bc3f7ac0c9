"""Logging helpers for matchlab entry points."""

from __future__ import annotations

import logging
from typing import Iterable

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(
    level: int | str = logging.INFO,
    handlers: Iterable[logging.Handler] | None = None,
) -> None:
    """Configure root logging for the CLI and the API server.

    Library code only creates module loggers; applications embedding the
    engines decide where records go.
    """

    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=list(handlers) if handlers else None,
    )

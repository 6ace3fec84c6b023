"""Logging setup for the faultline command line.

Library modules only call ``logging.getLogger(__name__)``; handlers and levels
are installed once by the entry point through :func:`configure_logging`.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from faultline.config import load_settings

_logger = logging.getLogger(__name__)

# Lanes and the nemesis log from their own threads.
_FORMAT = "%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S"

# The etcd client's transport logs every request at INFO.
QUIET_LOGGERS = ("httpx", "httpcore")


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(verbose: bool = False) -> None:
    """Send harness logs to stderr and, when configured, to a log file.

    ``verbose`` puts the ``faultline`` loggers at DEBUG whatever the
    configured level is.
    """
    settings = load_settings()
    level = _resolve_level(settings.logging.level)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    file_error: OSError | None = None
    if settings.logging.file:
        try:
            Path(settings.logging.file).parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(settings.logging.file))
        except OSError as exc:
            file_error = exc
    formatter = logging.Formatter(_FORMAT, datefmt=_DATEFMT)
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    logging.getLogger("faultline").setLevel(logging.DEBUG if verbose else logging.NOTSET)

    if file_error is not None:
        _logger.warning("Failed to open log file %s: %s", settings.logging.file, file_error)

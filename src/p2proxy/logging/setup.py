"""Logging setup for the proxy and its command line."""

from __future__ import annotations

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

LOGGER_NAME = "p2proxy"
LOG_FILENAME = f"{LOGGER_NAME}.log"
LOG_FORMAT = "%(asctime)s %(process)08x %(levelname).1s %(name)s %(message)s"
MAX_BYTES = 2 * 1024 * 1024
BACKUP_COUNT = 5

# httpx and httpcore log every request at INFO/DEBUG; keep them at WARNING
# unless the proxy itself runs at DEBUG.
CHATTY_LIBRARIES = ("httpx", "httpcore")


def configure_logging(
    log_path: Path | None = None,
    level: str = "INFO",
    mirror_to_console: bool = True,
) -> logging.Logger:
    """Attach a rotating file handler (and optionally stderr) to the `p2proxy` logger.

    Module loggers under `p2proxy.` propagate here. Calling again replaces
    the handlers from the previous call.
    """

    numeric_level = _normalize_level(level)
    logger = logging.getLogger(LOGGER_NAME)
    _drop_handlers(logger)
    logger.setLevel(numeric_level)
    logger.propagate = False

    formatter = logging.Formatter(LOG_FORMAT)
    handlers: list[logging.Handler] = [_file_handler(_resolve_log_path(log_path))]
    if mirror_to_console:
        handlers.append(logging.StreamHandler(sys.stderr))
    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    library_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in CHATTY_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)

    return logger


def _drop_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _file_handler(path: Path) -> RotatingFileHandler:
    path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        path,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )


def _normalize_level(level: str) -> int:
    name = level.strip().upper()
    if name == "WARN":
        name = "WARNING"
    numeric = logging.getLevelName(name)
    if not isinstance(numeric, int):
        raise ValueError(f"Unsupported log level: {level!r}")
    return numeric


def _resolve_log_path(log_path: Path | None) -> Path:
    """A directory, or a path without a suffix, gets `p2proxy.log` inside it."""

    if log_path is None:
        return Path.cwd() / LOG_FILENAME
    candidate = log_path if log_path.is_absolute() else Path.cwd() / log_path
    if candidate.is_dir() or not candidate.suffix:
        return candidate / LOG_FILENAME
    return candidate

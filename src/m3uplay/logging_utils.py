"""Logging helpers for :mod:`m3uplay`.

All modules log through children of the ``m3uplay`` logger. The first call to
:func:`configure_logging` installs a stderr handler and, unless disabled, a
file handler; its state lives on the function object so a module reload
starts from scratch.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

__all__ = [
    "configure_logging",
    "detach_stream_handler",
    "get_log_file_path",
    "get_logger",
]

ROOT_LOGGER = "m3uplay"
LEVEL_ENV = "M3UPLAY_LOG_LEVEL"
FILE_ENV = "M3UPLAY_LOG_FILE"
DEFAULT_LOG_FILE = Path.home() / ".cache" / "m3uplay.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _parse_level(value: str) -> int:
    """Accept a level name (any case) or number; unknown input means INFO."""

    text = value.strip()
    if text.isdigit():
        number = int(text)
        return number if number <= logging.CRITICAL else logging.INFO
    level = logging.getLevelName(text.upper())
    return level if isinstance(level, int) else logging.INFO


def _set_level(logger: logging.Logger, level: int) -> None:
    logger.setLevel(level)
    for handler in logger.handlers:
        handler.setLevel(level)


def _replace_file_handler(logger: logging.Logger, level: int, destination: str) -> None:
    """Point file logging at *destination*; an empty string turns it off."""

    previous: Optional[logging.Handler] = getattr(configure_logging, "_file_handler", None)
    if previous is not None:
        logger.removeHandler(previous)
        previous.close()
    configure_logging._file_handler = None  # type: ignore[attr-defined]
    configure_logging._log_path = None  # type: ignore[attr-defined]
    if not destination:
        return

    path = Path(destination).expanduser()
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf8")
    except OSError as exc:
        logger.warning("Cannot log to %s: %s", path, exc)
        return
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    handler.setLevel(level)
    logger.addHandler(handler)
    configure_logging._file_handler = handler  # type: ignore[attr-defined]
    configure_logging._log_path = path  # type: ignore[attr-defined]
    logger.debug("Writing log file %s", path)


def configure_logging(
    *,
    level: Optional[str] = None,
    log_file: Optional[str] = None,
) -> logging.Logger:
    """Set up the package logger and return it.

    The first call reads ``M3UPLAY_LOG_LEVEL`` and ``M3UPLAY_LOG_FILE`` for
    anything not passed explicitly. Later calls keep the existing handlers:
    *level* (or the environment) adjusts the level and *log_file* moves the
    file handler.
    """

    logger = logging.getLogger(ROOT_LOGGER)
    env_level = os.getenv(LEVEL_ENV)

    if not getattr(configure_logging, "_configured", False):
        resolved = _parse_level(level or env_level or "INFO")
        logger.propagate = False
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(stream)
        configure_logging._stream_handler = stream  # type: ignore[attr-defined]
        if log_file is None:
            log_file = os.getenv(FILE_ENV, str(DEFAULT_LOG_FILE))
        _replace_file_handler(logger, resolved, log_file)
        configure_logging._configured = True  # type: ignore[attr-defined]
    else:
        override = level if level is not None else env_level
        if override is not None:
            resolved = _parse_level(override)
        else:
            resolved = getattr(configure_logging, "_level", logger.level or logging.INFO)
        if log_file is not None:
            _replace_file_handler(logger, resolved, log_file)

    _set_level(logger, resolved)
    configure_logging._level = resolved  # type: ignore[attr-defined]
    return logger


def detach_stream_handler() -> None:
    """Stop echoing records to stderr, e.g. while a full-screen UI owns the terminal."""

    handler: Optional[logging.Handler] = getattr(configure_logging, "_stream_handler", None)
    if handler is not None:
        logging.getLogger(ROOT_LOGGER).removeHandler(handler)
        configure_logging._stream_handler = None  # type: ignore[attr-defined]


def get_log_file_path() -> Optional[Path]:
    configure_logging()
    return getattr(configure_logging, "_log_path", None)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return ``m3uplay`` or one of its children, configuring logging on first use."""

    root = configure_logging()
    if not name or name == root.name:
        return root
    if name.startswith(root.name + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{root.name}.{name}")

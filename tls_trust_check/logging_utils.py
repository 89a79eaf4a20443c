from __future__ import annotations

import logging
import sys
from contextlib import suppress
from typing import Optional


LOGGER_NAME = "tls_trust_check"

CONSOLE_FORMAT = "%(asctime)s | %(levelname)s | %(message)s"
DEBUG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s:%(lineno)d | %(message)s"


def _level(name: str) -> int:
    return getattr(logging, name.upper(), logging.INFO)


def build_logger(
    main_log_path: Optional[str] = None,
    level: str = "INFO",
    file_level: str = "DEBUG",
) -> logging.Logger:
    """
    Configure the package logger: console at ``level``, optional log file at ``file_level``.

    The file keeps the module/line debug format so a run can be diagnosed after the fact while
    the console stays terse. Calling it again replaces the previous handlers.
    """
    console_level = _level(level)
    logger = logging.getLogger(LOGGER_NAME)
    logger.propagate = False

    stream = logging.StreamHandler(sys.stdout)
    stream.setLevel(console_level)
    stream.setFormatter(logging.Formatter(DEBUG_FORMAT if console_level <= logging.DEBUG else CONSOLE_FORMAT))
    handlers: list[logging.Handler] = [stream]

    if main_log_path:
        file_handler = logging.FileHandler(main_log_path, encoding="utf-8")
        file_handler.setLevel(_level(file_level))
        file_handler.setFormatter(logging.Formatter(DEBUG_FORMAT))
        handlers.append(file_handler)

    logger.setLevel(min(h.level for h in handlers))

    for h in list(logger.handlers):
        with suppress(Exception):
            h.close()
    logger.handlers.clear()
    for h in handlers:
        logger.addHandler(h)
    return logger

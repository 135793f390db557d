"""Centralized logging configuration for the Study Portal application."""

from __future__ import annotations

import logging
from logging import Logger
from pathlib import Path
from typing import Iterable, List


DEFAULT_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: int = logging.INFO, *, handlers: Iterable[logging.Handler] | None = None) -> Logger:
    """Configure the root logger, installing a stream handler unless *handlers* are given."""

    logger = logging.getLogger()
    logger.setLevel(level)

    if handlers is None:
        handlers = [logging.StreamHandler()]

    for handler in handlers:
        if handler.formatter is None:
            handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
        logger.addHandler(handler)

    return logger


def get_log_file_path(storage_root: Path) -> Path:
    """Return the default path for the application log file."""

    return storage_root / "study_portal.log"


def build_handlers(storage_root: Path) -> List[logging.Handler]:
    """Return a file handler writing beside the storage tree plus a stream handler."""

    log_file = get_log_file_path(storage_root)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    return [file_handler, stream_handler]


__all__ = ["build_handlers", "configure_logging", "get_log_file_path", "DEFAULT_LOG_FORMAT"]

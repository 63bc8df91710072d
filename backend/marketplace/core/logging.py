"""
Logging setup driven by application settings
"""

import logging
import os
import time
from logging.handlers import RotatingFileHandler
from typing import List

from ..config import settings

_configured = False


def setup_logging() -> None:
    """
    Configure the root logger once from settings.

    - console and/or rotating file handlers, depending on ``log_to_console`` / ``log_to_file``
    - timestamps are UTC
    - with ``log_verbosity == "minimal"`` the noisy third-party loggers are held at WARNING
    """
    global _configured
    if _configured:
        return

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    formatter = logging.Formatter(settings.log_format)
    formatter.converter = time.gmtime

    handlers: List[logging.Handler] = []
    if settings.log_to_console:
        handlers.append(logging.StreamHandler())

    if settings.log_to_file:
        log_dir = os.path.dirname(settings.log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                settings.log_file_path,
                maxBytes=settings.log_max_size_mb * 1024 * 1024,
                backupCount=settings.log_backup_count,
                encoding="utf-8",
            )
        )

    root = logging.getLogger()
    root.setLevel(level)
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    if settings.log_verbosity != "full":
        for noisy in ("sqlalchemy.engine", "uvicorn.access"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.captureWarnings(True)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a module logger, e.g. ``get_logger(__name__)``"""
    return logging.getLogger(name)


def event_log_level() -> int:
    """Level for per-event lifecycle logs; only surfaces at INFO in full verbosity."""
    return logging.INFO if settings.log_verbosity == "full" else logging.DEBUG

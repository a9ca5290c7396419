"""Logging helpers."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Optional

LOGGER_NAME = "healingvoice"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

logger = logging.getLogger(LOGGER_NAME)


def setup_logging(
    log_dir: str = "logs",
    level: int = logging.INFO,
    console: bool = False,
) -> tuple[logging.Logger, str]:
    """Attach a rotating file handler (and optionally stderr) to the package logger."""
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, "healingvoice.log")

    logger.setLevel(level)
    fmt = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    if not any(isinstance(h, RotatingFileHandler) for h in logger.handlers):
        handler = RotatingFileHandler(log_path, maxBytes=2_000_000, backupCount=3)
        handler.setFormatter(fmt)
        logger.addHandler(handler)

    if console and not any(type(h) is logging.StreamHandler for h in logger.handlers):
        stream = logging.StreamHandler()
        stream.setFormatter(fmt)
        logger.addHandler(stream)

    return logger, log_path


def format_fields(**fields: Any) -> str:
    return " ".join(f"{key}={value}" for key, value in fields.items() if value is not None)


def log_event(event: str, level: int = logging.INFO, log: Optional[logging.Logger] = None, **fields: Any) -> None:
    """Log a lifecycle event as ``event=<name> key=value ...``."""
    target = log or logger
    extra = format_fields(**fields)
    target.log(level, "event=%s%s", event, f" {extra}" if extra else "")

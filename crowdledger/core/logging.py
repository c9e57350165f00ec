"""JSON logging setup shared by the API process and the scheduler."""
from __future__ import annotations

import logging
from typing import Optional

from pythonjsonlogger import jsonlogger

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

# Libraries that are chatty at INFO; they log at WARNING unless the app runs at DEBUG.
NOISY_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "apscheduler.executors.default")


def setup_logging(level: str = "INFO") -> None:
    """Send every record to stderr as one JSON object per line."""

    level = level.upper()
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
    root_logger.setLevel(level)

    handler = logging.StreamHandler()
    handler.setFormatter(
        jsonlogger.JsonFormatter(LOG_FORMAT, rename_fields={"levelname": "level", "asctime": "ts"})
    )
    root_logger.addHandler(handler)

    quiet_level = logging.DEBUG if level == "DEBUG" else logging.WARNING
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(level.upper())
    return logger


__all__ = ["setup_logging", "get_logger"]

"""Logging helpers for crp-approver.

Review verdicts go to the ``approver.audit`` logger. They reach the main
handler like every other record and, when ``logging.audit_file`` is set, are
additionally written to a file of their own.
"""
from __future__ import annotations

import logging
from logging.config import dictConfig
from typing import Any, Dict, Optional

from .config import LoggingConfig

AUDIT_LOGGER = "approver.audit"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _handler(level: int, filename: Optional[str]) -> Dict[str, Any]:
    if filename:
        return {
            "class": "logging.handlers.WatchedFileHandler",
            "level": level,
            "formatter": "standard",
            "filename": filename,
            "encoding": "utf-8",
        }
    return {"class": "logging.StreamHandler", "level": level, "formatter": "standard"}


def configure_logging(config: LoggingConfig) -> None:
    """Configure global logging based on configuration values."""

    level = getattr(logging, config.level.upper(), logging.INFO)

    handlers = {"default": _handler(level, config.file)}
    loggers: Dict[str, Any] = {}
    if config.audit_file:
        handlers["audit"] = _handler(logging.INFO, config.audit_file)
        loggers[AUDIT_LOGGER] = {"handlers": ["audit"], "level": logging.INFO}

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {"standard": {"format": LOG_FORMAT}},
            "handlers": handlers,
            "loggers": loggers,
            "root": {"handlers": ["default"], "level": level},
        }
    )

    logging.getLogger("uvicorn.access").disabled = not config.access_log


def audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER)


__all__ = ["AUDIT_LOGGER", "configure_logging", "audit_logger"]

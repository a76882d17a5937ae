"""Warden logging utilities.

This module centralises logging configuration so every subsystem emits JSON
logs to disk while still supporting colourful Rich output on the console.
Permission decisions are frequently audited after the fact, so the JSON
payload carries the principal, group and node a record refers to whenever the
caller passes them through ``extra=``.
"""

from __future__ import annotations

import json
import logging
import logging.config
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

CONTEXT_KEYS = ("principal_id", "group", "node")


class JsonFormatter(logging.Formatter):
    """Format log records as JSON documents."""

    default_time_format = "%Y-%m-%dT%H:%M:%S"

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                self.default_time_format
            ),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        for key in CONTEXT_KEYS:
            if key in record.__dict__:
                payload[key] = record.__dict__[key]
        return json.dumps(payload, ensure_ascii=False, default=str)


def _build_handlers(log_dir: Path, enable_rich: bool) -> Dict[str, Dict[str, Any]]:
    handlers: Dict[str, Dict[str, Any]] = {
        "file": {
            "class": "logging.handlers.RotatingFileHandler",
            "formatter": "json",
            "filename": str(log_dir / "warden.log"),
            "maxBytes": 5 * 1024 * 1024,
            "backupCount": 5,
        }
    }
    if enable_rich:
        handlers["console"] = {
            "class": "rich.logging.RichHandler",
            "formatter": "rich",
            "level": "DEBUG",
            "rich_tracebacks": True,
            "show_path": False,
        }
    else:
        handlers["console"] = {
            "class": "logging.StreamHandler",
            "formatter": "json",
        }
    return handlers


def configure_logging(*, level: str = "INFO", log_dir: Optional[Path] = None) -> None:
    """Configure global logging for the engine and its tooling.

    Parameters
    ----------
    level:
        Minimum severity that should be emitted. Accepts standard logging level
        names.
    log_dir:
        Directory where persistent logs are written. When omitted the function
        falls back to ``$WARDEN_LOG_DIR`` or ``.warden/logs`` within the user's
        home directory.

    The function is idempotent; each call replaces the previous handlers.
    """

    log_dir = log_dir or Path(os.environ.get("WARDEN_LOG_DIR", Path.home() / ".warden" / "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)

    enable_rich = os.environ.get("WARDEN_RICH", "1") != "0"
    handlers = _build_handlers(log_dir, enable_rich)

    config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": "warden.utils.logging.JsonFormatter",
            },
            "rich": {
                "format": "%(message)s",
                "datefmt": "%H:%M:%S",
            },
        },
        "handlers": handlers,
        "root": {
            "level": level,
            "handlers": list(handlers.keys()),
        },
    }

    logging.config.dictConfig(config)


def get_logger(name: str) -> logging.Logger:
    """Return a logger for ``name``.

    Every module goes through this helper so the configuration applied by
    :func:`configure_logging` is shared.
    """

    return logging.getLogger(name)


__all__ = ["configure_logging", "get_logger", "JsonFormatter"]

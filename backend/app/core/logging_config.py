"""
Structured logging configuration.

Provides:
    • JSON-formatted logs for production (one object per line)
    • Pretty console logs for development
    • Request context (request_id, client_ip, endpoint, subject_id) stamped
      onto every record by ``RequestContextFilter``
    • Relay fields (alert_id, zone_id, queue_depth, ...) taken from ``extra``

Usage:
    from backend.app.core.logging_config import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("Alert queued", extra={"alert_id": "ALR-1", "queue_depth": 3})
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from backend.app.core.config import settings

_request_context: ContextVar[Dict[str, Any]] = ContextVar(
    "request_context", default={}
)

# Record attributes emitted as top-level JSON keys when set
RECORD_FIELDS = (
    "request_id", "client_ip", "method", "endpoint",
    "subject_id", "zone_id", "alert_id", "transition",
    "queue_depth", "duration_ms", "status_code",
)

# Shown inline by the console formatter, in this order
_PRETTY_FIELDS = (("alert_id", "alert"), ("zone_id", "zone"), ("queue_depth", "queue"))

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "sqlalchemy.engine", "aiosqlite")


def set_request_context(**kwargs: Any) -> None:
    """Replace the request-scoped context; no arguments clears it."""
    _request_context.set(kwargs)


def get_request_context() -> Dict[str, Any]:
    return _request_context.get()


class RequestContextFilter(logging.Filter):
    """
    Copy the current request context onto each record.

    Values passed explicitly through ``extra`` win over the context, so a
    background send for another subject keeps its own ``subject_id``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_request_context().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for key in RECORD_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        if record.exc_info and record.exc_info[1]:
            exc = record.exc_info[1]
            entry["exception"] = {"type": type(exc).__name__, "message": str(exc)}

        return json.dumps(entry, default=str)


class PrettyFormatter(logging.Formatter):
    """Coloured single-line output for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.RESET)
        parts = [f"{color}{self.formatTime(record, '%H:%M:%S')} {record.levelname:8s}{self.RESET}"]

        request_id = getattr(record, "request_id", None)
        if request_id:
            parts.append(f"[{str(request_id)[:8]}]")
        subject_id = getattr(record, "subject_id", None)
        if subject_id:
            parts.append(f"<{subject_id}>")

        parts.append(f"{record.name}: {record.getMessage()}")

        tags = [
            f"{label}={getattr(record, key)}"
            for key, label in _PRETTY_FIELDS
            if getattr(record, key, None) is not None
        ]
        if tags:
            parts.append("(" + " ".join(tags) + ")")

        line = " ".join(parts)
        if record.exc_info and record.exc_info[1]:
            line += f"\n  {type(record.exc_info[1]).__name__}: {record.exc_info[1]}"
        return line


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """
    Configure the root logger.

    Defaults come from settings: ``LOG_LEVEL``, and JSON output in
    production only. Safe to call more than once.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or settings.LOG_LEVEL).upper(), logging.INFO))
    root.handlers.clear()

    use_json = settings.is_production if json_output is None else json_output
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter() if use_json else PrettyFormatter())
    handler.addFilter(RequestContextFilter())
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

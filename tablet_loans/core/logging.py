from __future__ import annotations

import logging
import json
import sys
import uuid
from datetime import datetime, timezone
from contextvars import ContextVar
from typing import Any, Optional

from tablet_loans.core.config import settings

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
current_admin_id_ctx: ContextVar[Optional[str]] = ContextVar("current_admin_id", default=None)

# Request-scoped values copied onto every log line when set
_CONTEXT_FIELDS = (
    ("request_id", request_id_ctx),
    ("admin_id", current_admin_id_ctx),
)

_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "passlib": logging.ERROR,
}


class JSONFormatter(logging.Formatter):
    """One JSON object per line.

    Ledger events pass their identifiers through ``extra=log_fields(...)``;
    those land as top-level keys next to the request context.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key, var in _CONTEXT_FIELDS:
            value = var.get()
            if value:
                log_entry[key] = value

        log_entry.update(getattr(record, "extra_data", {}))

        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str)


def log_fields(**fields: Any) -> dict[str, dict[str, Any]]:
    """Build the ``extra`` mapping for a structured log call, dropping None values."""
    return {"extra_data": {k: v for k, v in fields.items() if v is not None}}


def bind_request_id(request_id: Optional[str] = None) -> str:
    """Set the request id for the current context, generating one if needed."""
    request_id = request_id or uuid.uuid4().hex[:8]
    request_id_ctx.set(request_id)
    return request_id


def setup_logging() -> None:
    """Configure structured JSON logging for the application."""
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)

    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)

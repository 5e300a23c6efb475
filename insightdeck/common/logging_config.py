"""
JSON-lines logging for the API and ingestion workers.

Two context variables tie log lines together: the request id of the HTTP
call that caused the work, and the dataset a worker is ingesting. Both are
copied onto every formatted record, along with any ``extra_fields`` dict
passed through ``extra=``.
"""

import json
import logging
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

request_id_ctx: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
dataset_id_ctx: ContextVar[Optional[str]] = ContextVar("dataset_id", default=None)

# Libraries that are chatty at INFO
_QUIET_LOGGERS = ("multipart", "sqlalchemy.engine", "openpyxl")


class StructuredFormatter(logging.Formatter):
    """Formats each record as a single JSON object."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        for key, ctx in (("request_id", request_id_ctx), ("dataset_id", dataset_id_ctx)):
            value = ctx.get()
            if value:
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        entry.update(getattr(record, "extra_fields", None) or {})

        return json.dumps(entry, default=str)


class PerformanceTracker:
    """
    Times a block and logs the outcome.

        with PerformanceTracker("schema_inference", logger, file_type="csv"):
            ...

    Success is logged at ``log_level``; an exception is logged at WARNING
    and re-raised. ``duration_ms`` is available after the block exits.
    """

    def __init__(self, operation: str, logger: logging.Logger,
                 log_level: int = logging.INFO, **extra_fields):
        self.operation = operation
        self.logger = logger
        self.log_level = log_level
        self.extra_fields = extra_fields
        self.duration_ms: Optional[float] = None
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self._started) * 1000
        fields = dict(self.extra_fields, operation=self.operation,
                      duration_ms=round(self.duration_ms, 2))

        if exc_type is None:
            self.logger.log(self.log_level, f"{self.operation} finished",
                            extra={"extra_fields": fields})
        else:
            fields.update(error=str(exc_val), error_type=exc_type.__name__)
            self.logger.warning(f"{self.operation} failed", extra={"extra_fields": fields})
        return False


def setup_logging(log_level: str = "INFO", json_format: bool = True):
    """Replace the root handlers with a single stderr handler."""
    level = getattr(logging, log_level.upper())

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(
        StructuredFormatter() if json_format
        else logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(handler)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind ``request_id`` (or a fresh uuid4) to the current context."""
    request_id = request_id or str(uuid.uuid4())
    request_id_ctx.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    return request_id_ctx.get()


def clear_request_id():
    request_id_ctx.set(None)


def set_dataset_id(dataset_id: Optional[str]) -> None:
    dataset_id_ctx.set(dataset_id)

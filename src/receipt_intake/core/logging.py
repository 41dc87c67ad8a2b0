from __future__ import annotations

import contextvars
import json
import logging
import os
import sys
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

LOGGER_ROOT = "receipt_intake"

_ingest_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "ingest_id", default=None
)

_configured = False


def _compact(fields: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in fields.items() if value is not None}


def _utc_timestamp(created: float) -> str:
    ts = datetime.fromtimestamp(created, tz=timezone.utc).isoformat(timespec="milliseconds")
    return ts.replace("+00:00", "Z")


class JsonFormatter(logging.Formatter):
    """One JSON object per line: time, level, logger, event and the event's fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": _utc_timestamp(record.created),
            "level": record.levelname,
            "logger": record.name,
            "event": getattr(record, "event", None) or record.getMessage(),
        }
        fields = getattr(record, "fields", None)
        if isinstance(fields, dict):
            payload.update(_compact(fields))
        if record.exc_info:
            exc = record.exc_info[1]
            if exc is not None:
                payload["error_type"] = type(exc).__name__
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, ensure_ascii=True)


def configure_logging() -> None:
    global _configured  # noqa: PLW0603
    if _configured:
        return
    level = logging.getLevelName(os.getenv("LOG_LEVEL", "INFO").upper())
    if not isinstance(level, int):
        level = logging.INFO
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger(LOGGER_ROOT)
    root.setLevel(level)
    root.handlers = [handler]
    root.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)


def new_ingest_id() -> str:
    return uuid.uuid4().hex


def set_ingest_context(ingest_id: str | None) -> contextvars.Token:
    return _ingest_id_var.set(ingest_id)


def reset_ingest_context(token: contextvars.Token) -> None:
    _ingest_id_var.reset(token)


def get_ingest_id() -> str | None:
    return _ingest_id_var.get()


@contextmanager
def ingest_context(ingest_id: str | None = None) -> Iterator[str]:
    """Tag every event logged inside the block with one ingestion id."""
    ingest_id = ingest_id or new_ingest_id()
    token = set_ingest_context(ingest_id)
    try:
        yield ingest_id
    finally:
        reset_ingest_context(token)


def _event_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return _compact({"ingest_id": _ingest_id_var.get(), **fields})


def log_event(
    logger: logging.Logger, event: str, *, level: int = logging.INFO, **fields: Any
) -> None:
    logger.log(level, event, extra={"event": event, "fields": _event_fields(fields)})


def log_exception(logger: logging.Logger, event: str, **fields: Any) -> None:
    logger.exception(event, extra={"event": event, "fields": _event_fields(fields)})


def monotonic_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)

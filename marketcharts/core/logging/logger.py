"""Structured JSON logging for provider, failover and reconciliation events.

Every record carries a trace id plus the fields operators filter on:
``provider``, ``error_code``, ``index_name`` and ``operation``. Anything
else bound to the record lands under ``context``.
"""

from __future__ import annotations

import json
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import date
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from loguru import logger

from marketcharts.core.logging.config import LogConfig

if TYPE_CHECKING:
    from loguru import Logger, Record

_TRACE_ID: ContextVar[str | None] = ContextVar("marketcharts_trace_id", default=None)
_CONTEXT: ContextVar[dict[str, Any] | None] = ContextVar("marketcharts_log_context", default=None)

PROMOTED_FIELDS = ("provider", "error_code", "index_name", "operation")
_SERIALIZED = "serialized"


def _trace_id() -> str:
    trace_id = _TRACE_ID.get()
    if trace_id is None:
        trace_id = uuid4().hex
        _TRACE_ID.set(trace_id)
    return trace_id


def _patch_record(record: Record) -> None:
    extra = record["extra"]
    if not extra.get("trace_id"):
        extra["trace_id"] = _trace_id()
    for key, value in (_CONTEXT.get() or {}).items():
        extra.setdefault(key, value)


def _to_json(value: Any) -> Any:
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def _json_line(record: Record) -> str:
    """Loguru format callable: render the record as one JSON object."""
    extra = record["extra"]
    payload: dict[str, Any] = {
        "timestamp": record["time"].isoformat(),
        "level": record["level"].name,
        "message": record["message"],
        "trace_id": extra.get("trace_id"),
    }
    for key in PROMOTED_FIELDS:
        payload[key] = extra.get(key)
    context = {
        key: value
        for key, value in extra.items()
        if key not in PROMOTED_FIELDS and key not in ("trace_id", _SERIALIZED)
    }
    if context:
        payload["context"] = context
    if record["exception"] is not None:
        exc_type, exc_value, _ = record["exception"]
        payload["exception"] = f"{getattr(exc_type, '__name__', exc_type)}: {exc_value}"
    extra[_SERIALIZED] = json.dumps(payload, default=_to_json)
    return "{extra[" + _SERIALIZED + "]}\n"


def configure_logging(level: str = "INFO", **kwargs: Any) -> None:
    """Replace all loguru handlers according to a ``LogConfig``."""

    config = LogConfig(level=level, **kwargs)
    handlers: list[dict[str, Any]] = []
    if config.console_output:
        stream = config.console_stream or sys.stderr
        if config.serialize:
            handlers.append({"sink": stream, "level": config.level, "format": _json_line})
        else:
            handlers.append({"sink": stream, "level": config.level})
    if config.file_output and config.file_path:
        handlers.append(
            {
                "sink": config.file_path,
                "level": config.level,
                "format": _json_line,
                "rotation": config.rotation,
                "encoding": "utf-8",
            }
        )
    logger.configure(handlers=handlers, patcher=_patch_record, extra=config.extra)


def bind(**kwargs: Any) -> Logger:
    """Bind structured fields to the global logger."""

    return logger.bind(**kwargs)


@contextmanager
def log_context(*, trace_id: str | None = None, **extra: Any) -> Iterator[str]:
    """Attach a trace id and fields to every record logged inside the block."""

    context_token = _CONTEXT.set({**(_CONTEXT.get() or {}), **extra})
    active_trace = trace_id or uuid4().hex
    trace_token = _TRACE_ID.set(active_trace)
    try:
        yield active_trace
    finally:
        _TRACE_ID.reset(trace_token)
        _CONTEXT.reset(context_token)


__all__ = ["PROMOTED_FIELDS", "bind", "configure_logging", "log_context", "logger"]

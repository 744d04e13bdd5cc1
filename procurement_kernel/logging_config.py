"""
Structured logging for the procurement kernel.

Every record under the ``procurement_kernel`` logger renders as one JSON
line made of:

* the envelope: ``ts``, ``level``, ``logger``, ``message`` (a snake_case
  event name such as ``request_submitted``);
* the workflow fields bound on ``LogContext`` for the running operation
  (``correlation_id``, ``actor_id``, ``request_id``, ``request_number``);
* the ``extra`` fields of the call, which win over bound fields;
* for records logged with ``exc_info``, an ``error`` object.  Kernel
  errors contribute their ``code``, ``retryable`` flag and public
  attributes (``request_id``, ``prefix``, ``role`` ...).

Workflow operations bind their fields with ``LogContext.bind``; anything
set inside a bind block is discarded when the block exits, so a number
learnt half-way through an operation never leaks into the next one.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping
from uuid import UUID

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "request_id",
    "request_number",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})
_bound_fields: ContextVar[Mapping[str, str]] = ContextVar(
    "procurement_log_fields", default=_EMPTY
)


def _checked(fields: dict[str, Any]) -> dict[str, str]:
    unknown = set(fields) - set(CONTEXT_FIELDS)
    if unknown:
        raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
    return {k: str(v) for k, v in fields.items() if v is not None}


class LogContext:
    """Workflow fields attached to every record logged in the current context.

    Backed by a single ContextVar holding an immutable mapping, so each
    thread and each asyncio task sees its own fields.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Merge non-None ``fields`` into the current context."""
        merged = {**_bound_fields.get(), **_checked(fields)}
        _bound_fields.set(MappingProxyType(merged))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_bound_fields.get())

    @staticmethod
    def clear() -> None:
        _bound_fields.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Bind ``fields`` for the duration of the block.

        On exit the context is restored exactly as it was on entry.
        """
        merged = {**_bound_fields.get(), **_checked(fields)}
        token = _bound_fields.set(MappingProxyType(merged))
        try:
            yield
        finally:
            _bound_fields.reset(token)


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    return str(obj)


def _error_object(exc: BaseException) -> dict[str, Any]:
    error: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    code = getattr(exc, "code", None)
    if code is not None:
        error["code"] = code
        error["retryable"] = bool(getattr(exc, "retryable", False))
        for key, value in vars(exc).items():
            if not key.startswith("_") and key not in error:
                error[key] = value
    return error


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())
        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload["error"] = _error_object(record.exc_info[1])
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "procurement_kernel"
_configured = False
_lock = threading.Lock()


def get_logger(name: str) -> logging.Logger:
    """Logger ``procurement_kernel.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``procurement_kernel`` logger once.

    Later calls are no-ops until ``reset_logging()``.  ``level`` accepts a
    level number or name (``"DEBUG"``).
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False
    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root.addHandler(h)


def reset_logging() -> None:
    """Drop the handlers and allow ``configure_logging`` again.  Tests only."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)

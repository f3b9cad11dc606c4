"""
Structured logging for bulk write runs.

Every record is emitted as one JSON line: a fixed envelope (``ts``,
``level``, ``logger``, ``message``), then the run-scoped fields bound in
``LogContext``, then the ``extra`` dict of the call.  Exceptions logged
with ``exc_info`` contribute their type, message, ``code`` and public
attributes, so a ``ChunkLimitExceededError`` shows up with ``exc_size``
and ``exc_limit`` next to the chunk that tripped it.

Loggers live under the ``bulkwrite`` namespace; ``get_logger("batch.x")``
returns ``bulkwrite.batch.x``.  Nothing is emitted until
``configure_logging()`` installs a handler.
"""

__all__ = [
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
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any, Iterator, TextIO
from uuid import UUID

ROOT_LOGGER_NAME = "bulkwrite"


# ---------------------------------------------------------------------------
# Run-scoped fields
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"bulkwrite_{name}", default=None)
    for name in ("correlation_id", "run_id", "job_id", "entity_type", "actor_id")
}


class LogContext:
    """
    Fields attached to every record logged in the current run.

    Backed by contextvars, so a retry job running on the scheduler thread
    never sees the caller's run id.  ``None`` values are ignored by both
    ``set()`` and ``bind()``.
    """

    FIELDS = tuple(_CONTEXT_FIELDS)

    @classmethod
    def set(cls, **fields: str | None) -> None:
        for name, value in _known(fields).items():
            if value is not None:
                _CONTEXT_FIELDS[name].set(value)

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: var.get()
            for name, var in _CONTEXT_FIELDS.items()
            if var.get() is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _CONTEXT_FIELDS.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None) -> Iterator[type["LogContext"]]:
        """Set ``fields`` for the duration of the block, then restore them."""
        tokens: list[tuple[ContextVar[str | None], Token]] = [
            (_CONTEXT_FIELDS[name], _CONTEXT_FIELDS[name].set(value))
            for name, value in _known(fields).items()
            if value is not None
        ]
        try:
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


def _known(fields: dict[str, Any]) -> dict[str, Any]:
    unknown = sorted(set(fields) - set(_CONTEXT_FIELDS))
    if unknown:
        raise TypeError(f"Unknown log context field(s): {unknown}")
    return fields


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _to_json(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name.startswith("_") or name in ("args", "code", "partial_result"):
            continue
        fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Renders a LogRecord as a single JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_to_json)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


_setup_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: TextIO | None = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Install one JSON handler on the ``bulkwrite`` logger.

    Later calls are no-ops until ``reset_logging()``; the first caller's
    level and destination win.
    """
    global _installed_handler
    with _setup_lock:
        if _installed_handler is not None:
            return
        _installed_handler = handler or logging.StreamHandler(stream or sys.stderr)
        _installed_handler.setFormatter(StructuredFormatter())

        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(_installed_handler)


def reset_logging() -> None:
    """Remove the installed handler and restore stdlib defaults (tests)."""
    global _installed_handler
    with _setup_lock:
        _installed_handler = None
        root = logging.getLogger(ROOT_LOGGER_NAME)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
        root.propagate = True

"""
Structured JSON logging for member program finance.

Every record is one JSON line carrying the request-scoped fields bound in
``LogContext``: the program, item or import job being worked on, the actor,
and the ``operation`` (``create_item``, ``progress_import``...) the record
belongs to.  ``timed_operation`` wraps a service call so that each call ends
in exactly one ``operation_completed`` or ``operation_failed`` record with
its duration and, on failure, the error code.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
    "timed_operation",
]

import json
import logging
import sys
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

# ---------------------------------------------------------------------------
# Context propagation
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"log_{name}", default=None)
    for name in (
        "correlation_id",
        "actor_id",
        "operation",
        "program_id",
        "item_id",
        "import_job_id",
    )
}


def _context_var(name: str) -> ContextVar[str | None]:
    try:
        return _CONTEXT_FIELDS[name]
    except KeyError:
        raise ValueError(f"unknown log context field: {name!r}") from None


class LogContext:
    """
    Request-scoped log fields, safe across threads and async tasks.

    Values are stored as strings so UUID ids can be bound directly.
    """

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set context fields. ``None`` values are skipped."""
        for name, val in fields.items():
            var = _context_var(name)
            if val is not None:
                var.set(str(val))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        """Return all non-None context fields as a dict."""
        ctx: dict[str, str] = {}
        for name, var in _CONTEXT_FIELDS.items():
            val = var.get()
            if val is not None:
                ctx[name] = val
        return ctx

    @classmethod
    def clear(cls) -> None:
        """Reset all context fields to None."""
        for var in _CONTEXT_FIELDS.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_LogContextManager":
        """Context manager that sets fields on entry and restores on exit."""
        return _LogContextManager(fields)


class _LogContextManager:
    """Context manager for LogContext.bind()."""

    def __init__(self, fields: dict[str, Any]):
        for name in fields:
            _context_var(name)
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, val in self._fields.items():
            if val is not None:
                var = _CONTEXT_FIELDS[name]
                self._tokens.append((var, var.set(str(val))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


@contextmanager
def timed_operation(
    logger: logging.Logger, operation: str, **fields: Any
) -> Iterator[dict[str, Any]]:
    """
    Bind ``operation`` and ``fields`` for the block and log how it ended.

    The yielded dict is merged into the closing record so the block can
    attach its results.  Exceptions are logged as ``operation_failed`` with
    the error type and code, then re-raised unchanged.
    """
    summary: dict[str, Any] = {}
    start = time.monotonic()
    with LogContext.bind(operation=operation, **fields):
        try:
            yield summary
        except Exception as exc:
            logger.warning(
                "operation_failed",
                extra={
                    **summary,
                    "duration_ms": round((time.monotonic() - start) * 1000, 2),
                    "error_type": type(exc).__name__,
                    "error_code": getattr(exc, "code", None),
                },
            )
            raise
        logger.info(
            "operation_completed",
            extra={
                **summary,
                "duration_ms": round((time.monotonic() - start) * 1000, 2),
            },
        )


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


class _JSONEncoder(json.JSONEncoder):
    """Handle UUID, datetime, date, Decimal in log payloads."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, UUID):
            return str(obj)
        if isinstance(obj, (datetime, date)):
            return obj.isoformat()
        if isinstance(obj, Decimal):
            return str(obj)
        return super().default(obj)


class StructuredFormatter(logging.Formatter):
    """Formats each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        payload.update(LogContext.get_all())

        # Merge structured extra data (skip stdlib internal keys)
        for key, val in vars(record).items():
            if key not in _STDLIB_KEYS and key not in payload:
                payload[key] = val

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
            # Structured fields from ProgramFinanceError subclasses
            for k, v in vars(exc).items():
                if not k.startswith("_") and k not in ("args", "code"):
                    payload[f"exc_{k}"] = v
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder, default=str)


# ---------------------------------------------------------------------------
# Logger factory
# ---------------------------------------------------------------------------

_LOGGER_PREFIX = "program_kernel"


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the program_kernel namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


# ---------------------------------------------------------------------------
# Initialization
# ---------------------------------------------------------------------------

_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Configure the program_kernel logger hierarchy (idempotent)."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root_logger = logging.getLogger(_LOGGER_PREFIX)
    root_logger.setLevel(level)
    root_logger.propagate = False

    h = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    h.setFormatter(StructuredFormatter())
    root_logger.addHandler(h)


def reset_logging() -> None:
    """Reset logging configuration. FOR TESTING ONLY."""
    global _configured
    with _lock:
        _configured = False
    logger = logging.getLogger(_LOGGER_PREFIX)
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)

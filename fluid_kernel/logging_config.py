"""
Module: fluid_kernel.logging_config
Responsibility: Structured JSON logging for every ledger layer.  One JSON
    object per line, carrying the operation context (correlation id, actor,
    part, location, operation) of the stock operation that emitted it.
Architecture position: Kernel.  Imports only domain value objects and the
    standard library; every other module obtains loggers through
    ``get_logger``.

Invariants enforced:
    - Context fields come from ``LogContext`` and are never overwritten by a
      record's ``extra``.
    - Locations are logged by their storage key, balances as their two
      components, Decimals as strings (no float rounding in logs).
    - ``configure_logging`` installs at most one handler per process until
      ``reset_logging`` is called.

Audit relevance:
    Every line emitted while a stock operation runs shares that operation's
    correlation id, so one grep reconstructs who moved what, where.
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
from contextvars import ContextVar
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from fluid_kernel.domain.location import Location
from fluid_kernel.domain.quantity import StockBalance

CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "part_id",
    "location",
    "operation",
)

_VARS: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"fluid_log_{name}", default=None) for name in CONTEXT_FIELDS
}


def _context_value(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, Location):
        return value.key
    return str(value)


class LogContext:
    """Per-thread / per-task operation context attached to every log line."""

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set known context fields; None values and unknown names are skipped."""
        for name, value in fields.items():
            var = _VARS.get(name)
            if var is not None and value is not None:
                var.set(_context_value(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: var.get() for name, var in _VARS.items() if var.get() is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _VARS.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_BoundContext":
        """Set fields for the duration of a ``with`` block, then restore them."""
        return _BoundContext(fields)

    @classmethod
    def operation(
        cls,
        name: str,
        *,
        actor_id: str | None = None,
        part_id: UUID | str | None = None,
        location: Location | None = None,
    ) -> "_BoundContext":
        """Bind a fresh correlation id plus the fields of one stock operation."""
        return _BoundContext(
            {
                "correlation_id": uuid4(),
                "actor_id": actor_id,
                "part_id": part_id,
                "location": location,
                "operation": name,
            }
        )


class _BoundContext:
    def __init__(self, fields: dict[str, Any]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar, Any]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            var = _VARS.get(name)
            if var is not None and value is not None:
                self._tokens.append((var, var.set(_context_value(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# Attributes every LogRecord carries; anything else on a record came from ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _jsonable(value: Any) -> Any:
    if isinstance(value, Location):
        return value.key
    if isinstance(value, StockBalance):
        return {
            "container_quantity": value.container_quantity,
            "bulk_quantity": str(value.bulk_quantity),
        }
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    # Decimal, UUID and anything else: exact text form
    return str(value)


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: envelope, context, extras, then exception."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRS and key not in payload:
                payload[key] = value

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(self._exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_jsonable)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        # FluidLedgerError subclasses keep their structured detail as attributes
        for name, value in vars(exc).items():
            if not name.startswith("_") and name not in ("args", "code"):
                fields[f"exc_{name}"] = value
        return fields


LOGGER_ROOT = "fluid_kernel"


def get_logger(name: str) -> logging.Logger:
    """Logger ``fluid_kernel.<name>``."""
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Route the ``fluid_kernel`` hierarchy to one JSON handler.

    Only the first call per process has an effect; ``level`` accepts a
    logging constant or a name such as ``"DEBUG"`` from configuration.
    """
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(LOGGER_ROOT)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False
    target = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
    target.setFormatter(StructuredFormatter())
    root.addHandler(target)


def reset_logging() -> None:
    """Drop handlers and allow ``configure_logging`` again (tests only)."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(LOGGER_ROOT)
    root.handlers.clear()
    root.setLevel(logging.WARNING)

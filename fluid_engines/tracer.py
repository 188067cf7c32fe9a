"""
fluid_engines.tracer -- FLUID_ENGINE_TRACE records for pure engine calls.

Responsibility:
    ``@traced_engine`` wraps a pure engine function and, after it returns,
    emits one debug record naming the engine and version, a fingerprint of
    the inputs that determine the result, a short summary of the result,
    and the call duration.

Architecture position:
    Engines -- support for the pure calculation layer.  Emits a log record
    and nothing else; engines stay free of I/O and storage access.

Invariants enforced:
    - The same inputs always produce the same fingerprint: Locations render
      as their storage key, balances as ``containers+bulk``, mappings with
      sorted keys, and the SHA-256 digest is cut to 16 hex chars.
    - A failing engine call emits no trace; the exception propagates.
"""

from __future__ import annotations

import functools
import hashlib
import inspect
import time
from collections.abc import Callable, Mapping
from typing import Any

from fluid_kernel.domain.location import Location
from fluid_kernel.domain.quantity import StockBalance
from fluid_kernel.logging_config import get_logger

logger = get_logger("engines.tracer")

TRACE_MESSAGE = "FLUID_ENGINE_TRACE"


def _canonical(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Location):
        return value.key
    if isinstance(value, StockBalance):
        return f"{value.container_quantity}+{value.bulk_quantity}"
    if isinstance(value, Mapping):
        items = sorted(value.items(), key=lambda item: str(item[0]))
        return "{" + ",".join(f"{k}:{_canonical(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonical(v) for v in value) + "]"
    return str(value)


def input_fingerprint(fields: tuple[str, ...], arguments: Mapping[str, Any]) -> str:
    """16-char SHA-256 prefix over ``fields`` of the bound call arguments."""
    canonical = "|".join(f"{name}={_canonical(arguments.get(name))}" for name in fields)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
    summarize: Callable[[Any], Mapping[str, Any]] | None = None,
) -> Callable:
    """
    Trace every successful call of the decorated engine.

    ``fingerprint_fields`` may name positional or keyword parameters.
    ``summarize`` maps the engine result to extra trace fields, such as a
    row count or a consistency flag.
    """

    def decorator(func: Callable) -> Callable:
        signature = inspect.signature(func)

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fingerprint = ""
            if fingerprint_fields:
                bound = signature.bind_partial(*args, **kwargs)
                fingerprint = input_fingerprint(fingerprint_fields, bound.arguments)

            started = time.monotonic()
            result = func(*args, **kwargs)
            extra: dict[str, Any] = {
                "trace_type": TRACE_MESSAGE,
                "engine_name": engine_name,
                "engine_version": engine_version,
                "input_fingerprint": fingerprint,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            }
            if summarize is not None:
                extra.update(summarize(result))
            logger.debug(TRACE_MESSAGE, extra=extra)
            return result

        return wrapper

    return decorator

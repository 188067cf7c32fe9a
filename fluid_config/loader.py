"""
Configuration Loader (``fluid_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``fluid_config.schema`` dataclasses.  The single public entry point for
runtime config is ``fluid_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; ``config_id`` and ``version`` have no defaults.
* Decimal settings are parsed from their string form, never via float.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the raw
  document for change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from fluid_config.schema import (
    DatabaseSettings,
    LedgerConfig,
    LedgerSettings,
    LoggingSettings,
)

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(value: Any, field: str) -> Decimal:
    """Parse a Decimal setting from a YAML string or int."""
    if isinstance(value, bool) or value is None:
        raise ValueError(f"{field}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{field}: cannot parse {value!r} as a number") from None


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=str(data.get("url", defaults.url)),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
    )


def parse_ledger(data: dict[str, Any]) -> LedgerSettings:
    """
    Parse the ``ledger`` section.

    Raises:
        ValueError: if the variance threshold or epsilon is not positive.
    """
    defaults = LedgerSettings()
    threshold = parse_decimal(
        data.get("variance_threshold", defaults.variance_threshold),
        "ledger.variance_threshold",
    )
    epsilon = parse_decimal(
        data.get("quantity_epsilon", defaults.quantity_epsilon),
        "ledger.quantity_epsilon",
    )
    if threshold <= 0:
        raise ValueError("ledger.variance_threshold must be positive")
    if epsilon <= 0:
        raise ValueError("ledger.quantity_epsilon must be positive")
    return LedgerSettings(
        variance_threshold=threshold,
        quantity_epsilon=epsilon,
        auto_break_containers=bool(
            data.get("auto_break_containers", defaults.auto_break_containers)
        ),
        allow_negative_van_balance=bool(
            data.get("allow_negative_van_balance", defaults.allow_negative_van_balance)
        ),
    )


def parse_logging(data: dict[str, Any]) -> LoggingSettings:
    level = str(data.get("level", LoggingSettings().level)).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level: unknown level {level!r}")
    return LoggingSettings(level=level)


def parse_config(data: dict[str, Any]) -> LedgerConfig:
    """
    Parse a whole configuration document.

    Raises:
        KeyError: if ``config_id`` or ``version`` is missing.
        ValueError: if a section holds an invalid value.
    """
    return LedgerConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        database=parse_database(data.get("database") or {}),
        ledger=parse_ledger(data.get("ledger") or {}),
        logging=parse_logging(data.get("logging") or {}),
        checksum=compute_checksum(data),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()

"""
fluid_config -- single public entrypoint for ledger configuration.

Responsibility:
    Provides the ONLY way to obtain configuration at runtime through
    ``get_active_config()``.  No other component reads configuration files
    or environment variables directly.

Architecture position:
    Configuration -- sits beside ``fluid_kernel`` and below
    ``fluid_services``.  The kernel MUST NEVER import from ``fluid_config``;
    the service layer translates settings into constructor arguments.

Invariants enforced:
    - Single entrypoint: all runtime config flows through ``get_active_config()``.
    - Environment overrides are applied here and nowhere else:
      ``FLUID_LEDGER_CONFIG`` selects the YAML file, ``DATABASE_URL``
      replaces ``database.url``.

Failure modes:
    - ``FileNotFoundError`` -- the selected configuration file is missing.
    - ``KeyError`` / ``ValueError`` -- schema validation failures.

Audit relevance:
    Every successful ``get_active_config()`` call emits a
    ``FLUID_CONFIG_TRACE`` log entry with the config id, version and
    checksum (the database URL is never logged).
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path

from fluid_config.loader import load_yaml_file, parse_config
from fluid_config.schema import (
    DatabaseSettings,
    LedgerConfig,
    LedgerSettings,
    LoggingSettings,
)

_logger = logging.getLogger("fluid_kernel.config")

# Default configuration file
_DEFAULT_CONFIG_FILE = Path(__file__).parent / "sets" / "default.yaml"

CONFIG_PATH_ENV = "FLUID_LEDGER_CONFIG"
DATABASE_URL_ENV = "DATABASE_URL"


def get_active_config(
    config_path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> LedgerConfig:
    """The ONLY public configuration entrypoint.

    Args:
        config_path: Explicit YAML file.  Defaults to ``$FLUID_LEDGER_CONFIG``
            and then to ``fluid_config/sets/default.yaml``.
        environ: Environment mapping to read overrides from.  Defaults to
            ``os.environ``.

    Returns:
        A frozen ``LedgerConfig``.
    """
    env = os.environ if environ is None else environ
    path = Path(config_path or env.get(CONFIG_PATH_ENV) or _DEFAULT_CONFIG_FILE)

    config = parse_config(load_yaml_file(path))

    database_url = env.get(DATABASE_URL_ENV)
    if database_url:
        config = replace(config, database=replace(config.database, url=database_url))

    _logger.info(
        "FLUID_CONFIG_TRACE",
        extra={
            "trace_type": "FLUID_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "config_path": str(path),
            "database_url_overridden": bool(database_url),
        },
    )
    return config


__all__ = [
    "DatabaseSettings",
    "LedgerConfig",
    "LedgerSettings",
    "LoggingSettings",
    "get_active_config",
]

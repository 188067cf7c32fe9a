"""
Ledger configuration schema.

Frozen dataclasses the YAML fragments are parsed into by the loader.  The
service layer only ever sees a ``LedgerConfig`` obtained from
``fluid_config.get_active_config()``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseSettings:
    """Where the ledger lives."""

    url: str = "sqlite:///:memory:"
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10


@dataclass(frozen=True)
class LedgerSettings:
    """Business rules of the stock operators."""

    variance_threshold: Decimal = Decimal("0.10")
    quantity_epsilon: Decimal = Decimal("0.000001")
    auto_break_containers: bool = True
    allow_negative_van_balance: bool = True


@dataclass(frozen=True)
class LoggingSettings:
    level: str = "INFO"


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerConfig:
    """Complete runtime configuration for one ledger instance."""

    config_id: str
    version: int
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    checksum: str = ""

"""
Module: fluid_engines
Responsibility:
    Package entrypoint that re-exports the pure calculation engines used by
    the ledger service: cost averaging, balance reconstruction and
    reconciliation.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import fluid_kernel.domain and sibling engine modules.
    MUST NOT import fluid_services.

Invariants enforced:
    - Purity: engines never read the clock or touch storage.
    - Decimal-only arithmetic.
    - Determinism: identical inputs always produce identical outputs.
"""

from fluid_engines.costing import (
    DEFAULT_VARIANCE_THRESHOLD,
    CostVarianceWarning,
    VarianceDirection,
    check_cost_variance,
    weighted_average_cost,
)
from fluid_engines.reconciliation import BalanceReconciliation, reconcile_balance
from fluid_engines.reconstruction import (
    ACTION_LABELS,
    LedgerRow,
    reconstruct,
    resolve_reference,
)
from fluid_engines.tracer import traced_engine

__all__ = [
    "ACTION_LABELS",
    "BalanceReconciliation",
    "CostVarianceWarning",
    "DEFAULT_VARIANCE_THRESHOLD",
    "LedgerRow",
    "VarianceDirection",
    "check_cost_variance",
    "reconcile_balance",
    "reconstruct",
    "resolve_reference",
    "traced_engine",
    "weighted_average_cost",
]

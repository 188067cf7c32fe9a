"""
fluid_engines.reconciliation -- Ledger vs. cached balance check.

Responsibility:
    Sum a location's ledger deltas and compare the result with the cached
    Location Aggregate.  A difference means an aggregate was mutated outside
    the stock operators, or a movement was lost.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by LiquidLedgerService.verify_balance.

Invariants enforced:
    - The ledger side always sums deltas; snapshots are not consulted, so
      the check is independent of what writers believed at write time.
    - Comparison uses the quantity epsilon; nothing is rounded.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from fluid_engines.tracer import traced_engine
from fluid_kernel.domain.location import Location
from fluid_kernel.domain.movement import MovementRecord
from fluid_kernel.domain.quantity import (
    QUANTITY_EPSILON,
    ZERO,
    StockBalance,
    quantities_equal,
)


@dataclass(frozen=True)
class BalanceReconciliation:
    """Outcome of comparing the ledger with the cached aggregate."""

    part_id: UUID
    location: Location
    ledger_balance: StockBalance
    cached_balance: StockBalance
    ledger_total: Decimal
    cached_total: Decimal
    entry_count: int
    is_consistent: bool

    @property
    def difference(self) -> Decimal:
        """Cached minus ledger, in base units."""
        return self.cached_total - self.ledger_total


@traced_engine(
    "reconciliation",
    "1.0",
    fingerprint_fields=("part_id", "location", "cached"),
    summarize=lambda result: {
        "entry_count": result.entry_count,
        "is_consistent": result.is_consistent,
    },
)
def reconcile_balance(
    movements: Iterable[MovementRecord],
    *,
    part_id: UUID,
    location: Location,
    cached: StockBalance,
    container_size: Decimal | None,
    epsilon: Decimal = QUANTITY_EPSILON,
) -> BalanceReconciliation:
    """
    Compare the sum of ``movements`` at ``location`` with ``cached``.

    Entries for other locations are ignored, so a part-wide sequence may be
    passed.  Consistency requires the container counts to match exactly and
    the loose bulk to match within ``epsilon``.
    """
    containers = 0
    bulk = ZERO
    count = 0
    for entry in movements:
        if entry.location != location:
            continue
        containers += entry.container_qty_change
        bulk += entry.bulk_qty_change
        count += 1

    ledger_balance = StockBalance(containers, bulk)
    ledger_total = ledger_balance.total_base_units(container_size)
    cached_total = cached.total_base_units(container_size)

    return BalanceReconciliation(
        part_id=part_id,
        location=location,
        ledger_balance=ledger_balance,
        cached_balance=cached,
        ledger_total=ledger_total,
        cached_total=cached_total,
        entry_count=count,
        is_consistent=(
            ledger_balance.container_quantity == cached.container_quantity
            and quantities_equal(ledger_balance.bulk_quantity, cached.bulk_quantity, epsilon)
        ),
    )

"""
fluid_engines.reconstruction -- Running balances over the movement ledger.

Responsibility:
    Rebuild a per-entry running balance for audit display from an ascending
    sequence of ledger entries.  Each output row also carries the entry's
    signed change in base units, a positive/negative classification, a
    human-readable action label and a resolved reference.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by LiquidLedgerService.get_ledger.

Invariants enforced:
    - Determinism: the same entry sequence always yields the same rows
      (no clock, no state carried between calls).
    - Snapshot preference: in a location-scoped view, an entry carrying that
      location's ``*_bulk_qty_after`` snapshot is authoritative for the
      post-entry balance (a missing ``*_container_qty_after`` counts as 0).
      Without one, the balance is the previous balance plus the entry's
      change.  A part-wide view (no location) is always cumulative.
    - Classification: ``purchase``, ``return_to_store``, ``initial_stock``
      (and ``break_container`` in a Store view) are positive by default;
      a non-zero computed change overrides the default.

Failure modes:
    - None for well-formed records.  Unknown movement types are labelled
      with their raw value and classified by their change alone.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fluid_engines.tracer import traced_engine
from fluid_kernel.domain.location import Location
from fluid_kernel.domain.movement import MovementRecord, MovementType
from fluid_kernel.domain.quantity import ZERO, to_base_units
from fluid_kernel.logging_config import get_logger

logger = get_logger("engines.reconstruction")

POSITIVE_TYPES = frozenset({
    MovementType.PURCHASE,
    MovementType.RETURN_TO_STORE,
    MovementType.INITIAL_STOCK,
})

ACTION_LABELS: dict[MovementType, str] = {
    MovementType.PURCHASE: "Purchase",
    MovementType.BREAK_CONTAINER: "Open Container",
    MovementType.USE_INTERNAL: "Job Usage",
    MovementType.SELL_EXTERNAL: "Special Sale",
    MovementType.TRANSFER_TO_VAN: "Van Transfer",
    MovementType.RETURN_TO_STORE: "Return",
    MovementType.ADJUSTMENT: "Adjustment",
    MovementType.INITIAL_STOCK: "Initial Stock",
}

# Wording as seen from the van's side of a transfer
VAN_ACTION_LABELS: dict[MovementType, str] = {
    **ACTION_LABELS,
    MovementType.TRANSFER_TO_VAN: "Received from Warehouse",
    MovementType.RETURN_TO_STORE: "Returned to Store",
}

REFERENCE_ID_LENGTH = 8


@dataclass(frozen=True)
class LedgerRow:
    """One reconstructed ledger line."""

    movement_id: UUID
    movement_type: MovementType | str
    performed_at: datetime
    performed_by_name: str
    container_qty_change: int
    bulk_qty_change: Decimal
    change: Decimal
    balance_after: Decimal
    is_positive: bool
    label: str
    reference: str
    from_snapshot: bool
    job_id: str | None = None
    van_stock_id: UUID | None = None
    notes: str | None = None
    sequence: int | None = None

    @property
    def is_negative_balance(self) -> bool:
        return self.balance_after < ZERO


def resolve_reference(entry: MovementRecord) -> str:
    """``Job #<8>`` for job-linked entries, ``Van #<8>`` for van entries, else notes."""
    if entry.job_id:
        return "Job #" + str(entry.job_id)[:REFERENCE_ID_LENGTH]
    if entry.van_stock_id is not None:
        return "Van #" + str(entry.van_stock_id)[:REFERENCE_ID_LENGTH]
    return entry.notes or ""


def action_label(movement_type: MovementType | str, location: Location | None) -> str:
    parsed = MovementType.parse(movement_type)
    if parsed is None:
        return str(movement_type)
    labels = VAN_ACTION_LABELS if location is not None and location.is_van else ACTION_LABELS
    return labels[parsed]


def is_positive_entry(
    movement_type: MovementType | str,
    change: Decimal,
    location: Location | None,
) -> bool:
    if change > ZERO:
        return True
    if change < ZERO:
        return False
    parsed = MovementType.parse(movement_type)
    if parsed in POSITIVE_TYPES:
        return True
    return (
        parsed is MovementType.BREAK_CONTAINER
        and location is not None
        and location.is_store
    )


def _snapshot_balance(
    entry: MovementRecord,
    location: Location,
    container_size: Decimal | None,
) -> Decimal | None:
    if location.is_store:
        containers, bulk = entry.store_container_qty_after, entry.store_bulk_qty_after
    else:
        containers, bulk = entry.van_container_qty_after, entry.van_bulk_qty_after
    if bulk is None:
        return None
    return to_base_units(containers or 0, bulk, container_size)


@traced_engine(
    "reconstruction",
    "1.0",
    fingerprint_fields=("location", "container_size"),
    summarize=lambda rows: {"row_count": len(rows)},
)
def reconstruct(
    movements: Iterable[MovementRecord],
    *,
    container_size: Decimal | None,
    location: Location | None = None,
) -> tuple[LedgerRow, ...]:
    """
    Running balance rows for ``movements``.

    Preconditions:
        ``movements`` is in ascending ledger order (by ``sequence``)
        and holds only entries of one part (and, when ``location`` is given,
        only that location's entries).
    """
    rows: list[LedgerRow] = []
    balance = ZERO
    for entry in movements:
        change = to_base_units(
            entry.container_qty_change, entry.bulk_qty_change, container_size
        )
        snapshot = None
        if location is not None:
            snapshot = _snapshot_balance(entry, location, container_size)

        if snapshot is not None:
            balance = snapshot
        else:
            balance = balance + change

        rows.append(
            LedgerRow(
                movement_id=entry.id,
                movement_type=entry.movement_type,
                performed_at=entry.performed_at,
                performed_by_name=entry.performed_by_name,
                container_qty_change=entry.container_qty_change,
                bulk_qty_change=entry.bulk_qty_change,
                change=change,
                balance_after=balance,
                is_positive=is_positive_entry(entry.movement_type, change, location),
                label=action_label(entry.movement_type, location),
                reference=resolve_reference(entry),
                from_snapshot=snapshot is not None,
                job_id=entry.job_id,
                van_stock_id=entry.van_stock_id,
                notes=entry.notes,
                sequence=entry.sequence,
            )
        )
    return tuple(rows)

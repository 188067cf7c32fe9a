"""
Movement DTOs -- the immutable ledger entry as the domain sees it.

Responsibility:
    Defines the movement type enumeration and the frozen records handed
    between operators, repositories and the balance reconstructor.  ORM rows
    are converted to these records at the repository boundary.

Architecture position:
    Kernel > Domain -- pure data, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from fluid_kernel.domain.location import Location
from fluid_kernel.domain.quantity import ZERO


class MovementType(str, Enum):
    """Kind of quantity-changing event."""

    PURCHASE = "purchase"
    BREAK_CONTAINER = "break_container"
    USE_INTERNAL = "use_internal"
    SELL_EXTERNAL = "sell_external"
    TRANSFER_TO_VAN = "transfer_to_van"
    RETURN_TO_STORE = "return_to_store"
    ADJUSTMENT = "adjustment"
    INITIAL_STOCK = "initial_stock"

    @classmethod
    def parse(cls, value: str | MovementType) -> MovementType | None:
        """Return the member for ``value`` or None when unrecognized."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


@dataclass(frozen=True)
class MovementRecord:
    """
    One ledger entry.

    The deltas apply to the entry's own location: the Store when
    ``van_stock_id`` is None, otherwise that Van.  Snapshot fields hold the
    post-entry balance of whichever locations the writer knew at commit time.
    """

    part_id: UUID
    movement_type: MovementType | str
    performed_by: str
    performed_by_name: str
    performed_at: datetime
    container_qty_change: int = 0
    bulk_qty_change: Decimal = ZERO
    van_stock_id: UUID | None = None
    job_id: str | None = None
    transfer_ref: UUID | None = None
    store_container_qty_after: int | None = None
    store_bulk_qty_after: Decimal | None = None
    van_container_qty_after: int | None = None
    van_bulk_qty_after: Decimal | None = None
    unit_cost_at_time: Decimal | None = None
    total_cost: Decimal | None = None
    po_reference: str | None = None
    batch_label: str | None = None
    expires_at: date | None = None
    notes: str | None = None
    sequence: int | None = None
    id: UUID = field(default_factory=uuid4)

    @property
    def location(self) -> Location:
        return Location(self.van_stock_id)

    def with_sequence(self, sequence: int) -> MovementRecord:
        return replace(self, sequence=sequence)


@dataclass(frozen=True)
class PurchaseBatchRecord:
    """Receipt details kept alongside the ``purchase`` movement."""

    part_id: UUID
    movement_id: UUID
    container_qty: int
    container_size: Decimal | None
    total_base_units: Decimal
    total_price: Decimal
    cost_per_base_unit: Decimal
    performed_by: str
    performed_by_name: str
    received_at: datetime
    po_reference: str | None = None
    batch_label: str | None = None
    expires_at: date | None = None
    notes: str | None = None
    id: UUID = field(default_factory=uuid4)

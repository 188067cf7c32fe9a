"""Read models and warning signals returned by ledger operations."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from fluid_kernel.domain.location import Location
from fluid_kernel.domain.quantity import StockBalance


@dataclass(frozen=True)
class CurrentBalance:
    """Cached on-hand quantity of one part at one location."""

    part_id: UUID
    location: Location
    container_quantity: int
    bulk_quantity: Decimal
    total_base_units: Decimal

    @classmethod
    def of(
        cls,
        part_id: UUID,
        location: Location,
        balance: StockBalance,
        container_size: Decimal | None,
    ) -> CurrentBalance:
        return cls(
            part_id=part_id,
            location=location,
            container_quantity=balance.container_quantity,
            bulk_quantity=balance.bulk_quantity,
            total_base_units=balance.total_base_units(container_size),
        )

    @property
    def is_negative(self) -> bool:
        return self.total_base_units < 0


@dataclass(frozen=True)
class NegativeBalanceWarning:
    """
    A Van usage drove the on-hand total below zero.

    Usage reports can lag physical replenishment, so the entry is committed
    and this signal is surfaced to the caller instead of an error.
    """

    part_id: UUID
    location: Location
    requested: Decimal
    available_before: Decimal
    resulting_total: Decimal

    @property
    def shortfall(self) -> Decimal:
        return -self.resulting_total

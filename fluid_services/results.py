"""Result types returned by the ledger's mutating operations."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from fluid_engines.costing import CostVarianceWarning
from fluid_kernel.domain.dtos import CurrentBalance, NegativeBalanceWarning
from fluid_kernel.domain.location import Location

OperationWarning = CostVarianceWarning | NegativeBalanceWarning


@dataclass(frozen=True)
class StockOperationResult:
    """
    Outcome of a committed stock operation.

    ``movement_ids`` lists every entry the operation appended, primary entry
    first: the usage before the container it auto-opened, a transfer's
    debit before its credit.  ``balances`` holds the
    post-operation balance of each location touched.
    """

    operation: str
    part_id: UUID
    movement_ids: tuple[UUID, ...]
    balances: tuple[CurrentBalance, ...]
    warnings: tuple[OperationWarning, ...] = ()
    transfer_ref: UUID | None = None

    @property
    def movement_id(self) -> UUID:
        return self.movement_ids[0]

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def balance_at(self, location: Location) -> CurrentBalance:
        for balance in self.balances:
            if balance.location == location:
                return balance
        raise KeyError(f"{location} was not touched by {self.operation}")


@dataclass(frozen=True)
class ReceiptResult(StockOperationResult):
    """Receive outcome with the cost averager's output."""

    purchase_batch_id: UUID | None = None
    avg_cost_per_base_unit: Decimal | None = None
    variance_warning: CostVarianceWarning | None = None

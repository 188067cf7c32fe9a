"""Catalogue view of a part, as far as the ledger needs it."""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from uuid import UUID

from fluid_kernel.domain.quantity import BaseUnit, ContainerUnit


@dataclass(frozen=True)
class PartRecord:
    """
    Liquid-flagged catalogue entry.

    ``container_size`` is base units per sealed container and must be set
    (and positive) before any container arithmetic happens.
    ``avg_cost_per_base_unit`` is maintained by the cost averager only.
    """

    id: UUID
    name: str
    code: str
    is_liquid: bool = True
    base_unit: BaseUnit = BaseUnit.LITER
    container_unit: ContainerUnit = ContainerUnit.BOTTLE
    container_size: Decimal | None = None
    avg_cost_per_base_unit: Decimal | None = None

    def with_container_size(self, size: Decimal) -> PartRecord:
        return replace(self, container_size=size)

    def with_avg_cost(self, avg: Decimal | None) -> PartRecord:
        return replace(self, avg_cost_per_base_unit=avg)

"""
Module: fluid_kernel.models.part
Responsibility: ORM persistence for the liquid-flagged slice of the parts
    catalogue.  The full catalogue (non-liquid parts, pricing, suppliers) is
    owned by an external collaborator; only the columns the ledger reads or
    maintains live here.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - container_size > 0 whenever set (CHECK constraint).
    - avg_cost_per_base_unit is written by the cost averager only.
"""

from sqlalchemy import Boolean, CheckConstraint, String
from sqlalchemy.orm import Mapped, mapped_column

from fluid_kernel.db.base import TrackedBase
from fluid_kernel.db.types import Money, Quantity
from fluid_kernel.domain.part import PartRecord
from fluid_kernel.domain.quantity import BaseUnit, ContainerUnit


class LiquidPart(TrackedBase):
    """Catalogue row for a part tracked by the dual-unit ledger."""

    __tablename__ = "liquid_parts"

    __table_args__ = (
        CheckConstraint(
            "container_size IS NULL OR container_size > 0",
            name="ck_liquid_parts_container_size_positive",
        ),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    is_liquid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    base_unit: Mapped[str] = mapped_column(
        String(20), nullable=False, default=BaseUnit.LITER.value
    )
    container_unit: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ContainerUnit.BOTTLE.value
    )
    container_size: Mapped[Quantity | None] = mapped_column(nullable=True)
    avg_cost_per_base_unit: Mapped[Money | None] = mapped_column(nullable=True)

    def to_record(self) -> PartRecord:
        return PartRecord(
            id=self.id,
            name=self.name,
            code=self.code,
            is_liquid=self.is_liquid,
            base_unit=BaseUnit(self.base_unit),
            container_unit=ContainerUnit(self.container_unit),
            container_size=self.container_size,
            avg_cost_per_base_unit=self.avg_cost_per_base_unit,
        )

    @classmethod
    def from_record(cls, record: PartRecord) -> "LiquidPart":
        return cls(
            id=record.id,
            name=record.name,
            code=record.code,
            is_liquid=record.is_liquid,
            base_unit=BaseUnit(record.base_unit).value,
            container_unit=ContainerUnit(record.container_unit).value,
            container_size=record.container_size,
            avg_cost_per_base_unit=record.avg_cost_per_base_unit,
        )

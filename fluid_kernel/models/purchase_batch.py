"""
Module: fluid_kernel.models.purchase_batch
Responsibility: ORM persistence for receipts of liquid stock (one row per
    ``purchase`` movement) with the pricing and lot details the movement
    itself only summarizes.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Append-only, like the movement it belongs to (db/immutability.py).
    - movement_id is unique: a receipt produces exactly one batch row.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fluid_kernel.db.base import Base, UUIDString
from fluid_kernel.db.types import LongText, Money, Quantity, ShortCode
from fluid_kernel.domain.movement import PurchaseBatchRecord


class PurchaseBatch(Base):
    """Receipt record for a delivery of liquid stock."""

    __tablename__ = "purchase_batches"
    __append_only__ = True

    part_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("liquid_parts.id"),
        nullable=False,
        index=True,
    )
    movement_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("inventory_movements.id"),
        nullable=False,
        unique=True,
    )
    container_qty: Mapped[int] = mapped_column(Integer, nullable=False)
    container_size: Mapped[Quantity | None] = mapped_column(nullable=True)
    total_base_units: Mapped[Quantity] = mapped_column(nullable=False)
    total_price: Mapped[Money] = mapped_column(nullable=False)
    cost_per_base_unit: Mapped[Money] = mapped_column(nullable=False)
    po_reference: Mapped[ShortCode | None] = mapped_column(nullable=True)
    batch_label: Mapped[ShortCode | None] = mapped_column(nullable=True)
    expires_at: Mapped[date | None] = mapped_column(Date, nullable=True)
    notes: Mapped[LongText | None] = mapped_column(nullable=True)
    performed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    performed_by_name: Mapped[str] = mapped_column(String(255), nullable=False)
    received_at: Mapped[datetime] = mapped_column(nullable=False)

    @classmethod
    def from_record(cls, record: PurchaseBatchRecord) -> "PurchaseBatch":
        return cls(
            id=record.id,
            part_id=record.part_id,
            movement_id=record.movement_id,
            container_qty=record.container_qty,
            container_size=record.container_size,
            total_base_units=record.total_base_units,
            total_price=record.total_price,
            cost_per_base_unit=record.cost_per_base_unit,
            po_reference=record.po_reference,
            batch_label=record.batch_label,
            expires_at=record.expires_at,
            notes=record.notes,
            performed_by=record.performed_by,
            performed_by_name=record.performed_by_name,
            received_at=record.received_at,
        )

    def to_record(self) -> PurchaseBatchRecord:
        return PurchaseBatchRecord(
            id=self.id,
            part_id=self.part_id,
            movement_id=self.movement_id,
            container_qty=self.container_qty,
            container_size=self.container_size,
            total_base_units=self.total_base_units,
            total_price=self.total_price,
            cost_per_base_unit=self.cost_per_base_unit,
            po_reference=self.po_reference,
            batch_label=self.batch_label,
            expires_at=self.expires_at,
            notes=self.notes,
            performed_by=self.performed_by,
            performed_by_name=self.performed_by_name,
            received_at=self.received_at,
        )

"""
Module: fluid_kernel.models.movement
Responsibility: ORM persistence for inventory movements -- the append-only
    ledger of quantity-changing events per (part, location).
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - Rows are immutable once written.  UPDATE and DELETE are blocked by the
      ORM listeners in db/immutability.py and by the repository contract.
    - movement_type is persisted as MovementType.value.
    - Ledger order is ``sequence``, which is unique and allocated under a
      lock held to commit, so it follows commit order across processes.
      ``performed_at`` is when the operation ran, not a sort key.
    - The deltas apply to the row's own location: Store when van_stock_id is
      NULL, else that Van.

Failure modes:
    - ProtocolViolationError on any UPDATE/DELETE flush.
    - IntegrityError on a duplicate sequence (two writers bypassing the
      sequence counter).
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Date, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from fluid_kernel.db.base import Base, UUIDString
from fluid_kernel.db.types import LongText, Money, Quantity, ShortCode
from fluid_kernel.domain.movement import MovementRecord, MovementType


class InventoryMovement(Base):
    """One immutable ledger entry."""

    __tablename__ = "inventory_movements"
    __append_only__ = True

    __table_args__ = (
        Index("idx_movement_part_sequence", "part_id", "sequence"),
        Index("idx_movement_part_van", "part_id", "van_stock_id"),
        Index("idx_movement_transfer_ref", "transfer_ref"),
        Index("idx_movement_job", "job_id"),
    )

    part_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("liquid_parts.id"),
        nullable=False,
    )
    van_stock_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    job_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    transfer_ref: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    movement_type: Mapped[str] = mapped_column(String(30), nullable=False)
    container_qty_change: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    bulk_qty_change: Mapped[Quantity] = mapped_column(
        nullable=False, default=Decimal("0")
    )

    # Balance snapshots
    store_container_qty_after: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    store_bulk_qty_after: Mapped[Quantity | None] = mapped_column(nullable=True)
    van_container_qty_after: Mapped[int | None] = mapped_column(
        Integer, nullable=True
    )
    van_bulk_qty_after: Mapped[Quantity | None] = mapped_column(nullable=True)

    unit_cost_at_time: Mapped[Money | None] = mapped_column(nullable=True)
    total_cost: Mapped[Money | None] = mapped_column(nullable=True)

    po_reference: Mapped[ShortCode | None] = mapped_column(nullable=True)
    batch_label: Mapped[ShortCode | None] = mapped_column(nullable=True)
    expires_at: Mapped[date | None] = mapped_column(Date, nullable=True)

    performed_by: Mapped[str] = mapped_column(String(100), nullable=False)
    performed_by_name: Mapped[str] = mapped_column(String(255), nullable=False)
    performed_at: Mapped[datetime] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False, unique=True)
    notes: Mapped[LongText | None] = mapped_column(nullable=True)

    @classmethod
    def from_record(cls, record: MovementRecord) -> "InventoryMovement":
        return cls(
            id=record.id,
            part_id=record.part_id,
            van_stock_id=record.van_stock_id,
            job_id=record.job_id,
            transfer_ref=record.transfer_ref,
            movement_type=MovementType(record.movement_type).value,
            container_qty_change=record.container_qty_change,
            bulk_qty_change=record.bulk_qty_change,
            store_container_qty_after=record.store_container_qty_after,
            store_bulk_qty_after=record.store_bulk_qty_after,
            van_container_qty_after=record.van_container_qty_after,
            van_bulk_qty_after=record.van_bulk_qty_after,
            unit_cost_at_time=record.unit_cost_at_time,
            total_cost=record.total_cost,
            po_reference=record.po_reference,
            batch_label=record.batch_label,
            expires_at=record.expires_at,
            performed_by=record.performed_by,
            performed_by_name=record.performed_by_name,
            performed_at=record.performed_at,
            sequence=record.sequence,
            notes=record.notes,
        )

    def to_record(self) -> MovementRecord:
        return MovementRecord(
            id=self.id,
            part_id=self.part_id,
            van_stock_id=self.van_stock_id,
            job_id=self.job_id,
            transfer_ref=self.transfer_ref,
            movement_type=MovementType(self.movement_type),
            container_qty_change=self.container_qty_change,
            bulk_qty_change=self.bulk_qty_change,
            store_container_qty_after=self.store_container_qty_after,
            store_bulk_qty_after=self.store_bulk_qty_after,
            van_container_qty_after=self.van_container_qty_after,
            van_bulk_qty_after=self.van_bulk_qty_after,
            unit_cost_at_time=self.unit_cost_at_time,
            total_cost=self.total_cost,
            po_reference=self.po_reference,
            batch_label=self.batch_label,
            expires_at=self.expires_at,
            performed_by=self.performed_by,
            performed_by_name=self.performed_by_name,
            performed_at=self.performed_at,
            sequence=self.sequence,
            notes=self.notes,
        )

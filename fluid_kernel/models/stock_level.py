"""
Module: fluid_kernel.models.stock_level
Responsibility: ORM persistence for the Location Aggregate -- the cached
    container/bulk balance of one part at one location.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - One row per (part_id, location_key); UNIQUE constraint doubles as the
      conflict target of the atomic upsert-increment.
    - Rows are created implicitly on first movement and never deleted.
    - Quantities change only through ``qty = qty + :delta`` statements issued
      by the aggregate repository, never by assigning a Python-computed total.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from fluid_kernel.db.base import TrackedBase, UUIDString
from fluid_kernel.db.types import Quantity


class StockLevel(TrackedBase):
    """Cached on-hand quantity for a (part, location)."""

    __tablename__ = "stock_levels"

    __table_args__ = (
        UniqueConstraint("part_id", "location_key", name="uq_stock_level_location"),
        Index("idx_stock_level_part", "part_id"),
    )

    part_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("liquid_parts.id"),
        nullable=False,
    )

    # "store" or "van:<uuid>"
    location_key: Mapped[str] = mapped_column(String(50), nullable=False)

    van_stock_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    container_quantity: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    bulk_quantity: Mapped[Quantity] = mapped_column(
        nullable=False, default=Decimal("0")
    )

"""
SequenceService -- ledger sequence numbers from a counter row.

Responsibility:
    Hands out the ``sequence`` stamped on every movement.  The sequence
    orders entries that share a ``performed_at`` and gives each entry a
    total position in the ledger.

Architecture position:
    Kernel > Services -- storage infrastructure, used by the SQLAlchemy
    movement repository when it appends an entry.

Invariants enforced:
    - Allocation is one ``INSERT ... ON CONFLICT DO UPDATE`` that adds 1 to
      the counter in place, the same increment-in-place rule the location
      aggregates follow.  ``max(sequence) + 1`` is never computed.
    - The updated counter row stays locked until the caller's transaction
      ends, so concurrent appenders receive distinct, increasing values.
    - A rolled-back transaction gives its value back.

Failure modes:
    - None of its own; lock timeouts surface from the unit of work as
      ConcurrencyConflictError.
"""

from uuid import uuid4

from sqlalchemy import BigInteger, String, select
from sqlalchemy.orm import Mapped, Session, mapped_column

from fluid_kernel.db.base import Base
from fluid_kernel.db.engine import dialect_insert
from fluid_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceCounter(Base):
    """Last value handed out for one named sequence."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class SequenceService:
    """
    Allocates sequence values inside the caller's transaction.

    Usage:
        value = SequenceService(session).next_value(SequenceService.MOVEMENT)
    """

    MOVEMENT = "inventory_movement"

    def __init__(self, session: Session):
        self._session = session

    def next_value(self, sequence_name: str) -> int:
        """Advance ``sequence_name`` by one and return the new value (first is 1)."""
        table = SequenceCounter.__table__
        stmt = (
            dialect_insert(self._session, table)
            .values(id=uuid4(), name=sequence_name, current_value=1)
            .on_conflict_do_update(
                index_elements=[table.c.name],
                set_={"current_value": table.c.current_value + 1},
            )
        )
        self._session.execute(stmt)
        value = self.current_value(sequence_name)
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": value},
        )
        return value

    def current_value(self, sequence_name: str) -> int | None:
        """Last value handed out, or None before the first allocation."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.name == sequence_name
            )
        ).scalar_one_or_none()

"""
Module: fluid_kernel.db.base
Responsibility: Declarative bases for the ledger tables.  Fixes the column
    conventions every model shares (UUID keys stored as text, Decimal
    quantities, timezone-aware timestamps) and marks which tables hold
    append-only ledger history.
Architecture position: Kernel > DB.  Lowest import target inside the kernel;
    models/ import from here.  MUST NOT import from models/, repositories/,
    services/ or outer layers.

Invariants enforced:
    - Every row has a uuid4 primary key.
    - Decimal columns map to Numeric(38, 9); no float columns exist.
    - Models with ``__append_only__ = True`` are ledger history and are
      guarded by db.immutability; mutable tables (catalogue, aggregates)
      carry ``created_at`` / ``updated_at`` through ``TrackedBase`` instead.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID held as its 36-character text form, identical on SQLite and PostgreSQL."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else PyUUID(value)


class Base(DeclarativeBase):
    """Declarative base: uuid4 ``id`` plus the shared type map."""

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    # Ledger history tables set this; see db.immutability
    __append_only__: ClassVar[bool] = False

    id: Mapped[PyUUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


def append_only_models() -> tuple[type[Base], ...]:
    """Mapped classes declaring ``__append_only__``, in table-name order."""
    classes = [
        mapper.class_
        for mapper in Base.registry.mappers
        if getattr(mapper.class_, "__append_only__", False)
    ]
    return tuple(sorted(classes, key=lambda cls: cls.__tablename__))


class TrackedBase(Base):
    """Mutable table with row timestamps (catalogue rows, location aggregates)."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


UUID = PyUUID

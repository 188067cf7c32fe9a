"""Database layer - engine, base classes, types, and immutability."""

from fluid_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from fluid_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
    session_scope,
)
from fluid_kernel.db.types import LongText, Money, Quantity, ShortCode

__all__ = [
    "create_engine_from_url",
    "create_session_factory",
    "create_tables",
    "drop_tables",
    "session_scope",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Quantity",
    "ShortCode",
    "LongText",
]

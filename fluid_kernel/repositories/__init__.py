"""Storage contracts and their SQLAlchemy / in-memory implementations."""

from fluid_kernel.repositories.base import (
    LocationAggregateRepository,
    MovementRepository,
    MovementSequence,
    PartRepository,
    PurchaseBatchRepository,
    UnitOfWork,
)
from fluid_kernel.repositories.memory_store import InMemoryStore, InMemoryUnitOfWork
from fluid_kernel.repositories.sqlalchemy_store import SqlAlchemyUnitOfWork

__all__ = [
    "InMemoryStore",
    "InMemoryUnitOfWork",
    "LocationAggregateRepository",
    "MovementRepository",
    "MovementSequence",
    "PartRepository",
    "PurchaseBatchRepository",
    "SqlAlchemyUnitOfWork",
    "UnitOfWork",
]

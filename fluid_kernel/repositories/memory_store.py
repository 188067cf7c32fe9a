"""
Module: fluid_kernel.repositories.memory_store
Responsibility: In-memory implementations of the ledger repositories for
    deterministic unit tests and embedded use.
Architecture position: Kernel > Repositories.  Pure Python, no database.

Invariants enforced:
    - One unit of work at a time per store: entering a unit of work takes
      the store's re-entrant lock, which stands in for the row locks the
      SQL store takes.  Increments are therefore atomic.
    - Rollback restores the snapshot taken on entry, so a failed operation
      leaves no partial state.
    - Stored records are frozen dataclasses; the ledger list only grows.
"""

import threading
from decimal import Decimal
from uuid import UUID

from fluid_kernel.domain.location import Location
from fluid_kernel.domain.movement import MovementRecord, PurchaseBatchRecord
from fluid_kernel.domain.part import PartRecord
from fluid_kernel.domain.quantity import StockBalance, apply_delta
from fluid_kernel.exceptions import PartNotFoundError, ValidationError
from fluid_kernel.logging_config import get_logger
from fluid_kernel.repositories.base import (
    LocationAggregateRepository,
    MovementRepository,
    PartRepository,
    PurchaseBatchRepository,
    UnitOfWork,
)

logger = get_logger("repositories.memory")


class InMemoryStore:
    """Shared state behind any number of in-memory units of work."""

    def __init__(self):
        self.lock = threading.RLock()
        self.parts: dict[UUID, PartRecord] = {}
        self.aggregates: dict[tuple[UUID, Location], StockBalance] = {}
        self.movements: list[MovementRecord] = []
        self.batches: list[PurchaseBatchRecord] = []
        self.sequence = 0

    def snapshot(self) -> tuple:
        return (
            dict(self.parts),
            dict(self.aggregates),
            len(self.movements),
            len(self.batches),
            self.sequence,
        )

    def restore(self, snapshot: tuple) -> None:
        parts, aggregates, movement_count, batch_count, sequence = snapshot
        self.parts = parts
        self.aggregates = aggregates
        del self.movements[movement_count:]
        del self.batches[batch_count:]
        self.sequence = sequence

    def unit_of_work(self) -> "InMemoryUnitOfWork":
        return InMemoryUnitOfWork(self)


class InMemoryMovementRepository(MovementRepository):
    def __init__(self, store: InMemoryStore):
        self._store = store

    def get(self, movement_id: UUID) -> MovementRecord | None:
        with self._store.lock:
            for entry in self._store.movements:
                if entry.id == movement_id:
                    return entry
        return None

    def _next_sequence(self) -> int:
        self._store.sequence += 1
        return self._store.sequence

    def _insert(self, entry: MovementRecord) -> None:
        self._store.movements.append(entry)

    def _fetch(
        self,
        part_id: UUID,
        location: Location | None,
        start: int,
        count: int,
    ) -> list[MovementRecord]:
        with self._store.lock:
            matching = [
                entry
                for entry in self._store.movements
                if entry.part_id == part_id
                and (location is None or entry.location == location)
            ]
        matching.sort(key=lambda entry: entry.sequence)
        return matching[start:start + count]


class InMemoryLocationAggregateRepository(LocationAggregateRepository):
    def __init__(self, store: InMemoryStore):
        self._store = store

    def get(self, part_id: UUID, location: Location) -> StockBalance:
        with self._store.lock:
            return self._store.aggregates.get((part_id, location), StockBalance())

    def get_for_update(self, part_id: UUID, location: Location) -> StockBalance:
        # The unit of work already holds the store lock.
        return self.get(part_id, location)

    def increment(
        self,
        part_id: UUID,
        location: Location,
        container_delta: int,
        bulk_delta: Decimal,
    ) -> StockBalance:
        with self._store.lock:
            key = (part_id, location)
            updated = apply_delta(
                self._store.aggregates.get(key, StockBalance()),
                container_delta,
                bulk_delta,
            )
            self._store.aggregates[key] = updated
            return updated

    def list_for_part(self, part_id: UUID) -> dict[Location, StockBalance]:
        with self._store.lock:
            found = {
                location: balance
                for (pid, location), balance in self._store.aggregates.items()
                if pid == part_id
            }
        return dict(sorted(found.items(), key=lambda item: item[0].key))


class InMemoryPartRepository(PartRepository):
    def __init__(self, store: InMemoryStore):
        self._store = store

    def get(self, part_id: UUID) -> PartRecord:
        part = self._store.parts.get(part_id)
        if part is None:
            raise PartNotFoundError(str(part_id))
        return part

    def get_for_update(self, part_id: UUID) -> PartRecord:
        return self.get(part_id)

    def add(self, part: PartRecord) -> PartRecord:
        if any(existing.code == part.code for existing in self._store.parts.values()):
            raise ValidationError("code", f"part code {part.code!r} is already registered")
        self._store.parts[part.id] = part
        return part

    def set_container_size(self, part_id: UUID, container_size: Decimal) -> PartRecord:
        part = self.get(part_id).with_container_size(container_size)
        self._store.parts[part_id] = part
        return part

    def set_avg_cost(self, part_id: UUID, avg_cost: Decimal | None) -> PartRecord:
        part = self.get(part_id).with_avg_cost(avg_cost)
        self._store.parts[part_id] = part
        return part


class InMemoryPurchaseBatchRepository(PurchaseBatchRepository):
    def __init__(self, store: InMemoryStore):
        self._store = store

    def add(self, batch: PurchaseBatchRecord) -> UUID:
        self._store.batches.append(batch)
        return batch.id

    def list_for_part(self, part_id: UUID) -> list[PurchaseBatchRecord]:
        return [batch for batch in self._store.batches if batch.part_id == part_id]


class InMemoryUnitOfWork(UnitOfWork):
    """Serialized unit of work over an :class:`InMemoryStore`."""

    def __init__(self, store: InMemoryStore):
        self._store = store
        self._snapshot = None
        self.parts = InMemoryPartRepository(store)
        self.aggregates = InMemoryLocationAggregateRepository(store)
        self.movements = InMemoryMovementRepository(store)
        self.batches = InMemoryPurchaseBatchRepository(store)

    def _begin(self) -> None:
        self._store.lock.acquire()
        self._snapshot = self._store.snapshot()

    def _commit(self) -> None:
        self._snapshot = None
        self._store.lock.release()

    def _rollback(self, error: BaseException) -> None:
        try:
            self._store.restore(self._snapshot)
            logger.warning(
                "transaction_rolled_back",
                extra={"error_type": type(error).__name__},
            )
        finally:
            self._snapshot = None
            self._store.lock.release()

"""
Module: fluid_kernel.repositories.base
Responsibility: Storage contracts the stock operators depend on -- the
    movement ledger, the location aggregates, the parts slice, purchase
    batches -- and the unit of work that scopes them to one transaction.
Architecture position: Kernel > Repositories.  May import from domain/ and
    exceptions.  MUST NOT import from models/ or any concrete store; the
    SQLAlchemy and in-memory implementations live beside this module.

Invariants enforced:
    - Ledger append-only: ``MovementRepository.update`` and ``delete`` always
      raise ProtocolViolationError, for every backing store.
    - ``append`` rejects unknown movement types, no-op entries (both deltas
      zero) and entries without provenance.
    - ``query`` returns a lazy, finite, restartable sequence in
      ascending ``sequence`` order with no implicit limit.
    - Aggregate quantities change only through ``increment``, an atomic
      add-in-place at the storage layer.

Failure modes:
    - ValidationError from ``append``.
    - ProtocolViolationError from ``update`` / ``delete``.
    - PartNotFoundError from ``PartRepository.get``.
    - ConcurrencyConflictError from a unit of work whose storage could not
      honour the atomic change.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from decimal import Decimal
from uuid import UUID

from fluid_kernel.domain.location import Location
from fluid_kernel.domain.movement import (
    MovementRecord,
    MovementType,
    PurchaseBatchRecord,
)
from fluid_kernel.domain.part import PartRecord
from fluid_kernel.domain.quantity import ZERO, StockBalance
from fluid_kernel.exceptions import ProtocolViolationError, ValidationError
from fluid_kernel.logging_config import get_logger

logger = get_logger("repositories")

DEFAULT_PAGE_SIZE = 500


class MovementSequence:
    """
    Lazy, restartable view over a ledger query.

    Nothing is read until iteration starts.  Every call to ``iter()`` re-runs
    the query from the beginning in pages of ``page_size`` rows, so the
    sequence can be walked any number of times and always reflects entries
    committed since the previous walk.
    """

    def __init__(
        self,
        fetch_page: Callable[[int, int], list[MovementRecord]],
        *,
        limit: int | None = None,
        offset: int = 0,
        page_size: int = DEFAULT_PAGE_SIZE,
    ):
        if limit is not None and limit < 0:
            raise ValidationError("limit", "must be non-negative")
        if offset < 0:
            raise ValidationError("offset", "must be non-negative")
        self._fetch_page = fetch_page
        self._limit = limit
        self._offset = offset
        self._page_size = page_size

    def __iter__(self) -> Iterator[MovementRecord]:
        position = self._offset
        remaining = self._limit
        while remaining is None or remaining > 0:
            count = self._page_size if remaining is None else min(self._page_size, remaining)
            page = self._fetch_page(position, count)
            yield from page
            if len(page) < count:
                return
            position += len(page)
            if remaining is not None:
                remaining -= len(page)

    def to_list(self) -> list[MovementRecord]:
        return list(self)


class MovementRepository(ABC):
    """
    Append-only movement ledger.

    Contract:
        ``append`` validates and stores an entry, assigning its sequence.
        Stored entries are never changed or removed.
    """

    def append(self, entry: MovementRecord) -> UUID:
        """
        Validate and store ``entry``; return its id.

        Raises:
            ValidationError: unknown movement_type, both deltas zero, or
                missing performed_by / performed_by_name / performed_at.
        """
        movement_type = MovementType.parse(entry.movement_type)
        if movement_type is None:
            raise ValidationError(
                "movement_type", f"{entry.movement_type!r} is not a movement type"
            )
        if entry.container_qty_change == 0 and entry.bulk_qty_change == ZERO:
            raise ValidationError("quantity", "a movement must change stock")
        if not entry.performed_by:
            raise ValidationError("performed_by", "is required")
        if not entry.performed_by_name:
            raise ValidationError("performed_by_name", "is required")
        if entry.performed_at is None:
            raise ValidationError("performed_at", "is required")

        stored = entry.with_sequence(self._next_sequence())
        self._insert(stored)
        logger.info(
            "movement_appended",
            extra={
                "movement_id": str(stored.id),
                "movement_type": movement_type.value,
                "part_id": str(stored.part_id),
                "location": stored.location.key,
                "container_qty_change": stored.container_qty_change,
                "bulk_qty_change": stored.bulk_qty_change,
                "sequence": stored.sequence,
            },
        )
        return stored.id

    def update(self, entry: MovementRecord) -> None:
        """Always raises: ledger entries are append-only."""
        self._reject(entry.id, "UPDATE")

    def delete(self, movement_id: UUID) -> None:
        """Always raises: ledger entries are append-only."""
        self._reject(movement_id, "DELETE")

    def query(
        self,
        part_id: UUID,
        location: Location | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> MovementSequence:
        """
        Entries for ``part_id`` (optionally one location) in ledger order.

        ``location=None`` yields every location's entries for the part.
        """

        def fetch_page(start: int, count: int) -> list[MovementRecord]:
            return self._fetch(part_id, location, start, count)

        return MovementSequence(fetch_page, limit=limit, offset=offset)

    @abstractmethod
    def get(self, movement_id: UUID) -> MovementRecord | None:
        """Single entry by id, or None."""

    @abstractmethod
    def _next_sequence(self) -> int:
        ...

    @abstractmethod
    def _insert(self, entry: MovementRecord) -> None:
        ...

    @abstractmethod
    def _fetch(
        self,
        part_id: UUID,
        location: Location | None,
        start: int,
        count: int,
    ) -> list[MovementRecord]:
        ...

    def _reject(self, movement_id: UUID, operation: str) -> None:
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "InventoryMovement",
                "entity_id": str(movement_id),
                "operation": operation,
            },
        )
        raise ProtocolViolationError(
            entity_type="InventoryMovement",
            entity_id=str(movement_id),
            operation=operation,
        )


class LocationAggregateRepository(ABC):
    """
    Cached container/bulk balance per (part, location).

    A missing aggregate reads as an empty balance; it is created by the first
    ``increment``.
    """

    @abstractmethod
    def get(self, part_id: UUID, location: Location) -> StockBalance:
        """Current balance without locking."""

    @abstractmethod
    def get_for_update(self, part_id: UUID, location: Location) -> StockBalance:
        """Current balance, holding a row lock until the unit of work ends."""

    @abstractmethod
    def increment(
        self,
        part_id: UUID,
        location: Location,
        container_delta: int,
        bulk_delta: Decimal,
    ) -> StockBalance:
        """Atomically add both deltas in place and return the new balance."""

    @abstractmethod
    def list_for_part(self, part_id: UUID) -> dict[Location, StockBalance]:
        """Every location holding an aggregate for ``part_id``."""


class PartRepository(ABC):
    """Liquid-flagged slice of the parts catalogue."""

    @abstractmethod
    def get(self, part_id: UUID) -> PartRecord:
        """Raises PartNotFoundError when the part does not exist."""

    @abstractmethod
    def get_for_update(self, part_id: UUID) -> PartRecord:
        """As ``get``, locking the row for cost-average maintenance."""

    @abstractmethod
    def add(self, part: PartRecord) -> PartRecord:
        """Raises ValidationError when ``part.code`` is already registered."""

    @abstractmethod
    def set_container_size(self, part_id: UUID, container_size: Decimal) -> PartRecord:
        ...

    @abstractmethod
    def set_avg_cost(self, part_id: UUID, avg_cost: Decimal | None) -> PartRecord:
        ...


class PurchaseBatchRepository(ABC):
    """Receipt records, append-only."""

    @abstractmethod
    def add(self, batch: PurchaseBatchRecord) -> UUID:
        ...

    @abstractmethod
    def list_for_part(self, part_id: UUID) -> list[PurchaseBatchRecord]:
        """Receipts for ``part_id``, oldest first."""


class UnitOfWork(ABC):
    """
    One transaction over all ledger repositories.

    Usage:
        with uow_factory() as uow:
            uow.aggregates.get_for_update(part_id, Location.store())
            uow.movements.append(entry)
        # committed here; any exception rolls everything back

    Guarantees:
        - Commit on normal exit, rollback on any exception, which is then
          re-raised (storage conflicts as ConcurrencyConflictError).
        - Repository attributes are only valid inside the ``with`` block.
    """

    parts: PartRepository
    aggregates: LocationAggregateRepository
    movements: MovementRepository
    batches: PurchaseBatchRepository

    def __enter__(self) -> "UnitOfWork":
        self._begin()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is None:
            self._commit()
        else:
            self._rollback(exc_val)
        return False

    @abstractmethod
    def _begin(self) -> None:
        ...

    @abstractmethod
    def _commit(self) -> None:
        ...

    @abstractmethod
    def _rollback(self, error: BaseException) -> None:
        ...

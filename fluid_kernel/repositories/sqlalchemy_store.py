"""
Module: fluid_kernel.repositories.sqlalchemy_store
Responsibility: SQLAlchemy implementations of the ledger repositories and
    the unit of work that binds them to one session / transaction.
Architecture position: Kernel > Repositories.  May import from db/,
    models/, domain/ and services/sequence_service.py.

Invariants enforced:
    - Aggregate mutation is a single ``INSERT ... ON CONFLICT (part_id,
      location_key) DO UPDATE SET qty = qty + :delta`` statement.  No Python
      value read earlier in the transaction is ever written back.
    - Aggregate reads select columns, not ORM entities, so a value is never
      served from a stale identity map after an in-place increment.
    - Movement sequence numbers come from the locked counter row.
    - The unit of work commits on success and rolls back on any exception;
      database conflicts (deadlock, serialization failure, unexpected unique
      violation) surface as ConcurrencyConflictError.

Failure modes:
    - ConcurrencyConflictError wrapping OperationalError / IntegrityError.
    - NotImplementedError for dialects without an upsert construct.
"""

from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from fluid_kernel.db.engine import dialect_insert, session_scope
from fluid_kernel.domain.location import Location
from fluid_kernel.domain.movement import MovementRecord, PurchaseBatchRecord
from fluid_kernel.domain.part import PartRecord
from fluid_kernel.domain.quantity import ZERO, StockBalance
from fluid_kernel.exceptions import (
    ConcurrencyConflictError,
    PartNotFoundError,
    ValidationError,
)
from fluid_kernel.logging_config import LogContext, get_logger
from fluid_kernel.models.movement import InventoryMovement
from fluid_kernel.models.part import LiquidPart
from fluid_kernel.models.purchase_batch import PurchaseBatch
from fluid_kernel.models.stock_level import StockLevel
from fluid_kernel.repositories.base import (
    LocationAggregateRepository,
    MovementRepository,
    PartRepository,
    PurchaseBatchRepository,
    UnitOfWork,
)
from fluid_kernel.services.sequence_service import SequenceService

logger = get_logger("repositories.sqlalchemy")

_CONFLICT_ERRORS = (OperationalError, IntegrityError)


class SqlAlchemyMovementRepository(MovementRepository):
    """Movement ledger over ``inventory_movements``."""

    def __init__(self, session: Session):
        self.session = session
        self._sequences = SequenceService(session)

    def get(self, movement_id: UUID) -> MovementRecord | None:
        row = self.session.get(InventoryMovement, movement_id)
        return row.to_record() if row else None

    def _next_sequence(self) -> int:
        return self._sequences.next_value(SequenceService.MOVEMENT)

    def _insert(self, entry: MovementRecord) -> None:
        self.session.add(InventoryMovement.from_record(entry))
        self.session.flush()

    def _fetch(
        self,
        part_id: UUID,
        location: Location | None,
        start: int,
        count: int,
    ) -> list[MovementRecord]:
        stmt = select(InventoryMovement).where(InventoryMovement.part_id == part_id)
        if location is not None:
            if location.is_store:
                stmt = stmt.where(InventoryMovement.van_stock_id.is_(None))
            else:
                stmt = stmt.where(
                    InventoryMovement.van_stock_id == location.van_stock_id
                )
        stmt = (
            stmt.order_by(InventoryMovement.sequence)
            .offset(start)
            .limit(count)
        )
        return [row.to_record() for row in self.session.execute(stmt).scalars()]


class SqlAlchemyLocationAggregateRepository(LocationAggregateRepository):
    """Location aggregates over ``stock_levels``."""

    def __init__(self, session: Session):
        self.session = session

    def _balance_stmt(self, part_id: UUID, location: Location):
        return select(
            StockLevel.container_quantity, StockLevel.bulk_quantity
        ).where(
            StockLevel.part_id == part_id,
            StockLevel.location_key == location.key,
        )

    def get(self, part_id: UUID, location: Location) -> StockBalance:
        row = self.session.execute(self._balance_stmt(part_id, location)).first()
        return _to_balance(row)

    def get_for_update(self, part_id: UUID, location: Location) -> StockBalance:
        row = self.session.execute(
            self._balance_stmt(part_id, location).with_for_update()
        ).first()
        return _to_balance(row)

    def increment(
        self,
        part_id: UUID,
        location: Location,
        container_delta: int,
        bulk_delta: Decimal,
    ) -> StockBalance:
        table = StockLevel.__table__
        stmt = dialect_insert(self.session, table).values(
            id=uuid4(),
            part_id=part_id,
            location_key=location.key,
            van_stock_id=location.van_stock_id,
            container_quantity=container_delta,
            bulk_quantity=bulk_delta,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[table.c.part_id, table.c.location_key],
            set_={
                "container_quantity": table.c.container_quantity + container_delta,
                "bulk_quantity": table.c.bulk_quantity + bulk_delta,
                "updated_at": func.now(),
            },
        )
        self.session.execute(stmt)
        return self.get(part_id, location)

    def list_for_part(self, part_id: UUID) -> dict[Location, StockBalance]:
        rows = self.session.execute(
            select(
                StockLevel.location_key,
                StockLevel.container_quantity,
                StockLevel.bulk_quantity,
            )
            .where(StockLevel.part_id == part_id)
            .order_by(StockLevel.location_key)
        ).all()
        return {
            Location.from_key(key): StockBalance(int(containers), bulk)
            for key, containers, bulk in rows
        }


def _to_balance(row) -> StockBalance:
    if row is None:
        return StockBalance()
    containers, bulk = row
    return StockBalance(int(containers), bulk if bulk is not None else ZERO)


class SqlAlchemyPartRepository(PartRepository):
    """Liquid parts over ``liquid_parts``."""

    def __init__(self, session: Session):
        self.session = session

    def _row(self, part_id: UUID, *, for_update: bool = False) -> LiquidPart:
        stmt = select(LiquidPart).where(LiquidPart.id == part_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = self.session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if row is None:
            raise PartNotFoundError(str(part_id))
        return row

    def get(self, part_id: UUID) -> PartRecord:
        return self._row(part_id).to_record()

    def get_for_update(self, part_id: UUID) -> PartRecord:
        return self._row(part_id, for_update=True).to_record()

    def add(self, part: PartRecord) -> PartRecord:
        existing = self.session.execute(
            select(LiquidPart.id).where(LiquidPart.code == part.code)
        ).first()
        if existing is not None:
            raise ValidationError("code", f"part code {part.code!r} is already registered")
        self.session.add(LiquidPart.from_record(part))
        self.session.flush()
        return part

    def set_container_size(self, part_id: UUID, container_size: Decimal) -> PartRecord:
        row = self._row(part_id, for_update=True)
        row.container_size = container_size
        self.session.flush()
        return row.to_record()

    def set_avg_cost(self, part_id: UUID, avg_cost: Decimal | None) -> PartRecord:
        row = self._row(part_id, for_update=True)
        row.avg_cost_per_base_unit = avg_cost
        self.session.flush()
        return row.to_record()


class SqlAlchemyPurchaseBatchRepository(PurchaseBatchRepository):
    """Receipts over ``purchase_batches``."""

    def __init__(self, session: Session):
        self.session = session

    def add(self, batch: PurchaseBatchRecord) -> UUID:
        self.session.add(PurchaseBatch.from_record(batch))
        self.session.flush()
        return batch.id

    def list_for_part(self, part_id: UUID) -> list[PurchaseBatchRecord]:
        rows = self.session.execute(
            select(PurchaseBatch)
            .where(PurchaseBatch.part_id == part_id)
            .order_by(PurchaseBatch.received_at, PurchaseBatch.id)
        ).scalars()
        return [row.to_record() for row in rows]


class SqlAlchemyUnitOfWork(UnitOfWork):
    """
    Unit of work over one ``session_scope``.

    Repositories share the scope's session; the ledger query sequences they
    return read through that session and are valid until the block exits.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory
        self._scope = None
        self.session: Session | None = None

    def _begin(self) -> None:
        self._scope = session_scope(self._session_factory)
        self.session = self._scope.__enter__()
        self.parts = SqlAlchemyPartRepository(self.session)
        self.aggregates = SqlAlchemyLocationAggregateRepository(self.session)
        self.movements = SqlAlchemyMovementRepository(self.session)
        self.batches = SqlAlchemyPurchaseBatchRepository(self.session)

    def _commit(self) -> None:
        try:
            self._scope.__exit__(None, None, None)
        except _CONFLICT_ERRORS as exc:
            raise _conflict(exc) from exc

    def _rollback(self, error: BaseException) -> None:
        self._scope.__exit__(type(error), error, error.__traceback__)
        if isinstance(error, _CONFLICT_ERRORS):
            raise _conflict(error) from error


def _conflict(exc: Exception) -> ConcurrencyConflictError:
    operation = LogContext.get_all().get("operation", "unit_of_work")
    reason = str(getattr(exc, "orig", None) or exc)
    logger.warning(
        "concurrency_conflict",
        extra={"operation": operation, "error_type": type(exc).__name__},
    )
    return ConcurrencyConflictError(operation=operation, reason=reason)

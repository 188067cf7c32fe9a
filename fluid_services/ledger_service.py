"""
LiquidLedgerService -- public facade of the liquid inventory ledger.

Responsibility:
    Single entry point for callers.  Wires a unit-of-work factory, a clock
    and ledger settings into StockOperators, binds structured log context
    around every operation and serves the read side: running-balance
    ledger, current balance, reconciliation and purchase history.

Architecture position:
    Services -- stateful orchestration over kernel repositories and pure
    engines.  Built either from a ``LedgerConfig`` (SQL storage) or over an
    in-process store for tests and embedding.

Invariants enforced:
    - Every mutating call runs under ``LogContext.operation`` with a fresh
      correlation id, the actor and the operation name.
    - Reads never mutate: ``get_ledger`` and ``verify_balance`` only query.
    - One MonotonicClock per service, shared by every operation, so
      ``performed_at`` never goes backwards within a ledger.

Failure modes:
    - FluidLedgerError subclasses propagate unchanged after a
      ``stock_operation_rejected`` warning.
    - Anything else propagates after a ``stock_operation_failed`` error log.

Audit relevance:
    ``stock_operation_started`` / ``stock_operation_completed`` bracket
    every write with its correlation id, so a ledger entry can be traced
    back to the request that produced it.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from decimal import Decimal
from uuid import UUID, uuid4

from fluid_config import LedgerConfig, get_active_config
from fluid_config.schema import LedgerSettings
from fluid_engines.reconciliation import BalanceReconciliation, reconcile_balance
from fluid_engines.reconstruction import LedgerRow, reconstruct
from fluid_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
)
from fluid_kernel.db.immutability import register_immutability_listeners
from fluid_kernel.domain.clock import Clock, MonotonicClock
from fluid_kernel.domain.dtos import CurrentBalance
from fluid_kernel.domain.location import Location
from fluid_kernel.domain.movement import MovementRecord, PurchaseBatchRecord
from fluid_kernel.domain.part import PartRecord
from fluid_kernel.domain.quantity import (
    BaseUnit,
    ContainerUnit,
    ZERO,
    StockBalance,
    as_quantity,
    format_stock_display,
)
from fluid_kernel.exceptions import FluidLedgerError, ValidationError
from fluid_kernel.logging_config import LogContext, configure_logging, get_logger
from fluid_kernel.repositories.base import UnitOfWork
from fluid_kernel.repositories.memory_store import InMemoryStore
from fluid_kernel.repositories.sqlalchemy_store import SqlAlchemyUnitOfWork
from fluid_services.results import ReceiptResult, StockOperationResult
from fluid_services.stock_operators import StockOperators

logger = get_logger("services.ledger")


class LiquidLedgerService:
    """
    Facade over StockOperators plus the ledger read side.

    Contract:
        ``uow_factory`` returns a fresh, un-entered UnitOfWork per call.

    Non-goals:
        - Does NOT retry on ConcurrencyConflictError.
        - Does NOT authenticate actors; ``performed_by`` is recorded as given.
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
    ):
        self._uow_factory = uow_factory
        self._clock = clock or MonotonicClock()
        self._settings = settings or LedgerSettings()
        self._operators = StockOperators(uow_factory, self._clock, self._settings)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_config(
        cls,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
    ) -> LiquidLedgerService:
        """
        SQL-backed service built from ``config`` (default: active config).

        Also installs the JSON log handler at ``config.logging.level`` unless
        logging was already configured in this process.
        """
        config = config or get_active_config()
        configure_logging(level=config.logging.level)
        engine = create_engine_from_url(
            config.database.url,
            echo=config.database.echo,
            pool_size=config.database.pool_size,
            max_overflow=config.database.max_overflow,
        )
        create_tables(engine)
        register_immutability_listeners()
        factory = create_session_factory(engine)
        logger.info(
            "ledger_service_initialized",
            extra={
                "config_id": config.config_id,
                "config_version": config.version,
                "storage": engine.dialect.name,
            },
        )
        return cls(
            lambda: SqlAlchemyUnitOfWork(factory),
            clock=clock,
            settings=config.ledger,
        )

    @classmethod
    def in_memory(
        cls,
        store: InMemoryStore | None = None,
        clock: Clock | None = None,
        settings: LedgerSettings | None = None,
    ) -> LiquidLedgerService:
        """Service over an in-process store."""
        store = store or InMemoryStore()
        return cls(store.unit_of_work, clock=clock, settings=settings)

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def settings(self) -> LedgerSettings:
        return self._settings

    # -------------------------------------------------------------------------
    # Operation wrapper
    # -------------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        actor: str | None,
        part_id: UUID,
        location: Location | None,
        call: Callable[[], StockOperationResult],
    ) -> StockOperationResult:
        with LogContext.operation(
            operation, actor_id=actor, part_id=part_id, location=location
        ):
            logger.info("stock_operation_started")
            t0 = time.monotonic()
            try:
                result = call()
            except FluidLedgerError as exc:
                logger.warning(
                    "stock_operation_rejected",
                    extra={"error_code": exc.code, "detail": str(exc)},
                )
                raise
            except Exception:
                logger.error("stock_operation_failed", exc_info=True)
                raise
            duration_ms = round((time.monotonic() - t0) * 1000, 2)
            logger.info(
                "stock_operation_completed",
                extra={
                    "duration_ms": duration_ms,
                    "movement_count": len(result.movement_ids),
                    "warning_count": len(result.warnings),
                },
            )
            return result

    # -------------------------------------------------------------------------
    # Catalogue
    # -------------------------------------------------------------------------

    def register_part(
        self,
        name: str,
        code: str,
        *,
        is_liquid: bool = True,
        base_unit: BaseUnit | str = BaseUnit.LITER,
        container_unit: ContainerUnit | str = ContainerUnit.BOTTLE,
        container_size: Decimal | str | None = None,
        part_id: UUID | None = None,
    ) -> PartRecord:
        """Add a part to the catalogue and return it."""
        if not name or not name.strip():
            raise ValidationError("name", "is required")
        if not code or not code.strip():
            raise ValidationError("code", "is required")
        size = None
        if container_size is not None:
            size = as_quantity(container_size, "container_size")
            if size <= ZERO:
                raise ValidationError("container_size", "must be greater than zero")
        try:
            base = BaseUnit(base_unit)
            packaging = ContainerUnit(container_unit)
        except ValueError as exc:
            raise ValidationError("unit", str(exc)) from None

        part = PartRecord(
            id=part_id or uuid4(),
            name=name.strip(),
            code=code.strip(),
            is_liquid=is_liquid,
            base_unit=base,
            container_unit=packaging,
            container_size=size,
        )
        with self._uow_factory() as uow:
            part = uow.parts.add(part)
        logger.info(
            "part_registered",
            extra={"part_id": str(part.id), "code": part.code, "is_liquid": part.is_liquid},
        )
        return part

    def get_part(self, part_id: UUID) -> PartRecord:
        with self._uow_factory() as uow:
            return uow.parts.get(part_id)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def receive(self, part_id: UUID, *args, performed_by: str, **kwargs) -> ReceiptResult:
        """See ``StockOperators.receive``."""
        return self._run(
            "receive", performed_by, part_id, Location.store(),
            lambda: self._operators.receive(part_id, *args, performed_by=performed_by, **kwargs),
        )

    def break_container(
        self, part_id: UUID, location: Location, *args, performed_by: str, **kwargs
    ) -> StockOperationResult:
        return self._run(
            "break_container", performed_by, part_id, location,
            lambda: self._operators.break_container(
                part_id, location, *args, performed_by=performed_by, **kwargs
            ),
        )

    def use_internal(
        self, part_id: UUID, location: Location, *args, performed_by: str, **kwargs
    ) -> StockOperationResult:
        return self._run(
            "use_internal", performed_by, part_id, location,
            lambda: self._operators.use_internal(
                part_id, location, *args, performed_by=performed_by, **kwargs
            ),
        )

    def sell_external(
        self, part_id: UUID, location: Location, *args, performed_by: str, **kwargs
    ) -> StockOperationResult:
        return self._run(
            "sell_external", performed_by, part_id, location,
            lambda: self._operators.sell_external(
                part_id, location, *args, performed_by=performed_by, **kwargs
            ),
        )

    def transfer_to_van(
        self, part_id: UUID, van_stock_id: UUID, *args, performed_by: str, **kwargs
    ) -> StockOperationResult:
        return self._run(
            "transfer_to_van", performed_by, part_id, Location.van(van_stock_id),
            lambda: self._operators.transfer_to_van(
                part_id, van_stock_id, *args, performed_by=performed_by, **kwargs
            ),
        )

    def return_to_store(
        self, part_id: UUID, van_stock_id: UUID, *, performed_by: str, **kwargs
    ) -> StockOperationResult:
        return self._run(
            "return_to_store", performed_by, part_id, Location.van(van_stock_id),
            lambda: self._operators.return_to_store(
                part_id, van_stock_id, performed_by=performed_by, **kwargs
            ),
        )

    def adjust(
        self, part_id: UUID, location: Location, *args, performed_by: str, **kwargs
    ) -> StockOperationResult:
        return self._run(
            "adjustment", performed_by, part_id, location,
            lambda: self._operators.adjust(
                part_id, location, *args, performed_by=performed_by, **kwargs
            ),
        )

    def record_initial_stock(
        self, part_id: UUID, location: Location, *args, performed_by: str, **kwargs
    ) -> StockOperationResult:
        return self._run(
            "initial_stock", performed_by, part_id, location,
            lambda: self._operators.record_initial_stock(
                part_id, location, *args, performed_by=performed_by, **kwargs
            ),
        )

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_ledger(
        self,
        part_id: UUID,
        location: Location | None = None,
    ) -> list[LedgerRow]:
        """
        Running-balance ledger for a part, oldest entry first.

        With ``location`` the view is scoped to that location and uses its
        balance snapshots; without it, every entry of the part is summed.
        """
        with self._uow_factory() as uow:
            part = uow.parts.get(part_id)
            rows = reconstruct(
                uow.movements.query(part_id, location),
                container_size=part.container_size,
                location=location,
            )
        return list(rows)

    def get_movements(
        self,
        part_id: UUID,
        location: Location | None = None,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[MovementRecord]:
        """Raw ledger entries in ascending order."""
        with self._uow_factory() as uow:
            uow.parts.get(part_id)
            return uow.movements.query(part_id, location, limit=limit, offset=offset).to_list()

    def get_current_balance(self, part_id: UUID, location: Location) -> CurrentBalance:
        """Cached on-hand quantity; an untouched location reads as zero."""
        with self._uow_factory() as uow:
            part = uow.parts.get(part_id)
            balance = uow.aggregates.get(part_id, location)
        return CurrentBalance.of(part_id, location, balance, part.container_size)

    def list_balances(self, part_id: UUID) -> list[CurrentBalance]:
        """Every location holding a row for the part, Store first."""
        with self._uow_factory() as uow:
            part = uow.parts.get(part_id)
            balances = uow.aggregates.list_for_part(part_id)
        ordered = sorted(balances.items(), key=lambda item: (item[0].is_van, item[0].key))
        return [
            CurrentBalance.of(part_id, location, balance, part.container_size)
            for location, balance in ordered
        ]

    def format_stock(self, part_id: UUID, location: Location | None = None) -> str:
        """Display string for one location, or the part-wide total."""
        with self._uow_factory() as uow:
            part = uow.parts.get(part_id)
            if location is not None:
                balance = uow.aggregates.get(part_id, location)
            else:
                balances = uow.aggregates.list_for_part(part_id).values()
                balance = _sum_balances(balances)
        return format_stock_display(part, balance)

    def verify_balance(self, part_id: UUID, location: Location) -> BalanceReconciliation:
        """Compare the ledger sum at ``location`` with the cached aggregate."""
        with self._uow_factory() as uow:
            part = uow.parts.get(part_id)
            cached = uow.aggregates.get(part_id, location)
            result = reconcile_balance(
                uow.movements.query(part_id, location),
                part_id=part_id,
                location=location,
                cached=cached,
                container_size=part.container_size,
                epsilon=self._settings.quantity_epsilon,
            )
        if not result.is_consistent:
            logger.warning(
                "balance_mismatch_detected",
                extra={
                    "part_id": str(part_id),
                    "location": location.key,
                    "ledger_total": result.ledger_total,
                    "cached_total": result.cached_total,
                    "difference": result.difference,
                },
            )
        return result

    def list_purchase_batches(self, part_id: UUID) -> list[PurchaseBatchRecord]:
        with self._uow_factory() as uow:
            uow.parts.get(part_id)
            return uow.batches.list_for_part(part_id)


def _sum_balances(balances) -> StockBalance:
    containers = 0
    bulk = ZERO
    for balance in balances:
        containers += balance.container_quantity
        bulk += balance.bulk_quantity
    return StockBalance(containers, bulk)

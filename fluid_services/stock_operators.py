"""
StockOperators -- the mutating operations of the liquid ledger.

Responsibility:
    Receive, Break-Container, Use-Internal, Sell-External, Transfer-To-Van,
    Return-To-Store, Adjustment and Initial-Stock.  Each operator validates
    its input, locks the Location Aggregate(s) it touches, computes deltas
    with the quantity model, increments the aggregate(s) in place and
    appends the ledger entry(ies), all inside one unit of work.

Architecture position:
    Services -- stateful orchestration over kernel repositories and pure
    engines.  Called by LiquidLedgerService, which owns logging context.

Invariants enforced:
    - Atomicity: aggregate increments and ledger appends of one operation
      commit together or not at all (one unit of work per call).
    - Increment-in-place: aggregates change only via
      ``aggregates.increment``; no computed total is ever written back.
    - Lock order: Store before Van for two-location operations.
    - Store never goes below zero.  A pre-check rejects the request and a
      post-increment guard re-checks the stored result, aborting the unit
      of work on violation.
    - Irreversibility: containers only ever become bulk (break); nothing
      turns bulk back into containers.
    - Conservation: a transfer/return debits and credits identical deltas.
    - ``performed_at`` comes from the injected clock, never the caller.

Failure modes:
    - ValidationError: malformed input; nothing is written.
    - NotLiquidPartError / PartNotFoundError: wrong or unknown part.
    - InsufficientStockError: decrement exceeds on-hand at the Store, for a
      transfer or return, or for sealed containers anywhere.
    - ConcurrencyConflictError: the storage layer could not apply the
      change; retry the whole operation.

Audit relevance:
    Every entry carries mandatory provenance and a balance snapshot of each
    location it knew the post-state of.  Van usage that overdraws the van is
    committed with a ``[balance_override: true]`` note and a warning.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import date, datetime
from decimal import ROUND_CEILING, Decimal
from uuid import UUID, uuid4

from fluid_config.schema import LedgerSettings
from fluid_engines.costing import check_cost_variance, weighted_average_cost
from fluid_kernel.db.types import normalize_quantity
from fluid_kernel.domain.clock import Clock
from fluid_kernel.domain.dtos import CurrentBalance, NegativeBalanceWarning
from fluid_kernel.domain.location import Location
from fluid_kernel.domain.movement import (
    MovementRecord,
    MovementType,
    PurchaseBatchRecord,
)
from fluid_kernel.domain.part import PartRecord
from fluid_kernel.domain.quantity import (
    ZERO,
    QuantityUnit,
    StockBalance,
    as_container_count,
    as_quantity,
    quantities_equal,
)
from fluid_kernel.exceptions import (
    InsufficientStockError,
    NotLiquidPartError,
    ValidationError,
)
from fluid_kernel.logging_config import get_logger
from fluid_kernel.repositories.base import UnitOfWork
from fluid_services.results import ReceiptResult, StockOperationResult

logger = get_logger("services.stock_operators")

CONTAINERS = "containers"
BALANCE_OVERRIDE_NOTE = "[balance_override: true] van balance was insufficient"


def _fmt(quantity: Decimal | int) -> str:
    """Plain decimal text without exponent or trailing zeros."""
    if isinstance(quantity, int):
        return str(quantity)
    return format(quantity.normalize(), "f")


def _short_id(value: UUID) -> str:
    return str(value)[:8]


def _snapshot(location: Location, balance: StockBalance) -> dict:
    if location.is_store:
        return {
            "store_container_qty_after": balance.container_quantity,
            "store_bulk_qty_after": balance.bulk_quantity,
        }
    return {
        "van_container_qty_after": balance.container_quantity,
        "van_bulk_qty_after": balance.bulk_quantity,
    }


def _require_text(value: str | None, field: str) -> str:
    if value is None or not str(value).strip():
        raise ValidationError(field, "is required")
    return str(value).strip()


def _as_unit(unit: QuantityUnit | str) -> QuantityUnit:
    try:
        return QuantityUnit(unit)
    except ValueError:
        raise ValidationError("unit", f"{unit!r} is not one of bulk, container") from None


def _join_notes(*parts: str | None) -> str | None:
    joined = " ".join(part for part in parts if part)
    return joined or None


class StockOperators:
    """
    Write path of the ledger.

    Contract:
        Every public method opens exactly one unit of work from
        ``uow_factory`` and returns only after it committed.

    Guarantees:
        - No method leaves partial state behind on any exception.
        - Returned balances are the values the storage layer holds after
          the increments, not values computed in Python.

    Non-goals:
        - Does NOT retry on ConcurrencyConflictError; the caller decides.
        - Does NOT manage log context; LiquidLedgerService binds it.
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        clock: Clock,
        settings: LedgerSettings | None = None,
    ):
        self._uow_factory = uow_factory
        self._clock = clock
        self._settings = settings or LedgerSettings()

    @property
    def epsilon(self) -> Decimal:
        return self._settings.quantity_epsilon

    # =========================================================================
    # Receive
    # =========================================================================

    def receive(
        self,
        part_id: UUID,
        container_qty: int | Decimal | str,
        container_size: Decimal | str | None,
        total_base_units: Decimal | str | None,
        total_price: Decimal | str,
        cost_per_base_unit: Decimal | str | None = None,
        *,
        performed_by: str,
        performed_by_name: str,
        po_reference: str | None = None,
        batch_label: str | None = None,
        expires_at: date | None = None,
        notes: str | None = None,
    ) -> ReceiptResult:
        """
        Record a delivery into the Store.

        A containerized receipt (``container_qty > 0``) adds sealed
        containers only; ``container_qty = 0`` adds ``total_base_units`` as
        loose bulk.  The part's average cost is updated and a variance
        warning is returned when the unit cost is out of line.
        """
        performed_by = _require_text(performed_by, "performed_by")
        performed_by_name = _require_text(performed_by_name, "performed_by_name")

        containers = as_container_count(container_qty, "container_qty")
        if containers < 0:
            raise ValidationError("container_qty", "must not be negative")
        price = as_quantity(total_price, "total_price")
        if price < ZERO:
            raise ValidationError("total_price", "must not be negative")

        size = None
        if container_size is not None and container_size != "":
            size = as_quantity(container_size, "container_size")
            if size <= ZERO:
                raise ValidationError("container_size", "must be greater than zero")
        if containers > 0 and size is None:
            raise ValidationError("container_size", "is required when containers are received")

        if total_base_units is None or total_base_units == "":
            if containers == 0:
                raise ValidationError("total_base_units", "is required for a bulk receipt")
            total = containers * size
        else:
            total = as_quantity(total_base_units, "total_base_units")
            if containers > 0 and not quantities_equal(total, containers * size, self.epsilon):
                raise ValidationError(
                    "total_base_units",
                    f"{_fmt(total)} does not match {containers} x {_fmt(size)}",
                )
        if total <= ZERO:
            raise ValidationError("total_base_units", "must be greater than zero")

        if cost_per_base_unit is None or cost_per_base_unit == "":
            cost = normalize_quantity(price / total)
        else:
            cost = as_quantity(cost_per_base_unit, "cost_per_base_unit")
            if cost < ZERO:
                raise ValidationError("cost_per_base_unit", "must not be negative")

        store = Location.store()
        with self._uow_factory() as uow:
            part = self._liquid_part(uow, part_id, for_update=True)
            if containers > 0:
                if part.container_size is None:
                    part = uow.parts.set_container_size(part.id, size)
                elif not quantities_equal(part.container_size, size, self.epsilon):
                    raise ValidationError(
                        "container_size",
                        f"receipt size {_fmt(size)} differs from the part's "
                        f"container size {_fmt(part.container_size)}",
                    )

            uow.aggregates.get_for_update(part.id, store)
            on_hand = sum(
                (
                    balance.total_base_units(part.container_size)
                    for balance in uow.aggregates.list_for_part(part.id).values()
                ),
                ZERO,
            )

            variance = check_cost_variance(
                cost=cost,
                average=part.avg_cost_per_base_unit,
                threshold=self._settings.variance_threshold,
            )
            new_avg = normalize_quantity(
                weighted_average_cost(
                    old_avg=part.avg_cost_per_base_unit,
                    old_total=on_hand,
                    received_units=total,
                    received_cost=cost,
                )
            )

            if containers > 0:
                container_delta, bulk_delta = containers, ZERO
            else:
                container_delta, bulk_delta = 0, total
            after = self._apply(uow, part, store, container_delta, bulk_delta)

            performed_at = self._clock.now()
            movement_id = uow.movements.append(
                MovementRecord(
                    part_id=part.id,
                    movement_type=MovementType.PURCHASE,
                    performed_by=performed_by,
                    performed_by_name=performed_by_name,
                    performed_at=performed_at,
                    container_qty_change=container_delta,
                    bulk_qty_change=bulk_delta,
                    unit_cost_at_time=cost,
                    total_cost=price,
                    po_reference=po_reference,
                    batch_label=batch_label,
                    expires_at=expires_at,
                    notes=notes or self._receipt_note(part, containers, size, total),
                    **_snapshot(store, after),
                )
            )
            batch_id = uow.batches.add(
                PurchaseBatchRecord(
                    part_id=part.id,
                    movement_id=movement_id,
                    container_qty=containers,
                    container_size=size if containers > 0 else part.container_size,
                    total_base_units=total,
                    total_price=price,
                    cost_per_base_unit=cost,
                    performed_by=performed_by,
                    performed_by_name=performed_by_name,
                    received_at=performed_at,
                    po_reference=po_reference,
                    batch_label=batch_label,
                    expires_at=expires_at,
                    notes=notes,
                )
            )
            part = uow.parts.set_avg_cost(part.id, new_avg)

        if variance is not None:
            logger.warning(
                "cost_variance_detected",
                extra={
                    "direction": variance.direction.value,
                    "percent": variance.percent,
                    "cost_per_base_unit": cost,
                    "average_cost": variance.average_cost,
                },
            )

        return ReceiptResult(
            operation="receive",
            part_id=part.id,
            movement_ids=(movement_id,),
            balances=(CurrentBalance.of(part.id, store, after, part.container_size),),
            warnings=(variance,) if variance is not None else (),
            purchase_batch_id=batch_id,
            avg_cost_per_base_unit=new_avg,
            variance_warning=variance,
        )

    @staticmethod
    def _receipt_note(part: PartRecord, containers: int, size, total: Decimal) -> str:
        if containers > 0:
            return (
                f"Received {containers} {part.container_unit.value}(s) x "
                f"{_fmt(size)} {part.base_unit.symbol}"
            )
        return f"Received {_fmt(total)} {part.base_unit.symbol} bulk"

    # =========================================================================
    # Break-Container
    # =========================================================================

    def break_container(
        self,
        part_id: UUID,
        location: Location,
        container_count: int | Decimal | str,
        *,
        performed_by: str,
        performed_by_name: str,
        notes: str | None = None,
    ) -> StockOperationResult:
        """Open ``container_count`` sealed containers into loose bulk."""
        performed_by = _require_text(performed_by, "performed_by")
        performed_by_name = _require_text(performed_by_name, "performed_by_name")
        count = as_container_count(container_count, "container_count")
        if count <= 0:
            raise ValidationError("container_count", "must be a positive whole number")

        with self._uow_factory() as uow:
            part = self._liquid_part(uow, part_id)
            self._require_container_size(part)
            before = uow.aggregates.get_for_update(part.id, location)
            if count > before.container_quantity:
                raise InsufficientStockError(
                    str(part.id), str(location), count, before.container_quantity, CONTAINERS
                )
            movement_id, after = self._open_containers(
                uow,
                part,
                location,
                count,
                performed_by=performed_by,
                performed_by_name=performed_by_name,
                performed_at=self._clock.now(),
                notes=notes or f"Opened {count} container(s)",
            )

        return StockOperationResult(
            operation="break_container",
            part_id=part.id,
            movement_ids=(movement_id,),
            balances=(CurrentBalance.of(part.id, location, after, part.container_size),),
        )

    def _open_containers(
        self,
        uow: UnitOfWork,
        part: PartRecord,
        location: Location,
        count: int,
        *,
        performed_by: str,
        performed_by_name: str,
        performed_at: datetime,
        notes: str,
    ) -> tuple[UUID, StockBalance]:
        size = self._require_container_size(part)
        bulk_delta = size * count
        after = self._apply(uow, part, location, -count, bulk_delta)
        movement_id = uow.movements.append(
            MovementRecord(
                part_id=part.id,
                movement_type=MovementType.BREAK_CONTAINER,
                performed_by=performed_by,
                performed_by_name=performed_by_name,
                performed_at=performed_at,
                container_qty_change=-count,
                bulk_qty_change=bulk_delta,
                van_stock_id=location.van_stock_id,
                notes=notes,
                **_snapshot(location, after),
            )
        )
        return movement_id, after

    # =========================================================================
    # Use-Internal / Sell-External
    # =========================================================================

    def use_internal(
        self,
        part_id: UUID,
        location: Location,
        amount: Decimal | str,
        job_id: str,
        *,
        performed_by: str,
        performed_by_name: str,
        notes: str | None = None,
    ) -> StockOperationResult:
        """Consume loose bulk on a job."""
        job = _require_text(job_id, "job_id")
        return self._consume(
            MovementType.USE_INTERNAL,
            part_id,
            location,
            amount,
            QuantityUnit.BULK,
            job_id=job,
            notes=notes,
            performed_by=performed_by,
            performed_by_name=performed_by_name,
        )

    def sell_external(
        self,
        part_id: UUID,
        location: Location,
        amount: Decimal | int | str,
        *,
        performed_by: str,
        performed_by_name: str,
        notes: str | None = None,
        unit: QuantityUnit | str = QuantityUnit.BULK,
        job_id: str | None = None,
    ) -> StockOperationResult:
        """Sell loose bulk, or whole sealed containers with ``unit=container``."""
        return self._consume(
            MovementType.SELL_EXTERNAL,
            part_id,
            location,
            amount,
            _as_unit(unit),
            job_id=job_id or None,
            notes=notes,
            performed_by=performed_by,
            performed_by_name=performed_by_name,
        )

    def _consume(
        self,
        movement_type: MovementType,
        part_id: UUID,
        location: Location,
        amount,
        unit: QuantityUnit,
        *,
        job_id: str | None,
        notes: str | None,
        performed_by: str,
        performed_by_name: str,
    ) -> StockOperationResult:
        performed_by = _require_text(performed_by, "performed_by")
        performed_by_name = _require_text(performed_by_name, "performed_by_name")
        if unit is QuantityUnit.CONTAINER:
            containers = as_container_count(amount, "amount")
            if containers <= 0:
                raise ValidationError("amount", "must be a positive whole number of containers")
            return self._consume_containers(
                movement_type, part_id, location, containers,
                job_id=job_id, notes=notes,
                performed_by=performed_by, performed_by_name=performed_by_name,
            )
        quantity = as_quantity(amount, "amount")
        if quantity <= ZERO:
            raise ValidationError("amount", "must be greater than zero")
        return self._consume_bulk(
            movement_type, part_id, location, quantity,
            job_id=job_id, notes=notes,
            performed_by=performed_by, performed_by_name=performed_by_name,
        )

    def _consume_containers(
        self,
        movement_type: MovementType,
        part_id: UUID,
        location: Location,
        containers: int,
        *,
        job_id: str | None,
        notes: str | None,
        performed_by: str,
        performed_by_name: str,
    ) -> StockOperationResult:
        with self._uow_factory() as uow:
            part = self._liquid_part(uow, part_id)
            size = self._require_container_size(part)
            before = uow.aggregates.get_for_update(part.id, location)
            if containers > before.container_quantity:
                raise InsufficientStockError(
                    str(part.id), str(location), containers, before.container_quantity, CONTAINERS
                )
            after = self._apply(uow, part, location, -containers, ZERO)
            unit_cost, total_cost = self._usage_cost(part, size * containers)
            movement_id = uow.movements.append(
                MovementRecord(
                    part_id=part.id,
                    movement_type=movement_type,
                    performed_by=performed_by,
                    performed_by_name=performed_by_name,
                    performed_at=self._clock.now(),
                    container_qty_change=-containers,
                    van_stock_id=location.van_stock_id,
                    job_id=job_id,
                    unit_cost_at_time=unit_cost,
                    total_cost=total_cost,
                    notes=notes or f"Sold {containers} sealed container(s)",
                    **_snapshot(location, after),
                )
            )

        return StockOperationResult(
            operation=movement_type.value,
            part_id=part.id,
            movement_ids=(movement_id,),
            balances=(CurrentBalance.of(part.id, location, after, part.container_size),),
        )

    def _consume_bulk(
        self,
        movement_type: MovementType,
        part_id: UUID,
        location: Location,
        quantity: Decimal,
        *,
        job_id: str | None,
        notes: str | None,
        performed_by: str,
        performed_by_name: str,
    ) -> StockOperationResult:
        auto_break = self._settings.auto_break_containers
        allow_negative = location.is_van and self._settings.allow_negative_van_balance

        with self._uow_factory() as uow:
            part = self._liquid_part(uow, part_id)
            before = uow.aggregates.get_for_update(part.id, location)
            size = part.container_size

            if auto_break and size is not None:
                available = before.total_base_units(size)
            else:
                available = before.bulk_quantity
            if not allow_negative and quantity > available + self.epsilon:
                raise InsufficientStockError(
                    str(part.id), str(location), quantity, available, part.base_unit.symbol
                )

            performed_at = self._clock.now()
            movement_ids: list[UUID] = []

            opened = 0
            if auto_break and size is not None and before.bulk_quantity < quantity:
                shortfall = quantity - before.bulk_quantity
                needed = int((shortfall / size).to_integral_value(rounding=ROUND_CEILING))
                opened = min(needed, before.container_quantity)
            if opened > 0:
                break_id, _ = self._open_containers(
                    uow,
                    part,
                    location,
                    opened,
                    performed_by=performed_by,
                    performed_by_name=performed_by_name,
                    performed_at=performed_at,
                    notes=f"Auto-opened {opened} container(s) for {self._usage_word(movement_type)}",
                )
                movement_ids.append(break_id)
                logger.info(
                    "containers_auto_opened",
                    extra={"containers_opened": opened, "requested": quantity},
                )

            after = self._apply(uow, part, location, 0, -quantity, allow_negative=allow_negative)
            resulting_total = after.total_base_units(size)

            warning = None
            override = None
            if location.is_van and resulting_total < ZERO:
                override = BALANCE_OVERRIDE_NOTE
                warning = NegativeBalanceWarning(
                    part_id=part.id,
                    location=location,
                    requested=quantity,
                    available_before=before.total_base_units(size),
                    resulting_total=resulting_total,
                )
                logger.warning(
                    "negative_van_balance",
                    extra={
                        "requested": quantity,
                        "available_before": warning.available_before,
                        "resulting_total": resulting_total,
                    },
                )

            default_note = (
                f"Used {_fmt(quantity)} {part.base_unit.symbol} "
                f"{'from van ' if location.is_van else ''}"
                f"{'on job' if movement_type is MovementType.USE_INTERNAL else 'for external sale'}"
            )
            unit_cost, total_cost = self._usage_cost(part, quantity)
            usage_id = uow.movements.append(
                MovementRecord(
                    part_id=part.id,
                    movement_type=movement_type,
                    performed_by=performed_by,
                    performed_by_name=performed_by_name,
                    performed_at=performed_at,
                    bulk_qty_change=-quantity,
                    van_stock_id=location.van_stock_id,
                    job_id=job_id,
                    unit_cost_at_time=unit_cost,
                    total_cost=total_cost,
                    notes=_join_notes(notes or default_note, override),
                    **_snapshot(location, after),
                )
            )
            movement_ids.insert(0, usage_id)

        return StockOperationResult(
            operation=movement_type.value,
            part_id=part.id,
            movement_ids=tuple(movement_ids),
            balances=(CurrentBalance.of(part.id, location, after, size),),
            warnings=(warning,) if warning is not None else (),
        )

    @staticmethod
    def _usage_word(movement_type: MovementType) -> str:
        return "internal use" if movement_type is MovementType.USE_INTERNAL else "external sale"

    @staticmethod
    def _usage_cost(part: PartRecord, quantity: Decimal) -> tuple[Decimal | None, Decimal | None]:
        avg = part.avg_cost_per_base_unit
        if avg is None:
            return None, None
        return avg, normalize_quantity(avg * quantity)

    # =========================================================================
    # Transfer-To-Van / Return-To-Store
    # =========================================================================

    def transfer_to_van(
        self,
        part_id: UUID,
        van_stock_id: UUID,
        amount: Decimal | int | str,
        *,
        performed_by: str,
        performed_by_name: str,
        unit: QuantityUnit | str = QuantityUnit.BULK,
        notes: str | None = None,
    ) -> StockOperationResult:
        """
        Move stock from the Store to a Van.

        ``unit=bulk`` moves loose bulk, ``unit=container`` moves sealed
        containers; the Store must hold the amount in that unit.
        """
        performed_by = _require_text(performed_by, "performed_by")
        performed_by_name = _require_text(performed_by_name, "performed_by_name")
        van = Location.van(van_stock_id)
        store = Location.store()
        unit = _as_unit(unit)
        if unit is QuantityUnit.CONTAINER:
            containers = as_container_count(amount, "amount")
            if containers <= 0:
                raise ValidationError("amount", "must be a positive whole number of containers")
            container_delta, bulk_delta = containers, ZERO
        else:
            quantity = as_quantity(amount, "amount")
            if quantity <= ZERO:
                raise ValidationError("amount", "must be greater than zero")
            container_delta, bulk_delta = 0, quantity

        with self._uow_factory() as uow:
            part = self._liquid_part(uow, part_id)
            if container_delta:
                self._require_container_size(part)
            store_before = uow.aggregates.get_for_update(part.id, store)
            uow.aggregates.get_for_update(part.id, van)

            if container_delta > store_before.container_quantity:
                raise InsufficientStockError(
                    str(part.id), str(store), container_delta,
                    store_before.container_quantity, CONTAINERS,
                )
            if bulk_delta > store_before.bulk_quantity + self.epsilon:
                raise InsufficientStockError(
                    str(part.id), str(store), bulk_delta,
                    store_before.bulk_quantity, part.base_unit.symbol,
                )

            moved = self._describe(part, container_delta, bulk_delta)
            ids, balances, ref = self._move(
                uow,
                part,
                MovementType.TRANSFER_TO_VAN,
                source=store,
                destination=van,
                container_delta=container_delta,
                bulk_delta=bulk_delta,
                performed_by=performed_by,
                performed_by_name=performed_by_name,
                source_note=notes or f"Transferred {moved} to Van #{_short_id(van_stock_id)}",
                destination_note=notes or f"Received {moved} from Store",
            )

        return StockOperationResult(
            operation="transfer_to_van",
            part_id=part.id,
            movement_ids=ids,
            balances=balances,
            transfer_ref=ref,
        )

    def return_to_store(
        self,
        part_id: UUID,
        van_stock_id: UUID,
        *,
        performed_by: str,
        performed_by_name: str,
        container_qty: int | Decimal | str | None = None,
        bulk_qty: Decimal | str | None = None,
        notes: str | None = None,
    ) -> StockOperationResult:
        """
        Move stock from a Van back to the Store.

        With no amounts, the Van's entire positive on-hand is returned.
        Explicit amounts are validated against the Van's on-hand.
        """
        performed_by = _require_text(performed_by, "performed_by")
        performed_by_name = _require_text(performed_by_name, "performed_by_name")
        van = Location.van(van_stock_id)
        store = Location.store()
        explicit = container_qty is not None or bulk_qty is not None
        if explicit:
            containers = 0 if container_qty is None else as_container_count(container_qty, "container_qty")
            bulk = ZERO if bulk_qty is None else as_quantity(bulk_qty, "bulk_qty")
            if containers < 0:
                raise ValidationError("container_qty", "must not be negative")
            if bulk < ZERO:
                raise ValidationError("bulk_qty", "must not be negative")

        with self._uow_factory() as uow:
            part = self._liquid_part(uow, part_id)
            uow.aggregates.get_for_update(part.id, store)
            van_before = uow.aggregates.get_for_update(part.id, van)

            if not explicit:
                containers = max(van_before.container_quantity, 0)
                bulk = max(van_before.bulk_quantity, ZERO)
            if containers == 0 and bulk == ZERO:
                raise ValidationError("quantity", f"nothing to return from {van}")
            if containers:
                self._require_container_size(part)
            if containers > van_before.container_quantity:
                raise InsufficientStockError(
                    str(part.id), str(van), containers,
                    van_before.container_quantity, CONTAINERS,
                )
            if bulk > van_before.bulk_quantity + self.epsilon:
                raise InsufficientStockError(
                    str(part.id), str(van), bulk,
                    van_before.bulk_quantity, part.base_unit.symbol,
                )

            moved = self._describe(part, containers, bulk)
            ids, balances, ref = self._move(
                uow,
                part,
                MovementType.RETURN_TO_STORE,
                source=van,
                destination=store,
                container_delta=containers,
                bulk_delta=bulk,
                performed_by=performed_by,
                performed_by_name=performed_by_name,
                source_note=notes or f"Returned {moved} to Store",
                destination_note=notes or f"Returned {moved} from Van #{_short_id(van_stock_id)}",
            )

        return StockOperationResult(
            operation="return_to_store",
            part_id=part.id,
            movement_ids=ids,
            balances=balances,
            transfer_ref=ref,
        )

    def _move(
        self,
        uow: UnitOfWork,
        part: PartRecord,
        movement_type: MovementType,
        *,
        source: Location,
        destination: Location,
        container_delta: int,
        bulk_delta: Decimal,
        performed_by: str,
        performed_by_name: str,
        source_note: str,
        destination_note: str,
    ) -> tuple[tuple[UUID, UUID], tuple[CurrentBalance, CurrentBalance], UUID]:
        """Debit ``source`` and credit ``destination`` with linked entries."""
        # Store row first, matching the lock order
        if source.is_store:
            source_after = self._apply(uow, part, source, -container_delta, -bulk_delta)
            destination_after = self._apply(uow, part, destination, container_delta, bulk_delta)
        else:
            destination_after = self._apply(uow, part, destination, container_delta, bulk_delta)
            source_after = self._apply(uow, part, source, -container_delta, -bulk_delta)

        snapshots = {**_snapshot(source, source_after), **_snapshot(destination, destination_after)}
        transfer_ref = uuid4()
        performed_at = self._clock.now()
        common = {
            "part_id": part.id,
            "movement_type": movement_type,
            "performed_by": performed_by,
            "performed_by_name": performed_by_name,
            "performed_at": performed_at,
            "transfer_ref": transfer_ref,
            **snapshots,
        }
        debit_id = uow.movements.append(
            MovementRecord(
                container_qty_change=-container_delta,
                bulk_qty_change=-bulk_delta,
                van_stock_id=source.van_stock_id,
                notes=source_note,
                **common,
            )
        )
        credit_id = uow.movements.append(
            MovementRecord(
                container_qty_change=container_delta,
                bulk_qty_change=bulk_delta,
                van_stock_id=destination.van_stock_id,
                notes=destination_note,
                **common,
            )
        )
        size = part.container_size
        return (
            (debit_id, credit_id),
            (
                CurrentBalance.of(part.id, source, source_after, size),
                CurrentBalance.of(part.id, destination, destination_after, size),
            ),
            transfer_ref,
        )

    @staticmethod
    def _describe(part: PartRecord, containers: int, bulk: Decimal) -> str:
        pieces = []
        if containers:
            pieces.append(f"{containers} sealed {part.container_unit.value}(s)")
        if bulk:
            pieces.append(f"{_fmt(bulk)} {part.base_unit.symbol}")
        return " + ".join(pieces)

    # =========================================================================
    # Adjustment / Initial stock
    # =========================================================================

    def adjust(
        self,
        part_id: UUID,
        location: Location,
        container_delta: int | Decimal | str,
        bulk_delta: Decimal | str,
        notes: str,
        *,
        performed_by: str,
        performed_by_name: str,
    ) -> StockOperationResult:
        """Administrative correction at one location; ``notes`` are mandatory."""
        performed_by = _require_text(performed_by, "performed_by")
        performed_by_name = _require_text(performed_by_name, "performed_by_name")
        if notes is None or not str(notes).strip():
            raise ValidationError("notes", "are required for an adjustment")
        containers = as_container_count(container_delta, "container_delta")
        bulk = as_quantity(bulk_delta, "bulk_delta")
        if containers == 0 and bulk == ZERO:
            raise ValidationError("quantity", "an adjustment must change stock")

        with self._uow_factory() as uow:
            part = self._liquid_part(uow, part_id)
            if containers:
                self._require_container_size(part)
            before = uow.aggregates.get_for_update(part.id, location)
            if location.is_store:
                if before.container_quantity + containers < 0:
                    raise InsufficientStockError(
                        str(part.id), str(location), -containers,
                        before.container_quantity, CONTAINERS,
                    )
                if before.bulk_quantity + bulk < -self.epsilon:
                    raise InsufficientStockError(
                        str(part.id), str(location), -bulk,
                        before.bulk_quantity, part.base_unit.symbol,
                    )
            after = self._apply(uow, part, location, containers, bulk, allow_negative=True)
            movement_id = uow.movements.append(
                MovementRecord(
                    part_id=part.id,
                    movement_type=MovementType.ADJUSTMENT,
                    performed_by=performed_by,
                    performed_by_name=performed_by_name,
                    performed_at=self._clock.now(),
                    container_qty_change=containers,
                    bulk_qty_change=bulk,
                    van_stock_id=location.van_stock_id,
                    notes=str(notes).strip(),
                    **_snapshot(location, after),
                )
            )

        return StockOperationResult(
            operation="adjustment",
            part_id=part.id,
            movement_ids=(movement_id,),
            balances=(CurrentBalance.of(part.id, location, after, part.container_size),),
        )

    def record_initial_stock(
        self,
        part_id: UUID,
        location: Location,
        container_qty: int | Decimal | str = 0,
        bulk_qty: Decimal | str = ZERO,
        *,
        performed_by: str,
        performed_by_name: str,
        container_size: Decimal | str | None = None,
        notes: str | None = None,
    ) -> StockOperationResult:
        """Seed a location's opening balance with an ``initial_stock`` entry."""
        performed_by = _require_text(performed_by, "performed_by")
        performed_by_name = _require_text(performed_by_name, "performed_by_name")
        containers = as_container_count(container_qty, "container_qty")
        bulk = as_quantity(bulk_qty, "bulk_qty")
        if containers < 0:
            raise ValidationError("container_qty", "must not be negative")
        if bulk < ZERO:
            raise ValidationError("bulk_qty", "must not be negative")
        if containers == 0 and bulk == ZERO:
            raise ValidationError("quantity", "initial stock must not be empty")
        size = None
        if container_size is not None:
            size = as_quantity(container_size, "container_size")
            if size <= ZERO:
                raise ValidationError("container_size", "must be greater than zero")

        with self._uow_factory() as uow:
            part = self._liquid_part(uow, part_id, for_update=True)
            if containers and part.container_size is None:
                if size is None:
                    raise ValidationError("container_size", "is required when containers are recorded")
                part = uow.parts.set_container_size(part.id, size)
            elif size is not None and part.container_size is not None and not quantities_equal(
                size, part.container_size, self.epsilon
            ):
                raise ValidationError(
                    "container_size",
                    f"{_fmt(size)} differs from the part's container size {_fmt(part.container_size)}",
                )
            uow.aggregates.get_for_update(part.id, location)
            after = self._apply(uow, part, location, containers, bulk)
            movement_id = uow.movements.append(
                MovementRecord(
                    part_id=part.id,
                    movement_type=MovementType.INITIAL_STOCK,
                    performed_by=performed_by,
                    performed_by_name=performed_by_name,
                    performed_at=self._clock.now(),
                    container_qty_change=containers,
                    bulk_qty_change=bulk,
                    van_stock_id=location.van_stock_id,
                    notes=notes or f"Initial stock {self._describe(part, containers, bulk)}",
                    **_snapshot(location, after),
                )
            )

        return StockOperationResult(
            operation="initial_stock",
            part_id=part.id,
            movement_ids=(movement_id,),
            balances=(CurrentBalance.of(part.id, location, after, part.container_size),),
        )

    # =========================================================================
    # Shared steps
    # =========================================================================

    def _liquid_part(
        self, uow: UnitOfWork, part_id: UUID, *, for_update: bool = False
    ) -> PartRecord:
        part = uow.parts.get_for_update(part_id) if for_update else uow.parts.get(part_id)
        if not part.is_liquid:
            raise NotLiquidPartError(str(part_id))
        return part

    @staticmethod
    def _require_container_size(part: PartRecord) -> Decimal:
        if part.container_size is None or part.container_size <= ZERO:
            raise ValidationError(
                "container_size", f"part {part.code} has no container size set"
            )
        return part.container_size

    def _apply(
        self,
        uow: UnitOfWork,
        part: PartRecord,
        location: Location,
        container_delta: int,
        bulk_delta: Decimal,
        *,
        allow_negative: bool = False,
    ) -> StockBalance:
        """
        Increment the aggregate in place and guard the stored result.

        Sealed containers can never go below zero.  Loose bulk may only go
        below zero at a Van, and only when ``allow_negative`` is set.
        """
        after = uow.aggregates.increment(part.id, location, container_delta, bulk_delta)
        if after.container_quantity < 0:
            raise InsufficientStockError(
                str(part.id), str(location), -container_delta,
                after.container_quantity - container_delta, CONTAINERS,
            )
        bulk_floor_breached = after.bulk_quantity < -self.epsilon
        if bulk_floor_breached and (location.is_store or not allow_negative):
            raise InsufficientStockError(
                str(part.id), str(location), -bulk_delta,
                after.bulk_quantity - bulk_delta, part.base_unit.symbol,
            )
        return after

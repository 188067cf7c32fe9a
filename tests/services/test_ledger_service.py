"""
Tests for the LiquidLedgerService facade.

Covers:
- The receive / open / transfer / van usage scenario on every backend
- Running-balance ledger views and reconciliation
- Catalogue registration
- Structured logging around every operation
- Construction from configuration
- Ledger order following the sequence counter rather than timestamps
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from fluid_config.schema import DatabaseSettings, LedgerConfig
from fluid_kernel.domain.dtos import NegativeBalanceWarning
from fluid_kernel.domain.location import Location
from fluid_kernel.domain.quantity import StockBalance
from fluid_kernel.exceptions import (
    InsufficientStockError,
    PartNotFoundError,
    ValidationError,
)
from fluid_kernel.repositories.sqlalchemy_store import SqlAlchemyUnitOfWork
from fluid_services.ledger_service import LiquidLedgerService

STORE = Location.store()


def _run_scenario(service, part, actor, van_id):
    """Receive 2 x 200 L, open one, send 150 L to a van, use 160 L there."""
    service.receive(part.id, 2, "200", None, "1000", **actor)
    service.break_container(part.id, STORE, 1, **actor)
    service.transfer_to_van(part.id, van_id, "150", **actor)
    return service.use_internal(part.id, Location.van(van_id), "160", "Job-9", **actor)


class TestScenario:
    def test_balances_after_each_step(self, any_service, any_oil, actor, van_id):
        van = Location.van(van_id)

        received = any_service.receive(any_oil.id, 2, "200", None, "1000", **actor)
        assert received.balance_at(STORE).total_base_units == Decimal("400")
        assert received.avg_cost_per_base_unit == Decimal("2.5")

        opened = any_service.break_container(any_oil.id, STORE, 1, **actor)
        assert opened.balance_at(STORE).container_quantity == 1
        assert opened.balance_at(STORE).bulk_quantity == Decimal("200")

        moved = any_service.transfer_to_van(any_oil.id, van_id, "150", **actor)
        assert moved.balance_at(STORE).container_quantity == 1
        assert moved.balance_at(STORE).bulk_quantity == Decimal("50")
        assert moved.balance_at(van).container_quantity == 0
        assert moved.balance_at(van).bulk_quantity == Decimal("150")

        used = any_service.use_internal(any_oil.id, van, "160", "Job-9", **actor)
        assert used.balance_at(van).bulk_quantity == Decimal("-10")
        (warning,) = used.warnings
        assert isinstance(warning, NegativeBalanceWarning)

    def test_store_ledger_view(self, any_service, any_oil, actor, van_id):
        _run_scenario(any_service, any_oil, actor, van_id)

        rows = any_service.get_ledger(any_oil.id, STORE)

        assert [row.label for row in rows] == ["Purchase", "Open Container", "Van Transfer"]
        assert [row.balance_after for row in rows] == [
            Decimal("400"), Decimal("400"), Decimal("250"),
        ]
        assert [row.is_positive for row in rows] == [True, True, False]
        assert all(row.from_snapshot for row in rows)

    def test_van_ledger_view(self, any_service, any_oil, actor, van_id):
        _run_scenario(any_service, any_oil, actor, van_id)

        rows = any_service.get_ledger(any_oil.id, Location.van(van_id))

        assert [row.label for row in rows] == ["Received from Warehouse", "Job Usage"]
        assert [row.balance_after for row in rows] == [Decimal("150"), Decimal("-10")]
        assert rows[1].reference == "Job #Job-9"
        assert rows[1].is_negative_balance

    def test_part_wide_ledger(self, any_service, any_oil, actor, van_id):
        _run_scenario(any_service, any_oil, actor, van_id)

        rows = any_service.get_ledger(any_oil.id)

        assert [row.balance_after for row in rows] == [
            Decimal("400"), Decimal("400"), Decimal("250"), Decimal("400"), Decimal("240"),
        ]

    def test_ledger_is_reproducible(self, any_service, any_oil, actor, van_id):
        _run_scenario(any_service, any_oil, actor, van_id)
        assert any_service.get_ledger(any_oil.id, STORE) == any_service.get_ledger(any_oil.id, STORE)

    def test_reconciles_at_every_location(self, any_service, any_oil, actor, van_id):
        _run_scenario(any_service, any_oil, actor, van_id)

        for location in (STORE, Location.van(van_id)):
            result = any_service.verify_balance(any_oil.id, location)
            assert result.is_consistent, location

    def test_sequences_are_strictly_increasing(self, any_service, any_oil, actor, van_id):
        _run_scenario(any_service, any_oil, actor, van_id)
        sequences = [entry.sequence for entry in any_service.get_movements(any_oil.id)]
        assert sequences == sorted(sequences)
        assert len(set(sequences)) == len(sequences)

    def test_movement_paging(self, any_service, any_oil, actor, van_id):
        _run_scenario(any_service, any_oil, actor, van_id)
        everything = any_service.get_movements(any_oil.id)
        page = any_service.get_movements(any_oil.id, limit=2, offset=1)
        assert [e.id for e in page] == [e.id for e in everything[1:3]]


class TestReads:
    def test_untouched_location_reads_zero(self, service, coolant):
        balance = service.get_current_balance(coolant.id, Location.van(uuid4()))
        assert balance.container_quantity == 0
        assert balance.total_base_units == Decimal("0")

    def test_list_balances_store_first(self, service, oil, actor, van_id):
        _run_scenario(service, oil, actor, van_id)
        balances = service.list_balances(oil.id)
        assert [b.location for b in balances] == [STORE, Location.van(van_id)]

    def test_format_stock(self, service, oil, actor, van_id):
        _run_scenario(service, oil, actor, van_id)
        assert service.format_stock(oil.id, STORE) == "250.0 L"
        assert service.format_stock(oil.id) == "240.0 L"
        assert service.format_stock(oil.id, Location.van(van_id)) == "Out of stock"

    def test_mismatch_detected(self, service, memory_store, coolant, actor, captured_logs):
        service.record_initial_stock(coolant.id, STORE, 0, "10", **actor)
        memory_store.aggregates[(coolant.id, STORE)] = StockBalance(0, Decimal("12"))

        result = service.verify_balance(coolant.id, STORE)

        assert not result.is_consistent
        assert result.difference == Decimal("2")
        assert any(r["message"] == "balance_mismatch_detected" for r in captured_logs())

    def test_unknown_part(self, service):
        with pytest.raises(PartNotFoundError):
            service.get_ledger(uuid4())


class TestRegisterPart:
    def test_registers_liquid_part(self, service):
        part = service.register_part(
            "Gear Oil 80W-90", "GO-8090", base_unit="liter", container_unit="drum",
            container_size="208",
        )
        assert part.is_liquid
        assert part.container_size == Decimal("208")
        assert service.get_part(part.id) == part

    def test_duplicate_code(self, service, oil):
        with pytest.raises(ValidationError):
            service.register_part("Another Oil", oil.code)

    @pytest.mark.parametrize("size", ["0", "-1"])
    def test_bad_container_size(self, service, size):
        with pytest.raises(ValidationError):
            service.register_part("Oil", "OIL-X", container_size=size)

    def test_unknown_unit(self, service):
        with pytest.raises(ValidationError):
            service.register_part("Oil", "OIL-X", base_unit="hogshead")

    def test_name_required(self, service):
        with pytest.raises(ValidationError):
            service.register_part("  ", "OIL-X")


class TestOperationLogging:
    def test_started_and_completed(self, service, coolant, actor, captured_logs):
        service.record_initial_stock(coolant.id, STORE, 0, "10", **actor)

        logs = captured_logs()
        started = [r for r in logs if r["message"] == "stock_operation_started"]
        completed = [r for r in logs if r["message"] == "stock_operation_completed"]
        assert len(started) == len(completed) == 1
        assert completed[0]["operation"] == "initial_stock"
        assert completed[0]["actor_id"] == actor["performed_by"]
        assert completed[0]["part_id"] == str(coolant.id)
        assert completed[0]["location"] == "store"
        assert completed[0]["movement_count"] == 1
        assert "duration_ms" in completed[0]
        assert started[0]["correlation_id"] == completed[0]["correlation_id"]

    def test_movement_logged_inside_operation_context(self, service, coolant, actor, captured_logs):
        service.record_initial_stock(coolant.id, STORE, 0, "10", **actor)

        appended = [r for r in captured_logs() if r["message"] == "movement_appended"]
        assert appended[0]["operation"] == "initial_stock"
        assert appended[0]["correlation_id"]

    def test_each_operation_gets_its_own_correlation_id(self, service, coolant, actor, captured_logs):
        service.record_initial_stock(coolant.id, STORE, 0, "10", **actor)
        service.use_internal(coolant.id, STORE, "1", "Job-1", **actor)

        ids = {r["correlation_id"] for r in captured_logs() if r["message"] == "stock_operation_started"}
        assert len(ids) == 2

    def test_rejection_logged_with_code(self, service, coolant, actor, captured_logs):
        with pytest.raises(InsufficientStockError):
            service.use_internal(coolant.id, STORE, "5", "Job-1", **actor)

        rejected = [r for r in captured_logs() if r["message"] == "stock_operation_rejected"]
        assert rejected[0]["error_code"] == "INSUFFICIENT_STOCK"

    def test_context_cleared_after_operation(self, service, coolant, actor):
        from fluid_kernel.logging_config import LogContext

        service.record_initial_stock(coolant.id, STORE, 0, "10", **actor)
        assert LogContext.get_all() == {}


class TestConstruction:
    def test_from_config_uses_sql_storage(self, actor, clock):
        config = LedgerConfig(
            config_id="test",
            version=1,
            database=DatabaseSettings(url="sqlite:///:memory:"),
        )
        service = LiquidLedgerService.from_config(config, clock=clock)

        part = service.register_part("Brake Fluid DOT4", "BF-DOT4", container_size="1")
        service.receive(part.id, 12, "1", None, "60", **actor)

        assert service.get_current_balance(part.id, STORE).container_quantity == 12
        assert service.settings == config.ledger

    def test_in_memory_default_clock(self):
        service = LiquidLedgerService.in_memory()
        assert service.clock.now().tzinfo is not None


class TestLedgerOrder:
    @pytest.fixture(params=["memory", "sqlite"])
    def hand_clock_service(self, request, deterministic_clock):
        """Service stamped by a clock that is moved by hand, backwards included."""
        if request.param == "memory":
            return LiquidLedgerService.in_memory(clock=deterministic_clock)
        factory = request.getfixturevalue("session_factory")
        return LiquidLedgerService(
            lambda: SqlAlchemyUnitOfWork(factory), clock=deterministic_clock
        )

    def test_entries_follow_commit_order_not_timestamps(
        self, hand_clock_service, deterministic_clock, actor
    ):
        part = hand_clock_service.register_part("Hydraulic Oil ISO 46", "OIL-HYD-46")
        deterministic_clock.advance(60)
        hand_clock_service.receive(part.id, 0, None, "100", "200", **actor)
        # a writer whose clock lags the first one
        deterministic_clock.advance(-30)
        hand_clock_service.use_internal(part.id, STORE, "40", "Job-1", **actor)

        rows = hand_clock_service.get_ledger(part.id, STORE)
        assert [row.change for row in rows] == [Decimal("100"), Decimal("-40")]
        assert [row.balance_after for row in rows] == [Decimal("100"), Decimal("60")]
        assert rows[1].performed_at < rows[0].performed_at

        movements = hand_clock_service.get_movements(part.id)
        assert [m.bulk_qty_change for m in movements] == [Decimal("100"), Decimal("-40")]
        assert hand_clock_service.verify_balance(part.id, STORE).is_consistent

"""
Concurrency tests for the increment-in-place aggregates.

These tests verify that invariants hold when many writers hit the same
Location Aggregate at once:
- No lost updates: N concurrent receipts add exactly N units
- Store never negative: concurrent usage beyond stock is partly rejected
- Ledger and aggregate stay reconciled; sequences stay unique

The in-memory store and a file-backed SQLite database run everywhere.  The
PostgreSQL variants run only when DATABASE_URL points at PostgreSQL.

Skip with: pytest -m "not slow_locks"
"""

import time
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier, Event, Lock

import pytest
from sqlalchemy.pool import NullPool, StaticPool

from fluid_config.schema import DatabaseSettings, LedgerConfig
from fluid_kernel.db.engine import (
    create_engine_from_url,
    create_session_factory,
    create_tables,
    drop_tables,
)
from fluid_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from fluid_kernel.domain.clock import Clock
from fluid_kernel.domain.location import Location
from fluid_kernel.exceptions import InsufficientStockError
from fluid_kernel.repositories.sqlalchemy_store import SqlAlchemyUnitOfWork
from fluid_services.ledger_service import LiquidLedgerService

pytestmark = pytest.mark.slow_locks

STORE = Location.store()
WORKERS = 8


def _hammer(count: int, fn):
    """Run ``fn(i)`` for ``count`` items across WORKERS threads, released together."""
    barrier = Barrier(min(count, WORKERS))

    def _task(i):
        if i < WORKERS:
            barrier.wait(timeout=10)
        return fn(i)

    outcomes = []
    with ThreadPoolExecutor(max_workers=WORKERS) as pool:
        futures = [pool.submit(_task, i) for i in range(count)]
        for future in futures:
            try:
                outcomes.append(future.result())
            except InsufficientStockError as exc:
                outcomes.append(exc)
    return outcomes


def _assert_restocks(service, part, actor, count):
    outcomes = _hammer(
        count, lambda i: service.receive(part.id, 0, None, "1", "2", **actor)
    )

    assert all(not isinstance(o, Exception) for o in outcomes)
    balance = service.get_current_balance(part.id, STORE)
    assert balance.bulk_quantity == Decimal(count)
    movements = service.get_movements(part.id)
    assert len(movements) == count
    assert len({m.sequence for m in movements}) == count
    assert service.verify_balance(part.id, STORE).is_consistent


def _assert_contended_usage(service, part, actor, stock, attempts):
    service.record_initial_stock(part.id, STORE, 0, str(stock), **actor)

    outcomes = _hammer(
        attempts,
        lambda i: service.use_internal(part.id, STORE, "1", f"Job-{i}", **actor),
    )

    rejected = [o for o in outcomes if isinstance(o, InsufficientStockError)]
    assert len(rejected) == attempts - stock
    balance = service.get_current_balance(part.id, STORE)
    assert balance.bulk_quantity == Decimal("0")
    assert service.verify_balance(part.id, STORE).is_consistent


class TestInMemoryConcurrency:
    def test_no_lost_restocks(self, service, coolant, actor):
        _assert_restocks(service, coolant, actor, 50)

    def test_store_never_negative_under_contention(self, service, actor):
        part = service.register_part("Degreaser", "DGR-1")
        _assert_contended_usage(service, part, actor, stock=10, attempts=25)

    def test_van_usage_and_transfers_interleave(self, service, coolant, actor, van_id):
        van = Location.van(van_id)
        service.record_initial_stock(coolant.id, STORE, 0, "100", **actor)

        def _work(i):
            if i % 2:
                return service.transfer_to_van(coolant.id, van_id, "2", **actor)
            return service.use_internal(coolant.id, van, "1", f"Job-{i}", **actor)

        _hammer(40, _work)

        store = service.get_current_balance(coolant.id, STORE)
        on_van = service.get_current_balance(coolant.id, van)
        assert store.bulk_quantity == Decimal("60")
        assert on_van.bulk_quantity == Decimal("20")
        assert service.verify_balance(coolant.id, van).is_consistent


class GatedClock(Clock):
    """Holds the first ``now()`` after ``arm()`` until ``release`` is set."""

    def __init__(self, source: Clock):
        self._source = source
        self._armed = False
        self._lock = Lock()
        self.reached = Event()
        self.release = Event()

    def arm(self) -> None:
        self._armed = True

    def now(self):
        with self._lock:
            hold, self._armed = self._armed, False
        if hold:
            self.reached.set()
            assert self.release.wait(timeout=10)
        return self._source.now()


class TestFileSqliteConcurrency:
    @pytest.fixture
    def gated_clock(self, clock):
        return GatedClock(clock)

    @pytest.fixture
    def file_service(self, tmp_path, gated_clock):
        config = LedgerConfig(
            config_id="file-sqlite",
            version=1,
            database=DatabaseSettings(url=f"sqlite:///{tmp_path / 'ledger.db'}"),
        )
        yield LiquidLedgerService.from_config(config, clock=gated_clock)
        unregister_immutability_listeners()

    def test_only_memory_databases_share_a_connection(self, tmp_path):
        memory = create_engine_from_url("sqlite:///:memory:")
        on_disk = create_engine_from_url(f"sqlite:///{tmp_path / 'pools.db'}")
        assert isinstance(memory.pool, StaticPool)
        assert isinstance(on_disk.pool, NullPool)
        memory.dispose()
        on_disk.dispose()

    def test_failed_operation_leaves_concurrent_receipt_intact(
        self, file_service, gated_clock, actor
    ):
        part = file_service.register_part(
            "Coolant Concentrate",
            "CLT-FILE",
            container_unit="jerry_can",
            container_size="20",
        )
        gated_clock.arm()

        with ThreadPoolExecutor(max_workers=2) as pool:
            # The receipt stops after incrementing the Store, before its entry.
            receipt = pool.submit(
                file_service.receive, part.id, 0, None, "100", "250", **actor
            )
            assert gated_clock.reached.wait(timeout=10)
            opening = pool.submit(
                file_service.break_container, part.id, STORE, 1, **actor
            )
            time.sleep(0.2)
            gated_clock.release.set()

            receipt.result(timeout=30)
            with pytest.raises(InsufficientStockError):
                opening.result(timeout=30)

        balance = file_service.get_current_balance(part.id, STORE)
        assert balance.bulk_quantity == Decimal("100")
        movements = file_service.get_movements(part.id)
        assert [m.bulk_qty_change for m in movements] == [Decimal("100")]
        assert file_service.verify_balance(part.id, STORE).is_consistent

    def test_no_lost_restocks(self, file_service, actor):
        part = file_service.register_part("Coolant", "CLT-FILE")
        _assert_restocks(file_service, part, actor, 24)

    def test_store_never_negative_under_contention(self, file_service, actor):
        part = file_service.register_part("Degreaser", "DGR-FILE")
        _assert_contended_usage(file_service, part, actor, stock=6, attempts=16)


@pytest.mark.postgres
class TestPostgresConcurrency:
    @pytest.fixture
    def pg_service(self, postgres_url, clock):
        engine = create_engine_from_url(postgres_url)
        drop_tables(engine)
        create_tables(engine)
        register_immutability_listeners()
        factory = create_session_factory(engine)
        yield LiquidLedgerService(lambda: SqlAlchemyUnitOfWork(factory), clock=clock)
        drop_tables(engine)
        engine.dispose()

    def test_no_lost_restocks(self, pg_service, actor):
        part = pg_service.register_part("Coolant", "CLT-PG")
        _assert_restocks(pg_service, part, actor, 40)

    def test_store_never_negative_under_contention(self, pg_service, actor):
        part = pg_service.register_part("Degreaser", "DGR-PG")
        _assert_contended_usage(pg_service, part, actor, stock=10, attempts=25)

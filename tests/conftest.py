"""
Pytest fixtures for the liquid ledger test suite.

Provides:
- Structured log capture
- Deterministic clocks
- In-memory and SQLite-backed ledger services
- Registered parts and van ids

Environment Variables:
- DATABASE_URL: when it points at PostgreSQL, tests marked ``postgres`` run
  against it; otherwise they are skipped.
"""

import json
import logging
import os
from io import StringIO
from uuid import uuid4

import pytest

from fluid_config.schema import LedgerSettings
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
from fluid_kernel.domain.clock import DeterministicClock, MonotonicClock
from fluid_kernel.domain.location import Location
from fluid_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from fluid_kernel.repositories.memory_store import InMemoryStore
from fluid_kernel.repositories.sqlalchemy_store import SqlAlchemyUnitOfWork
from fluid_services.ledger_service import LiquidLedgerService

TEST_ACTOR_ID = "tech-0001"
TEST_ACTOR_NAME = "Test Technician"
ACTOR = {"performed_by": TEST_ACTOR_ID, "performed_by_name": TEST_ACTOR_NAME}


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture fluid_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, service):
            service.receive(...)
            logs = captured_logs()
            assert any(r["message"] == "stock_operation_completed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("fluid_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Clock / settings
# =============================================================================


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


@pytest.fixture
def clock(deterministic_clock):
    """Strictly increasing clock driven by the deterministic one."""
    return MonotonicClock(deterministic_clock)


@pytest.fixture
def ledger_settings():
    return LedgerSettings()


# =============================================================================
# Storage
# =============================================================================


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def sqlite_engine():
    engine = create_engine_from_url("sqlite:///:memory:")
    create_tables(engine)
    register_immutability_listeners()
    yield engine
    unregister_immutability_listeners()
    drop_tables(engine)
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return create_session_factory(sqlite_engine)


@pytest.fixture
def postgres_url():
    url = os.environ.get("DATABASE_URL", "")
    if not url.startswith("postgresql"):
        pytest.skip("DATABASE_URL does not point at PostgreSQL")
    return url


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def service(memory_store, clock, ledger_settings):
    """Ledger service over the in-memory store."""
    return LiquidLedgerService.in_memory(memory_store, clock=clock, settings=ledger_settings)


@pytest.fixture
def sql_service(session_factory, clock, ledger_settings):
    """Ledger service over SQLite."""
    return LiquidLedgerService(
        lambda: SqlAlchemyUnitOfWork(session_factory),
        clock=clock,
        settings=ledger_settings,
    )


@pytest.fixture(params=["memory", "sqlite"])
def any_service(request):
    """The same ledger service over each storage backend."""
    if request.param == "memory":
        return request.getfixturevalue("service")
    return request.getfixturevalue("sql_service")


# =============================================================================
# Catalogue data
# =============================================================================


@pytest.fixture
def actor():
    return dict(ACTOR)


@pytest.fixture
def van_id():
    return uuid4()


@pytest.fixture
def store():
    return Location.store()


@pytest.fixture
def van(van_id):
    return Location.van(van_id)


@pytest.fixture
def oil(service):
    """Liquid part with no container size yet."""
    return service.register_part("Hydraulic Oil ISO 46", "OIL-HYD-46")


@pytest.fixture
def coolant(service):
    """Liquid part sold in 20 L jerry cans."""
    return service.register_part(
        "Coolant Concentrate",
        "CLT-CONC",
        container_unit="jerry_can",
        container_size="20",
    )


@pytest.fixture
def any_oil(any_service):
    return any_service.register_part("Hydraulic Oil ISO 46", "OIL-HYD-46")


@pytest.fixture
def filter_part(service):
    """Unit-counted (non-liquid) part."""
    return service.register_part("Oil Filter", "FLT-100", is_liquid=False)

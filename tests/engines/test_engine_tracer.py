"""Tests for the FLUID_ENGINE_TRACE decorator."""

from decimal import Decimal
from uuid import uuid4

import pytest

from fluid_engines.reconciliation import reconcile_balance
from fluid_engines.tracer import input_fingerprint, traced_engine
from fluid_kernel.domain.location import Location
from fluid_kernel.domain.quantity import StockBalance


def _traces(captured_logs):
    return [r for r in captured_logs() if r["message"] == "FLUID_ENGINE_TRACE"]


class TestFingerprint:
    def test_stable_for_equal_inputs(self):
        a = input_fingerprint(("at", "balance"), {"at": Location.store(), "balance": StockBalance(1, Decimal("2"))})
        b = input_fingerprint(("at", "balance"), {"balance": StockBalance(1, Decimal("2")), "at": Location.store()})
        assert a == b
        assert len(a) == 16

    def test_location_changes_fingerprint(self):
        store = input_fingerprint(("at",), {"at": Location.store()})
        van = input_fingerprint(("at",), {"at": Location.van(uuid4())})
        assert store != van

    def test_missing_field_is_null(self):
        assert input_fingerprint(("x",), {}) == input_fingerprint(("x",), {"x": None})


class TestTracedEngine:
    def test_positional_and_keyword_calls_match(self, captured_logs):
        @traced_engine("demo", "2.1", fingerprint_fields=("a", "b"))
        def add(a, b):
            return a + b

        add(1, 2)
        add(a=1, b=2)

        first, second = _traces(captured_logs)
        assert first["engine_name"] == "demo"
        assert first["engine_version"] == "2.1"
        assert first["input_fingerprint"] == second["input_fingerprint"]

    def test_summary_fields(self, captured_logs):
        part_id = uuid4()
        reconcile_balance(
            [],
            part_id=part_id,
            location=Location.store(),
            cached=StockBalance(0, Decimal("0")),
            container_size=None,
        )

        (trace,) = _traces(captured_logs)
        assert trace["engine_name"] == "reconciliation"
        assert trace["entry_count"] == 0
        assert trace["is_consistent"] is True
        assert "duration_ms" in trace

    def test_failure_emits_nothing(self, captured_logs):
        @traced_engine("broken", "1.0")
        def explode():
            raise ArithmeticError("no")

        with pytest.raises(ArithmeticError):
            explode()
        assert _traces(captured_logs) == []

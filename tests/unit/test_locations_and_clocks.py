"""
Tests for stock locations and the injected clocks.

Covers:
- Store / Van identity and the persisted location key
- DeterministicClock control
- MonotonicClock strict ordering, including a backwards wall-clock step
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from fluid_kernel.domain.clock import DeterministicClock, MonotonicClock
from fluid_kernel.domain.location import STORE_KEY, Location
from fluid_kernel.exceptions import ValidationError


class TestLocation:
    def test_store(self):
        store = Location.store()
        assert store.is_store
        assert not store.is_van
        assert store.key == STORE_KEY
        assert str(store) == "Store"

    def test_van(self):
        van_id = uuid4()
        van = Location.van(van_id)
        assert van.is_van
        assert van.van_stock_id == van_id
        assert van.key == f"van:{van_id}"

    def test_van_requires_id(self):
        with pytest.raises(ValidationError):
            Location.van(None)

    def test_key_round_trip(self):
        van = Location.van(uuid4())
        assert Location.from_key(van.key) == van
        assert Location.from_key("store") == Location.store()

    def test_unknown_key(self):
        with pytest.raises(ValidationError):
            Location.from_key("warehouse-2")

    def test_locations_are_hashable_values(self):
        van_id = uuid4()
        balances = {Location.van(van_id): 1}
        assert balances[Location.van(van_id)] == 1


class TestDeterministicClock:
    def test_fixed_until_advanced(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now()

    def test_advance_and_tick(self):
        start = datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)
        clock = DeterministicClock(start)
        clock.advance(30)
        assert clock.now() == start + timedelta(seconds=30)
        assert clock.tick() == start + timedelta(seconds=31)

    def test_set_time(self):
        clock = DeterministicClock()
        target = datetime(2030, 1, 1, tzinfo=timezone.utc)
        clock.advance(5)
        clock.set_time(target)
        assert clock.now() == target

    def test_timezone_aware(self):
        assert DeterministicClock().now().tzinfo is not None

    def test_naive_time_rejected(self):
        with pytest.raises(ValueError):
            DeterministicClock(datetime(2025, 1, 1))

    def test_advance_by_timedelta(self):
        clock = DeterministicClock()
        start = clock.now()
        clock.advance(timedelta(milliseconds=5))
        assert clock.now() - start == timedelta(milliseconds=5)


class TestMonotonicClock:
    def test_same_instant_is_bumped(self):
        source = DeterministicClock()
        clock = MonotonicClock(source)
        first = clock.now()
        second = clock.now()
        assert second == first + MonotonicClock.RESOLUTION

    def test_backwards_step_is_absorbed(self):
        source = DeterministicClock(datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc))
        clock = MonotonicClock(source)
        first = clock.now()
        source.set_time(datetime(2025, 6, 1, 11, 0, tzinfo=timezone.utc))
        assert clock.now() > first

    def test_follows_source_forward(self):
        source = DeterministicClock()
        clock = MonotonicClock(source)
        clock.now()
        source.advance(10)
        assert clock.now() == source.now()
        assert clock.last_issued == source.now()

"""
Tests for Break-Container, Adjustment and Initial-Stock.

Covers:
- Opening containers (irreversible: containers only become bulk)
- Administrative corrections, mandatory notes, Store floor
- Seeding opening balances and container size adoption
"""

from decimal import Decimal

import pytest

from fluid_kernel.domain.location import Location
from fluid_kernel.domain.movement import MovementType
from fluid_kernel.exceptions import InsufficientStockError, ValidationError

STORE = Location.store()


class TestBreakContainer:
    def test_opens_one_container(self, service, coolant, actor):
        service.receive(coolant.id, 2, "20", None, "80", **actor)

        result = service.break_container(coolant.id, STORE, 1, **actor)

        balance = result.balance_at(STORE)
        assert balance.container_quantity == 1
        assert balance.bulk_quantity == Decimal("20")
        assert balance.total_base_units == Decimal("40")
        entry = service.get_movements(coolant.id)[-1]
        assert entry.movement_type == MovementType.BREAK_CONTAINER
        assert entry.store_container_qty_after == 1
        assert entry.store_bulk_qty_after == Decimal("20")

    def test_break_at_van(self, service, coolant, actor, van):
        service.record_initial_stock(coolant.id, van, 2, "0", **actor)
        result = service.break_container(coolant.id, van, 2, **actor)
        assert result.balance_at(van).container_quantity == 0
        assert result.balance_at(van).bulk_quantity == Decimal("40")
        entry = service.get_movements(coolant.id, van)[-1]
        assert entry.van_container_qty_after == 0
        assert entry.store_bulk_qty_after is None

    def test_cannot_open_more_than_held(self, service, coolant, actor):
        service.receive(coolant.id, 1, "20", None, "40", **actor)
        with pytest.raises(InsufficientStockError) as exc_info:
            service.break_container(coolant.id, STORE, 2, **actor)
        assert exc_info.value.unit == "containers"
        assert service.get_current_balance(coolant.id, STORE).container_quantity == 1

    @pytest.mark.parametrize("count", [0, -1, "1.5"])
    def test_invalid_count(self, service, coolant, actor, count):
        with pytest.raises(ValidationError):
            service.break_container(coolant.id, STORE, count, **actor)

    def test_needs_container_size(self, service, oil, actor):
        with pytest.raises(ValidationError) as exc_info:
            service.break_container(oil.id, STORE, 1, **actor)
        assert exc_info.value.field == "container_size"


class TestAdjustment:
    def test_positive_correction(self, service, coolant, actor):
        result = service.adjust(coolant.id, STORE, 0, "3.25", "stocktake surplus", **actor)

        assert result.balance_at(STORE).bulk_quantity == Decimal("3.25")
        entry = service.get_movements(coolant.id)[-1]
        assert entry.movement_type == MovementType.ADJUSTMENT
        assert entry.notes == "stocktake surplus"

    def test_notes_required(self, service, coolant, actor):
        with pytest.raises(ValidationError) as exc_info:
            service.adjust(coolant.id, STORE, 0, "1", "   ", **actor)
        assert exc_info.value.field == "notes"

    def test_must_change_something(self, service, coolant, actor):
        with pytest.raises(ValidationError):
            service.adjust(coolant.id, STORE, 0, "0", "nothing", **actor)

    def test_store_floor(self, service, coolant, actor):
        service.record_initial_stock(coolant.id, STORE, 1, "5", **actor)

        with pytest.raises(InsufficientStockError):
            service.adjust(coolant.id, STORE, 0, "-6", "spill", **actor)
        with pytest.raises(InsufficientStockError):
            service.adjust(coolant.id, STORE, -2, "0", "miscount", **actor)

        balance = service.get_current_balance(coolant.id, STORE)
        assert balance.container_quantity == 1
        assert balance.bulk_quantity == Decimal("5")

    def test_van_may_be_corrected_below_zero(self, service, coolant, actor, van):
        result = service.adjust(coolant.id, van, 0, "-5", "unreported usage", **actor)
        assert result.balance_at(van).bulk_quantity == Decimal("-5")

    def test_container_delta_needs_size(self, service, oil, actor):
        with pytest.raises(ValidationError):
            service.adjust(oil.id, STORE, 1, "0", "found a drum", **actor)

    def test_fractional_container_delta(self, service, coolant, actor):
        with pytest.raises(ValidationError):
            service.adjust(coolant.id, STORE, "0.5", "0", "half can", **actor)


class TestInitialStock:
    def test_seeds_location(self, service, coolant, actor):
        result = service.record_initial_stock(coolant.id, STORE, 4, "7", **actor)

        assert result.balance_at(STORE).total_base_units == Decimal("87")
        entry = service.get_movements(coolant.id)[-1]
        assert entry.movement_type == MovementType.INITIAL_STOCK
        assert entry.store_container_qty_after == 4

    def test_adopts_container_size(self, service, oil, actor):
        service.record_initial_stock(oil.id, STORE, 2, "0", container_size="208", **actor)
        assert service.get_part(oil.id).container_size == Decimal("208")

    def test_containers_need_a_size(self, service, oil, actor):
        with pytest.raises(ValidationError):
            service.record_initial_stock(oil.id, STORE, 2, "0", **actor)

    def test_size_mismatch(self, service, coolant, actor):
        with pytest.raises(ValidationError):
            service.record_initial_stock(coolant.id, STORE, 1, "0", container_size="25", **actor)

    def test_empty_seed_rejected(self, service, coolant, actor):
        with pytest.raises(ValidationError):
            service.record_initial_stock(coolant.id, STORE, 0, "0", **actor)

    def test_negative_seed_rejected(self, service, coolant, actor):
        with pytest.raises(ValidationError):
            service.record_initial_stock(coolant.id, STORE, 0, "-1", **actor)

    def test_bulk_only_seed_without_size(self, service, oil, actor):
        result = service.record_initial_stock(oil.id, STORE, 0, "12", **actor)
        assert result.balance_at(STORE).total_base_units == Decimal("12")

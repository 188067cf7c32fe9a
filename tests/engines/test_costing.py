"""
Tests for the costing engine.

Covers:
- Weighted average across receipts
- First receipt / empty stock behaviour
- Cost variance warnings and their thresholds
"""

from decimal import Decimal

import pytest

from fluid_engines.costing import (
    CostVarianceWarning,
    VarianceDirection,
    check_cost_variance,
    weighted_average_cost,
)


class TestWeightedAverage:
    def test_two_receipts(self):
        """10 units @ 5 then 10 units @ 7 averages to 6."""
        avg = weighted_average_cost(
            old_avg=Decimal("5"),
            old_total=Decimal("10"),
            received_units=Decimal("10"),
            received_cost=Decimal("7"),
        )
        assert avg == Decimal("6")

    def test_volume_weighted(self):
        avg = weighted_average_cost(
            old_avg=Decimal("2"),
            old_total=Decimal("300"),
            received_units=Decimal("100"),
            received_cost=Decimal("4"),
        )
        assert avg == Decimal("2.5")

    def test_first_receipt_takes_incoming_cost(self):
        avg = weighted_average_cost(
            old_avg=None,
            old_total=Decimal("0"),
            received_units=Decimal("400"),
            received_cost=Decimal("2.5"),
        )
        assert avg == Decimal("2.5")

    def test_empty_stock_resets_average(self):
        avg = weighted_average_cost(
            old_avg=Decimal("9"),
            old_total=Decimal("0"),
            received_units=Decimal("50"),
            received_cost=Decimal("3"),
        )
        assert avg == Decimal("3")

    def test_negative_on_hand_resets_average(self):
        avg = weighted_average_cost(
            old_avg=Decimal("9"),
            old_total=Decimal("-10"),
            received_units=Decimal("50"),
            received_cost=Decimal("3"),
        )
        assert avg == Decimal("3")

    def test_zero_units_rejected(self):
        with pytest.raises(ValueError):
            weighted_average_cost(
                old_avg=None,
                old_total=Decimal("0"),
                received_units=Decimal("0"),
                received_cost=Decimal("1"),
            )

    def test_negative_cost_rejected(self):
        with pytest.raises(ValueError):
            weighted_average_cost(
                old_avg=None,
                old_total=Decimal("0"),
                received_units=Decimal("1"),
                received_cost=Decimal("-1"),
            )


class TestCostVariance:
    def test_higher_cost_warns(self):
        warning = check_cost_variance(cost=Decimal("11.5"), average=Decimal("10"))
        assert isinstance(warning, CostVarianceWarning)
        assert warning.direction == VarianceDirection.HIGHER
        assert warning.percent == Decimal("15.0")
        assert "15.0% higher" in warning.message

    def test_within_threshold_is_silent(self):
        assert check_cost_variance(cost=Decimal("10.5"), average=Decimal("10")) is None

    def test_exactly_at_threshold_is_silent(self):
        assert check_cost_variance(cost=Decimal("11"), average=Decimal("10")) is None

    def test_lower_cost_warns(self):
        warning = check_cost_variance(cost=Decimal("8"), average=Decimal("10"))
        assert warning.direction == VarianceDirection.LOWER
        assert warning.percent == Decimal("20.0")

    def test_custom_threshold(self):
        warning = check_cost_variance(
            cost=Decimal("10.5"), average=Decimal("10"), threshold=Decimal("0.01")
        )
        assert warning is not None
        assert warning.threshold == Decimal("0.01")

    @pytest.mark.parametrize(
        "cost,average",
        [
            (Decimal("5"), None),
            (Decimal("5"), Decimal("0")),
            (Decimal("0"), Decimal("10")),
        ],
    )
    def test_no_warning_without_basis(self, cost, average):
        assert check_cost_variance(cost=cost, average=average) is None

"""
fluid_engines.costing -- Weighted-average cost and purchase price variance.

Responsibility:
    Maintain a part's average cost per base unit as a volume-weighted moving
    average over receipts, and flag receipts whose unit cost deviates from
    that average by more than a threshold.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    Consumed by the Receive operator only.

Invariants enforced:
    - Volume weighting: ``(old_avg * old_total + received_units * cost) /
      (old_total + received_units)``.
    - A prior total at or below zero, or a missing average, makes the
      incoming cost the new average (no division by zero, and negative
      on-hand from lagging van usage never pulls the average).
    - Variance is a signal, never an error.

Failure modes:
    - ValueError from ``weighted_average_cost`` if ``received_units`` is
      not positive or ``received_cost`` is negative.

Usage:
    avg = weighted_average_cost(
        old_avg=Decimal("5"), old_total=Decimal("10"),
        received_units=Decimal("10"), received_cost=Decimal("7"),
    )  # Decimal("6")
    warning = check_cost_variance(
        cost=Decimal("11.5"), average=Decimal("10"),
    )  # CostVarianceWarning(direction=HIGHER, percent=Decimal("15.0"), ...)
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from fluid_engines.tracer import traced_engine
from fluid_kernel.logging_config import get_logger

logger = get_logger("engines.costing")

DEFAULT_VARIANCE_THRESHOLD = Decimal("0.10")

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class VarianceDirection(str, Enum):
    """Incoming cost relative to the running average."""

    HIGHER = "higher"
    LOWER = "lower"


@dataclass(frozen=True)
class CostVarianceWarning:
    """
    Receipt cost deviates from the running average by more than the threshold.

    ``percent`` is the absolute deviation in percent, rounded to one place.
    """

    direction: VarianceDirection
    percent: Decimal
    cost_per_base_unit: Decimal
    average_cost: Decimal
    threshold: Decimal = DEFAULT_VARIANCE_THRESHOLD

    @property
    def message(self) -> str:
        return (
            f"Cost per base unit {self.cost_per_base_unit.quantize(Decimal('0.01'))} "
            f"is {self.percent}% {self.direction.value} than the average "
            f"({self.average_cost.quantize(Decimal('0.01'))})"
        )


@traced_engine(
    "costing.weighted_average",
    "1.0",
    fingerprint_fields=("old_avg", "old_total", "received_units", "received_cost"),
)
def weighted_average_cost(
    *,
    old_avg: Decimal | None,
    old_total: Decimal,
    received_units: Decimal,
    received_cost: Decimal,
) -> Decimal:
    """
    New average cost per base unit after a receipt.

    Args:
        old_avg: Current average, or None when the part has never been costed.
        old_total: Base units on hand before the receipt, all locations.
        received_units: Base units received (> 0).
        received_cost: Cost per base unit of the receipt (>= 0).
    """
    if received_units <= _ZERO:
        raise ValueError("received_units must be positive")
    if received_cost < _ZERO:
        raise ValueError("received_cost must not be negative")

    if old_avg is None or old_total <= _ZERO:
        return received_cost

    return (old_avg * old_total + received_units * received_cost) / (
        old_total + received_units
    )


@traced_engine(
    "costing.variance",
    "1.0",
    fingerprint_fields=("cost", "average", "threshold"),
)
def check_cost_variance(
    *,
    cost: Decimal,
    average: Decimal | None,
    threshold: Decimal = DEFAULT_VARIANCE_THRESHOLD,
) -> CostVarianceWarning | None:
    """
    Warning when ``|cost - average| / average > threshold``, else None.

    No warning is possible without a positive average or a positive cost.
    """
    if average is None or average <= _ZERO or cost <= _ZERO:
        return None

    ratio = (cost - average) / average
    if abs(ratio) <= threshold:
        return None

    return CostVarianceWarning(
        direction=VarianceDirection.HIGHER if ratio > _ZERO else VarianceDirection.LOWER,
        percent=(abs(ratio) * _HUNDRED).quantize(Decimal("0.1")),
        cost_per_base_unit=cost,
        average_cost=average,
        threshold=threshold,
    )

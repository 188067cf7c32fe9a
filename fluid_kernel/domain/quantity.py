"""
Quantity Model -- dual-unit quantities and conversions.

Responsibility:
    Value types for a liquid part's dual-unit quantity (sealed containers +
    loose bulk) and the conversions between container count and base units.

Architecture position:
    Kernel > Domain -- pure functions, zero I/O.

Invariants enforced:
    - Decimal arithmetic for every quantity; floats are converted through
      ``str`` at the boundary and never used in arithmetic.
    - ``apply_delta`` is plain addition.  Clamping and validation belong to
      the stock operators, not to the model.
    - ``quantities_equal`` compares under a fixed epsilon; the epsilon is
      never applied to stored values.

Failure modes:
    - ValidationError from ``as_quantity`` / ``as_container_count`` on
      missing, non-numeric, non-finite or fractional-count input.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import TYPE_CHECKING

from fluid_kernel.exceptions import ValidationError

if TYPE_CHECKING:
    from fluid_kernel.domain.part import PartRecord

ZERO = Decimal("0")
QUANTITY_EPSILON = Decimal("0.000001")


class BaseUnit(str, Enum):
    """Unit all bulk and ledger quantities of a part are expressed in."""

    LITER = "liter"
    MILLILITER = "milliliter"
    KILOGRAM = "kilogram"
    GRAM = "gram"

    @property
    def symbol(self) -> str:
        return _BASE_UNIT_SYMBOLS[self]


_BASE_UNIT_SYMBOLS = {
    BaseUnit.LITER: "L",
    BaseUnit.MILLILITER: "mL",
    BaseUnit.KILOGRAM: "kg",
    BaseUnit.GRAM: "g",
}


class ContainerUnit(str, Enum):
    """Packaging label.  Not used in arithmetic."""

    BOTTLE = "bottle"
    DRUM = "drum"
    JERRY_CAN = "jerry_can"
    PAIL = "pail"
    BOX = "box"


class QuantityUnit(str, Enum):
    """Which half of the dual-unit quantity an amount refers to."""

    BULK = "bulk"
    CONTAINER = "container"


@dataclass(frozen=True)
class StockBalance:
    """Container count and loose bulk held at one location."""

    container_quantity: int = 0
    bulk_quantity: Decimal = ZERO

    def total_base_units(self, container_size: Decimal | None) -> Decimal:
        return to_base_units(
            self.container_quantity, self.bulk_quantity, container_size
        )


def to_base_units(
    container_qty: int | Decimal,
    bulk_qty: Decimal,
    container_size: Decimal | None,
) -> Decimal:
    """``container_qty * container_size + bulk_qty``.

    A missing container size counts containers as zero base units, which
    only occurs for parts that have never held sealed stock.
    """
    size = container_size if container_size is not None else ZERO
    return Decimal(container_qty) * size + bulk_qty


def apply_delta(
    balance: StockBalance,
    container_delta: int,
    bulk_delta: Decimal,
) -> StockBalance:
    """Return ``balance`` with both deltas added.  No clamping."""
    return StockBalance(
        container_quantity=balance.container_quantity + container_delta,
        bulk_quantity=balance.bulk_quantity + bulk_delta,
    )


def quantities_equal(
    a: Decimal, b: Decimal, epsilon: Decimal = QUANTITY_EPSILON
) -> bool:
    """Equality for comparison purposes only."""
    return abs(a - b) <= epsilon


def as_quantity(value: object, field: str) -> Decimal:
    """
    Coerce caller input to a Decimal quantity.

    Raises:
        ValidationError: if the value is missing, non-numeric or not finite.
    """
    if value is None or value == "":
        raise ValidationError(field, "is required")
    if isinstance(value, bool):
        raise ValidationError(field, "must be a number")
    if isinstance(value, float):
        value = str(value)
    try:
        result = value if isinstance(value, Decimal) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(field, f"{value!r} is not a number") from None
    if not result.is_finite():
        raise ValidationError(field, "must be finite")
    return result


def as_container_count(value: object, field: str) -> int:
    """Coerce caller input to a whole number of containers."""
    quantity = as_quantity(value, field)
    if quantity != quantity.to_integral_value():
        raise ValidationError(field, "containers must be a whole number")
    return int(quantity)


def format_stock_display(part: PartRecord, balance: StockBalance) -> str:
    """Display string such as ``"418.0 L"``; unit-counted parts show a count."""
    if not part.is_liquid:
        return f"{balance.container_quantity} pcs"
    total = balance.total_base_units(part.container_size)
    if total <= ZERO:
        return "Out of stock"
    return f"{total.quantize(Decimal('0.1'))} {part.base_unit.symbol}"

"""Pure domain layer: value types, DTOs and the clock abstraction."""

from fluid_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    MonotonicClock,
    SystemClock,
)
from fluid_kernel.domain.dtos import CurrentBalance, NegativeBalanceWarning
from fluid_kernel.domain.location import Location
from fluid_kernel.domain.movement import (
    MovementRecord,
    MovementType,
    PurchaseBatchRecord,
)
from fluid_kernel.domain.part import PartRecord
from fluid_kernel.domain.quantity import (
    BaseUnit,
    ContainerUnit,
    QuantityUnit,
    StockBalance,
    apply_delta,
    as_quantity,
    format_stock_display,
    quantities_equal,
    to_base_units,
)

__all__ = [
    "BaseUnit",
    "Clock",
    "ContainerUnit",
    "CurrentBalance",
    "DeterministicClock",
    "Location",
    "MonotonicClock",
    "MovementRecord",
    "MovementType",
    "NegativeBalanceWarning",
    "PartRecord",
    "PurchaseBatchRecord",
    "QuantityUnit",
    "StockBalance",
    "SystemClock",
    "apply_delta",
    "as_quantity",
    "format_stock_display",
    "quantities_equal",
    "to_base_units",
]

"""ORM models for the fluid ledger."""

from fluid_kernel.models.movement import InventoryMovement
from fluid_kernel.models.part import LiquidPart
from fluid_kernel.models.purchase_batch import PurchaseBatch
from fluid_kernel.models.stock_level import StockLevel

__all__ = [
    "InventoryMovement",
    "LiquidPart",
    "PurchaseBatch",
    "StockLevel",
]

"""
Module: fluid_kernel.db.types
Responsibility: Annotated type aliases for quantity and currency columns,
    and the quantizer that matches their storage precision.  Centralizes
    precision so every model and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    repositories/ and services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere in the ledger.  Quantities and amounts use Decimal
      with explicit precision.
    - normalize_quantity() is applied only to derived cost values (unit
      cost, average cost, cost of usage); additive ledger arithmetic is exact.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated

from sqlalchemy import Numeric, String


# Loose base-unit volume/weight, 9 decimal places
Quantity = Annotated[Decimal, Numeric(38, 9)]

# Currency amount (single currency), 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Short identifier strings
ShortCode = Annotated[str, String(50)]

# Long text for notes
LongText = Annotated[str, String(4000)]


QUANTITY_DECIMAL_PLACES = 9
DEFAULT_ROUNDING = ROUND_HALF_UP


def normalize_quantity(value: Decimal) -> Decimal:
    """Quantize a quantity to the storage precision (9 places)."""
    return value.quantize(
        Decimal(1).scaleb(-QUANTITY_DECIMAL_PLACES), rounding=DEFAULT_ROUNDING
    )

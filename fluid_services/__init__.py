"""
fluid_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines (fluid_engines/)
    with units of work over the ledger storage.  This is the **only** layer
    that opens units of work or reads the clock.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction:
        fluid_services/ -> fluid_engines/  (allowed)
        fluid_services/ -> fluid_kernel/   (allowed)
        fluid_services/ -> fluid_config/   (allowed)
        fluid_engines/  -> fluid_services/ (FORBIDDEN)
        fluid_kernel/   -> fluid_services/ (FORBIDDEN)

Audit relevance:
    - This package is the canonical import surface for external consumers.
      Changes to __all__ must be reviewed for backwards-compatibility.
"""

from fluid_kernel.logging_config import get_logger

logger = get_logger("services")

from fluid_services.ledger_service import LiquidLedgerService  # noqa: E402
from fluid_services.results import (  # noqa: E402
    OperationWarning,
    ReceiptResult,
    StockOperationResult,
)
from fluid_services.stock_operators import StockOperators  # noqa: E402

__all__ = [
    "LiquidLedgerService",
    "OperationWarning",
    "ReceiptResult",
    "StockOperationResult",
    "StockOperators",
]

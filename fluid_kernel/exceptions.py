"""
Typed Exception Hierarchy for the Fluid Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (receiving terminals, the job-completion flow, van
restock screens) need to react to failures precisely: a shortage is shown
to the technician, a concurrency conflict is retried, a protocol violation
is escalated.  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        service.use_internal(part_id, Location.store(), amount, job_id, ...)
    except InsufficientStockError as e:
        notify(f"Only {e.available} {e.unit} on hand")
        api_response(code=e.code, requested=e.requested)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FluidLedgerError (base)
    |
    +-- ValidationError
    |   +-- NotLiquidPartError
    |
    +-- PartNotFoundError
    +-- InsufficientStockError
    +-- ConcurrencyConflictError
    +-- ProtocolViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                 | When Raised
---------------------|--------------------------------------------------------
VALIDATION_ERROR     | Malformed input; the operation had no side effects
NOT_LIQUID_PART      | A ledger operation targeted a unit-counted part
PART_NOT_FOUND       | Part ID doesn't exist in the catalogue
INSUFFICIENT_STOCK   | Decrement exceeds on-hand at Store / for a transfer
CONCURRENCY_CONFLICT | Storage could not honour the atomic increment (retry)
PROTOCOL_VIOLATION   | Update or delete of a historical movement

Warnings (cost variance, negative van balance) are NOT exceptions; they are
returned on operation results and never block the write.
"""


class FluidLedgerError(Exception):
    """
    Base exception for all fluid ledger errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FLUID_LEDGER_ERROR"


class ValidationError(FluidLedgerError):
    """Malformed input.  Always caller-recoverable; nothing was persisted."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class NotLiquidPartError(ValidationError):
    """Dual-unit ledger operations only apply to liquid parts."""

    code: str = "NOT_LIQUID_PART"

    def __init__(self, part_id: str):
        self.part_id = part_id
        super().__init__("part_id", f"part {part_id} is not flagged as liquid")


class PartNotFoundError(FluidLedgerError):
    """Part with given ID was not found."""

    code: str = "PART_NOT_FOUND"

    def __init__(self, part_id: str):
        self.part_id = part_id
        super().__init__(f"Part not found: {part_id}")


class InsufficientStockError(FluidLedgerError):
    """
    Requested decrement exceeds the on-hand quantity.

    Raised for any Store decrement and for transfers; the operation aborts
    entirely and no ledger entry is written.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        part_id: str,
        location: str,
        requested,
        available,
        unit: str,
    ):
        self.part_id = part_id
        self.location = location
        self.requested = requested
        self.available = available
        self.unit = unit
        super().__init__(
            f"Insufficient stock of part {part_id} at {location}: "
            f"requested {requested} {unit}, available {available} {unit}"
        )


class ConcurrencyConflictError(FluidLedgerError):
    """
    The storage layer could not apply an atomic change.

    Propagated to the caller for retry of the whole operation.
    """

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Concurrency conflict during {operation}: {reason}")


class ProtocolViolationError(FluidLedgerError):
    """Attempted to modify or delete a historical movement entry."""

    code: str = "PROTOCOL_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, operation: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.operation = operation
        super().__init__(
            f"Protocol violation: {operation} of {entity_type} {entity_id} "
            "is not permitted, ledger entries are append-only"
        )


# Short names used by the ledger's collaborators.
InsufficientStock = InsufficientStockError
ConcurrencyConflict = ConcurrencyConflictError
ProtocolViolation = ProtocolViolationError

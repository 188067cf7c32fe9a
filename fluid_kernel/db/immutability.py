"""
ORM-level append-only enforcement for ledger history.

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement ledger is the source of truth for how much liquid was where and
when.  A corrected count is a new ``adjustment`` entry, never an edit of an
old one.  This module is the ORM half of that guarantee (the repository
contract in repositories.base is the other half):

  Mapper events (before_update / before_delete)
    - Catch modifications of loaded rows flushed by the unit of work
    - Fire BEFORE any SQL reaches the database

  Session event (do_orm_execute)
    - Catches ORM-enabled bulk ``update(Model)`` / ``delete(Model)``
      statements, which never load rows and so bypass mapper events

===============================================================================
PROTECTED ENTITIES
===============================================================================

Every mapped class declaring ``__append_only__ = True`` (see db.base):

Entity              | Why
--------------------|-----------------------------------------------------
InventoryMovement   | Ledger history is append-only
PurchaseBatch       | A receipt belongs to its purchase movement

StockLevel is NOT protected: it is the cached aggregate and changes on every
movement.  LiquidPart is catalogue data.

===============================================================================
USAGE
===============================================================================

LiquidLedgerService.from_config registers the listeners.  Elsewhere:

    from fluid_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()

Tests that need to tamper with history on purpose call
``unregister_immutability_listeners()`` and re-register afterwards.
"""

from sqlalchemy import event
from sqlalchemy.orm import Session

from fluid_kernel.db.base import append_only_models
from fluid_kernel.exceptions import ProtocolViolationError
from fluid_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, entity_id: str, operation: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    raise ProtocolViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        operation=operation,
    )


def _refuse_update(mapper, connection, target):
    _block(type(target).__name__, str(target.id), "UPDATE")


def _refuse_delete(mapper, connection, target):
    _block(type(target).__name__, str(target.id), "DELETE")


def _refuse_bulk_statement(orm_execute_state):
    """Refuse ``session.execute(update(...))`` / ``delete(...)`` on history tables."""
    if not (orm_execute_state.is_update or orm_execute_state.is_delete):
        return
    mapper = orm_execute_state.bind_mapper
    if mapper is None or not getattr(mapper.class_, "__append_only__", False):
        return
    operation = "UPDATE" if orm_execute_state.is_update else "DELETE"
    _block(mapper.class_.__name__, "*", operation)


def _listeners():
    # Importing the models package maps every history table.
    import fluid_kernel.models  # noqa: F401

    pairs = []
    for model in append_only_models():
        pairs.append((model, "before_update", _refuse_update))
        pairs.append((model, "before_delete", _refuse_delete))
    pairs.append((Session, "do_orm_execute", _refuse_bulk_statement))
    return pairs


def register_immutability_listeners() -> None:
    """Install the guards; already-installed listeners are skipped."""
    for target, event_name, listener in _listeners():
        if not event.contains(target, event_name, listener):
            event.listen(target, event_name, listener)
    logger.debug(
        "immutability_listeners_registered",
        extra={"models": [model.__name__ for model in append_only_models()]},
    )


def unregister_immutability_listeners() -> None:
    """Remove the guards.  Tests only."""
    for target, event_name, listener in _listeners():
        if event.contains(target, event_name, listener):
            event.remove(target, event_name, listener)
    logger.debug("immutability_listeners_unregistered")

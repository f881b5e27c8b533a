"""
ORM-level immutability enforcement for the stock ledger.

===============================================================================
HOW IT WORKS
===============================================================================

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below inspect attribute history and abort the flush
with ImmutabilityViolationError when a frozen record would change:

    session.flush()
         |
         v
    [before_update] --> _check_*_update() --> ImmutabilityViolationError
         |
    [before_delete] --> _check_*_delete() --> ImmutabilityViolationError
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | Rule
-----------------------|--------------------------------------------------
StockBatch             | Only current_quantity and status may change.
                       | Never deleted.
StockTransaction       | Append-only: no update, no delete.
StockTransactionLine   | Append-only: no update, no delete.

===============================================================================
USAGE
===============================================================================

    from fab_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()   # once, at startup

Tests that need to bypass enforcement call unregister_immutability_listeners()
and re-register afterwards.
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from fab_kernel.exceptions import ImmutabilityViolationError
from fab_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_registered = False


def _block(entity_type: str, entity_id: str, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=entity_id,
        reason=reason,
    )


def _check_batch_update(mapper, connection, target):
    """Reject changes to any batch column other than quantity and status."""
    from fab_kernel.models.stock_batch import MUTABLE_BATCH_COLUMNS

    changed = sorted(
        attr.key
        for attr in mapper.column_attrs
        if attr.key not in MUTABLE_BATCH_COLUMNS
        and get_history(target, attr.key).has_changes()
    )
    if changed:
        _block(
            "StockBatch",
            target.batch_id,
            "UPDATE",
            f"fields {', '.join(changed)} are frozen after inward",
        )


def _check_batch_delete(mapper, connection, target):
    _block(
        "StockBatch",
        target.batch_id,
        "DELETE",
        "batches are retained for traceability and cannot be deleted",
    )


def _check_transaction_update(mapper, connection, target):
    _block(
        "StockTransaction",
        target.transaction_id,
        "UPDATE",
        "stock transactions are append-only",
    )


def _check_transaction_delete(mapper, connection, target):
    _block(
        "StockTransaction",
        target.transaction_id,
        "DELETE",
        "stock transactions are append-only",
    )


def _check_line_update(mapper, connection, target):
    _block(
        "StockTransactionLine",
        target.batch_id,
        "UPDATE",
        "transaction lines are append-only",
    )


def _check_line_delete(mapper, connection, target):
    _block(
        "StockTransactionLine",
        target.batch_id,
        "DELETE",
        "transaction lines are append-only",
    )


def _listeners():
    from fab_kernel.models.stock_batch import StockBatchModel
    from fab_kernel.models.stock_transaction import (
        StockTransactionLineModel,
        StockTransactionModel,
    )

    return [
        (StockBatchModel, "before_update", _check_batch_update),
        (StockBatchModel, "before_delete", _check_batch_delete),
        (StockTransactionModel, "before_update", _check_transaction_update),
        (StockTransactionModel, "before_delete", _check_transaction_delete),
        (StockTransactionLineModel, "before_update", _check_line_update),
        (StockTransactionLineModel, "before_delete", _check_line_delete),
    ]


def register_immutability_listeners() -> None:
    """Register all immutability listeners.  Safe to call more than once."""
    global _registered
    if _registered:
        return
    for target, identifier, fn in _listeners():
        event.listen(target, identifier, fn)
    _registered = True
    logger.debug("immutability_listeners_registered")


def unregister_immutability_listeners() -> None:
    """Remove all immutability listeners (tests only)."""
    global _registered
    if not _registered:
        return
    for target, identifier, fn in _listeners():
        if event.contains(target, identifier, fn):
            event.remove(target, identifier, fn)
    _registered = False
    logger.debug("immutability_listeners_unregistered")

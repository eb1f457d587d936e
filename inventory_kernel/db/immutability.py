"""
ORM-level immutability enforcement for the ledger.

Log entries are never corrected in place: a correction is a new compensating
transaction.  Transfer requests may move out of PENDING exactly once.  These
listeners intercept the ORM flush before any SQL reaches the database:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> InvariantViolationError
         |
         v
    [before_delete] --> _check_*_delete() -------> InvariantViolationError
         |
         v
    SQL sent to database (only if checks pass)

Protected entities:

    Entity                | When immutable
    ----------------------|-------------------------------
    LedgerTransaction     | ALWAYS (from creation)
    TransferRequest       | After status leaves PENDING
    TransferLine          | ALWAYS (from creation)

Raw SQL bypasses these listeners.  ``stock_records`` is deliberately not
protected: it is derived state that recovery may rewrite.
"""

from sqlalchemy import event
from sqlalchemy.orm.attributes import get_history

from inventory_kernel.exceptions import InvariantViolationError
from inventory_kernel.invariants import LedgerInvariant
from inventory_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_TERMINAL_STATUS_VALUES = frozenset({"approved", "rejected"})


def _blocked(invariant: LedgerInvariant, entity_type: str, entity_id: str, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "invariant": invariant.value,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "operation": operation,
        },
    )
    return InvariantViolationError(invariant.value, f"{entity_type} {entity_id}: {reason}")


def _check_transaction_immutability(mapper, connection, target):
    raise _blocked(
        LedgerInvariant.APPEND_ONLY_LOG,
        "LedgerTransaction",
        target.transaction_id,
        "UPDATE",
        "log entries cannot be modified",
    )


def _check_transaction_delete(mapper, connection, target):
    raise _blocked(
        LedgerInvariant.APPEND_ONLY_LOG,
        "LedgerTransaction",
        target.transaction_id,
        "DELETE",
        "log entries cannot be deleted",
    )


def _check_transfer_request_immutability(mapper, connection, target):
    """
    Block changes to a transfer request that was already terminal.

    The resolving update itself (PENDING -> APPROVED/REJECTED) is allowed;
    the old value of ``status`` decides.
    """
    status_history = get_history(target, "status")
    if status_history.deleted:
        previous = status_history.deleted[0]
    else:
        previous = target.status
    if previous in _TERMINAL_STATUS_VALUES:
        raise _blocked(
            LedgerInvariant.TERMINAL_TRANSFER,
            "TransferRequest",
            target.transfer_id,
            "UPDATE",
            f"request is already {previous}",
        )


def _check_transfer_request_delete(mapper, connection, target):
    raise _blocked(
        LedgerInvariant.TERMINAL_TRANSFER,
        "TransferRequest",
        target.transfer_id,
        "DELETE",
        "transfer requests cannot be deleted",
    )


def _check_transfer_line_immutability(mapper, connection, target):
    raise _blocked(
        LedgerInvariant.TERMINAL_TRANSFER,
        "TransferLine",
        target.transfer_id,
        "UPDATE",
        "transfer lines cannot be modified",
    )


_LISTENERS = (
    ("LedgerTransactionModel", "before_update", _check_transaction_immutability),
    ("LedgerTransactionModel", "before_delete", _check_transaction_delete),
    ("TransferRequestModel", "before_update", _check_transfer_request_immutability),
    ("TransferRequestModel", "before_delete", _check_transfer_request_delete),
    ("TransferLineModel", "before_update", _check_transfer_line_immutability),
)


def _resolve_targets():
    from inventory_kernel import models

    return [(getattr(models, name), event_name, fn) for name, event_name, fn in _LISTENERS]


def register_immutability_listeners() -> None:
    """
    Register all immutability enforcement event listeners (idempotent).

    Call after the models are imported and before any database writes.
    """
    for target, event_name, fn in _resolve_targets():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners.  FOR TESTING ONLY."""
    for target, event_name, fn in _resolve_targets():
        if event.contains(target, event_name, fn):
            event.remove(target, event_name, fn)

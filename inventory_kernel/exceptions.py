"""
Typed Exception Hierarchy for the Inventory Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (staff terminals, API adapters, batch jobs) must decide
whether to fix their input, show a business message, or simply retry. That
decision must never depend on parsing message strings:

    try:
        service.book_out("ITM-001", "surgery", 50, actor_id="U001")
    except InsufficientStockError as e:     # typed catch
        show(f"Only {e.available} available")  # structured data
    except InventoryKernelError as e:
        if e.retryable:
            schedule_retry()

Every exception has:
  1. A CODE class attribute (machine-readable, API-safe)
  2. A RETRYABLE class attribute (transient infrastructure vs caller error)
  3. Structured attributes carrying the context of the failure

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    InventoryKernelError (base)
    |
    +-- InvalidInputError
    |   +-- NotFoundError
    |   +-- IdempotencyConflictError
    |   +-- PermissionDeniedError
    |
    +-- InsufficientStockError
    +-- InvalidStateError
    +-- InvariantViolationError
    +-- OperationCancelledError
    |
    +-- TransientError
        +-- LockTimeoutError
        +-- StoreUnavailableError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                  | Retryable | When Raised
----------------------|-----------|---------------------------------------------
INVALID_INPUT         | no        | Malformed or missing fields
NOT_FOUND             | no        | Unknown item, department, user or transfer
IDEMPOTENCY_CONFLICT  | no        | Dedup key reused with different parameters
PERMISSION_DENIED     | no        | Actor's access level forbids the operation
INSUFFICIENT_STOCK    | no        | Requested quantity exceeds available
INVALID_STATE         | no        | Transfer is not PENDING
INVARIANT_VIOLATION   | no        | Internal consistency check failed (bug)
CANCELLED             | no        | Caller abandoned the operation before locking
TIMEOUT               | yes       | Critical section not acquired in time
STORE_UNAVAILABLE     | yes       | Persistence backend failed

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Business failures carry what the caller needs to adjust and retry:

    except InsufficientStockError as e:
        return {"error": e.code, "available": e.available, "requested": e.requested}

2. Transient failures are opaque; retry with the SAME idempotency key:

    except TransientError:
        service.book_in(..., idempotency_key=key)

3. InvariantViolationError means a bug. Log and surface as a server error.
"""

from __future__ import annotations


class InventoryKernelError(Exception):
    """
    Base exception for all inventory kernel errors.

    All subclasses must define a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "INVENTORY_KERNEL_ERROR"
    retryable: bool = False


# Caller errors


class InvalidInputError(InventoryKernelError):
    """Malformed or missing fields in a request."""

    code: str = "INVALID_INPUT"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class NotFoundError(InvalidInputError):
    """A referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, identifier: str):
        self.entity = entity
        self.identifier = identifier
        super().__init__(f"{entity} not found: {identifier}", field=entity)


class IdempotencyConflictError(InvalidInputError):
    """An idempotency key was reused for a different request."""

    code: str = "IDEMPOTENCY_CONFLICT"

    def __init__(self, idempotency_key: str, reason: str):
        self.idempotency_key = idempotency_key
        self.reason = reason
        super().__init__(
            f"Idempotency key {idempotency_key!r} conflicts: {reason}",
            field="idempotency_key",
        )


class PermissionDeniedError(InvalidInputError):
    """The actor is not allowed to perform the operation."""

    code: str = "PERMISSION_DENIED"

    def __init__(self, actor_id: str, permission: str, access_level: str | None = None):
        self.actor_id = actor_id
        self.permission = permission
        self.access_level = access_level
        super().__init__(
            f"User {actor_id} ({access_level or 'unknown'}) lacks permission {permission}",
            field="actor_id",
        )


# Business rule violations


class InsufficientStockError(InventoryKernelError):
    """Requested quantity exceeds the available (unreserved) stock."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        item_id: str,
        department_id: str,
        requested: int,
        available: int,
        line_index: int | None = None,
    ):
        self.item_id = item_id
        self.department_id = department_id
        self.requested = requested
        self.available = available
        self.line_index = line_index
        where = f" (line {line_index})" if line_index is not None else ""
        super().__init__(
            f"Insufficient stock for {item_id} in {department_id}{where}: "
            f"requested {requested}, available {available}"
        )


class InvalidStateError(InventoryKernelError):
    """The operation is not legal for the transfer's current status."""

    code: str = "INVALID_STATE"

    def __init__(self, transfer_id: str, current_status: str, action: str):
        self.transfer_id = transfer_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            f"Cannot {action} transfer {transfer_id}: status is {current_status}"
        )


class InvariantViolationError(InventoryKernelError):
    """An internal consistency check failed. Indicates a bug."""

    code: str = "INVARIANT_VIOLATION"

    def __init__(self, invariant: str, detail: str):
        self.invariant = invariant
        self.detail = detail
        super().__init__(f"Invariant {invariant} violated: {detail}")


class OperationCancelledError(InventoryKernelError):
    """The caller abandoned the operation before any critical section was held."""

    code: str = "CANCELLED"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Operation {operation} cancelled before execution")


# Transient infrastructure conditions


class TransientError(InventoryKernelError):
    """Base for conditions that are safe to retry with the same idempotency key."""

    code: str = "TRANSIENT"
    retryable: bool = True


class LockTimeoutError(TransientError):
    """A critical section could not be acquired within the bounded wait."""

    code: str = "TIMEOUT"

    def __init__(self, item_id: str, department_id: str, timeout_seconds: float):
        self.item_id = item_id
        self.department_id = department_id
        self.timeout_seconds = timeout_seconds
        super().__init__("Stock record busy, retry later")


class StoreUnavailableError(TransientError):
    """The persistence backend could not complete the operation."""

    code: str = "STORE_UNAVAILABLE"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__("Ledger store unavailable, retry later")

"""
TransactionEngine -- book stock in and out of a department.

Responsibility:
    Validates a booking, and records it as one COMPLETED log entry plus the
    matching StockRecord change through ``LedgerStore.mutate``.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the outer facade.

Invariants enforced:
    NON_NEGATIVE_STOCK -- book_out compares against ``available`` read
        inside the key's critical section, so concurrent bookings cannot
        both pass the check.
    IDEMPOTENCY -- a repeated ``idempotency_key`` returns the original
        transaction without re-applying it.

Failure modes:
    - InvalidInputError: non-positive or non-integer quantity, inactive item.
    - NotFoundError: unknown item, department or actor.
    - PermissionDeniedError: actor lacks BOOK_STOCK.
    - InsufficientStockError: book_out above available stock.
    - IdempotencyConflictError: key reused with different parameters.
    - LockTimeoutError / StoreUnavailableError / OperationCancelledError.
"""

from __future__ import annotations

import threading

from inventory_kernel.domain.authorization import Permission, require_permission
from inventory_kernel.domain.transactions import (
    LedgerTransaction,
    PlannedTransaction,
    TransactionKind,
    TransactionStatus,
)
from inventory_kernel.domain.values import StockKey
from inventory_kernel.exceptions import InsufficientStockError, InvalidInputError
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.catalog_service import CatalogService
from inventory_kernel.services.idempotency import booking_fingerprint
from inventory_kernel.services.ledger_store import LedgerStore, LockedView, MutationPlan

logger = get_logger("services.transaction_engine")


def validate_quantity(quantity, field: str = "quantity") -> int:
    """Quantities are whole positive units.  ``bool`` is not a quantity."""
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidInputError(f"{field} must be an integer, got {quantity!r}", field=field)
    if quantity <= 0:
        raise InvalidInputError(f"{field} must be positive, got {quantity}", field=field)
    return quantity


class TransactionEngine:
    """
    book_in / book_out against a LedgerStore.

    Contract:
        Each successful call appends exactly one COMPLETED entry, or none
        when an idempotency key is replayed.

    Non-goals:
        - Does NOT handle transfers (see TransferWorkflow).
    """

    def __init__(self, store: LedgerStore, catalog: CatalogService):
        self._store = store
        self._catalog = catalog

    def book_in(
        self,
        item_id: str,
        department_id: str,
        quantity: int,
        actor_id: str,
        idempotency_key: str | None = None,
        notes: str | None = None,
        cancel: threading.Event | None = None,
    ) -> LedgerTransaction:
        """Receive ``quantity`` units of an item into a department."""
        return self._book(
            TransactionKind.BOOK_IN,
            item_id,
            department_id,
            quantity,
            actor_id,
            idempotency_key,
            notes,
            cancel,
        )

    def book_out(
        self,
        item_id: str,
        department_id: str,
        quantity: int,
        actor_id: str,
        idempotency_key: str | None = None,
        notes: str | None = None,
        cancel: threading.Event | None = None,
    ) -> LedgerTransaction:
        """Consume ``quantity`` units; never more than the available stock."""
        return self._book(
            TransactionKind.BOOK_OUT,
            item_id,
            department_id,
            quantity,
            actor_id,
            idempotency_key,
            notes,
            cancel,
        )

    def _book(
        self,
        kind: TransactionKind,
        item_id: str,
        department_id: str,
        quantity: int,
        actor_id: str,
        idempotency_key: str | None,
        notes: str | None,
        cancel: threading.Event | None,
    ) -> LedgerTransaction:
        validate_quantity(quantity)
        actor = self._catalog.get_user(actor_id)
        require_permission(actor, Permission.BOOK_STOCK)
        item = self._catalog.get_item(item_id)
        self._catalog.get_department(department_id)
        if not item.is_active:
            raise InvalidInputError(f"Item {item_id} is inactive", field="item_id")

        fingerprint = booking_fingerprint(kind.value, item_id, department_id, quantity)
        sign = 1 if kind == TransactionKind.BOOK_IN else -1

        def plan(view: LockedView) -> MutationPlan:
            replayed = view.claim_idempotency(idempotency_key, fingerprint)
            if replayed is not None:
                return MutationPlan(replayed=replayed)
            if kind == TransactionKind.BOOK_OUT:
                record = view.stock(item_id, department_id)
                if quantity > record.available:
                    raise InsufficientStockError(
                        item_id, department_id, quantity, record.available
                    )
            entry = PlannedTransaction(
                kind=kind,
                item_id=item_id,
                department_id=department_id,
                quantity=quantity,
                actor_user_id=actor_id,
                status=TransactionStatus.COMPLETED,
                quantity_delta=sign * quantity,
                reserved_delta=0,
                idempotency_key=idempotency_key,
                notes=notes,
            )
            return MutationPlan(entries=(entry,))

        with LogContext.bind(
            actor_id=actor_id,
            item_id=item_id,
            department_id=department_id,
            idempotency_key=idempotency_key,
        ):
            try:
                result = self._store.mutate(
                    kind.value, [StockKey(item_id, department_id)], plan, cancel=cancel
                )
            except InsufficientStockError as exc:
                logger.info(
                    "booking_rejected",
                    extra={
                        "kind": kind.value,
                        "requested": exc.requested,
                        "available": exc.available,
                    },
                )
                raise

            tx = result.transactions[0]
            if result.replayed:
                return tx
            record = result.records[0]
            logger.info(
                "stock_booked_in" if kind == TransactionKind.BOOK_IN else "stock_booked_out",
                extra={
                    "transaction_id": tx.transaction_id,
                    "seq": tx.seq,
                    "quantity": quantity,
                    "new_quantity": record.quantity,
                    "available": record.available,
                },
            )
            return tx

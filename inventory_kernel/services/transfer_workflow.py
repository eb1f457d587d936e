"""
TransferWorkflow -- request / approve / reject inter-department transfers.

Responsibility:
    Runs the transfer request lifecycle with reservations:

        PENDING --approve--> APPROVED (terminal)
        PENDING --reject---> REJECTED (terminal)

    ``request`` reserves stock at the source; ``approve`` consumes the
    reservation and credits the destination; ``reject`` releases it.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the outer facade.
    Writes only through ``LedgerStore.mutate``.

Invariants enforced:
    ATOMIC_TRANSFER -- every line of an operation succeeds or none does;
        the log entries, StockRecord changes and status change are one
        repository commit.
    NON_NEGATIVE_STOCK -- availability is checked cumulatively per item
        inside the source keys' critical sections.
    TERMINAL_TRANSFER -- the status is re-read inside the critical
        sections, so two racing resolutions cannot both succeed.

Failure modes:
    - InvalidInputError: same source/destination, empty lines, bad quantity.
    - NotFoundError: unknown department, item, actor or transfer.
    - PermissionDeniedError: actor lacks REQUEST_TRANSFER / RESOLVE_TRANSFER.
    - InsufficientStockError: carries the failing line index.
    - InvalidStateError: approve/reject of a non-PENDING request.
    - LockTimeoutError / StoreUnavailableError / OperationCancelledError.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Iterable

from inventory_kernel.domain.authorization import Permission, require_permission
from inventory_kernel.domain.transactions import (
    PlannedTransaction,
    TransactionKind,
    TransactionStatus,
)
from inventory_kernel.domain.transfer import (
    TransferAction,
    TransferLine,
    TransferPriority,
    TransferRequest,
    TransferStatus,
    validate_transfer_shape,
)
from inventory_kernel.domain.values import StockKey
from inventory_kernel.exceptions import (
    InsufficientStockError,
    InvalidInputError,
    InvalidStateError,
)
from inventory_kernel.logging_config import LogContext, get_logger
from inventory_kernel.services.catalog_service import CatalogService
from inventory_kernel.services.idempotency import transfer_fingerprint
from inventory_kernel.services.ledger_store import LedgerStore, LockedView, MutationPlan

logger = get_logger("services.transfer_workflow")


def _coerce_lines(lines: Iterable) -> tuple[TransferLine, ...]:
    """Accept TransferLine objects or (item_id, quantity) pairs."""
    coerced = []
    for line in lines:
        if isinstance(line, TransferLine):
            coerced.append(line)
        else:
            try:
                item_id, quantity = line
            except (TypeError, ValueError) as exc:
                raise InvalidInputError(
                    f"Transfer line must be (item_id, quantity), got {line!r}",
                    field="lines",
                ) from exc
            coerced.append(TransferLine(item_id=item_id, quantity=quantity))
    return tuple(coerced)


class TransferWorkflow:
    """
    Transfer request state machine over a LedgerStore.

    Contract:
        - request appends one PENDING TRANSFER_OUT per line at the source.
        - approve appends, per line, a COMPLETED TRANSFER_OUT at the source
          and a COMPLETED TRANSFER_IN at the destination, all sharing the
          transfer_id.
        - reject appends one CANCELLED TRANSFER_OUT per line at the source.

    Guarantees:
        - Locks for all involved StockRecords are acquired in the global
          order before any check that decides the outcome.

    Non-goals:
        - Priority is stored and returned, never used for ordering.
    """

    def __init__(self, store: LedgerStore, catalog: CatalogService):
        self._store = store
        self._catalog = catalog

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, transfer_id: str) -> TransferRequest:
        return self._store.get_transfer(transfer_id)

    def list_pending(self, department_id: str | None = None) -> list[TransferRequest]:
        """Pending requests, oldest first.  ``department_id`` matches either side."""
        pending = [t for t in self._store.transfers() if t.status == TransferStatus.PENDING]
        if department_id is not None:
            pending = [
                t for t in pending
                if department_id in (t.source_department_id, t.destination_department_id)
            ]
        return sorted(pending, key=lambda t: (t.requested_at, t.transfer_id))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def request(
        self,
        source_department_id: str,
        destination_department_id: str,
        lines: Iterable,
        actor_id: str,
        priority: TransferPriority | str = TransferPriority.NORMAL,
        notes: str | None = None,
        idempotency_key: str | None = None,
        cancel: threading.Event | None = None,
    ) -> TransferRequest:
        """Create a PENDING request and reserve its stock at the source."""
        lines = _coerce_lines(lines)
        validate_transfer_shape(source_department_id, destination_department_id, lines)
        try:
            priority = TransferPriority(priority)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown priority: {priority!r}", field="priority") from exc

        actor = self._catalog.get_user(actor_id)
        require_permission(actor, Permission.REQUEST_TRANSFER)
        self._catalog.get_department(source_department_id)
        self._catalog.get_department(destination_department_id)
        for line in lines:
            item = self._catalog.get_item(line.item_id)
            if not item.is_active:
                raise InvalidInputError(f"Item {line.item_id} is inactive", field="lines")

        fingerprint = transfer_fingerprint(
            source_department_id,
            destination_department_id,
            tuple((line.item_id, line.quantity) for line in lines),
        )
        keys = [StockKey(line.item_id, source_department_id) for line in lines]

        def plan(view: LockedView) -> MutationPlan:
            replayed = view.claim_idempotency(idempotency_key, fingerprint)
            if replayed is not None:
                return MutationPlan(replayed=replayed)

            requested: dict[str, int] = {}
            for index, line in enumerate(lines):
                requested[line.item_id] = requested.get(line.item_id, 0) + line.quantity
                record = view.stock(line.item_id, source_department_id)
                if requested[line.item_id] > record.available:
                    raise InsufficientStockError(
                        line.item_id,
                        source_department_id,
                        requested[line.item_id],
                        record.available,
                        line_index=index,
                    )

            transfer = TransferRequest(
                transfer_id=str(uuid.uuid4()),
                source_department_id=source_department_id,
                destination_department_id=destination_department_id,
                requested_by=actor_id,
                requested_at=view.now,
                lines=lines,
                priority=priority,
                notes=notes,
            )
            entries = tuple(
                PlannedTransaction(
                    kind=TransactionKind.TRANSFER_OUT,
                    item_id=line.item_id,
                    department_id=source_department_id,
                    quantity=line.quantity,
                    actor_user_id=actor_id,
                    status=TransactionStatus.PENDING,
                    quantity_delta=0,
                    reserved_delta=line.quantity,
                    transfer_id=transfer.transfer_id,
                    counterpart_department_id=destination_department_id,
                    idempotency_key=idempotency_key,
                    notes=notes,
                )
                for line in lines
            )
            return MutationPlan(entries=entries, transfer=transfer)

        with LogContext.bind(actor_id=actor_id, idempotency_key=idempotency_key):
            try:
                result = self._store.mutate("transfer_request", keys, plan, cancel=cancel)
            except InsufficientStockError as exc:
                logger.info(
                    "transfer_request_rejected",
                    extra={
                        "source_department_id": source_department_id,
                        "failing_item_id": exc.item_id,
                        "line_index": exc.line_index,
                        "requested": exc.requested,
                        "available": exc.available,
                    },
                )
                raise

            if result.replayed:
                return self.get(result.transfer.transfer_id)
            transfer = result.transfer
            logger.info(
                "transfer_requested",
                extra={
                    "transfer_id": transfer.transfer_id,
                    "source_department_id": source_department_id,
                    "destination_department_id": destination_department_id,
                    "line_count": len(lines),
                    "total_quantity": transfer.total_quantity,
                    "priority": transfer.priority.value,
                },
            )
            return transfer

    def approve(
        self,
        transfer_id: str,
        actor_id: str,
        cancel: threading.Event | None = None,
    ) -> TransferRequest:
        """Move reserved stock from source to destination; status APPROVED."""
        return self._resolve(TransferAction.APPROVE, transfer_id, actor_id, None, cancel)

    def reject(
        self,
        transfer_id: str,
        actor_id: str,
        reason: str | None = None,
        cancel: threading.Event | None = None,
    ) -> TransferRequest:
        """Release the reservation at the source; status REJECTED."""
        return self._resolve(TransferAction.REJECT, transfer_id, actor_id, reason, cancel)

    def _resolve(
        self,
        action: TransferAction,
        transfer_id: str,
        actor_id: str,
        reason: str | None,
        cancel: threading.Event | None,
    ) -> TransferRequest:
        actor = self._catalog.get_user(actor_id)
        require_permission(actor, Permission.RESOLVE_TRANSFER)
        current = self.get(transfer_id)
        if current.status != TransferStatus.PENDING:
            raise InvalidStateError(transfer_id, current.status.value, action.value)

        keys = []
        for line in current.lines:
            keys.append(StockKey(line.item_id, current.source_department_id))
            keys.append(StockKey(line.item_id, current.destination_department_id))

        def plan(view: LockedView) -> MutationPlan:
            # Re-validated under the locks: a racing resolution may have won
            transfer = view.transfer(transfer_id)
            resolved = transfer.transition(action, actor_id, view.now, reason)
            entries: list[PlannedTransaction] = []
            for line in transfer.lines:
                if action == TransferAction.APPROVE:
                    entries.append(self._entry(
                        transfer, line, TransactionKind.TRANSFER_OUT,
                        transfer.source_department_id, transfer.destination_department_id,
                        TransactionStatus.COMPLETED, -line.quantity, -line.quantity, actor_id,
                    ))
                    entries.append(self._entry(
                        transfer, line, TransactionKind.TRANSFER_IN,
                        transfer.destination_department_id, transfer.source_department_id,
                        TransactionStatus.COMPLETED, line.quantity, 0, actor_id,
                    ))
                else:
                    entries.append(self._entry(
                        transfer, line, TransactionKind.TRANSFER_OUT,
                        transfer.source_department_id, transfer.destination_department_id,
                        TransactionStatus.CANCELLED, 0, -line.quantity, actor_id,
                    ))
            return MutationPlan(entries=tuple(entries), transfer=resolved)

        operation = "transfer_approve" if action == TransferAction.APPROVE else "transfer_reject"
        with LogContext.bind(actor_id=actor_id, transfer_id=transfer_id):
            try:
                result = self._store.mutate(operation, keys, plan, cancel=cancel)
            except InvalidStateError as exc:
                logger.info(
                    "transfer_resolution_refused",
                    extra={"action": action.value, "current_status": exc.current_status},
                )
                raise
            resolved = result.transfer
            logger.info(
                "transfer_approved" if action == TransferAction.APPROVE else "transfer_rejected",
                extra={
                    "entry_count": len(result.transactions),
                    "total_quantity": resolved.total_quantity,
                    "reason": reason,
                },
            )
            return resolved

    @staticmethod
    def _entry(
        transfer: TransferRequest,
        line: TransferLine,
        kind: TransactionKind,
        department_id: str,
        counterpart_department_id: str,
        status: TransactionStatus,
        quantity_delta: int,
        reserved_delta: int,
        actor_id: str,
    ) -> PlannedTransaction:
        return PlannedTransaction(
            kind=kind,
            item_id=line.item_id,
            department_id=department_id,
            quantity=line.quantity,
            actor_user_id=actor_id,
            status=status,
            quantity_delta=quantity_delta,
            reserved_delta=reserved_delta,
            transfer_id=transfer.transfer_id,
            counterpart_department_id=counterpart_department_id,
        )

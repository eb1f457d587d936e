"""
LedgerStore -- StockRecord state, the transaction log, and the unit of work.

Responsibility:
    Holds the authoritative in-memory view of every StockRecord, the
    append-only transaction log and the transfer requests, backed by a
    LedgerRepository.  ``mutate`` is the only write path: it takes the
    critical sections of the affected keys, lets the caller validate and
    plan inside them, commits the plan to the repository as one unit, and
    only then publishes it in memory and notifies listeners.

Architecture position:
    Kernel > Services -- imperative shell.  Used by TransactionEngine,
    TransferWorkflow and the AlertDeriver (as a listener).  Never called by
    selectors for writes.

Invariants enforced:
    NON_NEGATIVE_STOCK -- every planned delta is applied through
        ``StockRecord.with_delta``, which refuses a result with
        quantity < reserved or reserved < 0.
    ATOMIC_TRANSFER -- one repository commit per operation; memory changes
        only after the commit succeeds.
    APPEND_ONLY_LOG -- entries are only appended; nothing is rewritten.
    SEQUENCE_MONOTONICITY -- seq values come from SequenceService.
    IDEMPOTENCY -- keys are claimed inside the critical section and
        completed or abandoned together with the operation.

Failure modes:
    - LockTimeoutError / OperationCancelledError before any work is done.
    - Caller validation errors (InsufficientStockError, InvalidStateError,
      ...) propagate unchanged; nothing is written.
    - StoreUnavailableError from the repository; memory is unchanged.
    - InvariantViolationError if a plan would break NON_NEGATIVE_STOCK or
      touches a key whose lock is not held (programming error).

Audit relevance:
    Every committed operation logs ``ledger_committed`` with its seq range.
"""

from __future__ import annotations

import bisect
import threading
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from inventory_kernel.db.repository import InMemoryRepository, LedgerRepository, LedgerWrite
from inventory_kernel.domain.clock import Clock, SystemClock
from inventory_kernel.domain.transactions import (
    LedgerTransaction,
    PlannedTransaction,
    TransactionKind,
    TransactionStatus,
)
from inventory_kernel.domain.transfer import TransferRequest
from inventory_kernel.domain.values import StockKey, StockRecord
from inventory_kernel.exceptions import (
    InvalidInputError,
    InventoryKernelError,
    InvariantViolationError,
    NotFoundError,
)
from inventory_kernel.invariants import LedgerInvariant
from inventory_kernel.logging_config import get_logger
from inventory_kernel.services.idempotency import (
    IdempotencyRegistry,
    booking_fingerprint,
    transfer_fingerprint,
)
from inventory_kernel.services.lock_manager import KeyLockManager
from inventory_kernel.services.recovery import diff_records, replay_log
from inventory_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger_store")

StockListener = Callable[[StockRecord | None, StockRecord], None]


@dataclass(frozen=True)
class MutationPlan:
    """What a planner decided inside the critical section."""

    entries: tuple[PlannedTransaction, ...] = ()
    transfer: TransferRequest | None = None
    replayed: MutationResult | None = None


@dataclass(frozen=True)
class MutationResult:
    transactions: tuple[LedgerTransaction, ...] = ()
    records: tuple[StockRecord, ...] = ()
    transfer: TransferRequest | None = None
    replayed: bool = False


@dataclass
class LockedView:
    """
    Read access handed to a planner while the operation's locks are held.

    Reads of StockRecords outside ``keys`` are refused: a validity check
    must be made under the same critical section that protects the write.
    """

    store: LedgerStore
    keys: frozenset[StockKey]
    now: datetime
    claimed_key: str | None = field(default=None, init=False)

    def stock(self, item_id: str, department_id: str) -> StockRecord:
        key = StockKey(item_id, department_id)
        if key not in self.keys:
            raise InvariantViolationError(
                LedgerInvariant.NON_NEGATIVE_STOCK.value,
                f"read of {key} outside the held critical sections",
            )
        return self.store.get_stock(item_id, department_id)

    def transfer(self, transfer_id: str) -> TransferRequest:
        return self.store.get_transfer(transfer_id)

    def claim_idempotency(self, key: str | None, fingerprint: tuple) -> MutationResult | None:
        """Claim a dedup key; returns the original result on replay."""
        if key is None:
            return None
        previous = self.store.idempotency.claim(key, fingerprint)
        if previous is None:
            self.claimed_key = key
        return previous


class LedgerStore:
    """
    In-memory ledger state with per-key critical sections and a durable backing.

    Contract:
        All writes go through ``mutate``.  Reads (``get_stock``,
        ``transactions``, ``records``, ``transfers``, ``snapshot_state``)
        never block on the per-key locks and always observe whole
        operations: an operation's records, log entries and transfer
        change become visible together.

    Guarantees:
        - Memory reflects exactly the committed repository state.
        - Listeners are called once per changed StockRecord, in commit
          order per key, while the key's lock is still held.

    Non-goals:
        - Does NOT check permissions or catalog membership.
    """

    def __init__(
        self,
        repository: LedgerRepository | None = None,
        clock: Clock | None = None,
        lock_timeout_seconds: float = 5.0,
        default_threshold: Callable[[str], int] | None = None,
    ):
        self._repository = repository if repository is not None else InMemoryRepository()
        self._clock = clock or SystemClock()
        self._locks = KeyLockManager(lock_timeout_seconds)
        self._sequence = SequenceService(self._clock)
        self.idempotency = IdempotencyRegistry()
        self._default_threshold = default_threshold or (lambda item_id: 0)

        self._state_lock = threading.RLock()
        self._records: dict[StockKey, StockRecord] = {}
        self._log: list[LedgerTransaction] = []
        self._log_seqs: list[int] = []
        self._transfers: dict[str, TransferRequest] = {}
        self._thresholds: dict[StockKey, int] = {}
        self._listeners: list[StockListener] = []

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def repository(self) -> LedgerRepository:
        return self._repository

    @property
    def lock_manager(self) -> KeyLockManager:
        return self._locks

    def add_listener(self, listener: StockListener) -> None:
        self._listeners.append(listener)

    def set_default_threshold(self, default_threshold: Callable[[str], int]) -> None:
        self._default_threshold = default_threshold

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    def load(self) -> int:
        """
        Rebuild memory from the repository by replaying the log.

        The persisted stock table is compared with the replay and repaired
        if a crash left it behind the log.  Returns the number of log
        entries replayed.
        """
        thresholds = self._repository.load_thresholds()
        with self._state_lock:
            self._thresholds = dict(thresholds)

        transactions = self._repository.load_transactions()
        replayed = replay_log(transactions, self.threshold_for)
        mismatches = diff_records(self._repository.load_stock_records(), replayed)
        if mismatches:
            logger.warning(
                "stock_table_repaired",
                extra={
                    "mismatch_count": len(mismatches),
                    "keys": [str(m.key) for m in mismatches],
                },
            )
            self._repository.replace_stock_records(replayed[key] for key in sorted(replayed))

        transfers = {t.transfer_id: t for t in self._repository.load_transfers()}

        with self._state_lock:
            self._records = replayed
            self._log = sorted(transactions, key=lambda tx: tx.seq)
            self._log_seqs = [tx.seq for tx in self._log]
            self._transfers = transfers
            last = self._log[-1] if self._log else None
            self._sequence.seed(
                last.seq if last else 0,
                max((tx.timestamp for tx in self._log), default=None),
            )
        self._restore_idempotency(transactions, transfers)

        for record in replayed.values():
            self._notify(None, record)

        logger.info(
            "ledger_loaded",
            extra={
                "transaction_count": len(transactions),
                "record_count": len(replayed),
                "transfer_count": len(transfers),
            },
        )
        return len(transactions)

    def _restore_idempotency(
        self,
        transactions: list[LedgerTransaction],
        transfers: dict[str, TransferRequest],
    ) -> None:
        self.idempotency.clear()
        grouped: dict[str, list[LedgerTransaction]] = {}
        for tx in transactions:
            if tx.idempotency_key is not None:
                grouped.setdefault(tx.idempotency_key, []).append(tx)
        for key, entries in grouped.items():
            first = entries[0]
            if first.kind in (TransactionKind.BOOK_IN, TransactionKind.BOOK_OUT):
                fingerprint = booking_fingerprint(
                    first.kind.value, first.item_id, first.department_id, first.quantity
                )
                result = MutationResult(transactions=(first,))
            else:
                transfer = transfers.get(first.transfer_id)
                if transfer is None:
                    continue
                fingerprint = transfer_fingerprint(
                    transfer.source_department_id,
                    transfer.destination_department_id,
                    tuple((line.item_id, line.quantity) for line in transfer.lines),
                )
                pending = tuple(
                    tx for tx in entries if tx.status == TransactionStatus.PENDING
                )
                result = MutationResult(transactions=pending, transfer=transfer)
            self.idempotency.restore(key, fingerprint, result)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def threshold_for(self, key: StockKey) -> int:
        with self._state_lock:
            override = self._thresholds.get(key)
        if override is not None:
            return override
        return self._default_threshold(key.item_id)

    def get_stock(self, item_id: str, department_id: str) -> StockRecord:
        """Current record for the key; a zero record if none exists.  Never fails."""
        key = StockKey(item_id, department_id)
        with self._state_lock:
            record = self._records.get(key)
        if record is None:
            return StockRecord(item_id, department_id, min_threshold=self.threshold_for(key))
        return record

    def records(self) -> list[StockRecord]:
        with self._state_lock:
            return [self._records[key] for key in sorted(self._records)]

    def transactions(self) -> list[LedgerTransaction]:
        with self._state_lock:
            return list(self._log)

    def transfers(self) -> list[TransferRequest]:
        with self._state_lock:
            return list(self._transfers.values())

    def get_transfer(self, transfer_id: str) -> TransferRequest:
        with self._state_lock:
            transfer = self._transfers.get(transfer_id)
        if transfer is None:
            raise NotFoundError("TransferRequest", transfer_id)
        return transfer

    def snapshot_state(
        self,
    ) -> tuple[int, list[StockRecord], list[LedgerTransaction], list[TransferRequest]]:
        """Consistent copy of (last seq, records, log, transfers)."""
        with self._state_lock:
            last_seq = self._log_seqs[-1] if self._log_seqs else 0
            return (
                last_seq,
                [self._records[key] for key in sorted(self._records)],
                list(self._log),
                list(self._transfers.values()),
            )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def apply_delta(
        self,
        item_id: str,
        department_id: str,
        quantity_delta: int,
        reserved_delta: int,
        *,
        kind: TransactionKind,
        actor_id: str,
        status: TransactionStatus = TransactionStatus.COMPLETED,
        notes: str | None = None,
        cancel: threading.Event | None = None,
    ) -> StockRecord:
        """
        Atomic read-modify-write of one StockRecord, logged as one entry.

        Business checks (stock cover, permissions) belong to the caller;
        this only guards the record invariant.

        Raises:
            InvalidInputError: Both deltas are zero.
            InvariantViolationError: The result would break
                ``quantity >= reserved >= 0``.  Nothing is written.
        """
        if quantity_delta == 0 and reserved_delta == 0:
            raise InvalidInputError("apply_delta needs a non-zero delta", field="quantity_delta")
        entry = PlannedTransaction(
            kind=kind,
            item_id=item_id,
            department_id=department_id,
            quantity=abs(quantity_delta) or abs(reserved_delta),
            actor_user_id=actor_id,
            status=status,
            quantity_delta=quantity_delta,
            reserved_delta=reserved_delta,
            notes=notes,
        )
        return self._append(entry, "apply_delta", cancel).records[0]

    def append_transaction(
        self,
        entry: PlannedTransaction,
        cancel: threading.Event | None = None,
    ) -> LedgerTransaction:
        """Append one entry and apply its delta as a single unit of work."""
        return self._append(entry, "append_transaction", cancel).transactions[0]

    def _append(
        self,
        entry: PlannedTransaction,
        operation: str,
        cancel: threading.Event | None,
    ) -> MutationResult:
        def plan(view: LockedView) -> MutationPlan:
            # refused before a seq is spent
            view.stock(entry.item_id, entry.department_id).with_delta(
                entry.quantity_delta, entry.reserved_delta, view.now
            )
            return MutationPlan(entries=(entry,))

        return self.mutate(operation, [entry.key], plan, cancel=cancel)

    def mutate(
        self,
        operation: str,
        keys: Iterable[StockKey],
        planner: Callable[[LockedView], MutationPlan],
        cancel: threading.Event | None = None,
    ) -> MutationResult:
        """
        Run ``planner`` inside the critical sections of ``keys`` and commit its plan.

        Preconditions: ``keys`` covers every StockKey the plan writes.
        Postconditions: On success the log entries, record updates and
            transfer change are durable and visible.  On any exception
            nothing is written and memory is unchanged.
        """
        key_set = frozenset(keys)
        with self._locks.hold(key_set, cancel=cancel, operation=operation):
            view = LockedView(self, key_set, self._clock.now())
            try:
                plan = planner(view)
                if plan.replayed is not None:
                    return MutationResult(
                        transactions=plan.replayed.transactions,
                        records=plan.replayed.records,
                        transfer=plan.replayed.transfer,
                        replayed=True,
                    )
                result, previous = self._commit(operation, key_set, plan)
            except BaseException:
                if view.claimed_key is not None:
                    self.idempotency.abandon(view.claimed_key)
                raise
            if view.claimed_key is not None:
                self.idempotency.complete(view.claimed_key, result)
            for record in result.records:
                self._notify(previous.get(record.key), record)
            return result

    def _commit(
        self,
        operation: str,
        key_set: frozenset[StockKey],
        plan: MutationPlan,
    ) -> tuple[MutationResult, dict[StockKey, StockRecord | None]]:
        for entry in plan.entries:
            if entry.key not in key_set:
                raise InvariantViolationError(
                    LedgerInvariant.ATOMIC_TRANSFER.value,
                    f"{operation} writes {entry.key} without holding its lock",
                )

        transactions: tuple[LedgerTransaction, ...] = ()
        updated: dict[StockKey, StockRecord] = {}
        previous: dict[StockKey, StockRecord | None] = {}
        if plan.entries:
            seqs, at = self._sequence.allocate(len(plan.entries))
            transactions = tuple(
                entry.materialize(str(uuid.uuid4()), seq, at)
                for entry, seq in zip(plan.entries, seqs)
            )
            with self._state_lock:
                for key in {entry.key for entry in plan.entries}:
                    previous[key] = self._records.get(key)
            for tx in transactions:
                current = updated.get(tx.key) or self.get_stock(tx.item_id, tx.department_id)
                # INVARIANT: NON_NEGATIVE_STOCK
                updated[tx.key] = current.with_delta(
                    tx.quantity_delta, tx.reserved_delta, tx.timestamp
                )

        records = tuple(updated[key] for key in sorted(updated))
        try:
            self._repository.commit(
                LedgerWrite(transactions=transactions, records=records, transfer=plan.transfer)
            )
        except InventoryKernelError:
            logger.error(
                "ledger_commit_failed",
                extra={"operation": operation, "entry_count": len(transactions)},
                exc_info=True,
            )
            raise

        with self._state_lock:
            for record in records:
                self._records[record.key] = record
            for tx in transactions:
                index = bisect.bisect(self._log_seqs, tx.seq)
                self._log_seqs.insert(index, tx.seq)
                self._log.insert(index, tx)
            if plan.transfer is not None:
                self._transfers[plan.transfer.transfer_id] = plan.transfer

        if transactions:
            logger.info(
                "ledger_committed",
                extra={
                    "operation": operation,
                    "first_seq": transactions[0].seq,
                    "last_seq": transactions[-1].seq,
                    "entry_count": len(transactions),
                },
            )
        return (
            MutationResult(transactions=transactions, records=records, transfer=plan.transfer),
            previous,
        )

    def set_threshold(self, item_id: str, department_id: str, min_threshold: int) -> StockRecord:
        """Persist a per-department threshold override and re-derive the record."""
        key = StockKey(item_id, department_id)
        with self._locks.hold([key], operation="set_threshold"):
            self._repository.save_threshold(key, min_threshold)
            with self._state_lock:
                self._thresholds[key] = min_threshold
                before = self._records.get(key)
                if before is not None:
                    self._records[key] = before.with_threshold(min_threshold)
            after = self.get_stock(item_id, department_id)
            if before is not None:
                self._notify(before, after)
        logger.info(
            "threshold_set",
            extra={"stock_key": str(key), "min_threshold": min_threshold},
        )
        return after

    def refresh_default_threshold(self, item_id: str) -> None:
        """Re-derive records of ``item_id`` that follow the item's default threshold."""
        default = self._default_threshold(item_id)
        with self._state_lock:
            keys = [
                key for key in self._records
                if key.item_id == item_id and key not in self._thresholds
            ]
        for key in sorted(keys):
            with self._locks.hold([key], operation="refresh_threshold"):
                with self._state_lock:
                    before = self._records[key]
                    after = before.with_threshold(default)
                    self._records[key] = after
                self._notify(before, after)

    def _notify(self, before: StockRecord | None, after: StockRecord) -> None:
        for listener in self._listeners:
            listener(before, after)

    def close(self) -> None:
        self._repository.close()

    def last_seq(self) -> int:
        with self._state_lock:
            return self._log_seqs[-1] if self._log_seqs else 0


"""
Ledger transaction value objects.

Every entry in the append-only log is a ``LedgerTransaction`` that carries
its own net effect (``quantity_delta``, ``reserved_delta``) on exactly one
StockRecord.  Replaying the log from empty state is therefore a plain fold
over those deltas in ``seq`` order.

Log encoding of the operations:

    book_in   BOOK_IN       +q / 0    COMPLETED
    book_out  BOOK_OUT      -q / 0    COMPLETED
    request   TRANSFER_OUT   0 / +q   PENDING     (one per line, at source)
    approve   TRANSFER_OUT  -q / -q   COMPLETED   (at source)
              TRANSFER_IN   +q / 0    COMPLETED   (at destination)
    reject    TRANSFER_OUT   0 / -q   CANCELLED   (at source)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from inventory_kernel.domain.values import StockKey


class TransactionKind(str, Enum):
    BOOK_IN = "book_in"
    BOOK_OUT = "book_out"
    TRANSFER_OUT = "transfer_out"
    TRANSFER_IN = "transfer_in"


class TransactionStatus(str, Enum):
    COMPLETED = "completed"
    PENDING = "pending"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class LedgerTransaction:
    """One immutable entry of the transaction log."""

    transaction_id: str
    seq: int
    timestamp: datetime
    kind: TransactionKind
    item_id: str
    department_id: str
    quantity: int
    actor_user_id: str
    status: TransactionStatus
    quantity_delta: int
    reserved_delta: int
    transfer_id: str | None = None
    counterpart_department_id: str | None = None
    idempotency_key: str | None = None
    notes: str | None = None

    @property
    def key(self) -> StockKey:
        return StockKey(self.item_id, self.department_id)

    @property
    def sort_key(self) -> tuple[datetime, int]:
        """Persisted log order: timestamp, then monotonic sequence number."""
        return (self.timestamp, self.seq)


@dataclass(frozen=True)
class PlannedTransaction:
    """A log entry planned inside a critical section, before ``seq`` is assigned."""

    kind: TransactionKind
    item_id: str
    department_id: str
    quantity: int
    actor_user_id: str
    status: TransactionStatus
    quantity_delta: int
    reserved_delta: int
    transfer_id: str | None = None
    counterpart_department_id: str | None = None
    idempotency_key: str | None = None
    notes: str | None = None

    @property
    def key(self) -> StockKey:
        return StockKey(self.item_id, self.department_id)

    def materialize(
        self,
        transaction_id: str,
        seq: int,
        timestamp: datetime,
    ) -> LedgerTransaction:
        return LedgerTransaction(
            transaction_id=transaction_id,
            seq=seq,
            timestamp=timestamp,
            kind=self.kind,
            item_id=self.item_id,
            department_id=self.department_id,
            quantity=self.quantity,
            actor_user_id=self.actor_user_id,
            status=self.status,
            quantity_delta=self.quantity_delta,
            reserved_delta=self.reserved_delta,
            transfer_id=self.transfer_id,
            counterpart_department_id=self.counterpart_department_id,
            idempotency_key=self.idempotency_key,
            notes=self.notes,
        )

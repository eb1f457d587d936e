"""
Module: inventory_kernel.models.transaction
Responsibility: ORM persistence for the append-only ledger transaction log.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    APPEND_ONLY_LOG -- rows are never updated or deleted.  Enforced by the
        ORM listeners in db/immutability.py.
    SEQUENCE_MONOTONICITY -- ``seq`` is unique; the log is read ordered by
        (timestamp, seq).

Failure modes:
    - IntegrityError on duplicate seq, transaction_id or idempotency key.
    - InvariantViolationError on UPDATE/DELETE of a log row.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base
from inventory_kernel.domain.transactions import (
    LedgerTransaction,
    TransactionKind,
    TransactionStatus,
)


class LedgerTransactionModel(Base):
    """Persistent log entry.  Append-only."""

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_ledger_transactions_positive_quantity"),
        CheckConstraint(
            "kind IN ('book_in', 'book_out', 'transfer_out', 'transfer_in')",
            name="ck_ledger_transactions_valid_kind",
        ),
        CheckConstraint(
            "status IN ('completed', 'pending', 'cancelled')",
            name="ck_ledger_transactions_valid_status",
        ),
        Index("ix_ledger_transactions_order", "timestamp", "seq"),
        Index("ix_ledger_transactions_key", "item_id", "department_id"),
        Index("ix_ledger_transactions_transfer", "transfer_id"),
    )

    transaction_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    department_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    quantity_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_delta: Mapped[int] = mapped_column(Integer, nullable=False)
    transfer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    counterpart_department_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    idempotency_key: Mapped[str | None] = mapped_column(String(64), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<LedgerTransaction seq={self.seq} {self.kind} "
            f"{self.item_id}@{self.department_id} q={self.quantity}>"
        )

    def to_dto(self) -> LedgerTransaction:
        """Convert ORM model to frozen domain DTO."""
        return LedgerTransaction(
            transaction_id=self.transaction_id,
            seq=self.seq,
            timestamp=self.timestamp,
            kind=TransactionKind(self.kind),
            item_id=self.item_id,
            department_id=self.department_id,
            quantity=self.quantity,
            actor_user_id=self.actor_user_id,
            status=TransactionStatus(self.status),
            quantity_delta=self.quantity_delta,
            reserved_delta=self.reserved_delta,
            transfer_id=self.transfer_id,
            counterpart_department_id=self.counterpart_department_id,
            idempotency_key=self.idempotency_key,
            notes=self.notes,
        )

    @classmethod
    def from_dto(cls, dto: LedgerTransaction) -> LedgerTransactionModel:
        """Create ORM model from domain DTO."""
        return cls(
            transaction_id=dto.transaction_id,
            seq=dto.seq,
            timestamp=dto.timestamp,
            kind=dto.kind.value,
            item_id=dto.item_id,
            department_id=dto.department_id,
            quantity=dto.quantity,
            actor_user_id=dto.actor_user_id,
            status=dto.status.value,
            quantity_delta=dto.quantity_delta,
            reserved_delta=dto.reserved_delta,
            transfer_id=dto.transfer_id,
            counterpart_department_id=dto.counterpart_department_id,
            idempotency_key=dto.idempotency_key,
            notes=dto.notes,
        )

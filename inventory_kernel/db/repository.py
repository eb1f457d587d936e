"""
Module: inventory_kernel.db.repository
Responsibility: Durable backing for the ledger: the append-only transaction
    log, the current-value stock table, threshold overrides, and transfer
    requests.  Two implementations share one contract:

    * ``InMemoryRepository`` -- process-local, used by tests and ephemeral
      deployments.  Can be handed to a second service instance to simulate a
      restart.
    * ``SqlLedgerRepository`` -- SQLAlchemy, any URL accepted by
      ``init_engine_from_url``.

Architecture position: Kernel > DB.  May import from db/, models/, domain/.
    Called only by services/ledger_store.py and services/recovery.py.

Invariants enforced:
    - ATOMIC_TRANSFER -- ``commit`` writes every log row, stock row and the
      transfer row of one operation in a single database transaction.
    - APPEND_ONLY_LOG -- log rows are only ever inserted.

Failure modes:
    - StoreUnavailableError if the backend cannot complete a read or write.
      The driver error is logged; the raised message stays generic.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from contextlib import nullcontext
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from inventory_kernel.db.engine import (
    create_tables,
    init_engine_from_url,
    is_sqlite,
    reset_engine,
    session_scope,
)
from inventory_kernel.domain.transactions import LedgerTransaction
from inventory_kernel.domain.transfer import TransferRequest
from inventory_kernel.domain.values import StockKey, StockRecord
from inventory_kernel.exceptions import StoreUnavailableError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.models import (
    LedgerTransactionModel,
    StockRecordModel,
    StockThresholdModel,
    TransferRequestModel,
)

logger = get_logger("db.repository")


@dataclass(frozen=True)
class LedgerWrite:
    """Everything one ledger operation persists, committed as one unit."""

    transactions: tuple[LedgerTransaction, ...]
    records: tuple[StockRecord, ...]
    transfer: TransferRequest | None = None


class LedgerRepository(ABC):
    """
    Persistence contract for the ledger store.

    Contract:
        ``commit`` is all-or-nothing.  Loads return domain DTOs; the log is
        returned ordered by (timestamp, seq).

    Non-goals:
        - Does NOT validate ledger invariants.  The store validates before
          calling ``commit``.
    """

    @abstractmethod
    def load_transactions(self) -> list[LedgerTransaction]:
        ...

    @abstractmethod
    def load_stock_records(self) -> list[StockRecord]:
        """Persisted current values.  ``min_threshold`` is not stored here."""

    @abstractmethod
    def load_thresholds(self) -> dict[StockKey, int]:
        ...

    @abstractmethod
    def load_transfers(self) -> list[TransferRequest]:
        ...

    @abstractmethod
    def commit(self, write: LedgerWrite) -> None:
        ...

    @abstractmethod
    def save_threshold(self, key: StockKey, min_threshold: int) -> None:
        ...

    @abstractmethod
    def replace_stock_records(self, records: Iterable[StockRecord]) -> None:
        """Rewrite the whole current-value table (recovery only)."""

    def close(self) -> None:
        """Release backend resources."""


class InMemoryRepository(LedgerRepository):
    """Process-local repository.  Thread-safe."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._transactions: list[LedgerTransaction] = []
        self._records: dict[StockKey, StockRecord] = {}
        self._thresholds: dict[StockKey, int] = {}
        self._transfers: dict[str, TransferRequest] = {}

    def load_transactions(self) -> list[LedgerTransaction]:
        with self._lock:
            return sorted(self._transactions, key=lambda tx: tx.sort_key)

    def load_stock_records(self) -> list[StockRecord]:
        with self._lock:
            return [self._records[key] for key in sorted(self._records)]

    def load_thresholds(self) -> dict[StockKey, int]:
        with self._lock:
            return dict(self._thresholds)

    def load_transfers(self) -> list[TransferRequest]:
        with self._lock:
            return list(self._transfers.values())

    def commit(self, write: LedgerWrite) -> None:
        with self._lock:
            self._transactions.extend(write.transactions)
            for record in write.records:
                self._records[record.key] = record
            if write.transfer is not None:
                self._transfers[write.transfer.transfer_id] = write.transfer

    def save_threshold(self, key: StockKey, min_threshold: int) -> None:
        with self._lock:
            self._thresholds[key] = min_threshold

    def replace_stock_records(self, records: Iterable[StockRecord]) -> None:
        with self._lock:
            self._records = {record.key: record for record in records}


class SqlLedgerRepository(LedgerRepository):
    """
    SQLAlchemy-backed repository.

    Contract:
        Uses the module-level engine from ``db.engine``.  ``from_url`` is the
        convenience constructor that initializes the engine and schema.

    Guarantees:
        - Every public method runs inside one ``session_scope()``.
        - On SQLite, writes are serialized in-process (SQLite permits a
          single writer).
    """

    def __init__(self) -> None:
        self._write_lock = threading.Lock() if is_sqlite() else None

    @classmethod
    def from_url(cls, database_url: str, echo: bool = False) -> SqlLedgerRepository:
        try:
            init_engine_from_url(database_url, echo=echo)
            create_tables()
        except SQLAlchemyError as exc:
            raise cls._unavailable("init", exc) from exc
        return cls()

    @staticmethod
    def _unavailable(operation: str, exc: Exception) -> StoreUnavailableError:
        logger.error(
            "ledger_store_unavailable",
            extra={"operation": operation, "error": str(exc)},
        )
        return StoreUnavailableError(operation)

    def _write(self):
        if self._write_lock is None:
            return nullcontext()
        return self._write_lock

    def load_transactions(self) -> list[LedgerTransaction]:
        try:
            with session_scope() as session:
                rows = session.execute(
                    select(LedgerTransactionModel).order_by(
                        LedgerTransactionModel.timestamp,
                        LedgerTransactionModel.seq,
                    )
                ).scalars()
                return [row.to_dto() for row in rows]
        except SQLAlchemyError as exc:
            raise self._unavailable("load_transactions", exc) from exc

    def load_stock_records(self) -> list[StockRecord]:
        try:
            with session_scope() as session:
                rows = session.execute(
                    select(StockRecordModel).order_by(
                        StockRecordModel.item_id,
                        StockRecordModel.department_id,
                    )
                ).scalars()
                return [row.to_dto() for row in rows]
        except SQLAlchemyError as exc:
            raise self._unavailable("load_stock_records", exc) from exc

    def load_thresholds(self) -> dict[StockKey, int]:
        try:
            with session_scope() as session:
                rows = session.execute(select(StockThresholdModel)).scalars()
                return {row.key: row.min_threshold for row in rows}
        except SQLAlchemyError as exc:
            raise self._unavailable("load_thresholds", exc) from exc

    def load_transfers(self) -> list[TransferRequest]:
        try:
            with session_scope() as session:
                rows = session.execute(
                    select(TransferRequestModel).order_by(TransferRequestModel.requested_at)
                ).scalars()
                return [row.to_dto() for row in rows]
        except SQLAlchemyError as exc:
            raise self._unavailable("load_transfers", exc) from exc

    def commit(self, write: LedgerWrite) -> None:
        try:
            with self._write(), session_scope() as session:
                for tx in write.transactions:
                    session.add(LedgerTransactionModel.from_dto(tx))
                for record in write.records:
                    self._upsert_record(session, record)
                if write.transfer is not None:
                    self._upsert_transfer(session, write.transfer)
        except SQLAlchemyError as exc:
            raise self._unavailable("commit", exc) from exc

    def save_threshold(self, key: StockKey, min_threshold: int) -> None:
        try:
            with self._write(), session_scope() as session:
                row = session.execute(
                    select(StockThresholdModel).where(
                        StockThresholdModel.item_id == key.item_id,
                        StockThresholdModel.department_id == key.department_id,
                    )
                ).scalar_one_or_none()
                if row is None:
                    session.add(
                        StockThresholdModel(
                            item_id=key.item_id,
                            department_id=key.department_id,
                            min_threshold=min_threshold,
                        )
                    )
                else:
                    row.min_threshold = min_threshold
        except SQLAlchemyError as exc:
            raise self._unavailable("save_threshold", exc) from exc

    def replace_stock_records(self, records: Iterable[StockRecord]) -> None:
        try:
            with self._write(), session_scope() as session:
                session.execute(delete(StockRecordModel))
                for record in records:
                    session.add(StockRecordModel.from_dto(record))
        except SQLAlchemyError as exc:
            raise self._unavailable("replace_stock_records", exc) from exc

    def close(self) -> None:
        reset_engine()

    @staticmethod
    def _upsert_record(session, record: StockRecord) -> None:
        row = session.execute(
            select(StockRecordModel).where(
                StockRecordModel.item_id == record.item_id,
                StockRecordModel.department_id == record.department_id,
            )
        ).scalar_one_or_none()
        if row is None:
            session.add(StockRecordModel.from_dto(record))
        else:
            row.apply(record)

    @staticmethod
    def _upsert_transfer(session, transfer: TransferRequest) -> None:
        row = session.execute(
            select(TransferRequestModel).where(
                TransferRequestModel.transfer_id == transfer.transfer_id
            )
        ).scalar_one_or_none()
        if row is None:
            session.add(TransferRequestModel.from_dto(transfer))
        else:
            row.apply_resolution(transfer)


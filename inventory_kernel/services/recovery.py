"""
Recovery -- rebuild and verify StockRecord state from the transaction log.

Responsibility:
    Replays the append-only log from empty state and compares the result
    with the persisted current-value table.  ``rebuild`` rewrites the table
    from the replay.

Architecture position:
    Kernel > Services.  Pure replay functions plus a thin service over a
    LedgerRepository.  Used by LedgerStore at startup and by the operator
    CLI (scripts/ledger_cli.py).

Invariants enforced:
    REPLAY_EQUIVALENCE -- replaying the log yields exactly the StockRecord
        table: each entry carries its own net delta, so replay is a fold.
    SEQUENCE_MONOTONICITY -- replay refuses a log whose seq values are not
        strictly increasing in (timestamp, seq) order.
    NON_NEGATIVE_STOCK -- replay raises if any prefix of the log would
        drive a record negative (the log itself is corrupt).
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass

from inventory_kernel.db.repository import LedgerRepository
from inventory_kernel.domain.transactions import LedgerTransaction
from inventory_kernel.domain.values import StockKey, StockRecord
from inventory_kernel.exceptions import InvariantViolationError
from inventory_kernel.invariants import LedgerInvariant
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.recovery")


def replay_log(
    transactions: Iterable[LedgerTransaction],
    threshold_for: Callable[[StockKey], int] | None = None,
) -> dict[StockKey, StockRecord]:
    """
    Fold the log into StockRecords, starting from empty state.

    ``transactions`` must already be in persisted order (timestamp, seq).
    """
    records: dict[StockKey, StockRecord] = {}
    last_seq = 0
    for tx in transactions:
        # INVARIANT: SEQUENCE_MONOTONICITY
        if tx.seq <= last_seq:
            raise InvariantViolationError(
                LedgerInvariant.SEQUENCE_MONOTONICITY.value,
                f"seq {tx.seq} follows {last_seq} in log order",
            )
        last_seq = tx.seq
        key = tx.key
        current = records.get(key)
        if current is None:
            threshold = threshold_for(key) if threshold_for is not None else 0
            current = StockRecord(key.item_id, key.department_id, min_threshold=threshold)
        records[key] = current.with_delta(tx.quantity_delta, tx.reserved_delta, tx.timestamp)
    return records


@dataclass(frozen=True)
class StockMismatch:
    key: StockKey
    persisted: StockRecord | None
    replayed: StockRecord | None


def _same_values(a: StockRecord | None, b: StockRecord | None) -> bool:
    if a is None or b is None:
        # A missing row equals an untouched zero record
        present = a if a is not None else b
        return present is None or (present.quantity == 0 and present.reserved == 0)
    return (
        a.quantity == b.quantity
        and a.reserved == b.reserved
        and a.last_updated == b.last_updated
    )


def diff_records(
    persisted: Iterable[StockRecord],
    replayed: dict[StockKey, StockRecord],
) -> tuple[StockMismatch, ...]:
    """Compare quantity, reserved and last_updated per key."""
    persisted_by_key = {record.key: record for record in persisted}
    mismatches = []
    for key in sorted(set(persisted_by_key) | set(replayed)):
        left = persisted_by_key.get(key)
        right = replayed.get(key)
        if not _same_values(left, right):
            mismatches.append(StockMismatch(key=key, persisted=left, replayed=right))
    return tuple(mismatches)


@dataclass(frozen=True)
class RecoveryReport:
    transaction_count: int
    record_count: int
    last_seq: int
    mismatches: tuple[StockMismatch, ...]
    repaired: bool = False

    @property
    def consistent(self) -> bool:
        return not self.mismatches


class RecoveryService:
    """
    Verify or rebuild a repository's stock table from its log.

    Contract:
        ``verify`` never writes.  ``rebuild`` rewrites ``stock_records``
        only when the replay disagrees with it.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        threshold_for: Callable[[StockKey], int] | None = None,
    ):
        self._repository = repository
        self._threshold_for = threshold_for

    def _thresholds(self, persisted: list[StockRecord]) -> Callable[[StockKey], int]:
        if self._threshold_for is not None:
            return self._threshold_for
        # Without a catalog, keep what the repository already knows
        overrides = self._repository.load_thresholds()
        carried = {record.key: record.min_threshold for record in persisted}
        return lambda key: overrides.get(key, carried.get(key, 0))

    def verify(self) -> RecoveryReport:
        return self._check()[0]

    def _check(self) -> tuple[RecoveryReport, dict[StockKey, StockRecord]]:
        persisted = self._repository.load_stock_records()
        transactions = self._repository.load_transactions()
        replayed = replay_log(transactions, self._thresholds(persisted))
        mismatches = diff_records(persisted, replayed)
        report = RecoveryReport(
            transaction_count=len(transactions),
            record_count=len(replayed),
            last_seq=transactions[-1].seq if transactions else 0,
            mismatches=mismatches,
        )
        logger.info(
            "ledger_verified",
            extra={
                "transaction_count": report.transaction_count,
                "record_count": report.record_count,
                "mismatch_count": len(mismatches),
            },
        )
        return report, replayed

    def rebuild(self) -> RecoveryReport:
        report, replayed = self._check()
        if report.consistent:
            return report
        self._repository.replace_stock_records(replayed[key] for key in sorted(replayed))
        logger.warning(
            "stock_table_rebuilt",
            extra={
                "mismatch_count": len(report.mismatches),
                "keys": [str(m.key) for m in report.mismatches],
            },
        )
        return RecoveryReport(
            transaction_count=report.transaction_count,
            record_count=report.record_count,
            last_seq=report.last_seq,
            mismatches=report.mismatches,
            repaired=True,
        )

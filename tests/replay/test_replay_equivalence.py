"""
Replay tests: folding the log from empty state reproduces the stock table.

Same log in, same records out.  A log that breaks sequence order or would
drive stock negative is rejected rather than folded.
"""

from datetime import UTC, datetime, timedelta

import pytest

from inventory_kernel.domain.clock import DeterministicClock
from inventory_kernel.domain.transactions import (
    LedgerTransaction,
    TransactionKind,
    TransactionStatus,
)
from inventory_kernel.domain.values import StockKey, StockRecord
from inventory_kernel.exceptions import InvariantViolationError
from inventory_kernel.services.recovery import diff_records, replay_log
from inventory_services import InventoryLedgerService
from tests.conftest import ICU, MANAGER, NURSE, PHARMACY, SURGERY, build_reference_data

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=UTC)


def _tx(seq, kind, item, dept, quantity_delta, reserved_delta=0, status=TransactionStatus.COMPLETED):
    return LedgerTransaction(
        transaction_id=f"TX-{seq}",
        seq=seq,
        timestamp=T0 + timedelta(seconds=seq),
        kind=kind,
        item_id=item,
        department_id=dept,
        quantity=abs(quantity_delta) or abs(reserved_delta),
        actor_user_id=NURSE,
        status=status,
        quantity_delta=quantity_delta,
        reserved_delta=reserved_delta,
    )


class TestReplayLog:

    def test_empty_log(self):
        assert replay_log([]) == {}

    def test_transfer_lifecycle_folds(self):
        log = [
            _tx(1, TransactionKind.BOOK_IN, "IV-003", PHARMACY, 60),
            _tx(2, TransactionKind.TRANSFER_OUT, "IV-003", PHARMACY, 0, 50, TransactionStatus.PENDING),
            _tx(3, TransactionKind.TRANSFER_OUT, "IV-003", PHARMACY, -50, -50),
            _tx(4, TransactionKind.TRANSFER_IN, "IV-003", ICU, 50),
        ]
        records = replay_log(log)

        source = records[StockKey("IV-003", PHARMACY)]
        assert (source.quantity, source.reserved) == (10, 0)
        assert source.last_updated == log[2].timestamp
        assert records[StockKey("IV-003", ICU)].quantity == 50

    def test_threshold_lookup_for_new_keys(self):
        records = replay_log(
            [_tx(1, TransactionKind.BOOK_IN, "ITM-001", SURGERY, 5)],
            lambda key: 100 if key.item_id == "ITM-001" else 0,
        )
        assert records[StockKey("ITM-001", SURGERY)].min_threshold == 100

    def test_replay_is_deterministic(self):
        log = [
            _tx(1, TransactionKind.BOOK_IN, "ITM-001", SURGERY, 45),
            _tx(2, TransactionKind.BOOK_OUT, "ITM-001", SURGERY, -10),
            _tx(3, TransactionKind.BOOK_IN, "ITM-002", SURGERY, 7),
        ]
        assert replay_log(log) == replay_log(list(log))

    @pytest.mark.parametrize("second_seq", [1, 0])
    def test_non_increasing_seq_rejected(self, second_seq):
        log = [
            _tx(1, TransactionKind.BOOK_IN, "ITM-001", SURGERY, 5),
            _tx(second_seq, TransactionKind.BOOK_IN, "ITM-001", SURGERY, 5),
        ]
        with pytest.raises(InvariantViolationError) as exc_info:
            replay_log(log)
        assert exc_info.value.invariant == "sequence_monotonicity"

    def test_gaps_in_seq_are_accepted(self):
        log = [
            _tx(1, TransactionKind.BOOK_IN, "ITM-001", SURGERY, 5),
            _tx(4, TransactionKind.BOOK_IN, "ITM-001", SURGERY, 5),
        ]
        assert replay_log(log)[StockKey("ITM-001", SURGERY)].quantity == 10

    def test_log_driving_stock_negative_is_corrupt(self):
        log = [
            _tx(1, TransactionKind.BOOK_IN, "ITM-001", SURGERY, 5),
            _tx(2, TransactionKind.BOOK_OUT, "ITM-001", SURGERY, -6),
        ]
        with pytest.raises(InvariantViolationError) as exc_info:
            replay_log(log)
        assert exc_info.value.invariant == "non_negative_stock"

    def test_reservation_above_quantity_is_corrupt(self):
        log = [
            _tx(1, TransactionKind.BOOK_IN, "ITM-001", SURGERY, 5),
            _tx(2, TransactionKind.TRANSFER_OUT, "ITM-001", SURGERY, 0, 6, TransactionStatus.PENDING),
        ]
        with pytest.raises(InvariantViolationError):
            replay_log(log)


class TestDiffRecords:

    def test_identical(self):
        record = StockRecord("ITM-001", SURGERY, 5, 0, 100, T0)
        assert diff_records([record], {record.key: record}) == ()

    def test_missing_row_equals_zero_record(self):
        zero = StockRecord("ITM-001", SURGERY, 0, 0, 100, T0)
        assert diff_records([], {zero.key: zero}) == ()
        assert diff_records([zero], {}) == ()

    def test_threshold_is_not_compared(self):
        persisted = StockRecord("ITM-001", SURGERY, 5, 0, 0, T0)
        replayed = StockRecord("ITM-001", SURGERY, 5, 0, 100, T0)
        assert diff_records([persisted], {replayed.key: replayed}) == ()

    def test_value_mismatches_are_reported_in_key_order(self):
        persisted = [
            StockRecord("ITM-002", SURGERY, 9, 0, 0, T0),
            StockRecord("ITM-001", SURGERY, 5, 0, 0, T0),
        ]
        replayed = {
            StockKey("ITM-001", SURGERY): StockRecord("ITM-001", SURGERY, 5, 0, 0, T0 + timedelta(1)),
            StockKey("ITM-002", SURGERY): StockRecord("ITM-002", SURGERY, 8, 0, 0, T0),
            StockKey("ITM-003", ICU): StockRecord("ITM-003", ICU, 1, 0, 0, T0),
        }
        mismatches = diff_records(persisted, replayed)
        assert [str(m.key) for m in mismatches] == [
            "ITM-001@Surgery", "ITM-002@Surgery", "ITM-003@ICU",
        ]
        assert mismatches[2].persisted is None


def _run_script(ledger):
    ledger.book_in("IV-003", PHARMACY, 60, actor_id=MANAGER)
    ledger.book_in("ITM-001", SURGERY, 45, actor_id=NURSE)
    kept = ledger.request_transfer(PHARMACY, ICU, [("IV-003", 20)], actor_id=NURSE)
    dropped = ledger.request_transfer(PHARMACY, SURGERY, [("IV-003", 30)], actor_id=NURSE)
    ledger.book_out("ITM-001", SURGERY, 5, actor_id=NURSE)
    ledger.approve_transfer(kept.transfer_id, actor_id=MANAGER)
    ledger.reject_transfer(dropped.transfer_id, actor_id=MANAGER)
    ledger.book_out("IV-003", PHARMACY, 40, actor_id=NURSE)


class TestLedgerReplayEquivalence:

    def test_store_equals_replay_of_its_log(self, ledger):
        _run_script(ledger)
        snapshot = ledger.snapshot()

        replayed = replay_log(snapshot.transactions, ledger.store.threshold_for)

        assert tuple(replayed[key] for key in sorted(replayed)) == snapshot.records
        assert ledger.verify().consistent

    def test_same_operations_same_records(self, settings):
        def run():
            service = InventoryLedgerService(
                settings=settings,
                reference=build_reference_data(),
                clock=DeterministicClock(step_seconds=1),
                configure_logs=False,
            ).open()
            try:
                _run_script(service)
                return service.snapshot()
            finally:
                service.close()

        first, second = run(), run()
        assert first.records == second.records
        assert [tx.seq for tx in first.transactions] == [tx.seq for tx in second.transactions]
        assert [
            (tx.kind, tx.quantity_delta, tx.reserved_delta) for tx in first.transactions
        ] == [
            (tx.kind, tx.quantity_delta, tx.reserved_delta) for tx in second.transactions
        ]

"""
SQLite-backed ledger: durability across reopen, recovery of the stock
table, and ORM immutability of the log.
"""

from datetime import UTC

import pytest
from sqlalchemy import select, update

from inventory_kernel.db.engine import session_scope
from inventory_kernel.db.repository import SqlLedgerRepository
from inventory_kernel.domain.transfer import TransferStatus
from inventory_kernel.exceptions import IdempotencyConflictError, InvariantViolationError
from inventory_kernel.models import LedgerTransactionModel, StockRecordModel, TransferRequestModel
from inventory_kernel.services.recovery import RecoveryService
from tests.conftest import ICU, MANAGER, NURSE, PHARMACY, SURGERY


def _populate(ledger):
    ledger.book_in("IV-003", PHARMACY, 60, actor_id=MANAGER, idempotency_key="in-1")
    ledger.book_in("ITM-001", SURGERY, 45, actor_id=NURSE)
    pending = ledger.request_transfer(
        PHARMACY, ICU, [("IV-003", 20)], actor_id=NURSE, idempotency_key="req-1",
    )
    approved = ledger.request_transfer(PHARMACY, ICU, [("IV-003", 10)], actor_id=NURSE)
    ledger.approve_transfer(approved.transfer_id, actor_id=MANAGER)
    ledger.set_threshold("ITM-001", SURGERY, 40, actor_id=MANAGER)
    return pending, approved


class TestReopen:

    def test_state_survives_reopen(self, open_sql_ledger):
        first = open_sql_ledger()
        pending, approved = _populate(first)
        before = first.snapshot()
        first.close()

        second = open_sql_ledger()
        after = second.snapshot()

        assert after.as_of_seq == before.as_of_seq
        assert after.records == before.records
        assert after.transactions == before.transactions
        assert second.get_transfer(pending.transfer_id).status == TransferStatus.PENDING
        assert second.get_transfer(approved.transfer_id).status == TransferStatus.APPROVED
        assert second.get_stock("ITM-001", SURGERY).min_threshold == 40

    def test_timestamps_come_back_aware(self, open_sql_ledger):
        first = open_sql_ledger()
        first.book_in("ITM-001", SURGERY, 1, actor_id=NURSE)
        first.close()

        tx = open_sql_ledger().snapshot().transactions[0]
        assert tx.timestamp.tzinfo is not None
        assert tx.timestamp.utcoffset() == UTC.utcoffset(None)

    def test_sequence_continues_after_reopen(self, open_sql_ledger):
        first = open_sql_ledger()
        first.book_in("ITM-001", SURGERY, 1, actor_id=NURSE)
        first.book_in("ITM-001", SURGERY, 1, actor_id=NURSE)
        first.close()

        second = open_sql_ledger()
        tx = second.book_in("ITM-001", SURGERY, 1, actor_id=NURSE)
        assert tx.seq == 3

    def test_idempotency_survives_reopen(self, open_sql_ledger):
        first = open_sql_ledger()
        original = first.book_in("IV-003", PHARMACY, 60, actor_id=MANAGER, idempotency_key="in-1")
        request = first.request_transfer(
            PHARMACY, ICU, [("IV-003", 20)], actor_id=NURSE, idempotency_key="req-1",
        )
        first.close()

        second = open_sql_ledger()
        assert second.book_in(
            "IV-003", PHARMACY, 60, actor_id=MANAGER, idempotency_key="in-1",
        ) == original
        replayed = second.request_transfer(
            PHARMACY, ICU, [("IV-003", 20)], actor_id=NURSE, idempotency_key="req-1",
        )
        assert replayed.transfer_id == request.transfer_id
        assert second.get_stock("IV-003", PHARMACY).reserved == 20
        with pytest.raises(IdempotencyConflictError):
            second.book_in("IV-003", PHARMACY, 61, actor_id=MANAGER, idempotency_key="in-1")

    def test_pending_transfer_can_be_resolved_after_reopen(self, open_sql_ledger):
        first = open_sql_ledger()
        pending, _ = _populate(first)
        first.close()

        second = open_sql_ledger()
        second.reject_transfer(pending.transfer_id, actor_id=MANAGER, reason="cancelled")
        record = second.get_stock("IV-003", PHARMACY)
        assert (record.quantity, record.reserved) == (50, 0)


class TestRecovery:

    def test_fresh_ledger_verifies(self, sql_ledger):
        _populate(sql_ledger)
        report = sql_ledger.verify()
        assert report.consistent
        assert report.transaction_count == len(sql_ledger.snapshot().transactions)
        assert report.last_seq == sql_ledger.snapshot().as_of_seq

    def test_rebuild_repairs_a_corrupted_stock_table(self, sql_ledger):
        _populate(sql_ledger)
        with session_scope() as session:
            session.execute(
                update(StockRecordModel)
                .where(StockRecordModel.item_id == "ITM-001")
                .values(quantity=999)
            )

        report = sql_ledger.verify()
        assert not report.consistent
        assert [str(m.key) for m in report.mismatches] == ["ITM-001@Surgery"]

        repaired = sql_ledger.rebuild()
        assert repaired.repaired
        assert sql_ledger.verify().consistent

    def test_rebuild_of_consistent_table_is_a_no_op(self, sql_ledger):
        _populate(sql_ledger)
        report = sql_ledger.rebuild()
        assert report.consistent
        assert not report.repaired

    def test_open_repairs_missing_rows(self, open_sql_ledger, captured_logs):
        first = open_sql_ledger()
        _populate(first)
        expected = first.snapshot().records
        with session_scope() as session:
            session.execute(
                StockRecordModel.__table__.delete().where(
                    StockRecordModel.department_id == ICU
                )
            )
        first.close()

        second = open_sql_ledger()
        assert second.snapshot().records == expected
        assert second.verify().consistent
        assert any(r["message"] == "stock_table_repaired" for r in captured_logs())

    def test_recovery_service_over_repository(self, sql_ledger):
        _populate(sql_ledger)
        service = RecoveryService(SqlLedgerRepository())
        assert service.verify().consistent


class TestLogImmutability:

    def test_log_rows_cannot_be_updated(self, sql_ledger):
        sql_ledger.book_in("ITM-001", SURGERY, 5, actor_id=NURSE)
        with pytest.raises(InvariantViolationError) as exc_info:
            with session_scope() as session:
                row = session.execute(select(LedgerTransactionModel)).scalars().first()
                row.quantity = 500
        assert exc_info.value.invariant == "append_only_log"

    def test_log_rows_cannot_be_deleted(self, sql_ledger):
        sql_ledger.book_in("ITM-001", SURGERY, 5, actor_id=NURSE)
        with pytest.raises(InvariantViolationError):
            with session_scope() as session:
                row = session.execute(select(LedgerTransactionModel)).scalars().first()
                session.delete(row)
        assert len(sql_ledger.snapshot().transactions) == 1

    def test_resolved_transfer_cannot_be_reopened(self, sql_ledger):
        sql_ledger.book_in("IV-003", PHARMACY, 10, actor_id=MANAGER)
        transfer = sql_ledger.request_transfer(PHARMACY, ICU, [("IV-003", 5)], actor_id=NURSE)
        sql_ledger.reject_transfer(transfer.transfer_id, actor_id=MANAGER)

        with pytest.raises(InvariantViolationError) as exc_info:
            with session_scope() as session:
                row = session.execute(
                    select(TransferRequestModel).where(
                        TransferRequestModel.transfer_id == transfer.transfer_id
                    )
                ).scalar_one()
                row.status = "pending"
        assert exc_info.value.invariant == "terminal_transfer"

"""Derived stock status, the alert list, and per-department threshold overrides."""

import pytest

from inventory_kernel.domain.alerts import StockStatus
from inventory_kernel.exceptions import InvalidInputError, NotFoundError, PermissionDeniedError
from tests.conftest import ADMIN, ICU, MANAGER, NURSE, PHARMACY, SURGERY


class TestAlertList:

    def test_no_alerts_on_empty_ledger(self, ledger):
        assert ledger.list_alerts() == []

    def test_in_stock_records_are_not_alerts(self, ledger):
        ledger.book_in("ITM-003", SURGERY, 30, actor_id=NURSE)
        assert ledger.list_alerts() == []

    def test_alerts_ordered_by_severity_then_available(self, ledger):
        ledger.book_in("ITM-001", SURGERY, 45, actor_id=NURSE)    # LOW (45 < 100)
        ledger.book_in("ITM-005", PHARMACY, 20, actor_id=NURSE)   # CRITICAL (20 < 60)
        ledger.book_in("ITM-002", SURGERY, 3, actor_id=NURSE)
        ledger.book_out("ITM-002", SURGERY, 3, actor_id=NURSE)    # OUT_OF_STOCK
        ledger.book_in("ITM-003", ICU, 25, actor_id=NURSE)        # LOW (25 < 30)

        alerts = ledger.list_alerts()
        assert [(a.record.item_id, a.status) for a in alerts] == [
            ("ITM-002", StockStatus.OUT_OF_STOCK),
            ("ITM-005", StockStatus.CRITICAL),
            ("ITM-003", StockStatus.LOW),
            ("ITM-001", StockStatus.LOW),
        ]
        assert alerts[0].item.name == "IV Catheters"

    def test_filter_by_department_and_category(self, ledger):
        ledger.book_in("ITM-001", SURGERY, 45, actor_id=NURSE)
        ledger.book_in("ITM-005", PHARMACY, 20, actor_id=NURSE)
        ledger.book_in("ITM-002", PHARMACY, 10, actor_id=NURSE)

        assert [a.record.item_id for a in ledger.list_alerts(department_id=SURGERY)] == ["ITM-001"]
        by_category = ledger.list_alerts(category="Medical Supplies")
        assert {a.record.item_id for a in by_category} == {"ITM-005", "ITM-002"}
        assert ledger.list_alerts(department_id=SURGERY, category="Medical Supplies") == []

    def test_status_follows_every_change(self, ledger):
        ledger.book_in("ITM-001", SURGERY, 150, actor_id=NURSE)
        assert ledger.stock_status("ITM-001", SURGERY) == StockStatus.IN_STOCK
        ledger.book_out("ITM-001", SURGERY, 60, actor_id=NURSE)
        assert ledger.stock_status("ITM-001", SURGERY) == StockStatus.LOW
        ledger.book_out("ITM-001", SURGERY, 80, actor_id=NURSE)
        assert ledger.stock_status("ITM-001", SURGERY) == StockStatus.CRITICAL
        ledger.book_out("ITM-001", SURGERY, 10, actor_id=NURSE)
        assert ledger.stock_status("ITM-001", SURGERY) == StockStatus.OUT_OF_STOCK

    def test_status_change_is_logged(self, ledger, captured_logs):
        ledger.book_in("ITM-001", SURGERY, 150, actor_id=NURSE)
        ledger.book_out("ITM-001", SURGERY, 60, actor_id=NURSE)

        changes = [r for r in captured_logs() if r["message"] == "stock_status_changed"]
        assert changes[-1]["from_status"] == "in_stock"
        assert changes[-1]["to_status"] == "low"
        assert changes[-1]["stock_key"] == "ITM-001@Surgery"

    def test_never_stocked_key_status(self, ledger):
        assert ledger.stock_status("ITM-002", ICU) == StockStatus.OUT_OF_STOCK

    def test_deactivated_item_drops_from_alerts(self, ledger):
        ledger.book_in("ITM-001", SURGERY, 5, actor_id=NURSE)
        assert len(ledger.list_alerts()) == 1
        ledger.update_item("ITM-001", actor_id=ADMIN, is_active=False)
        assert ledger.list_alerts() == []


class TestThresholds:

    def test_override_reclassifies_existing_record(self, ledger):
        ledger.book_in("ITM-001", SURGERY, 45, actor_id=NURSE)
        assert ledger.stock_status("ITM-001", SURGERY) == StockStatus.LOW

        record = ledger.set_threshold("ITM-001", SURGERY, 40, actor_id=MANAGER)

        assert record.min_threshold == 40
        assert record.quantity == 45
        assert ledger.stock_status("ITM-001", SURGERY) == StockStatus.IN_STOCK
        assert ledger.list_alerts() == []

    def test_override_does_not_touch_log(self, ledger):
        ledger.book_in("ITM-001", SURGERY, 45, actor_id=NURSE)
        ledger.set_threshold("ITM-001", SURGERY, 10, actor_id=MANAGER)
        assert ledger.snapshot().as_of_seq == 1

    def test_override_applies_to_future_records(self, ledger):
        ledger.set_threshold("ITM-003", ICU, 5, actor_id=MANAGER)
        assert ledger.list_alerts() == []
        ledger.book_in("ITM-003", ICU, 6, actor_id=NURSE)
        assert ledger.get_stock("ITM-003", ICU).min_threshold == 5
        assert ledger.stock_status("ITM-003", ICU) == StockStatus.IN_STOCK

    def test_reference_override_from_reference_data(self, ledger):
        assert ledger.get_stock("IV-003", ICU).min_threshold == 60
        assert ledger.get_stock("IV-003", PHARMACY).min_threshold == 40

    def test_item_default_change_follows_non_overridden_keys(self, ledger):
        ledger.book_in("IV-003", ICU, 50, actor_id=NURSE)
        ledger.book_in("IV-003", PHARMACY, 50, actor_id=NURSE)

        ledger.update_item("IV-003", actor_id=ADMIN, default_min_threshold=80)

        assert ledger.get_stock("IV-003", PHARMACY).min_threshold == 80
        assert ledger.stock_status("IV-003", PHARMACY) == StockStatus.LOW
        assert ledger.get_stock("IV-003", ICU).min_threshold == 60

    @pytest.mark.parametrize("value", [-1, 1.5, "10", True])
    def test_invalid_threshold(self, ledger, value):
        with pytest.raises(InvalidInputError):
            ledger.set_threshold("ITM-001", SURGERY, value, actor_id=MANAGER)

    def test_zero_threshold_allowed(self, ledger):
        ledger.book_in("ITM-001", SURGERY, 1, actor_id=NURSE)
        ledger.set_threshold("ITM-001", SURGERY, 0, actor_id=MANAGER)
        assert ledger.stock_status("ITM-001", SURGERY) == StockStatus.IN_STOCK

    def test_user_cannot_set_threshold(self, ledger):
        with pytest.raises(PermissionDeniedError):
            ledger.set_threshold("ITM-001", SURGERY, 10, actor_id=NURSE)

    def test_unknown_key(self, ledger):
        with pytest.raises(NotFoundError):
            ledger.set_threshold("NOPE", SURGERY, 10, actor_id=MANAGER)

    def test_threshold_set_is_logged(self, ledger, captured_logs):
        ledger.set_threshold("ITM-001", SURGERY, 10, actor_id=MANAGER)
        events = [r for r in captured_logs() if r["message"] == "threshold_set"]
        assert events[0]["stock_key"] == "ITM-001@Surgery"
        assert events[0]["min_threshold"] == 10
        assert events[0]["actor_id"] == MANAGER

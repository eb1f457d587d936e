"""
Stock value objects and the stock status classification.

Pure domain tests: no store, no repository, no clock.
"""

from datetime import datetime, timezone

import pytest

from inventory_kernel.domain.alerts import StockAlert, StockStatus, classify
from inventory_kernel.domain.values import Item, StockKey, StockRecord
from inventory_kernel.exceptions import InvariantViolationError

AT = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class TestStockRecord:

    def test_available_is_quantity_minus_reserved(self):
        record = StockRecord("ITM-001", "Surgery", quantity=60, reserved=50)
        assert record.available == 10

    def test_with_delta_returns_new_record(self):
        record = StockRecord("ITM-001", "Surgery", quantity=45, min_threshold=100)
        updated = record.with_delta(-10, 0, AT)

        assert record.quantity == 45
        assert updated.quantity == 35
        assert updated.min_threshold == 100
        assert updated.last_updated == AT

    def test_with_delta_keeps_timestamp_when_none(self):
        record = StockRecord("ITM-001", "Surgery", quantity=5, last_updated=AT)
        assert record.with_delta(1, 0, None).last_updated == AT

    @pytest.mark.parametrize(
        "quantity,reserved",
        [(-1, 0), (5, 6), (0, -1)],
    )
    def test_inconsistent_quantities_rejected(self, quantity, reserved):
        with pytest.raises(InvariantViolationError) as exc_info:
            StockRecord("ITM-001", "Surgery", quantity=quantity, reserved=reserved)
        assert exc_info.value.invariant == "non_negative_stock"

    def test_delta_below_zero_rejected(self):
        record = StockRecord("ITM-001", "Surgery", quantity=3)
        with pytest.raises(InvariantViolationError):
            record.with_delta(-4, 0, AT)

    def test_negative_threshold_rejected(self):
        with pytest.raises(InvariantViolationError):
            StockRecord("ITM-001", "Surgery", min_threshold=-1)

    def test_stock_keys_order_by_item_then_department(self):
        keys = [
            StockKey("ITM-002", "Alpha"),
            StockKey("ITM-001", "Zulu"),
            StockKey("ITM-001", "Alpha"),
        ]
        assert sorted(keys) == [
            StockKey("ITM-001", "Alpha"),
            StockKey("ITM-001", "Zulu"),
            StockKey("ITM-002", "Alpha"),
        ]


class TestClassify:
    """available = quantity - reserved against min_threshold and the critical fraction."""

    @pytest.mark.parametrize(
        "quantity,reserved,threshold,expected",
        [
            (0, 0, 100, StockStatus.OUT_OF_STOCK),
            (50, 50, 100, StockStatus.OUT_OF_STOCK),
            (29, 0, 100, StockStatus.CRITICAL),
            (30, 0, 100, StockStatus.LOW),
            (45, 0, 100, StockStatus.LOW),
            (99, 0, 100, StockStatus.LOW),
            (100, 0, 100, StockStatus.IN_STOCK),
            (1, 0, 0, StockStatus.IN_STOCK),
            (0, 0, 0, StockStatus.OUT_OF_STOCK),
        ],
    )
    def test_boundaries(self, quantity, reserved, threshold, expected):
        record = StockRecord(
            "ITM-001", "Surgery", quantity=quantity, reserved=reserved, min_threshold=threshold
        )
        assert classify(record) == expected

    def test_reservations_count_against_availability(self):
        record = StockRecord("IV-003", "Pharmacy", quantity=60, reserved=50, min_threshold=40)
        assert classify(record) == StockStatus.CRITICAL

    def test_critical_fraction_is_a_parameter(self):
        record = StockRecord("ITM-001", "Surgery", quantity=45, min_threshold=100)
        assert classify(record, critical_fraction=0.5) == StockStatus.CRITICAL


class TestStockAlertOrdering:

    def _alert(self, item_id, department_id, quantity, threshold):
        record = StockRecord(item_id, department_id, quantity=quantity, min_threshold=threshold)
        item = Item(item_id, item_id, "Medical Supplies", default_min_threshold=threshold)
        return StockAlert(item=item, record=record, status=classify(record))

    def test_critical_and_out_of_stock_rank_ahead_of_low(self):
        low = self._alert("A", "Surgery", 1, 2)
        critical = self._alert("B", "Surgery", 20, 100)
        empty = self._alert("C", "Surgery", 0, 10)
        ordered = sorted([low, critical, empty], key=lambda a: a.sort_key)
        assert [a.record.item_id for a in ordered] == ["C", "B", "A"]

    def test_ties_broken_by_item_then_department(self):
        first = self._alert("A", "ICU", 5, 100)
        second = self._alert("A", "Surgery", 5, 100)
        third = self._alert("B", "Emergency", 5, 100)
        ordered = sorted([third, second, first], key=lambda a: a.sort_key)
        assert ordered == [first, second, third]

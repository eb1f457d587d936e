"""
Sort / filter / search / paginate over the ITEMS, TRANSACTIONS and TRANSFERS
collections.
"""

from datetime import datetime, timedelta, timezone

import pytest

from inventory_kernel.exceptions import InvalidInputError
from inventory_kernel.selectors.query_engine import ItemStockRow
from tests.conftest import EMERGENCY, ICU, MANAGER, NURSE, PEDIATRICS, PHARMACY, SURGERY


@pytest.fixture
def busy(ledger):
    """A ledger with stock in several departments and a few transfers."""
    ledger.book_in("ITM-001", SURGERY, 45, actor_id=NURSE)
    ledger.book_in("ITM-001", EMERGENCY, 120, actor_id=NURSE)
    ledger.book_in("ITM-002", SURGERY, 50, actor_id=NURSE)
    ledger.book_in("ITM-003", ICU, 5, actor_id=NURSE)
    ledger.book_in("ITM-005", PHARMACY, 300, actor_id=MANAGER)
    ledger.book_in("IV-003", PHARMACY, 60, actor_id=MANAGER)
    ledger.book_in("ITM-009", PEDIATRICS, 1, actor_id=NURSE)
    first = ledger.request_transfer(PHARMACY, ICU, [("IV-003", 50)], actor_id=NURSE)
    second = ledger.request_transfer(
        PHARMACY, SURGERY, [("ITM-005", 30)], actor_id=NURSE, priority="high",
    )
    ledger.approve_transfer(second.transfer_id, actor_id=MANAGER)
    ledger.book_out("ITM-001", SURGERY, 10, actor_id=NURSE)
    ledger.first_transfer_id = first.transfer_id
    ledger.second_transfer_id = second.transfer_id
    return ledger


def _keys(page):
    return [(row.record.item_id, row.record.department_id) for row in page.items]


class TestItemsCollection:

    def test_default_sort_is_name_ascending(self, busy):
        page = busy.query_items()
        assert all(isinstance(row, ItemStockRow) for row in page.items)
        names = [row.item.name for row in page.items]
        assert names[0] == "Éclairage frontal"
        assert names[1:3] == ["IV Catheters", "IV Solution"]
        assert page.total_count == 8

    def test_rows_only_for_existing_records(self, busy):
        keys = _keys(busy.query_items(limit=100))
        assert ("ITM-005", SURGERY) in keys
        assert ("ITM-002", ICU) not in keys

    def test_sort_by_available_with_ties_broken_by_row_id(self, busy):
        page = busy.query_items(sort_key="available")
        available = [row.record.available for row in page.items]
        assert available == sorted(available)
        assert _keys(page)[:3] == [
            ("ITM-009", PEDIATRICS), ("ITM-003", ICU), ("IV-003", PHARMACY),
        ]

    def test_descending_is_reversed_ascending(self, busy):
        for key in ("name", "quantity", "department", "status", "last_updated"):
            asc = busy.query_items(sort_key=key, sort_direction="asc", limit=100)
            desc = busy.query_items(sort_key=key, sort_direction="desc", limit=100)
            assert _keys(desc) == list(reversed(_keys(asc))), key

    def test_same_query_twice_is_identical(self, busy):
        args = dict(filters={"category": "Medical Supplies"}, sort_key="quantity", limit=3)
        assert busy.query_items(**args) == busy.query_items(**args)

    def test_filters_combine_with_and(self, busy):
        page = busy.query_items(filters={"department": PHARMACY, "category": "Medical Supplies"})
        assert sorted(_keys(page)) == [("ITM-005", PHARMACY), ("IV-003", PHARMACY)]

    def test_filter_value_list_is_any_of(self, busy):
        page = busy.query_items(filters={"department": [ICU, PEDIATRICS]})
        # the pending IV-003 transfer has not created a record at ICU yet
        assert sorted(_keys(page)) == [("ITM-003", ICU), ("ITM-009", PEDIATRICS)]

    def test_filter_by_status_and_hospital(self, busy):
        critical = busy.query_items(filters={"status": "critical"})
        assert ("ITM-003", ICU) in _keys(critical)
        assert all(row.status.value == "critical" for row in critical.items)

        children = busy.query_items(filters={"hospital": "H2"})
        assert _keys(children) == [("ITM-009", PEDIATRICS)]

    def test_search_ignores_accents_and_case(self, busy):
        assert _keys(busy.query_items(search="eclairage")) == [("ITM-009", PEDIATRICS)]
        assert _keys(busy.query_items(search="ÉCLAIR")) == [("ITM-009", PEDIATRICS)]

    def test_search_matches_department_name(self, busy):
        page = busy.query_items(search="intensive care")
        assert {key[1] for key in _keys(page)} == {ICU}

    def test_pagination_windows(self, busy):
        full = _keys(busy.query_items(sort_key="item_id", limit=100))
        first = busy.query_items(sort_key="item_id", limit=3)
        second = busy.query_items(sort_key="item_id", offset=3, limit=3)
        last = busy.query_items(sort_key="item_id", offset=6, limit=3)

        assert _keys(first) + _keys(second) + _keys(last) == full
        assert first.has_more and second.has_more
        assert not last.has_more
        assert last.total_count == len(full)

    def test_offset_beyond_end(self, busy):
        page = busy.query_items(offset=100)
        assert page.items == ()
        assert page.total_count == 8
        assert not page.has_more

    def test_limit_is_capped(self, ledger, settings):
        page = ledger.query_items(limit=settings.max_page_limit + 1000)
        assert page.limit == settings.max_page_limit

    def test_default_limit(self, ledger, settings):
        assert ledger.query_items().limit == settings.default_page_limit


class TestTransactionsCollection:

    def test_default_sort_is_newest_first(self, busy):
        seqs = [tx.seq for tx in busy.query_transactions(limit=100).items]
        assert seqs == sorted(seqs, reverse=True)

    def test_filter_by_kind_and_user(self, busy):
        page = busy.query_transactions(filters={"kind": "book_in", "user": MANAGER})
        assert {(tx.item_id, tx.department_id) for tx in page.items} == {
            ("ITM-005", PHARMACY), ("IV-003", PHARMACY),
        }

    def test_filter_by_transfer(self, busy):
        page = busy.query_transactions(filters={"transfer_id": busy.second_transfer_id})
        assert sorted(tx.kind.value for tx in page.items) == [
            "transfer_in", "transfer_out", "transfer_out",
        ]

    def test_search_by_item_name(self, busy):
        page = busy.query_transactions(search="gloves")
        assert {tx.item_id for tx in page.items} == {"ITM-001"}
        assert page.total_count == 3

    def test_date_range_is_inclusive(self, busy):
        log = sorted(busy.snapshot().transactions, key=lambda tx: tx.seq)
        start, end = log[2].timestamp, log[4].timestamp
        page = busy.query_transactions(date_from=start, date_to=end, sort_key="seq")
        assert [tx.seq for tx in page.items] == [log[2].seq, log[3].seq, log[4].seq]

        later = busy.query_transactions(date_from=log[-1].timestamp + timedelta(seconds=1))
        assert later.total_count == 0


class TestTransfersCollection:

    def test_filter_by_status(self, busy):
        pending = busy.query_transfers(filters={"status": "pending"})
        assert [t.transfer_id for t in pending.items] == [busy.first_transfer_id]

    def test_department_filter_matches_either_side(self, busy):
        page = busy.query_transfers(filters={"department": SURGERY})
        assert [t.transfer_id for t in page.items] == [busy.second_transfer_id]

    def test_default_sort_newest_first(self, busy):
        page = busy.query_transfers()
        assert [t.transfer_id for t in page.items] == [
            busy.second_transfer_id, busy.first_transfer_id,
        ]

    def test_sort_by_priority(self, busy):
        page = busy.query_transfers(sort_key="priority")
        assert [t.priority.value for t in page.items] == ["high", "normal"]

    def test_search_by_item(self, busy):
        page = busy.query_transfers(search="iv-003")
        assert [t.transfer_id for t in page.items] == [busy.first_transfer_id]


class TestQueryErrors:

    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"filters": {"colour": "red"}}, "colour"),
            ({"sort_key": "weight"}, "sort_key"),
            ({"sort_key": "name", "sort_direction": "sideways"}, "sort_direction"),
            ({"offset": -1}, "offset"),
            ({"limit": 0}, "limit"),
            ({"limit": -5}, "limit"),
        ],
    )
    def test_invalid_arguments(self, ledger, kwargs, field):
        with pytest.raises(InvalidInputError) as exc_info:
            ledger.query_items(**kwargs)
        assert exc_info.value.field == field

    @pytest.mark.parametrize("query", ["query_transactions", "query_transfers"])
    @pytest.mark.parametrize(
        "kwargs,field",
        [
            ({"date_from": datetime(2000, 1, 1)}, "date_from"),
            ({"date_to": datetime(2100, 1, 1)}, "date_to"),
            ({"date_from": "2000-01-01"}, "date_from"),
        ],
    )
    def test_invalid_date_bounds(self, ledger, query, kwargs, field):
        ledger.book_in("ITM-001", SURGERY, 5, actor_id=NURSE)
        with pytest.raises(InvalidInputError) as exc_info:
            getattr(ledger, query)(**kwargs)
        assert exc_info.value.field == field

    def test_aware_bounds_in_any_zone(self, ledger):
        tx = ledger.book_in("ITM-001", SURGERY, 5, actor_id=NURSE)
        plus_two = timezone(timedelta(hours=2))
        page = ledger.query_transactions(date_from=tx.timestamp.astimezone(plus_two))
        assert [t.transaction_id for t in page.items] == [tx.transaction_id]

    def test_unknown_collection(self, ledger):
        with pytest.raises(InvalidInputError):
            ledger.queries.query("invoices")

"""
Module: inventory_kernel.selectors.query_engine
Responsibility: Generic sort / filter / search / paginate over three
    collections: ITEMS (one row per item and department stock record),
    TRANSACTIONS (the log) and TRANSFERS (transfer requests).
Architecture position: Kernel > Selectors.  Read-only.  Every query runs over
    one consistent ``LedgerStore.snapshot_state()``.

Invariants enforced:
    - Determinism: identical arguments over an unchanged ledger return
      identical pages.  Rows are totally ordered by (sort field, row id).
    - Reversal: the descending order is exactly the reverse of the
      ascending order, tie-breaks included.
    - Typed comparison: STRING fields collate accent- and case-insensitively
      (original string as secondary key); INTEGER and TIMESTAMP compare
      numerically; missing values sort first in ascending order.

Failure modes:
    - InvalidInputError for an unknown sort or filter field, an unknown
      direction, a negative offset, or a non-positive limit.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Generic, TypeVar

from inventory_kernel.domain.alerts import DEFAULT_CRITICAL_FRACTION, StockStatus, classify
from inventory_kernel.domain.values import Department, Item, StockRecord
from inventory_kernel.exceptions import InvalidInputError
from inventory_kernel.logging_config import get_logger
from inventory_kernel.selectors.base import BaseSelector
from inventory_kernel.selectors.collation import collation_key, contains
from inventory_kernel.services.catalog_service import CatalogService
from inventory_kernel.services.ledger_store import LedgerStore

logger = get_logger("selectors.query")

T = TypeVar("T")


class Collection(str, Enum):
    ITEMS = "items"
    TRANSACTIONS = "transactions"
    TRANSFERS = "transfers"


class FieldType(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    TIMESTAMP = "timestamp"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


@dataclass(frozen=True)
class FieldSpec:
    name: str
    field_type: FieldType
    getter: Callable[[Any], Any]


@dataclass(frozen=True)
class ItemStockRow:
    """One row of the ITEMS collection: an item's stock in one department."""

    item: Item
    record: StockRecord
    status: StockStatus
    department: Department | None

    @property
    def row_id(self) -> tuple[str, str]:
        return (self.record.item_id, self.record.department_id)


@dataclass(frozen=True)
class Page(Generic[T]):
    items: tuple[T, ...]
    total_count: int
    offset: int
    limit: int

    @property
    def has_more(self) -> bool:
        return self.offset + len(self.items) < self.total_count


@dataclass(frozen=True)
class _Schema:
    fields: dict[str, FieldSpec]
    filters: dict[str, Callable[[Any], Iterable[Any]]]
    row_id: Callable[[Any], Any]
    time_field: str
    default_sort: tuple[str, SortDirection]


DEFAULT_SEARCH_FIELDS: dict[Collection, tuple[str, ...]] = {
    Collection.ITEMS: ("name", "item_id", "category", "department", "department_name"),
    Collection.TRANSACTIONS: (
        "transaction_id", "item", "item_name", "department", "counterpart", "user",
    ),
    Collection.TRANSFERS: ("transfer_id", "source", "destination", "user", "items"),
}


def _text(value: Any) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _wanted(value: Any) -> frozenset[str]:
    if isinstance(value, (list, tuple, set, frozenset)):
        return frozenset(_text(v) for v in value)
    return frozenset({_text(value)})


def _date_bound(value: datetime | None, field: str) -> datetime | None:
    """Bounds compare against UTC log timestamps, so they must carry a zone."""
    if value is None:
        return None
    if not isinstance(value, datetime):
        raise InvalidInputError(f"{field} must be a datetime, got {value!r}", field=field)
    if value.tzinfo is None or value.utcoffset() is None:
        raise InvalidInputError(f"{field} must be timezone-aware, got {value!r}", field=field)
    return value


def _value_key(field_type: FieldType, value: Any) -> tuple:
    if value is None:
        return (0,)
    if field_type == FieldType.STRING:
        return (1, *collation_key(_text(value)))
    return (1, value)


class QueryEngine(BaseSelector):
    """
    Sort / filter / search / paginate over ledger collections.

    Contract:
        ``query`` applies, in order: field filters (AND), the timestamp
        range, the search term, the sort, then the page window.
        ``total_count`` counts rows after filtering and search.
    """

    def __init__(
        self,
        store: LedgerStore,
        catalog: CatalogService,
        critical_fraction: float = DEFAULT_CRITICAL_FRACTION,
        default_page_limit: int = 50,
        max_page_limit: int = 500,
        search_fields: Mapping[Collection | str, Iterable[str]] | None = None,
    ):
        super().__init__(store, catalog)
        self.critical_fraction = critical_fraction
        self.default_page_limit = default_page_limit
        self.max_page_limit = max_page_limit
        self._schemas = {
            Collection.ITEMS: self._items_schema(),
            Collection.TRANSACTIONS: self._transactions_schema(),
            Collection.TRANSFERS: self._transfers_schema(),
        }
        self._search_fields = dict(DEFAULT_SEARCH_FIELDS)
        for collection, names in (search_fields or {}).items():
            collection = Collection(collection)
            names = tuple(names)
            unknown = [n for n in names if n not in self._schemas[collection].fields]
            if unknown:
                raise ValueError(
                    f"Unknown search fields for {collection.value}: {', '.join(unknown)}"
                )
            self._search_fields[collection] = names

    # ------------------------------------------------------------------
    # Schemas
    # ------------------------------------------------------------------

    def _item_name(self, item_id: str) -> str | None:
        item = self.catalog.find_item(item_id)
        return item.name if item is not None else None

    def _hospital_of(self, department_id: str) -> str | None:
        department = self.catalog.find_department(department_id)
        return department.hospital_id if department is not None else None

    def _items_schema(self) -> _Schema:
        fields = [
            FieldSpec("item_id", FieldType.STRING, lambda r: r.item.item_id),
            FieldSpec("name", FieldType.STRING, lambda r: r.item.name),
            FieldSpec("category", FieldType.STRING, lambda r: r.item.category),
            FieldSpec("unit", FieldType.STRING, lambda r: r.item.unit),
            FieldSpec("department", FieldType.STRING, lambda r: r.record.department_id),
            FieldSpec(
                "department_name",
                FieldType.STRING,
                lambda r: r.department.name if r.department else None,
            ),
            FieldSpec(
                "hospital",
                FieldType.STRING,
                lambda r: r.department.hospital_id if r.department else None,
            ),
            FieldSpec("quantity", FieldType.INTEGER, lambda r: r.record.quantity),
            FieldSpec("reserved", FieldType.INTEGER, lambda r: r.record.reserved),
            FieldSpec("available", FieldType.INTEGER, lambda r: r.record.available),
            FieldSpec("min_threshold", FieldType.INTEGER, lambda r: r.record.min_threshold),
            FieldSpec("status", FieldType.STRING, lambda r: r.status.value),
            FieldSpec("last_updated", FieldType.TIMESTAMP, lambda r: r.record.last_updated),
        ]
        by_name = {f.name: f for f in fields}
        return _Schema(
            fields=by_name,
            filters={
                "category": lambda r: [r.item.category],
                "department": lambda r: [r.record.department_id],
                "hospital": lambda r: [by_name["hospital"].getter(r)],
                "status": lambda r: [r.status.value],
                "item": lambda r: [r.item.item_id],
                "unit": lambda r: [r.item.unit],
            },
            row_id=lambda r: r.row_id,
            time_field="last_updated",
            default_sort=("name", SortDirection.ASC),
        )

    def _transactions_schema(self) -> _Schema:
        fields = [
            FieldSpec("transaction_id", FieldType.STRING, lambda t: t.transaction_id),
            FieldSpec("seq", FieldType.INTEGER, lambda t: t.seq),
            FieldSpec("timestamp", FieldType.TIMESTAMP, lambda t: t.timestamp),
            FieldSpec("kind", FieldType.STRING, lambda t: t.kind.value),
            FieldSpec("item", FieldType.STRING, lambda t: t.item_id),
            FieldSpec("item_name", FieldType.STRING, lambda t: self._item_name(t.item_id)),
            FieldSpec("department", FieldType.STRING, lambda t: t.department_id),
            FieldSpec("counterpart", FieldType.STRING, lambda t: t.counterpart_department_id),
            FieldSpec("quantity", FieldType.INTEGER, lambda t: t.quantity),
            FieldSpec("user", FieldType.STRING, lambda t: t.actor_user_id),
            FieldSpec("status", FieldType.STRING, lambda t: t.status.value),
            FieldSpec("transfer_id", FieldType.STRING, lambda t: t.transfer_id),
        ]
        return _Schema(
            fields={f.name: f for f in fields},
            filters={
                "kind": lambda t: [t.kind.value],
                "status": lambda t: [t.status.value],
                "item": lambda t: [t.item_id],
                "department": lambda t: [t.department_id],
                "user": lambda t: [t.actor_user_id],
                "transfer_id": lambda t: [t.transfer_id],
                "category": lambda t: [self._category(t.item_id)],
                "hospital": lambda t: [self._hospital_of(t.department_id)],
            },
            row_id=lambda t: t.seq,
            time_field="timestamp",
            default_sort=("timestamp", SortDirection.DESC),
        )

    def _transfers_schema(self) -> _Schema:
        fields = [
            FieldSpec("transfer_id", FieldType.STRING, lambda t: t.transfer_id),
            FieldSpec("source", FieldType.STRING, lambda t: t.source_department_id),
            FieldSpec("destination", FieldType.STRING, lambda t: t.destination_department_id),
            FieldSpec("status", FieldType.STRING, lambda t: t.status.value),
            FieldSpec("priority", FieldType.STRING, lambda t: t.priority.value),
            FieldSpec("user", FieldType.STRING, lambda t: t.requested_by),
            FieldSpec("requested_at", FieldType.TIMESTAMP, lambda t: t.requested_at),
            FieldSpec("resolved_at", FieldType.TIMESTAMP, lambda t: t.resolved_at),
            FieldSpec("total_quantity", FieldType.INTEGER, lambda t: t.total_quantity),
            FieldSpec("line_count", FieldType.INTEGER, lambda t: len(t.lines)),
            FieldSpec(
                "items",
                FieldType.STRING,
                lambda t: " ".join(line.item_id for line in t.lines),
            ),
        ]
        return _Schema(
            fields={f.name: f for f in fields},
            filters={
                "status": lambda t: [t.status.value],
                "priority": lambda t: [t.priority.value],
                "source": lambda t: [t.source_department_id],
                "destination": lambda t: [t.destination_department_id],
                "department": lambda t: [t.source_department_id, t.destination_department_id],
                "user": lambda t: [t.requested_by],
                "item": lambda t: [line.item_id for line in t.lines],
                "hospital": lambda t: [
                    self._hospital_of(t.source_department_id),
                    self._hospital_of(t.destination_department_id),
                ],
            },
            row_id=lambda t: t.transfer_id,
            time_field="requested_at",
            default_sort=("requested_at", SortDirection.DESC),
        )

    def _category(self, item_id: str) -> str | None:
        item = self.catalog.find_item(item_id)
        return item.category if item is not None else None

    # ------------------------------------------------------------------
    # Rows
    # ------------------------------------------------------------------

    def _rows(self, collection: Collection) -> list:
        _, records, transactions, transfers = self.store.snapshot_state()
        if collection == Collection.TRANSACTIONS:
            return transactions
        if collection == Collection.TRANSFERS:
            return transfers
        rows = []
        for record in records:
            item = self.catalog.find_item(record.item_id)
            if item is None:
                continue
            rows.append(
                ItemStockRow(
                    item=item,
                    record=record,
                    status=classify(record, self.critical_fraction),
                    department=self.catalog.find_department(record.department_id),
                )
            )
        return rows

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    def query(
        self,
        collection: Collection | str,
        filters: Mapping[str, Any] | None = None,
        search: str | None = None,
        sort_key: str | None = None,
        sort_direction: SortDirection | str | None = None,
        offset: int = 0,
        limit: int | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> Page:
        """
        Run one query and return a page.

        ``filters`` maps filter names to a value or a collection of values
        (any-of); separate filters combine with AND.  ``date_from`` and
        ``date_to`` are inclusive bounds on the collection's time field.
        When ``sort_key`` is None the collection's default sort applies.
        """
        try:
            collection = Collection(collection)
        except ValueError as exc:
            raise InvalidInputError(f"Unknown collection: {collection!r}", field="collection") from exc
        schema = self._schemas[collection]

        if sort_key is None:
            sort_key, default_direction = schema.default_sort
            if sort_direction is None:
                sort_direction = default_direction
        elif sort_direction is None:
            sort_direction = SortDirection.ASC
        try:
            direction = SortDirection(sort_direction)
        except ValueError as exc:
            raise InvalidInputError(
                f"Unknown sort direction: {sort_direction!r}", field="sort_direction"
            ) from exc
        sort_spec = schema.fields.get(sort_key)
        if sort_spec is None:
            raise InvalidInputError(f"Unknown sort field: {sort_key}", field="sort_key")

        predicates = []
        for name, value in (filters or {}).items():
            extract = schema.filters.get(name)
            if extract is None:
                raise InvalidInputError(f"Unknown filter field: {name}", field=name)
            if value is None:
                continue
            predicates.append((extract, _wanted(value)))

        offset, limit = self._window(offset, limit)
        date_from = _date_bound(date_from, "date_from")
        date_to = _date_bound(date_to, "date_to")

        rows = self._rows(collection)
        for extract, wanted in predicates:
            rows = [
                row for row in rows
                if any(v is not None and _text(v) in wanted for v in extract(row))
            ]

        if date_from is not None or date_to is not None:
            get_time = schema.fields[schema.time_field].getter
            rows = [
                row for row in rows
                if get_time(row) is not None
                and (date_from is None or get_time(row) >= date_from)
                and (date_to is None or get_time(row) <= date_to)
            ]

        if search:
            getters = [schema.fields[name].getter for name in self._search_fields[collection]]
            rows = [
                row for row in rows
                if any(
                    (value := getter(row)) is not None and contains(_text(value), search)
                    for getter in getters
                )
            ]

        # Ties break by ascending row id under ASC. DESC is the exact reverse
        # of ASC, so its ties come out by descending row id: the mirror rule
        # wins over an ascending tie-break.
        rows.sort(key=lambda row: (
            _value_key(sort_spec.field_type, sort_spec.getter(row)),
            schema.row_id(row),
        ))
        if direction == SortDirection.DESC:
            rows.reverse()

        window = tuple(rows[offset:offset + limit])
        logger.debug(
            "query_executed",
            extra={
                "collection": collection.value,
                "sort_key": sort_key,
                "sort_direction": direction.value,
                "filter_count": len(predicates),
                "total_count": len(rows),
                "returned": len(window),
            },
        )
        return Page(items=window, total_count=len(rows), offset=offset, limit=limit)

    def _window(self, offset: int, limit: int | None) -> tuple[int, int]:
        if isinstance(offset, bool) or not isinstance(offset, int) or offset < 0:
            raise InvalidInputError(f"offset must be a non-negative integer, got {offset!r}", field="offset")
        if limit is None:
            limit = self.default_page_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise InvalidInputError(f"limit must be a positive integer, got {limit!r}", field="limit")
        return offset, min(limit, self.max_page_limit)

"""Selectors for the inventory kernel (read side)."""

from inventory_kernel.selectors.query_engine import (
    Collection,
    FieldType,
    ItemStockRow,
    Page,
    QueryEngine,
    SortDirection,
)
from inventory_kernel.selectors.snapshot_selector import (
    DashboardSummary,
    LedgerSnapshot,
    SnapshotSelector,
)

__all__ = [
    "Collection",
    "DashboardSummary",
    "FieldType",
    "ItemStockRow",
    "LedgerSnapshot",
    "Page",
    "QueryEngine",
    "SnapshotSelector",
    "SortDirection",
]

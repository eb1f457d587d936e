"""
AlertDeriver -- stock status derived from every StockRecord change.

Responsibility:
    Keeps the derived status (IN_STOCK / LOW / CRITICAL / OUT_OF_STOCK) of
    every StockRecord in step with the ledger by listening to LedgerStore
    changes, and serves the ordered alert list and per-status counts.

Architecture position:
    Kernel > Services.  Registered as a LedgerStore listener; reads the
    catalog for item metadata.  The classification itself is the pure
    ``domain.alerts.classify``.

Invariants enforced:
    - The derived status of a key always equals ``classify`` of its
      current record: recomputation happens inside the key's critical
      section, before the mutating operation returns.

Audit relevance:
    Every status transition is logged as ``stock_status_changed``.
"""

from __future__ import annotations

import threading
from collections import Counter

from inventory_kernel.domain.alerts import (
    ALERT_STATUSES,
    DEFAULT_CRITICAL_FRACTION,
    StockAlert,
    StockStatus,
    classify,
)
from inventory_kernel.domain.values import StockKey, StockRecord
from inventory_kernel.logging_config import get_logger
from inventory_kernel.services.catalog_service import CatalogService
from inventory_kernel.services.ledger_store import LedgerStore

logger = get_logger("services.alerts")


class AlertDeriver:
    """Derived stock status per key, recomputed on change."""

    def __init__(
        self,
        store: LedgerStore,
        catalog: CatalogService,
        critical_fraction: float = DEFAULT_CRITICAL_FRACTION,
    ):
        if not 0 < critical_fraction <= 1:
            raise ValueError(f"critical_fraction must be in (0, 1], got {critical_fraction}")
        self._store = store
        self._catalog = catalog
        self.critical_fraction = critical_fraction
        self._lock = threading.Lock()
        self._records: dict[StockKey, StockRecord] = {}
        self._statuses: dict[StockKey, StockStatus] = {}
        store.add_listener(self.on_stock_changed)

    def classify(self, record: StockRecord) -> StockStatus:
        return classify(record, self.critical_fraction)

    def on_stock_changed(self, before: StockRecord | None, after: StockRecord) -> None:
        status = self.classify(after)
        with self._lock:
            previous = self._statuses.get(after.key)
            self._records[after.key] = after
            self._statuses[after.key] = status
        if previous is not None and previous != status:
            logger.info(
                "stock_status_changed",
                extra={
                    "stock_key": str(after.key),
                    "from_status": previous.value,
                    "to_status": status.value,
                    "available": after.available,
                    "min_threshold": after.min_threshold,
                },
            )

    def status_of(self, item_id: str, department_id: str) -> StockStatus:
        key = StockKey(item_id, department_id)
        with self._lock:
            status = self._statuses.get(key)
        if status is None:
            return self.classify(self._store.get_stock(item_id, department_id))
        return status

    def list_alerts(
        self,
        department_id: str | None = None,
        category: str | None = None,
    ) -> list[StockAlert]:
        """
        Records currently LOW, CRITICAL or OUT_OF_STOCK.

        Ordered CRITICAL/OUT_OF_STOCK first, then by ascending available,
        then item_id, department_id.
        """
        with self._lock:
            entries = [
                (self._records[key], status)
                for key, status in self._statuses.items()
                if status in ALERT_STATUSES
            ]
        alerts = []
        for record, status in entries:
            if department_id is not None and record.department_id != department_id:
                continue
            item = self._catalog.find_item(record.item_id)
            if item is None or not item.is_active:
                continue
            if category is not None and item.category != category:
                continue
            alerts.append(StockAlert(item=item, record=record, status=status))
        alerts.sort(key=lambda alert: alert.sort_key)
        return alerts

    def counts(self) -> dict[StockStatus, int]:
        with self._lock:
            tally = Counter(self._statuses.values())
        return {status: tally.get(status, 0) for status in StockStatus}

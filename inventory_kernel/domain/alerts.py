"""
Stock status derivation.

``classify`` is a pure function of a StockRecord and the critical fraction
policy constant.  The AlertDeriver service calls it on every StockRecord
change; the query and snapshot selectors call it for display.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from inventory_kernel.domain.values import Item, StockRecord

DEFAULT_CRITICAL_FRACTION = 0.3


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW = "low"
    CRITICAL = "critical"
    OUT_OF_STOCK = "out_of_stock"


ALERT_STATUSES: frozenset[StockStatus] = frozenset(
    {StockStatus.LOW, StockStatus.CRITICAL, StockStatus.OUT_OF_STOCK}
)

# Alert list ordering: CRITICAL and OUT_OF_STOCK share the top rank.
_SEVERITY_RANK = {
    StockStatus.OUT_OF_STOCK: 0,
    StockStatus.CRITICAL: 0,
    StockStatus.LOW: 1,
    StockStatus.IN_STOCK: 2,
}


def classify(
    record: StockRecord,
    critical_fraction: float = DEFAULT_CRITICAL_FRACTION,
) -> StockStatus:
    """Derive the stock status from available stock and the minimum threshold."""
    available = record.available
    if available == 0:
        return StockStatus.OUT_OF_STOCK
    if available < record.min_threshold * critical_fraction:
        return StockStatus.CRITICAL
    if available < record.min_threshold:
        return StockStatus.LOW
    return StockStatus.IN_STOCK


@dataclass(frozen=True)
class StockAlert:
    item: Item
    record: StockRecord
    status: StockStatus

    @property
    def sort_key(self) -> tuple[int, int, str, str]:
        return (
            _SEVERITY_RANK[self.status],
            self.record.available,
            self.record.item_id,
            self.record.department_id,
        )

"""
Module: inventory_kernel.selectors.snapshot_selector
Responsibility: Read-only snapshot feed for downstream consumers (reporting,
    forecasting) and the dashboard summary tiles.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - A LedgerSnapshot is internally consistent: its records are exactly
      the replay of its transactions, because both are copied under the
      store's state lock.
    - DashboardSummary counts are computed from one snapshot, never from
      separate reads.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from inventory_kernel.domain.alerts import DEFAULT_CRITICAL_FRACTION, StockStatus, classify
from inventory_kernel.domain.transactions import LedgerTransaction
from inventory_kernel.domain.transfer import TransferRequest, TransferStatus
from inventory_kernel.domain.values import StockRecord
from inventory_kernel.selectors.base import BaseSelector
from inventory_kernel.services.catalog_service import CatalogService
from inventory_kernel.services.ledger_store import LedgerStore


@dataclass(frozen=True)
class LedgerSnapshot:
    as_of_seq: int
    taken_at: datetime
    records: tuple[StockRecord, ...]
    transactions: tuple[LedgerTransaction, ...]
    transfers: tuple[TransferRequest, ...]


@dataclass(frozen=True)
class DashboardSummary:
    total_items: int
    total_units: int
    low_stock_count: int
    critical_count: int
    out_of_stock_count: int
    recent_transaction_count: int
    pending_transfer_count: int
    as_of_seq: int


class SnapshotSelector(BaseSelector):
    """Snapshots and summary tiles over the ledger."""

    def __init__(
        self,
        store: LedgerStore,
        catalog: CatalogService,
        critical_fraction: float = DEFAULT_CRITICAL_FRACTION,
        recent_window_hours: float = 24,
    ):
        super().__init__(store, catalog)
        self.critical_fraction = critical_fraction
        self.recent_window = timedelta(hours=recent_window_hours)

    def snapshot(self) -> LedgerSnapshot:
        as_of_seq, records, transactions, transfers = self.store.snapshot_state()
        return LedgerSnapshot(
            as_of_seq=as_of_seq,
            taken_at=self.store.clock.now(),
            records=tuple(records),
            transactions=tuple(transactions),
            transfers=tuple(transfers),
        )

    def dashboard_summary(
        self,
        department_id: str | None = None,
        hospital_id: str | None = None,
    ) -> DashboardSummary:
        """
        Summary tiles, optionally narrowed to one department or hospital.

        Stock counts cover active catalog items only.
        """
        snapshot = self.snapshot()

        def in_scope(dept: str) -> bool:
            if department_id is not None and dept != department_id:
                return False
            if hospital_id is not None:
                department = self.catalog.find_department(dept)
                return department is not None and department.hospital_id == hospital_id
            return True

        active_ids = {i.item_id for i in self.catalog.list_items(include_inactive=False)}
        records = [
            r for r in snapshot.records
            if r.item_id in active_ids and in_scope(r.department_id)
        ]
        statuses = [classify(r, self.critical_fraction) for r in records]

        if department_id is None and hospital_id is None:
            total_items = len(active_ids)
        else:
            total_items = len({r.item_id for r in records})

        cutoff = snapshot.taken_at - self.recent_window
        recent = [
            tx for tx in snapshot.transactions
            if tx.timestamp >= cutoff and in_scope(tx.department_id)
        ]
        pending = [
            t for t in snapshot.transfers
            if t.status == TransferStatus.PENDING
            and (in_scope(t.source_department_id) or in_scope(t.destination_department_id))
        ]
        return DashboardSummary(
            total_items=total_items,
            total_units=sum(r.quantity for r in records),
            low_stock_count=statuses.count(StockStatus.LOW),
            critical_count=statuses.count(StockStatus.CRITICAL),
            out_of_stock_count=statuses.count(StockStatus.OUT_OF_STOCK),
            recent_transaction_count=len(recent),
            pending_transfer_count=len(pending),
            as_of_seq=snapshot.as_of_seq,
        )

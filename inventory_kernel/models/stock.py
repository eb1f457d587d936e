"""
Module: inventory_kernel.models.stock
Responsibility: ORM persistence for the current-value StockRecord table and
    the per-department threshold overrides.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    NON_NEGATIVE_STOCK -- check constraint ``quantity >= reserved >= 0``.
    One row per (item_id, department_id).

Notes:
    ``stock_records`` is derived state.  It is written in the same database
    transaction as the log rows that produced it, and can always be rebuilt
    from ``ledger_transactions`` (see services/recovery.py).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from inventory_kernel.db.base import Base
from inventory_kernel.domain.values import StockKey, StockRecord


class StockRecordModel(Base):
    """Persistent current stock for one item in one department."""

    __tablename__ = "stock_records"

    __table_args__ = (
        UniqueConstraint("item_id", "department_id", name="uq_stock_records_key"),
        CheckConstraint("reserved >= 0", name="ck_stock_records_reserved_non_negative"),
        CheckConstraint("quantity >= reserved", name="ck_stock_records_quantity_covers_reserved"),
    )

    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    department_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_updated: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<StockRecord {self.item_id}@{self.department_id} "
            f"q={self.quantity} r={self.reserved}>"
        )

    def to_dto(self, min_threshold: int = 0) -> StockRecord:
        return StockRecord(
            item_id=self.item_id,
            department_id=self.department_id,
            quantity=self.quantity,
            reserved=self.reserved,
            min_threshold=min_threshold,
            last_updated=self.last_updated,
        )

    def apply(self, record: StockRecord) -> None:
        """Overwrite the mutable columns from a domain record."""
        self.quantity = record.quantity
        self.reserved = record.reserved
        self.last_updated = record.last_updated

    @classmethod
    def from_dto(cls, dto: StockRecord) -> StockRecordModel:
        return cls(
            item_id=dto.item_id,
            department_id=dto.department_id,
            quantity=dto.quantity,
            reserved=dto.reserved,
            last_updated=dto.last_updated,
        )


class StockThresholdModel(Base):
    """Per-department minimum threshold override for an item."""

    __tablename__ = "stock_thresholds"

    __table_args__ = (
        UniqueConstraint("item_id", "department_id", name="uq_stock_thresholds_key"),
        CheckConstraint("min_threshold >= 0", name="ck_stock_thresholds_non_negative"),
    )

    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    department_id: Mapped[str] = mapped_column(String(64), nullable=False)
    min_threshold: Mapped[int] = mapped_column(Integer, nullable=False)

    @property
    def key(self) -> StockKey:
        return StockKey(self.item_id, self.department_id)

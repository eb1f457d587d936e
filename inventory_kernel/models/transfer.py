"""
Module: inventory_kernel.models.transfer
Responsibility: ORM persistence for transfer requests and their ordered lines.

Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    TERMINAL_TRANSFER -- DB check constraint limits status values; the
        workflow enforces transitions; db/immutability.py blocks changes to
        a request whose persisted status is already terminal.
    Source and destination differ (check constraint).

Failure modes:
    - IntegrityError on duplicate transfer_id or line position.
    - InvariantViolationError on UPDATE of a terminal request.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from inventory_kernel.db.base import Base
from inventory_kernel.domain.transfer import (
    TransferLine,
    TransferPriority,
    TransferRequest,
    TransferStatus,
)


class TransferRequestModel(Base):
    """Persistent transfer request."""

    __tablename__ = "transfer_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_transfer_requests_valid_status",
        ),
        CheckConstraint(
            "source_department_id <> destination_department_id",
            name="ck_transfer_requests_distinct_departments",
        ),
        Index("ix_transfer_requests_status", "status", "requested_at"),
    )

    transfer_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    source_department_id: Mapped[str] = mapped_column(String(64), nullable=False)
    destination_department_id: Mapped[str] = mapped_column(String(64), nullable=False)
    requested_by: Mapped[str] = mapped_column(String(64), nullable=False)
    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    priority: Mapped[str] = mapped_column(String(32), nullable=False, default="normal")
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolution_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    lines: Mapped[list["TransferLineModel"]] = relationship(
        "TransferLineModel",
        back_populates="request",
        primaryjoin="TransferRequestModel.transfer_id == TransferLineModel.transfer_id",
        order_by="TransferLineModel.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<TransferRequest {self.transfer_id} "
            f"{self.source_department_id}->{self.destination_department_id} "
            f"status={self.status}>"
        )

    def to_dto(self) -> TransferRequest:
        return TransferRequest(
            transfer_id=self.transfer_id,
            source_department_id=self.source_department_id,
            destination_department_id=self.destination_department_id,
            requested_by=self.requested_by,
            requested_at=self.requested_at,
            lines=tuple(line.to_dto() for line in self.lines),
            status=TransferStatus(self.status),
            priority=TransferPriority(self.priority),
            notes=self.notes,
            resolved_by=self.resolved_by,
            resolved_at=self.resolved_at,
            resolution_reason=self.resolution_reason,
        )

    @classmethod
    def from_dto(cls, dto: TransferRequest) -> TransferRequestModel:
        model = cls(
            transfer_id=dto.transfer_id,
            source_department_id=dto.source_department_id,
            destination_department_id=dto.destination_department_id,
            requested_by=dto.requested_by,
            requested_at=dto.requested_at,
            status=dto.status.value,
            priority=dto.priority.value,
            notes=dto.notes,
            resolved_by=dto.resolved_by,
            resolved_at=dto.resolved_at,
            resolution_reason=dto.resolution_reason,
        )
        model.lines = [
            TransferLineModel(
                transfer_id=dto.transfer_id,
                position=index,
                item_id=line.item_id,
                quantity=line.quantity,
            )
            for index, line in enumerate(dto.lines)
        ]
        return model

    def apply_resolution(self, dto: TransferRequest) -> None:
        """Copy the resolution fields of a resolved request onto this row."""
        self.status = dto.status.value
        self.resolved_by = dto.resolved_by
        self.resolved_at = dto.resolved_at
        self.resolution_reason = dto.resolution_reason


class TransferLineModel(Base):
    """One ordered line of a transfer request."""

    __tablename__ = "transfer_lines"

    __table_args__ = (
        UniqueConstraint("transfer_id", "position", name="uq_transfer_lines_position"),
        CheckConstraint("quantity > 0", name="ck_transfer_lines_positive_quantity"),
    )

    transfer_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("transfer_requests.transfer_id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    item_id: Mapped[str] = mapped_column(String(64), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    request: Mapped["TransferRequestModel"] = relationship(
        "TransferRequestModel",
        back_populates="lines",
        foreign_keys=[transfer_id],
        primaryjoin="TransferLineModel.transfer_id == TransferRequestModel.transfer_id",
    )

    def to_dto(self) -> TransferLine:
        return TransferLine(item_id=self.item_id, quantity=self.quantity)

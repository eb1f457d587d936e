"""
Transfer request domain types (``inventory_kernel.domain.transfer``).

Responsibility
--------------
Pure value objects for inter-department transfer requests and the
request lifecycle state machine.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.

Invariants enforced
-------------------
* TERMINAL_TRANSFER -- ``TRANSFER_TRANSITIONS`` defines the only valid
  status transitions.  APPROVED and REJECTED have no outgoing edges.
* Source and destination differ; lines are non-empty with positive
  quantities (checked by ``validate_transfer_shape``).
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from inventory_kernel.exceptions import InvalidInputError, InvalidStateError


class TransferStatus(str, Enum):
    """Transfer request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TransferAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


TRANSFER_TRANSITIONS: dict[TransferStatus, dict[TransferAction, TransferStatus]] = {
    TransferStatus.PENDING: {
        TransferAction.APPROVE: TransferStatus.APPROVED,
        TransferAction.REJECT: TransferStatus.REJECTED,
    },
    TransferStatus.APPROVED: {},
    TransferStatus.REJECTED: {},
}

TERMINAL_TRANSFER_STATUSES: frozenset[TransferStatus] = frozenset(
    status for status, edges in TRANSFER_TRANSITIONS.items() if not edges
)


class TransferPriority(str, Enum):
    """Opaque request metadata.  Has no effect on ordering or fulfillment."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


@dataclass(frozen=True)
class TransferLine:
    item_id: str
    quantity: int


@dataclass(frozen=True)
class TransferRequest:
    """Immutable snapshot of a transfer request."""

    transfer_id: str
    source_department_id: str
    destination_department_id: str
    requested_by: str
    requested_at: datetime
    lines: tuple[TransferLine, ...]
    status: TransferStatus = TransferStatus.PENDING
    priority: TransferPriority = TransferPriority.NORMAL
    notes: str | None = None
    resolved_by: str | None = None
    resolved_at: datetime | None = None
    resolution_reason: str | None = None

    @property
    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TRANSFER_STATUSES

    def item_totals(self) -> "OrderedDict[str, int]":
        """Quantity per item, in first-appearance order."""
        totals: OrderedDict[str, int] = OrderedDict()
        for line in self.lines:
            totals[line.item_id] = totals.get(line.item_id, 0) + line.quantity
        return totals

    def transition(
        self,
        action: TransferAction,
        actor_id: str,
        at: datetime,
        reason: str | None = None,
    ) -> TransferRequest:
        """Return the request in its next state, or raise InvalidStateError."""
        target = TRANSFER_TRANSITIONS[self.status].get(action)
        if target is None:
            raise InvalidStateError(self.transfer_id, self.status.value, action.value)
        return replace(
            self,
            status=target,
            resolved_by=actor_id,
            resolved_at=at,
            resolution_reason=reason,
        )


def validate_transfer_shape(
    source_department_id: str,
    destination_department_id: str,
    lines: tuple[TransferLine, ...],
) -> None:
    """Structural validation done before any lock is taken."""
    if source_department_id == destination_department_id:
        raise InvalidInputError(
            "Source and destination departments must differ",
            field="destination_department_id",
        )
    if not lines:
        raise InvalidInputError("Transfer must contain at least one line", field="lines")
    for index, line in enumerate(lines):
        if not line.item_id:
            raise InvalidInputError(f"Line {index} has no item", field="lines")
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise InvalidInputError(
                f"Line {index} quantity must be a positive integer, got {line.quantity!r}",
                field="lines",
            )

"""
Inventory value objects (``inventory_kernel.domain.values``).

Responsibility
--------------
Frozen value objects for the nouns of the ledger: catalog entities (items,
hospitals, departments, subdepartments, users) and the per-key StockRecord.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports from
``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* NON_NEGATIVE_STOCK -- ``StockRecord`` refuses construction unless
  ``quantity >= reserved >= 0`` and ``min_threshold >= 0``.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum

from inventory_kernel.exceptions import InvariantViolationError
from inventory_kernel.invariants import LedgerInvariant


class AccessLevel(str, Enum):
    """User access levels, highest first."""

    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"
    READ_ONLY = "read_only"


@dataclass(frozen=True, order=True)
class StockKey:
    """Identity of a StockRecord.

    ``order=True`` gives the global lock acquisition order: ascending
    ``item_id`` then ``department_id``.
    """

    item_id: str
    department_id: str

    def __str__(self) -> str:
        return f"{self.item_id}@{self.department_id}"


@dataclass(frozen=True)
class StockRecord:
    """
    Current stock for one item in one department.

    Contract: Immutable.  Every mutation produces a new record through
    ``with_delta``.

    Guarantees: ``quantity >= reserved >= 0`` and ``min_threshold >= 0``.

    Raises:
        InvariantViolationError: If constructed with inconsistent quantities.
    """

    item_id: str
    department_id: str
    quantity: int = 0
    reserved: int = 0
    min_threshold: int = 0
    last_updated: datetime | None = None

    def __post_init__(self):
        # INVARIANT: NON_NEGATIVE_STOCK
        if self.reserved < 0:
            raise InvariantViolationError(
                LedgerInvariant.NON_NEGATIVE_STOCK.value,
                f"{self.key}: reserved {self.reserved} < 0",
            )
        if self.quantity < self.reserved:
            raise InvariantViolationError(
                LedgerInvariant.NON_NEGATIVE_STOCK.value,
                f"{self.key}: quantity {self.quantity} < reserved {self.reserved}",
            )
        if self.min_threshold < 0:
            raise InvariantViolationError(
                LedgerInvariant.NON_NEGATIVE_STOCK.value,
                f"{self.key}: min_threshold {self.min_threshold} < 0",
            )

    @property
    def key(self) -> StockKey:
        return StockKey(self.item_id, self.department_id)

    @property
    def available(self) -> int:
        """Stock free to book out or reserve."""
        return self.quantity - self.reserved

    def with_delta(
        self,
        quantity_delta: int,
        reserved_delta: int,
        at: datetime | None,
    ) -> StockRecord:
        """Return a new record with the deltas applied (validated on construction)."""
        return replace(
            self,
            quantity=self.quantity + quantity_delta,
            reserved=self.reserved + reserved_delta,
            last_updated=at if at is not None else self.last_updated,
        )

    def with_threshold(self, min_threshold: int) -> StockRecord:
        return replace(self, min_threshold=min_threshold)


@dataclass(frozen=True)
class Item:
    """An inventory item (supply, drug, consumable)."""

    item_id: str
    name: str
    category: str
    unit: str = "units"
    default_min_threshold: int = 0
    is_active: bool = True


@dataclass(frozen=True)
class Subdepartment:
    subdepartment_id: str
    name: str
    staff_count: int = 0


@dataclass(frozen=True)
class Department:
    """A department inside a hospital.  Stock is held per department."""

    department_id: str
    name: str
    hospital_id: str
    department_type: str = "clinical"
    staff_count: int = 0
    subdepartments: tuple[Subdepartment, ...] = ()


@dataclass(frozen=True)
class Hospital:
    hospital_id: str
    name: str
    location: str = ""
    hospital_type: str = "general"
    departments: tuple[Department, ...] = ()


@dataclass(frozen=True)
class User:
    """A staff member who acts on the ledger."""

    user_id: str
    name: str
    department_id: str | None
    access_level: AccessLevel
    hospital_id: str | None = None
    email: str | None = None
    role: str | None = None

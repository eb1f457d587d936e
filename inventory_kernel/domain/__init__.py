"""Pure domain layer: value objects, state machines and policy functions. ZERO I/O."""

from inventory_kernel.domain.alerts import StockAlert, StockStatus, classify
from inventory_kernel.domain.authorization import Permission, require_permission
from inventory_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from inventory_kernel.domain.transactions import (
    LedgerTransaction,
    PlannedTransaction,
    TransactionKind,
    TransactionStatus,
)
from inventory_kernel.domain.transfer import (
    TransferLine,
    TransferPriority,
    TransferRequest,
    TransferStatus,
)
from inventory_kernel.domain.values import (
    AccessLevel,
    Department,
    Hospital,
    Item,
    StockKey,
    StockRecord,
    Subdepartment,
    User,
)

__all__ = [
    "AccessLevel",
    "Clock",
    "Department",
    "DeterministicClock",
    "Hospital",
    "Item",
    "LedgerTransaction",
    "Permission",
    "PlannedTransaction",
    "StockAlert",
    "StockKey",
    "StockRecord",
    "StockStatus",
    "Subdepartment",
    "SystemClock",
    "TransactionKind",
    "TransactionStatus",
    "TransferLine",
    "TransferPriority",
    "TransferRequest",
    "TransferStatus",
    "User",
    "classify",
    "require_permission",
]

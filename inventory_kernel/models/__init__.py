"""ORM models.  Importing this package registers every table on Base.metadata."""

from inventory_kernel.models.stock import StockRecordModel, StockThresholdModel
from inventory_kernel.models.transaction import LedgerTransactionModel
from inventory_kernel.models.transfer import TransferLineModel, TransferRequestModel

__all__ = [
    "LedgerTransactionModel",
    "StockRecordModel",
    "StockThresholdModel",
    "TransferLineModel",
    "TransferRequestModel",
]

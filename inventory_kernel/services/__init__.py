"""Services for the inventory kernel (write side)."""

from inventory_kernel.services.alert_deriver import AlertDeriver
from inventory_kernel.services.catalog_service import CatalogService
from inventory_kernel.services.idempotency import IdempotencyRegistry
from inventory_kernel.services.ledger_store import LedgerStore, MutationPlan, MutationResult
from inventory_kernel.services.lock_manager import KeyLockManager
from inventory_kernel.services.recovery import RecoveryReport, RecoveryService, replay_log
from inventory_kernel.services.sequence_service import SequenceService
from inventory_kernel.services.transaction_engine import TransactionEngine
from inventory_kernel.services.transfer_workflow import TransferWorkflow

__all__ = [
    "AlertDeriver",
    "CatalogService",
    "IdempotencyRegistry",
    "KeyLockManager",
    "LedgerStore",
    "MutationPlan",
    "MutationResult",
    "RecoveryReport",
    "RecoveryService",
    "SequenceService",
    "TransactionEngine",
    "TransferWorkflow",
    "replay_log",
]

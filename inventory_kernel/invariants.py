"""
Ledger Invariants Contract.

These invariants are structural law. No configuration value may switch them
off. This module declares them explicitly; enforcement is distributed across
the StockRecord value object, LedgerStore, TransferWorkflow, and the ORM
immutability listeners.
"""

from enum import Enum, unique


@unique
class LedgerInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    NON_NEGATIVE_STOCK = "non_negative_stock"
    """quantity >= reserved >= 0 for every StockRecord. Enforced by
    StockRecord construction and LedgerStore.apply_delta."""

    ATOMIC_TRANSFER = "atomic_transfer"
    """A transfer reserves, consumes, or releases all of its lines or none.
    Enforced by TransferWorkflow running inside a single store unit of work."""

    APPEND_ONLY_LOG = "append_only_log"
    """Ledger transactions are never updated or deleted. Enforced by the
    in-memory log API and ORM listeners (inventory_kernel.db.immutability)."""

    REPLAY_EQUIVALENCE = "replay_equivalence"
    """Replaying the log from empty state reproduces the StockRecord table.
    Enforced by recording net deltas on every transaction."""

    SEQUENCE_MONOTONICITY = "sequence_monotonicity"
    """Transaction sequence numbers are strictly increasing. Enforced by
    SequenceService."""

    IDEMPOTENCY = "idempotency"
    """A deduplication key produces at most one application. Enforced by
    IdempotencyRegistry inside the store critical section."""

    TERMINAL_TRANSFER = "terminal_transfer"
    """APPROVED and REJECTED transfers never change again. Enforced by
    TRANSFER_TRANSITIONS."""


ALL_LEDGER_INVARIANTS: frozenset[LedgerInvariant] = frozenset(LedgerInvariant)

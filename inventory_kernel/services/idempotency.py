"""
IdempotencyRegistry -- client deduplication keys for ledger operations.

Responsibility:
    Remembers which idempotency keys have produced a committed result and
    the fingerprint of the parameters they were used with.

Architecture position:
    Kernel > Services.  Owned by LedgerStore; claims happen inside the
    operation's critical sections, so a retried request racing its original
    is serialized on the same StockRecord locks.

Invariants enforced:
    IDEMPOTENCY -- a key maps to at most one committed result.  Replaying
        the key with the same fingerprint returns that result without
        re-applying; a different fingerprint is an IdempotencyConflictError.
"""

import threading
from dataclasses import dataclass
from typing import Any

from inventory_kernel.exceptions import IdempotencyConflictError
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.idempotency")


@dataclass(frozen=True)
class _Entry:
    fingerprint: tuple
    result: Any = None
    in_flight: bool = False


class IdempotencyRegistry:
    """Thread-safe key -> (fingerprint, result) map with in-flight claims."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def claim(self, key: str, fingerprint: tuple) -> Any | None:
        """
        Claim ``key`` for a new operation.

        Returns the stored result if the key already completed with the same
        fingerprint, otherwise None (and the key is now in flight).

        Raises:
            IdempotencyConflictError: Fingerprint mismatch, or the key is
                in flight for a different operation.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self._entries[key] = _Entry(fingerprint=fingerprint, in_flight=True)
                return None
            if entry.fingerprint != fingerprint:
                logger.warning(
                    "idempotency_conflict",
                    extra={"idempotency_key": key},
                )
                raise IdempotencyConflictError(
                    key, "key already used with different parameters"
                )
            if entry.in_flight:
                raise IdempotencyConflictError(key, "key is in use by an operation in progress")
            logger.info("idempotent_replay", extra={"idempotency_key": key})
            return entry.result

    def is_recorded(self, key: str) -> bool:
        """True when ``key`` has a committed result."""
        with self._lock:
            entry = self._entries.get(key)
            return entry is not None and not entry.in_flight

    def complete(self, key: str, result: Any) -> None:
        with self._lock:
            entry = self._entries[key]
            self._entries[key] = _Entry(fingerprint=entry.fingerprint, result=result)

    def abandon(self, key: str) -> None:
        """Release an in-flight claim whose operation failed."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and entry.in_flight:
                del self._entries[key]

    def restore(self, key: str, fingerprint: tuple, result: Any) -> None:
        """Re-register a committed key while loading the persisted log."""
        with self._lock:
            self._entries[key] = _Entry(fingerprint=fingerprint, result=result)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


def booking_fingerprint(kind: str, item_id: str, department_id: str, quantity: int) -> tuple:
    """Parameters that must match when a book_in/book_out key is replayed."""
    return ("booking", kind, item_id, department_id, quantity)


def transfer_fingerprint(
    source_department_id: str,
    destination_department_id: str,
    lines: tuple[tuple[str, int], ...],
) -> tuple:
    """Parameters that must match when a transfer request key is replayed."""
    return ("transfer", source_department_id, destination_department_id, tuple(lines))

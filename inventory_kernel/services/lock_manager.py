"""
KeyLockManager -- per-StockRecord exclusive critical sections.

Responsibility:
    Owns one ``threading.Lock`` per (item_id, department_id) and acquires
    the locks of an operation in a fixed global order with a bounded wait.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.  Used only by
    LedgerStore.

Invariants enforced:
    - Deadlock freedom: every multi-key operation acquires in ascending
      StockKey order (item_id, then department_id).
    - Bounded waits: each acquisition waits at most ``timeout_seconds``.
    - Different keys never contend.

Failure modes:
    - LockTimeoutError (retryable) when a lock is not obtained in time.
      Locks already held by the operation are released first.
    - OperationCancelledError when the caller's cancel event is set before
      all locks are held.  Nothing has been mutated at that point.
"""

import threading
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from inventory_kernel.domain.values import StockKey
from inventory_kernel.exceptions import LockTimeoutError, OperationCancelledError
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.locks")

# Wait granularity while a cancel event is being watched
_CANCEL_POLL_SECONDS = 0.05


class KeyLockManager:
    """Registry of per-key locks with ordered, bounded acquisition."""

    def __init__(self, timeout_seconds: float = 5.0):
        if timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {timeout_seconds}")
        self.timeout_seconds = timeout_seconds
        self._guard = threading.Lock()
        self._locks: dict[StockKey, threading.Lock] = {}

    def _lock_for(self, key: StockKey) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def _acquire(
        self,
        key: StockKey,
        lock: threading.Lock,
        cancel: threading.Event | None,
        operation: str,
    ) -> None:
        if cancel is None:
            if lock.acquire(timeout=self.timeout_seconds):
                return
        else:
            deadline = time.monotonic() + self.timeout_seconds
            while True:
                if cancel.is_set():
                    raise OperationCancelledError(operation)
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                if lock.acquire(timeout=min(remaining, _CANCEL_POLL_SECONDS)):
                    return

        logger.warning(
            "lock_timeout",
            extra={
                "operation": operation,
                "stock_key": str(key),
                "timeout_seconds": self.timeout_seconds,
            },
        )
        raise LockTimeoutError(key.item_id, key.department_id, self.timeout_seconds)

    @contextmanager
    def hold(
        self,
        keys: Iterable[StockKey],
        cancel: threading.Event | None = None,
        operation: str = "mutate",
    ) -> Iterator[tuple[StockKey, ...]]:
        """
        Hold the locks of ``keys`` for the duration of the ``with`` block.

        Yields the de-duplicated keys in acquisition order.
        """
        ordered = tuple(sorted(set(keys)))
        held: list[threading.Lock] = []
        try:
            for key in ordered:
                if cancel is not None and cancel.is_set():
                    raise OperationCancelledError(operation)
                lock = self._lock_for(key)
                self._acquire(key, lock, cancel, operation)
                held.append(lock)
            yield ordered
        finally:
            for lock in reversed(held):
                lock.release()

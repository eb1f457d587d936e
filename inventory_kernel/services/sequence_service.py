"""
SequenceService -- monotonic sequence and timestamp allocation for log entries.

Responsibility:
    Hands out strictly increasing ``seq`` numbers together with the log
    timestamp, so that ordering by (timestamp, seq) and ordering by seq agree.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called only by LedgerStore inside an operation's critical sections.

Invariants enforced:
    SEQUENCE_MONOTONICITY -- every allocated value is greater than every
        value allocated before it, including values persisted by an earlier
        process (the allocator is seeded from the highest persisted seq).
        A failed commit leaves a gap; gaps are never reused.

Audit relevance:
    Allocation is logged at DEBUG level with the first and last value.
"""

import threading
from datetime import datetime

from inventory_kernel.domain.clock import Clock
from inventory_kernel.exceptions import InvariantViolationError
from inventory_kernel.invariants import LedgerInvariant
from inventory_kernel.logging_config import get_logger

logger = get_logger("services.sequence")


class SequenceService:
    """
    Thread-safe allocator for (seq, timestamp) pairs.

    Contract:
        ``allocate(n)`` returns ``n`` consecutive sequence numbers and one
        timestamp read from the injected clock under the same lock.

    Guarantees:
        - Sequence numbers are strictly monotonic across threads.
        - Timestamps never go backwards relative to seq: if the clock
          reports an earlier time than the last allocation, the last
          timestamp is reused.

    Non-goals:
        - Does NOT persist anything.  The log rows are the durable record.
    """

    def __init__(self, clock: Clock, start_after: int = 0):
        self._clock = clock
        self._lock = threading.Lock()
        self._current = start_after
        self._last_timestamp: datetime | None = None

    def seed(self, start_after: int, last_timestamp: datetime | None = None) -> None:
        """Reset the allocator after loading a persisted log."""
        with self._lock:
            if start_after < 0:
                raise ValueError(f"start_after must be >= 0, got {start_after}")
            self._current = start_after
            self._last_timestamp = last_timestamp

    def allocate(self, count: int) -> tuple[list[int], datetime]:
        if count <= 0:
            raise ValueError(f"count must be positive, got {count}")
        with self._lock:
            first = self._current + 1
            self._current += count
            now = self._clock.now()
            if self._last_timestamp is not None and now < self._last_timestamp:
                now = self._last_timestamp
            self._last_timestamp = now
            values = list(range(first, self._current + 1))
        # INVARIANT: SEQUENCE_MONOTONICITY
        if values[0] <= 0:
            raise InvariantViolationError(
                LedgerInvariant.SEQUENCE_MONOTONICITY.value,
                f"allocated non-positive sequence {values[0]}",
            )
        logger.debug(
            "sequence_allocated",
            extra={"first": values[0], "last": values[-1]},
        )
        return values, now

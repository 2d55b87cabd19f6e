"""Shared state for the worker pool.

Three small primitives, each safe under any number of concurrent callers:

- :class:`WorkPartitioner` hands out unique indices into the link set.
- :class:`ProgressTracker` aggregates items attempted and bytes copied.
- :class:`CancellationGate` is the cooperative stop flag.

The link set itself is a tuple and needs no locking.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# WorkPartitioner
# ---------------------------------------------------------------------------


class WorkPartitioner:
    """Monotonic cursor over ``range(total)``.

    Each :meth:`claim` returns a value no other call has returned.  Once
    the cursor passes *total* every claim returns ``None``.
    """

    def __init__(self, total: int) -> None:
        if total < 0:
            raise ValueError("total must be >= 0")
        self.total = total
        # Fetch-and-add: next() on a count is one C call under the GIL
        self._cursor = itertools.count()
        self._exhausted = total == 0

    def claim(self) -> int | None:
        """Reserve the next index, or return ``None`` when exhausted."""
        index = next(self._cursor)
        if index >= self.total - 1:
            self._exhausted = True
        if index >= self.total:
            return None
        return index

    @property
    def exhausted(self) -> bool:
        """True once every index has been handed out."""
        return self._exhausted


# ---------------------------------------------------------------------------
# ProgressTracker
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time view of the progress counters."""

    items_attempted: int
    bytes_copied: int


class ProgressTracker:
    """Items-attempted and bytes-copied counters shared by all workers.

    The two counters are updated independently; a snapshot taken while
    workers run may pair an item count with a byte count from slightly
    earlier or later.
    """

    def __init__(self) -> None:
        self._items = 0
        self._bytes = 0
        self._items_lock = threading.Lock()
        self._bytes_lock = threading.Lock()

    def record_attempt(self) -> int:
        """Count one processed item and return the new total."""
        with self._items_lock:
            self._items += 1
            return self._items

    def record_bytes(self, n: int) -> int:
        """Add *n* copied bytes and return the new total."""
        if n < 0:
            raise ValueError("byte count must be >= 0")
        with self._bytes_lock:
            self._bytes += n
            return self._bytes

    def snapshot(self) -> ProgressSnapshot:
        """Return the current counter values."""
        with self._items_lock:
            items = self._items
        with self._bytes_lock:
            copied = self._bytes
        return ProgressSnapshot(items_attempted=items, bytes_copied=copied)


# ---------------------------------------------------------------------------
# CancellationGate
# ---------------------------------------------------------------------------


class CancellationGate:
    """Write-once stop flag checked by workers between items.

    Only the interrupt handler (or the orchestrator's own policy) sets it;
    once set it stays set for the rest of the run.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def request_cancel(self) -> None:
        """Ask all workers to stop after their current item."""
        if not self._event.is_set():
            logger.info("Cancellation requested")
        self._event.set()

    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float) -> bool:
        """Sleep up to *timeout* seconds; return True early if cancelled."""
        return self._event.wait(timeout=timeout)

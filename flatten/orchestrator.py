"""Run orchestration for Flatten.

Implements the run state machine::

    DISCOVERING -> AWAITING_CONFIRMATION -> PROCESSING -> DRAINING -> DONE

Discovery and confirmation run on the calling thread; processing fans out
to a fixed pool of worker threads that share one immutable link tuple, a
:class:`WorkPartitioner`, a :class:`ProgressTracker` and a
:class:`CancellationGate`.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from pathlib import Path
from typing import Callable

from flatten.discovery import discover_links
from flatten.listing import ListingResult
from flatten.retry import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY, RetryController
from flatten.transfer import FlattenResult, FlattenStatus, LinkFlattener
from flatten.utils.path_helpers import ONE_MB
from flatten.work import CancellationGate, ProgressSnapshot, ProgressTracker, WorkPartitioner

logger = logging.getLogger(__name__)

_JOIN_POLL_INTERVAL = 0.2  # seconds

# ---------------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------------

ConfirmCallback = Callable[[int, int], bool]
StateChangeCallback = Callable[["RunState"], None]
ItemStartCallback = Callable[[int, int, str], None]
ItemCompleteCallback = Callable[[int, int, FlattenResult, ProgressSnapshot], None]


class RunState(Enum):
    """States of a flatten run."""

    DISCOVERING = auto()
    AWAITING_CONFIRMATION = auto()
    PROCESSING = auto()
    DRAINING = auto()
    DONE = auto()


@dataclass
class RunSummary:
    """Totals reported when a run reaches DONE."""

    found: int = 0
    num_dirs: int = 0
    processed: int = 0
    succeeded: int = 0
    bytes_copied: int = 0
    failures: list[FlattenResult] = field(default_factory=list)
    cancelled_items: list[str] = field(default_factory=list)
    declined: bool = False
    cancelled: bool = False

    @property
    def orphaned(self) -> list[FlattenResult]:
        """Failures whose copied data was left at a temp path."""
        return [f for f in self.failures if f.orphaned]


# ---------------------------------------------------------------------------
# FlattenRun
# ---------------------------------------------------------------------------


class FlattenRun:
    """One discovery-and-flatten pass over a directory tree.

    Usage::

        run = FlattenRun(root, skip_dirs=["node_modules"], workers=4,
                         confirm=confirm_flatten)
        summary = run.run()

    :meth:`cancel` may be called from any thread (typically a signal
    handler); workers finish their current link and stop.
    """

    def __init__(
        self,
        root: Path,
        skip_dirs: tuple[str, ...] | list[str] = (),
        workers: int = 1,
        confirm: ConfirmCallback | None = None,
        flattener: LinkFlattener | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        listing_source: str = "auto",
        listing_file: Path | None = None,
        gate: CancellationGate | None = None,
        on_state_change: StateChangeCallback | None = None,
        on_item_start: ItemStartCallback | None = None,
        on_item_complete: ItemCompleteCallback | None = None,
    ) -> None:
        """Initialise the run (does not start it).

        Args:
            root: Directory tree to flatten.
            skip_dirs: Directory-path substrings to exclude.
            workers: Number of worker threads (>= 1).
            confirm: Called with ``(found, num_dirs)`` before any copying;
                return True to proceed.  ``None`` declines.
            flattener: Per-link flattener; a default one is built if omitted.
            max_retries: Retry budget for transient network errors.
            retry_delay: Seconds between retries.
            listing_source: ``auto``, ``dir`` or ``walk``.
            listing_file: Pre-captured listing text to parse instead.
            gate: Shared cancellation gate; created if omitted.
            on_state_change: Called on every state transition.
            on_item_start: Called with ``(index, total, path)`` before each link.
            on_item_complete: Called with ``(index, total, result, snapshot)``.
        """
        if workers < 1:
            raise ValueError("workers must be >= 1")
        self.root = root
        self.skip_dirs = tuple(skip_dirs)
        self.workers = workers
        self.confirm = confirm
        self.flattener = flattener or LinkFlattener()
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.listing_source = listing_source
        self.listing_file = listing_file
        self.gate = gate or CancellationGate()
        self.on_state_change = on_state_change
        self.on_item_start = on_item_start
        self.on_item_complete = on_item_complete

        self.tracker = ProgressTracker()
        self._state = RunState.DISCOVERING
        self._lock = threading.Lock()
        self._summary = RunSummary()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def found(self) -> int:
        """Number of links discovered (0 until discovery has run)."""
        return self._summary.found

    def cancel(self) -> None:
        """Request a cooperative stop."""
        self.gate.request_cancel()

    def run(self) -> RunSummary:
        """Execute the whole state machine and return the summary.

        Raises:
            DiscoveryError: The link set could not be built.
        """
        self._set_state(RunState.DISCOVERING)
        listing = discover_links(
            self.root,
            self.skip_dirs,
            source=self.listing_source,
            listing_file=self.listing_file,
        )
        self._summary.found = len(listing.links)
        self._summary.num_dirs = listing.num_dirs

        if not listing.links:
            logger.info("No symlinks found in %d directories", listing.num_dirs)
            return self._finish()

        logger.info("Found %d symlinks in %d directories", len(listing.links), listing.num_dirs)
        self._set_state(RunState.AWAITING_CONFIRMATION)
        if not self._ask_confirmation(listing):
            logger.info("Declined; nothing was changed")
            self._summary.declined = True
            return self._finish()

        self._set_state(RunState.PROCESSING)
        partitioner = WorkPartitioner(len(listing.links))
        threads = self._start_workers(listing.links, partitioner)
        self._wait_for_workers(threads, partitioner)

        return self._finish()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _set_state(self, new_state: RunState) -> None:
        self._state = new_state
        logger.debug("Run state → %s", new_state.name)
        if self.on_state_change:
            try:
                self.on_state_change(new_state)
            except Exception:
                logger.exception("Exception in on_state_change callback")

    def _ask_confirmation(self, listing: ListingResult) -> bool:
        if self.confirm is None:
            return False
        try:
            return bool(self.confirm(len(listing.links), listing.num_dirs))
        except Exception:
            logger.exception("Confirmation failed; treating as decline")
            return False

    def _start_workers(
        self,
        links: tuple[str, ...],
        partitioner: WorkPartitioner,
    ) -> list[threading.Thread]:
        retry = RetryController(
            self.flattener.flatten,
            self.gate,
            max_retries=self.max_retries,
            delay=self.retry_delay,
        )
        count = min(self.workers, len(links))
        logger.info("Processing on %d thread%s", count, "" if count == 1 else "s")
        threads = [
            threading.Thread(
                target=self._worker_loop,
                args=(links, partitioner, retry),
                name=f"flatten-worker-{i}",
                daemon=True,
            )
            for i in range(count)
        ]
        for t in threads:
            t.start()
        return threads

    def _wait_for_workers(
        self,
        threads: list[threading.Thread],
        partitioner: WorkPartitioner,
    ) -> None:
        """Join every worker, entering DRAINING once no new link can start."""
        draining = False
        for t in threads:
            # Short joins keep the main thread responsive to Ctrl-C
            while t.is_alive():
                if not draining and (partitioner.exhausted or self.gate.is_cancelled()):
                    self._set_state(RunState.DRAINING)
                    draining = True
                t.join(timeout=_JOIN_POLL_INTERVAL)
        if not draining:
            self._set_state(RunState.DRAINING)

    def _worker_loop(
        self,
        links: tuple[str, ...],
        partitioner: WorkPartitioner,
        retry: RetryController,
    ) -> None:
        """Claim and flatten links until none remain or the run is cancelled."""
        total = len(links)
        while not self.gate.is_cancelled():
            index = partitioner.claim()
            if index is None:
                break
            path = links[index]
            logger.info("Resolving symlink (%d/%d) %s", index + 1, total, path)
            self._emit_start(index, total, path)

            try:
                result = retry.run(path)
            except Exception as exc:
                logger.exception("Unexpected error flattening %s", path)
                result = FlattenResult(path=path, status=FlattenStatus.FATAL, error=str(exc))

            self._record(index, total, result)
        logger.debug("%s exiting", threading.current_thread().name)

    def _record(self, index: int, total: int, result: FlattenResult) -> None:
        self.tracker.record_attempt()
        if result.ok:
            copied = self.tracker.record_bytes(result.bytes_copied)
            logger.info("Flattened symlink (%d/%d) %s", index + 1, total, result.path)
            logger.info("Total bytes copied %.4f MB", copied / ONE_MB)
        with self._lock:
            if result.ok:
                self._summary.succeeded += 1
            elif result.status == FlattenStatus.CANCELLED:
                self._summary.cancelled_items.append(result.path)
            else:
                self._summary.failures.append(result)

        snapshot = self.tracker.snapshot()
        if self.on_item_complete:
            try:
                self.on_item_complete(index, total, result, snapshot)
            except Exception:
                logger.exception("Exception in on_item_complete callback")

    def _emit_start(self, index: int, total: int, path: str) -> None:
        if self.on_item_start:
            try:
                self.on_item_start(index, total, path)
            except Exception:
                logger.exception("Exception in on_item_start callback")

    def _finish(self) -> RunSummary:
        snapshot = self.tracker.snapshot()
        summary = self._summary
        summary.processed = snapshot.items_attempted
        summary.bytes_copied = snapshot.bytes_copied
        summary.cancelled = self.gate.is_cancelled()
        self._set_state(RunState.DONE)

        if summary.processed:
            logger.info(
                "Done: %d/%d symlinks flattened, %.4f MB copied, %d failed%s",
                summary.succeeded,
                summary.found,
                summary.bytes_copied / ONE_MB,
                len(summary.failures),
                " (cancelled)" if summary.cancelled else "",
            )
        for failure in summary.failures:
            if failure.orphaned:
                logger.error(
                    "Data for %s was copied but not put in place; recover it from %s",
                    failure.path,
                    failure.temp_path,
                )
            else:
                logger.warning("Not flattened: %s (%s)", failure.path, failure.error)
        for path in summary.cancelled_items:
            logger.warning("Left as a symlink after cancellation: %s", path)
        return summary

"""Console progress bar for a flatten run."""

from __future__ import annotations

import logging
import threading
from pathlib import PureWindowsPath

from tqdm import tqdm

from flatten.transfer import FlattenResult, FlattenStatus
from flatten.utils.path_helpers import human_readable_size
from flatten.work import ProgressSnapshot

logger = logging.getLogger(__name__)


class ConsoleProgress:
    """tqdm bar showing links processed and bytes copied.

    Wire it into :class:`flatten.orchestrator.FlattenRun`::

        progress = ConsoleProgress(total=found)
        run.on_item_start = progress.on_item_start
        run.on_item_complete = progress.on_item_complete

    Callbacks arrive from worker threads; tqdm's own lock serialises the
    redraws, ``_lock`` guards the failure and cancel counts.
    """

    def __init__(self, total: int, disable: bool = False) -> None:
        """Create the bar for *total* links."""
        self._total = total
        self._failed = 0
        self._cancelled = 0
        self._lock = threading.Lock()
        self._bar = tqdm(total=total, desc="Flattening", unit="link", disable=disable)

    # ------------------------------------------------------------------
    # Callbacks (safe to call from worker threads)
    # ------------------------------------------------------------------

    def on_item_start(self, index: int, total: int, path: str) -> None:
        """Show the name of the link being resolved."""
        # PureWindowsPath splits on both separators
        self._bar.set_description_str(f"Flattening {PureWindowsPath(path).name}")

    def on_item_complete(
        self,
        index: int,
        total: int,
        result: FlattenResult,
        snapshot: ProgressSnapshot,
    ) -> None:
        """Advance the bar and refresh the byte, failure and cancel totals."""
        with self._lock:
            if result.status == FlattenStatus.FATAL:
                self._failed += 1
            elif result.status == FlattenStatus.CANCELLED:
                self._cancelled += 1
        postfix = {"copied": human_readable_size(snapshot.bytes_copied)}
        if self._failed:
            postfix["failed"] = str(self._failed)
        if self._cancelled:
            postfix["cancelled"] = str(self._cancelled)
        self._bar.set_postfix(postfix, refresh=False)
        self._bar.update(1)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def failed(self) -> int:
        return self._failed

    @property
    def cancelled(self) -> int:
        return self._cancelled

    def close(self) -> None:
        """Finish the bar."""
        self._bar.set_description_str("Flattening")
        self._bar.close()

    def __enter__(self) -> ConsoleProgress:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

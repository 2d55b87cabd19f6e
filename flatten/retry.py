"""Bounded retry around :meth:`LinkFlattener.flatten`.

Only transient network failures are retried.  Copies over a VPN drop out
when the tunnel reconnects; waiting a few seconds and trying again is
usually enough.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Callable

from flatten.transfer import FlattenResult, FlattenStatus
from flatten.work import CancellationGate

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 10.0  # seconds

FlattenFn = Callable[[str], FlattenResult]


class RetryController:
    """Runs one flatten call with up to *max_retries* retries.

    A :attr:`FlattenStatus.RETRYABLE` outcome waits *delay* seconds and
    tries again; any other outcome is returned as-is.  When the budget is
    spent the last failure is returned as :attr:`FlattenStatus.FATAL`.
    The gate is consulted before every wait and every retry, and the wait
    itself ends early if cancellation is requested.
    """

    def __init__(
        self,
        flatten: FlattenFn,
        gate: CancellationGate,
        max_retries: int = DEFAULT_MAX_RETRIES,
        delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if delay < 0:
            raise ValueError("delay must be >= 0")
        self._flatten = flatten
        self._gate = gate
        self.max_retries = max_retries
        self.delay = delay

    def run(self, path: str) -> FlattenResult:
        """Flatten *path*, retrying transient failures."""
        result = self._flatten(path)
        attempt = 0
        while result.status == FlattenStatus.RETRYABLE:
            if attempt >= self.max_retries:
                logger.error(
                    "Retries exceeded for %s after %d attempts: %s",
                    path,
                    attempt + 1,
                    result.error,
                )
                return dataclasses.replace(result, status=FlattenStatus.FATAL, attempts=attempt + 1)

            if self._gate.is_cancelled():
                return self._cancelled(result, attempt + 1)

            logger.warning(
                "Network error for %s: waiting %g seconds and trying again (%d/%d)",
                path,
                self.delay,
                attempt + 1,
                self.max_retries,
            )
            if self._gate.wait(self.delay):
                return self._cancelled(result, attempt + 1)

            attempt += 1
            result = self._flatten(path)

        return dataclasses.replace(result, attempts=attempt + 1)

    @staticmethod
    def _cancelled(result: FlattenResult, attempts: int) -> FlattenResult:
        logger.info("Retry of %s abandoned: cancelled", result.path)
        return dataclasses.replace(result, status=FlattenStatus.CANCELLED, attempts=attempts)

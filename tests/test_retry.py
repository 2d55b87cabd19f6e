"""Tests for flatten/retry.py — RetryController."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from flatten.retry import DEFAULT_MAX_RETRIES, DEFAULT_RETRY_DELAY, RetryController
from flatten.transfer import ErrorKind, FlattenResult, FlattenStatus
from flatten.work import CancellationGate


def _retryable(path: str = "C:\\A\\foo.txt") -> FlattenResult:
    return FlattenResult(
        path=path,
        status=FlattenStatus.RETRYABLE,
        error="The network path was not found",
        error_kind=ErrorKind.TRANSIENT_COPY,
    )


def _success(path: str = "C:\\A\\foo.txt") -> FlattenResult:
    return FlattenResult(path=path, status=FlattenStatus.SUCCESS, bytes_copied=10)


@pytest.fixture()
def gate() -> CancellationGate:
    return CancellationGate()


# ---------------------------------------------------------------------------
# Retry behaviour
# ---------------------------------------------------------------------------


class TestRetry:
    def test_defaults(self, gate: CancellationGate) -> None:
        rc = RetryController(MagicMock(), gate)
        assert rc.max_retries == DEFAULT_MAX_RETRIES == 3
        assert rc.delay == DEFAULT_RETRY_DELAY == 10.0

    def test_first_try_success(self, gate: CancellationGate) -> None:
        flatten = MagicMock(return_value=_success())
        result = RetryController(flatten, gate, delay=0).run("C:\\A\\foo.txt")
        assert result.ok
        assert result.attempts == 1
        flatten.assert_called_once_with("C:\\A\\foo.txt")

    def test_recovers_after_two_transient_failures(self, gate: CancellationGate) -> None:
        flatten = MagicMock(side_effect=[_retryable(), _retryable(), _success()])
        result = RetryController(flatten, gate, delay=0).run("C:\\A\\foo.txt")
        assert result.status == FlattenStatus.SUCCESS
        assert result.attempts == 3
        assert flatten.call_count == 3

    def test_exhausted_budget_is_fatal(self, gate: CancellationGate) -> None:
        flatten = MagicMock(return_value=_retryable())
        result = RetryController(flatten, gate, max_retries=3, delay=0).run("C:\\A\\foo.txt")
        assert result.status == FlattenStatus.FATAL
        assert result.error_kind == ErrorKind.TRANSIENT_COPY
        assert result.attempts == 4
        assert flatten.call_count == 4

    def test_zero_retries_means_single_attempt(self, gate: CancellationGate) -> None:
        flatten = MagicMock(return_value=_retryable())
        result = RetryController(flatten, gate, max_retries=0, delay=0).run("p")
        assert result.status == FlattenStatus.FATAL
        assert flatten.call_count == 1

    def test_fatal_not_retried(self, gate: CancellationGate) -> None:
        fatal = FlattenResult("p", FlattenStatus.FATAL, error="denied", error_kind=ErrorKind.FATAL_COPY)
        flatten = MagicMock(return_value=fatal)
        result = RetryController(flatten, gate, delay=0).run("p")
        assert result.status == FlattenStatus.FATAL
        flatten.assert_called_once()

    def test_waits_configured_delay(self) -> None:
        gate = MagicMock()
        gate.is_cancelled.return_value = False
        gate.wait.return_value = False
        flatten = MagicMock(side_effect=[_retryable(), _success()])
        RetryController(flatten, gate, delay=10.0).run("p")
        gate.wait.assert_called_once_with(10.0)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_cancelled_before_wait(self, gate: CancellationGate) -> None:
        gate.request_cancel()
        flatten = MagicMock(return_value=_retryable())
        result = RetryController(flatten, gate, delay=0).run("p")
        assert result.status == FlattenStatus.CANCELLED
        flatten.assert_called_once()

    def test_cancelled_during_wait(self) -> None:
        gate = MagicMock()
        gate.is_cancelled.return_value = False
        gate.wait.return_value = True
        flatten = MagicMock(return_value=_retryable())
        result = RetryController(flatten, gate, delay=10.0).run("p")
        assert result.status == FlattenStatus.CANCELLED
        flatten.assert_called_once()

    def test_cancel_does_not_affect_success(self, gate: CancellationGate) -> None:
        gate.request_cancel()
        result = RetryController(MagicMock(return_value=_success()), gate).run("p")
        assert result.ok


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


class TestValidation:
    def test_negative_retries_rejected(self, gate: CancellationGate) -> None:
        with pytest.raises(ValueError):
            RetryController(MagicMock(), gate, max_retries=-1)

    def test_negative_delay_rejected(self, gate: CancellationGate) -> None:
        with pytest.raises(ValueError):
            RetryController(MagicMock(), gate, delay=-0.5)

"""Unit tests for the outcome-based retry loop."""

from chunked_transfer.application.configuration import RetryPolicy
from chunked_transfer.application.exceptions import (
    ErrorKind,
    PermanentTransferError,
    TransientTransferError,
)
from chunked_transfer.application.retries import attempt, run_with_retries

NO_WAIT = RetryPolicy(max_retries=2, backoff_multiplier=0, backoff_min=0, backoff_max=0)


class FlakyOperation:
    """Fails transiently a fixed number of times, then returns its argument."""

    def __init__(self, failures: int):
        self.failures = failures
        self.calls = 0

    async def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise TransientTransferError("connection reset")
        return value


async def test_attempt_captures_transfer_errors():
    async def denied():
        raise PermanentTransferError("PermissionDenied")

    outcome = await attempt(denied)

    assert not outcome.ok
    assert outcome.kind is ErrorKind.PERMANENT
    assert not outcome.retryable


async def test_transient_failures_are_repeated_until_success():
    operation = FlakyOperation(failures=2)

    outcome = await run_with_retries(
        operation, "payload", policy=NO_WAIT, description="test operation"
    )

    assert outcome.ok
    assert outcome.value == "payload"
    assert operation.calls == 3


async def test_last_transient_outcome_is_returned_when_attempts_run_out():
    operation = FlakyOperation(failures=10)

    outcome = await run_with_retries(
        operation, "payload", policy=NO_WAIT, description="test operation"
    )

    assert not outcome.ok
    assert outcome.retryable
    assert isinstance(outcome.error, TransientTransferError)
    assert operation.calls == NO_WAIT.attempts


async def test_permanent_failure_is_not_repeated():
    calls = []

    async def denied(value):
        calls.append(value)
        raise PermanentTransferError("PermissionDenied")

    outcome = await run_with_retries(
        denied, "payload", policy=NO_WAIT, description="test operation"
    )

    assert outcome.kind is ErrorKind.PERMANENT
    assert calls == ["payload"]

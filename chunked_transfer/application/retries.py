"""
Retry loop for part uploads and range fetches.

A single attempt never raises for a classified failure; it returns an
AttemptOutcome carrying either the value or the error. The tenacity loop
repeats only outcomes whose error kind is TRANSIENT and hands back the last
outcome when the attempts run out.
"""

import dataclasses
import logging
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from .configuration import RetryPolicy
from .exceptions import ErrorKind, TransferError

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class AttemptOutcome:
    """The result of one attempt: a value, or the error that stopped it."""

    value: Any = None
    error: Optional[TransferError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return None if self.error is None else self.error.kind

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


async def attempt(operation: Callable[..., Awaitable[Any]], *args) -> AttemptOutcome:
    """Run one attempt of an operation and capture its outcome."""
    try:
        return AttemptOutcome(value=await operation(*args))
    except TransferError as e:
        return AttemptOutcome(error=e)


def _is_retryable(outcome: AttemptOutcome) -> bool:
    return outcome.retryable


def _last_outcome(retry_state) -> AttemptOutcome:
    return retry_state.outcome.result()


def _log_before_retry(description: str):
    def log(retry_state):
        outcome = retry_state.outcome.result()
        next_attempt_in = retry_state.next_action.sleep
        logger.warning(
            f"Retrying {description} in {next_attempt_in:.2f}s due to "
            f"{type(outcome.error).__name__}: {outcome.error} "
            f"(attempt {retry_state.attempt_number})..."
        )
    return log


async def run_with_retries(
    operation: Callable[..., Awaitable[Any]],
    *args,
    policy: RetryPolicy,
    description: str,
) -> AttemptOutcome:
    """
    Repeat an operation while it fails transiently.

    Each attempt runs through `attempt`, so the loop only ever sees
    AttemptOutcome values.

    Args:
        operation: A coroutine function performing one attempt.
        *args: Positional arguments passed to every attempt.
        policy: Attempt count and backoff.
        description: Human-readable name used in retry log messages.

    Returns:
        The first successful or non-retryable outcome, or the last
        transient outcome once every attempt has been used.
    """

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(
            multiplier=policy.backoff_multiplier,
            min=policy.backoff_min,
            max=policy.backoff_max,
        ),
        retry=retry_if_result(_is_retryable),
        before_sleep=_log_before_retry(description),
        retry_error_callback=_last_outcome,
    )
    return await retrying(attempt, operation, *args)

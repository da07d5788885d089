"""
Infrastructure-specific decorators, providing cross-cutting concerns like
retry logic for idempotent metadata calls.
"""

import functools
import logging

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..application.configuration import RetryPolicy
from ..application.exceptions import TransientTransferError

logger = logging.getLogger(__name__)


def _log_before_retry(name: str):
    def log(retry_state):
        """Log the retry attempt with details about the exception and wait time."""
        exception = retry_state.outcome.exception()
        next_attempt_in = retry_state.next_action.sleep
        logger.warning(
            f"Retrying {name} in {next_attempt_in:.2f}s due to "
            f"{type(exception).__name__} (attempt {retry_state.attempt_number})..."
        )
    return log


def build_retrying(policy: RetryPolicy, name: str) -> AsyncRetrying:
    return AsyncRetrying(
        stop=stop_after_attempt(policy.attempts),
        wait=wait_exponential(
            multiplier=policy.backoff_multiplier,
            min=policy.backoff_min,
            max=policy.backoff_max,
        ),
        retry=retry_if_exception_type(TransientTransferError),
        before_sleep=_log_before_retry(name),
        reraise=True,
    )


def retry_on_transient_error(method):
    """
    Retry an async client method on TransientTransferError.

    The retry count and backoff come from the instance's `retry_policy`, so
    the decorator follows the configuration the client was built with. Only
    apply it to calls that are safe to repeat.
    """

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        async for attempt in build_retrying(self.retry_policy, method.__name__):
            with attempt:
                return await method(self, *args, **kwargs)

    return wrapper

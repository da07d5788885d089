"""Base class for async HTTP clients and the mapping of HTTP failures."""

import logging
from typing import Optional, Tuple

import httpx
import pydantic

from ..application.exceptions import (
    ConfigurationError,
    LocationExpiredError,
    PermanentTransferError,
    StateError,
    TransferError,
    TransientTransferError,
)

from .api_models import ApiErrorResponse

_STATE_ERROR_TYPES = {"InvalidState"}
_EXPIRED_ERROR_TYPES = {"ExpiredToken", "ExpiredUrl"}
_STATE_STATUS_CODES = {409, 422}


class BaseClient:
    """A base client that handles an async client and token configuration."""

    def __init__(self, client: httpx.AsyncClient, token: str):
        """
        Initializes the base client.

        Args:
            client: An instance of httpx.AsyncClient.
            token: An authentication token.

        Raises:
            ConfigurationError: If the token is missing or appears to be
                                a placeholder.
        """

        if not token or "YOUR_" in token.upper():
            raise ConfigurationError(
                f"Authentication token for {self.__class__.__name__} is missing "
                f"or is a placeholder. Please check your config files."
            )

        self.client = client
        self.token = token
        self.logger = logging.getLogger(self.__class__.__name__)


def _error_detail(response: httpx.Response) -> Tuple[Optional[str], str]:
    """Extract the error type and message from a failed response."""
    try:
        envelope = ApiErrorResponse.model_validate_json(response.content)
    except pydantic.ValidationError:
        return None, response.text[:200] or response.reason_phrase
    return envelope.error.type, envelope.error.message


def error_for_response(
    response: httpx.Response,
    object_id: Optional[str] = None,
    part_index: Optional[int] = None,
    byte_range: Optional[str] = None,
) -> TransferError:
    """
    Translate a non-2xx response into the matching transfer error.

    InvalidState errors and 409/422 are lifecycle violations, 410 and
    expired-token errors mean a location must be re-resolved, 429 and 5xx
    are worth retrying, and everything else is permanent.
    """

    error_type, message = _error_detail(response)
    status = response.status_code
    text = f"HTTP {status}"
    if error_type:
        text += f" {error_type}"
    if message:
        text += f": {message}"
    context = dict(object_id=object_id, part_index=part_index, byte_range=byte_range)

    if error_type in _STATE_ERROR_TYPES or status in _STATE_STATUS_CODES:
        return StateError(text, **context)
    if error_type in _EXPIRED_ERROR_TYPES or status == 410:
        return LocationExpiredError(text, **context)
    if status == 429 or status >= 500:
        return TransientTransferError(text, **context)
    return PermanentTransferError(text, **context)


def error_for_exception(
    error: httpx.HTTPError,
    object_id: Optional[str] = None,
    part_index: Optional[int] = None,
    byte_range: Optional[str] = None,
) -> TransferError:
    """Translate an httpx network or timeout failure into a transient error."""
    return TransientTransferError(
        f"{type(error).__name__}: {error}",
        object_id=object_id,
        part_index=part_index,
        byte_range=byte_range,
    )

"""
Immutable transfer settings supplied by the caller as an explicit value.
"""

import dataclasses
from typing import Any, Mapping, Optional

from .exceptions import ValidationError

MiB = 1024 * 1024

DEFAULT_CHUNK_SIZE = 16 * MiB
DEFAULT_MAX_CONCURRENCY = 4


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    """Retry count and exponential backoff for a single part or range."""

    max_retries: int = 3
    backoff_multiplier: float = 1.0
    backoff_min: float = 1.0
    backoff_max: float = 10.0

    def __post_init__(self):
        if self.max_retries < 0:
            raise ValidationError(
                f"max_retries must be >= 0, got {self.max_retries}"
            )
        if self.backoff_multiplier < 0 or self.backoff_min < 0:
            raise ValidationError("Backoff values must not be negative")
        if self.backoff_max < self.backoff_min:
            raise ValidationError(
                f"backoff_max ({self.backoff_max}) must be >= "
                f"backoff_min ({self.backoff_min})"
            )

    @property
    def attempts(self) -> int:
        return self.max_retries + 1


@dataclasses.dataclass(frozen=True)
class TransferConfiguration:
    """
    Settings for one transfer engine.

    Instances are validated on construction, so a TransferConfiguration that
    exists is always usable. The download range size defaults to the upload
    chunk size.
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    retry: RetryPolicy = dataclasses.field(default_factory=RetryPolicy)
    request_timeout: float = 60.0
    download_chunk_size: Optional[int] = None
    close_poll_interval: float = 2.0
    close_poll_max_interval: float = 30.0
    close_timeout: float = 600.0

    def __post_init__(self):
        if not isinstance(self.chunk_size, int) or self.chunk_size <= 0:
            raise ValidationError(
                f"chunk_size must be a positive integer, got {self.chunk_size!r}"
            )
        if self.max_concurrency < 1:
            raise ValidationError(
                f"max_concurrency must be >= 1, got {self.max_concurrency}"
            )
        if self.download_chunk_size is not None and self.download_chunk_size <= 0:
            raise ValidationError(
                "download_chunk_size must be positive, "
                f"got {self.download_chunk_size}"
            )
        if self.request_timeout <= 0 or self.close_timeout <= 0:
            raise ValidationError("Timeouts must be positive")
        if self.close_poll_interval < 0:
            raise ValidationError("close_poll_interval must not be negative")
        if self.close_poll_max_interval < self.close_poll_interval:
            raise ValidationError(
                "close_poll_max_interval must be >= close_poll_interval"
            )

    @property
    def range_size(self) -> int:
        """Maximum number of bytes requested by one range fetch."""
        return self.download_chunk_size or self.chunk_size

    @classmethod
    def from_settings(
        cls, settings: Optional[Mapping[str, Any]] = None, **overrides
    ) -> "TransferConfiguration":
        """
        Build a configuration from a settings mapping.

        Args:
            settings: The `transfer` section of the application settings.
                Unknown keys are ignored.
            **overrides: Explicit values (e.g. from the command line) that
                take precedence over the settings. None values are skipped.

        Returns:
            A validated TransferConfiguration.

        Raises:
            ValidationError: If any value is out of range.
        """

        values = {key.lower(): value for key, value in dict(settings or {}).items()}
        values.update({k: v for k, v in overrides.items() if v is not None})

        retry_values = values.pop("retry", None) or {}
        retry = RetryPolicy(**{
            key.lower(): value
            for key, value in dict(retry_values).items()
            if key.lower() in _field_names(RetryPolicy)
        })

        fields = {
            key: value
            for key, value in values.items()
            if key in _field_names(cls)
        }
        return cls(retry=retry, **fields)


def _field_names(datacls) -> set:
    return {field.name for field in dataclasses.fields(datacls)}

"""Error taxonomy for bucket watch nodes."""

from typing import Optional


class BucketWatchError(Exception):
    """Base exception for the package.

    ``trigger`` holds the message that started the failing operation, if any,
    so the host can correlate the error with its input.
    """

    def __init__(self, message: str, trigger: Optional[dict] = None) -> None:
        super().__init__(message)
        self.trigger = trigger


class ConfigurationError(BucketWatchError, ValueError):
    """Raised when a required setting (region, bucket, filename) is missing."""


class ResolutionError(BucketWatchError):
    """Raised when a parameter source lookup itself fails."""

    def __init__(self, source: str, key: str, reason: str) -> None:
        super().__init__(
            f"Failed to get value for type: {source}, value: {key}. Error: {reason}"
        )
        self.source = source
        self.key = key


class ListingError(BucketWatchError):
    """Raised when a paginated bucket listing cannot be completed."""


class TransferError(BucketWatchError):
    """Raised when a get, put or presign call fails."""

"""Exception types raised by the rename pipeline."""

from __future__ import annotations


class RenamerError(RuntimeError):
    """Base class for pipeline errors."""


class ConfigError(RenamerError):
    """Raised when the configuration file cannot be loaded or is invalid."""


class ProviderError(RenamerError):
    """Raised when the AI provider fails to produce a usable answer."""


class ProviderUnavailableError(ProviderError):
    """The provider could not be reached (connection refused, timeout)."""


class ProviderContentError(ProviderError):
    """The provider answered, but the payload was empty or malformed."""


class ItemProcessingError(RenamerError):
    """Raised when a single file cannot be categorized or named."""

    def __init__(self, file_path: str, stage: str, cause: BaseException) -> None:
        super().__init__(f"{stage} failed for {file_path}: {cause}")
        self.file_path = file_path
        self.stage = stage
        self.cause = cause


class QueueStoreError(RenamerError):
    """Raised when the durable queue cannot be read or written."""


class FeedbackError(RenamerError):
    """Raised when user feedback cannot be attached to a suggestion."""


class ExecutorError(RenamerError):
    """Raised when a rename or move cannot be applied on disk."""


class BatchInProgressError(RenamerError):
    """Raised when a batch is started while another one is still running."""


__all__ = [
    "BatchInProgressError",
    "ConfigError",
    "ExecutorError",
    "FeedbackError",
    "ItemProcessingError",
    "ProviderContentError",
    "ProviderError",
    "ProviderUnavailableError",
    "QueueStoreError",
    "RenamerError",
]

"""Harvest exception hierarchy.

This module defines traceable domain errors with clear boundaries.
Each subsystem raises a specific error type for debuggability.
"""

from __future__ import annotations


class HarvestError(Exception):
    """Base exception for all harvest failures."""


class HarvestConfigError(HarvestError):
    """Raised for invalid runtime configuration."""


class HarvestRunSpecError(HarvestError):
    """Raised for invalid or unsupported harvest spec files."""


class HarvestConnectionError(HarvestError):
    """Raised when a transport session cannot be established or verified."""


class HarvestPathMismatchError(HarvestConnectionError):
    """Raised when the remote working directory differs from the configured path."""


class HarvestEntryError(HarvestError):
    """Base class for failures tied to one remote entry."""

    def __init__(self, entry_name: str, message: str) -> None:
        super().__init__(message)
        self.entry_name = entry_name


class HarvestFetchError(HarvestEntryError):
    """Raised when a single entry cannot be retrieved."""


class HarvestDecompressError(HarvestEntryError):
    """Raised when gzip or archive extraction fails for an entry."""


class HarvestStreamError(HarvestError):
    """Raised when a local artifact cannot be streamed line by line."""


class HarvestReadError(HarvestError):
    """Base class for logical read failures.

    ``reason`` is the short code reported in read outcomes and tallies.
    """

    def __init__(self, message: str, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class HarvestTransientOverloadError(HarvestReadError):
    """Raised when the server signals overload for one read attempt."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message, reason=f"http_{status_code}")
        self.status_code = status_code


class HarvestRetryExhaustedError(HarvestReadError):
    """Raised when a read keeps failing with overload past the attempt cap."""

    def __init__(self, attempts: int, message: str, reason: str | None = None) -> None:
        super().__init__(message, reason=reason)
        self.attempts = attempts


class HarvestNotFoundError(HarvestReadError):
    """Raised when the read target does not exist."""


class HarvestStoreError(HarvestError):
    """Raised for document store request failures."""


class HarvestBulkWriteError(HarvestStoreError):
    """Raised after a bulk save in which at least one chunk request failed.

    ``outcome`` holds the tally of the chunks that did complete.
    """

    def __init__(self, message: str, failed_chunks: int, outcome: object) -> None:
        super().__init__(message)
        self.failed_chunks = failed_chunks
        self.outcome = outcome

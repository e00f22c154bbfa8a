"""Exception types shared across the support desk package."""

from __future__ import annotations


class HelpdeskError(Exception):
    """Base class for errors raised by the support desk."""


class ConfigurationError(HelpdeskError, ValueError):
    """Invalid settings, chunk sizes or a missing API key."""


class DimensionMismatchError(HelpdeskError, ValueError):
    """An embedding does not match the dimensionality of the index."""

    def __init__(self, expected: int, actual: int) -> None:
        super().__init__(f"Embedding dimension mismatch: expected {expected}, got {actual}")
        self.expected = expected
        self.actual = actual


class PersistenceError(HelpdeskError):
    """A snapshot could not be written."""


class UpstreamError(HelpdeskError):
    """The embedding or chat model endpoint failed."""


class IngestError(HelpdeskError):
    """Vectorising a batch of knowledge items failed; nothing was stored."""


class ExtractionError(HelpdeskError, ValueError):
    """An uploaded document could not be read as text."""

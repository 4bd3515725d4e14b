"""Exception types raised by the resource cache engine."""

from __future__ import annotations


class BundleCacheError(Exception):
    """Base class for bundlecache errors."""


class PackageMetadataError(BundleCacheError):
    """Raised when the application package metadata cannot be read."""


class ArchiveError(BundleCacheError, OSError):
    """Raised when an archive cannot be opened or read.

    Subclasses OSError so that extraction treats a corrupt archive the
    same way as any other I/O failure.
    """


class ExtractionError(BundleCacheError):
    """Raised when an extraction pass fails on an I/O error.

    Attributes:
        key: Resource key being copied when the failure happened
        source: Label of the pass ("override" or "baseline")
    """

    def __init__(self, message: str, *, key: str | None = None, source: str | None = None):
        self.key = key
        self.source = source
        super().__init__(message)


class ExtractionCancelled(BundleCacheError):
    """Raised inside the background unit when cancellation was requested."""

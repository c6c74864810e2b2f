# listing_sync/errors.py
"""Exceptions raised by the sync engine and its collaborators."""


class SyncError(Exception):
    """Base class for sync failures."""


class SyncConflictError(SyncError):
    """Another cycle for the same pipeline is already in progress."""


class IncompleteImportError(SyncError):
    def __init__(self, count: int, minimum: int):
        self.count = count
        self.minimum = minimum
        super().__init__(
            f"Initial import seems incomplete: only {count} listings (expected at least {minimum})"
        )


class FeedError(SyncError):
    """The upstream listing feed returned an error response."""


class AnalyticsImportError(SyncError):
    """A historical CSV import had nothing usable to import."""

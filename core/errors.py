"""Exception hierarchy for the reconciliation engine."""


class ReconciliationError(Exception):
    """Base class for all reconciliation errors."""


class StorageError(ReconciliationError):
    """A storage call failed for a reason other than a missing blob."""


class ListingError(StorageError):
    """Listing a prefix failed. Callers treat the prefix as empty."""

    def __init__(self, prefix, message=""):
        self.prefix = prefix
        super().__init__(f"Failed to list {prefix}: {message}" if message else f"Failed to list {prefix}")


class ProbeError(ReconciliationError):
    """An existence probe came back negative."""


class BlobNotFound(ProbeError):
    """The requested blob does not exist in storage."""

    def __init__(self, path):
        self.path = path
        super().__init__(f"Blob not found: {path}")


class DatabaseError(ReconciliationError):
    """A database read or write failed."""


class PartialDeleteError(ReconciliationError):
    """One item of a bulk delete could not be removed."""

    def __init__(self, kind, item, cause):
        self.kind = kind
        self.item = item
        self.cause = cause
        super().__init__(f"Failed to delete {kind} {item}: {cause}")


class RunCancelled(ReconciliationError):
    """The run was cancelled or its deadline passed."""

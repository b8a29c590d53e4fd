"""Error types raised by the reconciliation engine.

Every error carries a stable ``kind`` string so that per-repository and
per-remote failures can be attached to results and reported without
holding on to exception objects.
"""

from typing import Optional


class AtlasError(Exception):
    """Base class for all gitatlas errors."""

    kind: str = "AtlasError"

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"{self.kind}: {self.message} ({self.path})"
        return f"{self.kind}: {self.message}"


# Local extraction

class ExtractionError(AtlasError):
    """Base class for failures reading a local repository."""
    kind = "ExtractionError"


class NotARepository(ExtractionError):
    kind = "NotARepository"


class CorruptRepository(ExtractionError):
    kind = "CorruptRepository"


class PermissionDenied(ExtractionError):
    kind = "PermissionDenied"


class EmptyRepository(ExtractionError):
    """Repository has no commits, so no identity can be derived."""
    kind = "EmptyRepository"


# Remote fetch

class FetchError(AtlasError):
    """Base class for a failed fetch of a single remote."""
    kind = "FetchError"
    # Whether another attempt may succeed
    transient: bool = False


class Unreachable(FetchError):
    kind = "Unreachable"

    def __init__(self, message: str, path: Optional[str] = None, transient: bool = True):
        super().__init__(message, path)
        self.transient = transient


class AuthRequired(FetchError):
    kind = "AuthRequired"
    transient = False


class FetchTimeout(FetchError):
    kind = "Timeout"
    transient = True


# Snapshot store

class StoreError(AtlasError):
    kind = "StoreError"


class StaleWrite(StoreError):
    """A snapshot older than (or as old as) the stored latest was written."""
    kind = "StaleWrite"


class CorruptSnapshot(StoreError):
    """A stored snapshot file cannot be parsed; readers skip it."""
    kind = "CorruptSnapshot"


class StoreUnavailable(StoreError):
    """The persistence layer cannot be used; fatal to a scan cycle."""
    kind = "StoreUnavailable"


class ScanCancelled(AtlasError):
    kind = "Cancelled"

    def __init__(self, message: str = "Scan cancelled", path: Optional[str] = None):
        super().__init__(message, path)

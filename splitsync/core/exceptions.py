"""Error taxonomy for the ledger engine.

None of these are fatal to the process. Per-record faults are isolated to
the record, stream faults freeze the affected slice.
"""
from typing import Optional


class SplitSyncError(Exception):
    """Base class for all ledger engine errors."""
    pass


class NotFound(SplitSyncError):
    """A profile or document is absent from the store."""

    def __init__(self, collection: str, document_id: str):
        self.collection = collection
        self.document_id = document_id
        super().__init__(f"{collection}/{document_id} not found")


class Forbidden(SplitSyncError):
    """A write was refused because the caller does not own the document."""

    def __init__(self, collection: str, document_id: str, user_id: Optional[str] = None):
        self.collection = collection
        self.document_id = document_id
        self.user_id = user_id
        super().__init__(f"{user_id or 'caller'} may not modify {collection}/{document_id}")


class MalformedRecord(SplitSyncError):
    """A stored record violates a data-integrity rule and is excluded."""

    def __init__(self, record_id: Optional[str], reason: str):
        self.record_id = record_id
        self.reason = reason
        super().__init__(f"Malformed record {record_id or '<no id>'}: {reason}")


class StreamError(SplitSyncError):
    """A subscription delivered an error instead of a snapshot."""

    def __init__(self, source: str, cause: BaseException):
        self.source = source
        self.cause = cause
        super().__init__(f"Stream {source} failed: {cause!r}")


class InvalidSettlement(SplitSyncError):
    """A settlement intent failed validation; nothing was written."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class NoIdentity(SplitSyncError):
    """A write was attempted while no identity is signed in."""
    pass

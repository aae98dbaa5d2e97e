"""
Error types raised by the syncer.

Every failure the engine knows how to surface derives from ``SyncError`` so
the CLI can report it uniformly. ``MapError`` subclasses are the failures
that can happen while a revision is being replayed and are always recorded
as a failed run in the sync history.
"""


class SyncError(Exception):
    """Base class for all syncer errors."""


class CorruptHistoryError(SyncError):
    """The sync history violates its ordering or contiguity invariants."""


class SourceUnavailableError(SyncError):
    """The Subversion source could not be read."""


class MapError(SyncError):
    """A revision could not be turned into a destination commit."""

    def __init__(self, message: str, revision_id: int | None = None):
        super().__init__(message)
        self.revision_id = revision_id


class PathConflictError(MapError):
    """A change does not fit the current destination tree."""

    def __init__(self, message: str, path: str, revision_id: int | None = None):
        super().__init__(message, revision_id)
        self.path = path


class SinkUnavailableError(MapError):
    """The destination repository cannot accept the write."""


class HistoryError(SyncError):
    """An operation on the sync history failed."""


class RecordNotFoundError(HistoryError):
    """No sync record carries the requested id."""

    def __init__(self, record_id: int):
        super().__init__(f"No sync record with id {record_id}")
        self.record_id = record_id

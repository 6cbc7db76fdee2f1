"""Exception types raised by tablemirror."""


class TableMirrorError(Exception):
    """Base error for all tablemirror errors."""


class RemoteTransportError(TableMirrorError):
    """A count, fetch, mutation or subscription call to the backend failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class BackupInvariantError(TableMirrorError):
    """release() was called for an identity that has no active backup."""


class MalformedRowError(TableMirrorError, ValueError):
    """A row or change payload does not fit the table schema."""


class SyncStateError(TableMirrorError):
    """An operation was attempted in the wrong TableSync state."""

"""tablemirror - client-side mirrors of remote tables.

Keeps an ordered in-memory copy of a remote table current from push events
and from local, optionally optimistic, writes.
"""

from .backend import ChangeEvent, ChangeKind, MockBackend, Prefilter, RestBackend
from .errors import (
    BackupInvariantError,
    MalformedRowError,
    RemoteTransportError,
    SyncStateError,
    TableMirrorError,
)
from .rows import Condition, ConditionSet, Operator, TableRow, TableSchema, generate_id
from .sync import TableConfig, TableSync, UpdateResult

__version__ = "0.1.0"

__all__ = [
    "ChangeEvent",
    "ChangeKind",
    "MockBackend",
    "Prefilter",
    "RestBackend",
    "BackupInvariantError",
    "MalformedRowError",
    "RemoteTransportError",
    "SyncStateError",
    "TableMirrorError",
    "Condition",
    "ConditionSet",
    "Operator",
    "TableRow",
    "TableSchema",
    "generate_id",
    "TableConfig",
    "TableSync",
    "UpdateResult",
]

"""Table mirroring: initial load, push ingestion and optimistic writes.

TableSync keeps a RowCache consistent with a remote table, using
PageFetcher for the initial load and PessimisticWriteLog to roll back
optimistic writes the backend refuses.
"""

from .backup_log import BackupEntry, PessimisticWriteLog
from .page_fetcher import DEFAULT_PAGE_SIZE, PageFetcher
from .table_sync import SyncState, TableConfig, TableSync, UpdateResult

__all__ = [
    "BackupEntry",
    "PessimisticWriteLog",
    "DEFAULT_PAGE_SIZE",
    "PageFetcher",
    "SyncState",
    "TableConfig",
    "TableSync",
    "UpdateResult",
]

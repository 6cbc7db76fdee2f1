"""Client-side row cache."""

from .row_cache import RowCache, SnapshotCallback

__all__ = ["RowCache", "SnapshotCallback"]

"""Ordered in-memory row cache with a reactive snapshot view."""

import logging
from collections import deque
from typing import Any, Callable, Mapping

from ..rows import TableRow, TableSchema

logger = logging.getLogger(__name__)

SnapshotCallback = Callable[[list[TableRow]], None]


class RowCache:
    """Identity-keyed, insertion-ordered map of rows.

    Every mutation synchronously pushes a fresh list of rows to each
    subscriber, in the order the mutations were applied. Mutations made by a
    subscriber are queued until every subscriber has seen the current one.
    New subscribers receive the current snapshot immediately, like a
    readable store.
    """

    def __init__(self, schema: TableSchema):
        """Initialize an empty cache.

        Args:
            schema: Key schema used to derive identities for plain mappings.
        """
        self.schema = schema
        self._rows: dict[str, TableRow] = {}
        self._subscribers: list[SnapshotCallback] = []
        self._pending: deque[list[TableRow]] = deque()
        self._notifying = False

    def _to_row(self, row: "TableRow | Mapping[str, Any]") -> TableRow:
        return self.schema.row(row)

    def _identity_of(self, ref: "str | TableRow | Mapping[str, Any]") -> str:
        if isinstance(ref, str):
            return ref
        if isinstance(ref, TableRow):
            return ref.id
        return self.schema.identity(ref)

    def upsert(self, row: "TableRow | Mapping[str, Any]") -> TableRow:
        """Insert or replace a row.

        New identities are appended; existing ones keep their position.

        Returns:
            The stored TableRow.
        """
        table_row = self._to_row(row)
        # dict assignment keeps the original slot for an existing key
        self._rows[table_row.id] = table_row
        self._notify()
        return table_row

    def delete(self, ref: "str | TableRow | Mapping[str, Any]") -> bool:
        """Remove a row by identity, row or key mapping.

        Returns:
            True if a row was removed, False if it was not cached.
        """
        identity = self._identity_of(ref)
        if self._rows.pop(identity, None) is None:
            return False
        self._notify()
        return True

    def get(self, identity: str) -> TableRow | None:
        return self._rows.get(identity)

    def get_by_keys(self, keys: Mapping[str, Any]) -> TableRow | None:
        """Look up a row from a mapping holding its primary-key fields."""
        return self._rows.get(self.schema.identity(keys))

    def get_first(self) -> TableRow | None:
        """Return the oldest surviving row, or None if the cache is empty."""
        return next(iter(self._rows.values()), None)

    def snapshot(self) -> list[TableRow]:
        return list(self._rows.values())

    def clear(self) -> None:
        if not self._rows:
            return
        self._rows.clear()
        self._notify()

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Register a snapshot listener.

        Args:
            callback: Called with the full ordered list of rows.

        Returns:
            A function that removes the listener. Calling it twice is harmless.
        """
        self._subscribers.append(callback)
        self._deliver(callback, self.snapshot())

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        if not self._subscribers:
            return
        self._pending.append(self.snapshot())
        if self._notifying:
            # Mutation from inside a callback; delivered after the current round
            return

        self._notifying = True
        try:
            while self._pending:
                rows = self._pending.popleft()
                for callback in list(self._subscribers):
                    # Each subscriber gets its own list
                    self._deliver(callback, list(rows))
        finally:
            self._pending.clear()
            self._notifying = False

    def _deliver(self, callback: SnapshotCallback, rows: list[TableRow]) -> None:
        try:
            callback(rows)
        except Exception:
            logger.exception(f"Snapshot subscriber {callback!r} failed")

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, identity: object) -> bool:
        return identity in self._rows

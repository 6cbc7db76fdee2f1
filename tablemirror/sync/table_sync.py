"""Client-side mirror of one remote table.

TableSync loads the table once, then keeps its RowCache current from two
directions: push events from the backend's change channel, and local
insert/update/delete calls. In optimistic mode local writes show up in the
cache before the backend confirms them and are rolled back if it refuses.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Mapping

from ..backend.base import (
    ChangeEvent,
    ChangeKind,
    ChannelSpec,
    Prefilter,
    RemoteBackend,
    ScopedQuery,
    Subscription,
    is_success,
)
from ..cache import RowCache, SnapshotCallback
from ..errors import MalformedRowError, RemoteTransportError, SyncStateError
from ..rows import Condition, ConditionSet, TableRow, TableSchema
from .backup_log import PessimisticWriteLog
from .page_fetcher import DEFAULT_PAGE_SIZE, PageFetcher

logger = logging.getLogger(__name__)


class SyncState(Enum):
    """Lifecycle of a TableSync."""

    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    LIVE = "live"
    CLOSED = "closed"


@dataclass(frozen=True)
class TableConfig:
    """Immutable per-table settings, fixed before init()."""

    schema: TableSchema
    conditions: ConditionSet = field(default_factory=ConditionSet)
    prefilter: Prefilter | None = None
    optimistic: bool = False
    page_size: int = DEFAULT_PAGE_SIZE

    def filter(self, condition: Condition) -> "TableConfig":
        """Return a copy with ``condition`` added to the relevance filter."""
        return replace(self, conditions=self.conditions.add(condition))

    @property
    def query(self) -> ScopedQuery:
        return ScopedQuery(
            table=self.schema.name,
            schema=self.schema.schema,
            conditions=self.conditions,
            prefilter=self.prefilter,
        )

    @property
    def channel_spec(self) -> ChannelSpec:
        return ChannelSpec(
            table=self.schema.name,
            schema=self.schema.schema,
            prefilter=self.prefilter,
        )


@dataclass
class UpdateResult:
    """Outcome of TableSync.update()."""

    invoke_time: datetime
    status: bool


class TableSync:
    """Keeps a RowCache in step with a remote table."""

    def __init__(self, backend: RemoteBackend, config: TableConfig):
        """Initialize the mirror. Nothing is fetched until init().

        Args:
            backend: Remote store and change channel.
            config: Table schema, relevance filter and write mode.
        """
        self.backend = backend
        self.config = config
        self.cache = RowCache(config.schema)
        self.backup_log = PessimisticWriteLog()
        self._fetcher = PageFetcher(backend, config.page_size)
        self._subscription: Subscription | None = None
        self._state = SyncState.UNINITIALIZED

    # Lifecycle

    @property
    def state(self) -> SyncState:
        return self._state

    def filter(self, condition: Condition) -> "TableSync":
        """Return a new, uninitialized TableSync with an extra condition.

        Raises:
            SyncStateError: If this table has already been initialized.
        """
        if self._state != SyncState.UNINITIALIZED:
            raise SyncStateError(
                f"Cannot add conditions to {self.full_name} in state {self._state.value}"
            )
        return TableSync(self.backend, self.config.filter(condition))

    async def load(self) -> int:
        """Run the initial paginated load without subscribing.

        The table stays in LOADING until init() subscribes or close() is
        called.

        Returns:
            Number of rows fetched.
        """
        if self._state != SyncState.UNINITIALIZED:
            raise SyncStateError(f"{self.full_name} already initialized ({self._state.value})")

        self._state = SyncState.LOADING
        logger.info(f"Loading {self.full_name}")
        return await self._fetcher.load(self.config.query, self.ingest)

    async def init(self) -> "TableSync":
        """Load the table and start listening for push events.

        Returns:
            self, once the initial load is done and the subscription is live.
        """
        await self.load()

        try:
            self._subscription = await self.backend.subscribe(
                self.config.channel_spec, self.handle_event
            )
        except BaseException:
            # Back to a clean slate so init() can be retried
            logger.warning(f"Subscribing to {self.full_name} failed, resetting")
            self.cache.clear()
            self._state = SyncState.UNINITIALIZED
            raise
        self._state = SyncState.LIVE
        logger.info(f"{self.full_name} live with {len(self.cache)} rows")
        return self

    async def close(self) -> None:
        """Stop listening for push events."""
        if self._state == SyncState.CLOSED:
            return
        if self._subscription is not None:
            await self._subscription.unsubscribe()
            self._subscription = None
        self._state = SyncState.CLOSED
        logger.info(f"Closed {self.full_name}")

    async def __aenter__(self) -> "TableSync":
        return await self.init()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # Incoming changes

    def handle_event(self, event: ChangeEvent) -> None:
        """Apply a push event to the cache.

        Rows that no longer match the conditions are evicted whatever the
        event kind. Inserts and updates carrying a timestamp are dropped
        while a local mutation on the same row is in flight.
        """
        if self._state == SyncState.CLOSED:
            return

        try:
            row = self.config.schema.row(event.row)
        except MalformedRowError as e:
            logger.warning(f"Dropping malformed {event.kind.value} on {self.full_name}: {e}")
            return

        if not self.config.conditions.matches(row):
            self.cache.delete(row)
        elif event.kind == ChangeKind.DELETE:
            self.cache.delete(row)
        else:
            self._upsert(row, event.timestamp)

    def ingest(self, data: Mapping[str, Any], timestamp: datetime | None = None) -> TableRow | None:
        """Relevance-checked upsert used by the initial load.

        Returns:
            The cached row, or None if it was evicted, dropped or malformed.
        """
        try:
            row = self.config.schema.row(data)
        except MalformedRowError as e:
            logger.warning(f"Skipping malformed row for {self.full_name}: {e}")
            return None

        if not self.config.conditions.matches(row):
            self.cache.delete(row)
            return None
        return self._upsert(row, timestamp)

    def _upsert(self, row: TableRow, timestamp: datetime | None) -> TableRow | None:
        if timestamp is not None and self.backup_log.has(row.id):
            logger.debug(f"Ignoring pushed change for {row.id}: local write in flight")
            return None
        return self.cache.upsert(row)

    # Local mutations

    async def insert(self, row: Mapping[str, Any]) -> bool:
        """Insert a row remotely. In optimistic mode it is cached right away."""
        self._ensure_writable()
        table_row = self.config.schema.row(row)
        return await self._write(
            "insert", self.backend.insert, table_row.id, table_row, table_row.data
        )

    async def update(self, row: "Mapping[str, Any] | TableRow") -> UpdateResult:
        """Upsert a row remotely.

        In optimistic mode the cached row is replaced before the call and
        restored if the backend refuses or cannot be reached.

        Returns:
            Invocation time and whether the backend accepted the write.
        """
        self._ensure_writable()
        invoke_time = datetime.now(timezone.utc)
        table_row = self.config.schema.row(row)

        cached = self.cache.get(table_row.id)
        staged = table_row
        if cached is not None:
            # Partial updates keep the cached values of omitted fields
            staged = TableRow(data={**cached.data, **table_row.data}, id=table_row.id)

        success = await self._write(
            "upsert", self.backend.upsert, table_row.id, staged, table_row.data
        )
        return UpdateResult(invoke_time=invoke_time, status=success)

    async def delete(self, row: "Mapping[str, Any] | TableRow") -> bool:
        """Delete a row remotely, matched on its primary key."""
        self._ensure_writable()
        table_row = self.config.schema.row(row)
        match = self.config.schema.key_of(table_row.data)
        return await self._write("delete", self.backend.delete, table_row.id, None, match)

    def _ensure_writable(self) -> None:
        if self._state == SyncState.CLOSED:
            raise SyncStateError(f"{self.full_name} is closed")

    async def _write(
        self,
        operation: str,
        call: Callable[[ScopedQuery, Mapping[str, Any]], Awaitable[int]],
        identity: str,
        staged: TableRow | None,
        payload: Mapping[str, Any],
    ) -> bool:
        """Stage, send and settle one local write.

        A write interrupted by cancellation or an unexpected error is rolled
        back like a refused one before the exception propagates.
        """
        token = self._stage(identity, staged)
        try:
            success = await self._remote(operation, call, payload)
        except BaseException:
            self._settle(identity, token, False)
            raise
        self._settle(identity, token, success)
        return success

    def _stage(self, identity: str, staged: TableRow | None) -> int | None:
        """Back up the row and apply ``staged`` locally (optimistic mode only)."""
        if not self.config.optimistic:
            return None
        token = self.backup_log.backup(identity, self.cache.get(identity), staged)
        self._write_local(identity, staged)
        return token

    def _settle(self, identity: str, token: int | None, success: bool) -> None:
        """Release the backup of a finished write, rolling back on failure."""
        if token is None:
            return
        if success:
            self.backup_log.release(identity, token)
            return

        is_newest, restore_to = self.backup_log.restore_point(identity, token)
        self.backup_log.release(identity, token, failed=True)
        if is_newest:
            logger.warning(f"Rolling back failed write to {identity} on {self.full_name}")
            self._write_local(identity, restore_to)

    def _write_local(self, identity: str, row: TableRow | None) -> None:
        if row is None:
            self.cache.delete(identity)
        else:
            self.ingest(row)

    async def _remote(
        self,
        operation: str,
        call: Callable[[ScopedQuery, Mapping[str, Any]], Awaitable[int]],
        payload: Mapping[str, Any],
    ) -> bool:
        try:
            status = await call(self.config.query, payload)
        except RemoteTransportError as e:
            logger.warning(f"{operation} on {self.full_name} failed: {e}")
            return False

        if not is_success(status):
            logger.warning(f"{operation} on {self.full_name} returned status {status}")
            return False
        return True

    # Read surface

    def get_row(self, ref: "str | Mapping[str, Any]") -> TableRow | None:
        """Look up a cached row by identity or by its primary-key fields."""
        if isinstance(ref, str):
            return self.cache.get(ref)
        return self.cache.get_by_keys(ref)

    def get_first_row(self) -> TableRow | None:
        return self.cache.get_first()

    def subscribe(self, callback: SnapshotCallback) -> Callable[[], None]:
        """Receive the ordered row list after every cache change."""
        return self.cache.subscribe(callback)

    @property
    def rows(self) -> list[TableRow]:
        return self.cache.snapshot()

    @property
    def name(self) -> str:
        return self.config.schema.name

    @property
    def schema_name(self) -> str:
        return self.config.schema.schema

    @property
    def full_name(self) -> str:
        return self.config.schema.full_name

    @property
    def primary_keys(self) -> tuple[str, ...]:
        return self.config.schema.primary_keys

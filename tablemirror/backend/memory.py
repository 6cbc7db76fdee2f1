"""In-memory mock backend for testing and offline demos."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

from ..errors import RemoteTransportError
from .base import (
    ChangeEvent,
    ChangeHandler,
    ChangeKind,
    ChannelSpec,
    RemoteBackend,
    ScopedQuery,
    Subscription,
)

logger = logging.getLogger(__name__)


@dataclass
class MockCall:
    """A mutation received by MockBackend."""

    method: str
    table: str
    row: dict[str, Any]


@dataclass(eq=False)
class _MockListener:
    spec: ChannelSpec
    handler: ChangeHandler


class MockSubscription(Subscription):
    def __init__(self, backend: "MockBackend", listener: _MockListener):
        self._backend = backend
        self._listener = listener

    async def unsubscribe(self) -> None:
        if self._listener in self._backend._listeners:
            self._backend._listeners.remove(self._listener)


@dataclass
class MockTable:
    primary_keys: tuple[str, ...]
    rows: list[dict[str, Any]] = field(default_factory=list)

    def key(self, row: Mapping[str, Any]) -> tuple:
        return tuple(row.get(k) for k in self.primary_keys)

    def find(self, match: Mapping[str, Any]) -> int | None:
        for i, row in enumerate(self.rows):
            if all(row.get(k) == v for k, v in match.items()):
                return i
        return None


class MockBackend(RemoteBackend):
    """Backend that keeps tables in memory.

    Records every page window and mutation, can be told to fail counts,
    fetches or mutations, and can emit push events to subscribers. With
    ``echo=True`` every successful mutation is echoed back as a push event,
    the way a realtime database would.
    """

    def __init__(
        self,
        primary_keys: Mapping[str, Sequence[str]] | None = None,
        echo: bool = False,
    ):
        self._primary_keys = dict(primary_keys or {})
        self.echo = echo
        self.tables: dict[str, MockTable] = {}
        self.windows: list[tuple[int, int]] = []
        self.count_queries: list[ScopedQuery] = []
        self.calls: list[MockCall] = []
        self.fail_count = False
        self.fail_fetch_at: int | None = None
        self.mutation_status: int | None = None  # forced status for next mutations
        self.mutation_error = False
        self._listeners: list[_MockListener] = []

    def table(self, name: str) -> MockTable:
        if name not in self.tables:
            keys = tuple(self._primary_keys.get(name, ("id",)))
            self.tables[name] = MockTable(primary_keys=keys)
        return self.tables[name]

    def seed(self, table: str, rows: Sequence[Mapping[str, Any]]) -> None:
        """Load rows into a table without emitting events."""
        self.table(table).rows.extend(dict(r) for r in rows)

    def _scoped_rows(self, query: ScopedQuery) -> list[dict[str, Any]]:
        rows = self.table(query.table).rows
        if query.prefilter is not None:
            rows = [r for r in rows if query.prefilter.matches(r)]
        return [r for r in rows if query.conditions.matches(r)]

    async def count(self, query: ScopedQuery) -> int:
        self.count_queries.append(query)
        if self.fail_count:
            raise RemoteTransportError("Mock count failure")
        return len(self._scoped_rows(query))

    async def fetch_page(
        self, query: ScopedQuery, offset: int, limit: int
    ) -> list[dict[str, Any]]:
        self.windows.append((offset, offset + limit - 1))
        if self.fail_fetch_at is not None and offset >= self.fail_fetch_at:
            raise RemoteTransportError(f"Mock fetch failure at offset {offset}")
        return [dict(r) for r in self._scoped_rows(query)[offset : offset + limit]]

    def _mutation_status(self, default: int) -> int:
        if self.mutation_error:
            raise RemoteTransportError("Mock mutation failure")
        if self.mutation_status is not None:
            return self.mutation_status
        return default

    async def insert(self, query: ScopedQuery, row: Mapping[str, Any]) -> int:
        self.calls.append(MockCall("insert", query.table, dict(row)))
        status = self._mutation_status(201)
        if 200 <= status < 300:
            self.table(query.table).rows.append(dict(row))
            self._echo(query, ChangeKind.INSERT, row)
        return status

    async def upsert(self, query: ScopedQuery, row: Mapping[str, Any]) -> int:
        self.calls.append(MockCall("upsert", query.table, dict(row)))
        status = self._mutation_status(201)
        if 200 <= status < 300:
            table = self.table(query.table)
            index = table.find(dict(zip(table.primary_keys, table.key(row))))
            if index is None:
                stored = dict(row)
                table.rows.append(stored)
            else:
                stored = {**table.rows[index], **row}
                table.rows[index] = stored
            self._echo(query, ChangeKind.UPDATE, stored)
        return status

    async def delete(self, query: ScopedQuery, match: Mapping[str, Any]) -> int:
        self.calls.append(MockCall("delete", query.table, dict(match)))
        status = self._mutation_status(204)
        if 200 <= status < 300:
            table = self.table(query.table)
            index = table.find(match)
            if index is not None:
                removed = table.rows.pop(index)
                self._echo(query, ChangeKind.DELETE, removed)
        return status

    async def subscribe(self, spec: ChannelSpec, handler: ChangeHandler) -> Subscription:
        listener = _MockListener(spec=spec, handler=handler)
        self._listeners.append(listener)
        logger.debug(f"Mock subscription on {spec.channel_name}")
        return MockSubscription(self, listener)

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners)

    def emit(
        self,
        table: str,
        kind: ChangeKind | str,
        row: Mapping[str, Any],
        timestamp: datetime | None = None,
        schema: str = "public",
    ) -> None:
        """Deliver a push event synchronously to matching subscribers."""
        event = ChangeEvent(
            kind=ChangeKind.parse(kind.value if isinstance(kind, ChangeKind) else kind),
            row=dict(row),
            timestamp=timestamp or datetime.now(timezone.utc),
        )
        for listener in list(self._listeners):
            spec = listener.spec
            if spec.table != table or spec.schema != schema:
                continue
            if spec.prefilter is not None and not spec.prefilter.matches(event.row):
                continue
            listener.handler(event)

    def _echo(self, query: ScopedQuery, kind: ChangeKind, row: Mapping[str, Any]) -> None:
        if not self.echo:
            return
        # Deliver on the next loop iteration, like a real push channel
        loop = asyncio.get_running_loop()
        loop.call_soon(self.emit, query.table, kind, dict(row), None, query.schema)

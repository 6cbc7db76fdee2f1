"""Abstract remote backend and the value types exchanged with it."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping

from ..errors import MalformedRowError
from ..rows import ConditionSet


class ChangeKind(Enum):
    """Kind of row change described by a ChangeEvent."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"

    @classmethod
    def parse(cls, value: Any) -> "ChangeKind":
        try:
            return cls(str(value).lower())
        except ValueError:
            raise MalformedRowError(f"Unknown change type: {value!r}") from None


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        raise MalformedRowError(f"Invalid change timestamp: {value!r}") from None


@dataclass
class ChangeEvent:
    """A row change, either pushed by the backend or produced locally.

    A non-None ``timestamp`` marks an event delivered by the push channel.
    """

    kind: ChangeKind
    row: dict[str, Any]
    timestamp: datetime | None = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "ChangeEvent":
        """Decode a push payload.

        Accepts ``{"type", "row", "timestamp"}`` as well as the realtime
        shape ``{"eventType", "new", "old", "commit_timestamp"}``.

        Raises:
            MalformedRowError: If the kind or the row cannot be read.
        """
        if not isinstance(payload, Mapping):
            raise MalformedRowError(f"Change payload must be an object, got {type(payload).__name__}")

        kind = ChangeKind.parse(payload.get("type", payload.get("eventType")))
        row = payload.get("row")
        if row is None:
            row = payload.get("old") if kind == ChangeKind.DELETE else payload.get("new")
        if not isinstance(row, Mapping) or not row:
            raise MalformedRowError(f"Change payload for {kind.value} carries no row")

        timestamp = _parse_timestamp(
            payload.get("timestamp", payload.get("commit_timestamp"))
        )
        return cls(kind=kind, row=dict(row), timestamp=timestamp)


@dataclass(frozen=True)
class Prefilter:
    """Single-field equality applied server-side to fetches and the channel."""

    key: str
    value: Any

    def matches(self, row: Mapping[str, Any]) -> bool:
        # Channel filters compare textually, like "key=eq.value"
        return str(row.get(self.key)) == str(self.value)


@dataclass(frozen=True)
class ScopedQuery:
    """Everything a backend needs to scope a count or a page fetch."""

    table: str
    schema: str = "public"
    conditions: ConditionSet = field(default_factory=ConditionSet)
    prefilter: Prefilter | None = None


@dataclass(frozen=True)
class ChannelSpec:
    """What a push-channel subscription listens to."""

    table: str
    schema: str = "public"
    prefilter: Prefilter | None = None

    @property
    def channel_name(self) -> str:
        return f"realtime_{self.schema}_{self.table}"


ChangeHandler = Callable[[ChangeEvent], None]


class Subscription(ABC):
    """Handle for an active push-channel subscription."""

    @abstractmethod
    async def unsubscribe(self) -> None:
        """Stop delivering events."""
        pass


class PushChannel(ABC):
    """Source of asynchronous change events."""

    @abstractmethod
    async def subscribe(self, spec: ChannelSpec, handler: ChangeHandler) -> Subscription:
        pass

    async def close(self) -> None:
        """Stop the channel. Default does nothing."""
        pass


class RemoteBackend(ABC):
    """Remote table store consumed by TableSync and PageFetcher.

    Mutation calls return an HTTP-like status code. Any failure to reach the
    backend raises RemoteTransportError.
    """

    @abstractmethod
    async def count(self, query: ScopedQuery) -> int:
        """Return the number of rows in scope."""
        pass

    @abstractmethod
    async def fetch_page(
        self, query: ScopedQuery, offset: int, limit: int
    ) -> list[dict[str, Any]]:
        """Return up to ``limit`` rows starting at ``offset``."""
        pass

    @abstractmethod
    async def insert(self, query: ScopedQuery, row: Mapping[str, Any]) -> int:
        pass

    @abstractmethod
    async def upsert(self, query: ScopedQuery, row: Mapping[str, Any]) -> int:
        pass

    @abstractmethod
    async def delete(self, query: ScopedQuery, match: Mapping[str, Any]) -> int:
        pass

    @abstractmethod
    async def subscribe(self, spec: ChannelSpec, handler: ChangeHandler) -> Subscription:
        pass

    async def close(self) -> None:
        """Release backend resources. Default does nothing."""
        pass


def is_success(status: int) -> bool:
    return 200 <= status < 300

"""Row identity derived from a table's primary-key fields."""

import json
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from ..errors import MalformedRowError

ID_SEPARATOR = "|"


def _encode_value(value: Any) -> str:
    encoded = json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    # Length prefix keeps the encoding unambiguous when a value contains "|"
    return f"{len(encoded)}:{encoded}"


def generate_id(row: Mapping[str, Any], key_fields: Sequence[str]) -> str:
    """Derive the identity string of a row.

    Only the values of ``key_fields`` (in the given order) contribute, so two
    rows with equal keys map to the same identity whatever their other
    fields hold.

    Args:
        row: Row data.
        key_fields: Ordered primary-key field names.

    Returns:
        Deterministic identity string.

    Raises:
        MalformedRowError: If a key field is missing from the row.
    """
    parts = []
    for key in key_fields:
        if key not in row:
            raise MalformedRowError(f"Row is missing primary key field '{key}'")
        parts.append(_encode_value(row[key]))
    return ID_SEPARATOR.join(parts)


@dataclass(frozen=True)
class TableSchema:
    """Immutable description of a mirrored table.

    Shared by reference between the cache and the table that owns it.
    """

    name: str
    primary_keys: tuple[str, ...]
    schema: str = "public"
    columns: tuple[str, ...] = ()

    def __post_init__(self):
        keys = self.primary_keys
        if isinstance(keys, str):
            keys = tuple(k.strip() for k in keys.split(",") if k.strip())
        object.__setattr__(self, "primary_keys", tuple(keys))
        object.__setattr__(self, "columns", tuple(self.columns))
        if not self.primary_keys:
            raise ValueError(f"Table '{self.name}' needs at least one primary key")

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.name}"

    def identity(self, row: Mapping[str, Any]) -> str:
        """Identity of ``row`` under this schema's primary keys."""
        return generate_id(row, self.primary_keys)

    def key_of(self, row: Mapping[str, Any]) -> dict[str, Any]:
        """Return only the primary-key fields of ``row``."""
        self.identity(row)
        return {key: row[key] for key in self.primary_keys}

    def validate(self, row: Mapping[str, Any]) -> None:
        if self.columns:
            unknown = set(row) - set(self.columns)
            if unknown:
                raise MalformedRowError(
                    f"Unknown columns for {self.full_name}: {sorted(unknown)}"
                )

    def row(self, data: "Mapping[str, Any] | TableRow") -> "TableRow":
        """Build a TableRow for this table, validating the declared columns."""
        if isinstance(data, TableRow):
            return data
        self.validate(data)
        return TableRow(data=dict(data), id=self.identity(data))


@dataclass(frozen=True)
class TableRow:
    """A row's data together with its derived identity."""

    data: dict[str, Any]
    id: str = ""

    def __getitem__(self, key: str) -> Any:
        return self.data[key]

    def get(self, key: str, default: Any = None) -> Any:
        return self.data.get(key, default)

    def to_dict(self) -> dict[str, Any]:
        """Copy of the row data, for serialization."""
        return dict(self.data)

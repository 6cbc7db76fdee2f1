"""Conjunctive row predicates used to decide which rows are relevant."""

import operator
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

from .identity import TableRow


class Operator(Enum):
    """Comparison operators supported in a Condition."""

    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    LT = "lt"
    GTE = "gte"
    LTE = "lte"

    @classmethod
    def parse(cls, name: "str | Operator") -> "Operator | None":
        """Look up an operator by its short name, or None if unknown."""
        if isinstance(name, Operator):
            return name
        try:
            return cls(str(name).lower())
        except ValueError:
            return None

    @property
    def compare(self) -> Callable[[Any, Any], bool]:
        return _COMPARATORS[self]


_COMPARATORS: dict[Operator, Callable[[Any, Any], bool]] = {
    Operator.EQ: operator.eq,
    Operator.NEQ: operator.ne,
    Operator.GT: operator.gt,
    Operator.LT: operator.lt,
    Operator.GTE: operator.ge,
    Operator.LTE: operator.le,
}


@dataclass(frozen=True)
class Condition:
    """A single comparison between a column and a literal value."""

    column: str
    op: "Operator | str"
    value: Any = None

    def __post_init__(self):
        parsed = Operator.parse(self.op)
        if parsed is not None:
            object.__setattr__(self, "op", parsed)

    @property
    def operator(self) -> Operator | None:
        return self.op if isinstance(self.op, Operator) else None

    def matches(self, row: "Mapping[str, Any] | TableRow") -> bool:
        """Evaluate the condition against a row.

        Unknown operators and comparisons between incompatible types
        evaluate to False.
        """
        op = self.operator
        if op is None:
            return False
        data = row.data if isinstance(row, TableRow) else row
        try:
            return bool(op.compare(data.get(self.column), self.value))
        except TypeError:
            return False

    def to_param(self) -> tuple[str, str]:
        """Translate into a PostgREST ``(column, "op.value")`` filter pair."""
        op = self.operator
        if op is None:
            raise ValueError(f"Cannot translate unknown operator '{self.op}'")
        if self.value is None and op in (Operator.EQ, Operator.NEQ):
            return equals_param(self.column, None, negate=op == Operator.NEQ)
        return self.column, f"{op.value}.{format_literal(self.value)}"

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        op = data.get("op", data.get("operator", data.get("type")))
        if Operator.parse(op) is None:
            raise ValueError(f"Unknown condition operator: {op!r}")
        return cls(column=data["column"], op=op, value=data.get("value"))


def format_literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def equals_param(column: str, value: Any, negate: bool = False) -> tuple[str, str]:
    """PostgREST equality filter pair; ``None`` becomes an ``is.null`` test."""
    expr = "is.null" if value is None else f"eq.{format_literal(value)}"
    return column, (f"not.{expr}" if negate else expr)


@dataclass(frozen=True)
class ConditionSet:
    """Ordered conjunction of conditions. An empty set matches every row."""

    conditions: tuple[Condition, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "conditions", tuple(self.conditions))

    def __iter__(self):
        return iter(self.conditions)

    def __len__(self) -> int:
        return len(self.conditions)

    def add(self, condition: Condition) -> "ConditionSet":
        """Return a new set with ``condition`` appended."""
        return ConditionSet(self.conditions + (condition,))

    def matches(self, row: "Mapping[str, Any] | TableRow") -> bool:
        for condition in self.conditions:
            if not condition.matches(row):
                return False
        return True

    def to_params(self) -> list[tuple[str, str]]:
        """Translate the whole set into PostgREST filter pairs."""
        return [condition.to_param() for condition in self.conditions]


def evaluate(row: "Mapping[str, Any] | TableRow", conditions: ConditionSet) -> bool:
    """Return True if ``row`` satisfies every condition in ``conditions``."""
    return conditions.matches(row)

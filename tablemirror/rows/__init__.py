"""Row identity and relevance predicates."""

from .conditions import Condition, ConditionSet, Operator, evaluate
from .identity import TableRow, TableSchema, generate_id

__all__ = [
    "Condition",
    "ConditionSet",
    "Operator",
    "evaluate",
    "TableRow",
    "TableSchema",
    "generate_id",
]

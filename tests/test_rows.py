"""Tests for row identity and relevance conditions."""

import pytest

from tablemirror.errors import MalformedRowError
from tablemirror.rows import (
    Condition,
    ConditionSet,
    Operator,
    TableRow,
    TableSchema,
    evaluate,
    generate_id,
)


@pytest.fixture
def schema():
    """Two-column primary key schema."""
    return TableSchema(name="members", primary_keys=("org_id", "user_id"))


class TestGenerateId:
    """Tests for identity derivation."""

    def test_ignores_non_key_fields(self):
        """Test non-key fields do not affect the identity."""
        a = generate_id({"id": 1, "title": "a", "done": False}, ["id"])
        b = generate_id({"id": 1, "title": "something else"}, ["id"])

        assert a == b

    def test_independent_of_field_order(self):
        """Test field insertion order does not matter."""
        a = generate_id({"org_id": 1, "user_id": 2, "x": 3}, ["org_id", "user_id"])
        b = generate_id({"x": 3, "user_id": 2, "org_id": 1}, ["org_id", "user_id"])

        assert a == b

    def test_key_order_matters(self):
        """Test swapping key values yields a different identity."""
        a = generate_id({"a": 1, "b": 2}, ["a", "b"])
        b = generate_id({"a": 2, "b": 1}, ["a", "b"])

        assert a != b

    def test_delimiter_in_value_does_not_collide(self):
        """Test values containing the separator stay distinct."""
        a = generate_id({"a": "x|y", "b": "z"}, ["a", "b"])
        b = generate_id({"a": "x", "b": "y|z"}, ["a", "b"])

        assert a != b

    def test_types_are_distinguished(self):
        """Test 1 and "1" are different keys."""
        assert generate_id({"id": 1}, ["id"]) != generate_id({"id": "1"}, ["id"])

    def test_is_deterministic(self):
        """Test the same row always maps to the same string."""
        row = {"id": "abc", "n": 5}
        assert generate_id(row, ["id"]) == generate_id(dict(row), ["id"])
        assert generate_id(row, ["id"]) == '5:"abc"'

    def test_missing_key_raises(self):
        """Test a row without a key field is rejected."""
        with pytest.raises(MalformedRowError):
            generate_id({"title": "no id"}, ["id"])


class TestTableSchema:
    """Tests for TableSchema."""

    def test_primary_keys_from_string(self):
        """Test comma-separated keys are split."""
        schema = TableSchema(name="t", primary_keys="a, b")

        assert schema.primary_keys == ("a", "b")

    def test_requires_primary_key(self):
        """Test an empty key list is rejected."""
        with pytest.raises(ValueError):
            TableSchema(name="t", primary_keys=())

    def test_full_name(self, schema):
        """Test schema-qualified table name."""
        assert schema.full_name == "public.members"

    def test_row_builds_identity(self, schema):
        """Test row() derives the identity."""
        row = schema.row({"org_id": 1, "user_id": 2, "role": "admin"})

        assert isinstance(row, TableRow)
        assert row.id == schema.identity({"user_id": 2, "org_id": 1})
        assert row["role"] == "admin"

    def test_row_copies_data(self, schema):
        """Test the stored data is not the caller's dict."""
        data = {"org_id": 1, "user_id": 2}
        row = schema.row(data)
        data["role"] = "changed"

        assert "role" not in row.data

    def test_row_passthrough(self, schema):
        """Test TableRow instances are returned unchanged."""
        row = schema.row({"org_id": 1, "user_id": 2})

        assert schema.row(row) is row

    def test_declared_columns_reject_unknown(self):
        """Test unknown columns are rejected when columns are declared."""
        schema = TableSchema(name="t", primary_keys=("id",), columns=("id", "title"))

        schema.row({"id": 1, "title": "ok"})
        with pytest.raises(MalformedRowError):
            schema.row({"id": 1, "colour": "red"})

    def test_key_of(self, schema):
        """Test key_of keeps only key fields."""
        assert schema.key_of({"org_id": 1, "user_id": 2, "role": "x"}) == {
            "org_id": 1,
            "user_id": 2,
        }


class TestCondition:
    """Tests for single conditions."""

    @pytest.mark.parametrize(
        "op,value,expected",
        [
            ("eq", 5, True),
            ("eq", 4, False),
            ("neq", 4, True),
            ("gt", 4, True),
            ("gt", 5, False),
            ("lt", 6, True),
            ("gte", 5, True),
            ("lte", 5, True),
            ("lte", 4, False),
        ],
    )
    def test_operators(self, op, value, expected):
        """Test each operator against score=5."""
        assert Condition("score", op, value).matches({"score": 5}) is expected

    def test_operator_parsed(self):
        """Test string operators become Operator members."""
        assert Condition("a", "GTE", 1).op is Operator.GTE

    def test_unknown_operator_fails_closed(self):
        """Test an unknown operator never matches."""
        cond = Condition("score", "like", 5)

        assert cond.operator is None
        assert cond.matches({"score": 5}) is False

    def test_incomparable_types_fail(self):
        """Test None > 5 evaluates to False instead of raising."""
        assert Condition("score", "gt", 5).matches({"score": None}) is False
        assert Condition("score", "gt", 5).matches({}) is False

    def test_matches_table_row(self, schema):
        """Test conditions accept TableRow instances."""
        row = schema.row({"org_id": 1, "user_id": 2, "role": "admin"})

        assert Condition("role", "eq", "admin").matches(row)

    def test_to_param(self):
        """Test PostgREST translation."""
        assert Condition("score", "gt", 5).to_param() == ("score", "gt.5")
        assert Condition("done", "eq", False).to_param() == ("done", "eq.false")
        assert Condition("owner", "neq", None).to_param() == ("owner", "not.is.null")
        assert Condition("owner", "eq", None).to_param() == ("owner", "is.null")
        assert Condition("due", "lt", None).to_param() == ("due", "lt.null")

    def test_to_param_unknown_operator(self):
        """Test unknown operators cannot be translated."""
        with pytest.raises(ValueError):
            Condition("a", "like", "x").to_param()

    def test_from_dict_rejects_unknown(self):
        """Test from_dict validates the operator."""
        with pytest.raises(ValueError):
            Condition.from_dict({"column": "a", "op": "between", "value": 1})

        cond = Condition.from_dict({"column": "a", "type": "lt", "value": 1})
        assert cond.op is Operator.LT


class TestConditionSet:
    """Tests for conjunctive condition sets."""

    def test_empty_set_matches_everything(self):
        """Test the empty set is vacuously true."""
        conditions = ConditionSet()

        assert evaluate({}, conditions)
        assert evaluate({"anything": 1}, conditions)

    def test_all_must_hold(self):
        """Test conjunction semantics."""
        conditions = ConditionSet(
            (Condition("score", "gte", 3), Condition("done", "eq", False))
        )

        assert evaluate({"score": 3, "done": False}, conditions)
        assert not evaluate({"score": 3, "done": True}, conditions)
        assert not evaluate({"score": 2, "done": False}, conditions)

    def test_short_circuits(self):
        """Test evaluation stops at the first failing condition."""
        calls = []

        class Recording(Condition):
            def matches(self, row):
                calls.append(self.column)
                return super().matches(row)

        conditions = ConditionSet(
            (Recording("a", "eq", 1), Recording("b", "eq", 1), Recording("c", "eq", 1))
        )

        assert not conditions.matches({"a": 1, "b": 2, "c": 1})
        assert calls == ["a", "b"]

    def test_add_returns_new_set(self):
        """Test add() leaves the original untouched."""
        base = ConditionSet()
        extended = base.add(Condition("a", "eq", 1))

        assert len(base) == 0
        assert len(extended) == 1

    def test_to_params(self):
        """Test translation of the whole set keeps order."""
        conditions = ConditionSet((Condition("a", "eq", 1), Condition("b", "lt", 9)))

        assert conditions.to_params() == [("a", "eq.1"), ("b", "lt.9")]

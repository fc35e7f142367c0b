from __future__ import annotations

import pytest

from dynadapter_py import UnsupportedOperatorError, ValidationError
from dynadapter_py.conditions import (
    ConditionTriple,
    WhereConditions,
    normalize_condition,
    normalize_conditions,
    parse_condition_key,
)


def test_plain_key_defaults_to_eq() -> None:
    assert parse_condition_key("name") == ("name", "eq")


def test_operator_suffix_is_split_on_last_dot() -> None:
    assert parse_condition_key("address.city.begins_with") == ("address.city", "begins_with")


def test_unknown_operator_is_rejected_with_attribute_and_operator() -> None:
    with pytest.raises(UnsupportedOperatorError) as excinfo:
        parse_condition_key("age.foo")
    assert excinfo.value.attribute == "age"
    assert excinfo.value.operator == "foo"


@pytest.mark.parametrize("key", ["", ".gt"])
def test_empty_attribute_is_rejected(key: str) -> None:
    with pytest.raises(ValidationError):
        parse_condition_key(key)


def test_normalize_conditions_keeps_mapping_order() -> None:
    got = normalize_conditions({"name": "Bob", "age.gt": 10, "tags.contains": "x"})
    assert got == [
        ConditionTriple("name", "eq", "Bob"),
        ConditionTriple("age", "gt", 10),
        ConditionTriple("tags", "contains", "x"),
    ]


def test_between_requires_two_values() -> None:
    assert normalize_condition("age.between", [1, 5]) == ConditionTriple("age", "between", (1, 5))
    with pytest.raises(ValidationError, match="two values"):
        normalize_condition("age.between", [1])
    with pytest.raises(ValidationError):
        normalize_condition("age.between", "ab")


def test_in_requires_non_empty_sequence() -> None:
    assert normalize_condition("id.in", ["a", "b"]) == ConditionTriple("id", "in", ("a", "b"))
    with pytest.raises(ValidationError, match="at least one"):
        normalize_condition("id.in", [])
    with pytest.raises(ValidationError):
        normalize_condition("id.in", "abc")


def test_null_false_inverts_to_not_null() -> None:
    assert normalize_condition("deleted_at.null", True) == ConditionTriple("deleted_at", "null")
    assert normalize_condition("deleted_at.null", False) == ConditionTriple("deleted_at", "not_null")
    assert normalize_condition("deleted_at.not_null", False) == ConditionTriple("deleted_at", "null")


def test_key_range_operators() -> None:
    assert ConditionTriple("a", "begins_with", "x").is_key_range
    assert ConditionTriple("a", "between", (1, 2)).is_key_range
    assert not ConditionTriple("a", "ne", 1).is_key_range
    assert not ConditionTriple("a", "in", (1,)).is_key_range


def test_where_conditions_accumulate_with_and_semantics() -> None:
    where = WhereConditions()
    assert where.empty()

    where.update_with_mapping({"name": "Bob"})
    where.update_with_mapping({"age.gt": 10, "name.ne": "Alice"})
    where.update_with_expression("#x > :min", {":min": 3})

    assert [t.attribute for t in where.triples] == ["name", "age", "name"]
    assert where.attributes() == ("name", "age")
    assert len(where.expressions) == 1
    assert not where.empty()


def test_where_conditions_copy_is_independent() -> None:
    where = WhereConditions()
    where.update_with_mapping({"name": "Bob"})
    other = where.copy()
    other.update_with_mapping({"age": 1})

    assert len(where.triples) == 1
    assert len(other.triples) == 2


@pytest.mark.parametrize(
    ("expression", "values", "match"),
    [
        ("", None, "cannot be empty"),
        ("a = :b", {"b": 1}, "must start with ':'"),
        ("a = :_a1", {":_a1": 1}, "reserved"),
    ],
)
def test_expression_validation(expression: str, values: dict | None, match: str) -> None:
    where = WhereConditions()
    with pytest.raises(ValidationError, match=match):
        where.update_with_expression(expression, values)


def test_expression_placeholder_cannot_repeat_across_calls() -> None:
    where = WhereConditions()
    where.update_with_expression("a = :v", {":v": 1})
    with pytest.raises(ValidationError, match="used twice"):
        where.update_with_expression("b = :v", {":v": 2})

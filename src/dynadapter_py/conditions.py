from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from .errors import UnsupportedOperatorError, ValidationError

OPERATORS = frozenset(
    {
        "eq",
        "ne",
        "gt",
        "lt",
        "gte",
        "lte",
        "between",
        "begins_with",
        "in",
        "contains",
        "not_contains",
        "null",
        "not_null",
    }
)

# Operators DynamoDB accepts in a key condition on a range key.
KEY_RANGE_OPERATORS = frozenset({"eq", "gt", "lt", "gte", "lte", "between", "begins_with"})

_INVERTED = {"null": "not_null", "not_null": "null"}


@dataclass(frozen=True)
class ConditionTriple:
    attribute: str
    operator: str
    value: Any = None

    @property
    def is_key_range(self) -> bool:
        return self.operator in KEY_RANGE_OPERATORS


@dataclass(frozen=True)
class ExpressionCondition:
    """A raw filter expression with its ``:placeholder`` values."""

    expression: str
    values: Mapping[str, Any] = field(default_factory=dict)


def parse_condition_key(key: str) -> tuple[str, str]:
    if not isinstance(key, str) or not key:
        raise ValidationError("condition key must be a non-empty string")

    if "." not in key:
        return key, "eq"

    attribute, operator = key.rsplit(".", 1)
    if not attribute:
        raise ValidationError(f"condition key has no attribute: {key!r}")
    if operator not in OPERATORS:
        raise UnsupportedOperatorError(attribute=attribute, operator=operator)
    return attribute, operator


def normalize_condition(key: str, value: Any) -> ConditionTriple:
    attribute, operator = parse_condition_key(key)

    if operator == "between":
        if not _is_sequence(value) or len(value) != 2:
            raise ValidationError(f"{attribute}.between requires two values")
        return ConditionTriple(attribute, operator, (value[0], value[1]))

    if operator == "in":
        if not _is_sequence(value) and not isinstance(value, (set, frozenset)):
            raise ValidationError(f"{attribute}.in requires a sequence of values")
        values = tuple(value)
        if not values:
            raise ValidationError(f"{attribute}.in requires at least one value")
        return ConditionTriple(attribute, operator, values)

    if operator in _INVERTED:
        if value is False:
            operator = _INVERTED[operator]
        return ConditionTriple(attribute, operator, None)

    return ConditionTriple(attribute, operator, value)


def normalize_conditions(conditions: Mapping[str, Any]) -> list[ConditionTriple]:
    return [normalize_condition(key, value) for key, value in conditions.items()]


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


class WhereConditions:
    """Accumulates ``where`` calls; every call is ANDed with the others."""

    def __init__(self) -> None:
        self._triples: list[ConditionTriple] = []
        self._expressions: list[ExpressionCondition] = []

    def update_with_mapping(self, conditions: Mapping[str, Any]) -> None:
        self._triples.extend(normalize_conditions(conditions))

    def update_with_expression(self, expression: str, values: Mapping[str, Any] | None = None) -> None:
        expression = (expression or "").strip()
        if not expression:
            raise ValidationError("filter expression cannot be empty")

        values = dict(values or {})
        for placeholder in values:
            if not placeholder.startswith(":"):
                raise ValidationError(f"value placeholder must start with ':': {placeholder}")
            if placeholder.startswith(":_a"):
                raise ValidationError(f"value placeholder prefix ':_a' is reserved: {placeholder}")
            for existing in self._expressions:
                if placeholder in existing.values:
                    raise ValidationError(f"value placeholder used twice: {placeholder}")

        self._expressions.append(ExpressionCondition(expression, values))

    @property
    def triples(self) -> tuple[ConditionTriple, ...]:
        return tuple(self._triples)

    @property
    def expressions(self) -> tuple[ExpressionCondition, ...]:
        return tuple(self._expressions)

    def attributes(self) -> tuple[str, ...]:
        seen: dict[str, None] = {}
        for triple in self._triples:
            seen.setdefault(triple.attribute, None)
        return tuple(seen)

    def empty(self) -> bool:
        return not self._triples and not self._expressions

    def copy(self) -> WhereConditions:
        out = WhereConditions()
        out._triples = list(self._triples)
        out._expressions = list(self._expressions)
        return out

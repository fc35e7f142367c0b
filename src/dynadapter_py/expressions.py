from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from boto3.dynamodb.types import TypeSerializer

from .conditions import ConditionTriple, ExpressionCondition
from .errors import ValidationError
from .model import Dumper, make_dumper, make_element_dumper, to_wire_number

_COMPARISONS = {
    "eq": "=",
    "ne": "<>",
    "gt": ">",
    "lt": "<",
    "gte": ">=",
    "lte": "<=",
}

# DynamoDB caps the IN operand list.
MAX_IN_VALUES = 100


class ExpressionBuilder:
    """Allocates ``#_aN`` / ``:_aN`` placeholders and renders condition triples.

    One builder backs one wire request, so key conditions, filters, projections,
    update and condition expressions of that request never reuse a placeholder.
    Allocation follows call order, which keeps requests deterministic.
    """

    def __init__(
        self,
        dumper: Dumper | None = None,
        element_dumper: Dumper | None = None,
        *,
        serializer: TypeSerializer | None = None,
    ) -> None:
        self._dump = dumper or make_dumper(None)
        self._dump_element = element_dumper or make_element_dumper(None)
        self._serializer = serializer or TypeSerializer()
        self._names: dict[str, str] = {}
        self._name_refs: dict[str, str] = {}
        self._values: dict[str, Any] = {}
        self._value_counter = 0

    @property
    def names(self) -> dict[str, str]:
        return dict(self._names)

    @property
    def values(self) -> dict[str, Any]:
        return dict(self._values)

    def name_ref(self, attribute: str) -> str:
        existing = self._name_refs.get(attribute)
        if existing is not None:
            return existing
        ref = f"#_a{len(self._names) + 1}"
        self._names[ref] = attribute
        self._name_refs[attribute] = ref
        return ref

    def value_ref(self, attribute: str, value: Any, *, element: bool = False) -> str:
        dumped = self._dump_element(attribute, value) if element else self._dump(attribute, value)
        return self.raw_value_ref(dumped)

    def raw_value_ref(self, value: Any) -> str:
        self._value_counter += 1
        ref = f":_a{self._value_counter}"
        self._values[ref] = self.serialize(value)
        return ref

    def serialize(self, value: Any) -> Any:
        return self._serializer.serialize(to_wire_number(value))

    def condition(self, triple: ConditionTriple) -> str:
        name = self.name_ref(triple.attribute)
        op = triple.operator

        if op in _COMPARISONS:
            return f"{name} {_COMPARISONS[op]} {self.value_ref(triple.attribute, triple.value)}"
        if op == "between":
            low, high = triple.value
            left = self.value_ref(triple.attribute, low)
            right = self.value_ref(triple.attribute, high)
            return f"{name} BETWEEN {left} AND {right}"
        if op == "begins_with":
            return f"begins_with({name}, {self.value_ref(triple.attribute, triple.value)})"
        if op == "in":
            if len(triple.value) > MAX_IN_VALUES:
                raise ValidationError(f"{triple.attribute}.in supports at most {MAX_IN_VALUES} values")
            refs = [self.value_ref(triple.attribute, v) for v in triple.value]
            return f"{name} IN ({', '.join(refs)})"
        if op == "contains":
            return f"contains({name}, {self.value_ref(triple.attribute, triple.value, element=True)})"
        if op == "not_contains":
            return f"NOT contains({name}, {self.value_ref(triple.attribute, triple.value, element=True)})"
        if op == "null":
            return f"attribute_not_exists({name})"
        if op == "not_null":
            return f"attribute_exists({name})"

        raise ValidationError(f"unsupported condition operator: {op}")

    def conditions(self, triples: Iterable[ConditionTriple]) -> str:
        return " AND ".join(self.condition(t) for t in triples)

    def raw(self, expression: ExpressionCondition) -> str:
        for placeholder, value in expression.values.items():
            if placeholder in self._values:
                raise ValidationError(f"value placeholder used twice: {placeholder}")
            self._values[placeholder] = self.serialize(value)
        return f"({expression.expression})"

    def filter(
        self,
        triples: Sequence[ConditionTriple],
        expressions: Sequence[ExpressionCondition] = (),
    ) -> str:
        parts = [self.condition(t) for t in triples]
        parts.extend(self.raw(e) for e in expressions)
        return " AND ".join(parts)

    def projection(self, attributes: Sequence[str]) -> str:
        if not attributes:
            raise ValidationError("projection requires at least one attribute")
        return ", ".join(self.name_ref(a) for a in attributes)

    def apply(self, req: dict[str, Any]) -> dict[str, Any]:
        """Attach the allocated placeholder tables to ``req`` when non-empty."""
        if self._names:
            req["ExpressionAttributeNames"] = dict(self._names)
        if self._values:
            req["ExpressionAttributeValues"] = dict(self._values)
        return req


def serialize_item(item: Mapping[str, Any], serializer: TypeSerializer | None = None) -> dict[str, Any]:
    ser = serializer or TypeSerializer()
    return {str(k): ser.serialize(to_wire_number(v)) for k, v in item.items()}

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any, Literal

from boto3.dynamodb.types import TypeSerializer

from .conditions import ConditionTriple, WhereConditions
from .errors import MissingHashKeyError, MissingRangeKeyError, ValidationError
from .expressions import ExpressionBuilder
from .model import Dumper, make_dumper, to_wire_number
from .planner import KeyFieldsDecision
from .schema import TableSchema

type Select = Literal["ALL_ATTRIBUTES", "ALL_PROJECTED_ATTRIBUTES", "SPECIFIC_ATTRIBUTES", "COUNT"]


def split_conditions(
    triples: Sequence[ConditionTriple],
    decision: KeyFieldsDecision,
) -> tuple[list[ConditionTriple], list[ConditionTriple]]:
    """Return ``(key_conditions, filter_conditions)`` for a decided key schema.

    Only the first ``eq`` on the hash key and the first key-range condition on
    the range key are key conditions; repeats fall through to the filter.
    """
    key_conditions: list[ConditionTriple] = []
    filter_conditions: list[ConditionTriple] = []
    hash_taken = False
    range_taken = False

    for triple in triples:
        if (
            not hash_taken
            and decision.hash_key is not None
            and triple.attribute == decision.hash_key
            and triple.operator == "eq"
        ):
            key_conditions.append(triple)
            hash_taken = True
            continue
        if (
            not range_taken
            and decision.range_key is not None
            and triple.attribute == decision.range_key
            and triple.is_key_range
        ):
            key_conditions.append(triple)
            range_taken = True
            continue
        filter_conditions.append(triple)

    return key_conditions, filter_conditions


def build_key(
    schema: TableSchema,
    key: Any,
    *,
    dumper: Dumper | None = None,
    serializer: TypeSerializer | None = None,
) -> dict[str, Any]:
    """Wire-format primary key from a hash value, a ``(hash, range)`` tuple or a mapping."""
    dump = dumper or make_dumper(None)
    ser = serializer or TypeSerializer()

    if isinstance(key, Mapping):
        hash_value = key.get(schema.hash_key)
        range_value = key.get(schema.range_key) if schema.range_key is not None else None
    elif isinstance(key, tuple):
        if len(key) != 2:
            raise ValidationError("expected key tuple (hash, range)")
        hash_value, range_value = key
    else:
        hash_value, range_value = key, None

    if hash_value is None:
        raise MissingHashKeyError(f"table {schema.name}: missing hash key {schema.hash_key}")

    out = {schema.hash_key: ser.serialize(to_wire_number(dump(schema.hash_key, hash_value)))}
    if schema.range_key is None:
        if range_value is not None:
            raise ValidationError(f"table {schema.name} has no range key")
        return out

    if range_value is None:
        raise MissingRangeKeyError(f"table {schema.name}: missing range key {schema.range_key}")
    out[schema.range_key] = ser.serialize(to_wire_number(dump(schema.range_key, range_value)))
    return out


def build_query_request(
    schema: TableSchema,
    conditions: WhereConditions,
    decision: KeyFieldsDecision,
    *,
    dumper: Dumper | None = None,
    element_dumper: Dumper | None = None,
    projection: Sequence[str] | None = None,
    consistent_read: bool = False,
    scan_index_forward: bool = True,
    select: Select | None = None,
    exclusive_start_key: Mapping[str, Any] | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    if not decision.use_query:
        raise ValidationError("query requires a hash key condition")
    _check_consistent_read(schema, decision.index_name, consistent_read)

    key_conditions, filter_conditions = split_conditions(conditions.triples, decision)
    builder = ExpressionBuilder(dumper, element_dumper)

    req: dict[str, Any] = {
        "TableName": schema.name,
        "KeyConditionExpression": builder.conditions(key_conditions),
        "ConsistentRead": consistent_read,
        "ScanIndexForward": scan_index_forward,
    }
    filter_expression = builder.filter(filter_conditions, conditions.expressions)
    if filter_expression:
        req["FilterExpression"] = filter_expression

    return _apply_common(
        req,
        builder,
        index_name=decision.index_name,
        projection=projection,
        select=select,
        exclusive_start_key=exclusive_start_key,
        limit=limit,
    )


def build_scan_request(
    schema: TableSchema,
    conditions: WhereConditions,
    *,
    index_name: str | None = None,
    dumper: Dumper | None = None,
    element_dumper: Dumper | None = None,
    projection: Sequence[str] | None = None,
    consistent_read: bool = False,
    select: Select | None = None,
    exclusive_start_key: Mapping[str, Any] | None = None,
    limit: int | None = None,
    segment: int | None = None,
    total_segments: int | None = None,
) -> dict[str, Any]:
    if index_name is not None:
        schema.index(index_name)
    _check_consistent_read(schema, index_name, consistent_read)

    builder = ExpressionBuilder(dumper, element_dumper)
    req: dict[str, Any] = {"TableName": schema.name, "ConsistentRead": consistent_read}

    filter_expression = builder.filter(conditions.triples, conditions.expressions)
    if filter_expression:
        req["FilterExpression"] = filter_expression

    if (segment is None) != (total_segments is None):
        raise ValidationError("segment and total_segments must be provided together")
    if segment is not None and total_segments is not None:
        if segment < 0 or total_segments <= 0 or segment >= total_segments:
            raise ValidationError("invalid segment/total_segments")
        req["Segment"] = segment
        req["TotalSegments"] = total_segments

    return _apply_common(
        req,
        builder,
        index_name=index_name,
        projection=projection,
        select=select,
        exclusive_start_key=exclusive_start_key,
        limit=limit,
    )


def _apply_common(
    req: dict[str, Any],
    builder: ExpressionBuilder,
    *,
    index_name: str | None,
    projection: Sequence[str] | None,
    select: Select | None,
    exclusive_start_key: Mapping[str, Any] | None,
    limit: int | None,
) -> dict[str, Any]:
    if index_name is not None:
        req["IndexName"] = index_name
    if select is not None:
        if select == "COUNT" and projection:
            raise ValidationError("Select=COUNT cannot be combined with a projection")
        req["Select"] = select
    if projection:
        req["ProjectionExpression"] = builder.projection(projection)
    if exclusive_start_key:
        req["ExclusiveStartKey"] = dict(exclusive_start_key)
    if limit is not None:
        if limit <= 0:
            raise ValidationError("limit must be > 0")
        req["Limit"] = limit
    return builder.apply(req)


def _check_consistent_read(schema: TableSchema, index_name: str | None, consistent_read: bool) -> None:
    if index_name is not None and consistent_read and schema.index(index_name).type == "GSI":
        raise ValidationError("consistent_read is not supported for GSIs")

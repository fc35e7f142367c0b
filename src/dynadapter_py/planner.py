from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Literal

from .conditions import ConditionTriple
from .schema import SecondaryIndex, TableSchema

type QueryOperation = Literal["Query", "Scan"]


@dataclass(frozen=True)
class KeyFieldsDecision:
    hash_key: str | None = None
    range_key: str | None = None
    index_name: str | None = None

    @property
    def use_query(self) -> bool:
        return self.hash_key is not None


SCAN = KeyFieldsDecision()


def detect_key_fields(
    conditions: Sequence[ConditionTriple],
    schema: TableSchema,
    *,
    with_index: str | None = None,
    projection: Sequence[str] | None = None,
) -> KeyFieldsDecision:
    """Choose the key schema a request can Query with, or ``SCAN``.

    Preference order: a range-constrained key beats an unconstrained one, the
    table's own key beats a secondary index, and among secondary indexes the
    first declared wins.
    """
    eq_attributes = {c.attribute for c in conditions if c.operator == "eq"}
    range_attributes = {c.attribute for c in conditions if c.is_key_range}
    # None means whole items; only ALL projections cover them.
    requested = ({c.attribute for c in conditions} | set(projection)) if projection else None

    if with_index is not None:
        idx = schema.index(with_index)
        if idx.hash_key not in eq_attributes:
            return KeyFieldsDecision(index_name=idx.name)
        return KeyFieldsDecision(
            hash_key=idx.hash_key,
            range_key=idx.range_key if idx.range_key in range_attributes else None,
            index_name=idx.name,
        )

    if schema.hash_key in eq_attributes:
        if schema.range_key is not None and schema.range_key in range_attributes:
            return KeyFieldsDecision(hash_key=schema.hash_key, range_key=schema.range_key)

        for idx in schema.local_secondary_indexes:
            if idx.range_key in range_attributes and _covers(idx, schema, requested):
                return KeyFieldsDecision(hash_key=idx.hash_key, range_key=idx.range_key, index_name=idx.name)

        return KeyFieldsDecision(hash_key=schema.hash_key)

    candidates = [
        idx
        for idx in schema.global_secondary_indexes
        if idx.hash_key in eq_attributes and _covers(idx, schema, requested)
    ]
    for idx in candidates:
        if idx.range_key is not None and idx.range_key in range_attributes:
            return KeyFieldsDecision(hash_key=idx.hash_key, range_key=idx.range_key, index_name=idx.name)
    if candidates:
        idx = candidates[0]
        return KeyFieldsDecision(hash_key=idx.hash_key, index_name=idx.name)

    return SCAN


def _covers(idx: SecondaryIndex, schema: TableSchema, requested: Iterable[str] | None) -> bool:
    projected = idx.projected_attributes(schema)
    if projected is None:
        return True
    if requested is None:
        return False
    return all(attribute in projected for attribute in requested)


@dataclass(frozen=True)
class QueryPlan:
    operation: QueryOperation
    table_name: str
    index_name: str | None
    hash_key: str | None
    range_key: str | None
    key_attributes: tuple[str, ...]
    filter_attributes: tuple[str, ...]
    projections: tuple[str, ...] = ()
    optimization_hints: tuple[str, ...] = ()


def explain(
    decision: KeyFieldsDecision,
    schema: TableSchema,
    *,
    key_conditions: Sequence[ConditionTriple] = (),
    filter_conditions: Sequence[ConditionTriple] = (),
    has_raw_filter: bool = False,
    projection: Sequence[str] | None = None,
    consistent_read: bool = False,
) -> QueryPlan:
    hints: list[str] = []
    index_type = None
    if decision.index_name is not None:
        index_type = schema.index(decision.index_name).type

    if index_type == "GSI" and consistent_read:
        hints.append("ERROR: Consistent reads are not supported on GSIs")

    has_filter = bool(filter_conditions) or has_raw_filter
    projections = tuple(projection or ())

    if decision.use_query:
        if decision.range_key is None and _range_key_of(decision, schema) is not None:
            hints.append("TIP: Add a range key condition for more efficient queries when possible")
        if has_filter:
            hints.append("INFO: Filters are applied after retrieval; prefer key conditions when possible")
        operation: QueryOperation = "Query"
    else:
        hints.append("WARNING: Scan reads the full table/index; prefer Query when possible")
        if has_filter:
            hints.append("INFO: Filters are applied after retrieval; consider narrowing with keys or indexes")
        operation = "Scan"

    if not projections:
        hints.append("TIP: Use projection to select only needed attributes and reduce transfer")

    return QueryPlan(
        operation=operation,
        table_name=schema.name,
        index_name=decision.index_name,
        hash_key=decision.hash_key,
        range_key=decision.range_key,
        key_attributes=tuple(c.attribute for c in key_conditions),
        filter_attributes=tuple(c.attribute for c in filter_conditions),
        projections=projections,
        optimization_hints=tuple(hints),
    )


def _range_key_of(decision: KeyFieldsDecision, schema: TableSchema) -> str | None:
    if decision.index_name is None:
        return schema.range_key
    return schema.index(decision.index_name).range_key

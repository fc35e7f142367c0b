from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Literal

from .errors import InvalidIndexError, ValidationError

type IndexType = Literal["GSI", "LSI"]
type BillingMode = Literal["PAY_PER_REQUEST", "PROVISIONED"]

KEY_ATTRIBUTE_TYPES = frozenset({"S", "N", "B"})


@dataclass(frozen=True)
class Projection:
    type: str
    fields: tuple[str, ...] = ()

    @staticmethod
    def all() -> Projection:
        return Projection(type="ALL")

    @staticmethod
    def keys_only() -> Projection:
        return Projection(type="KEYS_ONLY")

    @staticmethod
    def include(*fields: str) -> Projection:
        return Projection(type="INCLUDE", fields=tuple(fields))


@dataclass(frozen=True)
class SecondaryIndex:
    name: str
    type: IndexType
    hash_key: str
    range_key: str | None = None
    projection: Projection = field(default_factory=Projection.all)
    read_capacity: int | None = None
    write_capacity: int | None = None

    @property
    def projects_all(self) -> bool:
        return self.projection.type == "ALL"

    def key_attributes(self) -> tuple[str, ...]:
        if self.range_key is None:
            return (self.hash_key,)
        return (self.hash_key, self.range_key)

    def projected_attributes(self, table: TableSchema) -> frozenset[str] | None:
        """Attribute names carried by the index, or None when it projects every attribute."""
        if self.projects_all:
            return None
        out = set(self.key_attributes()) | set(table.key_attributes())
        if self.projection.type == "INCLUDE":
            out.update(self.projection.fields)
        return frozenset(out)


@dataclass(frozen=True)
class TableSchema:
    name: str
    hash_key: str
    range_key: str | None = None
    indexes: tuple[SecondaryIndex, ...] = ()
    attribute_types: Mapping[str, str] = field(default_factory=dict)
    item_count: int | None = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValidationError("table name is required")
        if not self.hash_key:
            raise ValidationError(f"table {self.name}: hash key is required")

        seen: set[str] = set()
        for idx in self.indexes:
            if idx.name in seen:
                raise ValidationError(f"table {self.name}: duplicate index name: {idx.name}")
            seen.add(idx.name)

            if idx.type not in {"GSI", "LSI"}:
                raise ValidationError(f"index {idx.name}: unsupported index type: {idx.type}")
            if idx.type == "LSI" and idx.hash_key != self.hash_key:
                raise ValidationError(
                    f"index {idx.name}: LSI hash key must be the table hash key ({self.hash_key})"
                )
            if idx.type == "LSI" and idx.range_key is None:
                raise ValidationError(f"index {idx.name}: LSI requires a range key")

            if self.attribute_types:
                for key in idx.key_attributes():
                    kind = self.attribute_types.get(key)
                    if kind is None:
                        raise ValidationError(f"index {idx.name}: unknown key attribute: {key}")
                    if kind not in KEY_ATTRIBUTE_TYPES:
                        raise ValidationError(f"index {idx.name}: key attribute must be S/N/B: {key}")

    @property
    def local_secondary_indexes(self) -> tuple[SecondaryIndex, ...]:
        return tuple(idx for idx in self.indexes if idx.type == "LSI")

    @property
    def global_secondary_indexes(self) -> tuple[SecondaryIndex, ...]:
        return tuple(idx for idx in self.indexes if idx.type == "GSI")

    def key_attributes(self) -> tuple[str, ...]:
        if self.range_key is None:
            return (self.hash_key,)
        return (self.hash_key, self.range_key)

    def index(self, name: str) -> SecondaryIndex:
        for idx in self.indexes:
            if idx.name == name:
                return idx
        raise InvalidIndexError(name)

    def with_name(self, name: str) -> TableSchema:
        return TableSchema(
            name=name,
            hash_key=self.hash_key,
            range_key=self.range_key,
            indexes=self.indexes,
            attribute_types=self.attribute_types,
            item_count=self.item_count,
        )

    @classmethod
    def from_description(cls, resp: Mapping[str, Any]) -> TableSchema:
        """Build a schema from a DescribeTable (or CreateTable) response."""
        desc = resp.get("Table") or resp.get("TableDescription") or {}
        hash_key, range_key = _parse_key_schema(desc.get("KeySchema") or [])
        if hash_key is None:
            raise ValidationError("table description has no HASH key")

        attribute_types = {
            str(d["AttributeName"]): str(d["AttributeType"]) for d in desc.get("AttributeDefinitions") or []
        }

        indexes: list[SecondaryIndex] = []
        for kind, raw_indexes in (
            ("LSI", desc.get("LocalSecondaryIndexes") or []),
            ("GSI", desc.get("GlobalSecondaryIndexes") or []),
        ):
            for raw in raw_indexes:
                idx_hash, idx_range = _parse_key_schema(raw.get("KeySchema") or [])
                proj_raw = raw.get("Projection") or {}
                projection = Projection(
                    type=str(proj_raw.get("ProjectionType", "ALL")),
                    fields=tuple(proj_raw.get("NonKeyAttributes") or ()),
                )
                throughput = raw.get("ProvisionedThroughput") or {}
                indexes.append(
                    SecondaryIndex(
                        name=str(raw["IndexName"]),
                        type="LSI" if kind == "LSI" else "GSI",
                        hash_key=str(idx_hash),
                        range_key=idx_range,
                        projection=projection,
                        read_capacity=throughput.get("ReadCapacityUnits"),
                        write_capacity=throughput.get("WriteCapacityUnits"),
                    )
                )

        item_count = desc.get("ItemCount")
        return cls(
            name=str(desc["TableName"]),
            hash_key=hash_key,
            range_key=range_key,
            indexes=tuple(indexes),
            attribute_types=attribute_types,
            item_count=int(item_count) if item_count is not None else None,
        )


def _parse_key_schema(key_schema: Sequence[Mapping[str, Any]]) -> tuple[str | None, str | None]:
    hash_key: str | None = None
    range_key: str | None = None
    for element in key_schema:
        if element.get("KeyType") == "HASH":
            hash_key = str(element["AttributeName"])
        elif element.get("KeyType") == "RANGE":
            range_key = str(element["AttributeName"])
    return hash_key, range_key


class SchemaCache:
    """Table schemas keyed by table name, shared by one adapter instance."""

    def __init__(self) -> None:
        self._schemas: dict[str, TableSchema] = {}
        self._lock = threading.Lock()

    def get(self, table_name: str) -> TableSchema | None:
        with self._lock:
            return self._schemas.get(table_name)

    def put(self, schema: TableSchema) -> TableSchema:
        with self._lock:
            self._schemas[schema.name] = schema
        return schema

    def evict(self, table_name: str) -> None:
        with self._lock:
            self._schemas.pop(table_name, None)

    def clear(self) -> None:
        with self._lock:
            self._schemas.clear()

    def __contains__(self, table_name: object) -> bool:
        with self._lock:
            return table_name in self._schemas

    def __len__(self) -> int:
        with self._lock:
            return len(self._schemas)


def build_create_table_request(
    schema: TableSchema,
    *,
    billing_mode: BillingMode = "PROVISIONED",
    read_capacity: int = 100,
    write_capacity: int = 20,
) -> dict[str, Any]:
    if billing_mode not in {"PAY_PER_REQUEST", "PROVISIONED"}:
        raise ValidationError(f"unsupported billing_mode: {billing_mode}")

    attr_types: dict[str, str] = {}

    def register(attribute: str) -> None:
        kind = schema.attribute_types.get(attribute, "S")
        if kind not in KEY_ATTRIBUTE_TYPES:
            raise ValidationError(f"key attribute must be S/N/B: {attribute} (got {kind})")
        attr_types[attribute] = kind

    key_schema = _key_schema(schema.hash_key, schema.range_key)
    for attribute in schema.key_attributes():
        register(attribute)

    provisioned = billing_mode == "PROVISIONED"
    gsis: list[dict[str, Any]] = []
    lsis: list[dict[str, Any]] = []

    for idx in schema.indexes:
        for attribute in idx.key_attributes():
            register(attribute)

        proj: dict[str, Any] = {"ProjectionType": idx.projection.type}
        if idx.projection.type == "INCLUDE" and idx.projection.fields:
            proj["NonKeyAttributes"] = list(idx.projection.fields)

        out: dict[str, Any] = {
            "IndexName": idx.name,
            "KeySchema": _key_schema(idx.hash_key, idx.range_key),
            "Projection": proj,
        }
        if idx.type == "GSI":
            if provisioned:
                out["ProvisionedThroughput"] = {
                    "ReadCapacityUnits": idx.read_capacity or read_capacity,
                    "WriteCapacityUnits": idx.write_capacity or write_capacity,
                }
            gsis.append(out)
        else:
            lsis.append(out)

    req: dict[str, Any] = {
        "TableName": schema.name,
        "BillingMode": billing_mode,
        "KeySchema": key_schema,
        "AttributeDefinitions": [
            {"AttributeName": name, "AttributeType": attr_types[name]} for name in sorted(attr_types)
        ],
    }
    if provisioned:
        req["ProvisionedThroughput"] = {
            "ReadCapacityUnits": read_capacity,
            "WriteCapacityUnits": write_capacity,
        }
    if gsis:
        req["GlobalSecondaryIndexes"] = gsis
    if lsis:
        req["LocalSecondaryIndexes"] = lsis

    return req


def _key_schema(hash_key: str, range_key: str | None) -> list[dict[str, str]]:
    out = [{"AttributeName": hash_key, "KeyType": "HASH"}]
    if range_key is not None:
        out.append({"AttributeName": range_key, "KeyType": "RANGE"})
    return out

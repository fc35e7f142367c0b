from __future__ import annotations

import json as jsonlib
from collections.abc import Callable, Mapping, Sequence
from dataclasses import MISSING, dataclass, field, fields, is_dataclass
from decimal import Decimal
from typing import Any, Protocol, Union, cast, get_args, get_origin, get_type_hints

from .errors import ValidationError
from .schema import Projection, SecondaryIndex, TableSchema

type Dumper = Callable[[str, Any], Any]


class ModelDefinitionError(ValueError):
    pass


class AttributeConverter(Protocol):
    def to_dynamodb(self, value: Any) -> Any: ...

    def from_dynamodb(self, value: Any) -> Any: ...


@dataclass(frozen=True)
class AttributeOptions:
    name: str
    set: bool = False
    json: bool = False
    binary: bool = False
    converter: AttributeConverter | None = None
    of: AttributeOptions | None = None

    def element_options(self) -> AttributeOptions:
        """Options used for a single element of a set or list attribute."""
        if self.of is not None:
            return self.of
        return AttributeOptions(name=self.name)


class AttributeCodec(Protocol):
    def dump(self, value: Any, options: AttributeOptions) -> Any: ...

    def undump(self, value: Any, options: AttributeOptions) -> Any: ...


class DefaultCodec:
    """Converter, JSON and set handling; everything else passes through to the wire serializer."""

    def dump(self, value: Any, options: AttributeOptions) -> Any:
        if value is None:
            return None
        if options.converter is not None:
            value = options.converter.to_dynamodb(value)
        if options.set and isinstance(value, (set, frozenset)) and len(value) == 0:
            return None
        if options.json:
            return jsonlib.dumps(value, separators=(",", ":"), sort_keys=True)
        return to_wire_number(value)

    def undump(self, value: Any, options: AttributeOptions) -> Any:
        if value is None:
            return None
        if options.json and isinstance(value, str):
            value = jsonlib.loads(value)
        if options.converter is not None:
            value = options.converter.from_dynamodb(value)
        return value


def to_wire_number(value: Any) -> Any:
    # boto3's TypeSerializer rejects float; route floats through their repr.
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, (set, frozenset)) and any(isinstance(v, float) for v in value):
        return {Decimal(str(v)) if isinstance(v, float) else v for v in value}
    if isinstance(value, list):
        return [to_wire_number(v) for v in value]
    if isinstance(value, tuple):
        return [to_wire_number(v) for v in value]
    if isinstance(value, dict):
        return {k: to_wire_number(v) for k, v in value.items()}
    return value


def make_dumper(
    attributes: Mapping[str, AttributeOptions] | None,
    codec: AttributeCodec | None = None,
) -> Dumper:
    """Bind attribute options and a codec into a ``dump(attribute, value)`` callable."""
    resolved_codec = codec or DefaultCodec()
    known = dict(attributes or {})

    def dump(attribute: str, value: Any) -> Any:
        options = known.get(attribute) or AttributeOptions(name=attribute)
        return resolved_codec.dump(value, options)

    return dump


def make_element_dumper(
    attributes: Mapping[str, AttributeOptions] | None,
    codec: AttributeCodec | None = None,
) -> Dumper:
    resolved_codec = codec or DefaultCodec()
    known = dict(attributes or {})

    def dump(attribute: str, value: Any) -> Any:
        options = known.get(attribute) or AttributeOptions(name=attribute)
        return resolved_codec.dump(value, options.element_options())

    return dump


@dataclass(frozen=True)
class IndexSpec:
    name: str
    type: str
    hash_key: str
    range_key: str | None = None
    projection: Projection = field(default_factory=Projection.all)
    read_capacity: int | None = None
    write_capacity: int | None = None


def dynadapter_field(
    *,
    name: str | None = None,
    roles: Sequence[str] | None = None,
    set_: bool = False,
    json: bool = False,
    binary: bool = False,
    converter: AttributeConverter | None = None,
    element_converter: AttributeConverter | None = None,
    ignore: bool = False,
    default: Any = MISSING,
    default_factory: Any = MISSING,
) -> Any:
    if default is not MISSING and default_factory is not MISSING:
        raise ValueError("dynadapter_field: cannot set both default and default_factory")

    opts: dict[str, Any] = {
        "set": set_,
        "json": json,
        "binary": binary,
        "converter": converter,
        "element_converter": element_converter,
        "ignore": ignore,
    }
    if name is not None:
        opts["name"] = name
    if roles is not None:
        opts["roles"] = list(roles)

    return field(default=default, default_factory=default_factory, metadata={"dynadapter": opts})


def gsi(
    name: str,
    *,
    hash_key: str,
    range_key: str | None = None,
    projection: Projection | None = None,
    read_capacity: int | None = None,
    write_capacity: int | None = None,
) -> IndexSpec:
    return IndexSpec(
        name=name,
        type="GSI",
        hash_key=hash_key,
        range_key=range_key,
        projection=projection or Projection.all(),
        read_capacity=read_capacity,
        write_capacity=write_capacity,
    )


def lsi(name: str, *, range_key: str, projection: Projection | None = None) -> IndexSpec:
    return IndexSpec(
        name=name,
        type="LSI",
        hash_key="__TABLE_HASH_KEY__",
        range_key=range_key,
        projection=projection or Projection.all(),
    )


@dataclass(frozen=True)
class ModelDefinition[T]:
    model_type: type[T]
    schema: TableSchema
    python_names: Mapping[str, str]
    attributes: Mapping[str, AttributeOptions]
    codec: AttributeCodec

    @classmethod
    def from_dataclass(
        cls,
        model_type: type[T],
        *,
        table_name: str,
        indexes: Sequence[IndexSpec] = (),
        codec: AttributeCodec | None = None,
    ) -> ModelDefinition[T]:
        if not is_dataclass(model_type):
            raise ModelDefinitionError("model_type must be a dataclass")

        attributes: dict[str, AttributeOptions] = {}
        python_names: dict[str, str] = {}
        hash_fields: list[str] = []
        range_fields: list[str] = []

        for dc_field in fields(model_type):
            opts = cast(dict[str, Any], dc_field.metadata.get("dynadapter", {}))
            if opts.get("ignore", False):
                continue

            attribute_name = cast(str, opts.get("name", dc_field.name))
            roles = tuple(cast(list[str], opts.get("roles", [])))
            if "hash_key" in roles:
                hash_fields.append(attribute_name)
            if "range_key" in roles:
                range_fields.append(attribute_name)

            element_converter = cast(AttributeConverter | None, opts.get("element_converter"))
            attributes[attribute_name] = AttributeOptions(
                name=attribute_name,
                set=bool(opts.get("set", False)),
                json=bool(opts.get("json", False)),
                binary=bool(opts.get("binary", False)),
                converter=cast(AttributeConverter | None, opts.get("converter")),
                of=(
                    AttributeOptions(name=attribute_name, converter=element_converter)
                    if element_converter is not None
                    else None
                ),
            )
            python_names[attribute_name] = dc_field.name

        if len(hash_fields) != 1:
            raise ModelDefinitionError(
                f"model must define exactly one hash_key field (found {len(hash_fields)})"
            )
        if len(range_fields) > 1:
            raise ModelDefinitionError(
                f"model must define at most one range_key field (found {len(range_fields)})"
            )

        hash_key = hash_fields[0]
        range_key = range_fields[0] if range_fields else None

        resolved: list[SecondaryIndex] = []
        for spec in indexes:
            inherits_hash = spec.type == "LSI" and spec.hash_key == "__TABLE_HASH_KEY__"
            idx_hash = hash_key if inherits_hash else spec.hash_key
            for key in (idx_hash, spec.range_key):
                if key is not None and key not in attributes:
                    raise ModelDefinitionError(f"index {spec.name}: unknown key attribute: {key}")
            resolved.append(
                SecondaryIndex(
                    name=spec.name,
                    type="LSI" if spec.type == "LSI" else "GSI",
                    hash_key=idx_hash,
                    range_key=spec.range_key,
                    projection=spec.projection,
                    read_capacity=spec.read_capacity,
                    write_capacity=spec.write_capacity,
                )
            )

        key_names = {hash_key, *(k for k in [range_key] if k)}
        for idx in resolved:
            key_names.update(idx.key_attributes())

        attribute_types = {
            name: _key_scalar_type(model_type, python_names[name], attributes[name]) for name in key_names
        }

        try:
            schema = TableSchema(
                name=table_name,
                hash_key=hash_key,
                range_key=range_key,
                indexes=tuple(resolved),
                attribute_types=attribute_types,
            )
        except ValidationError as err:
            raise ModelDefinitionError(str(err)) from err

        return cls(
            model_type=model_type,
            schema=schema,
            python_names=python_names,
            attributes=attributes,
            codec=codec or DefaultCodec(),
        )

    def dumper(self) -> Dumper:
        return make_dumper(self.attributes, self.codec)

    def dump(self, attribute: str, value: Any) -> Any:
        return self.codec.dump(value, self._options(attribute))

    def undump(self, attribute: str, value: Any) -> Any:
        return self.codec.undump(value, self._options(attribute))

    def to_item(self, instance: T) -> dict[str, Any]:
        if not is_dataclass(instance):
            raise ValidationError("item must be a dataclass instance")

        out: dict[str, Any] = {}
        for attribute_name, python_name in self.python_names.items():
            out[attribute_name] = self.dump(attribute_name, getattr(instance, python_name))
        return out

    def from_item(self, item: Mapping[str, Any]) -> T:
        hints = _type_hints(self.model_type)
        kwargs: dict[str, Any] = {}
        for attribute_name, python_name in self.python_names.items():
            if attribute_name not in item:
                continue
            raw = self.undump(attribute_name, item[attribute_name])
            kwargs[python_name] = _coerce_value(raw, hints.get(python_name, Any))

        try:
            return self.model_type(**kwargs)
        except TypeError as err:
            raise ValidationError(str(err)) from err

    def _options(self, attribute: str) -> AttributeOptions:
        options = self.attributes.get(attribute)
        if options is None:
            raise ValidationError(f"unknown attribute: {attribute}")
        return options


def _type_hints(model_type: type[Any]) -> dict[str, Any]:
    try:
        return get_type_hints(model_type)
    except Exception:
        return dict(getattr(model_type, "__annotations__", {}))


def _coerce_value(value: Any, annotation: Any) -> Any:
    if value is None:
        return None

    annotation = _unwrap_optional(annotation)
    if annotation is int and isinstance(value, Decimal):
        return int(value)
    if annotation is float and isinstance(value, Decimal):
        return float(value)

    origin = get_origin(annotation)
    if origin is set and isinstance(value, set):
        (elem_type,) = get_args(annotation) or (Any,)
        return {_coerce_value(v, elem_type) for v in value}
    if origin is list and isinstance(value, list):
        (elem_type,) = get_args(annotation) or (Any,)
        return [_coerce_value(v, elem_type) for v in value]

    return value


def _key_scalar_type(model_type: type[Any], python_name: str, options: AttributeOptions) -> str:
    annotation = _unwrap_optional(_type_hints(model_type).get(python_name, Any))

    if options.json:
        return "S"
    if options.binary or annotation in {bytes, bytearray}:
        return "B"
    if annotation is str:
        return "S"
    if annotation in {int, float, Decimal}:
        return "N"
    if options.converter is not None:
        return "S"

    raise ModelDefinitionError(f"key attribute must be S/N/B: {options.name} (got {annotation})")


def _unwrap_optional(annotation: Any) -> Any:
    origin = get_origin(annotation)
    if origin is not Union and type(annotation).__name__ != "UnionType":
        return annotation
    args = get_args(annotation)
    non_none = [a for a in args if a is not type(None)]
    if len(args) == 2 and len(non_none) == 1:
        return non_none[0]
    return annotation

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from typing import Any, Literal, Protocol

from boto3.dynamodb.types import TypeDeserializer
from botocore.exceptions import ClientError

from .aws_errors import map_transaction_error as _map_transaction_error
from .conditions import normalize_conditions
from .errors import (
    MissingHashKeyError,
    MissingRangeKeyError,
    RecordNotFoundError,
    Rollback,
    ValidationError,
)
from .expressions import ExpressionBuilder, serialize_item
from .model import Dumper
from .request_builder import build_key
from .schema import TableSchema
from .update_expression import ItemUpdater

logger = logging.getLogger(__name__)

# TransactWriteItems / TransactGetItems ceiling.
MAX_TRANSACTION_ITEMS = 100

type TransactionState = Literal["registering", "committing", "committed", "failed"]
type Hook = Callable[[Any], None]

REGISTERING: TransactionState = "registering"
COMMITTING: TransactionState = "committing"
COMMITTED: TransactionState = "committed"
FAILED: TransactionState = "failed"


class TransactionContext(Protocol):
    """What actions need from the adapter that registers them."""

    @property
    def client(self) -> Any: ...

    @property
    def store_attribute_with_nil_value(self) -> bool: ...

    def schema_for(self, table: str) -> TableSchema: ...

    def dumper_for(self, table: str) -> Dumper: ...

    def element_dumper_for(self, table: str) -> Dumper: ...

    def prepare_item(self, table: str, item: Mapping[str, Any]) -> dict[str, Any]: ...


class WriteAction:
    """One write registered with a :class:`TransactionWrite`.

    The wire fragment is built in :meth:`on_registration`, so key errors surface
    when the action is added rather than at commit.
    """

    kind = ""

    def __init__(self, table: str, *, on_commit: Hook | None = None, on_rollback: Hook | None = None) -> None:
        self.table = table
        self._commit_hook = on_commit
        self._rollback_hook = on_rollback
        self._aborted = False
        self._request: dict[str, Any] | None = None

    def on_registration(self, ctx: TransactionContext) -> None:
        self._request = self._build(ctx, ctx.schema_for(self.table))

    def abort(self) -> None:
        self._aborted = True

    def aborted(self) -> bool:
        return self._aborted

    def skipped(self) -> bool:
        return False

    def on_commit(self) -> None:
        if self._commit_hook is not None:
            self._commit_hook(self)

    def on_rollback(self) -> None:
        if self._rollback_hook is not None:
            self._rollback_hook(self)

    def action_request(self) -> dict[str, Any]:
        if self._request is None:
            raise ValidationError(f"{type(self).__name__} action is not registered")
        return {self.kind: self._request}

    def _build(self, ctx: TransactionContext, schema: TableSchema) -> dict[str, Any]:
        raise NotImplementedError

    def _builder(self, ctx: TransactionContext) -> ExpressionBuilder:
        return ExpressionBuilder(ctx.dumper_for(self.table), ctx.element_dumper_for(self.table))


def _require_key_attributes(schema: TableSchema, item: Mapping[str, Any]) -> None:
    if item.get(schema.hash_key) is None:
        raise MissingHashKeyError(f"table {schema.name}: missing hash key {schema.hash_key}")
    if schema.range_key is not None and item.get(schema.range_key) is None:
        raise MissingRangeKeyError(f"table {schema.name}: missing range key {schema.range_key}")


def _exists_condition(builder: ExpressionBuilder, schema: TableSchema, function: str) -> str:
    return " AND ".join(f"{function}({builder.name_ref(key)})" for key in schema.key_attributes())


class Put(WriteAction):
    """Unconditional PutItem."""

    kind = "Put"

    def __init__(self, table: str, item: Mapping[str, Any], **hooks: Any) -> None:
        super().__init__(table, **hooks)
        self.item = dict(item)

    def _build(self, ctx: TransactionContext, schema: TableSchema) -> dict[str, Any]:
        _require_key_attributes(schema, self.item)
        prepared = ctx.prepare_item(self.table, self.item)
        return {"TableName": schema.name, "Item": serialize_item(prepared)}


class Create(Put):
    """PutItem that fails the transaction when an item with the same key exists."""

    def _build(self, ctx: TransactionContext, schema: TableSchema) -> dict[str, Any]:
        req = super()._build(ctx, schema)
        builder = ExpressionBuilder()
        req["ConditionExpression"] = _exists_condition(builder, schema, "attribute_not_exists")
        return builder.apply(req)


class _Update(WriteAction):
    kind = "Update"
    require_existing = False

    def __init__(
        self,
        table: str,
        key: Any,
        attributes: Mapping[str, Any] | None = None,
        *,
        add: Mapping[str, Any] | None = None,
        delete: Mapping[str, Any] | None = None,
        remove: Sequence[str] = (),
        **hooks: Any,
    ) -> None:
        super().__init__(table, **hooks)
        self.key = key
        self.attributes = dict(attributes or {})
        self.additions = dict(add or {})
        self.deletions = dict(delete or {})
        self.removals = tuple(remove)

    def skipped(self) -> bool:
        return not (self.attributes or self.additions or self.deletions or self.removals)

    def _build(self, ctx: TransactionContext, schema: TableSchema) -> dict[str, Any]:
        builder = self._builder(ctx)
        key = build_key(schema, self.key, dumper=ctx.dumper_for(self.table))
        if self.skipped():
            return {"TableName": schema.name, "Key": key}

        updater = ItemUpdater(
            builder,
            key_attributes=schema.key_attributes(),
            store_attribute_with_nil_value=ctx.store_attribute_with_nil_value,
        )
        updater.set(self.attributes).add(self.additions).delete(self.deletions).remove(*self.removals)

        req: dict[str, Any] = {"TableName": schema.name, "Key": key, "UpdateExpression": updater.expression()}
        if self.require_existing:
            req["ConditionExpression"] = _exists_condition(builder, schema, "attribute_exists")
        return builder.apply(req)


class Upsert(_Update):
    """UpdateItem that creates the item when it does not exist."""


class UpdateFields(_Update):
    """UpdateItem that fails the transaction when the item does not exist."""

    require_existing = True


class Delete(WriteAction):
    kind = "Delete"

    def __init__(self, table: str, key: Any, **hooks: Any) -> None:
        super().__init__(table, **hooks)
        self.key = key

    def _build(self, ctx: TransactionContext, schema: TableSchema) -> dict[str, Any]:
        key = build_key(schema, self.key, dumper=ctx.dumper_for(self.table))
        return {"TableName": schema.name, "Key": key}


class ConditionCheck(WriteAction):
    """Fails the transaction unless ``conditions`` hold for the item at ``key``.

    ``conditions`` use the ``where`` syntax; without any, the item must exist.
    """

    kind = "ConditionCheck"

    def __init__(
        self,
        table: str,
        key: Any,
        conditions: Mapping[str, Any] | None = None,
        **hooks: Any,
    ) -> None:
        super().__init__(table, **hooks)
        self.key = key
        self.conditions = dict(conditions or {})

    def _build(self, ctx: TransactionContext, schema: TableSchema) -> dict[str, Any]:
        builder = self._builder(ctx)
        if self.conditions:
            expression = builder.conditions(normalize_conditions(self.conditions))
        else:
            expression = _exists_condition(builder, schema, "attribute_exists")
        req = {
            "TableName": schema.name,
            "Key": build_key(schema, self.key, dumper=ctx.dumper_for(self.table)),
            "ConditionExpression": expression,
        }
        return builder.apply(req)


class _Transaction:
    def __init__(self, ctx: TransactionContext) -> None:
        self._ctx = ctx
        self._state: TransactionState = REGISTERING

    @property
    def state(self) -> TransactionState:
        return self._state

    def _ensure_registering(self) -> None:
        if self._state != REGISTERING:
            raise ValidationError(f"transaction is {self._state}")


class TransactionWrite(_Transaction):
    """All-or-nothing TransactWriteItems.

    Actions accumulate while ``registering``; :meth:`commit` drops aborted and
    skipped ones, sends the rest in one call and runs their ``on_commit`` hooks
    in registration order. A failed call runs the ``on_rollback`` hooks of
    the actions it carried and re-raises the mapped error.
    """

    def __init__(self, ctx: TransactionContext) -> None:
        super().__init__(ctx)
        self._actions: list[WriteAction] = []

    @classmethod
    @contextmanager
    def execute(cls, ctx: TransactionContext) -> Iterator[TransactionWrite]:
        """Commit on normal exit; roll back on error. ``Rollback`` is swallowed."""
        txn = cls(ctx)
        try:
            yield txn
        except Rollback:
            txn.rollback()
            return
        except Exception:
            txn.rollback()
            raise
        txn.commit()

    @property
    def actions(self) -> tuple[WriteAction, ...]:
        return tuple(self._actions)

    def register(self, action: WriteAction) -> WriteAction:
        self._ensure_registering()
        action.on_registration(self._ctx)
        self._actions.append(action)
        return action

    def create(self, table: str, item: Mapping[str, Any], **hooks: Any) -> WriteAction:
        return self.register(Create(table, item, **hooks))

    def put(self, table: str, item: Mapping[str, Any], **hooks: Any) -> WriteAction:
        return self.register(Put(table, item, **hooks))

    def upsert(self, table: str, key: Any, attributes: Mapping[str, Any], **kwargs: Any) -> WriteAction:
        return self.register(Upsert(table, key, attributes, **kwargs))

    def update_fields(
        self, table: str, key: Any, attributes: Mapping[str, Any], **kwargs: Any
    ) -> WriteAction:
        return self.register(UpdateFields(table, key, attributes, **kwargs))

    def delete(self, table: str, key: Any, **hooks: Any) -> WriteAction:
        return self.register(Delete(table, key, **hooks))

    def condition_check(
        self, table: str, key: Any, conditions: Mapping[str, Any] | None = None
    ) -> WriteAction:
        return self.register(ConditionCheck(table, key, conditions))

    def commit(self) -> None:
        self._ensure_registering()

        to_commit = self._pending()
        if len(to_commit) > MAX_TRANSACTION_ITEMS:
            raise ValidationError(f"a transaction supports at most {MAX_TRANSACTION_ITEMS} actions")
        if not to_commit:
            self._state = COMMITTED
            return

        self._state = COMMITTING
        logger.debug("transact_write_items: %d action(s)", len(to_commit))
        try:
            self._ctx.client.transact_write_items(TransactItems=[a.action_request() for a in to_commit])
        except ClientError as err:
            self._fail()
            raise _map_transaction_error(err) from err

        self._state = COMMITTED
        for action in to_commit:
            action.on_commit()

    def rollback(self) -> None:
        if self._state in (COMMITTED, FAILED):
            return
        self._fail()

    def _pending(self) -> list[WriteAction]:
        return [a for a in self._actions if not a.aborted() and not a.skipped()]

    def _fail(self) -> None:
        self._state = FAILED
        for action in self._pending():
            action.on_rollback()


class Find:
    """A read registered with :class:`TransactionRead`.

    A list of keys expands to one Get per key and yields a list; any other key
    (hash value, ``(hash, range)`` tuple, mapping) yields a single item.
    """

    def __init__(
        self,
        table: str,
        key: Any,
        *,
        raise_error: bool = True,
        projection: Sequence[str] | None = None,
    ) -> None:
        self.table = table
        self.multiple = isinstance(key, list)
        self.keys: list[Any] = list(key) if self.multiple else [key]
        self.raise_error = raise_error
        self.projection = tuple(projection or ())
        self._requests: list[dict[str, Any]] = []

    def on_registration(self, ctx: TransactionContext) -> None:
        schema = ctx.schema_for(self.table)
        dumper = ctx.dumper_for(self.table)
        self._requests = []
        for key in self.keys:
            get: dict[str, Any] = {"TableName": schema.name, "Key": build_key(schema, key, dumper=dumper)}
            if self.projection:
                builder = ExpressionBuilder()
                get["ProjectionExpression"] = builder.projection(self.projection)
                builder.apply(get)
            self._requests.append({"Get": get})

    def action_request(self) -> list[dict[str, Any]]:
        return list(self._requests)

    def process_responses(self, items: Sequence[dict[str, Any] | None]) -> Any:
        if self.raise_error:
            missing = [key for key, item in zip(self.keys, items, strict=True) if item is None]
            if missing:
                raise RecordNotFoundError(f"couldn't find {self.table} item(s) with key(s): {missing!r}")

        if self.multiple:
            return [item for item in items if item is not None]
        return items[0]


class TransactionRead(_Transaction):
    """Ordered TransactGetItems: results come back per find, in registration order."""

    def __init__(self, ctx: TransactionContext) -> None:
        super().__init__(ctx)
        self._finds: list[Find] = []
        self._deserializer = TypeDeserializer()

    def find(
        self,
        table: str,
        key: Any,
        *,
        raise_error: bool = True,
        projection: Sequence[str] | None = None,
    ) -> Find:
        return self.register(Find(table, key, raise_error=raise_error, projection=projection))

    def register(self, action: Find) -> Find:
        self._ensure_registering()
        action.on_registration(self._ctx)
        self._finds.append(action)
        return action

    def commit(self) -> list[Any]:
        self._ensure_registering()

        requests = [req for find in self._finds for req in find.action_request()]
        if len(requests) > MAX_TRANSACTION_ITEMS:
            raise ValidationError(f"a transaction supports at most {MAX_TRANSACTION_ITEMS} items")
        if not requests:
            self._state = COMMITTED
            return [find.process_responses([]) for find in self._finds]

        self._state = COMMITTING
        logger.debug("transact_get_items: %d item(s)", len(requests))
        try:
            resp = self._ctx.client.transact_get_items(TransactItems=requests)
        except ClientError as err:
            self._state = FAILED
            raise _map_transaction_error(err) from err

        responses = list(resp.get("Responses") or [])
        if len(responses) != len(requests):
            self._state = FAILED
            raise ValidationError(f"expected {len(requests)} responses, got {len(responses)}")
        self._state = COMMITTED

        results: list[Any] = []
        offset = 0
        for find in self._finds:
            chunk = responses[offset : offset + len(find.keys)]
            offset += len(find.keys)
            items = [self._item(r) for r in chunk]
            results.append(find.process_responses(items))
        return results

    def _item(self, response: Mapping[str, Any]) -> dict[str, Any] | None:
        item = response.get("Item")
        if not item:
            return None
        return {k: self._deserializer.deserialize(v) for k, v in item.items()}

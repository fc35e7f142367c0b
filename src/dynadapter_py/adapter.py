from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import AbstractContextManager
from typing import Any

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError

from .aws_errors import error_code
from .aws_errors import map_client_error as _map_client_error
from .backoff import Sleep
from .batch import (
    BatchGetCallback,
    BatchGetItem,
    BatchWriteCallback,
    BatchWriteItem,
    delete_requests,
    put_requests,
)
from .batch import batch_delete as _batch_delete
from .conditions import WhereConditions
from .config import AdapterConfig
from .criteria import Criteria
from .errors import ValidationError
from .expressions import ExpressionBuilder, serialize_item
from .instrumentation import AwsCallMetric
from .model import Dumper, ModelDefinition, make_dumper, make_element_dumper
from .pagination import Paginator
from .planner import KeyFieldsDecision, detect_key_fields
from .request_builder import Select, build_key, build_query_request, build_scan_request
from .schema import BillingMode, SchemaCache, TableSchema, build_create_table_request
from .transaction import Find, TransactionRead, TransactionWrite, WriteAction
from .update_expression import ItemUpdater

logger = logging.getLogger(__name__)

type Conditions = WhereConditions | Mapping[str, Any] | None

_CREATING = "CREATING"
_DELETING = "DELETING"


def _where(conditions: Conditions) -> WhereConditions:
    if isinstance(conditions, WhereConditions):
        return conditions
    where = WhereConditions()
    if conditions:
        where.update_with_mapping(conditions)
    return where


def _blank(value: Any) -> bool:
    return isinstance(value, (str, set, frozenset)) and len(value) == 0


class Adapter:
    """Query planning and execution over a low-level DynamoDB client.

    Table arguments are logical names; the configured ``namespace`` prefix is
    applied before any wire call. Schemas come from :meth:`register_model` /
    :meth:`register_schema` or are loaded with DescribeTable on first use and
    cached until evicted.
    """

    def __init__(
        self,
        client: Any | None = None,
        *,
        config: AdapterConfig | None = None,
        schema_cache: SchemaCache | None = None,
        metrics: Callable[[AwsCallMetric], None] | None = None,
        sleep: Sleep = time.sleep,
    ) -> None:
        self._config = config or AdapterConfig()
        self._client: Any = client if client is not None else self._config.create_client(metrics=metrics)
        self._schemas = schema_cache or SchemaCache()
        self._dumpers: dict[str, tuple[Dumper, Dumper]] = {}
        self._sleep = sleep
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    @property
    def config(self) -> AdapterConfig:
        return self._config

    @property
    def client(self) -> Any:
        return self._client

    @property
    def store_attribute_with_nil_value(self) -> bool:
        return self._config.store_attribute_with_nil_value

    def table_name(self, table: str) -> str:
        return self._config.table_name(table)

    # Schemas

    def register_model(self, definition: ModelDefinition[Any]) -> TableSchema:
        name = self.table_name(definition.schema.name)
        self._dumpers[name] = (
            definition.dumper(),
            make_element_dumper(definition.attributes, definition.codec),
        )
        return self._schemas.put(definition.schema.with_name(name))

    def register_schema(self, schema: TableSchema) -> TableSchema:
        return self._schemas.put(schema.with_name(self.table_name(schema.name)))

    def schema_for(self, table: str) -> TableSchema:
        return self.describe_table(table)

    def describe_table(self, table: str, *, reload: bool = False) -> TableSchema:
        name = self.table_name(table)
        if not reload:
            cached = self._schemas.get(name)
            if cached is not None:
                return cached

        try:
            resp = self._client.describe_table(TableName=name)
        except ClientError as err:
            raise _map_client_error(err) from err
        return self._schemas.put(TableSchema.from_description(resp))

    def evict(self, table: str) -> None:
        self._schemas.evict(self.table_name(table))

    def clear_schema_cache(self) -> None:
        self._schemas.clear()

    def dumper_for(self, table: str) -> Dumper:
        pair = self._dumpers.get(self.table_name(table))
        return pair[0] if pair is not None else make_dumper(None)

    def element_dumper_for(self, table: str) -> Dumper:
        pair = self._dumpers.get(self.table_name(table))
        return pair[1] if pair is not None else make_element_dumper(None)

    def prepare_item(self, table: str, item: Mapping[str, Any]) -> dict[str, Any]:
        """Dump every attribute and drop the ones DynamoDB would reject or store as NULL."""
        dump = self.dumper_for(table)
        out: dict[str, Any] = {}
        for attribute, value in item.items():
            if _blank(value):
                continue
            dumped = dump(attribute, value) if value is not None else None
            if _blank(dumped):
                continue
            if dumped is None and not self.store_attribute_with_nil_value:
                continue
            out[str(attribute)] = dumped
        return out

    def key_fields(
        self,
        table: str,
        conditions: Conditions,
        *,
        index_name: str | None = None,
        projection: Sequence[str] | None = None,
    ) -> KeyFieldsDecision:
        return detect_key_fields(
            _where(conditions).triples,
            self.schema_for(table),
            with_index=index_name,
            projection=projection,
        )

    # Query / Scan

    def where(
        self,
        table: str,
        conditions: Mapping[str, Any] | str | None = None,
        values: Mapping[str, Any] | None = None,
        /,
        **kwargs: Any,
    ) -> Criteria:
        return Criteria(self, table).where(conditions, values, **kwargs)

    def criteria(self, table: str) -> Criteria:
        return Criteria(self, table)

    def execute_query(
        self,
        table: str,
        conditions: Conditions,
        *,
        index_name: str | None = None,
        projection: Sequence[str] | None = None,
        consistent_read: bool = False,
        scan_index_forward: bool = True,
        record_limit: int | None = None,
        scan_limit: int | None = None,
        batch_size: int | None = None,
        exclusive_start_key: Mapping[str, Any] | None = None,
        select: Select | None = None,
    ) -> Paginator:
        schema = self.schema_for(table)
        where = _where(conditions)
        decision = detect_key_fields(where.triples, schema, with_index=index_name, projection=projection)
        req = build_query_request(
            schema,
            where,
            decision,
            dumper=self.dumper_for(table),
            element_dumper=self.element_dumper_for(table),
            projection=projection,
            consistent_read=consistent_read,
            scan_index_forward=scan_index_forward,
            select=select,
            exclusive_start_key=exclusive_start_key,
        )
        return self._paginator(self._client.query, req, record_limit, scan_limit, batch_size)

    def execute_scan(
        self,
        table: str,
        conditions: Conditions = None,
        *,
        index_name: str | None = None,
        projection: Sequence[str] | None = None,
        consistent_read: bool = False,
        record_limit: int | None = None,
        scan_limit: int | None = None,
        batch_size: int | None = None,
        exclusive_start_key: Mapping[str, Any] | None = None,
        select: Select | None = None,
        segment: int | None = None,
        total_segments: int | None = None,
    ) -> Paginator:
        schema = self.schema_for(table)
        req = build_scan_request(
            schema,
            _where(conditions),
            index_name=index_name,
            dumper=self.dumper_for(table),
            element_dumper=self.element_dumper_for(table),
            projection=projection,
            consistent_read=consistent_read,
            select=select,
            exclusive_start_key=exclusive_start_key,
            segment=segment,
            total_segments=total_segments,
        )
        return self._paginator(self._client.scan, req, record_limit, scan_limit, batch_size)

    def query_count(self, table: str, conditions: Conditions, **options: Any) -> int:
        paginator = self.execute_query(table, conditions, select="COUNT", **options)
        return sum(page.count for page in paginator)

    def scan_count(self, table: str, conditions: Conditions = None, **options: Any) -> int:
        paginator = self.execute_scan(table, conditions, select="COUNT", **options)
        return sum(page.count for page in paginator)

    def _paginator(
        self,
        call: Callable[..., Mapping[str, Any]],
        req: dict[str, Any],
        record_limit: int | None,
        scan_limit: int | None,
        batch_size: int | None,
    ) -> Paginator:
        return Paginator(
            call,
            req,
            record_limit=record_limit,
            scan_limit=scan_limit,
            batch_size=batch_size,
            backoff=self._config.build_backoff(sleep=self._sleep),
            max_throttle_retries=self._config.max_throttle_retries,
            deserializer=self._deserializer,
        )

    # Batch

    def batch_get(
        self,
        keys: Mapping[str, Sequence[Any]],
        *,
        consistent_read: bool = False,
        projection: Mapping[str, Sequence[str]] | None = None,
        callback: BatchGetCallback | None = None,
    ) -> dict[str, list[dict[str, Any]]] | None:
        """Fetch items by key from one or more tables.

        Results are keyed by the logical table names passed in. With a
        ``callback`` nothing is returned; it receives each call's items and
        whether the service left keys unprocessed.
        """
        names = {self.table_name(table): table for table in keys}
        op = BatchGetItem(
            self._client,
            {name: self.schema_for(table) for name, table in names.items()},
            {self.table_name(table): table_keys for table, table_keys in keys.items()},
            consistent_read=consistent_read,
            projection={self.table_name(t): p for t, p in (projection or {}).items()},
            dumpers={name: self.dumper_for(table) for name, table in names.items()},
            chunk_size=self._config.batch_get_size,
            max_retries=self._config.batch_max_retries,
            backoff=self._config.build_backoff(sleep=self._sleep),
        )

        if callback is not None:

            def relay(items: dict[str, list[dict[str, Any]]], has_unprocessed: bool) -> None:
                callback({names.get(name, name): found for name, found in items.items()}, has_unprocessed)

            op.call(relay)
            return None

        results = op.call() or {}
        return {names.get(name, name): found for name, found in results.items()}

    def batch_write(
        self,
        table: str,
        items: Sequence[Mapping[str, Any]],
        *,
        callback: BatchWriteCallback | None = None,
    ) -> None:
        schema = self.schema_for(table)
        prepared = [self.prepare_item(table, item) for item in items]
        for item in prepared:
            build_key(schema, item)
        BatchWriteItem(
            self._client,
            schema.name,
            put_requests(prepared, self._serializer),
            chunk_size=self._config.batch_write_size,
            max_retries=self._config.batch_max_retries,
            backoff=self._config.build_backoff(sleep=self._sleep),
        ).call(callback)

    def batch_delete(
        self,
        keys: Mapping[str, Sequence[Any]],
        *,
        callback: BatchWriteCallback | None = None,
    ) -> None:
        _batch_delete(
            self._client,
            {self.table_name(table): self.schema_for(table) for table in keys},
            {self.table_name(table): table_keys for table, table_keys in keys.items()},
            dumpers={self.table_name(table): self.dumper_for(table) for table in keys},
            chunk_size=self._config.batch_write_size,
            max_retries=self._config.batch_max_retries,
            backoff=self._config.build_backoff(sleep=self._sleep),
            callback=callback,
        )

    # Transactions

    def transaction(self) -> AbstractContextManager[TransactionWrite]:
        """``with adapter.transaction() as txn:`` commits on exit."""
        return TransactionWrite.execute(self)

    def transact_write(self, actions: Sequence[WriteAction]) -> None:
        txn = TransactionWrite(self)
        for action in actions:
            txn.register(action)
        txn.commit()

    def transact_read(self, finds: Sequence[Find]) -> list[Any]:
        txn = TransactionRead(self)
        for find in finds:
            txn.register(find)
        return txn.commit()

    # Single items

    def get_item(
        self,
        table: str,
        key: Any,
        *,
        consistent_read: bool = False,
        projection: Sequence[str] | None = None,
    ) -> dict[str, Any] | None:
        schema = self.schema_for(table)
        req: dict[str, Any] = {
            "TableName": schema.name,
            "Key": build_key(schema, key, dumper=self.dumper_for(table), serializer=self._serializer),
            "ConsistentRead": consistent_read,
        }
        if projection:
            builder = ExpressionBuilder()
            req["ProjectionExpression"] = builder.projection(projection)
            builder.apply(req)

        try:
            resp = self._client.get_item(**req)
        except ClientError as err:
            raise _map_client_error(err) from err

        item = resp.get("Item")
        if not item:
            return None
        return self._deserialize(item)

    def put_item(
        self,
        table: str,
        item: Mapping[str, Any],
        *,
        conditions: Mapping[str, Any] | None = None,
    ) -> None:
        """PutItem. ``conditions`` accepts ``if``, ``if_exists`` and ``unless_exists``."""
        schema = self.schema_for(table)
        prepared = self.prepare_item(table, item)
        build_key(schema, prepared)

        builder = self._builder(table)
        req: dict[str, Any] = {
            "TableName": schema.name,
            "Item": serialize_item(prepared, self._serializer),
        }
        self._apply_write_conditions(req, builder, conditions)

        try:
            self._client.put_item(**builder.apply(req))
        except ClientError as err:
            raise _map_client_error(err) from err

    def update_item(
        self,
        table: str,
        key: Any,
        attributes: Mapping[str, Any] | None = None,
        *,
        add: Mapping[str, Any] | None = None,
        delete: Mapping[str, Any] | None = None,
        remove: Sequence[str] = (),
        conditions: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        """UpdateItem returning the item's new attributes."""
        schema = self.schema_for(table)
        builder = self._builder(table)
        updater = ItemUpdater(
            builder,
            key_attributes=schema.key_attributes(),
            store_attribute_with_nil_value=self.store_attribute_with_nil_value,
        )
        updater.set(attributes or {}).add(add or {}).delete(delete or {}).remove(*remove)

        req: dict[str, Any] = {
            "TableName": schema.name,
            "Key": build_key(schema, key, dumper=self.dumper_for(table), serializer=self._serializer),
            "UpdateExpression": updater.expression(),
            "ReturnValues": "ALL_NEW",
        }
        self._apply_write_conditions(req, builder, conditions)

        try:
            resp = self._client.update_item(**builder.apply(req))
        except ClientError as err:
            raise _map_client_error(err) from err
        return self._deserialize(resp.get("Attributes") or {})

    def delete_item(
        self,
        table: str,
        key: Any,
        *,
        conditions: Mapping[str, Any] | None = None,
    ) -> None:
        schema = self.schema_for(table)
        builder = self._builder(table)
        req: dict[str, Any] = {
            "TableName": schema.name,
            "Key": build_key(schema, key, dumper=self.dumper_for(table), serializer=self._serializer),
        }
        self._apply_write_conditions(req, builder, conditions)

        try:
            self._client.delete_item(**builder.apply(req))
        except ClientError as err:
            raise _map_client_error(err) from err

    def _builder(self, table: str) -> ExpressionBuilder:
        return ExpressionBuilder(
            self.dumper_for(table),
            self.element_dumper_for(table),
            serializer=self._serializer,
        )

    def _apply_write_conditions(
        self,
        req: dict[str, Any],
        builder: ExpressionBuilder,
        conditions: Mapping[str, Any] | None,
    ) -> None:
        if not conditions:
            return

        unknown = set(conditions) - {"if", "if_exists", "unless_exists"}
        if unknown:
            raise ValidationError(f"unsupported write conditions: {sorted(unknown)}")

        parts: list[str] = []
        for attribute in conditions.get("unless_exists") or ():
            parts.append(f"attribute_not_exists({builder.name_ref(attribute)})")
        for attribute, value in (conditions.get("if_exists") or {}).items():
            name = builder.name_ref(attribute)
            parts.append(f"attribute_exists({name}) AND {name} = {builder.value_ref(attribute, value)}")
        for attribute, value in (conditions.get("if") or {}).items():
            parts.append(f"{builder.name_ref(attribute)} = {builder.value_ref(attribute, value)}")

        if parts:
            req["ConditionExpression"] = " AND ".join(parts)

    # PartiQL

    def execute(
        self,
        statement: str,
        parameters: Sequence[Any] = (),
        *,
        consistent_read: bool = False,
    ) -> Iterable[dict[str, Any]]:
        """Run a PartiQL statement.

        The first request is sent before returning, so writes take effect and
        fail here. A single response comes back as a list; when the service
        returns a ``NextToken`` the remaining pages are fetched lazily.
        """
        req: dict[str, Any] = {"Statement": statement, "ConsistentRead": consistent_read}
        if parameters:
            builder = ExpressionBuilder(serializer=self._serializer)
            req["Parameters"] = [builder.serialize(p) for p in parameters]

        resp = self._execute_statement(req)
        items = [self._deserialize(item) for item in resp.get("Items") or []]
        token = resp.get("NextToken")
        if not token:
            return items
        return self._follow_statement(req, items, token)

    def _follow_statement(
        self, req: dict[str, Any], items: list[dict[str, Any]], token: str
    ) -> Iterator[dict[str, Any]]:
        yield from items
        while token:
            resp = self._execute_statement({**req, "NextToken": token})
            for item in resp.get("Items") or []:
                yield self._deserialize(item)
            token = resp.get("NextToken")

    def _execute_statement(self, req: dict[str, Any]) -> Mapping[str, Any]:
        try:
            return self._client.execute_statement(**req)
        except ClientError as err:
            raise _map_client_error(err) from err

    # Tables

    def create_table(
        self,
        schema: TableSchema,
        *,
        billing_mode: BillingMode = "PROVISIONED",
        read_capacity: int | None = None,
        write_capacity: int | None = None,
        sync: bool = False,
    ) -> bool:
        """Create the table; ``False`` when it already exists."""
        schema = schema.with_name(self.table_name(schema.name))
        req = build_create_table_request(
            schema,
            billing_mode=billing_mode,
            read_capacity=read_capacity or self._config.read_capacity,
            write_capacity=write_capacity or self._config.write_capacity,
        )

        logger.info("creating table %s", schema.name)
        try:
            resp = self._client.create_table(**req)
        except ClientError as err:
            if error_code(err) == "ResourceInUseException":
                logger.error("table %s cannot be created as it already exists", schema.name)
                return False
            raise _map_client_error(err) from err

        self._schemas.put(schema)
        status = (resp.get("TableDescription") or {}).get("TableStatus")
        if sync and status == _CREATING:
            self._wait_past_status(schema.name, _CREATING)
        return True

    def delete_table(self, table: str, *, sync: bool = False) -> None:
        name = self.table_name(table)
        logger.info("deleting table %s", name)
        try:
            resp = self._client.delete_table(TableName=name)
        except ClientError as err:
            if error_code(err) == "ResourceInUseException":
                logger.error("table %s cannot be deleted as it is in use", name)
            raise _map_client_error(err) from err
        finally:
            self._schemas.evict(name)

        status = (resp.get("TableDescription") or {}).get("TableStatus")
        if sync and status == _DELETING:
            self._wait_past_status(name, _DELETING)

    def list_tables(self) -> list[str]:
        out: list[str] = []
        req: dict[str, Any] = {}
        while True:
            try:
                resp = self._client.list_tables(**req)
            except ClientError as err:
                raise _map_client_error(err) from err
            out.extend(resp.get("TableNames") or [])
            last = resp.get("LastEvaluatedTableName")
            if not last:
                return out
            req["ExclusiveStartTableName"] = last

    def update_time_to_live(self, table: str, attribute: str) -> None:
        try:
            self._client.update_time_to_live(
                TableName=self.table_name(table),
                TimeToLiveSpecification={"AttributeName": attribute, "Enabled": True},
            )
        except ClientError as err:
            raise _map_client_error(err) from err

    def truncate(self, table: str) -> None:
        """Delete every item: scan the keys, then batch delete them."""
        schema = self.schema_for(table)
        keys: list[Any] = []
        for item in self.execute_scan(table, projection=schema.key_attributes()).items():
            if schema.range_key is None:
                keys.append(item[schema.hash_key])
            else:
                keys.append((item[schema.hash_key], item[schema.range_key]))
        if not keys:
            return
        # Scanned keys are already in stored form; skip the model dumper.
        BatchWriteItem(
            self._client,
            schema.name,
            delete_requests(schema, keys, serializer=self._serializer),
            chunk_size=self._config.batch_write_size,
            max_retries=self._config.batch_max_retries,
            backoff=self._config.build_backoff(sleep=self._sleep),
            operation="truncate",
        ).call()

    def count(self, table: str) -> int:
        """Approximate item count from DescribeTable (refreshed roughly every six hours by the service)."""
        return self.describe_table(table, reload=True).item_count or 0

    def _wait_past_status(self, name: str, status: str) -> None:
        checks = 0
        while checks < self._config.sync_retry_max_times:
            self._sleep(self._config.sync_retry_wait_seconds)
            checks += 1
            try:
                resp = self._client.describe_table(TableName=name)
            except ClientError as err:
                if error_code(err) != "ResourceNotFoundException":
                    raise _map_client_error(err) from err
                if status == _DELETING:
                    logger.info("table %s is gone (check %d)", name, checks)
                    return
                logger.info("waiting on table metadata for %s (check %d)", name, checks)
                continue

            current = (resp.get("Table") or {}).get("TableStatus")
            logger.info("table %s status %s (check %d)", name, current, checks)
            if current != status:
                if status == _CREATING:
                    self._schemas.put(TableSchema.from_description(resp))
                return

        raise ValidationError(f"table {name} still {status} after {checks} checks")

    def _deserialize(self, item: Mapping[str, Any]) -> dict[str, Any]:
        return {k: self._deserializer.deserialize(v) for k, v in item.items()}

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from boto3.dynamodb.types import TypeDeserializer, TypeSerializer
from botocore.exceptions import ClientError

from .aws_errors import map_client_error as _map_client_error
from .backoff import Backoff
from .errors import BatchRetryExceededError, ValidationError
from .expressions import ExpressionBuilder, serialize_item
from .model import Dumper
from .request_builder import build_key
from .schema import TableSchema

logger = logging.getLogger(__name__)

# Service ceilings per call.
BATCH_GET_LIMIT = 100
BATCH_WRITE_LIMIT = 25

type Item = dict[str, Any]
type BatchGetCallback = Callable[[dict[str, list[Item]], bool], None]
type BatchWriteCallback = Callable[[bool], None]


def _chunked[T](items: Sequence[T], size: int) -> Sequence[Sequence[T]]:
    if size <= 0:
        raise ValueError("size must be > 0")
    return [items[i : i + size] for i in range(0, len(items), size)]


class _Reissue:
    """Counts reissues of unprocessed work and applies the backoff before each one."""

    def __init__(self, operation: str, max_retries: int | None, backoff: Backoff | None) -> None:
        if max_retries is not None and max_retries < 0:
            raise ValidationError("max_retries must be >= 0")
        self._operation = operation
        self._max_retries = max_retries
        self._backoff = backoff
        self.count = 0

    def __call__(self, unprocessed: int) -> None:
        if self._max_retries is not None and self.count >= self._max_retries:
            raise BatchRetryExceededError(operation=self._operation, unprocessed_count=unprocessed)
        self.count += 1
        logger.warning(
            "%s: reissuing %d unprocessed request(s) (attempt %d)", self._operation, unprocessed, self.count
        )
        if self._backoff is not None:
            self._backoff()


class BatchGetItem:
    """BatchGetItem over one or more tables.

    ``keys`` maps a table name to hash values (or ``(hash, range)`` tuples for
    composite tables). Keys are sent ``chunk_size`` at a time per table, and
    keys the service leaves unprocessed go back on that table's queue.
    """

    def __init__(
        self,
        client: Any,
        tables: Mapping[str, TableSchema],
        keys: Mapping[str, Sequence[Any]],
        *,
        consistent_read: bool = False,
        projection: Mapping[str, Sequence[str]] | None = None,
        dumpers: Mapping[str, Dumper] | None = None,
        chunk_size: int = BATCH_GET_LIMIT,
        max_retries: int | None = None,
        backoff: Backoff | None = None,
    ) -> None:
        if chunk_size <= 0 or chunk_size > BATCH_GET_LIMIT:
            raise ValidationError(f"chunk_size must be between 1 and {BATCH_GET_LIMIT}")
        for table_name in keys:
            if table_name not in tables:
                raise ValidationError(f"no schema for table: {table_name}")

        self._client = client
        self._tables = tables
        self._keys = keys
        self._consistent_read = consistent_read
        self._projection = projection or {}
        self._dumpers = dumpers or {}
        self._chunk_size = chunk_size
        self._max_retries = max_retries
        self._backoff = backoff
        self._serializer = TypeSerializer()
        self._deserializer = TypeDeserializer()

    def call(self, callback: BatchGetCallback | None = None) -> dict[str, list[Item]] | None:
        results: dict[str, list[Item]] = {}
        reissue = _Reissue("batch_get", self._max_retries, self._backoff)

        for table_name, table_keys in self._keys.items():
            results.setdefault(table_name, [])
            schema = self._tables[table_name]
            dumper = self._dumpers.get(table_name)
            pending = [
                build_key(schema, key, dumper=dumper, serializer=self._serializer) for key in table_keys
            ]

            while pending:
                batch, pending = pending[: self._chunk_size], pending[self._chunk_size :]
                resp = self._issue(table_name, batch)

                grouped = {
                    name: [self._deserialize(item) for item in items]
                    for name, items in (resp.get("Responses") or {}).items()
                }
                left = (resp.get("UnprocessedKeys") or {}).get(table_name) or {}
                unprocessed = list(left.get("Keys") or [])

                if callback is not None:
                    callback(grouped, bool(unprocessed))
                else:
                    for name, items in grouped.items():
                        results.setdefault(name, []).extend(items)

                if unprocessed:
                    reissue(len(unprocessed))
                    pending.extend(unprocessed)

        if callback is not None:
            return None
        return results

    def _issue(self, table_name: str, keys: list[Item]) -> Mapping[str, Any]:
        request: dict[str, Any] = {"Keys": keys, "ConsistentRead": self._consistent_read}
        projection = self._projection.get(table_name)
        if projection:
            builder = ExpressionBuilder()
            request["ProjectionExpression"] = builder.projection(projection)
            request["ExpressionAttributeNames"] = builder.names
        try:
            return self._client.batch_get_item(RequestItems={table_name: request})
        except ClientError as err:
            raise _map_client_error(err) from err

    def _deserialize(self, item: Mapping[str, Any]) -> Item:
        return {k: self._deserializer.deserialize(v) for k, v in item.items()}


class BatchWriteItem:
    """BatchWriteItem for one table: ``PutRequest``/``DeleteRequest`` entries in chunks of 25.

    Each chunk is reissued with whatever the service reports as unprocessed
    until nothing remains.
    """

    def __init__(
        self,
        client: Any,
        table_name: str,
        requests: Sequence[Mapping[str, Any]],
        *,
        chunk_size: int = BATCH_WRITE_LIMIT,
        max_retries: int | None = None,
        backoff: Backoff | None = None,
        operation: str = "batch_write",
    ) -> None:
        if chunk_size <= 0 or chunk_size > BATCH_WRITE_LIMIT:
            raise ValidationError(f"chunk_size must be between 1 and {BATCH_WRITE_LIMIT}")
        self._client = client
        self._table_name = table_name
        self._requests = list(requests)
        self._chunk_size = chunk_size
        self._max_retries = max_retries
        self._backoff = backoff
        self._operation = operation

    def call(self, callback: BatchWriteCallback | None = None) -> None:
        reissue = _Reissue(self._operation, self._max_retries, self._backoff)

        for chunk in _chunked(self._requests, self._chunk_size):
            pending: list[Any] = list(chunk)
            while pending:
                try:
                    resp = self._client.batch_write_item(RequestItems={self._table_name: pending})
                except ClientError as err:
                    raise _map_client_error(err) from err

                pending = list((resp.get("UnprocessedItems") or {}).get(self._table_name) or [])
                if callback is not None:
                    callback(bool(pending))
                if pending:
                    reissue(len(pending))


def put_requests(items: Sequence[Mapping[str, Any]], serializer: TypeSerializer | None = None) -> list[Item]:
    """``PutRequest`` entries for already-dumped items."""
    ser = serializer or TypeSerializer()
    return [{"PutRequest": {"Item": serialize_item(item, ser)}} for item in items]


def delete_requests(
    schema: TableSchema,
    keys: Sequence[Any],
    *,
    dumper: Dumper | None = None,
    serializer: TypeSerializer | None = None,
) -> list[Item]:
    ser = serializer or TypeSerializer()
    return [{"DeleteRequest": {"Key": build_key(schema, key, dumper=dumper, serializer=ser)}} for key in keys]


def batch_delete(
    client: Any,
    tables: Mapping[str, TableSchema],
    keys: Mapping[str, Sequence[Any]],
    *,
    dumpers: Mapping[str, Dumper] | None = None,
    chunk_size: int = BATCH_WRITE_LIMIT,
    max_retries: int | None = None,
    backoff: Backoff | None = None,
    callback: BatchWriteCallback | None = None,
) -> None:
    for table_name, table_keys in keys.items():
        schema = tables.get(table_name)
        if schema is None:
            raise ValidationError(f"no schema for table: {table_name}")
        requests = delete_requests(schema, table_keys, dumper=(dumpers or {}).get(table_name))
        BatchWriteItem(
            client,
            table_name,
            requests,
            chunk_size=chunk_size,
            max_retries=max_retries,
            backoff=backoff,
            operation="batch_delete",
        ).call(callback)

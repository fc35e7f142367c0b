from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

# Every wire operation the adapter issues.
OPERATIONS = (
    "query",
    "scan",
    "get_item",
    "put_item",
    "update_item",
    "delete_item",
    "batch_get_item",
    "batch_write_item",
    "transact_get_items",
    "transact_write_items",
    "execute_statement",
    "create_table",
    "delete_table",
    "describe_table",
    "list_tables",
    "update_time_to_live",
)


@dataclass(frozen=True)
class AwsCallMetric:
    service: str
    operation: str
    seconds: float
    ok: bool


class InstrumentedClient:
    """Wraps a low-level DynamoDB client, timing and logging each call.

    Only the operations in ``OPERATIONS`` are exposed.
    """

    def __init__(
        self,
        client: Any,
        *,
        service: str = "dynamodb",
        on_call: Callable[[AwsCallMetric], None] | None = None,
    ) -> None:
        self._client = client
        self._service = service
        self._on_call = on_call

    @property
    def wrapped(self) -> Any:
        return self._client

    def _call(self, operation: str, kwargs: dict[str, Any]) -> Mapping[str, Any]:
        logger.debug("%s.%s %s", self._service, operation, kwargs)
        start = time.monotonic()
        ok = False
        try:
            out = getattr(self._client, operation)(**kwargs)
            ok = True
            return out
        finally:
            seconds = time.monotonic() - start
            logger.debug("%s.%s finished in %.3fs (ok=%s)", self._service, operation, seconds, ok)
            if self._on_call is not None:
                metric = AwsCallMetric(service=self._service, operation=operation, seconds=seconds, ok=ok)
                self._on_call(metric)

    def query(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("query", kwargs)

    def scan(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("scan", kwargs)

    def get_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("get_item", kwargs)

    def put_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("put_item", kwargs)

    def update_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("update_item", kwargs)

    def delete_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("delete_item", kwargs)

    def batch_get_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("batch_get_item", kwargs)

    def batch_write_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("batch_write_item", kwargs)

    def transact_get_items(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("transact_get_items", kwargs)

    def transact_write_items(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("transact_write_items", kwargs)

    def execute_statement(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("execute_statement", kwargs)

    def create_table(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("create_table", kwargs)

    def delete_table(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("delete_table", kwargs)

    def describe_table(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("describe_table", kwargs)

    def list_tables(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("list_tables", kwargs)

    def update_time_to_live(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._call("update_time_to_live", kwargs)

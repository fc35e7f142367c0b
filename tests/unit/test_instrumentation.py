from __future__ import annotations

import pytest

from dynadapter_py import AwsCallMetric, InstrumentedClient
from dynadapter_py.instrumentation import OPERATIONS
from dynadapter_py.mocks import FakeDynamoDBClient


def test_instrumented_client_records_calls() -> None:
    metrics: list[AwsCallMetric] = []

    client = FakeDynamoDBClient()
    client.expect("put_item", {"TableName": "t"}, response={})
    wrapped = InstrumentedClient(client, on_call=metrics.append)
    wrapped.put_item(TableName="t", Item={})

    assert wrapped.wrapped is client
    assert [(m.service, m.operation, m.ok) for m in metrics] == [("dynamodb", "put_item", True)]
    assert metrics[0].seconds >= 0


def test_instrumented_client_records_failures() -> None:
    metrics: list[AwsCallMetric] = []

    client = FakeDynamoDBClient()
    client.expect("get_item", error=RuntimeError("boom"))
    wrapped = InstrumentedClient(client, on_call=metrics.append)
    with pytest.raises(RuntimeError, match="boom"):
        wrapped.get_item(TableName="t", Key={})

    assert metrics[0].ok is False


@pytest.mark.parametrize("operation", OPERATIONS)
def test_every_operation_is_forwarded(operation: str) -> None:
    client = FakeDynamoDBClient()
    client.expect(operation, response={"ok": True})

    assert getattr(InstrumentedClient(client), operation)() == {"ok": True}
    client.assert_no_pending()

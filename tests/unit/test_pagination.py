from __future__ import annotations

from typing import Any

import pytest

from dynadapter_py import Paginator, ServiceError, ValidationError
from dynadapter_py.pagination import EXHAUSTED, FETCHING
from dynadapter_py.testkit import ANY, FakeDynamoDBClient, RecordingSleep, client_error


class _Table:
    """Serves ``n`` single-attribute items, honouring Limit and ExclusiveStartKey."""

    def __init__(self, n: int, *, matching: set[int] | None = None) -> None:
        self._rows = [{"id": {"N": str(i)}} for i in range(n)]
        self._matching = matching
        self.requests: list[dict[str, Any]] = []

    def __call__(self, **req: Any) -> dict[str, Any]:
        self.requests.append(req)
        start = 0
        if "ExclusiveStartKey" in req:
            start = int(req["ExclusiveStartKey"]["id"]["N"]) + 1
        limit = req.get("Limit", len(self._rows))
        scanned = self._rows[start : start + limit]
        items = [r for r in scanned if self._matching is None or int(r["id"]["N"]) in self._matching]

        resp: dict[str, Any] = {"Items": items, "Count": len(items), "ScannedCount": len(scanned)}
        if start + len(scanned) < len(self._rows):
            resp["LastEvaluatedKey"] = scanned[-1]
        return resp


def test_record_limit_with_page_size_one_makes_exactly_two_calls() -> None:
    table = _Table(10)
    paginator = Paginator(table, {"TableName": "t"}, record_limit=2, batch_size=1)

    items = list(paginator.items())

    assert [i["id"] for i in items] == [0, 1]
    assert len(table.requests) == 2
    assert paginator.state == EXHAUSTED


@pytest.mark.parametrize("record_limit", [1, 3, 7, 10, 25])
def test_record_limit_is_never_exceeded(record_limit: int) -> None:
    table = _Table(20, matching={i for i in range(20) if i % 3 == 0})
    paginator = Paginator(table, {"TableName": "t"}, record_limit=record_limit, batch_size=4)

    items = list(paginator.items())

    assert len(items) <= record_limit
    assert all(r.get("Limit", 0) <= record_limit for r in table.requests)


@pytest.mark.parametrize("scan_limit", [1, 5, 9, 40])
def test_scan_limit_is_never_exceeded(scan_limit: int) -> None:
    table = _Table(20, matching={1, 2})
    paginator = Paginator(table, {"TableName": "t"}, scan_limit=scan_limit, batch_size=3)

    list(paginator)

    assert paginator.scan_count <= scan_limit
    assert paginator.scan_count == min(scan_limit, 20)


def test_limit_is_min_of_remaining_bounds() -> None:
    table = _Table(20)
    paginator = Paginator(table, {"TableName": "t"}, record_limit=5, scan_limit=7, batch_size=3)

    list(paginator)

    assert [r["Limit"] for r in table.requests] == [3, 2]


def test_unbounded_pagination_follows_last_evaluated_key() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"TableName": "t"},
        response={
            "Items": [{"id": {"S": "a"}}],
            "Count": 1,
            "ScannedCount": 1,
            "LastEvaluatedKey": {"id": {"S": "a"}},
        },
    )
    client.expect(
        "query",
        {"TableName": "t", "ExclusiveStartKey": {"id": {"S": "a"}}},
        response={"Items": [{"id": {"S": "b"}}], "Count": 1, "ScannedCount": 1},
    )

    paginator = Paginator(client.query, {"TableName": "t"})
    pages = list(paginator)

    client.assert_no_pending()
    assert [p.items for p in pages] == [[{"id": "a"}], [{"id": "b"}]]
    assert pages[0].cursor
    assert pages[1].cursor is None
    assert "Limit" not in client.calls[0][1]


def test_exclusive_start_key_is_used_for_the_first_call() -> None:
    client = FakeDynamoDBClient()
    client.expect("scan", {"ExclusiveStartKey": {"id": {"S": "z"}}}, response={"Items": []})

    paginator = Paginator(client.scan, {"TableName": "t", "ExclusiveStartKey": {"id": {"S": "z"}}})
    page = paginator.next_page()

    assert page is not None
    assert page.items == []
    assert paginator.next_page() is None
    client.assert_no_pending()


def test_backoff_runs_between_calls_but_never_before_the_first() -> None:
    table = _Table(3)
    calls_at_backoff: list[int] = []

    paginator = Paginator(
        table,
        {"TableName": "t"},
        batch_size=1,
        backoff=lambda: calls_at_backoff.append(len(table.requests)),
    )
    list(paginator)

    assert len(table.requests) == 3
    assert calls_at_backoff == [1, 2]


def test_paginator_is_lazy() -> None:
    table = _Table(5)
    paginator = Paginator(table, {"TableName": "t"}, batch_size=1)

    pages = iter(paginator)
    assert table.requests == []
    next(pages)
    assert len(table.requests) == 1
    assert paginator.state == FETCHING


def test_zero_record_limit_makes_no_call() -> None:
    table = _Table(5)
    paginator = Paginator(table, {"TableName": "t"}, record_limit=0)
    assert list(paginator) == []
    assert table.requests == []


def test_throttling_is_retried_when_backoff_is_configured() -> None:
    client = FakeDynamoDBClient()
    client.expect("query", error=client_error("ProvisionedThroughputExceededException"))
    client.expect("query", {"TableName": "t"}, response={"Items": [], "Count": 0})
    sleep = RecordingSleep()

    paginator = Paginator(client.query, {"TableName": "t"}, backoff=lambda: sleep(0.1))
    assert list(paginator) != []

    client.assert_no_pending()
    assert sleep.delays == [0.1]


def test_throttling_retries_are_bounded() -> None:
    client = FakeDynamoDBClient()
    for _ in range(2):
        client.expect("query", error=client_error("ThrottlingException"))

    paginator = Paginator(client.query, {"TableName": "t"}, backoff=lambda: None, max_throttle_retries=1)
    with pytest.raises(ServiceError) as excinfo:
        paginator.next_page()
    assert excinfo.value.code == "ThrottlingException"


def test_errors_propagate_without_backoff() -> None:
    client = FakeDynamoDBClient()
    client.expect("query", error=client_error("ProvisionedThroughputExceededException"))

    paginator = Paginator(client.query, {"TableName": "t"})
    with pytest.raises(ServiceError):
        paginator.next_page()
    client.assert_no_pending()


@pytest.mark.parametrize(
    "kwargs",
    [{"record_limit": -1}, {"scan_limit": -1}, {"batch_size": 0}, {"max_throttle_retries": -1}],
)
def test_invalid_bounds(kwargs: dict[str, int]) -> None:
    with pytest.raises(ValidationError):
        Paginator(lambda **_: {}, {"TableName": "t"}, **kwargs)


def test_page_carries_index_name_in_cursor() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"IndexName": "by_city", "Limit": ANY},
        response={"Items": [], "Count": 0, "LastEvaluatedKey": {"city": {"S": "NY"}, "id": {"S": "a"}}},
    )

    paginator = Paginator(client.query, {"TableName": "t", "IndexName": "by_city"}, batch_size=10)
    page = paginator.next_page()

    assert page is not None
    assert page.index_name == "by_city"
    assert paginator.last_evaluated_key == {"city": {"S": "NY"}, "id": {"S": "a"}}

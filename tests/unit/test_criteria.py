from __future__ import annotations

import logging

import pytest

from dynadapter_py import Adapter, AdapterConfig, SecondaryIndex, TableSchema, ValidationError, encode_cursor
from dynadapter_py.testkit import FakeDynamoDBClient, no_sleep

_KEY = {"id": {"S": "u1"}, "created_at": {"N": "1"}}


def _adapter(client: FakeDynamoDBClient, **config: object) -> Adapter:
    adapter = Adapter(client, config=AdapterConfig(**config), sleep=no_sleep)
    adapter.register_schema(
        TableSchema(
            name="users",
            hash_key="id",
            range_key="created_at",
            indexes=(SecondaryIndex("by_city", "GSI", "city", "age"),),
        )
    )
    return adapter


def test_where_with_hash_and_range_queries_the_table() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {
            "TableName": "users",
            "KeyConditionExpression": "#_a1 = :_a1 AND #_a2 > :_a2",
            "FilterExpression": "#_a3 = :_a3",
            "ExpressionAttributeNames": {"#_a1": "id", "#_a2": "created_at", "#_a3": "name"},
            "ExpressionAttributeValues": {":_a1": {"S": "u1"}, ":_a2": {"N": "5"}, ":_a3": {"S": "Bob"}},
            "ScanIndexForward": False,
        },
        response={"Items": [{"id": {"S": "u1"}, "created_at": {"N": "6"}}], "Count": 1},
    )

    got = (
        _adapter(client)
        .where("users", {"id": "u1", "created_at.gt": 5})
        .where(name="Bob")
        .scan_index_forward(False)
        .all()
    )

    client.assert_no_pending()
    assert got == [{"id": "u1", "created_at": 6}]
    assert "IndexName" not in client.calls[0][1]


def test_gsi_is_chosen_from_conditions() -> None:
    client = FakeDynamoDBClient()
    client.expect("query", {"IndexName": "by_city", "KeyConditionExpression": "#_a1 = :_a1 AND #_a2 >= :_a2"})

    list(_adapter(client).where("users", {"city": "NY", "age.gte": 18}))
    client.assert_no_pending()


def test_scan_fallback_logs_a_warning(caplog: pytest.LogCaptureFixture) -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "scan",
        {"TableName": "users", "FilterExpression": "#_a1 = :_a1"},
        response={"Items": [], "Count": 0},
    )

    with caplog.at_level(logging.WARNING, logger="dynadapter_py.criteria"):
        assert _adapter(client).where("users", {"name": "x"}).all() == []

    client.assert_no_pending()
    assert "forced to use scan" in caplog.text
    assert "name" in caplog.text


def test_scan_warning_can_be_disabled(caplog: pytest.LogCaptureFixture) -> None:
    client = FakeDynamoDBClient()
    client.expect("scan", response={"Items": []})

    with caplog.at_level(logging.WARNING, logger="dynadapter_py.criteria"):
        _adapter(client, warn_on_scan=False).criteria("users").all()

    assert caplog.text == ""


def test_raw_expression_is_combined_with_mapping_conditions() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {
            "KeyConditionExpression": "#_a1 = :_a1",
            "FilterExpression": "(attribute_exists(nickname) AND age > :min)",
            "ExpressionAttributeValues": {":_a1": {"S": "u1"}, ":min": {"N": "18"}},
        },
    )
    adapter = _adapter(client)

    criteria = adapter.where("users", {"id": "u1"})
    list(criteria.where("attribute_exists(nickname) AND age > :min", {":min": 18}))
    client.assert_no_pending()


def test_where_argument_validation() -> None:
    criteria = _adapter(FakeDynamoDBClient()).criteria("users")
    with pytest.raises(ValidationError):
        criteria.where({"id": "a"}, {":x": 1})
    with pytest.raises(ValidationError):
        criteria.where("a = :x", {":x": 1}, id="a")


def test_first_uses_a_record_limit_of_one() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"Limit": 1},
        response={
            "Items": [{"id": {"S": "u1"}, "created_at": {"N": "1"}}],
            "Count": 1,
            "LastEvaluatedKey": _KEY,
        },
    )
    criteria = _adapter(client).where("users", id="u1")

    assert criteria.first() == {"id": "u1", "created_at": 1}
    client.assert_no_pending()


def test_record_and_scan_limits_and_batch_size_bound_each_call() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"Limit": 2},
        response={"Items": [], "Count": 0, "ScannedCount": 2, "LastEvaluatedKey": _KEY},
    )
    client.expect(
        "query",
        {"Limit": 1},
        response={"Items": [], "Count": 0, "ScannedCount": 1, "LastEvaluatedKey": _KEY},
    )

    got = _adapter(client).where("users", id="u1").record_limit(5).scan_limit(3).batch(2).all()

    assert got == []
    client.assert_no_pending()


def test_count_uses_select_count() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "scan",
        {"Select": "COUNT", "ConsistentRead": True},
        response={"Count": 2, "LastEvaluatedKey": _KEY},
    )
    client.expect("scan", {"Select": "COUNT"}, response={"Count": 3})

    assert _adapter(client, warn_on_scan=False).criteria("users").consistent().count() == 5


def test_start_from_cursor_string() -> None:
    client = FakeDynamoDBClient()
    cursor = encode_cursor({"id": {"S": "u1"}, "created_at": {"N": "3"}})
    client.expect("query", {"ExclusiveStartKey": {"id": {"S": "u1"}, "created_at": {"N": "3"}}})

    _adapter(client).where("users", id="u1").start(cursor).all()
    client.assert_no_pending()


def test_start_from_key_values() -> None:
    client = FakeDynamoDBClient()
    client.expect("query", {"ExclusiveStartKey": {"id": {"S": "u1"}, "created_at": {"N": "3"}}})

    _adapter(client).where("users", id="u1").start({"id": "u1", "created_at": 3}).all()
    client.assert_no_pending()


def test_cursor_for_a_different_index_is_rejected() -> None:
    cursor = encode_cursor({"city": {"S": "NY"}, "age": {"N": "3"}}, index="by_city")
    criteria = _adapter(FakeDynamoDBClient()).where("users", id="u1").start(cursor)

    with pytest.raises(ValidationError, match="cursor index"):
        criteria.all()


def test_invalid_cursor_is_rejected() -> None:
    with pytest.raises(ValidationError, match="invalid cursor"):
        _adapter(FakeDynamoDBClient()).criteria("users").start("not-a-cursor")


def test_pages_resume_from_a_page() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "query",
        {"IndexName": "by_city"},
        response={
            "Items": [{"id": {"S": "u1"}}],
            "Count": 1,
            "LastEvaluatedKey": {"city": {"S": "NY"}, "id": {"S": "u1"}, "created_at": {"N": "1"}},
        },
    )
    client.expect(
        "query",
        {
            "IndexName": "by_city",
            "ExclusiveStartKey": {"city": {"S": "NY"}, "id": {"S": "u1"}, "created_at": {"N": "1"}},
        },
        response={"Items": [], "Count": 0},
    )
    adapter = _adapter(client)

    first = next(adapter.where("users", city="NY").batch(1).pages())
    assert first.index_name == "by_city"
    assert first.cursor

    assert adapter.where("users", city="NY").start(first).all() == []
    client.assert_no_pending()


def test_with_index_and_projection() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "scan",
        {"IndexName": "by_city", "ProjectionExpression": "#_a2, #_a3", "FilterExpression": "#_a1 > :_a1"},
    )
    adapter = _adapter(client, warn_on_scan=False)

    adapter.where("users", {"age.gt": 3}).with_index("by_city").project("id", "city").all()
    client.assert_no_pending()


def test_explain_describes_the_chosen_plan() -> None:
    adapter = _adapter(FakeDynamoDBClient())

    plan = adapter.where("users", {"city": "NY", "name": "x"}).explain()
    assert plan.operation == "Query"
    assert plan.index_name == "by_city"
    assert plan.key_attributes == ("city",)
    assert plan.filter_attributes == ("name",)

    scan = adapter.where("users", {"name": "x"}).explain()
    assert scan.operation == "Scan"
    assert scan.filter_attributes == ("name",)

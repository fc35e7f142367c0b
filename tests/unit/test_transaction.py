from __future__ import annotations

import pytest

from dynadapter_py import (
    Adapter,
    AdapterConfig,
    ConditionalCheckFailedError,
    Create,
    Delete,
    Find,
    MissingRangeKeyError,
    RecordNotFoundError,
    Rollback,
    ServiceError,
    TableSchema,
    TransactionCanceledError,
    TransactionRead,
    TransactionWrite,
    UpdateFields,
    Upsert,
    ValidationError,
)
from dynadapter_py.testkit import ANY, FakeDynamoDBClient, client_error, no_sleep
from dynadapter_py.transaction import COMMITTED, FAILED, MAX_TRANSACTION_ITEMS, REGISTERING


def _adapter(client: FakeDynamoDBClient, **config: object) -> Adapter:
    adapter = Adapter(client, config=AdapterConfig(**config), sleep=no_sleep)
    adapter.register_schema(TableSchema(name="users", hash_key="id", range_key="created_at"))
    adapter.register_schema(TableSchema(name="tags", hash_key="name"))
    return adapter


def test_write_transaction_sends_actions_in_registration_order() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        {
            "TransactItems": [
                {
                    "Put": {
                        "TableName": "users",
                        "Item": {"id": {"S": "u1"}, "created_at": {"N": "1"}, "name": {"S": "Bob"}},
                        "ConditionExpression": "attribute_not_exists(#_a1) AND attribute_not_exists(#_a2)",
                        "ExpressionAttributeNames": {"#_a1": "id", "#_a2": "created_at"},
                    }
                },
                {
                    "Update": {
                        "TableName": "tags",
                        "Key": {"name": {"S": "red"}},
                        "UpdateExpression": "SET #_a1 = :_a1 ADD #_a2 :_a2",
                        "ExpressionAttributeValues": {":_a1": {"S": "x"}, ":_a2": {"N": "1"}},
                    }
                },
                {"Delete": {"TableName": "users", "Key": {"id": {"S": "u2"}, "created_at": {"N": "2"}}}},
            ]
        },
    )
    adapter = _adapter(client)
    committed: list[str] = []

    txn = TransactionWrite(adapter)
    txn.create(
        "users",
        {"id": "u1", "created_at": 1, "name": "Bob", "empty": ""},
        on_commit=lambda a: committed.append("create"),
    )
    txn.upsert("tags", "red", {"label": "x"}, add={"count": 1}, on_commit=lambda a: committed.append("up"))
    txn.delete("users", ("u2", 2), on_commit=lambda a: committed.append("delete"))
    txn.commit()

    client.assert_no_pending()
    assert txn.state == COMMITTED
    assert committed == ["create", "up", "delete"]


def test_aborted_and_skipped_actions_are_not_sent() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_write_items", {"TransactItems": [{"Delete": ANY}]})
    adapter = _adapter(client)

    txn = TransactionWrite(adapter)
    aborted = txn.put("tags", {"name": "a"})
    aborted.abort()
    skipped = txn.upsert("tags", "b", {})
    txn.delete("tags", "c")
    txn.commit()

    assert aborted.aborted()
    assert skipped.skipped()
    client.assert_no_pending()


def test_empty_transaction_makes_no_call() -> None:
    client = FakeDynamoDBClient()
    txn = TransactionWrite(_adapter(client))
    txn.commit()
    assert client.calls == []
    assert txn.state == COMMITTED


def test_failed_commit_runs_rollback_hooks_and_raises() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        error=client_error(
            "TransactionCanceledException",
            "Transaction cancelled",
            CancellationReasons=[{"Code": "None"}, {"Code": "TransactionConflict"}],
        ),
    )
    rolled_back: list[str] = []
    committed: list[str] = []

    txn = TransactionWrite(_adapter(client))
    txn.put("tags", {"name": "a"}, on_rollback=lambda a: rolled_back.append("a"), on_commit=committed.append)
    txn.delete("tags", "b", on_rollback=lambda a: rolled_back.append("b"))

    with pytest.raises(TransactionCanceledError) as excinfo:
        txn.commit()

    assert excinfo.value.reason_codes == ("None", "TransactionConflict")
    assert rolled_back == ["a", "b"]
    assert committed == []
    assert txn.state == FAILED


def test_rollback_skips_actions_that_were_not_sent() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_write_items", error=client_error("InternalServerError"))
    rolled_back: list[str] = []

    txn = TransactionWrite(_adapter(client))
    aborted = txn.put("tags", {"name": "a"}, on_rollback=lambda a: rolled_back.append("a"))
    aborted.abort()
    txn.upsert("tags", "b", {}, on_rollback=lambda a: rolled_back.append("b"))
    txn.delete("tags", "c", on_rollback=lambda a: rolled_back.append("c"))

    with pytest.raises(ServiceError):
        txn.commit()

    assert rolled_back == ["c"]


def test_conditional_check_cancellation_maps_to_conditional_error() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        error=client_error(
            "TransactionCanceledException",
            "Transaction cancelled",
            CancellationReasons=[{"Code": "ConditionalCheckFailed"}],
        ),
    )
    txn = TransactionWrite(_adapter(client))
    txn.register(Create("tags", {"name": "a"}))

    with pytest.raises(ConditionalCheckFailedError):
        txn.commit()


def test_commit_twice_is_rejected() -> None:
    client = FakeDynamoDBClient()
    txn = TransactionWrite(_adapter(client))
    txn.commit()
    with pytest.raises(ValidationError, match="committed"):
        txn.commit()
    with pytest.raises(ValidationError):
        txn.delete("tags", "a")


def test_transaction_ceiling() -> None:
    client = FakeDynamoDBClient()
    txn = TransactionWrite(_adapter(client))
    for i in range(MAX_TRANSACTION_ITEMS + 1):
        txn.delete("tags", f"t{i}")

    with pytest.raises(ValidationError, match=str(MAX_TRANSACTION_ITEMS)):
        txn.commit()
    assert client.calls == []
    assert txn.state == REGISTERING


def test_key_errors_surface_at_registration() -> None:
    txn = TransactionWrite(_adapter(FakeDynamoDBClient()))
    with pytest.raises(MissingRangeKeyError):
        txn.put("users", {"id": "u1"})
    assert txn.actions == ()


def test_execute_commits_on_normal_exit() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_write_items", {"TransactItems": [{"Delete": ANY}]})

    with _adapter(client).transaction() as txn:
        txn.delete("tags", "a")

    client.assert_no_pending()
    assert txn.state == COMMITTED


def test_execute_swallows_rollback() -> None:
    client = FakeDynamoDBClient()
    rolled_back: list[object] = []

    with _adapter(client).transaction() as txn:
        txn.delete("tags", "a", on_rollback=rolled_back.append)
        raise Rollback()

    assert client.calls == []
    assert len(rolled_back) == 1
    assert txn.state == FAILED


def test_execute_rolls_back_and_reraises() -> None:
    client = FakeDynamoDBClient()
    rolled_back: list[object] = []

    with pytest.raises(RuntimeError, match="boom"):
        with _adapter(client).transaction() as txn:
            txn.delete("tags", "a", on_rollback=rolled_back.append)
            raise RuntimeError("boom")

    assert client.calls == []
    assert len(rolled_back) == 1


def test_update_fields_requires_existing_item() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        {
            "TransactItems": [
                {
                    "Update": {
                        "TableName": "tags",
                        "Key": {"name": {"S": "a"}},
                        "UpdateExpression": "REMOVE #_a1",
                        "ConditionExpression": "attribute_exists(#_a2)",
                        "ExpressionAttributeNames": {"#_a1": "label", "#_a2": "name"},
                    }
                }
            ]
        },
    )
    adapter = _adapter(client)
    adapter.transact_write([UpdateFields("tags", "a", {"label": None})])
    client.assert_no_pending()


def test_nil_values_are_stored_when_configured() -> None:
    client = FakeDynamoDBClient()

    def check(req: dict) -> None:
        update = req["TransactItems"][0]["Update"]
        assert update["UpdateExpression"] == "SET #_a1 = :_a1"
        assert update["ExpressionAttributeValues"] == {":_a1": {"NULL": True}}

    client.expect("transact_write_items", check)
    adapter = _adapter(client, store_attribute_with_nil_value=True)
    adapter.transact_write([Upsert("tags", "a", {"label": None})])
    client.assert_no_pending()


def test_condition_check_uses_where_syntax() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_write_items",
        {
            "TransactItems": [
                {
                    "ConditionCheck": {
                        "TableName": "tags",
                        "Key": {"name": {"S": "a"}},
                        "ConditionExpression": "#_a1 > :_a1",
                        "ExpressionAttributeNames": {"#_a1": "count"},
                        "ExpressionAttributeValues": {":_a1": {"N": "3"}},
                    }
                },
                {"Delete": ANY},
            ]
        },
    )
    with _adapter(client).transaction() as txn:
        txn.condition_check("tags", "a", {"count.gt": 3})
        txn.delete("tags", "b")
    client.assert_no_pending()


def test_read_transaction_preserves_registration_order() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_get_items",
        {
            "TransactItems": [
                {"Get": {"TableName": "tags", "Key": {"name": {"S": "a"}}}},
                {"Get": {"TableName": "users", "Key": {"id": {"S": "u1"}, "created_at": {"N": "1"}}}},
                {"Get": {"TableName": "tags", "Key": {"name": {"S": "b"}}}},
                {"Get": {"TableName": "tags", "Key": {"name": {"S": "c"}}}},
            ]
        },
        response={
            "Responses": [
                {"Item": {"name": {"S": "a"}}},
                {"Item": {"id": {"S": "u1"}, "created_at": {"N": "1"}}},
                {"Item": {"name": {"S": "b"}}},
                {},
            ]
        },
    )
    adapter = _adapter(client)

    got = adapter.transact_read(
        [
            Find("tags", "a"),
            Find("users", ("u1", 1)),
            Find("tags", ["b", "c"], raise_error=False),
        ]
    )

    client.assert_no_pending()
    assert got == [
        {"name": "a"},
        {"id": "u1", "created_at": 1},
        [{"name": "b"}],
    ]


def test_read_transaction_raises_for_missing_items() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_get_items", response={"Responses": [{}]})
    txn = TransactionRead(_adapter(client))
    txn.find("tags", "a")

    with pytest.raises(RecordNotFoundError):
        txn.commit()


def test_read_transaction_single_find_without_error_returns_none() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_get_items", response={"Responses": [{}]})
    txn = TransactionRead(_adapter(client))
    txn.find("tags", "a", raise_error=False, projection=["name"])

    assert txn.commit() == [None]
    assert client.calls[0][1]["TransactItems"][0]["Get"]["ProjectionExpression"] == "#_a1"


def test_read_transaction_with_only_empty_finds_returns_one_result_per_find() -> None:
    client = FakeDynamoDBClient()
    txn = TransactionRead(_adapter(client))
    txn.find("tags", [])
    txn.find("users", [], raise_error=False)

    assert txn.commit() == [[], []]
    assert client.calls == []
    assert txn.state == COMMITTED


def test_read_transaction_empty_find_between_others_keeps_its_slot() -> None:
    client = FakeDynamoDBClient()
    client.expect(
        "transact_get_items",
        response={"Responses": [{"Item": {"name": {"S": "a"}}}, {"Item": {"name": {"S": "b"}}}]},
    )
    txn = TransactionRead(_adapter(client))
    txn.find("tags", "a")
    txn.find("tags", [])
    txn.find("tags", ["b"])

    assert txn.commit() == [{"name": "a"}, [], [{"name": "b"}]]


def test_read_transaction_rejects_short_response() -> None:
    client = FakeDynamoDBClient()
    client.expect("transact_get_items", response={"Responses": []})
    txn = TransactionRead(_adapter(client))
    txn.find("tags", "a")

    with pytest.raises(ValidationError, match="expected 1 responses"):
        txn.commit()
    assert txn.state == FAILED


def test_read_transaction_ceiling() -> None:
    txn = TransactionRead(_adapter(FakeDynamoDBClient()))
    txn.find("tags", [f"t{i}" for i in range(MAX_TRANSACTION_ITEMS + 1)])
    with pytest.raises(ValidationError):
        txn.commit()


def test_unregistered_action_cannot_render() -> None:
    with pytest.raises(ValidationError, match="not registered"):
        Delete("tags", "a").action_request()

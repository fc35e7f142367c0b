from __future__ import annotations

from dynadapter_py import ConditionalCheckFailedError, ServiceError, TransactionCanceledError, ValidationError
from dynadapter_py.aws_errors import is_throttling_error, map_client_error, map_transaction_error
from dynadapter_py.testkit import client_error


def test_conditional_check_is_distinct_from_service_errors() -> None:
    err = map_client_error(client_error("ConditionalCheckFailedException"))
    assert isinstance(err, ConditionalCheckFailedError)

    err = map_client_error(client_error("InternalServerError", "boom"))
    assert isinstance(err, ServiceError)
    assert not isinstance(err, ConditionalCheckFailedError)
    assert (err.code, err.message) == ("InternalServerError", "boom")


def test_validation_exception_maps_to_validation_error() -> None:
    assert isinstance(map_client_error(client_error("ValidationException", "bad")), ValidationError)


def test_throttling_codes() -> None:
    assert is_throttling_error(client_error("ProvisionedThroughputExceededException"))
    assert is_throttling_error(client_error("RequestLimitExceeded"))
    assert not is_throttling_error(client_error("ResourceNotFoundException"))


def test_transaction_errors() -> None:
    conflict = map_transaction_error(
        client_error(
            "TransactionCanceledException",
            "cancelled",
            CancellationReasons=[{"Code": "TransactionConflict"}],
        )
    )
    assert isinstance(conflict, TransactionCanceledError)
    assert conflict.reason_codes == ("TransactionConflict",)

    failed = map_transaction_error(
        client_error(
            "TransactionCanceledException",
            "cancelled",
            CancellationReasons=[{"Code": "ConditionalCheckFailed"}],
        )
    )
    assert isinstance(failed, ConditionalCheckFailedError)

    other = map_transaction_error(client_error("InternalServerError", "boom"))
    assert isinstance(other, ServiceError)

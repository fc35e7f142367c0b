from __future__ import annotations

from botocore.exceptions import ClientError

from .errors import (
    ConditionalCheckFailedError,
    ServiceError,
    TransactionCanceledError,
    ValidationError,
)

THROTTLING_CODES = frozenset(
    {
        "ProvisionedThroughputExceededException",
        "ThrottlingException",
        "RequestLimitExceeded",
    }
)


def error_code(err: ClientError) -> str:
    return str(err.response.get("Error", {}).get("Code", ""))


def is_throttling_error(err: ClientError) -> bool:
    return error_code(err) in THROTTLING_CODES


def map_client_error(err: ClientError) -> Exception:
    code = error_code(err)
    message = str(err.response.get("Error", {}).get("Message", ""))

    if code == "ConditionalCheckFailedException":
        return ConditionalCheckFailedError(message or "conditional check failed")
    if code == "ValidationException":
        return ValidationError(message)

    return ServiceError(code=code or "UnknownError", message=message or str(err))


def map_transaction_error(err: ClientError) -> Exception:
    code = error_code(err)
    message = str(err.response.get("Error", {}).get("Message", ""))

    if code == "TransactionCanceledException":
        reasons_raw = err.response.get("CancellationReasons") or []
        reason_codes = tuple(
            str(reason.get("Code", "Unknown"))
            for reason in reasons_raw
            if isinstance(reason, dict) and reason.get("Code")
        )

        if any(rc == "ConditionalCheckFailed" for rc in reason_codes) or "ConditionalCheckFailed" in message:
            return ConditionalCheckFailedError(message or "transaction canceled: ConditionalCheckFailed")

        return TransactionCanceledError(
            message=message or "transaction canceled",
            reason_codes=reason_codes,
        )

    return map_client_error(err)

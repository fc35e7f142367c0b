from __future__ import annotations


class DynadapterError(Exception):
    pass


class ValidationError(DynadapterError):
    pass


class UnsupportedOperatorError(ValidationError):
    def __init__(self, *, attribute: str, operator: str) -> None:
        super().__init__(f"unsupported operator {operator!r} in condition on {attribute!r}")
        self.attribute = attribute
        self.operator = operator


class InvalidIndexError(ValidationError):
    def __init__(self, index_name: str) -> None:
        super().__init__(f"unknown index: {index_name}")
        self.index_name = index_name


class MissingHashKeyError(ValidationError):
    pass


class MissingRangeKeyError(ValidationError):
    pass


class RecordNotFoundError(DynadapterError):
    pass


class ConditionalCheckFailedError(DynadapterError):
    pass


class BatchRetryExceededError(DynadapterError):
    def __init__(self, *, operation: str, unprocessed_count: int) -> None:
        super().__init__(f"{operation}: retry limit exceeded (unprocessed={unprocessed_count})")
        self.operation = operation
        self.unprocessed_count = unprocessed_count


class ServiceError(DynadapterError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class TransactionCanceledError(ServiceError):
    def __init__(self, *, message: str, reason_codes: tuple[str, ...]) -> None:
        super().__init__(code="TransactionCanceledException", message=message)
        self.reason_codes = reason_codes


class Rollback(DynadapterError):
    """Raised inside a write transaction block to discard it without an error."""

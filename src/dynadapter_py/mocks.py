from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any

from botocore.exceptions import ClientError


class _AnySentinel:
    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _AnySentinel()

type RequestCheck = Mapping[str, Any] | Callable[[Mapping[str, Any]], None]


def client_error(code: str, message: str = "", *, operation: str = "Operation", **extra: Any) -> ClientError:
    """Build a ``ClientError`` the way botocore raises it for service error ``code``.

    Extra keyword arguments land at the top level of the error response, where
    DynamoDB puts e.g. ``CancellationReasons``.
    """
    response: dict[str, Any] = {"Error": {"Code": code, "Message": message or code}}
    response.update(extra)
    return ClientError(response, operation)  # type: ignore[arg-type]


def request_mismatch(expected: Any, actual: Any, path: str = "request") -> str | None:
    """Describe the first place ``actual`` departs from ``expected``, or None.

    Mappings match partially (extra request keys are fine), lists match
    element-wise and ``ANY`` matches anything.
    """
    if expected is ANY:
        return None
    if isinstance(expected, Mapping):
        if not isinstance(actual, Mapping):
            return f"{path}: wanted a map, got {actual!r}"
        for name, want in expected.items():
            if name not in actual:
                return f"{path}: {name!r} is not in the request"
            found = request_mismatch(want, actual[name], f"{path}.{name}")
            if found:
                return found
        return None
    if isinstance(expected, list):
        if not isinstance(actual, list) or len(actual) != len(expected):
            return f"{path}: wanted {len(expected)} element(s), got {actual!r}"
        for i, want in enumerate(expected):
            found = request_mismatch(want, actual[i], f"{path}[{i}]")
            if found:
                return found
        return None
    if expected != actual:
        return f"{path}: wanted {expected!r}, got {actual!r}"
    return None


@dataclass(frozen=True)
class ScriptedCall:
    operation: str
    check: RequestCheck | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None


class FakeDynamoDBClient:
    """Scripted stand-in for a low-level DynamoDB client.

    Each wire call consumes the next scripted entry, which must name the same
    operation; the request is checked against it and the scripted response is
    returned (or its error raised). Besides :meth:`expect` there are helpers for
    the shapes paging and batching code has to cope with::

        client.expect_pages("query", [[item_a], [item_b]], key=["id"])
        client.expect_throttled("scan", times=2)
        client.expect_batch_write(unprocessed={"users": [put_b]})
    """

    def __init__(self) -> None:
        self._script: list[ScriptedCall] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        method: str,
        expected: RequestCheck | None = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> None:
        self._script.append(ScriptedCall(method, expected, response, error))

    def expect_pages(
        self,
        method: str,
        pages: Sequence[Sequence[Mapping[str, Any]]],
        *,
        key: Sequence[str],
        expected: Mapping[str, Any] | None = None,
        scanned: Sequence[int] | None = None,
    ) -> None:
        """Script a paginated Query or Scan over wire-format ``pages``.

        Every page but the last carries a ``LastEvaluatedKey`` built from the
        ``key`` attributes of its final item, and every page after the first
        must be requested with that key as ``ExclusiveStartKey``.
        """
        start: dict[str, Any] | None = None
        for n, items in enumerate(pages):
            check = dict(expected or {})
            if start is not None:
                check["ExclusiveStartKey"] = start
            resp: dict[str, Any] = {
                "Items": [dict(item) for item in items],
                "Count": len(items),
                "ScannedCount": scanned[n] if scanned is not None else len(items),
            }
            if n < len(pages) - 1:
                if not items:
                    raise ValueError("only the last scripted page may be empty")
                start = {name: items[-1][name] for name in key}
                resp["LastEvaluatedKey"] = start
            self.expect(method, check or None, response=resp)

    def expect_throttled(
        self,
        method: str,
        *,
        times: int = 1,
        code: str = "ProvisionedThroughputExceededException",
    ) -> None:
        for _ in range(times):
            self.expect(method, error=client_error(code, operation=_operation_name(method)))

    def expect_batch_write(
        self,
        expected: RequestCheck | None = None,
        *,
        unprocessed: Mapping[str, Sequence[Mapping[str, Any]]] | None = None,
    ) -> None:
        """Script one BatchWriteItem that leaves ``unprocessed`` requests per table."""
        self.expect(
            "batch_write_item",
            expected,
            response={"UnprocessedItems": {t: list(reqs) for t, reqs in (unprocessed or {}).items() if reqs}},
        )

    def expect_batch_get(
        self,
        items: Mapping[str, Sequence[Mapping[str, Any]]],
        expected: RequestCheck | None = None,
        *,
        unprocessed: Mapping[str, Sequence[Mapping[str, Any]]] | None = None,
    ) -> None:
        """Script one BatchGetItem returning ``items`` and leaving ``unprocessed`` keys."""
        left = {t: {"Keys": list(keys)} for t, keys in (unprocessed or {}).items() if keys}
        self.expect(
            "batch_get_item",
            expected,
            response={"Responses": {t: list(found) for t, found in items.items()}, "UnprocessedKeys": left},
        )

    def requests(self, method: str) -> list[dict[str, Any]]:
        return [req for name, req in self.calls if name == method]

    def assert_no_pending(self) -> None:
        if self._script:
            left = ", ".join(call.operation for call in self._script)
            raise AssertionError(f"{len(self._script)} scripted call(s) never made: {left}")

    def _dispatch(self, method: str, req: dict[str, Any]) -> Mapping[str, Any]:
        self.calls.append((method, dict(req)))
        if not self._script:
            raise AssertionError(f"{method} called with nothing scripted")

        step = self._script.pop(0)
        if step.operation != method:
            raise AssertionError(f"{method} called while {step.operation} was scripted next")

        if callable(step.check):
            step.check(req)
        elif step.check is not None:
            problem = request_mismatch(step.check, req, method)
            if problem:
                raise AssertionError(problem)

        if step.error is not None:
            raise step.error
        return dict(step.response or {})

    def query(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("query", kwargs)

    def scan(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("scan", kwargs)

    def get_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("get_item", kwargs)

    def put_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("put_item", kwargs)

    def update_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("update_item", kwargs)

    def delete_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("delete_item", kwargs)

    def batch_get_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("batch_get_item", kwargs)

    def batch_write_item(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("batch_write_item", kwargs)

    def transact_get_items(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("transact_get_items", kwargs)

    def transact_write_items(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("transact_write_items", kwargs)

    def execute_statement(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("execute_statement", kwargs)

    def create_table(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("create_table", kwargs)

    def delete_table(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("delete_table", kwargs)

    def describe_table(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("describe_table", kwargs)

    def list_tables(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("list_tables", kwargs)

    def update_time_to_live(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("update_time_to_live", kwargs)


def _operation_name(method: str) -> str:
    return "".join(part.capitalize() for part in method.split("_"))

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Mapping
from typing import Any, Literal

from boto3.dynamodb.types import TypeDeserializer
from botocore.exceptions import ClientError

from .aws_errors import is_throttling_error
from .aws_errors import map_client_error as _map_client_error
from .backoff import Backoff
from .errors import ValidationError
from .query import Page

logger = logging.getLogger(__name__)

type PaginationState = Literal["fetching", "exhausted"]

FETCHING: PaginationState = "fetching"
EXHAUSTED: PaginationState = "exhausted"


class Paginator:
    """Drives one Query or Scan request across pages.

    Each ``next_page`` issues at most one wire call with
    ``Limit = min(remaining records, remaining scanned, batch_size)`` (unset
    bounds ignored) and the previous page's ``LastEvaluatedKey``. The paginator
    becomes exhausted once a bound is reached or the service stops returning a
    key; a new request with the desired ``ExclusiveStartKey`` is needed to
    start again.

    ``backoff`` runs before every call except the first. When it is set, a
    throttled call is retried after another backoff, at most
    ``max_throttle_retries`` times in a row.
    """

    def __init__(
        self,
        call: Callable[..., Mapping[str, Any]],
        request: Mapping[str, Any],
        *,
        record_limit: int | None = None,
        scan_limit: int | None = None,
        batch_size: int | None = None,
        backoff: Backoff | None = None,
        max_throttle_retries: int = 5,
        deserializer: TypeDeserializer | None = None,
    ) -> None:
        for name, bound in (("record_limit", record_limit), ("scan_limit", scan_limit)):
            if bound is not None and bound < 0:
                raise ValidationError(f"{name} must be >= 0")
        if batch_size is not None and batch_size <= 0:
            raise ValidationError("batch_size must be > 0")
        if max_throttle_retries < 0:
            raise ValidationError("max_throttle_retries must be >= 0")

        self._call = call
        self._request = dict(request)
        self._record_limit = record_limit
        self._scan_limit = scan_limit
        self._batch_size = batch_size
        self._backoff = backoff
        self._max_throttle_retries = max_throttle_retries
        self._deserializer = deserializer or TypeDeserializer()

        self._start_key: dict[str, Any] | None = self._request.pop("ExclusiveStartKey", None)
        self._state: PaginationState = FETCHING
        self.record_count = 0
        self.scan_count = 0
        self.calls = 0

    @property
    def state(self) -> PaginationState:
        return self._state

    @property
    def last_evaluated_key(self) -> dict[str, Any] | None:
        return self._start_key

    def next_page(self) -> Page | None:
        if self._state == EXHAUSTED:
            return None

        limit = self._page_limit()
        if limit == 0:
            self._state = EXHAUSTED
            return None

        req = dict(self._request)
        if limit is not None:
            req["Limit"] = limit
        if self._start_key:
            req["ExclusiveStartKey"] = self._start_key

        if self.calls > 0 and self._backoff is not None:
            self._backoff()
        resp = self._issue(req)
        self.calls += 1

        raw_items = resp.get("Items") or []
        items = [{k: self._deserializer.deserialize(v) for k, v in item.items()} for item in raw_items]
        count = int(resp.get("Count", len(raw_items)))
        scanned = int(resp.get("ScannedCount", count))
        self.record_count += count
        self.scan_count += scanned

        last = resp.get("LastEvaluatedKey") or None
        self._start_key = last
        if last is None or self._bound_reached():
            self._state = EXHAUSTED

        return Page(
            items=items,
            last_evaluated_key=last,
            count=count,
            scanned_count=scanned,
            index_name=self._request.get("IndexName"),
        )

    def __iter__(self) -> Iterator[Page]:
        while True:
            page = self.next_page()
            if page is None:
                return
            yield page

    def items(self) -> Iterator[dict[str, Any]]:
        for page in self:
            yield from page.items

    def _issue(self, req: dict[str, Any]) -> Mapping[str, Any]:
        throttled = 0
        while True:
            try:
                return self._call(**req)
            except ClientError as err:
                retryable = self._backoff is not None and is_throttling_error(err)
                if not retryable or throttled >= self._max_throttle_retries:
                    raise _map_client_error(err) from err
                throttled += 1
                logger.warning("throttled on page %d, retrying (%d)", self.calls + 1, throttled)
                self._backoff()

    def _page_limit(self) -> int | None:
        bounds: list[int] = []
        if self._record_limit is not None:
            bounds.append(self._record_limit - self.record_count)
        if self._scan_limit is not None:
            bounds.append(self._scan_limit - self.scan_count)
        if self._batch_size is not None:
            bounds.append(self._batch_size)
        if not bounds:
            return None
        return max(0, min(bounds))

    def _bound_reached(self) -> bool:
        if self._record_limit is not None and self.record_count >= self._record_limit:
            return True
        if self._scan_limit is not None and self.scan_count >= self._scan_limit:
            return True
        return False

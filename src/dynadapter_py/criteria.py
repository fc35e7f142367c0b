from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from typing import TYPE_CHECKING, Any

from .conditions import WhereConditions
from .errors import ValidationError
from .expressions import ExpressionBuilder
from .pagination import Paginator
from .planner import KeyFieldsDecision, QueryPlan, explain
from .query import Page, decode_cursor
from .request_builder import split_conditions

if TYPE_CHECKING:
    from .adapter import Adapter

logger = logging.getLogger(__name__)


class Criteria:
    """Chainable read criteria for one table.

    Every ``where`` call is ANDed with the previous ones. Reads pick Query or
    Scan from the accumulated conditions each time they run::

        adapter.where("users", {"name": "Bob", "age.gt": 10}).record_limit(5).all()
    """

    def __init__(self, adapter: Adapter, table: str) -> None:
        self._adapter = adapter
        self._table = table
        self._where = WhereConditions()
        self._index_name: str | None = None
        self._record_limit: int | None = None
        self._scan_limit: int | None = None
        self._batch_size: int | None = None
        self._start: dict[str, Any] | None = None
        self._start_index: str | None = None
        self._consistent_read = False
        self._scan_index_forward = True
        self._projection: tuple[str, ...] = ()

    def where(
        self,
        conditions: Mapping[str, Any] | str | None = None,
        values: Mapping[str, Any] | None = None,
        /,
        **kwargs: Any,
    ) -> Criteria:
        if isinstance(conditions, str):
            if kwargs:
                raise ValidationError("keyword conditions cannot be combined with an expression")
            self._where.update_with_expression(conditions, values)
            return self
        if values is not None:
            raise ValidationError("placeholder values require an expression string")

        merged = dict(conditions or {})
        merged.update(kwargs)
        self._where.update_with_mapping(merged)
        return self

    def with_index(self, index_name: str) -> Criteria:
        self._index_name = index_name
        return self

    def record_limit(self, limit: int) -> Criteria:
        self._record_limit = limit
        return self

    def scan_limit(self, limit: int) -> Criteria:
        self._scan_limit = limit
        return self

    def batch(self, size: int) -> Criteria:
        self._batch_size = size
        return self

    def start(self, start: Page | str | Mapping[str, Any]) -> Criteria:
        """Resume after a page, a cursor string, or an item's key attributes."""
        if isinstance(start, Page):
            self._start = dict(start.last_evaluated_key or {}) or None
            self._start_index = start.index_name
            return self

        if isinstance(start, str):
            try:
                decoded = decode_cursor(start)
            except ValueError as err:
                raise ValidationError("invalid cursor") from err
            self._start = decoded.last_key
            self._start_index = decoded.index
            return self

        dump = self._adapter.dumper_for(self._table)
        builder = ExpressionBuilder()
        self._start = {str(k): builder.serialize(dump(str(k), v)) for k, v in start.items()} or None
        self._start_index = None
        return self

    def consistent(self, consistent_read: bool = True) -> Criteria:
        self._consistent_read = consistent_read
        return self

    def scan_index_forward(self, forward: bool) -> Criteria:
        self._scan_index_forward = forward
        return self

    def project(self, *attributes: str) -> Criteria:
        self._projection = tuple(attributes)
        return self

    def key_fields(self) -> KeyFieldsDecision:
        return self._adapter.key_fields(
            self._table,
            self._where,
            index_name=self._index_name,
            projection=self._projection,
        )

    def pages(self) -> Iterator[Page]:
        yield from self._paginator()

    def __iter__(self) -> Iterator[dict[str, Any]]:
        for page in self._paginator():
            yield from page.items

    def all(self) -> list[dict[str, Any]]:
        return list(self)

    def first(self) -> dict[str, Any] | None:
        saved = self._record_limit
        self._record_limit = 1
        try:
            return next(iter(self), None)
        finally:
            self._record_limit = saved

    def count(self) -> int:
        decision = self.key_fields()
        options = self._options(decision)
        if decision.use_query:
            return self._adapter.query_count(self._table, self._where, **options)
        self._warn_scan()
        options.pop("scan_index_forward", None)
        return self._adapter.scan_count(self._table, self._where, **options)

    def explain(self) -> QueryPlan:
        decision = self.key_fields()
        key_conditions, filter_conditions = split_conditions(self._where.triples, decision)
        if not decision.use_query:
            key_conditions, filter_conditions = [], list(self._where.triples)
        return explain(
            decision,
            self._adapter.schema_for(self._table),
            key_conditions=key_conditions,
            filter_conditions=filter_conditions,
            has_raw_filter=bool(self._where.expressions),
            projection=self._projection,
            consistent_read=self._consistent_read,
        )

    def _options(self, decision: KeyFieldsDecision) -> dict[str, Any]:
        if self._start is not None and self._start_index not in (None, decision.index_name):
            raise ValidationError("cursor index does not match query")
        return {
            "index_name": decision.index_name,
            "consistent_read": self._consistent_read,
            "scan_index_forward": self._scan_index_forward,
            "record_limit": self._record_limit,
            "scan_limit": self._scan_limit,
            "batch_size": self._batch_size,
            "exclusive_start_key": self._start,
        }

    def _paginator(self) -> Paginator:
        decision = self.key_fields()
        options = self._options(decision)
        projection = self._projection or None
        if decision.use_query:
            return self._adapter.execute_query(self._table, self._where, projection=projection, **options)

        self._warn_scan()
        options.pop("scan_index_forward")
        return self._adapter.execute_scan(self._table, self._where, projection=projection, **options)

    def _warn_scan(self) -> None:
        if not self._adapter.config.warn_on_scan:
            return
        attributes = ", ".join(self._where.attributes()) or "(none)"
        logger.warning(
            "Queries without an index are forced to use scan and are generally much slower than indexed "
            "queries (table %s, conditions on: %s)",
            self._table,
            attributes,
        )

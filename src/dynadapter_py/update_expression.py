from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

from .errors import ValidationError
from .expressions import ExpressionBuilder


_ADDABLE = (int, float, Decimal, set, frozenset, list, tuple)


def _blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and value == "":
        return True
    if isinstance(value, (set, frozenset)) and len(value) == 0:
        return True
    return False


def _merge(values: Mapping[str, Any] | None, kwargs: Mapping[str, Any]) -> dict[str, Any]:
    out = dict(values or {})
    out.update(kwargs)
    return out


class ItemUpdater:
    """Collects SET/ADD/DELETE/REMOVE actions for one UpdateItem call.

    ``set`` with a ``None`` (or empty string/set) value removes the attribute
    unless ``store_attribute_with_nil_value`` is on, in which case it is
    stored as NULL. Later calls for the same attribute replace earlier ones.
    """

    def __init__(
        self,
        builder: ExpressionBuilder,
        *,
        key_attributes: Iterable[str] = (),
        store_attribute_with_nil_value: bool = False,
    ) -> None:
        self._builder = builder
        self._key_attributes = frozenset(key_attributes)
        self._store_nil = store_attribute_with_nil_value
        self._actions: dict[str, tuple[str, Any]] = {}

    def set(self, values: Mapping[str, Any] | None = None, /, **kwargs: Any) -> ItemUpdater:
        for attribute, value in _merge(values, kwargs).items():
            if _blank(value) and not self._store_nil:
                self._put(attribute, "REMOVE", None)
            else:
                self._put(attribute, "SET", None if _blank(value) else value)
        return self

    def add(self, values: Mapping[str, Any] | None = None, /, **kwargs: Any) -> ItemUpdater:
        for attribute, value in _merge(values, kwargs).items():
            if isinstance(value, bool) or not isinstance(value, _ADDABLE):
                raise ValidationError(f"add requires a number or a set: {attribute}")
            if isinstance(value, (list, tuple)):
                value = set(value)
            if isinstance(value, (set, frozenset)) and not value:
                continue
            self._put(attribute, "ADD", value)
        return self

    def delete(self, values: Mapping[str, Any] | None = None, /, **kwargs: Any) -> ItemUpdater:
        for attribute, value in _merge(values, kwargs).items():
            if isinstance(value, (list, tuple)):
                value = set(value)
            if not isinstance(value, (set, frozenset)):
                raise ValidationError(f"delete requires a set of elements: {attribute}")
            if not value:
                continue
            self._put(attribute, "DELETE", value)
        return self

    def remove(self, *attributes: str) -> ItemUpdater:
        for attribute in attributes:
            self._put(attribute, "REMOVE", None)
        return self

    @property
    def empty(self) -> bool:
        return not self._actions

    def expression(self) -> str:
        if self.empty:
            raise ValidationError("no updates provided")

        clauses: dict[str, list[str]] = {"SET": [], "ADD": [], "DELETE": [], "REMOVE": []}
        for attribute, (action, value) in self._actions.items():
            name = self._builder.name_ref(attribute)
            if action == "REMOVE":
                clauses["REMOVE"].append(name)
            elif action == "SET":
                if value is None:
                    clauses["SET"].append(f"{name} = {self._builder.raw_value_ref(None)}")
                else:
                    clauses["SET"].append(f"{name} = {self._builder.value_ref(attribute, value)}")
            else:
                clauses[action].append(f"{name} {self._builder.value_ref(attribute, value)}")

        parts = [f"{action} {', '.join(refs)}" for action, refs in clauses.items() if refs]
        return " ".join(parts)

    def _put(self, attribute: str, action: str, value: Any) -> None:
        if attribute in self._key_attributes:
            raise ValidationError(f"cannot update key attribute: {attribute}")
        self._actions[attribute] = (action, value)

"""Store contract shared by every backend.

The circulation service only needs four operations from its data store:
``insert``, ``update``, ``delete`` and ``select``. Filters are plain dicts
(``{"status": "active"}``) whose values may also be ``Condition`` objects
built with the helpers below (``{"available_copies": gt(0)}``). Joins embed a
related record under an alias, following a foreign key column.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

Record = Dict[str, Any]


@dataclass(frozen=True)
class Condition:
    op: str
    value: Any = None


def eq(value: Any) -> Condition:
    return Condition("eq", value)


def neq(value: Any) -> Condition:
    return Condition("neq", value)


def gt(value: Any) -> Condition:
    return Condition("gt", value)


def gte(value: Any) -> Condition:
    return Condition("gte", value)


def lt(value: Any) -> Condition:
    return Condition("lt", value)


def lte(value: Any) -> Condition:
    return Condition("lte", value)


def is_null(flag: bool = True) -> Condition:
    return Condition("is_null", flag)


def in_(values: Iterable[Any]) -> Condition:
    return Condition("in", tuple(values))


OPERATORS = {"eq", "neq", "gt", "gte", "lt", "lte", "is_null", "in"}


@dataclass(frozen=True)
class Join:
    """Embed ``table`` rows whose id equals this row's ``foreign_key``."""

    table: str
    foreign_key: str
    joins: Optional[Mapping[str, "Join"]] = None


Filters = Optional[Mapping[str, Any]]
Order = Union[None, str, Sequence[str]]


def normalize_filters(filters: Filters) -> List[Tuple[str, Condition]]:
    """Turn ``{"col": value}`` shorthand into explicit conditions."""
    out: List[Tuple[str, Condition]] = []
    for column, value in (filters or {}).items():
        if isinstance(value, Condition):
            if value.op not in OPERATORS:
                raise ValueError(f"Unsupported filter operator: {value.op}")
            out.append((column, value))
        elif value is None:
            out.append((column, is_null(True)))
        else:
            out.append((column, eq(value)))
    return out


def normalize_order(order: Order) -> List[Tuple[str, bool]]:
    """``"title"`` sorts ascending, ``"-created_at"`` descending."""
    if not order:
        return []
    items = [order] if isinstance(order, str) else list(order)
    result = []
    for item in items:
        if item.startswith("-"):
            result.append((item[1:], True))
        else:
            result.append((item, False))
    return result


def adapt_value(value: Any) -> Any:
    """Convert domain values into primitives every backend can store."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, bool):
        return int(value)
    return value


def adapt_record(record: Mapping[str, Any]) -> Record:
    return {key: adapt_value(value) for key, value in record.items()}


def new_id() -> str:
    return uuid.uuid4().hex


class Store:
    """Base class for store backends.

    Subclasses implement ``_select_rows`` plus the three write operations; the
    base class layers join embedding on top so every backend resolves joins
    the same way.
    """

    def insert(self, table: str, record: Mapping[str, Any]) -> Record:
        raise NotImplementedError

    def update(self, table: str, filters: Filters, patch: Mapping[str, Any]) -> int:
        """Apply ``patch`` to matching rows and return how many matched."""
        raise NotImplementedError

    def delete(self, table: str, filters: Filters) -> int:
        raise NotImplementedError

    def _select_rows(self, table: str, filters: Filters, order: Order, limit: Optional[int]) -> List[Record]:
        raise NotImplementedError

    def select(
        self,
        table: str,
        filters: Filters = None,
        joins: Optional[Mapping[str, Join]] = None,
        order: Order = None,
        limit: Optional[int] = None,
    ) -> List[Record]:
        rows = self._select_rows(table, filters, order, limit)
        if joins and rows:
            self._embed(rows, joins)
        return rows

    def select_one(self, table: str, filters: Filters, joins: Optional[Mapping[str, Join]] = None) -> Optional[Record]:
        rows = self.select(table, filters, joins=joins, limit=1)
        return rows[0] if rows else None

    def _embed(self, rows: List[Record], joins: Mapping[str, Join]) -> None:
        for alias, join in joins.items():
            keys = {row.get(join.foreign_key) for row in rows} - {None}
            related: Dict[Any, Record] = {}
            if keys:
                for item in self.select(join.table, {"id": in_(sorted(keys))}, joins=join.joins):
                    related[item["id"]] = item
            for row in rows:
                row[alias] = related.get(row.get(join.foreign_key))

    def close(self) -> None:
        return None

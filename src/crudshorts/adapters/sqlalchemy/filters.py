"""Compile filter mappings into ``WHERE``/``ORDER BY`` clauses on ORM selects."""

from __future__ import annotations

import logging
import operator
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any, Final

from sqlalchemy import Select, and_
from sqlalchemy import inspect as sa_inspect

if TYPE_CHECKING:
    from sqlalchemy.orm import InstrumentedAttribute
    from sqlalchemy.sql.elements import ColumnElement

log = logging.getLogger(__name__)

type Comparison = Callable[[Any, Any], ColumnElement[bool]]

OPERATORS: Final[Mapping[str, Comparison]] = {
    "eq": operator.eq,
    "ne": operator.ne,
    "gt": operator.gt,
    "gte": operator.ge,
    "lt": operator.lt,
    "lte": operator.le,
    "like": lambda column, value: column.like(value),
    "ilike": lambda column, value: column.ilike(value),
    "in": lambda column, value: column.in_(list(value)),
    "not_in": lambda column, value: column.not_in(list(value)),
}


class SqlAlchemyFilterEngine:
    """Filter compiler for ``select(Entity)`` statements.

    Column keys compare by equality; lists become ``IN``, ``None`` becomes
    ``IS NULL`` and mappings of operator names to values combine with ``AND``.
    ``order_by`` and ``group_by`` take a field name or a list of them, with a
    leading ``-`` for descending order. ``limit``, ``offset`` and ``first`` page.
    """

    def apply(self, query: Select[Any], params: Mapping[str, object]) -> Select[Any]:
        schema = query.column_descriptions[0]["entity"]
        column_attrs = sa_inspect(schema).column_attrs
        for key, value in params.items():
            match key:
                case "order_by":
                    query = query.order_by(*self._ordering(schema, value))
                case "group_by":
                    query = query.group_by(*(getattr(schema, name) for name in _names(value)))
                case "limit" | "first":
                    query = query.limit(value)  # type: ignore[arg-type]
                case "offset":
                    query = query.offset(value)  # type: ignore[arg-type]
                case _ if key in column_attrs:
                    query = query.where(self._predicate(getattr(schema, key), value))
                case _:
                    log.debug("Ignoring filter %r, not a column of %s", key, schema.__name__)
        return query

    def _predicate(
        self, column: InstrumentedAttribute[Any], value: object
    ) -> ColumnElement[bool]:
        if value is None:
            return column.is_(None)
        if isinstance(value, list | tuple | set | frozenset):
            return column.in_(list(value))
        if isinstance(value, Mapping):
            clauses: list[ColumnElement[bool]] = []
            for name, operand in value.items():
                comparison = OPERATORS.get(name)
                if comparison is None:
                    raise ValueError(f"Unsupported filter operator: {name}")
                clauses.append(comparison(column, operand))
            return and_(*clauses)
        return column == value

    def _ordering(self, schema: type[object], value: object) -> list[Any]:
        ordering: list[Any] = []
        for name in _names(value):
            if name.startswith("-"):
                ordering.append(getattr(schema, name[1:]).desc())
            else:
                ordering.append(getattr(schema, name).asc())
        return ordering


def _names(value: object) -> list[str]:
    if isinstance(value, str):
        return [value]
    return [str(name) for name in value]  # type: ignore[attr-defined]

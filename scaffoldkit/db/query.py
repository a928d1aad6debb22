"""
Immutable query builder.

A :class:`QueryExpression` describes a SELECT/UPDATE/DELETE against one table.
Builder methods return a new expression and leave the receiver untouched;
values are always bound as named parameters (``param_<n>``) and never inlined
into the SQL text. Compilation is pure and the :class:`QueryExecutor` runs
compiled statements against a :class:`ConnectionRegistry`.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..errors import QueryError
from .connections import ConnectionRegistry

_UNSET: Any = object()

Columns = Union[str, Sequence[str]]


def _as_tuple(columns: Columns) -> Tuple[str, ...]:
    if isinstance(columns, str):
        return tuple(c.strip() for c in columns.split(",") if c.strip())
    return tuple(columns)


def _split_operator(operator_or_value: Any, value: Any) -> Tuple[str, Any]:
    if value is _UNSET:
        return "=", operator_or_value
    return str(operator_or_value), value


@dataclass(frozen=True)
class QueryExpression:
    """Query state for one table."""

    table: str
    connection_name: Optional[str] = None
    select_columns: Tuple[str, ...] = ("*",)
    where_clauses: Tuple[str, ...] = ()
    join_clauses: Tuple[str, ...] = ()
    order_clauses: Tuple[str, ...] = ()
    group_clauses: Tuple[str, ...] = ()
    having_clauses: Tuple[str, ...] = ()
    row_limit: Optional[int] = None
    row_offset: Optional[int] = None
    bound_parameters: Mapping[str, Any] = field(default_factory=dict)

    def _bind(self, value: Any, params: Dict[str, Any]) -> str:
        placeholder = f"param_{len(params)}"
        params[placeholder] = value
        return f":{placeholder}"

    def select(self, columns: Columns) -> "QueryExpression":
        return replace(self, select_columns=_as_tuple(columns) or ("*",))

    def where(
        self,
        column: Union[str, Mapping[str, Any]],
        operator_or_value: Any = _UNSET,
        value: Any = _UNSET,
    ) -> "QueryExpression":
        """Add a WHERE condition.

        ``where("a", 1)`` and ``where("a", "=", 1)`` are equivalent. A mapping
        adds one equality condition per key, joined with AND.
        """
        if isinstance(column, Mapping):
            expr = self
            for name, item in column.items():
                expr = expr.where(name, item)
            return expr

        if operator_or_value is _UNSET:
            raise QueryError(f"where() on '{column}' needs a value")

        operator, value = _split_operator(operator_or_value, value)
        params = dict(self.bound_parameters)
        placeholder = self._bind(value, params)
        return replace(
            self,
            where_clauses=self.where_clauses + (f"{column} {operator} {placeholder}",),
            bound_parameters=params,
        )

    def _where_list(self, column: str, values: Sequence[Any], keyword: str) -> "QueryExpression":
        values = list(values)
        if not values:
            return self
        params = dict(self.bound_parameters)
        placeholders = ", ".join(self._bind(v, params) for v in values)
        return replace(
            self,
            where_clauses=self.where_clauses + (f"{column} {keyword} ({placeholders})",),
            bound_parameters=params,
        )

    def where_in(self, column: str, values: Sequence[Any]) -> "QueryExpression":
        """``column IN (...)``. An empty list adds no condition at all."""
        return self._where_list(column, values, "IN")

    def where_not_in(self, column: str, values: Sequence[Any]) -> "QueryExpression":
        return self._where_list(column, values, "NOT IN")

    def where_null(self, column: str) -> "QueryExpression":
        return replace(self, where_clauses=self.where_clauses + (f"{column} IS NULL",))

    def where_not_null(self, column: str) -> "QueryExpression":
        return replace(self, where_clauses=self.where_clauses + (f"{column} IS NOT NULL",))

    def where_like(self, column: str, pattern: str) -> "QueryExpression":
        return self.where(column, "LIKE", pattern)

    def _join(
        self, kind: str, table: str, first: str, operator_or_second: str, second: Any
    ) -> "QueryExpression":
        operator, other = _split_operator(operator_or_second, second)
        clause = f"{kind} JOIN {table} ON {first} {operator} {other}"
        return replace(self, join_clauses=self.join_clauses + (clause,))

    def join(
        self, table: str, first: str, operator_or_second: str, second: Any = _UNSET
    ) -> "QueryExpression":
        """INNER JOIN; ``join(t, a, b)`` equals ``join(t, a, "=", b)``."""
        return self._join("INNER", table, first, operator_or_second, second)

    def left_join(
        self, table: str, first: str, operator_or_second: str, second: Any = _UNSET
    ) -> "QueryExpression":
        return self._join("LEFT", table, first, operator_or_second, second)

    def right_join(
        self, table: str, first: str, operator_or_second: str, second: Any = _UNSET
    ) -> "QueryExpression":
        return self._join("RIGHT", table, first, operator_or_second, second)

    def order_by(self, column: str, direction: str = "ASC") -> "QueryExpression":
        direction = direction.upper()
        if direction not in ("ASC", "DESC"):
            raise QueryError(
                f"Invalid sort direction: {direction}", code="INVALID_DIRECTION"
            )
        return replace(self, order_clauses=self.order_clauses + (f"{column} {direction}",))

    def group_by(self, columns: Columns) -> "QueryExpression":
        return replace(self, group_clauses=self.group_clauses + _as_tuple(columns))

    def having(
        self, column: str, operator_or_value: Any, value: Any = _UNSET
    ) -> "QueryExpression":
        operator, value = _split_operator(operator_or_value, value)
        params = dict(self.bound_parameters)
        placeholder = self._bind(value, params)
        return replace(
            self,
            having_clauses=self.having_clauses + (f"{column} {operator} {placeholder}",),
            bound_parameters=params,
        )

    def limit(self, count: int, offset: Optional[int] = None) -> "QueryExpression":
        expr = replace(self, row_limit=int(count))
        return expr.offset(offset) if offset is not None else expr

    def offset(self, count: int) -> "QueryExpression":
        return replace(self, row_offset=int(count))


def table(name: str, connection: Optional[str] = None) -> QueryExpression:
    """Start a query on ``name``."""
    return QueryExpression(table=name, connection_name=connection)


def compile_select(expr: QueryExpression) -> Tuple[str, Dict[str, Any]]:
    parts = [f"SELECT {', '.join(expr.select_columns)} FROM {expr.table}"]
    if expr.join_clauses:
        parts.append(" ".join(expr.join_clauses))
    if expr.where_clauses:
        parts.append("WHERE " + " AND ".join(expr.where_clauses))
    if expr.group_clauses:
        parts.append("GROUP BY " + ", ".join(expr.group_clauses))
    if expr.having_clauses:
        parts.append("HAVING " + " AND ".join(expr.having_clauses))
    if expr.order_clauses:
        parts.append("ORDER BY " + ", ".join(expr.order_clauses))
    if expr.row_limit is not None:
        parts.append(f"LIMIT {expr.row_limit}")
    if expr.row_offset is not None:
        parts.append(f"OFFSET {expr.row_offset}")
    return " ".join(parts), dict(expr.bound_parameters)


def _require_where(expr: QueryExpression, statement: str) -> None:
    if not expr.where_clauses:
        raise QueryError(
            f"{statement} on '{expr.table}' is missing WHERE", code="MISSING_WHERE"
        )


def compile_update(
    expr: QueryExpression, data: Mapping[str, Any]
) -> Tuple[str, Dict[str, Any]]:
    """Compile an UPDATE; SET values bind as ``set_<column>``."""
    _require_where(expr, "UPDATE")
    if not data:
        raise QueryError(f"UPDATE on '{expr.table}' has no values", code="EMPTY_UPDATE")
    params = dict(expr.bound_parameters)
    assignments = []
    for column, value in data.items():
        params[f"set_{column}"] = value
        assignments.append(f"{column} = :set_{column}")
    sql = (
        f"UPDATE {expr.table} SET {', '.join(assignments)} "
        f"WHERE {' AND '.join(expr.where_clauses)}"
    )
    return sql, params


def compile_delete(expr: QueryExpression) -> Tuple[str, Dict[str, Any]]:
    _require_where(expr, "DELETE")
    sql = f"DELETE FROM {expr.table} WHERE {' AND '.join(expr.where_clauses)}"
    return sql, dict(expr.bound_parameters)


@dataclass
class PageResult:
    """One page of rows plus paging metadata."""

    data: List[Dict[str, Any]]
    current_page: int
    per_page: int
    total: int
    last_page: int
    from_: int
    to: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "current_page": self.current_page,
            "per_page": self.per_page,
            "total": self.total,
            "last_page": self.last_page,
            "from": self.from_,
            "to": self.to,
        }


class QueryExecutor:
    """Run query expressions on the connection each one names."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    def _handle(self, expr: QueryExpression):
        return self.registry.connection(expr.connection_name)

    def get(self, expr: QueryExpression) -> List[Dict[str, Any]]:
        sql, params = compile_select(expr)
        return self._handle(expr).fetch_all(sql, params)

    def first(self, expr: QueryExpression) -> Optional[Dict[str, Any]]:
        rows = self.get(expr.limit(1))
        return rows[0] if rows else None

    def count(self, expr: QueryExpression) -> int:
        counted = replace(
            expr,
            select_columns=("COUNT(*) AS count",),
            order_clauses=(),
            row_limit=None,
            row_offset=None,
        )
        sql, params = compile_select(counted)
        row = self._handle(expr).fetch_one(sql, params)
        return int(row["count"]) if row else 0

    def exists(self, expr: QueryExpression) -> bool:
        return self.count(expr) > 0

    def paginate(
        self, expr: QueryExpression, page: int = 1, per_page: int = 15
    ) -> PageResult:
        """Fetch one page; ``page`` is 1-based."""
        page = max(int(page), 1)
        per_page = max(int(per_page), 1)
        total = self.count(expr)
        offset = (page - 1) * per_page
        data = self.get(expr.limit(per_page, offset))
        return PageResult(
            data=data,
            current_page=page,
            per_page=per_page,
            total=total,
            last_page=math.ceil(total / per_page),
            from_=offset + 1,
            to=min(offset + per_page, total),
        )

    def update(self, expr: QueryExpression, data: Mapping[str, Any]) -> int:
        sql, params = compile_update(expr, data)
        return self._handle(expr).execute(sql, params)

    def delete(self, expr: QueryExpression) -> int:
        sql, params = compile_delete(expr)
        return self._handle(expr).execute(sql, params)

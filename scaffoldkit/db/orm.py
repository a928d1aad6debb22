"""
Table-backed models.

A model is a :class:`ModelConfig` (table, key, fillable/hidden attributes,
casts, relations) plus a :class:`Repository` that runs queries for it. Rows
are plain dicts; every row leaving the repository has hidden attributes
removed and casts applied.
"""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterable, List, Literal, Mapping, Optional

import structlog
from pydantic import BaseModel, Field, model_validator

from ..errors import ModelNotFoundError
from .connections import ConnectionRegistry
from .query import PageResult, QueryExecutor, QueryExpression, table

logger = structlog.get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class RelationConfig(BaseModel):
    """A relation to another table."""

    type: Literal["belongs_to", "has_many"]
    table: str
    foreign_key: str
    local_key: str = "id"


class ModelConfig(BaseModel):
    """Per-model configuration. ``table`` defaults to ``<name>s``."""

    name: str
    table: str = ""
    primary_key: str = "id"
    timestamps: bool = True
    created_at: Optional[str] = "created_at"
    updated_at: Optional[str] = "updated_at"
    connection: Optional[str] = None
    fillable: List[str] = Field(default_factory=list)
    hidden: List[str] = Field(default_factory=list)
    casts: Dict[str, str] = Field(default_factory=dict)
    relations: Dict[str, RelationConfig] = Field(default_factory=dict)

    @model_validator(mode="after")
    def default_table(self) -> "ModelConfig":
        if not self.table:
            self.table = f"{self.name}s"
        return self


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "off", "no")
    return bool(value)


def _to_datetime(value: Any) -> Any:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return value


def _to_date(value: Any) -> Any:
    parsed = _to_datetime(value)
    return parsed.date() if isinstance(parsed, datetime) else parsed


def _cast_value(kind: str, value: Any) -> Any:
    try:
        if kind in ("int", "integer"):
            return int(value)
        if kind in ("float", "double"):
            return float(value)
        if kind in ("bool", "boolean"):
            return _to_bool(value)
        if kind in ("json", "array"):
            return json.loads(value) if isinstance(value, (str, bytes)) else value
        if kind == "date":
            return _to_date(value)
        if kind == "datetime":
            return _to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("cast_skipped", kind=kind, value=repr(value))
    return value


def cast_row(config: ModelConfig, row: Optional[Mapping[str, Any]]) -> Optional[Dict[str, Any]]:
    """Drop hidden attributes and apply configured casts. ``None`` passes through."""
    if row is None:
        return None
    data = {key: value for key, value in row.items() if key not in config.hidden}
    for attribute, kind in config.casts.items():
        if data.get(attribute) is not None:
            data[attribute] = _cast_value(kind, data[attribute])
    return data


class Repository:
    """Data access for one model configuration."""

    def __init__(self, config: ModelConfig, registry: ConnectionRegistry):
        self.config = config
        self.registry = registry
        self.executor = QueryExecutor(registry)

    def _cast_all(self, rows: Iterable[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        return [cast_row(self.config, row) for row in rows]

    def _now(self) -> str:
        return datetime.now().strftime(TIMESTAMP_FORMAT)

    def _fillable(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        if not self.config.fillable:
            return dict(data)
        return {key: value for key, value in data.items() if key in self.config.fillable}

    def _filtered(self, conditions: Optional[Mapping[str, Any]]) -> QueryExpression:
        query = self.query()
        if conditions:
            query = query.where(conditions)
        return query

    def query(self) -> QueryExpression:
        """Fresh query on the model's table and connection."""
        return table(self.config.table, self.config.connection)

    def get(self, query: QueryExpression) -> List[Dict[str, Any]]:
        """Run a query built from :meth:`query` and cast the rows."""
        return self._cast_all(self.executor.get(query))

    def find(self, id: Any) -> Optional[Dict[str, Any]]:
        row = self.executor.first(self.query().where(self.config.primary_key, id))
        return cast_row(self.config, row)

    def find_or_fail(self, id: Any) -> Dict[str, Any]:
        row = self.find(id)
        if row is None:
            raise ModelNotFoundError(f"{self.config.name} with ID {id} not found")
        return row

    def find_by(self, column: str, value: Any) -> Optional[Dict[str, Any]]:
        return cast_row(self.config, self.executor.first(self.query().where(column, value)))

    def all(self) -> List[Dict[str, Any]]:
        return self.get(self.query())

    def where(self, conditions: Mapping[str, Any]) -> List[Dict[str, Any]]:
        return self.get(self._filtered(conditions))

    def create(self, data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Insert fillable attributes (plus timestamps) and return the stored row."""
        values = self._fillable(data)
        if self.config.timestamps:
            now = self._now()
            if self.config.created_at:
                values[self.config.created_at] = now
            if self.config.updated_at:
                values[self.config.updated_at] = now

        new_id = self.registry.insert(
            self.config.table,
            values,
            id_column=self.config.primary_key,
            connection=self.config.connection,
        )
        logger.debug("model_created", model=self.config.name, id=new_id)
        return self.find(new_id)

    def update(self, id: Any, data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Update one row; returns the re-read row, or None when nothing changed."""
        values = self._fillable(data)
        if self.config.timestamps and self.config.updated_at:
            values[self.config.updated_at] = self._now()
        if not values:
            return self.find(id)

        updated = self.registry.update(
            self.config.table,
            values,
            id,
            id_column=self.config.primary_key,
            connection=self.config.connection,
        )
        return self.find(id) if updated > 0 else None

    def delete(self, id: Any) -> int:
        return self.registry.delete(
            self.config.table,
            id,
            id_column=self.config.primary_key,
            connection=self.config.connection,
        )

    def save(self, data: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        """Update when ``data`` carries a primary key value, create otherwise."""
        values = dict(data)
        id = values.pop(self.config.primary_key, None)
        if id:
            return self.update(id, values)
        return self.create(values)

    def count(self, conditions: Optional[Mapping[str, Any]] = None) -> int:
        return self.executor.count(self._filtered(conditions))

    def paginate(
        self,
        page: int = 1,
        per_page: int = 15,
        conditions: Optional[Mapping[str, Any]] = None,
    ) -> PageResult:
        result = self.executor.paginate(self._filtered(conditions), page, per_page)
        result.data = self._cast_all(result.data)
        return result

    def chunk(
        self,
        size: int,
        callback: Callable[[List[Dict[str, Any]]], Any],
        conditions: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Feed rows to ``callback`` in batches of ``size`` until a short batch."""
        page = 1
        while True:
            query = self._filtered(conditions).limit(size, (page - 1) * size)
            rows = self.executor.get(query)
            if not rows:
                break
            callback(self._cast_all(rows))
            if len(rows) != size:
                break
            page += 1

    def raw(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        return self._cast_all(self.registry.query(sql, params, connection=self.config.connection))

    def with_relations(self, names: Iterable[str]) -> QueryExpression:
        """Query joined to each named ``belongs_to`` relation.

        ``has_many`` relations need a second query and are left to the caller.
        """
        query = self.query()
        for name in names:
            relation = self.config.relations.get(name)
            if relation is None or relation.type != "belongs_to":
                continue
            query = query.left_join(
                relation.table,
                f"{self.config.table}.{relation.foreign_key}",
                f"{relation.table}.{relation.local_key}",
            )
        return query

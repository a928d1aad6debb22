"""
Live schema introspection.

The inspector reads column metadata from the database catalog of the
connection's dialect and returns fresh :class:`ColumnDescriptor` values. It
never raises: failures are logged and reported as an empty result.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from ..errors import IntrospectionError
from .connections import ConnectionHandle, ConnectionRegistry

logger = structlog.get_logger(__name__)

TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_LENGTH_RE = re.compile(r"\(\s*(\d+)\s*\)")


@dataclass(frozen=True)
class ColumnDescriptor:
    """Metadata for one table column."""

    name: str
    raw_type: str
    nullable: bool = True
    default_value: Optional[str] = None
    max_length: Optional[int] = None
    is_primary_key: bool = False
    is_auto_increment: bool = False

    @property
    def is_identifier(self) -> bool:
        return self.is_primary_key and self.is_auto_increment


def _parse_length(raw_type: str) -> Optional[int]:
    if "char" not in raw_type.lower():
        return None
    match = _LENGTH_RE.search(raw_type)
    return int(match.group(1)) if match else None


def _as_default(value: Any) -> Optional[str]:
    return None if value is None else str(value)


class SchemaInspector:
    """Read column metadata for tables on a registry connection."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    def columns(
        self, table_name: str, connection_name: Optional[str] = None
    ) -> List[ColumnDescriptor]:
        """Return the columns of ``table_name`` in ordinal order.

        An unknown table, an invalid name or any driver error yields ``[]``.
        """
        log = logger.bind(table=table_name, connection=connection_name)
        try:
            handle = self.registry.connection(connection_name)
            if handle.driver == "mysql":
                return self._mysql_columns(handle, table_name)
            if handle.driver == "pgsql":
                return self._pgsql_columns(handle, table_name)
            if handle.driver == "sqlite":
                return self._sqlite_columns(handle, table_name)
            raise IntrospectionError(f"Unsupported driver: {handle.driver}")
        except Exception as e:
            log.warning("introspection_failed", error=str(e))
            return []

    def table_exists(self, table_name: str, connection_name: Optional[str] = None) -> bool:
        log = logger.bind(table=table_name, connection=connection_name)
        try:
            handle = self.registry.connection(connection_name)
            if handle.driver == "mysql":
                sql = (
                    "SELECT COUNT(*) FROM information_schema.TABLES "
                    "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table"
                )
            elif handle.driver == "pgsql":
                sql = (
                    "SELECT COUNT(*) FROM information_schema.tables "
                    "WHERE table_schema = current_schema() AND table_name = :table"
                )
            elif handle.driver == "sqlite":
                sql = (
                    "SELECT COUNT(*) FROM sqlite_master "
                    "WHERE type = 'table' AND name = :table"
                )
            else:
                raise IntrospectionError(f"Unsupported driver: {handle.driver}")
            return bool(handle.fetch_scalar(sql, {"table": table_name}))
        except Exception as e:
            log.warning("introspection_failed", error=str(e))
            return False

    def tables(self, connection_name: Optional[str] = None) -> List[str]:
        """List base tables on the connection, sorted by name."""
        try:
            handle = self.registry.connection(connection_name)
            if handle.driver == "mysql":
                sql = (
                    "SELECT TABLE_NAME AS name FROM information_schema.TABLES "
                    "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_TYPE = 'BASE TABLE' "
                    "ORDER BY TABLE_NAME"
                )
            elif handle.driver == "pgsql":
                sql = (
                    "SELECT table_name AS name FROM information_schema.tables "
                    "WHERE table_schema = current_schema() AND table_type = 'BASE TABLE' "
                    "ORDER BY table_name"
                )
            elif handle.driver == "sqlite":
                sql = (
                    "SELECT name FROM sqlite_master WHERE type = 'table' "
                    "AND name NOT LIKE 'sqlite_%' ORDER BY name"
                )
            else:
                raise IntrospectionError(f"Unsupported driver: {handle.driver}")
            return [row["name"] for row in handle.fetch_all(sql)]
        except Exception as e:
            logger.warning("introspection_failed", connection=connection_name, error=str(e))
            return []

    # -- Dialects ----------------------------------------------------------

    def _mysql_columns(
        self, handle: ConnectionHandle, table_name: str
    ) -> List[ColumnDescriptor]:
        rows = handle.fetch_all(
            "SELECT COLUMN_NAME, COLUMN_TYPE, IS_NULLABLE, COLUMN_DEFAULT, "
            "CHARACTER_MAXIMUM_LENGTH, COLUMN_KEY, EXTRA "
            "FROM information_schema.COLUMNS "
            "WHERE TABLE_SCHEMA = DATABASE() AND TABLE_NAME = :table "
            "ORDER BY ORDINAL_POSITION",
            {"table": table_name},
        )
        return [
            ColumnDescriptor(
                name=row["COLUMN_NAME"],
                raw_type=row["COLUMN_TYPE"],
                nullable=row["IS_NULLABLE"] == "YES",
                default_value=_as_default(row["COLUMN_DEFAULT"]),
                max_length=row["CHARACTER_MAXIMUM_LENGTH"],
                is_primary_key=row["COLUMN_KEY"] == "PRI",
                is_auto_increment="auto_increment" in (row["EXTRA"] or "").lower(),
            )
            for row in rows
        ]

    def _pgsql_columns(
        self, handle: ConnectionHandle, table_name: str
    ) -> List[ColumnDescriptor]:
        rows = handle.fetch_all(
            "SELECT column_name, data_type, is_nullable, column_default, "
            "character_maximum_length, is_identity "
            "FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = :table "
            "ORDER BY ordinal_position",
            {"table": table_name},
        )
        primary: Dict[str, bool] = {
            row["column_name"]: True
            for row in handle.fetch_all(
                "SELECT kcu.column_name "
                "FROM information_schema.table_constraints tc "
                "JOIN information_schema.key_column_usage kcu "
                "ON tc.constraint_name = kcu.constraint_name "
                "AND tc.table_schema = kcu.table_schema "
                "WHERE tc.constraint_type = 'PRIMARY KEY' "
                "AND tc.table_schema = current_schema() AND tc.table_name = :table",
                {"table": table_name},
            )
        }
        columns = []
        for row in rows:
            default = _as_default(row["column_default"])
            columns.append(
                ColumnDescriptor(
                    name=row["column_name"],
                    raw_type=row["data_type"],
                    nullable=row["is_nullable"] == "YES",
                    default_value=default,
                    max_length=row["character_maximum_length"],
                    is_primary_key=primary.get(row["column_name"], False),
                    is_auto_increment=(
                        (default or "").startswith("nextval(")
                        or row["is_identity"] == "YES"
                    ),
                )
            )
        return columns

    def _sqlite_columns(
        self, handle: ConnectionHandle, table_name: str
    ) -> List[ColumnDescriptor]:
        if not TABLE_NAME_RE.match(table_name):
            raise IntrospectionError(f"Invalid table name: {table_name!r}")

        # PRAGMA arguments cannot be bound parameters
        rows = handle.fetch_all(f"PRAGMA table_info({table_name})")
        return [
            ColumnDescriptor(
                name=row["name"],
                raw_type=row["type"],
                nullable=not row["notnull"],
                default_value=_as_default(row["dflt_value"]),
                max_length=_parse_length(row["type"]),
                is_primary_key=bool(row["pk"]),
                is_auto_increment=bool(row["pk"]),
            )
            for row in rows
        ]

"""Database access: connections, introspection, queries and models."""

from .connections import ConnectionConfig, ConnectionHandle, ConnectionRegistry
from .inspector import ColumnDescriptor, SchemaInspector
from .orm import ModelConfig, RelationConfig, Repository, cast_row
from .query import (
    PageResult,
    QueryExecutor,
    QueryExpression,
    compile_delete,
    compile_select,
    compile_update,
    table,
)

__all__ = [
    "ColumnDescriptor",
    "ConnectionConfig",
    "ConnectionHandle",
    "ConnectionRegistry",
    "ModelConfig",
    "PageResult",
    "QueryExecutor",
    "QueryExpression",
    "RelationConfig",
    "Repository",
    "SchemaInspector",
    "cast_row",
    "compile_delete",
    "compile_select",
    "compile_update",
    "table",
]

"""
scaffoldkit

Database toolkit and code-generation console: named connections, schema
introspection, an immutable query builder, table-backed models, versioned
migrations and CRUD scaffolding.
"""

import importlib.metadata

__version__ = importlib.metadata.version("scaffoldkit")

from .config import Settings, config_get, get_settings
from .db import (
    ColumnDescriptor,
    ConnectionRegistry,
    ModelConfig,
    QueryExecutor,
    Repository,
    SchemaInspector,
    table,
)
from .errors import (
    DatabaseConnectionError,
    IntrospectionError,
    MigrationError,
    ModelNotFoundError,
    QueryError,
    ScaffoldKitError,
)
from .migrations import MigrationEngine
from .scaffold import ScaffoldGenerator, build_plan, classify

__all__ = [
    "ColumnDescriptor",
    "ConnectionRegistry",
    "DatabaseConnectionError",
    "IntrospectionError",
    "MigrationEngine",
    "MigrationError",
    "ModelConfig",
    "ModelNotFoundError",
    "QueryError",
    "QueryExecutor",
    "Repository",
    "ScaffoldGenerator",
    "ScaffoldKitError",
    "SchemaInspector",
    "Settings",
    "build_plan",
    "classify",
    "config_get",
    "get_settings",
    "table",
]

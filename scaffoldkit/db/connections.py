"""Named database connections for scaffoldkit.

A :class:`ConnectionRegistry` holds connection definitions and lazily opens
one :class:`ConnectionHandle` per name. Handles are reused until they are
explicitly closed; there is no pooling or reconnection.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import structlog
from pydantic import BaseModel, Field
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.engine import Connection, CursorResult
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.pool import StaticPool

from ..errors import DatabaseConnectionError

logger = structlog.get_logger(__name__)

SUPPORTED_DRIVERS = ("mysql", "pgsql", "sqlite")

# SQLAlchemy dialect+driver used for each configured driver name
_DRIVERNAMES = {
    "mysql": "mysql+pymysql",
    "pgsql": "postgresql+psycopg",
    "sqlite": "sqlite",
}


def _ensure_sync_driver(url: URL) -> URL:
    """Force a synchronous driver for explicitly configured URLs."""

    if url.drivername.startswith("postgresql+"):
        # Normalize any async driver variants to psycopg (sync)
        if any(token in url.drivername for token in ("async", "aiopg")):
            url = url.set(drivername="postgresql+psycopg")
    elif url.drivername.startswith("sqlite+"):
        if "aiosqlite" in url.drivername:
            url = url.set(drivername="sqlite")
    elif url.drivername.startswith("mysql+"):
        if any(token in url.drivername for token in ("aiomysql", "asyncmy")):
            url = url.set(drivername="mysql+pymysql")

    return url


class ConnectionConfig(BaseModel):
    """Definition of one named connection."""

    driver: str = "sqlite"
    host: str = "localhost"
    port: Optional[int] = None
    database: str = ":memory:"
    username: Optional[str] = None
    password: Optional[str] = None
    charset: str = "utf8mb4"
    url: Optional[str] = Field(
        default=None,
        description="Explicit SQLAlchemy URL; overrides host/port/database.",
    )
    options: Dict[str, Any] = Field(default_factory=dict)

    def to_url(self) -> URL:
        """Build the SQLAlchemy URL for this connection."""
        if self.url:
            return _ensure_sync_driver(make_url(self.url))

        if self.driver not in _DRIVERNAMES:
            raise DatabaseConnectionError(
                f"Unsupported database driver: {self.driver}",
                code="UNSUPPORTED_DRIVER",
            )

        if self.driver == "sqlite":
            return URL.create("sqlite", database=self.database)

        query = {"charset": self.charset} if self.driver == "mysql" else {}
        return URL.create(
            _DRIVERNAMES[self.driver],
            username=self.username,
            password=self.password,
            host=self.host,
            port=self.port,
            database=self.database,
            query=query,
        )

    @property
    def is_file_sqlite(self) -> bool:
        return (
            self.driver == "sqlite"
            and not self.url
            and self.database not in ("", ":memory:")
        )


class ConnectionHandle:
    """One open connection.

    Statements run outside an explicit transaction are committed as soon as
    they finish. ``begin``/``commit``/``rollback`` are available to callers
    that want a multi-statement transaction.
    """

    def __init__(self, name: str, driver: str, engine: Engine):
        self.name = name
        self.driver = driver
        self.engine = engine
        self._connection: Connection = engine.connect()
        self._explicit = False

    @property
    def connection(self) -> Connection:
        """The underlying SQLAlchemy connection."""
        return self._connection

    @property
    def in_transaction(self) -> bool:
        return self._explicit

    def _run(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]],
        consume: Callable[[CursorResult], Any],
    ) -> Any:
        try:
            result = self._connection.execute(text(sql), dict(params or {}))
            value = consume(result)
        except Exception:
            if not self._explicit and self._connection.in_transaction():
                self._connection.rollback()
            raise
        self.autocommit()
        return value

    def autocommit(self) -> None:
        """Commit work started implicitly, unless an explicit transaction is open."""
        if not self._explicit and self._connection.in_transaction():
            self._connection.commit()

    def fetch_all(
        self, sql: str, params: Optional[Mapping[str, Any]] = None
    ) -> List[Dict[str, Any]]:
        """Run a query and return every row as a dict."""
        return self._run(sql, params, lambda r: [dict(row._mapping) for row in r])

    def fetch_one(
        self, sql: str, params: Optional[Mapping[str, Any]] = None
    ) -> Optional[Dict[str, Any]]:
        """Run a query and return the first row, or None."""

        def first(result: CursorResult) -> Optional[Dict[str, Any]]:
            row = result.first()
            return dict(row._mapping) if row is not None else None

        return self._run(sql, params, first)

    def fetch_scalar(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """Run a query and return the first column of the first row."""
        return self._run(sql, params, lambda r: r.scalar())

    def execute(self, sql: str, params: Optional[Mapping[str, Any]] = None) -> int:
        """Run a statement and return the affected row count."""
        return self._run(sql, params, lambda r: r.rowcount)

    def insert(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        id_column: str = "id",
    ) -> Any:
        """Run an INSERT and return the new row's identifier."""
        if self.driver == "pgsql":
            return self._run(f"{sql} RETURNING {id_column}", params, lambda r: r.scalar())
        return self._run(sql, params, lambda r: r.lastrowid)

    def begin(self) -> None:
        """Open an explicit transaction."""
        if self._connection.in_transaction():
            self._connection.commit()
        self._connection.begin()
        self._explicit = True

    def commit(self) -> None:
        self._connection.commit()
        self._explicit = False

    def rollback(self) -> None:
        self._connection.rollback()
        self._explicit = False

    def close(self) -> None:
        self._connection.close()
        self.engine.dispose()


class ConnectionRegistry:
    """Connection definitions plus a cache of open handles keyed by name."""

    def __init__(self, config: Optional[Mapping[str, Any]] = None):
        self._default = "main"
        self._definitions: Dict[str, ConnectionConfig] = {}
        self._handles: Dict[str, ConnectionHandle] = {}
        if config is not None:
            self.configure(config)

    @classmethod
    def from_settings(cls, settings: Any) -> "ConnectionRegistry":
        """Build a registry from ``Settings.database``."""
        return cls(settings.database.registry_config())

    def configure(self, config: Mapping[str, Any]) -> None:
        """Replace every known connection definition.

        ``config`` has the shape ``{"default": name, "connections": {name:
        ConnectionConfig | dict}}``. Handles whose definition disappeared or
        changed are closed.
        """
        definitions = {
            name: value if isinstance(value, ConnectionConfig) else ConnectionConfig(**value)
            for name, value in (config.get("connections") or {}).items()
        }
        for name in list(self._handles):
            if definitions.get(name) != self._definitions.get(name):
                self.close_connection(name)

        self._definitions = definitions
        self._default = config.get("default") or "main"

    @property
    def default_name(self) -> str:
        return self._default

    @property
    def names(self) -> List[str]:
        return list(self._definitions)

    def definition(self, name: Optional[str] = None) -> ConnectionConfig:
        """Return the configuration for ``name`` (default connection if omitted)."""
        name = name or self._default
        try:
            return self._definitions[name]
        except KeyError:
            raise DatabaseConnectionError(
                f"Database connection '{name}' not configured",
                connection=name,
                code="CONNECTION_NOT_CONFIGURED",
            ) from None

    def driver_for(self, name: Optional[str] = None) -> str:
        config = self.definition(name)
        if config.url:
            drivername = make_url(config.url).get_backend_name()
            return {"postgresql": "pgsql"}.get(drivername, drivername)
        return config.driver

    def connection(self, name: Optional[str] = None) -> ConnectionHandle:
        """Return the cached handle for ``name``, opening it on first use."""
        name = name or self._default
        handle = self._handles.get(name)
        if handle is not None:
            return handle

        config = self.definition(name)
        handle = self._open(name, config)
        self._handles[name] = handle
        logger.info("connection_opened", connection=name, driver=handle.driver)
        return handle

    def _open(self, name: str, config: ConnectionConfig) -> ConnectionHandle:
        try:
            url = config.to_url()
        except DatabaseConnectionError as e:
            e.connection = name
            raise

        if url.get_backend_name() == "sqlite":
            # SQLite configuration for development/testing
            engine_kwargs: Dict[str, Any] = {
                "connect_args": {"check_same_thread": False},
                "poolclass": StaticPool,
            }
        else:
            engine_kwargs = {
                "pool_pre_ping": True,
                "pool_recycle": 3600,
            }
        engine_kwargs.update(config.options)

        try:
            if config.is_file_sqlite:
                Path(config.database).expanduser().parent.mkdir(parents=True, exist_ok=True)
            engine = create_engine(url, **engine_kwargs)
            return ConnectionHandle(name, self.driver_for(name), engine)
        except Exception as e:
            raise DatabaseConnectionError(
                f"Database connection '{name}' failed: {e}",
                connection=name,
            ) from e

    def close_connection(self, name: str) -> None:
        """Evict one cached handle; the next ``connection(name)`` reopens it."""
        handle = self._handles.pop(name, None)
        if handle is not None:
            handle.close()
            logger.info("connection_closed", connection=name)

    def close_all(self) -> None:
        for name in list(self._handles):
            self.close_connection(name)

    # -- Procedural helpers ------------------------------------------------

    def query(
        self,
        sql: str,
        params: Optional[Mapping[str, Any]] = None,
        connection: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Run raw SQL with named parameters and return all rows."""
        return self.connection(connection).fetch_all(sql, params)

    def find(
        self,
        table: str,
        id: Any,
        id_column: str = "id",
        connection: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        sql = f"SELECT * FROM {table} WHERE {id_column} = :id LIMIT 1"
        return self.connection(connection).fetch_one(sql, {"id": id})

    def find_all(
        self,
        table: str,
        conditions: Optional[Mapping[str, Any]] = None,
        order: str = "",
        connection: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        sql = f"SELECT * FROM {table}"
        params: Dict[str, Any] = {}
        if conditions:
            clauses = []
            for index, (column, value) in enumerate(conditions.items()):
                clauses.append(f"{column} = :c{index}")
                params[f"c{index}"] = value
            sql += " WHERE " + " AND ".join(clauses)
        if order:
            sql += f" ORDER BY {order}"
        return self.connection(connection).fetch_all(sql, params)

    def insert(
        self,
        table: str,
        data: Mapping[str, Any],
        id_column: str = "id",
        connection: Optional[str] = None,
    ) -> Any:
        """Insert one row and return its identifier."""
        columns: Sequence[str] = list(data)
        placeholders = ", ".join(f":{column}" for column in columns)
        sql = f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders})"
        return self.connection(connection).insert(sql, data, id_column=id_column)

    def update(
        self,
        table: str,
        data: Mapping[str, Any],
        id: Any,
        id_column: str = "id",
        connection: Optional[str] = None,
    ) -> int:
        """Update one row by identifier and return the affected count."""
        assignments = ", ".join(f"{column} = :{column}" for column in data)
        sql = f"UPDATE {table} SET {assignments} WHERE {id_column} = :__id"
        params = dict(data)
        params["__id"] = id
        return self.connection(connection).execute(sql, params)

    def delete(
        self,
        table: str,
        id: Any,
        id_column: str = "id",
        connection: Optional[str] = None,
    ) -> int:
        sql = f"DELETE FROM {table} WHERE {id_column} = :id"
        return self.connection(connection).execute(sql, {"id": id})

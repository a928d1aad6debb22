"""
Versioned schema migrations.

Migration files live in one directory and are named
``YYYY_MM_DD_HHMMSS_<description>.py``. Each module defines ``upgrade(op)``
and ``downgrade(op)``; ``op`` is an :class:`alembic.operations.Operations`
bound to the engine's connection. Applied migrations are recorded in a ledger
table (``migrations`` by default).
"""

from __future__ import annotations

import importlib.util
import re
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union

import structlog
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, inspect

from ..db.connections import ConnectionHandle, ConnectionRegistry
from ..errors import MigrationError
from ..templating import TemplateRenderer

logger = structlog.get_logger(__name__)

TIMESTAMP_RE = re.compile(r"^(\d{4}_\d{2}_\d{2}_\d{6})")
ADD_COLUMN_RE = re.compile(r"add_(.+)_to_(.+)_table")
REMOVE_COLUMN_RE = re.compile(r"remove_(.+)_from_(.+)_table")

MigrationFunction = Callable[[Operations], None]


@dataclass(frozen=True)
class MigrationFile:
    name: str
    path: Path
    timestamp: str

    @property
    def sort_key(self) -> Tuple[str, str]:
        return (self.timestamp, self.name)


@dataclass(frozen=True)
class Migration:
    """A loaded migration module."""

    name: str
    upgrade: MigrationFunction
    downgrade: MigrationFunction


@dataclass
class MigrationStatus:
    total: int
    completed: int
    pending: int
    entries: List[Tuple[str, bool]] = field(default_factory=list)


def migration_filename(name: str, now: Optional[datetime] = None) -> str:
    """``create_posts_table`` -> ``2024_01_01_120000_create_posts_table.py``."""
    now = now or datetime.now()
    return f"{now.strftime('%Y_%m_%d_%H%M%S')}_{name}.py"


def normalize_name(name: str) -> str:
    return re.sub(r"[\s\-]+", "_", name.strip()).lower()


class MigrationEngine:
    """Discover, apply, roll back and generate migrations."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        path: Union[str, Path],
        table: str = "migrations",
        connection: Optional[str] = None,
        renderer: Optional[TemplateRenderer] = None,
    ):
        self.connections = registry
        self.path = Path(path)
        self.table = table
        self.connection_name = connection
        self.renderer = renderer or TemplateRenderer()
        self.ledger = Table(
            table,
            MetaData(),
            Column("id", Integer, primary_key=True, autoincrement=True),
            Column("migration", String(255), nullable=False, unique=True),
            Column("executed_at", DateTime, nullable=True),
        )

    @property
    def handle(self) -> ConnectionHandle:
        return self.connections.connection(self.connection_name)

    # -- Discovery ---------------------------------------------------------

    def discover(self) -> List[MigrationFile]:
        """Migration files on disk, ordered by (timestamp, name)."""
        if not self.path.is_dir():
            return []
        files = []
        for path in self.path.glob("*.py"):
            if path.name.startswith("_"):
                continue
            match = TIMESTAMP_RE.match(path.stem)
            files.append(
                MigrationFile(
                    name=path.stem,
                    path=path,
                    timestamp=match.group(1) if match else path.stem,
                )
            )
        return sorted(files, key=lambda f: f.sort_key)

    def load(self, file: MigrationFile) -> Migration:
        """Import a migration module and pick up its up/down functions."""
        module_spec = importlib.util.spec_from_file_location(
            f"scaffoldkit_migration_{file.name}", file.path
        )
        if module_spec is None or module_spec.loader is None:
            raise MigrationError(
                f"Cannot load migration: {file.path}", migration=file.name, code="LOAD_FAILED"
            )
        module = importlib.util.module_from_spec(module_spec)
        try:
            module_spec.loader.exec_module(module)
        except Exception as e:
            raise MigrationError(
                f"Cannot load migration {file.name}: {e}",
                migration=file.name,
                code="LOAD_FAILED",
            ) from e

        functions = {}
        for attr in ("upgrade", "downgrade"):
            func = getattr(module, attr, None)
            if not callable(func):
                raise MigrationError(
                    f"Migration function not found: {attr} in {file.name}",
                    migration=file.name,
                    code="FUNCTION_NOT_FOUND",
                )
            functions[attr] = func
        return Migration(name=file.name, **functions)

    def registry(self) -> Dict[str, Migration]:
        """Every migration on disk, keyed by name."""
        return {file.name: self.load(file) for file in self.discover()}

    def resolve(self, name: str) -> Migration:
        for file in self.discover():
            if file.name == name:
                return self.load(file)
        raise MigrationError(
            f"Migration file not found: {name}", migration=name, code="NOT_FOUND"
        )

    # -- Ledger ------------------------------------------------------------

    def ensure_ledger(self) -> None:
        handle = self.handle
        self.ledger.create(handle.connection, checkfirst=True)
        handle.autocommit()

    def ledger_exists(self) -> bool:
        handle = self.handle
        exists = inspect(handle.connection).has_table(self.table)
        handle.autocommit()
        return exists

    def completed(self) -> List[str]:
        """Applied migration names in the order they were applied."""
        if not self.ledger_exists():
            return []
        rows = self.handle.fetch_all(f"SELECT migration FROM {self.table} ORDER BY id")
        return [row["migration"] for row in rows]

    def pending(self) -> List[MigrationFile]:
        done = set(self.completed())
        return [file for file in self.discover() if file.name not in done]

    def status(self) -> MigrationStatus:
        done = self.completed()
        files = self.discover()
        entries = [(file.name, file.name in done) for file in files]
        return MigrationStatus(
            total=len(files),
            completed=len(done),
            pending=sum(1 for _, applied in entries if not applied),
            entries=entries,
        )

    def _record(self, name: str) -> None:
        self.handle.execute(
            f"INSERT INTO {self.table} (migration, executed_at) VALUES (:migration, :executed_at)",
            {"migration": name, "executed_at": datetime.now().strftime("%Y-%m-%d %H:%M:%S")},
        )

    def _forget(self, name: str) -> None:
        self.handle.execute(
            f"DELETE FROM {self.table} WHERE migration = :migration", {"migration": name}
        )

    # -- Execution ---------------------------------------------------------

    def _invoke(self, name: str, func: MigrationFunction, direction: str) -> None:
        handle = self.handle
        op = Operations(MigrationContext.configure(handle.connection))
        try:
            func(op)
        except Exception as e:
            if handle.connection.in_transaction() and not handle.in_transaction:
                handle.connection.rollback()
            raise MigrationError(
                f"Migration {direction} failed: {name}: {e}", migration=name
            ) from e
        handle.autocommit()

    def apply(self, file: MigrationFile) -> None:
        """Run one migration's ``upgrade`` and record it in the ledger."""
        log = logger.bind(migration=file.name)
        migration = self.load(file)
        self._invoke(file.name, migration.upgrade, "upgrade")
        self._record(file.name)
        log.info("migration_applied")

    def revert(self, name: str) -> None:
        """Run one migration's ``downgrade`` and remove its ledger row."""
        migration = self.resolve(name)
        self._invoke(name, migration.downgrade, "downgrade")
        self._forget(name)
        logger.info("migration_rolled_back", migration=name)

    def run(self, on_applied: Optional[Callable[[str], None]] = None) -> List[str]:
        """Apply every pending migration in order.

        Stops at the first failure by raising :class:`MigrationError`;
        migrations applied before it stay applied.
        """
        self.ensure_ledger()
        applied = []
        for file in self.pending():
            self.apply(file)
            applied.append(file.name)
            if on_applied is not None:
                on_applied(file.name)
        return applied

    def rollback(
        self, steps: int = 1, on_reverted: Optional[Callable[[str], None]] = None
    ) -> List[str]:
        """Roll back the last ``steps`` applied migrations, newest first."""
        completed = self.completed()
        if steps <= 0 or not completed:
            return []
        reverted = []
        for name in reversed(completed[-steps:]):
            self.revert(name)
            reverted.append(name)
            if on_reverted is not None:
                on_reverted(name)
        return reverted

    def reset(self) -> List[str]:
        """Roll back everything, newest first, then drop the ledger table.

        Failures are logged and do not stop the reset; the ledger row is
        removed either way.
        """
        reverted = []
        for name in reversed(self.completed()):
            try:
                self.revert(name)
            except MigrationError as e:
                logger.warning("migration_reset_failed", migration=name, error=e.message)
                self._forget(name)
            reverted.append(name)

        handle = self.handle
        self.ledger.drop(handle.connection, checkfirst=True)
        handle.autocommit()
        logger.info("migrations_reset", count=len(reverted))
        return reverted

    # -- Generation --------------------------------------------------------

    def write(self, name: str, content: str, now: Optional[datetime] = None) -> Path:
        """Write ``content`` as a new timestamped migration file."""
        self.path.mkdir(parents=True, exist_ok=True)
        target = self.path / migration_filename(name, now)
        target.write_text(content, encoding="utf-8")
        logger.info("migration_created", migration=target.stem, path=str(target))
        return target

    def render(
        self,
        name: str,
        kind: str = "table",
        now: Optional[datetime] = None,
        columns: Optional[List[str]] = None,
    ) -> str:
        """Render migration source for ``name``.

        ``kind="create"`` gives a create-table migration; names starting with
        ``add_``/``remove_`` give a single-column alter migration; anything
        else gives an empty skeleton.
        """
        now = now or datetime.now()
        context = {"name": name, "generated_at": now.strftime("%Y-%m-%d %H:%M:%S")}

        if kind == "create":
            table = name.replace("create_", "").replace("_table", "")
            return self.renderer.render(
                "migrations/create.py.j2",
                {**context, "table": table, "columns": columns or []},
            )

        if name.startswith(("add_", "remove_")):
            action, column, table = "add", "your_column", "your_table"
            match = ADD_COLUMN_RE.search(name)
            if match:
                column, table = match.groups()
            else:
                match = REMOVE_COLUMN_RE.search(name)
                if match:
                    action = "remove"
                    column, table = match.groups()
            return self.renderer.render(
                "migrations/alter.py.j2",
                {**context, "action": action, "column": column, "table": table},
            )

        return self.renderer.render("migrations/generic.py.j2", context)

    def generate(
        self, name: str, kind: str = "table", now: Optional[datetime] = None
    ) -> Path:
        """Create a new migration file from the matching template."""
        name = normalize_name(name)
        now = now or datetime.now()
        return self.write(name, self.render(name, kind, now), now)

    def exists_for_table(self, table: str) -> bool:
        """True when a ``create_<table>_table`` migration is already on disk."""
        self.path.mkdir(parents=True, exist_ok=True)
        needle = f"create_{table}_table"
        return any(needle in path.name for path in self.path.glob("*.py"))

"""
Command Line Interface for scaffoldkit.
"""

from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from ..config import Settings, config_get, get_settings
from ..db.connections import ConnectionRegistry
from ..db.inspector import SchemaInspector
from ..errors import DatabaseConnectionError, MigrationError
from ..logging_config import configure_logging
from ..migrations.engine import MigrationEngine
from ..scaffold.classify import build_plan, entity_names
from ..scaffold.generator import FAILED, SKIPPED, ScaffoldGenerator, StepResult

app = typer.Typer(help="scaffoldkit - database toolkit and CRUD scaffolding")
console = Console(soft_wrap=True)


def success(message: str) -> None:
    console.print(f"✓ {message}", style="green", markup=False, highlight=False)


def error(message: str) -> None:
    console.print(f"✗ {message}", style="red", markup=False, highlight=False)


def warning(message: str) -> None:
    console.print(f"! {message}", style="yellow", markup=False, highlight=False)


def info(message: str) -> None:
    console.print(message, style="blue", markup=False, highlight=False)


def _migration_engine(
    settings: Settings, registry: ConnectionRegistry, connection: Optional[str]
) -> MigrationEngine:
    return MigrationEngine(
        registry,
        config_get("paths.migrations", "database/migrations", settings=settings),
        table=config_get("database.migration_table", "migrations", settings=settings),
        connection=connection,
    )


def _generator(
    settings: Settings, registry: ConnectionRegistry, connection: Optional[str] = None
) -> ScaffoldGenerator:
    return ScaffoldGenerator(
        config_get("paths", settings=settings),
        _migration_engine(settings, registry, connection),
        connection=connection,
    )


def _report(results: List[StepResult]) -> None:
    for result in results:
        if result.status == FAILED:
            error(f"{result.step}: {result.message}")
        elif result.status == SKIPPED:
            warning(result.message)
        else:
            success(result.message)


@app.callback()
def setup() -> None:
    """Configure logging from settings before any command runs."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)


@app.command("make:crud")
def make_crud(
    name: str = typer.Argument(..., help="Entity name, e.g. Post"),
    admin: bool = typer.Option(False, "--admin", help="Generate an admin interface"),
    connection: Optional[str] = typer.Option(None, help="Connection to inspect"),
):
    """Generate model, controller, views and migration from a live table."""
    settings = get_settings()
    registry = ConnectionRegistry.from_settings(settings)
    _, table_name = entity_names(name)

    info(f"Generating CRUD for: {name}")
    info(f"Expected table: {table_name}")
    info(f"Admin interface: {'Yes' if admin else 'No'}")

    try:
        registry.connection(connection)
        inspector = SchemaInspector(registry)

        info("Checking if table exists...")
        if not inspector.table_exists(table_name, connection):
            error(f"Table '{table_name}' does not exist in the database!")
            info("Please ensure the table exists before generating CRUD.")
            info(f"1. Create a migration: scaffoldkit make:migration create_{table_name}_table create")
            info("2. Run the migration: scaffoldkit migrate")
            info("3. Then run this command again")
            raise typer.Exit(1)
        success(f"Table '{table_name}' found in database")

        info("Analyzing table structure...")
        columns = inspector.columns(table_name, connection)
        if not columns:
            warning("Could not retrieve table columns, using default fields")
        else:
            success(f"Found {len(columns)} columns in table")
            for column in columns:
                info(f"  - {column.name} ({column.raw_type})")

        plan = build_plan(name, columns, admin)
        results = _generator(settings, registry, connection).write_crud(plan)
    except DatabaseConnectionError as e:
        error(e.message)
        raise typer.Exit(1)
    finally:
        registry.close_all()

    _report(results)
    if any(result.status == FAILED for result in results):
        warning(f"CRUD for '{name}' generated with errors")
        raise typer.Exit(1)
    success(f"CRUD for '{name}' generated successfully!")


@app.command("make:model")
def make_model(name: str = typer.Argument(..., help="Model name")):
    """Create a minimal model module."""
    settings = get_settings()
    registry = ConnectionRegistry.from_settings(settings)
    result = _generator(settings, registry).make_model(name)
    _report([result])
    if result.status == FAILED:
        raise typer.Exit(1)


@app.command("make:controller")
def make_controller(name: str = typer.Argument(..., help="Controller name")):
    """Create a controller module with an index handler."""
    settings = get_settings()
    registry = ConnectionRegistry.from_settings(settings)
    result = _generator(settings, registry).make_controller(name)
    _report([result])
    if result.status == FAILED:
        raise typer.Exit(1)


@app.command("make:migration")
def make_migration(
    name: str = typer.Argument(..., help="e.g. create_users_table or add_email_to_users_table"),
    kind: str = typer.Argument("table", help="'create' for a create-table migration"),
):
    """Create a new migration file."""
    settings = get_settings()
    engine = _migration_engine(settings, ConnectionRegistry.from_settings(settings), None)
    path = engine.generate(name, kind)
    success(f"Migration created: {path.name}")
    info(f"  Path: {path}")


@app.command("migrate")
def migrate(connection: Optional[str] = typer.Option(None, help="Connection name")):
    """Run pending migrations."""
    settings = get_settings()
    registry = ConnectionRegistry.from_settings(settings)
    engine = _migration_engine(settings, registry, connection)

    info("Running database migrations...")
    try:
        applied = engine.run(on_applied=lambda name: success(f"Migration completed: {name}"))
    except (MigrationError, DatabaseConnectionError) as e:
        error(e.message)
        raise typer.Exit(1)
    finally:
        registry.close_all()

    if not applied:
        success("All migrations are up to date")


@app.command("migrate:status")
def migrate_status(connection: Optional[str] = typer.Option(None, help="Connection name")):
    """Show applied and pending migrations."""
    settings = get_settings()
    registry = ConnectionRegistry.from_settings(settings)
    engine = _migration_engine(settings, registry, connection)
    try:
        status = engine.status()
    except DatabaseConnectionError as e:
        error(e.message)
        raise typer.Exit(1)
    finally:
        registry.close_all()

    table = Table(title="Migration Status")
    table.add_column("Status")
    table.add_column("Migration", style="cyan")
    for name, applied in status.entries:
        table.add_row(
            "[green]✓ Completed[/green]" if applied else "[yellow]✗ Pending[/yellow]", name
        )
    console.print(table)

    console.print(f"Total migrations: {status.total}", highlight=False)
    console.print(f"Completed: {status.completed}", highlight=False)
    console.print(f"Pending: {status.pending}", highlight=False)


@app.command("migrate:rollback")
def migrate_rollback(
    steps: int = typer.Argument(1, help="Number of migrations to roll back"),
    connection: Optional[str] = typer.Option(None, help="Connection name"),
):
    """Roll back the most recent migrations."""
    settings = get_settings()
    registry = ConnectionRegistry.from_settings(settings)
    engine = _migration_engine(settings, registry, connection)

    info(f"Rolling back {steps} migration(s)...")
    try:
        reverted = engine.rollback(
            steps, on_reverted=lambda name: success(f"Rolled back: {name}")
        )
    except (MigrationError, DatabaseConnectionError) as e:
        error(e.message)
        raise typer.Exit(1)
    finally:
        registry.close_all()

    if not reverted:
        info("No migrations to rollback")


@app.command("migrate:reset")
def migrate_reset(
    force: bool = typer.Option(False, "--force", help="Skip the confirmation prompt"),
    connection: Optional[str] = typer.Option(None, help="Connection name"),
):
    """Roll back every migration and drop the ledger table."""
    if not force:
        warning("This will drop all tables!")
        if not typer.confirm("Are you sure?", default=False):
            info("Migration reset cancelled")
            return

    settings = get_settings()
    registry = ConnectionRegistry.from_settings(settings)
    engine = _migration_engine(settings, registry, connection)
    try:
        reverted = engine.reset()
    except DatabaseConnectionError as e:
        error(e.message)
        raise typer.Exit(1)
    finally:
        registry.close_all()

    for name in reverted:
        info(f"Rolled back: {name}")
    success("All migrations reset")
    info("Run migrations again to recreate tables")


def main():
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()

"""
CRUD scaffolding.

Generation happens in two stages: :func:`build_plan` classifies the table's
columns, then the plan is rendered through the package templates into a
model module, a controller module, four views and a create-table migration.
Writing never overwrites: a target that already exists is reported as
skipped.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence

import structlog
from jinja2 import TemplateError

from ..db.inspector import ColumnDescriptor
from ..migrations.engine import MigrationEngine
from ..templating import TemplateRenderer
from .classify import (
    DateSubKind,
    FieldSpec,
    ScaffoldPlan,
    SemanticFieldKind,
    build_plan,
    entity_names,
)

logger = structlog.get_logger(__name__)

VIEW_NAMES = ("index", "show", "create", "edit")

CREATED = "created"
SKIPPED = "skipped"
FAILED = "failed"

_SA_TYPES = {
    SemanticFieldKind.BOOLEAN: "sa.Boolean()",
    SemanticFieldKind.INTEGER: "sa.Integer()",
    SemanticFieldKind.FLOAT: "sa.Float()",
    SemanticFieldKind.JSON: "sa.JSON()",
    SemanticFieldKind.TEXT: "sa.Text()",
}


@dataclass
class CrudArtifacts:
    """Rendered sources for one entity; nothing is written yet."""

    model: str
    controller: str
    views: Dict[str, str] = field(default_factory=dict)
    migration: Optional[str] = None


@dataclass
class StepResult:
    step: str
    path: Optional[Path]
    status: str
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.status != FAILED


def column_definition(spec: FieldSpec) -> str:
    """SQLAlchemy ``sa.Column(...)`` source for a classified column."""
    column = spec.column
    if spec.kind == SemanticFieldKind.IDENTIFIER:
        return f"sa.Column({json.dumps(spec.name)}, sa.Integer(), primary_key=True, autoincrement=True)"

    if spec.kind == SemanticFieldKind.TIMESTAMP:
        sa_type = "sa.Date()" if spec.date_kind == DateSubKind.DATE else "sa.DateTime()"
    else:
        sa_type = _SA_TYPES.get(spec.kind, f"sa.String({column.max_length or 255})")

    args = [json.dumps(spec.name), sa_type]
    if column.is_primary_key:
        args.append("primary_key=True")
    args.append(f"nullable={column.nullable}")
    if column.default_value is not None:
        args.append(f"server_default=sa.text({json.dumps(column.default_value)})")
    return f"sa.Column({', '.join(args)})"


def module_path(directory: str) -> str:
    """``app/models`` -> ``app.models``."""
    return ".".join(part for part in Path(directory).parts if part not in (".", "/"))


class ScaffoldGenerator:
    """Render and write CRUD artifacts.

    Args:
        paths: Object with ``models``, ``controllers`` and ``templates``
            directories (``Settings.paths``)
        migrations: Engine used to check for and write the create-table
            migration
        renderer: Template renderer; the package templates by default
        connection: Connection name baked into generated models
    """

    def __init__(
        self,
        paths: Any,
        migrations: MigrationEngine,
        renderer: Optional[TemplateRenderer] = None,
        connection: Optional[str] = None,
    ):
        self.paths = paths
        self.migrations = migrations
        self.renderer = renderer or TemplateRenderer()
        self.connection = connection

    # -- Target paths ------------------------------------------------------

    def model_path(self, plan: ScaffoldPlan) -> Path:
        singular, _ = entity_names(plan.entity_name)
        return Path(self.paths.models) / f"{singular}.py"

    def controller_path(self, plan: ScaffoldPlan) -> Path:
        return Path(self.paths.controllers) / f"{plan.prefix}_controller.py"

    def views_dir(self, plan: ScaffoldPlan) -> Path:
        return Path(self.paths.templates) / plan.view_prefix

    def migration_name(self, plan: ScaffoldPlan) -> str:
        return f"create_{plan.table_name}_table"

    # -- Rendering ---------------------------------------------------------

    def _context(self, plan: ScaffoldPlan) -> Dict[str, Any]:
        singular, _ = entity_names(plan.entity_name)
        return {
            "plan": plan,
            "singular": singular,
            "connection": self.connection,
            "model_module": module_path(self.paths.models),
        }

    def render_model(self, plan: ScaffoldPlan) -> str:
        return self.renderer.render("model.py.j2", self._context(plan))

    def render_controller(self, plan: ScaffoldPlan) -> str:
        return self.renderer.render("controller.py.j2", self._context(plan))

    def render_view(self, plan: ScaffoldPlan, view: str) -> str:
        return self.renderer.render(f"views/{view}.html.j2", self._context(plan))

    def render_migration(self, plan: ScaffoldPlan, now: Optional[datetime] = None) -> str:
        columns = [column_definition(spec) for spec in plan.fields]
        return self.migrations.render(self.migration_name(plan), "create", now, columns)

    def render_crud(self, plan: ScaffoldPlan, now: Optional[datetime] = None) -> CrudArtifacts:
        return CrudArtifacts(
            model=self.render_model(plan),
            controller=self.render_controller(plan),
            views={view: self.render_view(plan, view) for view in VIEW_NAMES},
            migration=self.render_migration(plan, now),
        )

    def generate_crud(
        self, entity: str, columns: Sequence[ColumnDescriptor], admin: bool = False
    ) -> CrudArtifacts:
        """Classify ``columns`` and render every artifact for ``entity``."""
        return self.render_crud(build_plan(entity, columns, admin))

    # -- Writing -----------------------------------------------------------

    def _write(self, step: str, target: Path, render: Callable[[], str]) -> StepResult:
        log = logger.bind(step=step, path=str(target))
        if target.exists():
            log.warning("scaffold_step_skipped")
            return StepResult(step, target, SKIPPED, f"{target.name} already exists, skipping")
        try:
            content = render()
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except (OSError, TemplateError) as e:
            log.error("scaffold_step_failed", error=str(e))
            return StepResult(step, target, FAILED, str(e))
        log.info("scaffold_step_created")
        return StepResult(step, target, CREATED, f"{target.name} created")

    def _write_migration(self, plan: ScaffoldPlan, now: Optional[datetime]) -> StepResult:
        name = self.migration_name(plan)
        if self.migrations.exists_for_table(plan.table_name):
            logger.warning("scaffold_step_skipped", step="migration", migration=name)
            return StepResult(
                "migration",
                None,
                SKIPPED,
                f"Migration for table '{plan.table_name}' already exists, skipping",
            )
        try:
            path = self.migrations.write(name, self.render_migration(plan, now), now)
        except (OSError, TemplateError) as e:
            logger.error("scaffold_step_failed", step="migration", error=str(e))
            return StepResult("migration", None, FAILED, str(e))
        return StepResult("migration", path, CREATED, f"Migration created: {path.name}")

    def write_crud(self, plan: ScaffoldPlan, now: Optional[datetime] = None) -> List[StepResult]:
        """Write every artifact; each step succeeds, skips or fails on its own."""
        logger.info("scaffold_started", entity=plan.entity_name, admin=plan.admin_mode)
        results = [
            self._write("model", self.model_path(plan), lambda: self.render_model(plan)),
            self._write(
                "controller", self.controller_path(plan), lambda: self.render_controller(plan)
            ),
        ]
        views_dir = self.views_dir(plan)
        for view in VIEW_NAMES:
            results.append(
                self._write(
                    f"view:{view}",
                    views_dir / f"{view}.html",
                    lambda view=view: self.render_view(plan, view),
                )
            )
        results.append(self._write_migration(plan, now))
        return results

    # -- Simple generators -------------------------------------------------

    def make_model(self, name: str) -> StepResult:
        """Minimal model module, without introspection."""
        singular, table = entity_names(name)
        context = {"singular": singular, "table": table}
        return self._write(
            "model",
            Path(self.paths.models) / f"{singular}.py",
            lambda: self.renderer.render("model_basic.py.j2", context),
        )

    def make_controller(self, name: str) -> StepResult:
        """Controller module with a single index handler."""
        singular, _ = entity_names(name)
        return self._write(
            "controller",
            Path(self.paths.controllers) / f"{singular}_controller.py",
            lambda: self.renderer.render("controller_basic.py.j2", {"singular": singular}),
        )

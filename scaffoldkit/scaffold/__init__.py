"""CRUD scaffolding: column classification, planning and code generation."""

from .classify import (
    DateSubKind,
    FieldSpec,
    ScaffoldPlan,
    SemanticFieldKind,
    build_plan,
    classify,
)
from .generator import CrudArtifacts, ScaffoldGenerator, StepResult, column_definition

__all__ = [
    "CrudArtifacts",
    "DateSubKind",
    "FieldSpec",
    "ScaffoldGenerator",
    "ScaffoldPlan",
    "SemanticFieldKind",
    "StepResult",
    "build_plan",
    "classify",
    "column_definition",
]

"""
Column classification and scaffold planning.

Pure functions only: :func:`classify` maps a :class:`ColumnDescriptor` to a
:class:`SemanticFieldKind`, and :func:`build_plan` turns a table's columns
into the :class:`ScaffoldPlan` every generated artifact is rendered from.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from ..db.inspector import ColumnDescriptor

TIMESTAMP_COLUMNS = ("created_at", "updated_at")
MAX_INDEX_COLUMNS = 5


class SemanticFieldKind(str, Enum):
    IDENTIFIER = "identifier"
    TIMESTAMP = "timestamp"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    FLOAT = "float"
    JSON = "json"
    TEXT = "text"
    SHORT_STRING = "short_string"
    EMAIL = "email"
    PASSWORD = "password"
    URL = "url"


class DateSubKind(str, Enum):
    DATE = "date"
    DATETIME = "datetime"


# Model cast per kind; kinds missing here are stored as plain strings
_CASTS = {
    SemanticFieldKind.IDENTIFIER: "int",
    SemanticFieldKind.INTEGER: "int",
    SemanticFieldKind.FLOAT: "float",
    SemanticFieldKind.BOOLEAN: "boolean",
    SemanticFieldKind.JSON: "json",
}

_LABELS = {"id": "ID", "created_at": "Created", "updated_at": "Updated"}


def _date_sub_kind(raw_type: str) -> DateSubKind:
    if "datetime" in raw_type or "timestamp" in raw_type:
        return DateSubKind.DATETIME
    return DateSubKind.DATE


def classify(column: ColumnDescriptor) -> Tuple[SemanticFieldKind, Optional[DateSubKind]]:
    """Return the semantic kind of ``column`` (and a date sub-kind for timestamps).

    Every column gets a kind; the first matching rule wins.
    """
    if column.is_primary_key and column.is_auto_increment:
        return SemanticFieldKind.IDENTIFIER, None

    name = column.name.lower()
    if name in TIMESTAMP_COLUMNS:
        return SemanticFieldKind.TIMESTAMP, DateSubKind.DATETIME

    raw_type = (column.raw_type or "").lower()
    if "bool" in raw_type or "tinyint(1)" in raw_type:
        return SemanticFieldKind.BOOLEAN, None
    if any(t in raw_type for t in ("decimal", "float", "double", "real", "numeric")):
        return SemanticFieldKind.FLOAT, None
    if "int" in raw_type:
        return SemanticFieldKind.INTEGER, None
    if "json" in raw_type:
        return SemanticFieldKind.JSON, None
    if "date" in raw_type or "timestamp" in raw_type:
        return SemanticFieldKind.TIMESTAMP, _date_sub_kind(raw_type)

    if "email" in name:
        return SemanticFieldKind.EMAIL, None
    if "password" in name:
        return SemanticFieldKind.PASSWORD, None
    if any(token in name for token in ("url", "website", "link")):
        return SemanticFieldKind.URL, None

    if "char" in raw_type and (column.max_length is None or column.max_length <= 255):
        return SemanticFieldKind.SHORT_STRING, None
    return SemanticFieldKind.TEXT, None


@dataclass(frozen=True)
class FieldSpec:
    """A classified column, as seen by the templates."""

    name: str
    kind: SemanticFieldKind
    column: ColumnDescriptor
    date_kind: Optional[DateSubKind] = None

    @property
    def label(self) -> str:
        if self.name.lower() in _LABELS:
            return _LABELS[self.name.lower()]
        return self.name.replace("_", " ").title()

    @property
    def required(self) -> bool:
        return not self.column.nullable

    @property
    def cast(self) -> Optional[str]:
        if self.kind == SemanticFieldKind.TIMESTAMP:
            return (self.date_kind or DateSubKind.DATETIME).value
        return _CASTS.get(self.kind)

    @property
    def is_managed_timestamp(self) -> bool:
        """``created_at``/``updated_at`` in any letter case; set by the model, not the form."""
        return self.name.lower() in TIMESTAMP_COLUMNS

    @property
    def is_text_like(self) -> bool:
        return self.kind in (SemanticFieldKind.SHORT_STRING, SemanticFieldKind.TEXT)

    @property
    def input_type(self) -> str:
        """HTML input type for form controls."""
        if self.kind == SemanticFieldKind.EMAIL:
            return "email"
        if self.kind == SemanticFieldKind.PASSWORD:
            return "password"
        if self.kind in (SemanticFieldKind.INTEGER, SemanticFieldKind.FLOAT):
            return "number"
        if self.kind == SemanticFieldKind.TIMESTAMP:
            return "datetime-local" if self.date_kind == DateSubKind.DATETIME else "date"
        return "text"


@dataclass
class ScaffoldPlan:
    """Everything the generator needs to render one entity."""

    entity_name: str
    table_name: str
    columns: List[ColumnDescriptor]
    admin_mode: bool
    fields: List[FieldSpec]
    primary_key: str = "id"
    has_timestamps: bool = False
    fillable: List[str] = field(default_factory=list)
    casts: Dict[str, str] = field(default_factory=dict)
    first_text_field: str = "name"
    index_columns: List[str] = field(default_factory=list)

    @property
    def plural(self) -> str:
        return self.table_name

    @property
    def prefix(self) -> str:
        return f"admin_{self.plural}" if self.admin_mode else self.plural

    @property
    def route_prefix(self) -> str:
        return f"/admin-{self.plural}" if self.admin_mode else f"/{self.plural}"

    @property
    def view_prefix(self) -> str:
        return f"admin/{self.plural}" if self.admin_mode else self.plural

    @property
    def form_fields(self) -> List[FieldSpec]:
        return [f for f in self.fields if f.name in self.fillable]

    def field_named(self, name: str) -> Optional[FieldSpec]:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None


def entity_names(entity: str) -> Tuple[str, str]:
    """``Post`` -> (``post``, ``posts``)."""
    lower = entity.strip().lower()
    return lower, f"{lower}s"


def fallback_columns() -> List[ColumnDescriptor]:
    """Columns assumed when the table could not be introspected."""
    return [
        ColumnDescriptor("id", "INTEGER", nullable=False, is_primary_key=True, is_auto_increment=True),
        ColumnDescriptor("name", "VARCHAR(255)", nullable=False, max_length=255),
        ColumnDescriptor("email", "VARCHAR(255)", nullable=False, max_length=255),
        ColumnDescriptor("status", "BOOLEAN", nullable=True, default_value="1"),
        ColumnDescriptor("created_at", "DATETIME"),
        ColumnDescriptor("updated_at", "DATETIME"),
    ]


def build_plan(
    entity: str, columns: Sequence[ColumnDescriptor], admin: bool = False
) -> ScaffoldPlan:
    """Classify ``columns`` and derive the model/controller/view settings.

    An empty column list produces the fallback plan (name, email, status and
    timestamps).
    """
    _, table_name = entity_names(entity)
    columns = list(columns) or fallback_columns()

    fields = []
    for column in columns:
        kind, date_kind = classify(column)
        fields.append(FieldSpec(column.name, kind, column, date_kind))

    primary_key = "id"
    has_timestamps = False
    fillable: List[str] = []
    casts: Dict[str, str] = {}
    for spec in fields:
        if spec.kind == SemanticFieldKind.IDENTIFIER:
            primary_key = spec.name
        elif spec.is_managed_timestamp:
            has_timestamps = True
        else:
            fillable.append(spec.name)
        if spec.cast:
            casts[spec.name] = spec.cast

    first_text_field = next(
        (s.name for s in fields if s.name in fillable and s.is_text_like), "name"
    )

    index_columns: List[str] = []
    if any(s.name == primary_key for s in fields):
        index_columns.append(primary_key)
    for spec in fields:
        if len(index_columns) >= MAX_INDEX_COLUMNS:
            break
        if spec.name == primary_key or spec.is_managed_timestamp:
            continue
        index_columns.append(spec.name)
    created = next((s.name for s in fields if s.name.lower() == "created_at"), None)
    if len(index_columns) < MAX_INDEX_COLUMNS and created is not None:
        index_columns.append(created)

    return ScaffoldPlan(
        entity_name=entity,
        table_name=table_name,
        columns=columns,
        admin_mode=admin,
        fields=fields,
        primary_key=primary_key,
        has_timestamps=has_timestamps,
        fillable=fillable,
        casts=casts,
        first_text_field=first_text_field,
        index_columns=index_columns,
    )

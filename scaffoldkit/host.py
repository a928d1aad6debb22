"""
Services a web host provides to generated controllers.

Generated controller handlers take ``(host, params)``; ``host`` is any object
implementing :class:`HostServices`. Routing, sessions, CSRF storage and page
rendering belong to the host application.
"""

from __future__ import annotations

import json
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from .db.connections import ConnectionRegistry


@runtime_checkable
class HostServices(Protocol):
    db: ConnectionRegistry
    form: Mapping[str, Any]
    query_params: Mapping[str, Any]

    def render(self, view: str, data: Mapping[str, Any], layout: Optional[str] = None) -> Any:
        ...

    def require_auth(self) -> None:
        ...

    def require_admin(self) -> None:
        ...

    def csrf_token(self) -> str:
        ...

    def verify_csrf(self) -> None:
        ...

    def flash_success(self, message: str) -> None:
        ...

    def flash_error(self, message: str) -> None:
        ...

    def redirect(self, path: str) -> Any:
        ...

    def not_found(self) -> Any:
        ...


# Form value coercion used by generated controllers


def form_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "on", "yes")
    return bool(value)


def form_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def form_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def form_json(value: Any) -> Optional[str]:
    """Posted JSON text, re-serialized; ``None`` when blank or not valid JSON."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if not isinstance(value, str):
        return json.dumps(value)
    try:
        return json.dumps(json.loads(value))
    except ValueError:
        return None

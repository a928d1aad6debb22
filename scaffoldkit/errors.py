"""
Error types for scaffoldkit.

Every error carries a stable ``code`` for programmatic handling and a
human-readable ``message``.
"""

from __future__ import annotations

from typing import Optional


class ScaffoldKitError(Exception):
    """
    Base class for all scaffoldkit errors.

    Attributes:
        code: Stable error code for programmatic handling
        message: Human-readable error description
    """

    default_code = "SCAFFOLDKIT_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        self.code = code or self.default_code
        self.message = message
        super().__init__(f"{self.code}: {message}")

    def to_dict(self) -> dict:
        """Convert to dict for JSON serialization."""
        return {
            "error": type(self).__name__,
            "code": self.code,
            "message": self.message,
        }


class DatabaseConnectionError(ScaffoldKitError):
    """Unknown connection name, unsupported driver, or a failed open."""

    default_code = "CONNECTION_FAILED"

    def __init__(
        self, message: str, connection: Optional[str] = None, code: Optional[str] = None
    ):
        self.connection = connection
        super().__init__(message, code=code)


class IntrospectionError(ScaffoldKitError):
    """Schema inspection failed. Never escapes the inspector."""

    default_code = "INTROSPECTION_FAILED"


class QueryError(ScaffoldKitError):
    """Malformed query state, e.g. an unconditional UPDATE or DELETE."""

    default_code = "INVALID_QUERY"


class MigrationError(ScaffoldKitError):
    """A migration could not be resolved, applied or rolled back."""

    default_code = "MIGRATION_FAILED"

    def __init__(
        self, message: str, migration: Optional[str] = None, code: Optional[str] = None
    ):
        self.migration = migration
        super().__init__(message, code=code)


class ModelNotFoundError(ScaffoldKitError):
    """No row matched a ``find_or_fail`` lookup."""

    default_code = "MODEL_NOT_FOUND"

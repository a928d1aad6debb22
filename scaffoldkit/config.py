"""
Configuration management for scaffoldkit.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .db.connections import ConnectionConfig


def _default_connections() -> Dict[str, ConnectionConfig]:
    return {
        "main": ConnectionConfig(driver="sqlite", database="./storage/database.sqlite")
    }


class DatabaseSettings(BaseModel):
    """Named connections and the ledger table name."""

    default: str = "main"
    connections: Dict[str, ConnectionConfig] = Field(
        default_factory=_default_connections
    )
    migration_table: str = "migrations"

    def registry_config(self) -> Dict[str, Any]:
        """Shape accepted by ``ConnectionRegistry.configure``."""
        return {"default": self.default, "connections": dict(self.connections)}


class PathSettings(BaseModel):
    """Output directories for generated code."""

    models: str = "app/models"
    controllers: str = "app/controllers"
    templates: str = "app/templates"
    migrations: str = "database/migrations"


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = "scaffoldkit"
    debug: bool = False
    environment: str = "development"

    # Logging
    log_level: str = "INFO"
    log_format: str = "console"

    # Database
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)

    # Generated code locations
    paths: PathSettings = Field(default_factory=PathSettings)

    model_config = SettingsConfigDict(
        env_prefix="SCAFFOLDKIT_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get application settings."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop cached settings so the next call re-reads the environment."""
    global _settings
    _settings = None


_MISSING = object()


def config_get(
    dot_path: str, default: Any = None, settings: Optional[Settings] = None
) -> Any:
    """
    Resolve a dotted path such as ``paths.models`` against the settings.

    Mapping keys and attributes are both followed, so
    ``database.connections.main.driver`` works. Returns ``default`` as soon as
    a segment is missing.
    """
    node: Any = settings if settings is not None else get_settings()
    for segment in dot_path.split("."):
        if isinstance(node, dict):
            node = node.get(segment, _MISSING)
        else:
            node = getattr(node, segment, _MISSING)
        if node is _MISSING:
            return default
    return node

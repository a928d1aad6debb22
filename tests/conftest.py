"""Test configuration and fixtures."""

from typing import Any, Dict, List, Optional

import pytest

from scaffoldkit.db.connections import ConnectionRegistry

POSTS_DDL = (
    "CREATE TABLE posts ("
    "id INTEGER PRIMARY KEY AUTOINCREMENT, "
    "title VARCHAR(200) NOT NULL, "
    "body TEXT, "
    "published BOOLEAN DEFAULT 0, "
    "created_at DATETIME, "
    "updated_at DATETIME)"
)


def memory_registry(*names: str) -> ConnectionRegistry:
    names = names or ("main",)
    return ConnectionRegistry(
        {
            "default": names[0],
            "connections": {
                name: {"driver": "sqlite", "database": ":memory:"} for name in names
            },
        }
    )


@pytest.fixture
def registry():
    """A registry with a single in-memory SQLite connection named ``main``."""
    reg = memory_registry()
    yield reg
    reg.close_all()


@pytest.fixture
def posts_table(registry):
    """Create the ``posts`` table on the default connection."""
    registry.connection().execute(POSTS_DDL)
    return registry


@pytest.fixture
def seeded_posts(posts_table):
    """``posts`` with 25 rows titled ``Post 1`` .. ``Post 25``."""
    handle = posts_table.connection()
    for i in range(1, 26):
        handle.execute(
            "INSERT INTO posts (title, body, published) VALUES (:title, :body, :published)",
            {"title": f"Post {i}", "body": f"Body {i}", "published": i % 2},
        )
    return posts_table


class RecordingConnection:
    """Stands in for a ConnectionHandle and records every statement."""

    driver = "sqlite"

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.rows = rows or []
        self.statements: List[tuple] = []

    def fetch_all(self, sql, params=None):
        self.statements.append((sql, dict(params or {})))
        return list(self.rows)

    def fetch_one(self, sql, params=None):
        self.statements.append((sql, dict(params or {})))
        return self.rows[0] if self.rows else None

    def execute(self, sql, params=None):
        self.statements.append((sql, dict(params or {})))
        return len(self.rows)


class RecordingRegistry:
    """Hands out one RecordingConnection per connection name."""

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None):
        self.rows = rows
        self.connections: Dict[str, RecordingConnection] = {}
        self.requested: List[Optional[str]] = []

    def connection(self, name=None):
        self.requested.append(name)
        key = name or "main"
        if key not in self.connections:
            self.connections[key] = RecordingConnection(self.rows)
        return self.connections[key]


@pytest.fixture
def recording():
    return RecordingRegistry()

"""Tests for CRUD generation: rendering, writing and the generated code itself."""

import importlib
import json
import re
import sys
from datetime import date, datetime
from pathlib import Path

import pytest
from jinja2 import Environment, FileSystemLoader

from scaffoldkit.config import PathSettings
from scaffoldkit.db.inspector import ColumnDescriptor, SchemaInspector
from scaffoldkit.host import HostServices, form_json
from scaffoldkit.migrations import MigrationEngine
from scaffoldkit.scaffold.classify import SemanticFieldKind, build_plan
from scaffoldkit.scaffold.generator import (
    CREATED,
    FAILED,
    SKIPPED,
    ScaffoldGenerator,
    column_definition,
    module_path,
)

from conftest import memory_registry

ROOT = "scaffold_demo_app"
NOW = datetime(2024, 6, 1, 12, 0, 0)


class FakeHost:
    """Minimal HostServices implementation that records what handlers do."""

    def __init__(self, db, form=None, query_params=None):
        self.db = db
        self.form = form or {}
        self.query_params = query_params or {}
        self.calls = []
        self.flashes = []

    def render(self, view, data, layout=None):
        return ("render", view, data, layout)

    def require_auth(self):
        self.calls.append("require_auth")

    def require_admin(self):
        self.calls.append("require_admin")

    def csrf_token(self):
        return "token-123"

    def verify_csrf(self):
        self.calls.append("verify_csrf")

    def flash_success(self, message):
        self.flashes.append(("success", message))

    def flash_error(self, message):
        self.flashes.append(("error", message))

    def redirect(self, path):
        return ("redirect", path)

    def not_found(self):
        return ("not_found",)


USER_COLUMNS = [
    ColumnDescriptor("id", "int(11)", nullable=False, is_primary_key=True, is_auto_increment=True),
    ColumnDescriptor("name", "varchar(100)", nullable=False, max_length=100),
    ColumnDescriptor("email", "varchar(255)", max_length=255),
    ColumnDescriptor("password", "varchar(255)", nullable=False, max_length=255),
    ColumnDescriptor("active", "tinyint(1)", default_value="1"),
    ColumnDescriptor("bio", "text"),
    ColumnDescriptor("score", "decimal(5,2)"),
    ColumnDescriptor("birthday", "date"),
]


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    yield tmp_path
    for name in list(sys.modules):
        if name == ROOT or name.startswith(f"{ROOT}."):
            del sys.modules[name]


@pytest.fixture
def paths():
    return PathSettings(
        models=f"{ROOT}/models",
        controllers=f"{ROOT}/controllers",
        templates=f"{ROOT}/templates",
        migrations=f"{ROOT}/migrations",
    )


@pytest.fixture
def generator(workspace, paths, posts_table):
    return ScaffoldGenerator(paths, MigrationEngine(posts_table, paths.migrations))


@pytest.fixture
def posts_plan(posts_table):
    return build_plan("Post", SchemaInspector(posts_table).columns("posts"))


def views_env(paths):
    return Environment(loader=FileSystemLoader(paths.templates))


def import_generated(workspace, monkeypatch, module):
    monkeypatch.syspath_prepend(str(workspace))
    importlib.invalidate_caches()
    return importlib.import_module(module)


class TestHelpers:
    def test_module_path(self):
        assert module_path("app/models") == "app.models"
        assert module_path("./lib/models") == "lib.models"

    def test_form_json(self):
        assert form_json('{"a":1}') == '{"a": 1}'
        assert form_json({"a": 1}) == '{"a": 1}'
        assert form_json("  ") is None
        assert form_json(None) is None
        assert form_json("{broken") is None

    def test_column_definitions(self, posts_plan):
        definitions = {f.name: column_definition(f) for f in posts_plan.fields}
        assert definitions["id"] == (
            'sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True)'
        )
        assert definitions["title"] == 'sa.Column("title", sa.String(200), nullable=False)'
        assert definitions["body"] == 'sa.Column("body", sa.Text(), nullable=True)'
        assert definitions["published"] == (
            'sa.Column("published", sa.Boolean(), nullable=True, server_default=sa.text("0"))'
        )
        assert definitions["created_at"] == (
            'sa.Column("created_at", sa.DateTime(), nullable=True)'
        )


class TestRender:
    """Rendered sources, before anything touches the filesystem."""

    def test_python_sources_compile(self, generator, posts_plan):
        artifacts = generator.render_crud(posts_plan, NOW)
        compile(artifacts.model, "model", "exec")
        compile(artifacts.controller, "controller", "exec")
        compile(artifacts.migration, "migration", "exec")
        assert set(artifacts.views) == {"index", "show", "create", "edit"}

    def test_model_configuration(self, generator, posts_plan):
        model = generator.render_model(posts_plan)
        assert "fillable=['title', 'body', 'published']," in model
        assert "timestamps=True," in model
        assert "'published': 'boolean'," in model
        assert "def find_by_title(db, value):" in model
        assert "connection=" not in model

    def test_model_connection(self, workspace, paths, posts_table, posts_plan):
        generator = ScaffoldGenerator(
            paths, MigrationEngine(posts_table, paths.migrations), connection="reporting"
        )
        assert "connection='reporting'," in generator.render_model(posts_plan)

    def test_controller_handlers_and_routes(self, generator, posts_plan):
        controller = generator.render_controller(posts_plan)
        for action in ("index", "show", "create", "store", "edit", "update", "destroy"):
            assert f"def posts_{action}(host, params):" in controller
        assert "from scaffold_demo_app.models import post as model" in controller
        assert '("POST", "/posts/{id}/delete"): posts_destroy,' in controller
        assert "require_auth" not in controller
        assert 'layout="admin"' not in controller

    def test_admin_controller(self, generator, posts_table):
        plan = build_plan("Post", SchemaInspector(posts_table).columns("posts"), admin=True)
        controller = generator.render_controller(plan)
        assert "def admin_posts_index(host, params):" in controller
        assert controller.count("host.require_admin()") == 7
        assert '"admin/posts/index"' in controller
        assert 'layout="admin"' in controller
        assert '("GET", "/admin-posts-create"): admin_posts_create,' in controller
        compile(controller, "admin", "exec")

    def test_migration_uses_classified_columns(self, generator, posts_plan):
        migration = generator.render_migration(posts_plan, NOW)
        assert 'sa.Column("title", sa.String(200), nullable=False),' in migration
        assert '"name"' not in migration

    def test_generate_crud_with_fallback_columns(self, generator):
        artifacts = generator.generate_crud("Widget", [])
        assert "fillable=['name', 'email', 'status']," in artifacts.model
        assert "def widgets_index(host, params):" in artifacts.controller


class TestWriteCrud:
    """Writing artifacts to disk."""

    def test_posts_scenario(self, generator, posts_plan, workspace):
        results = generator.write_crud(posts_plan, NOW)

        assert [r.step for r in results] == [
            "model",
            "controller",
            "view:index",
            "view:show",
            "view:create",
            "view:edit",
            "migration",
        ]
        assert all(r.status == CREATED for r in results)

        base = workspace / ROOT
        assert (base / "models" / "post.py").is_file()
        assert (base / "controllers" / "posts_controller.py").is_file()
        for view in ("index", "show", "create", "edit"):
            assert (base / "templates" / "posts" / f"{view}.html").is_file()
        migration = base / "migrations" / "2024_06_01_120000_create_posts_table.py"
        assert migration.is_file()
        assert results[-1].path == Path(f"{ROOT}/migrations") / migration.name

        model_source = (base / "models" / "post.py").read_text()
        assert "fillable=['title', 'body', 'published']" in model_source

    def test_admin_layout(self, generator, posts_table, workspace):
        plan = build_plan("Post", SchemaInspector(posts_table).columns("posts"), admin=True)
        generator.write_crud(plan, NOW)
        base = workspace / ROOT
        assert (base / "controllers" / "admin_posts_controller.py").is_file()
        assert (base / "templates" / "admin" / "posts" / "index.html").is_file()

    def test_second_run_skips_everything(self, generator, posts_plan):
        generator.write_crud(posts_plan, NOW)
        results = generator.write_crud(posts_plan, datetime(2024, 6, 2))
        assert all(r.status == SKIPPED for r in results)
        assert all(r.ok for r in results)
        assert results[0].message == "post.py already exists, skipping"

    def test_existing_migration_is_kept(self, generator, posts_plan, workspace):
        migrations = workspace / ROOT / "migrations"
        migrations.mkdir(parents=True)
        existing = migrations / "2024_01_01_000000_create_posts_table.py"
        existing.write_text("# hand written\n")

        results = {r.step: r for r in generator.write_crud(posts_plan, NOW)}

        assert results["migration"].status == SKIPPED
        assert results["model"].status == CREATED
        assert [p.name for p in migrations.iterdir()] == [existing.name]
        assert existing.read_text() == "# hand written\n"

    def test_steps_fail_independently(self, generator, posts_plan, workspace):
        templates = workspace / ROOT / "templates"
        templates.mkdir(parents=True)
        (templates / "posts").write_text("in the way")

        results = {r.step: r for r in generator.write_crud(posts_plan, NOW)}

        assert results["view:index"].status == FAILED
        assert not results["view:index"].ok
        assert results["model"].status == CREATED
        assert results["controller"].status == CREATED
        assert results["migration"].status == CREATED

    def test_generated_migration_runs(self, generator, posts_plan, paths):
        generator.write_crud(posts_plan, NOW)
        fresh = memory_registry()
        engine = MigrationEngine(fresh, paths.migrations)

        assert engine.run() == ["2024_06_01_120000_create_posts_table"]
        columns = SchemaInspector(fresh).columns("posts")
        assert [c.name for c in columns] == [
            "id",
            "title",
            "body",
            "published",
            "created_at",
            "updated_at",
        ]
        assert columns[0].is_identifier
        fresh.close_all()


class TestMakeCommands:
    def test_make_model(self, generator, workspace):
        result = generator.make_model("Comment")
        assert result.status == CREATED
        source = (workspace / ROOT / "models" / "comment.py").read_text()
        assert "CONFIG = ModelConfig(name='comment', table='comments')" in source
        compile(source, "comment", "exec")
        assert generator.make_model("Comment").status == SKIPPED

    def test_make_controller(self, generator, workspace):
        result = generator.make_controller("Comment")
        assert result.status == CREATED
        source = (workspace / ROOT / "controllers" / "comment_controller.py").read_text()
        assert "def comment_index(host, params):" in source
        compile(source, "comment_controller", "exec")


class TestGeneratedViews:
    """Generated views rendered the way a host application would."""

    def test_index(self, generator, posts_plan, paths):
        generator.write_crud(posts_plan, NOW)
        html = views_env(paths).get_template("posts/index.html").render(
            title="Posts",
            posts=[
                {
                    "id": 1,
                    "title": "Hello",
                    "body": "x" * 80,
                    "published": True,
                    "created_at": datetime(2024, 1, 15, 9, 30),
                },
                {"id": 2, "title": "Draft", "body": None, "published": False, "created_at": None},
            ],
            pagination={"total": 2, "last_page": 1},
            current_page=1,
            csrf_token="token-123",
        )
        assert "<th>ID</th>" in html
        assert "<th>Created</th>" in html
        assert "x" * 47 + "..." in html
        assert "x" * 48 not in html
        assert ">Yes</span>" in html
        assert ">No</span>" in html
        assert "Jan 15, 2024 09:30 AM" in html
        assert "Unknown" in html
        assert 'action="/posts/2/delete"' in html
        assert 'value="token-123"' in html
        assert "Page 1 of" not in html

    def test_index_empty_and_paginated(self, generator, posts_plan, paths):
        generator.write_crud(posts_plan, NOW)
        template = views_env(paths).get_template("posts/index.html")
        empty = template.render(posts=[], pagination={"total": 0, "last_page": 0}, current_page=1)
        assert "No posts found." in empty

        paged = template.render(
            posts=[{"id": 16, "title": "P", "body": "", "published": 0, "created_at": None}],
            pagination={"total": 25, "last_page": 2},
            current_page=2,
        )
        assert "Page 2 of 2 (25 total records)" in paged
        assert 'href="/posts?page=1"' in paged
        assert "?page=3" not in paged

    def test_show(self, generator, posts_plan, paths):
        generator.write_crud(posts_plan, NOW)
        html = views_env(paths).get_template("posts/show.html").render(
            title="Hello",
            post={
                "id": 3,
                "title": "Hello",
                "body": "y" * 80,
                "published": False,
                "created_at": datetime(2024, 1, 15, 9, 30),
                "updated_at": None,
            },
        )
        assert "y" * 80 in html
        assert "<dt>Updated</dt>" in html
        assert 'href="/posts/3/edit"' in html

    def test_create_form(self, generator, posts_plan, paths):
        generator.write_crud(posts_plan, NOW)
        html = views_env(paths).get_template("posts/create.html").render(
            title="Create Post", csrf_token="token-123"
        )
        assert 'action="/posts-create"' in html
        assert '<input type="text" id="title" name="title" value="" required>' in html
        assert '<textarea id="body" name="body" rows="5"></textarea>' in html
        assert '<option value="1">Yes</option>' in html
        assert 'name="created_at"' not in html

    def test_edit_form_controls(self, generator, workspace, paths):
        plan = build_plan("User", USER_COLUMNS)
        generator.write_crud(plan, NOW)
        html = views_env(paths).get_template("users/edit.html").render(
            title="Edit User",
            csrf_token="token-123",
            user={
                "id": 1,
                "name": "Ann",
                "email": "ann@example.com",
                "password": "secret-hash",
                "active": False,
                "bio": "Hi",
                "score": 4.5,
                "birthday": date(1990, 5, 1),
            },
        )
        assert 'action="/users/1/edit"' in html
        assert '<input type="text" id="name" name="name" value="Ann" required>' in html
        assert '<input type="email" id="email" name="email" value="ann@example.com">' in html
        assert '<input type="password" id="password" name="password" value="" required>' in html
        assert "secret-hash" not in html
        assert '<option value="0" selected>No</option>' in html
        assert '<textarea id="bio" name="bio" rows="5">Hi</textarea>' in html
        assert 'step="0.01"' in html
        assert '<input type="date" id="birthday" name="birthday" value="1990-05-01">' in html

    def test_unparsed_dates_render_as_stored(self, generator, posts_plan, paths):
        generator.write_crud(posts_plan, NOW)
        html = views_env(paths).get_template("posts/index.html").render(
            posts=[{"id": 1, "title": "Old", "body": "", "published": 0,
                    "created_at": "0000-00-00 00:00:00"}],
            pagination={"total": 1, "last_page": 1},
            current_page=1,
        )
        assert "0000-00-00 00:00:00" in html

        plan = build_plan("User", USER_COLUMNS)
        generator.write_crud(plan, NOW)
        html = views_env(paths).get_template("users/edit.html").render(
            user={"id": 1, "name": "Ann", "birthday": "0000-00-00"}
        )
        assert '<input type="date" id="birthday" name="birthday" value="0000-00-00">' in html

    def test_password_like_column_is_never_echoed(self, generator, paths):
        plan = build_plan("Account", [
            ColumnDescriptor("id", "int(11)", nullable=False, is_primary_key=True, is_auto_increment=True),
            ColumnDescriptor("username", "varchar(50)", nullable=False),
            ColumnDescriptor("password_hash", "varchar(255)"),
        ])
        generator.write_crud(plan, NOW)
        html = views_env(paths).get_template("accounts/edit.html").render(
            account={"id": 1, "username": "ann", "password_hash": "$2y$10$abc"}
        )
        assert '<input type="password" id="password_hash" name="password_hash" value="">' in html
        assert "$2y$10$abc" not in html


class TestGeneratedController:
    """The generated model and controller driven through a fake host."""

    @pytest.fixture
    def controller(self, generator, posts_plan, workspace, monkeypatch):
        generator.write_crud(posts_plan, NOW)
        return import_generated(
            workspace, monkeypatch, f"{ROOT}.controllers.posts_controller"
        )

    def test_fake_host_satisfies_protocol(self, posts_table):
        assert isinstance(FakeHost(posts_table), HostServices)

    def test_store_and_index(self, controller, posts_table):
        host = FakeHost(
            posts_table, form={"title": "Hello", "body": "World", "published": "1", "_token": "t"}
        )
        assert controller.posts_store(host, {}) == ("redirect", "/posts")
        assert host.calls == ["verify_csrf"]
        assert host.flashes == [("success", "Post created successfully!")]

        _, view, data, layout = controller.posts_index(FakeHost(posts_table), {})
        assert view == "posts/index"
        assert layout is None
        assert data["pagination"]["total"] == 1
        assert data["posts"][0]["title"] == "Hello"
        assert data["posts"][0]["published"] is True
        assert data["csrf_token"] == "token-123"

    def test_store_requires_first_text_field(self, controller, posts_table):
        host = FakeHost(posts_table, form={"title": "", "body": "x"})
        assert controller.posts_store(host, {}) == ("redirect", "/posts-create")
        assert host.flashes == [("error", "Title is required")]
        assert posts_table.connection().fetch_scalar("SELECT COUNT(*) FROM posts") == 0

    def test_show_edit_update_destroy(self, controller, posts_table):
        new_id = posts_table.insert("posts", {"title": "First", "published": 0})

        _, view, data, _ = controller.posts_show(FakeHost(posts_table), {"id": new_id})
        assert view == "posts/show"
        assert data["title"] == "First"

        _, view, data, _ = controller.posts_edit(FakeHost(posts_table), {"id": new_id})
        assert view == "posts/edit"
        assert data["post"]["id"] == new_id

        host = FakeHost(posts_table, form={"title": "Renamed", "body": ""})
        assert controller.posts_update(host, {"id": new_id}) == ("redirect", "/posts")
        assert posts_table.find("posts", new_id)["title"] == "Renamed"

        host = FakeHost(posts_table, form={"title": ""})
        assert controller.posts_update(host, {"id": new_id}) == (
            "redirect",
            f"/posts/{new_id}/edit",
        )

        host = FakeHost(posts_table)
        assert controller.posts_destroy(host, {"id": new_id}) == ("redirect", "/posts")
        assert host.flashes == [("success", "Post deleted successfully!")]
        assert posts_table.find("posts", new_id) is None

    def test_missing_record(self, controller, posts_table):
        for handler in ("posts_show", "posts_edit", "posts_update", "posts_destroy"):
            assert getattr(controller, handler)(FakeHost(posts_table), {"id": 404}) == (
                "not_found",
            )

    def test_routes(self, controller):
        assert controller.ROUTES[("GET", "/posts")] is controller.posts_index
        assert controller.ROUTES[("POST", "/posts/{id}/edit")] is controller.posts_update
        assert len(controller.ROUTES) == 7

    def test_admin_handlers_guard_access(self, generator, posts_table, workspace, monkeypatch):
        plan = build_plan("Post", SchemaInspector(posts_table).columns("posts"), admin=True)
        generator.write_crud(plan, NOW)
        controller = import_generated(
            workspace, monkeypatch, f"{ROOT}.controllers.admin_posts_controller"
        )
        host = FakeHost(posts_table)
        _, view, _, layout = controller.admin_posts_index(host, {})
        assert host.calls == ["require_auth", "require_admin"]
        assert view == "admin/posts/index"
        assert layout == "admin"


class TestJsonFields:
    """JSON columns survive a create, edit and update cycle through the generated code."""

    @pytest.fixture
    def items(self, posts_table):
        posts_table.connection().execute(
            "CREATE TABLE items (id INTEGER PRIMARY KEY AUTOINCREMENT,"
            " name VARCHAR(100) NOT NULL, meta JSON)"
        )
        return posts_table

    @pytest.fixture
    def controller(self, generator, items, workspace, monkeypatch):
        plan = build_plan("Item", SchemaInspector(items).columns("items"))
        assert plan.field_named("meta").kind == SemanticFieldKind.JSON
        generator.write_crud(plan, NOW)
        return import_generated(
            workspace, monkeypatch, f"{ROOT}.controllers.items_controller"
        )

    def edit_textarea(self, paths, item):
        html = views_env(paths).get_template("items/edit.html").render(
            title="Edit Item", csrf_token="token-123", item=item
        )
        match = re.search(r'<textarea id="meta" name="meta" rows="5">(.*?)</textarea>', html, re.S)
        assert match is not None
        return match.group(1)

    def test_create_form_has_empty_textarea(self, controller, paths):
        html = views_env(paths).get_template("items/create.html").render(csrf_token="t")
        assert '<textarea id="meta" name="meta" rows="5"></textarea>' in html

    def test_edit_round_trip(self, controller, items, paths):
        host = FakeHost(items, form={"name": "Box", "meta": '{"a": 1, "tags": ["x"]}'})
        assert controller.items_store(host, {}) == ("redirect", "/items")
        item = controller.model.find(items, 1)
        assert item["meta"] == {"a": 1, "tags": ["x"]}

        posted = self.edit_textarea(paths, item)
        assert json.loads(posted) == {"a": 1, "tags": ["x"]}

        host = FakeHost(items, form={"name": "Box", "meta": posted})
        assert controller.items_update(host, {"id": 1}) == ("redirect", "/items")
        assert controller.model.find(items, 1)["meta"] == {"a": 1, "tags": ["x"]}

    def test_invalid_json_keeps_stored_value(self, controller, items):
        items.insert("items", {"name": "Box", "meta": '{"a": 1}'})
        host = FakeHost(items, form={"name": "Crate", "meta": "{not json"})
        assert controller.items_update(host, {"id": 1}) == ("redirect", "/items")
        item = controller.model.find(items, 1)
        assert item["name"] == "Crate"
        assert item["meta"] == {"a": 1}

    def test_blank_json_on_create_stores_null(self, controller, items, paths):
        controller.items_store(FakeHost(items, form={"name": "Box", "meta": ""}), {})
        item = controller.model.find(items, 1)
        assert item["meta"] is None
        assert self.edit_textarea(paths, item) == ""

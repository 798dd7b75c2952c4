"""Tests for the table constructor: diffing, DDL generation and migrations."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import OperationalError

from cargo_db.adapters.sql import AsyncSQLAdapter
from cargo_db.schema.models import ColumnSchema, ConstraintSchema, DatabaseSchema, TableSchema
from cargo_db.table.builder import TableSet
from cargo_db.table.constructor import (
    MigrationPlan,
    TableChange,
    _topological_sort,
    apply_migration,
    collect_tables,
    diff_tables,
    format_plan,
    generate_statements,
    plan_migration,
)

NOTE_V1 = {
    "name": "note",
    "type": "entity",
    "fields": [{"name": "title", "type": "shortText"}],
}

NOTE_V2 = {
    "name": "note",
    "type": "entity",
    "fields": [
        {"name": "title", "type": "shortText"},
        {"name": "body", "type": "longText"},
    ],
}

NOTE_V3 = {
    "name": "note",
    "type": "entity",
    "fields": [
        {"name": "title", "type": "shortText", "constraints": {"required": True}},
        {"name": "body", "type": "longText"},
    ],
}

DRAFT = {
    "name": "draft",
    "type": "entity",
    "fields": [{"name": "title", "type": "shortText"}],
}


def _tag_tables() -> TableSet:
    tables = TableSet()
    tables.create("tag").string("name", lambda f: f.nullable(False))
    return tables


def _live_tag(**columns: ColumnSchema) -> DatabaseSchema:
    return DatabaseSchema(
        tables={
            "tag": TableSchema(
                name="tag",
                columns={"_id": ColumnSchema(name="_id", data_type="INTEGER", is_nullable=False), **columns},
            )
        }
    )


# ============================================================================
# Ordering
# ============================================================================


class TestTopologicalSort:
    """Referenced tables come before referencing ones."""

    def test_dependencies_first(self) -> None:
        order = _topological_sort(
            {"restaurant": {"person"}, "restaurant__tags": {"restaurant", "tag"}},
            ["restaurant__tags", "restaurant", "tag", "person"],
        )
        assert order.index("person") < order.index("restaurant")
        assert order.index("restaurant") < order.index("restaurant__tags")
        assert order.index("tag") < order.index("restaurant__tags")

    def test_cycle_terminates(self) -> None:
        order = _topological_sort({"a": {"b"}, "b": {"a"}}, ["a", "b"])
        assert sorted(order) == ["a", "b"]

    def test_ignores_tables_outside_the_list(self) -> None:
        assert _topological_sort({"restaurant": {"person"}}, ["restaurant"]) == ["restaurant"]


# ============================================================================
# Diffing
# ============================================================================


class TestDiffTables:
    """Verify the diff between desired and live tables."""

    def test_missing_table_created(self) -> None:
        changes, drops = diff_tables(_tag_tables(), DatabaseSchema(), sqlite.dialect())
        assert changes["tag"].create
        assert drops == []

    def test_matching_table(self) -> None:
        live = _live_tag(name=ColumnSchema(name="name", data_type="VARCHAR(255)", is_nullable=False))
        changes, _ = diff_tables(_tag_tables(), live, sqlite.dialect())
        assert changes == {}

    def test_column_changes(self) -> None:
        live = _live_tag(
            name=ColumnSchema(name="name", data_type="TEXT", is_nullable=True),
            color=ColumnSchema(name="color", data_type="TEXT"),
        )
        changes, _ = diff_tables(_tag_tables(), live, sqlite.dialect())
        change = changes["tag"]
        assert change.alter_types == ["name"]
        assert change.alter_nullability == ["name"]
        assert change.drop_columns == ["color"]
        assert change.add_columns == []

    def test_constraint_changes(self) -> None:
        tables = _tag_tables()
        tables.tables["tag"].integer("parent", lambda f: f.unique().references("tag", on_delete="SET NULL"))
        live = _live_tag(
            name=ColumnSchema(name="name", data_type="VARCHAR(255)", is_nullable=False),
            parent=ColumnSchema(name="parent", data_type="INTEGER"),
        )
        live.tables["tag"].constraints["tag_name_unique"] = ConstraintSchema(
            name="tag_name_unique", constraint_type="UNIQUE", columns=["name"]
        )
        live.tables["tag"].constraints["tag_parent_foreign"] = ConstraintSchema(
            name="tag_parent_foreign",
            constraint_type="FOREIGN KEY",
            columns=["parent"],
            references_table="tag",
            on_delete="CASCADE",
        )
        change = diff_tables(tables, live, sqlite.dialect())[0]["tag"]
        assert change.add_uniques == [("parent",)]
        assert change.drop_uniques == ["tag_name_unique"]
        # A changed ON DELETE rule replaces the foreign key
        assert change.add_foreign_keys == ["parent"]
        assert change.drop_foreign_keys == ["tag_parent_foreign"]

    def test_unused_tables(self) -> None:
        live = _live_tag(name=ColumnSchema(name="name", data_type="VARCHAR(255)", is_nullable=False))
        live.tables["legacy"] = TableSchema(name="legacy")
        assert diff_tables(_tag_tables(), live, sqlite.dialect())[1] == ["legacy"]
        assert diff_tables(_tag_tables(), live, sqlite.dialect(), drop_unused=False)[1] == []


# ============================================================================
# Statement generation
# ============================================================================


class TestPostgresStatements:
    """Verify the in-place PostgreSQL DDL."""

    def test_create_adds_foreign_keys_last(self, registry) -> None:
        tables = collect_tables(registry)
        changes, drops = diff_tables(tables, DatabaseSchema(), postgresql.dialect())
        statements = generate_statements(tables, changes, drops, DatabaseSchema(), postgresql.dialect())
        creates = [s for s in statements if s.startswith("CREATE TABLE")]
        assert len(creates) == len(tables)
        assert not any("FOREIGN KEY" in s for s in creates)
        foreign = [s for s in statements if "FOREIGN KEY" in s]
        assert statements.index(foreign[0]) > statements.index(creates[-1])
        assert any("restaurant_owner_foreign" in s and "ON DELETE SET NULL" in s for s in foreign)

    def test_alter_statements(self) -> None:
        tables = _tag_tables()
        tables.tables["tag"].integer("priority", lambda f: f.in_range(0, 10))
        live = _live_tag(
            name=ColumnSchema(name="name", data_type="TEXT", is_nullable=True),
            color=ColumnSchema(name="color", data_type="TEXT"),
        )
        live.tables["legacy"] = TableSchema(name="legacy")
        changes, drops = diff_tables(tables, live, postgresql.dialect())
        statements = generate_statements(tables, changes, drops, live, postgresql.dialect())
        assert statements[0] == "ALTER TABLE tag ADD COLUMN priority INTEGER"
        assert "tag_priority_range" in statements[1]
        assert "ALTER TABLE tag ALTER COLUMN name TYPE VARCHAR(255) USING name::VARCHAR(255)" in statements
        assert "ALTER TABLE tag ALTER COLUMN name SET NOT NULL" in statements
        assert "ALTER TABLE tag DROP COLUMN color" in statements
        assert statements[-1] == "DROP TABLE IF EXISTS legacy CASCADE"


class TestSqliteStatements:
    """Verify SQLite DDL: in-place adds and table rebuilds."""

    def test_nullable_column_added_in_place(self) -> None:
        tables = _tag_tables()
        tables.tables["tag"].text("color")
        live = _live_tag(name=ColumnSchema(name="name", data_type="VARCHAR(255)", is_nullable=False))
        changes, drops = diff_tables(tables, live, sqlite.dialect())
        statements = generate_statements(tables, changes, drops, live, sqlite.dialect())
        assert statements == ["ALTER TABLE tag ADD COLUMN color TEXT"]

    def test_rebuild(self) -> None:
        live = _live_tag(
            name=ColumnSchema(name="name", data_type="VARCHAR(255)", is_nullable=True),
            color=ColumnSchema(name="color", data_type="TEXT"),
        )
        changes, drops = diff_tables(_tag_tables(), live, sqlite.dialect())
        statements = generate_statements(_tag_tables(), changes, drops, live, sqlite.dialect())
        assert statements[0] == "PRAGMA foreign_keys=OFF"
        assert statements[1] == "DROP TABLE IF EXISTS tag__rebuild"
        assert statements[2].startswith("CREATE TABLE tag__rebuild")
        assert statements[3] == "INSERT INTO tag__rebuild (_id, name) SELECT _id, name FROM tag"
        assert statements[4:] == [
            "DROP TABLE tag",
            "ALTER TABLE tag__rebuild RENAME TO tag",
            "PRAGMA foreign_keys=ON",
        ]

    def test_unsupported_dialect(self) -> None:
        dialect = MagicMock()
        dialect.name = "oracle"
        with pytest.raises(NotImplementedError, match="oracle"):
            generate_statements(TableSet(), {}, [], DatabaseSchema(), dialect)


# ============================================================================
# Applying plans
# ============================================================================


class TestApplyMigration:
    """Verify apply_migration guards and error reporting."""

    def _plan(self) -> MigrationPlan:
        return MigrationPlan(
            changes={"tag": TableChange("tag", create=True), "note": TableChange("note", add_columns=["body"])},
            drop_tables=["legacy"],
            statements=["CREATE TABLE tag (_id INTEGER)", "ALTER TABLE note ADD COLUMN body TEXT"],
        )

    def test_counts(self) -> None:
        adapter = AsyncMock()
        result = asyncio.run(apply_migration(adapter, self._plan()))
        assert result.success
        assert (result.tables_created, result.tables_altered, result.tables_dropped) == (1, 1, 1)
        adapter.execute_script.assert_awaited_once_with(self._plan().statements)

    def test_dry_run(self) -> None:
        adapter = AsyncMock()
        result = asyncio.run(apply_migration(adapter, self._plan(), dry_run=True))
        assert result.success
        assert result.statements == self._plan().statements
        adapter.execute_script.assert_not_awaited()

    def test_requires_confirm(self) -> None:
        adapter = AsyncMock()
        result = asyncio.run(apply_migration(adapter, self._plan(), confirm=False))
        assert not result.success
        assert "confirm=True" in result.error
        adapter.execute_script.assert_not_awaited()

    def test_database_error_reported(self) -> None:
        adapter = AsyncMock()
        adapter.execute_script.side_effect = OperationalError("CREATE TABLE", {}, Exception("locked"))
        result = asyncio.run(apply_migration(adapter, self._plan()))
        assert not result.success
        assert result.error.startswith("Failed to apply migration")

    def test_empty_plan(self) -> None:
        adapter = AsyncMock()
        result = asyncio.run(apply_migration(adapter, MigrationPlan()))
        assert result.success
        adapter.execute_script.assert_not_awaited()

    def test_format_plan(self) -> None:
        assert list(format_plan(self._plan())) == ["create tag", "alter note: +body", "drop legacy"]


# ============================================================================
# SQLite round trips
# ============================================================================


class TestSqliteMigration:
    """Migrate a real SQLite file database between registry versions."""

    def _migrate(self, adapter, registry, drop_unused: bool = True):
        async def run():
            plan = await plan_migration(adapter, collect_tables(registry), drop_unused=drop_unused)
            result = await apply_migration(adapter, plan)
            assert result.success, result.error
            return plan

        return run()

    def test_idempotent(self, database_url, registry) -> None:
        """A second migration of the same registry has nothing to do."""

        async def run():
            adapter = AsyncSQLAdapter(database_url)
            try:
                first = await self._migrate(adapter, registry)
                second = await plan_migration(adapter, collect_tables(registry))
            finally:
                await adapter.close()
            return first, second

        first, second = asyncio.run(run())
        assert len(first.tables_created) == 8
        assert second.statements == []
        assert second.changes == {}

    def test_add_column_and_rebuild_keep_rows(self, database_url, make_registry) -> None:
        async def run():
            adapter = AsyncSQLAdapter(database_url)
            note = sa.table("note", sa.column("title"), sa.column("body"))
            try:
                await self._migrate(adapter, make_registry(NOTE_V1, DRAFT))
                await adapter.execute(sa.insert(note).values(title="Hello"))

                added = await self._migrate(adapter, make_registry(NOTE_V2, DRAFT))
                rebuilt = await self._migrate(adapter, make_registry(NOTE_V3, DRAFT))
                kept = await self._migrate(adapter, make_registry(NOTE_V3), drop_unused=False)
                dropped = await self._migrate(adapter, make_registry(NOTE_V3))
                rows = await adapter.fetch_all(sa.select(note.c.title, note.c.body))
                final = await plan_migration(adapter, collect_tables(make_registry(NOTE_V3)))
            finally:
                await adapter.close()
            return added, rebuilt, kept, dropped, rows, final

        added, rebuilt, kept, dropped, rows, final = asyncio.run(run())
        assert added.statements == ["ALTER TABLE note ADD COLUMN body TEXT"]
        assert rebuilt.changes["note"].alter_nullability == ["title"]
        assert "ALTER TABLE note__rebuild RENAME TO note" in rebuilt.statements
        assert kept.statements == []
        assert dropped.drop_tables == ["draft"]
        assert rows == [{"title": "Hello", "body": None}]
        assert final.statements == []

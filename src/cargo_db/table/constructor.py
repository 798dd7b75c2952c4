"""Table constructor: migrate a live database to the registry's tables.

Generates the table set of every registered entity, diffs it against the
database the adapter is connected to, and emits the DDL that closes the
gap.  Running it twice in a row is a no-op: the second diff is empty.

PostgreSQL is altered in place.  Foreign keys are dropped first and added
last, so tables can be created and altered in any order.

SQLite cannot alter columns or constraints, so a changed table is rebuilt:
the new layout is created as ``{table}__rebuild``, rows are copied over,
the old table is dropped and the new one renamed, all with foreign key
enforcement switched off.  Only nullable plain columns are added in place.

Usage:
    from cargo_db.table.constructor import construct_tables

    result = await construct_tables(adapter, registry)
    if not result.success:
        print(result.error)
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import sqlalchemy as sa
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.schema import AddConstraint, CreateTable

from cargo_db.schema.introspector import SchemaIntrospector, type_name
from cargo_db.schema.models import DatabaseSchema, TableSchema
from cargo_db.table.builder import PRIMARY_KEY, Field, Table, TableSet, constraint_name
from cargo_db.types.base import generate_schema_columns

if TYPE_CHECKING:
    from cargo_db.adapters.base import DatabaseClient
    from cargo_db.schema.registry import Registry

logger = logging.getLogger(__name__)

REBUILD_SUFFIX = "__rebuild"


# ------------------------------------------------------------------
# Plan data classes
# ------------------------------------------------------------------


@dataclass
class TableChange:
    """Differences between one desired table and its live counterpart.

    Example:
        change = TableChange("restaurant", add_columns=["rating"])
        change.has_changes
        # True
    """

    table: str
    create: bool = False
    add_columns: list[str] = field(default_factory=list)
    drop_columns: list[str] = field(default_factory=list)
    alter_types: list[str] = field(default_factory=list)
    alter_nullability: list[str] = field(default_factory=list)
    add_uniques: list[tuple[str, ...]] = field(default_factory=list)
    drop_uniques: list[str] = field(default_factory=list)
    add_foreign_keys: list[str] = field(default_factory=list)
    drop_foreign_keys: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return self.create or any(
            (
                self.add_columns,
                self.drop_columns,
                self.alter_types,
                self.alter_nullability,
                self.add_uniques,
                self.drop_uniques,
                self.add_foreign_keys,
                self.drop_foreign_keys,
            )
        )


@dataclass
class MigrationPlan:
    """Diff result and the DDL statements that apply it.

    Attributes:
        changes: Per-table differences, only for tables that differ.
        drop_tables: Live tables no longer generated by the registry.
        statements: DDL in execution order.
    """

    changes: dict[str, TableChange] = field(default_factory=dict)
    drop_tables: list[str] = field(default_factory=list)
    statements: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.statements)

    @property
    def tables_created(self) -> list[str]:
        return [c.table for c in self.changes.values() if c.create]

    @property
    def tables_altered(self) -> list[str]:
        return [c.table for c in self.changes.values() if not c.create]


class MigrationResult(BaseModel):
    """Result of applying a migration plan.

    Attributes:
        success: True if every statement was applied.
        statements: Statements applied (or that would be, on a dry run).
        tables_created: Number of new tables.
        tables_altered: Number of existing tables changed.
        tables_dropped: Number of unused tables dropped.
        error: Error message if the migration failed.
    """

    success: bool = False
    statements: list[str] = []
    tables_created: int = 0
    tables_altered: int = 0
    tables_dropped: int = 0
    error: str | None = None


# ------------------------------------------------------------------
# Desired tables
# ------------------------------------------------------------------


def collect_tables(registry: "Registry") -> TableSet:
    """Generate the tables of every registered entity.

    Component lists, bridges and dynamic component tables are generated
    along with the entity that declares them.
    """
    tables = TableSet()
    for schema in registry.entities():
        table = tables.create(schema.table_name)
        generate_schema_columns(schema.fields, table, tables, registry)
    logger.debug("Generated %d tables", len(tables))
    return tables


def _topological_sort(dependencies: dict[str, set[str]], tables: list[str]) -> list[str]:
    """Order tables so referenced tables come before referencing ones.

    Cycles are broken at the first table revisited.
    """
    relevant = {t: dependencies.get(t, set()) & set(tables) for t in tables}

    sorted_tables: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(table: str) -> None:
        if table in visited or table in visiting:
            return
        visiting.add(table)
        for dep in sorted(relevant.get(table, set())):
            visit(dep)
        visiting.discard(table)
        visited.add(table)
        sorted_tables.append(table)

    for table in tables:
        visit(table)

    return sorted_tables


# ------------------------------------------------------------------
# Diffing
# ------------------------------------------------------------------


def _on_delete(value: str | None) -> str:
    return (value or "NO ACTION").upper()


def _diff_table(desired: Table, live: TableSchema, dialect: sa.engine.Dialect) -> TableChange:
    change = TableChange(desired.name)
    live_columns = {name: col for name, col in live.columns.items() if name != PRIMARY_KEY}

    for name, f in desired.fields.items():
        column = live_columns.get(name)
        if column is None:
            change.add_columns.append(name)
            continue
        if type_name(f.sa_type(), dialect) != column.data_type:
            change.alter_types.append(name)
        if f.is_nullable != column.is_nullable:
            change.alter_nullability.append(name)
    change.drop_columns = [name for name in live_columns if name not in desired.fields]

    live_uniques = {
        frozenset(c.columns): c.name for c in live.constraints_of("UNIQUE")
    }
    desired_uniques = {frozenset(group): group for group in desired.unique_groups()}
    change.add_uniques = [g for key, g in desired_uniques.items() if key not in live_uniques]
    change.drop_uniques = [n for key, n in live_uniques.items() if key not in desired_uniques]

    live_fks = {
        (tuple(c.columns), c.references_table, _on_delete(c.on_delete)): c.name
        for c in live.constraints_of("FOREIGN KEY")
    }
    desired_fks = {
        ((f.name,), f.foreign_key.table, _on_delete(f.foreign_key.on_delete)): f.name
        for f in desired.fields.values()
        if f.foreign_key is not None
    }
    change.add_foreign_keys = [col for key, col in desired_fks.items() if key not in live_fks]
    change.drop_foreign_keys = [name for key, name in live_fks.items() if key not in desired_fks]
    return change


def diff_tables(
    tables: TableSet,
    live: DatabaseSchema,
    dialect: sa.engine.Dialect,
    drop_unused: bool = True,
) -> tuple[dict[str, TableChange], list[str]]:
    """Diff desired tables against an introspected database.

    Returns:
        Changes per differing table, and the live tables to drop.
    """
    changes: dict[str, TableChange] = {}
    for table in tables:
        if table.name not in live.tables:
            changes[table.name] = TableChange(table.name, create=True)
            continue
        change = _diff_table(table, live.tables[table.name], dialect)
        if change.has_changes:
            changes[table.name] = change

    drop_tables = []
    if drop_unused:
        drop_tables = sorted(name for name in live.tables if name not in tables)
    return changes, drop_tables


# ------------------------------------------------------------------
# Statement generation
# ------------------------------------------------------------------


def _compile(element: sa.schema.ExecutableDDLElement, dialect: sa.engine.Dialect) -> str:
    return str(element.compile(dialect=dialect)).strip()


def _column_ddl(f: Field, dialect: sa.engine.Dialect) -> str:
    ddl = type_name(f.sa_type(), dialect)
    return ddl if f.is_nullable else ddl + " NOT NULL"


def _postgres_statements(
    tables: TableSet,
    changes: dict[str, TableChange],
    drop_tables: list[str],
    dialect: sa.engine.Dialect,
) -> list[str]:
    quote = dialect.identifier_preparer.quote
    metadata = sa.MetaData()
    rendered = {t.name: t.to_sqlalchemy(metadata, "postgresql") for t in tables}
    order = _topological_sort({t.name: t.dependencies for t in tables}, list(changes))

    statements: list[str] = []
    for name in order:
        for constraint in changes[name].drop_foreign_keys:
            statements.append(f"ALTER TABLE {quote(name)} DROP CONSTRAINT {quote(constraint)}")
    for name in order:
        for constraint in changes[name].drop_uniques:
            statements.append(f"ALTER TABLE {quote(name)} DROP CONSTRAINT {quote(constraint)}")

    for name in order:
        change = changes[name]
        if change.create:
            statements.append(
                _compile(CreateTable(rendered[name], include_foreign_key_constraints=[]), dialect)
            )
            continue
        desired = tables.tables[name]
        for column in change.add_columns:
            f = desired.fields[column]
            statements.append(
                f"ALTER TABLE {quote(name)} ADD COLUMN {quote(column)} {_column_ddl(f, dialect)}"
            )
            for check in f.checks:
                constraint = _find_constraint(rendered[name], constraint_name(name, (column,), check.suffix))
                if constraint is not None:
                    statements.append(_compile(AddConstraint(constraint), dialect))
        for column in change.alter_types:
            ddl = type_name(desired.fields[column].sa_type(), dialect)
            statements.append(
                f"ALTER TABLE {quote(name)} ALTER COLUMN {quote(column)} "
                f"TYPE {ddl} USING {quote(column)}::{ddl}"
            )
        for column in change.alter_nullability:
            action = "DROP NOT NULL" if desired.fields[column].is_nullable else "SET NOT NULL"
            statements.append(f"ALTER TABLE {quote(name)} ALTER COLUMN {quote(column)} {action}")
        for column in change.drop_columns:
            statements.append(f"ALTER TABLE {quote(name)} DROP COLUMN {quote(column)}")

    for name in order:
        for group in changes[name].add_uniques:
            constraint = _find_constraint(rendered[name], constraint_name(name, group, "unique"))
            statements.append(_compile(AddConstraint(constraint), dialect))

    for name in order:
        desired = tables.tables[name]
        columns = (
            [f.name for f in desired.fields.values() if f.foreign_key is not None]
            if changes[name].create
            else changes[name].add_foreign_keys
        )
        for column in columns:
            constraint = _find_constraint(rendered[name], constraint_name(name, (column,), "foreign"))
            statements.append(_compile(AddConstraint(constraint), dialect))

    for name in drop_tables:
        statements.append(f"DROP TABLE IF EXISTS {quote(name)} CASCADE")
    return statements


def _find_constraint(table: sa.Table, name: str) -> sa.schema.Constraint | None:
    for constraint in table.constraints:
        if constraint.name == name:
            return constraint
    return None


def _adds_in_place(change: TableChange, desired: Table) -> bool:
    """True if SQLite can apply ``change`` with ``ADD COLUMN`` alone."""
    if any(
        (
            change.drop_columns,
            change.alter_types,
            change.alter_nullability,
            change.add_uniques,
            change.drop_uniques,
            change.drop_foreign_keys,
        )
    ):
        return False
    for column in change.add_columns:
        f = desired.fields[column]
        if not f.is_nullable or f.is_unique or f.foreign_key is not None or f.checks:
            return False
    return True


def _sqlite_statements(
    tables: TableSet,
    changes: dict[str, TableChange],
    drop_tables: list[str],
    live: DatabaseSchema,
    dialect: sa.engine.Dialect,
) -> list[str]:
    quote = dialect.identifier_preparer.quote
    metadata = sa.MetaData()
    rendered = {t.name: t.to_sqlalchemy(metadata, "sqlite") for t in tables}
    order = _topological_sort({t.name: t.dependencies for t in tables}, list(changes))

    statements: list[str] = []
    rebuilds: list[str] = []
    for name in order:
        change = changes[name]
        desired = tables.tables[name]
        if change.create:
            statements.append(_compile(CreateTable(rendered[name]), dialect))
        elif _adds_in_place(change, desired):
            for column in change.add_columns:
                statements.append(
                    f"ALTER TABLE {quote(name)} ADD COLUMN {quote(column)} "
                    f"{_column_ddl(desired.fields[column], dialect)}"
                )
        else:
            rebuilds.append(name)

    guarded: list[str] = []
    for name in rebuilds:
        temporary = name + REBUILD_SUFFIX
        rebuilt = tables.tables[name].to_sqlalchemy(metadata, "sqlite", physical_name=temporary)
        common = [PRIMARY_KEY] + [
            column for column in tables.tables[name].fields if column in live.tables[name].columns
        ]
        column_list = ", ".join(quote(c) for c in common)
        guarded += [
            f"DROP TABLE IF EXISTS {quote(temporary)}",
            _compile(CreateTable(rebuilt), dialect),
            f"INSERT INTO {quote(temporary)} ({column_list}) SELECT {column_list} FROM {quote(name)}",
            f"DROP TABLE {quote(name)}",
            f"ALTER TABLE {quote(temporary)} RENAME TO {quote(name)}",
        ]
    for name in drop_tables:
        guarded.append(f"DROP TABLE IF EXISTS {quote(name)}")

    if guarded:
        statements += ["PRAGMA foreign_keys=OFF", *guarded, "PRAGMA foreign_keys=ON"]
    return statements


def generate_statements(
    tables: TableSet,
    changes: dict[str, TableChange],
    drop_tables: list[str],
    live: DatabaseSchema,
    dialect: sa.engine.Dialect,
) -> list[str]:
    """Render the DDL for a diff on ``dialect``.

    Raises:
        NotImplementedError: For dialects other than PostgreSQL and SQLite.
    """
    if dialect.name == "postgresql":
        return _postgres_statements(tables, changes, drop_tables, dialect)
    if dialect.name == "sqlite":
        return _sqlite_statements(tables, changes, drop_tables, live, dialect)
    raise NotImplementedError(f"Migrations are not supported on {dialect.name}")


# ------------------------------------------------------------------
# Planning and application
# ------------------------------------------------------------------


async def plan_migration(
    adapter: "DatabaseClient",
    tables: TableSet,
    drop_unused: bool = True,
) -> MigrationPlan:
    """Introspect the database and plan the migration to ``tables``.

    Args:
        adapter: Database client to introspect.
        tables: Desired tables (see ``collect_tables``).
        drop_unused: Drop live tables that ``tables`` does not contain.

    Returns:
        ``MigrationPlan``; ``plan.has_changes`` is False when the database
        already matches.
    """
    live = await SchemaIntrospector(adapter).introspect()
    changes, drop_tables = diff_tables(tables, live, adapter.dialect, drop_unused)
    statements = generate_statements(tables, changes, drop_tables, live, adapter.dialect)
    for change in changes.values():
        logger.info("Table %s: %s", change.table, "create" if change.create else "alter")
    for name in drop_tables:
        logger.info("Table %s: drop", name)
    return MigrationPlan(changes=changes, drop_tables=drop_tables, statements=statements)


async def apply_migration(
    adapter: "DatabaseClient",
    plan: MigrationPlan,
    dry_run: bool = False,
    confirm: bool = True,
) -> MigrationResult:
    """Apply a migration plan.

    Args:
        adapter: Database client.
        plan: Plan from ``plan_migration()``.
        dry_run: Only report what would be done.
        confirm: Must be True to execute; a safety guard for callers that
            prompt before destructive changes.

    Returns:
        ``MigrationResult``; database errors are reported in ``error``
        rather than raised.
    """
    result = MigrationResult(
        statements=list(plan.statements),
        tables_created=len(plan.tables_created),
        tables_altered=len(plan.tables_altered),
        tables_dropped=len(plan.drop_tables),
    )

    if not plan.has_changes or dry_run:
        result.success = True
        return result

    if not confirm:
        result.error = "Migration requires confirm=True"
        return result

    try:
        await adapter.execute_script(plan.statements)
    except SQLAlchemyError as e:
        logger.error("Migration failed: %s", e)
        result.error = f"Failed to apply migration: {e}"
        return result

    result.success = True
    return result


async def construct_tables(
    adapter: "DatabaseClient",
    registry: "Registry",
    dry_run: bool = False,
    drop_unused: bool = True,
) -> MigrationResult:
    """Generate, diff and apply the tables of ``registry`` in one call."""
    plan = await plan_migration(adapter, collect_tables(registry), drop_unused=drop_unused)
    return await apply_migration(adapter, plan, dry_run=dry_run)


def format_plan(plan: MigrationPlan) -> Iterable[str]:
    """Human-readable summary lines of ``plan``."""
    for change in plan.changes.values():
        if change.create:
            yield f"create {change.table}"
            continue
        parts = [
            *(f"+{c}" for c in change.add_columns),
            *(f"-{c}" for c in change.drop_columns),
            *(f"~{c}" for c in change.alter_types + change.alter_nullability),
        ]
        if change.add_uniques or change.drop_uniques:
            parts.append("uniques")
        if change.add_foreign_keys or change.drop_foreign_keys:
            parts.append("foreign keys")
        yield f"alter {change.table}: {' '.join(parts)}"
    for name in plan.drop_tables:
        yield f"drop {name}"

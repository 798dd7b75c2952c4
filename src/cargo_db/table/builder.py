"""Fluent description of physical tables.

``Table`` and ``Field`` are plain value objects: data types fill them in
while generating columns, and the table constructor renders them to
SQLAlchemy ``Table`` objects only when diffing against a live database.
Every table gets an ``_id`` auto-increment primary key.

Usage:
    from cargo_db.table.builder import Table

    table = Table("restaurant")
    table.string("name", lambda f: f.nullable(False).length("le", 80))
    table.integer("owner", lambda f: f.references("person", on_delete="SET NULL"))
    sa_table = table.to_sqlalchemy(MetaData(), "postgresql")
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

import sqlalchemy as sa

PRIMARY_KEY = "_id"

_LENGTH_OPERATORS = {
    "eq": "__eq__",
    "ne": "__ne__",
    "gt": "__gt__",
    "lt": "__lt__",
    "le": "__le__",
    "ge": "__ge__",
}


# ------------------------------------------------------------------
# Value objects
# ------------------------------------------------------------------


@dataclass(frozen=True)
class ForeignKey:
    """Foreign key target of a field."""

    table: str
    column: str = PRIMARY_KEY
    on_delete: str | None = None
    on_update: str | None = None


@dataclass(frozen=True)
class Check:
    """A CHECK rule on a single field.

    ``kind`` is one of ``range``, ``positive``, ``negative``, ``in``,
    ``not_in``, ``regex`` or ``length``.
    """

    kind: str
    value: Any = None
    operator: str | None = None

    @property
    def suffix(self) -> str:
        """Constraint name suffix, e.g. ``range`` or ``length_le``."""
        return self.kind if self.operator is None else f"{self.kind}_{self.operator}"


class Field:
    """One column of a ``Table``.  Builder methods return ``self``."""

    def __init__(self, name: str, sql_type: str) -> None:
        self.name = name
        self.sql_type = sql_type
        self.is_nullable = True
        self.is_unique = False
        self.foreign_key: ForeignKey | None = None
        self.checks: list[Check] = []

    def __repr__(self) -> str:
        return f"Field({self.name!r}, {self.sql_type!r})"

    def in_range(self, minimum: float | None = None, maximum: float | None = None) -> "Field":
        if minimum is not None or maximum is not None:
            self.checks.append(Check("range", (minimum, maximum)))
        return self

    def positive(self) -> "Field":
        self.checks.append(Check("positive"))
        return self

    def negative(self) -> "Field":
        self.checks.append(Check("negative"))
        return self

    def one_of(self, values: Sequence[Any]) -> "Field":
        self.checks.append(Check("in", tuple(values)))
        return self

    def not_one_of(self, values: Sequence[Any]) -> "Field":
        self.checks.append(Check("not_in", tuple(values)))
        return self

    def regex(self, pattern: str) -> "Field":
        self.checks.append(Check("regex", pattern))
        return self

    def length(self, operator: str, value: int) -> "Field":
        if operator not in _LENGTH_OPERATORS:
            raise ValueError(f"Unknown length operator '{operator}'")
        self.checks.append(Check("length", value, operator))
        return self

    def nullable(self, flag: bool = True) -> "Field":
        self.is_nullable = flag
        return self

    def unique(self, flag: bool = True) -> "Field":
        self.is_unique = flag
        return self

    def references(
        self,
        table: str,
        column: str = PRIMARY_KEY,
        on_delete: str | None = None,
        on_update: str | None = None,
    ) -> "Field":
        self.foreign_key = ForeignKey(table, column, on_delete, on_update)
        return self

    def sa_type(self) -> sa.types.TypeEngine:
        """SQLAlchemy type for this field."""
        return _SQL_TYPES[self.sql_type]()


_SQL_TYPES: dict[str, Callable[[], sa.types.TypeEngine]] = {
    "integer": sa.Integer,
    "increments": sa.Integer,
    "float": sa.REAL,
    "double": sa.Double,
    "varchar": lambda: sa.String(255),
    "text": sa.Text,
    "boolean": sa.Boolean,
}


class Table:
    """In-memory description of a physical table."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.fields: dict[str, Field] = {}
        self.composites: list[tuple[str, ...]] = []

    def __repr__(self) -> str:
        return f"Table({self.name!r}, fields={list(self.fields)})"

    # ------------------------------------------------------------------
    # Field creators
    # ------------------------------------------------------------------

    def column(self, name: str, sql_type: str, build: Callable[[Field], Any] | None = None) -> Field:
        if name == PRIMARY_KEY or name in self.fields:
            raise ValueError(f"Duplicate column '{name}' in table '{self.name}'")
        column = Field(name, sql_type)
        self.fields[name] = column
        if build is not None:
            build(column)
        return column

    def integer(self, name: str, build: Callable[[Field], Any] | None = None) -> Field:
        return self.column(name, "integer", build)

    def increments(self, name: str, build: Callable[[Field], Any] | None = None) -> Field:
        return self.column(name, "increments", build)

    def real(self, name: str, build: Callable[[Field], Any] | None = None) -> Field:
        return self.column(name, "float", build)

    def double(self, name: str, build: Callable[[Field], Any] | None = None) -> Field:
        return self.column(name, "double", build)

    def string(self, name: str, build: Callable[[Field], Any] | None = None) -> Field:
        return self.column(name, "varchar", build)

    def text(self, name: str, build: Callable[[Field], Any] | None = None) -> Field:
        return self.column(name, "text", build)

    def boolean(self, name: str, build: Callable[[Field], Any] | None = None) -> Field:
        return self.column(name, "boolean", build)

    def composite(self, columns: Sequence[str]) -> "Table":
        """Add a composite unique constraint over ``columns``."""
        self.composites.append(tuple(columns))
        return self

    # ------------------------------------------------------------------
    # Derived data
    # ------------------------------------------------------------------

    @property
    def dependencies(self) -> set[str]:
        """Tables referenced by this table's foreign keys (self excluded)."""
        return {
            f.foreign_key.table
            for f in self.fields.values()
            if f.foreign_key is not None and f.foreign_key.table != self.name
        }

    def unique_groups(self) -> list[tuple[str, ...]]:
        """Every unique column group: single-column uniques, then composites."""
        groups = [(f.name,) for f in self.fields.values() if f.is_unique]
        return groups + list(self.composites)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def to_sqlalchemy(
        self,
        metadata: sa.MetaData,
        dialect_name: str,
        physical_name: str | None = None,
    ) -> sa.Table:
        """Render this description as an SQLAlchemy ``Table``.

        Constraint names derive from ``self.name`` even when
        ``physical_name`` differs, so a table rebuilt under a temporary
        name keeps its constraint names after the rename.

        Args:
            metadata: MetaData holding every table referenced by foreign keys.
            dialect_name: Target dialect; regex checks only render on
                PostgreSQL.
            physical_name: Table name to create, if not ``self.name``.
        """
        columns = [sa.Column(PRIMARY_KEY, sa.Integer, primary_key=True, autoincrement=True)]
        for f in self.fields.values():
            columns.append(sa.Column(f.name, f.sa_type(), nullable=f.is_nullable))

        table = sa.Table(physical_name or self.name, metadata, *columns)

        for group in self.unique_groups():
            table.append_constraint(
                sa.UniqueConstraint(*group, name=constraint_name(self.name, group, "unique"))
            )

        for f in self.fields.values():
            if f.foreign_key is not None:
                fk = f.foreign_key
                table.append_constraint(
                    sa.ForeignKeyConstraint(
                        [f.name],
                        [f"{fk.table}.{fk.column}"],
                        name=constraint_name(self.name, (f.name,), "foreign"),
                        ondelete=fk.on_delete,
                        onupdate=fk.on_update,
                    )
                )
            for check in f.checks:
                clause = _check_clause(table.c[f.name], check, dialect_name)
                if clause is not None:
                    table.append_constraint(
                        sa.CheckConstraint(clause, name=constraint_name(self.name, (f.name,), check.suffix))
                    )
        return table


def constraint_name(table: str, columns: Sequence[str], suffix: str) -> str:
    """Deterministic constraint name, e.g. ``restaurant_name_unique``."""
    return "_".join([table, *columns, suffix])


def _check_clause(column: sa.Column, check: Check, dialect_name: str) -> Any:
    if check.kind == "range":
        minimum, maximum = check.value
        if minimum is not None and maximum is not None:
            return column.between(minimum, maximum)
        return column >= minimum if minimum is not None else column <= maximum
    if check.kind == "positive":
        return column > 0
    if check.kind == "negative":
        return column < 0
    if check.kind == "in":
        return column.in_(check.value)
    if check.kind == "not_in":
        return column.not_in(check.value)
    if check.kind == "length":
        length = sa.func.length(column)
        return getattr(length, _LENGTH_OPERATORS[check.operator])(check.value)
    if check.kind == "regex":
        # SQLite has no regex operator without a user function
        if dialect_name != "postgresql":
            return None
        return column.regexp_match(check.value)
    raise ValueError(f"Unknown check kind '{check.kind}'")


@dataclass
class TableSet:
    """Ordered collection of tables generated from a registry.

    Bridge tables are generated from both sides of a relation, so adding a
    table whose name already exists returns the existing one.
    """

    tables: dict[str, Table] = field(default_factory=dict)

    def __contains__(self, name: str) -> bool:
        return name in self.tables

    def __iter__(self):
        return iter(self.tables.values())

    def __len__(self) -> int:
        return len(self.tables)

    def create(self, name: str) -> Table:
        """Create a new table; the name must be unused."""
        if name in self.tables:
            raise ValueError(f"Table '{name}' is generated twice")
        table = Table(name)
        self.tables[name] = table
        return table

    def ensure(self, name: str, build: Callable[[Table], Any]) -> Table:
        """Return table ``name``, creating it with ``build`` on first use."""
        if name not in self.tables:
            build(self.create(name))
        return self.tables[name]

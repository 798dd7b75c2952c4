"""Live table introspection through SQLAlchemy's runtime inspector.

This module reads the database the adapter is connected to:
- Tables, columns, data types, nullability, defaults
- Constraints (primary key, foreign key, unique)

Data types are rendered with the connection's own dialect, so they compare
equal to the types the table builder declares.
"""

import logging

import sqlalchemy as sa
from sqlalchemy.engine import Connection, Dialect
from sqlalchemy.types import NullType

from cargo_db.adapters.base import DatabaseClient
from cargo_db.schema.models import (
    ColumnSchema,
    ConstraintSchema,
    DatabaseSchema,
    TableSchema,
)

logger = logging.getLogger(__name__)


def type_name(type_: sa.types.TypeEngine, dialect: Dialect) -> str:
    """Render a column type as DDL text for comparison, e.g. ``VARCHAR(255)``."""
    if isinstance(type_, NullType):
        return "NULL"
    return type_.compile(dialect=dialect).upper()


class SchemaIntrospector:
    """Introspects the tables behind a ``DatabaseClient``.

    Usage:
        introspector = SchemaIntrospector(adapter)
        schema = await introspector.introspect()
        schema.tables["restaurant"].columns["name"].data_type
        # 'VARCHAR(255)'
    """

    # Tables to exclude from introspection (system tables)
    EXCLUDED_TABLES = {
        "schema_migrations",
        "spatial_ref_sys",
        "sqlite_sequence",
    }

    def __init__(self, adapter: DatabaseClient) -> None:
        self._adapter = adapter

    async def introspect(self) -> DatabaseSchema:
        """Introspect every user table."""
        return await self._adapter.run_sync(self._introspect)

    def _introspect(self, connection: Connection) -> DatabaseSchema:
        inspector = sa.inspect(connection)
        schema = DatabaseSchema()
        for name in inspector.get_table_names():
            if name in self.EXCLUDED_TABLES:
                continue
            schema.tables[name] = self._table(inspector, name, connection.dialect)
        logger.debug("Introspected %d tables", len(schema.tables))
        return schema

    def _table(self, inspector: sa.Inspector, name: str, dialect: Dialect) -> TableSchema:
        table = TableSchema(name=name)

        for col in inspector.get_columns(name):
            default = col.get("default")
            table.columns[col["name"]] = ColumnSchema(
                name=col["name"],
                data_type=type_name(col["type"], dialect),
                is_nullable=bool(col["nullable"]),
                default=str(default) if default is not None else None,
            )

        pk = inspector.get_pk_constraint(name)
        if pk.get("constrained_columns"):
            pk_name = pk.get("name") or f"{name}_pkey"
            table.constraints[pk_name] = ConstraintSchema(
                name=pk_name,
                constraint_type="PRIMARY KEY",
                columns=list(pk["constrained_columns"]),
            )

        for unique in inspector.get_unique_constraints(name):
            unique_name = unique.get("name") or "_".join([name, *unique["column_names"], "unique"])
            table.constraints[unique_name] = ConstraintSchema(
                name=unique_name,
                constraint_type="UNIQUE",
                columns=list(unique["column_names"]),
            )

        for fk in inspector.get_foreign_keys(name):
            fk_name = fk.get("name") or "_".join([name, *fk["constrained_columns"], "foreign"])
            on_delete = (fk.get("options") or {}).get("ondelete")
            table.constraints[fk_name] = ConstraintSchema(
                name=fk_name,
                constraint_type="FOREIGN KEY",
                columns=list(fk["constrained_columns"]),
                references_table=fk["referred_table"],
                references_columns=list(fk["referred_columns"]),
                on_delete=on_delete.upper() if on_delete else None,
            )

        return table

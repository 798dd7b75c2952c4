"""Pydantic models for live table introspection.

``SchemaIntrospector`` fills these from the database; the table
constructor diffs them against the tables generated from the registry.
"""

from pydantic import BaseModel, Field


class ColumnSchema(BaseModel):
    """Schema for a database column.

    Example:
        >>> col = ColumnSchema(name="name", data_type="VARCHAR(255)")
        >>> col.is_nullable
        True
    """

    name: str
    data_type: str
    is_nullable: bool = True
    default: str | None = None


class ConstraintSchema(BaseModel):
    """Schema for a database constraint."""

    name: str
    constraint_type: str  # PRIMARY KEY, FOREIGN KEY, UNIQUE
    columns: list[str] = Field(default_factory=list)
    references_table: str | None = None
    references_columns: list[str] | None = None
    on_delete: str | None = None


class TableSchema(BaseModel):
    """Schema for a database table."""

    name: str
    columns: dict[str, ColumnSchema] = Field(default_factory=dict)
    constraints: dict[str, ConstraintSchema] = Field(default_factory=dict)

    def constraints_of(self, constraint_type: str) -> list[ConstraintSchema]:
        """Constraints of one type, e.g. ``"UNIQUE"``."""
        return [c for c in self.constraints.values() if c.constraint_type == constraint_type]


class DatabaseSchema(BaseModel):
    """Complete database schema."""

    tables: dict[str, TableSchema] = Field(default_factory=dict)

"""Schema package: registry, selectors, structure compiler and introspection.

Usage:
    from cargo_db.schema import CompileContext, compile_structure, descend
"""

from cargo_db.schema.introspector import SchemaIntrospector
from cargo_db.schema.models import ColumnSchema, ConstraintSchema, DatabaseSchema, TableSchema
from cargo_db.schema.registry import Registry, Schema, SchemaField
from cargo_db.schema.selector import ALL, DEEP, descend, selector_from_filter, union
from cargo_db.schema.structure import CompileContext, Structure, compile_structure

__all__ = [
    "ALL",
    "DEEP",
    "ColumnSchema",
    "CompileContext",
    "ConstraintSchema",
    "DatabaseSchema",
    "Registry",
    "Schema",
    "SchemaField",
    "SchemaIntrospector",
    "Structure",
    "TableSchema",
    "compile_structure",
    "descend",
    "selector_from_filter",
    "union",
]

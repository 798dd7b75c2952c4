"""Built-in data types.

Usage:
    from cargo_db.types import default_data_types

    for data_type in default_data_types():
        registry.register_data_type(data_type)
"""

from cargo_db.types.base import ColumnArgs, Constraints, DataType, generate_schema_columns
from cargo_db.types.component import ComponentType
from cargo_db.types.dynamic import DynamicComponentType
from cargo_db.types.relation import RelationType
from cargo_db.types.scalar import (
    BooleanType,
    DoubleType,
    FloatType,
    IntegerType,
    LongTextType,
    ShortTextType,
)


def default_data_types() -> list[DataType]:
    """A fresh instance of every built-in data type."""
    return [
        ShortTextType(),
        LongTextType(),
        IntegerType(),
        FloatType(),
        DoubleType(),
        BooleanType(),
        ComponentType(),
        RelationType(),
        DynamicComponentType(),
    ]


__all__ = [
    "BooleanType",
    "ColumnArgs",
    "ComponentType",
    "Constraints",
    "DataType",
    "DoubleType",
    "DynamicComponentType",
    "FloatType",
    "IntegerType",
    "LongTextType",
    "RelationType",
    "ShortTextType",
    "default_data_types",
    "generate_schema_columns",
]

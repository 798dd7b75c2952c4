"""Schema definitions: the JSON form of content types.

A schema file holds one type::

    {
        "name": "restaurant",
        "type": "entity",
        "description": {"path": "Food/Restaurants", "icon": "store"},
        "fields": [
            {"name": "name", "type": "shortText",
             "constraints": {"required": true, "max": 80},
             "description": {"path": "General"}},
            {"name": "tags", "type": "relation",
             "constraints": {"type": "tag", "relation": "manyToMany", "field": "restaurants"},
             "description": {"path": "General"}}
        ]
    }

Usage:
    from cargo_db.schema.loader import build_registry, load_schema_directory

    registry = build_registry(load_schema_directory(Path("schemas")))
"""

import json
import logging
from collections.abc import Iterable
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from cargo_db.errors import (
    SchemaError,
    UnknownDataTypeError,
    format_validation_error,
)
from cargo_db.schema.registry import (
    FieldDescription,
    Registry,
    Schema,
    SchemaDescription,
    SchemaField,
)
from cargo_db.types import default_data_types
from cargo_db.types.base import DataType

logger = logging.getLogger(__name__)


# ============================================================================
# Definition models
# ============================================================================


class SchemaDescriptionDefinition(BaseModel):
    path: str = ""
    description: str | None = None
    icon: str | None = None


class FieldDescriptionDefinition(BaseModel):
    path: str = ""
    description: str | None = None
    order: int | None = None
    visible: bool = True


class FieldDefinition(BaseModel):
    """One field of a schema file.  ``constraints`` is validated by its data type."""

    name: str = Field(min_length=1)
    type: str
    constraints: dict[str, Any] = Field(default_factory=dict)
    description: FieldDescriptionDefinition = Field(default_factory=FieldDescriptionDefinition)


class SchemaDefinition(BaseModel):
    """A schema file."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    kind: Literal["entity", "component"] = Field(alias="type")
    description: SchemaDescriptionDefinition = Field(default_factory=SchemaDescriptionDefinition)
    fields: list[FieldDefinition] = Field(default_factory=list)


def _split_path(path: str) -> tuple[str, ...]:
    return tuple(part for part in path.split("/") if part)


# ============================================================================
# Conversion
# ============================================================================


def schema_from_definition(definition: SchemaDefinition, registry: Registry) -> Schema:
    """Resolve a definition's data types against ``registry``.

    Raises:
        UnknownDataTypeError: If a field names an unregistered data type.
    """
    fields = []
    for field_def in definition.fields:
        data_type = registry.data_type(field_def.type)
        if data_type is None:
            raise UnknownDataTypeError(field_def.type, f"{definition.name}.{field_def.name}")
        fields.append(
            SchemaField(
                name=field_def.name,
                type=data_type,
                constraints=dict(field_def.constraints),
                description=FieldDescription(
                    path=_split_path(field_def.description.path),
                    description=field_def.description.description,
                    order=field_def.description.order,
                    visible=field_def.description.visible,
                ),
            )
        )
    return Schema(
        name=definition.name,
        kind=definition.kind,
        fields=fields,
        description=SchemaDescription(
            path=_split_path(definition.description.path),
            description=definition.description.description,
            icon=definition.description.icon,
        ),
    )


def schema_to_definition(schema: Schema) -> SchemaDefinition:
    """Inverse of ``schema_from_definition``."""
    return SchemaDefinition(
        name=schema.name,
        kind=schema.kind,
        description=SchemaDescriptionDefinition(
            path="/".join(schema.description.path),
            description=schema.description.description,
            icon=schema.description.icon,
        ),
        fields=[
            FieldDefinition(
                name=f.name,
                type=f.type.name,
                constraints=dict(f.constraints),
                description=FieldDescriptionDefinition(
                    path="/".join(f.description.path),
                    description=f.description.description,
                    order=f.description.order,
                    visible=f.description.visible,
                ),
            )
            for f in schema.fields
        ],
    )


# ============================================================================
# Loading
# ============================================================================


def load_schema_file(path: Path) -> SchemaDefinition:
    """Parse one schema file.

    Raises:
        SchemaError: If the file is not valid JSON or not a schema.
    """
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise SchemaError(f"Invalid JSON in schema file {path}: {e}") from e
    try:
        return SchemaDefinition.model_validate(data)
    except ValidationError as e:
        raise SchemaError(
            f"Invalid schema file {path}", format_validation_error(e).splitlines()
        ) from e


def load_schema_directory(path: Path) -> list[SchemaDefinition]:
    """Parse every ``*.json`` file below ``path``, in path order.

    Raises:
        FileNotFoundError: If ``path`` is not a directory.
        SchemaError: If any file is invalid.
    """
    if not path.is_dir():
        raise FileNotFoundError(f"Schema directory not found: {path}")
    definitions = [load_schema_file(file) for file in sorted(path.rglob("*.json"))]
    logger.info("Loaded %d schema definitions from %s", len(definitions), path)
    return definitions


def build_registry(
    definitions: Iterable[SchemaDefinition],
    data_types: Iterable[DataType] | None = None,
) -> Registry:
    """Build and freeze a registry from schema definitions.

    Every field's constraint payload is verified once all schemas are
    registered, so relations may point at types defined later.

    Args:
        definitions: Parsed schema files.
        data_types: Data types to register (default: the built-in set).

    Raises:
        SchemaError: Listing every invalid field, if any.
        UnknownDataTypeError: If a field names an unknown data type.
        DuplicateRegistrationError: If a name is registered twice.
    """
    registry = Registry()
    for data_type in data_types if data_types is not None else default_data_types():
        registry.register_data_type(data_type)
    for definition in definitions:
        registry.register_schema(schema_from_definition(definition, registry))

    errors = []
    for schema in [*registry.components(), *registry.entities()]:
        for f in schema.fields:
            message = f.type.verify_data(dict(f.constraints), registry)
            if message:
                errors.extend(
                    f"{schema.name}.{f.name}: {line}" for line in message.splitlines()
                )
    if errors:
        raise SchemaError("Invalid schema definitions", errors)

    return registry.freeze()

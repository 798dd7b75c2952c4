"""Type registry: data types, component schemas and entity schemas.

A ``Registry`` is built once at startup, frozen, and then passed by
reference into every compile, query and migration call.

Usage:
    registry = Registry()
    registry.register_data_type(ShortTextType())
    registry.register_schema(Schema("tag", "entity", [SchemaField("name", registry.data_type("shortText"))]))
    registry.freeze()
"""

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal

from cargo_db.errors import (
    DuplicateRegistrationError,
    EntityNotFoundError,
    MissingTypeError,
    RegistryFrozenError,
)

if TYPE_CHECKING:
    from cargo_db.types.base import DataType

logger = logging.getLogger(__name__)

SchemaKind = Literal["entity", "component"]


# ============================================================================
# Schema model
# ============================================================================


@dataclass(frozen=True)
class SchemaDescription:
    """Presentation metadata of a schema."""

    path: tuple[str, ...] = ()
    description: str | None = None
    icon: str | None = None


@dataclass(frozen=True)
class FieldDescription:
    """Presentation metadata of a field."""

    path: tuple[str, ...] = ()
    description: str | None = None
    order: int | None = None
    visible: bool = True


@dataclass
class SchemaField:
    """One declared field of a schema."""

    name: str
    type: "DataType"
    constraints: Mapping[str, Any] = field(default_factory=dict)
    description: FieldDescription = field(default_factory=FieldDescription)

    @property
    def required(self) -> bool:
        return bool(self.constraints.get("required", False))

    @property
    def unique(self) -> bool:
        return bool(self.constraints.get("unique", False))


@dataclass
class Schema:
    """An entity (own table) or a component (embedded field group)."""

    name: str
    kind: SchemaKind
    fields: list[SchemaField] = field(default_factory=list)
    description: SchemaDescription = field(default_factory=SchemaDescription)

    @property
    def table_name(self) -> str:
        """Physical table name of an entity."""
        return table_name(self.name)

    def get_field(self, name: str) -> SchemaField | None:
        for f in self.fields:
            if f.name == name:
                return f
        return None


def table_name(schema_name: str) -> str:
    """Physical table name for a schema name (dots become underscores)."""
    return schema_name.replace(".", "_")


# ============================================================================
# Registry
# ============================================================================


class Registry:
    """Named data types, component schemas and entity schemas.

    Lookups return ``None`` for unknown names, except ``require_entity``
    which raises the request-time ``EntityNotFoundError``.
    """

    def __init__(self) -> None:
        self._data_types: dict[str, "DataType"] = {}
        self._components: dict[str, Schema] = {}
        self._entities: dict[str, Schema] = {}
        self._frozen = False

    def __repr__(self) -> str:
        return (
            f"Registry(data_types={len(self._data_types)}, "
            f"components={len(self._components)}, entities={len(self._entities)})"
        )

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> "Registry":
        """Reject any further registration."""
        self._frozen = True
        return self

    def _check_writable(self) -> None:
        if self._frozen:
            raise RegistryFrozenError("Registry is frozen")

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_data_type(self, data_type: "DataType") -> None:
        self._check_writable()
        if data_type.name in self._data_types:
            raise DuplicateRegistrationError("Data type", data_type.name)
        self._data_types[data_type.name] = data_type

    def register_schema(self, schema: Schema) -> None:
        self._check_writable()
        target = self._entities if schema.kind == "entity" else self._components
        if schema.name in target:
            raise DuplicateRegistrationError(schema.kind.capitalize(), schema.name)
        names = [f.name for f in schema.fields]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise DuplicateRegistrationError(
                f"Field of {schema.kind} '{schema.name}'", ", ".join(duplicates)
            )
        target[schema.name] = schema
        logger.debug("Registered %s %s", schema.kind, schema.name)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def data_type(self, name: str) -> "DataType | None":
        return self._data_types.get(name)

    def component(self, name: str) -> Schema | None:
        return self._components.get(name)

    def entity(self, name: str) -> Schema | None:
        return self._entities.get(name)

    def require_entity(self, name: str) -> Schema:
        schema = self._entities.get(name)
        if schema is None:
            raise EntityNotFoundError(name)
        return schema

    def require_schema(self, kind: SchemaKind, name: str) -> Schema:
        """Look up a schema that another schema refers to.

        Raises:
            MissingTypeError: If ``name`` is not registered as ``kind``.
        """
        schema = (self._entities if kind == "entity" else self._components).get(name)
        if schema is None:
            raise MissingTypeError(kind.capitalize(), name)
        return schema

    def entities(self) -> Iterator[Schema]:
        return iter(list(self._entities.values()))

    def components(self) -> Iterator[Schema]:
        return iter(list(self._components.values()))

    def data_types(self) -> Iterator["DataType"]:
        return iter(list(self._data_types.values()))

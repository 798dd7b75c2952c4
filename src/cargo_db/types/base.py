"""Data type strategy interface.

Each data type knows how to lay out its columns, how to compile a
selector into structure, and how to validate its constraint payload.
Payloads are validated with pydantic models; ``required`` and ``unique``
are accepted by every type.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar

from pydantic import BaseModel, ConfigDict, ValidationError

from cargo_db.errors import format_validation_error
from cargo_db.schema.structure import Structure, StructureArgs
from cargo_db.table.builder import Table, TableSet

if TYPE_CHECKING:
    from cargo_db.schema.registry import Registry, SchemaField


class Constraints(BaseModel):
    """Constraint payload accepted by every data type."""

    model_config = ConfigDict(extra="forbid")

    required: bool = False
    unique: bool = False


@dataclass
class ColumnArgs:
    """Arguments handed to ``DataType.generate_columns``."""

    table: Table
    name: str
    constraints: dict[str, Any]
    tables: TableSet
    registry: "Registry"


class DataType(ABC):
    """Strategy for one kind of field, identified by ``name``."""

    name: ClassVar[str]
    payload_model: ClassVar[type[Constraints]] = Constraints
    # Composite types nest further structure
    composite: ClassVar[bool] = False

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name}>"

    def payload(self, constraints: dict[str, Any]) -> Any:
        """Parse the constraint payload (assumes ``verify_data`` passed)."""
        return self.payload_model.model_validate(constraints)

    @abstractmethod
    def generate_columns(self, args: ColumnArgs) -> None:
        """Add this field's columns (and any child tables) to ``args``."""

    @abstractmethod
    def generate_structure(self, args: StructureArgs) -> Structure:
        """Compile this field for ``args.selector``."""

    def nests(self, args: StructureArgs) -> bool:
        """True if compiling ``args`` descends a level (counts toward the depth limit)."""
        return self.composite

    def verify_data(self, constraints: dict[str, Any], registry: "Registry") -> str | None:
        """Validate a constraint payload.

        Returns:
            A human-readable error message, or ``None`` if valid.  Never
            raises.
        """
        try:
            payload = self.payload_model.model_validate(constraints)
        except ValidationError as e:
            return format_validation_error(e)
        return self.verify_payload(payload, registry)

    def verify_payload(self, payload: Any, registry: "Registry") -> str | None:
        """Cross-check a parsed payload against the registry."""
        return None


def generate_schema_columns(
    fields: Sequence["SchemaField"],
    table: Table,
    tables: TableSet,
    registry: "Registry",
    prefix: str = "",
) -> None:
    """Generate the columns of every field into ``table``."""
    for schema_field in fields:
        schema_field.type.generate_columns(
            ColumnArgs(
                table=table,
                name=prefix + schema_field.name,
                constraints=dict(schema_field.constraints),
                tables=tables,
                registry=registry,
            )
        )

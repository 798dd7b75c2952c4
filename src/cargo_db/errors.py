"""Error taxonomy for cargo-db.

Schema errors are raised while loading and registering content types and
are fatal to startup.  Lookup errors are raised at request time and carry
a ``status_code`` so an outer HTTP layer can map them.  Value errors are
raised when a value tree does not have the shape its structure expects.

Usage:
    from cargo_db.errors import EntityNotFoundError, SchemaError

    try:
        registry = build_registry(definitions)
    except SchemaError as e:
        for message in e.errors:
            print(message)
"""

from collections.abc import Sequence

from pydantic import ValidationError


class CargoError(Exception):
    """Base class for all cargo-db errors."""


# ============================================================================
# Schema errors (fatal at load time)
# ============================================================================


class SchemaError(CargoError):
    """Raised when schema definitions cannot be loaded or validated.

    Attributes:
        errors: Every individual problem found, one message each.
    """

    def __init__(self, message: str, errors: Sequence[str] | None = None) -> None:
        self.errors: list[str] = list(errors or [])
        if self.errors:
            message = message + "\n" + "\n".join(f"  - {e}" for e in self.errors)
        super().__init__(message)


class UnknownDataTypeError(SchemaError):
    """Raised when a field names a data type that is not registered."""

    def __init__(self, type_name: str, field: str | None = None) -> None:
        self.type_name = type_name
        where = f" (field '{field}')" if field else ""
        super().__init__(f"Unknown data type '{type_name}'{where}")


class DuplicateRegistrationError(SchemaError):
    """Raised when a data type or schema name is registered twice."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} '{name}' is already registered")


class MissingTypeError(SchemaError):
    """Raised when a referenced entity or component is not registered."""

    def __init__(self, kind: str, name: str) -> None:
        self.kind = kind
        self.name = name
        super().__init__(f"{kind} '{name}' is not registered")


class RegistryFrozenError(CargoError):
    """Raised when registering into a registry after ``freeze()``."""


class MigrationError(CargoError):
    """Raised when table construction fails to apply."""


# ============================================================================
# Request-time errors
# ============================================================================


class EntityNotFoundError(CargoError):
    """Raised when a request names an entity type that does not exist."""

    status_code = 404

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Entity type '{name}' not found")


class InvalidValueError(CargoError):
    """Raised when a value tree does not match the shape of its structure.

    Attributes:
        path: Field path (from the value root) where the mismatch was found.
    """

    status_code = 400

    def __init__(self, path: Sequence[str], message: str) -> None:
        self.path = tuple(path)
        location = "/".join(self.path) or "<root>"
        super().__init__(f"{location}: {message}")


# ============================================================================
# Helpers
# ============================================================================


def format_validation_error(error: ValidationError, prefix: str = "") -> str:
    """Render a pydantic ``ValidationError`` as ``path: message`` lines.

    Args:
        error: The validation error raised by a payload model.
        prefix: Optional path prefix (e.g. the field name) for every line.

    Returns:
        One line per error, joined with newlines.

    Example:
        >>> try:
        ...     TextPayload.model_validate({"min": "x"})
        ... except ValidationError as e:
        ...     format_validation_error(e, "title")
        'title.min: Input should be a valid integer, ...'
    """
    lines = []
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"])
        if prefix:
            location = f"{prefix}.{location}" if location else prefix
        lines.append(f"{location}: {item['msg']}" if location else item["msg"])
    return "\n".join(lines)

"""JSON value trees and path-addressed access.

Insert payloads are plain JSON trees: ``None``, ``bool``, ``int``,
``float``, ``str``, ``list`` and ``dict`` with string keys.  ``dig`` walks
such a tree by field path and distinguishes an absent key (``MISSING``)
from an explicit ``null``.
"""

from collections.abc import Sequence
from typing import Any, TypeAlias

from cargo_db.errors import InvalidValueError

JSONValue: TypeAlias = "None | bool | int | float | str | list[JSONValue] | dict[str, JSONValue]"


class _Missing:
    """Sentinel for a key that is absent from a value tree."""

    _instance: "_Missing | None" = None

    def __new__(cls) -> "_Missing":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def dig(value: JSONValue, path: Sequence[str]) -> Any:
    """Return the value at ``path`` inside ``value``.

    A ``None`` met on the way yields ``None`` (an explicit null parent nulls
    every child); an absent key yields ``MISSING``.

    Raises:
        InvalidValueError: If a non-object is met where an object is needed.

    Example:
        >>> dig({"address": {"city": "Oslo"}}, ["address", "city"])
        'Oslo'
        >>> dig({"address": None}, ["address", "city"]) is None
        True
        >>> dig({}, ["address"]) is MISSING
        True
    """
    current: Any = value
    for depth, key in enumerate(path):
        if current is None:
            return None
        if not isinstance(current, dict):
            raise InvalidValueError(
                path[:depth], f"expected an object, got {type(current).__name__}"
            )
        if key not in current:
            return MISSING
        current = current[key]
    return current


def is_reference(value: Any) -> bool:
    """True if ``value`` is a bare row id (an int that is not a bool)."""
    return isinstance(value, int) and not isinstance(value, bool)


def is_scalar(value: Any) -> bool:
    """True for JSON leaves (null, bool, number, string)."""
    return value is None or isinstance(value, (bool, int, float, str))

"""Selector engine.

A selector is a client-supplied projection:

- ``True``: include this field (a leaf)
- ``"name,price"``: include the listed fields
- ``"*"``: include every field one level deep
- ``"**"``: include everything, recursively
- ``[s1, s2, ...]``: the union of several selectors
- ``{"field": sub_selector, ...}``: include the given fields with their own
  sub-selectors

``descend`` moves a selector one field down; ``None`` means "exclude".

Usage:
    from cargo_db.schema.selector import descend

    descend({"reviews": "*"}, "reviews")   # "*"
    descend("name,price", "price")         # True
    descend(["name", {"reviews": "*"}], "reviews")  # "*"
"""

import json
from collections.abc import Iterable, Mapping
from typing import Any, TypeAlias

Selector: TypeAlias = "bool | str | list[Selector] | dict[str, Selector]"

ALL = "*"
DEEP = "**"

_COMBINATORS = ("!and", "!or", "!not")


def descend(selector: Any, field: str) -> Any:
    """Return the sub-selector for ``field``, or ``None`` to exclude it.

    Example:
        >>> descend("**", "anything")
        '**'
        >>> descend("*", "name")
        True
        >>> descend({"name": False}, "name") is None
        True
    """
    if selector is None or isinstance(selector, bool):
        # True is a leaf: it selects the field itself, never its children
        return None
    if isinstance(selector, str):
        if selector == DEEP:
            return DEEP
        if selector == ALL:
            return True
        names = {part.strip() for part in selector.split(",")}
        return True if field in names else None
    if isinstance(selector, list):
        return union(descend(item, field) for item in selector)
    if isinstance(selector, Mapping):
        value = selector.get(field)
        if value is None or value is False:
            return None
        return value
    return None


def _canonical_key(selector: Any) -> str:
    return json.dumps(selector, sort_keys=True)


def union(selectors: Iterable[Any]) -> Any:
    """Combine descended selectors.

    ``None`` entries are ignored unless every entry is ``None``.  ``"**"``
    absorbs everything; concrete sub-selectors absorb plain ``True``.
    Several concrete sub-selectors are combined into one canonically
    ordered list, so the result does not depend on input order or grouping.

    Example:
        >>> union([None, True, "name"])
        'name'
        >>> union(["b", "a"]) == union(["a", "b"]) == ["a", "b"]
        True
    """
    concrete: dict[str, Any] = {}
    has_true = False
    for selector in selectors:
        if selector is None or selector is False:
            continue
        if selector == DEEP:
            return DEEP
        if selector is True:
            has_true = True
            continue
        members = selector if isinstance(selector, list) else [selector]
        for member in members:
            if member == DEEP:
                return DEEP
            if member is True:
                has_true = True
            elif member is not None and member is not False:
                concrete[_canonical_key(member)] = member
    if concrete:
        ordered = [concrete[key] for key in sorted(concrete)]
        return ordered[0] if len(ordered) == 1 else ordered
    return True if has_true else None


def is_structured(selector: Any) -> bool:
    """True if ``selector`` names fields below the current one.

    ``True`` and ``"**"`` are not structured: a relation reached with them
    is returned as ids only.
    """
    return selector is not None and selector is not True and selector != DEEP


def selector_from_filter(filter: Any, sort: Any = None) -> Any:
    """Build the narrowest selector that compiles every filtered or sorted path.

    Example:
        >>> selector_from_filter({"!or": [{"name": {"!eq": "A"}}, {"author.name": {"!eq": "B"}}]})
        {'name': True, 'author': {'name': True}}
    """
    selector: dict[str, Any] = {}
    for path in filter_paths(filter):
        _insert_path(selector, path)
    items = sort if isinstance(sort, (list, tuple)) else [sort] if sort is not None else []
    for item in items:
        path = item.get("field") if isinstance(item, Mapping) else item
        if isinstance(path, str) and path:
            _insert_path(selector, tuple(path.split(".")))
    return selector


def filter_paths(filter: Any, prefix: tuple[str, ...] = ()) -> list[tuple[str, ...]]:
    """Every field path referenced by ``filter``."""
    paths: list[tuple[str, ...]] = []
    if not isinstance(filter, Mapping):
        return paths
    for key, value in filter.items():
        if key in _COMBINATORS:
            for sub in value if isinstance(value, list) else [value]:
                paths.extend(filter_paths(sub, prefix))
            continue
        if key.startswith("!"):
            continue
        path = prefix + tuple(key.split("."))
        if isinstance(value, Mapping) and any(not k.startswith("!") for k in value):
            paths.extend(filter_paths(value, path))
        else:
            paths.append(path)
    return paths


def _insert_path(selector: dict[str, Any], path: tuple[str, ...]) -> None:
    node = selector
    for name in path[:-1]:
        child = node.get(name)
        if not isinstance(child, dict):
            child = {}
            node[name] = child
        node = child
    if path[-1] not in node:
        node[path[-1]] = True

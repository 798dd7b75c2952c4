"""Filter and sort compilation.

Filter grammar::

    {"name": {"!eq": "Test"}}
    {"author.name": {"!like": "A%"}, "rating": {"!between": [3, 5]}}
    {"!or": [{"name": {"!eq": "A"}}, {"name": {"!eq": "B"}}]}
    {"!not": [{"rating": {"!lt": 3}}]}
    {"author": {"name": {"!eq": "Ann"}}}       # nested form of "author.name"

Sort grammar::

    ["name", {"field": "rating", "desc": true}]

Unknown field paths and unknown operators do not raise: the clause is
dropped and recorded in a ``QueryReport`` so callers can surface it.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement

logger = logging.getLogger(__name__)

COMBINATORS = ("!and", "!or", "!not")


@dataclass
class QueryReport:
    """Clauses dropped while compiling a filter or sort."""

    ignored_filters: list[str] = field(default_factory=list)
    ignored_sorts: list[str] = field(default_factory=list)

    @property
    def is_clean(self) -> bool:
        return not self.ignored_filters and not self.ignored_sorts


def _is_list(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def _eq(column: ColumnElement, value: Any) -> ColumnElement | None:
    return column.is_(None) if value is None else column == value


def _neq(column: ColumnElement, value: Any) -> ColumnElement | None:
    return column.is_not(None) if value is None else column != value


def _null(column: ColumnElement, value: Any) -> ColumnElement | None:
    return column.is_(None) if value else column.is_not(None)


def _not_null(column: ColumnElement, value: Any) -> ColumnElement | None:
    return column.is_not(None) if value else column.is_(None)


def _in(column: ColumnElement, value: Any) -> ColumnElement | None:
    return column.in_(list(value)) if _is_list(value) else None


def _between(column: ColumnElement, value: Any) -> ColumnElement | None:
    if not _is_list(value) or len(value) != 2:
        return None
    return column.between(value[0], value[1])


def _like(column: ColumnElement, value: Any) -> ColumnElement | None:
    return column.like(value) if isinstance(value, str) else None


COMPARATORS: dict[str, Callable[[ColumnElement, Any], ColumnElement | None]] = {
    "!eq": _eq,
    "!neq": _neq,
    "!null": _null,
    "!notNull": _not_null,
    "!lt": lambda c, v: c < v,
    "!lte": lambda c, v: c <= v,
    "!gt": lambda c, v: c > v,
    "!ge": lambda c, v: c >= v,
    "!like": _like,
    "!in": _in,
    "!between": _between,
}


def _is_comparison(value: Any) -> bool:
    return isinstance(value, Mapping) and bool(value) and all(
        isinstance(k, str) and k.startswith("!") for k in value
    )


def build_filter(
    filter: Any,
    columns: Mapping[str, ColumnElement],
    report: QueryReport | None = None,
    prefix: tuple[str, ...] = (),
) -> ColumnElement | None:
    """Compile ``filter`` against resolvable ``columns``.

    Args:
        filter: Filter tree (see module docstring).
        columns: Column expression per ``/``-joined field path.
        report: Collects dropped clauses.
        prefix: Path of the enclosing nested filter.

    Returns:
        A boolean SQL expression, or ``None`` if nothing could be applied.
    """
    report = report if report is not None else QueryReport()
    if not isinstance(filter, Mapping):
        if filter is not None:
            report.ignored_filters.append(repr(filter))
        return None

    clauses: list[ColumnElement] = []
    for key, value in filter.items():
        if key in COMBINATORS:
            subs = [
                c for c in (
                    build_filter(sub, columns, report, prefix)
                    for sub in (value if _is_list(value) else [value])
                )
                if c is not None
            ]
            if not subs:
                continue
            if key == "!and":
                clauses.append(sa.and_(*subs))
            elif key == "!or":
                clauses.append(sa.or_(*subs))
            else:
                clauses.append(sa.not_(sa.and_(*subs)))
            continue

        path = prefix + tuple(key.split("."))
        label = "/".join(path)
        if isinstance(value, Mapping) and not _is_comparison(value):
            nested = build_filter(value, columns, report, path)
            if nested is not None:
                clauses.append(nested)
            continue

        column = columns.get(label)
        if column is None or not _is_comparison(value):
            logger.debug("Ignoring filter on unknown field %s", label)
            report.ignored_filters.append(label)
            continue
        for operator, operand in value.items():
            comparator = COMPARATORS.get(operator)
            clause = comparator(column, operand) if comparator is not None else None
            if clause is None:
                logger.debug("Ignoring filter operator %s on %s", operator, label)
                report.ignored_filters.append(f"{label} {operator}")
                continue
            clauses.append(clause)

    if not clauses:
        return None
    return clauses[0] if len(clauses) == 1 else sa.and_(*clauses)


def build_sort(
    sort: Any,
    columns: Mapping[str, ColumnElement],
    report: QueryReport | None = None,
) -> list[ColumnElement]:
    """Compile ``sort`` into ORDER BY clauses; nulls always sort last."""
    report = report if report is not None else QueryReport()
    if sort is None:
        return []
    items = sort if _is_list(sort) else [sort]
    order_by = []
    for item in items:
        if isinstance(item, Mapping):
            path, desc = item.get("field"), bool(item.get("desc", False))
        else:
            path, desc = item, False
        column = columns.get(path.replace(".", "/")) if isinstance(path, str) else None
        if column is None:
            logger.debug("Ignoring sort on unknown field %r", path)
            report.ignored_sorts.append(str(path))
            continue
        order_by.append((column.desc() if desc else column.asc()).nulls_last())
    return order_by

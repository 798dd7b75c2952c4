"""Query executor: runs a ``Structure`` as SQL and rebuilds nested values.

One query per level: the top-level query selects the id, every scalar
column reachable through inline objects and joins (labelled with
``/``-joined field paths), applies filter, sort and limit, and unflattens
each row.  Arrays, fetched objects and custom fields are then resolved
with their own queries, concurrently per row and across rows.

Usage:
    from cargo_db.query.executor import fetch_by_structure

    rows = await fetch_by_structure(
        adapter, structure, "restaurant",
        filter={"name": {"!eq": "Test"}},
        sort=[{"field": "name"}],
        limit=10,
    )
"""

import logging
from typing import Any

import sqlalchemy as sa
from sqlalchemy.sql.elements import ColumnElement

from cargo_db.adapters.base import DatabaseClient
from cargo_db.query.filters import QueryReport, build_filter, build_sort
from cargo_db.query.tasks import gather_all
from cargo_db.schema.structure import (
    ArrayField,
    CustomField,
    FetchSpec,
    Join,
    ObjectField,
    ScalarField,
    Structure,
    StructureField,
    split_ref,
    walk,
)

logger = logging.getLogger(__name__)

_SCALAR_TYPES: dict[str, sa.types.TypeEngine] = {
    "boolean": sa.Boolean(),
}


class _Query:
    """SELECT builder over aliased tables with ``"alias.column"`` references."""

    def __init__(self, db: DatabaseClient, source: FetchSpec, joins: dict[str, Join]) -> None:
        self._quote = db.dialect.identifier_preparer.quote
        from_clause: Any = sa.table(source.table).alias(source.alias)
        for join in joins.values():
            target = sa.table(join.table).alias(join.alias)
            from_clause = from_clause.outerjoin(
                target, self.column(join.left) == self.column(join.right)
            )
        self.from_clause = from_clause
        self.source = source

    def column(self, ref: str, kind: str | None = None) -> ColumnElement:
        alias, column = split_ref(ref)
        return sa.literal_column(
            f"{self._quote(alias)}.{self._quote(column)}", _SCALAR_TYPES.get(kind)
        )


def _scalar_columns(
    obj: ObjectField,
) -> tuple[dict[str, ScalarField], list[tuple[str, ...]], list[tuple[tuple[str, ...], StructureField]]]:
    """Split an object into scalar labels, optional objects and sub-fetches."""
    scalars: dict[str, ScalarField] = {}
    optional: list[tuple[str, ...]] = []
    nested: list[tuple[tuple[str, ...], StructureField]] = []
    for path, sub in walk(obj):
        if isinstance(sub, ScalarField):
            scalars["/".join(path)] = sub
        elif isinstance(sub, ObjectField) and sub.fetch is None:
            if sub.optional:
                optional.append(path)
        else:
            nested.append((path, sub))
    return scalars, optional, nested


def _assign(target: dict, path: tuple[str, ...], value: Any) -> None:
    for name in path[:-1]:
        target = target.setdefault(name, {})
    target[path[-1]] = value


def _get(target: dict, path: tuple[str, ...]) -> Any:
    for name in path:
        if not isinstance(target, dict):
            return None
        target = target.get(name)
    return target


def _unflatten(row: dict, labels: list[str], optional: list[tuple[str, ...]]) -> dict:
    value: dict = {"id": row["id"]}
    for label in labels:
        _assign(value, tuple(label.split("/")), row[label])
    # Deepest first so an outer null replaces already-nulled children
    for path in sorted(optional, key=len, reverse=True):
        if _get(value, path + ("id",)) is None:
            _assign(value, path, None)
    return value


async def _resolve_nested(
    db: DatabaseClient,
    value: dict,
    nested: list[tuple[tuple[str, ...], StructureField]],
) -> dict:
    results = await gather_all(*(_fetch_field(db, sub, value["id"]) for _, sub in nested))
    for (path, _), result in zip(nested, results):
        _assign(value, path, result)
    return value


async def _fetch_field(db: DatabaseClient, field: StructureField, parent_id: Any) -> Any:
    if isinstance(field, CustomField):
        return await field.handler.fetch(db, parent_id)
    if isinstance(field, ArrayField):
        return await fetch_related(db, field.element, field.fetch, parent_id)
    if isinstance(field, ObjectField):
        rows = await fetch_related(db, field, field.fetch, parent_id)
        if not rows or rows[0]["id"] is None:
            return None
        return rows[0]
    raise TypeError(f"Cannot fetch {type(field).__name__} on its own")


async def _run(
    db: DatabaseClient,
    element: ScalarField | ObjectField,
    source: FetchSpec,
    joins: dict[str, Join],
    *,
    parent_id: Any = None,
    filter: Any = None,
    sort: Any = None,
    limit: int | None = None,
    filter_structure: Structure | None = None,
    report: QueryReport | None = None,
) -> list:
    if filter_structure is not None:
        joins = {**joins, **filter_structure.joins}
    query = _Query(db, source, joins)
    id_column = query.column(source.id_column)

    if isinstance(element, ScalarField):
        columns = [id_column.label("id"), query.column(element.column, element.kind).label("value")]
        labels, optional, nested = [], [], []
    else:
        scalars, optional, nested = _scalar_columns(element)
        # A fetched relation object lists its own id; the row id covers it
        scalars.pop("id", None)
        labels = list(scalars)
        columns = [id_column.label("id")] + [
            query.column(s.column, s.kind).label(label) for label, s in scalars.items()
        ]

    statement = sa.select(*columns).select_from(query.from_clause)

    conditions = []
    if source.key is not None:
        conditions.append(query.column(f"{source.alias}.{source.key}") == parent_id)
    for column, expected in source.match.items():
        conditions.append(query.column(f"{source.alias}.{column}") == expected)

    if filter is not None or sort is not None:
        resolvable = {"id": id_column}
        if isinstance(element, ObjectField):
            resolvable.update({label: query.column(s.column, s.kind) for label, s in scalars.items()})
        if filter_structure is not None and isinstance(filter_structure.data, ObjectField):
            for label, s in _scalar_columns(filter_structure.data)[0].items():
                resolvable.setdefault(label, query.column(s.column, s.kind))
        report = report if report is not None else QueryReport()
        predicate = build_filter(filter, resolvable, report)
        if predicate is not None:
            conditions.append(predicate)
        statement = statement.order_by(*build_sort(sort, resolvable, report))

    if conditions:
        statement = statement.where(*conditions)
    if source.order_by is not None:
        statement = statement.order_by(query.column(source.order_by))
    statement = statement.order_by(id_column)
    if limit is not None:
        statement = statement.limit(limit)

    rows = await db.fetch_all(statement)

    if isinstance(element, ScalarField):
        return [row["value"] for row in rows]

    values = [_unflatten(row, labels, optional) for row in rows]
    if nested:
        values = list(
            await gather_all(*(_resolve_nested(db, value, nested) for value in values))
        )
    return values


async def fetch_related(
    db: DatabaseClient,
    element: ScalarField | ObjectField,
    fetch: FetchSpec,
    parent_id: Any,
) -> list:
    """Fetch the rows linked to ``parent_id`` by ``fetch``.

    Scalar elements return a flat list of values (e.g. related ids);
    object elements return nested dicts with an ``id`` key.
    """
    return await _run(db, element, fetch, fetch.joins, parent_id=parent_id)


async def fetch_by_structure(
    db: DatabaseClient,
    structure: Structure,
    table: str,
    *,
    alias: str | None = None,
    filter: Any = None,
    sort: Any = None,
    limit: int | None = None,
    filter_structure: Structure | None = None,
    report: QueryReport | None = None,
) -> list[dict]:
    """Run a top-level query for ``structure`` against ``table``.

    Args:
        db: Database client.
        structure: Compiled structure of the entity.
        table: Physical table name.
        alias: Alias the structure was compiled with (default: ``table``).
        filter: Filter tree; unresolvable clauses are skipped.
        sort: Sort list; unresolvable fields are skipped.
        limit: Maximum number of rows.
        filter_structure: Structure compiled (with the same context) from
            the filtered and sorted paths, for paths outside the projection.
        report: Collects skipped filter and sort clauses.

    Returns:
        One nested dict per matching row.
    """
    assert isinstance(structure.data, ObjectField), "top-level structure must be an object"
    source = FetchSpec(table=table, alias=alias or table)
    return await _run(
        db,
        structure.data,
        source,
        structure.joins,
        filter=filter,
        sort=sort,
        limit=limit,
        filter_structure=filter_structure,
        report=report,
    )


async def fetch_one_by_structure(
    db: DatabaseClient,
    structure: Structure,
    table: str,
    **kwargs: Any,
) -> dict | None:
    """Like ``fetch_by_structure`` but returns the first row or ``None``."""
    rows = await fetch_by_structure(db, structure, table, limit=1, **kwargs)
    return rows[0] if rows else None

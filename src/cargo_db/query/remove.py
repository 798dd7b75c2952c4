"""Delete rows matching a filter.

The filter is compiled against the same column paths a query would
resolve, so a delete can filter through joined relations::

    DELETE FROM restaurant WHERE _id IN (
        SELECT restaurant._id FROM restaurant
        LEFT JOIN author AS _j1 ON restaurant.author = _j1._id
        WHERE _j1.name = 'Ann'
    )

Child rows (component lists, bridges, dynamic entries) go with their
owner through ``ON DELETE CASCADE``.
"""

import logging
from typing import Any

import sqlalchemy as sa

from cargo_db.adapters.base import DatabaseClient
from cargo_db.errors import InvalidValueError
from cargo_db.query.executor import _Query, _scalar_columns
from cargo_db.query.filters import QueryReport, build_filter
from cargo_db.schema.structure import FetchSpec, ObjectField, Structure
from cargo_db.table.builder import PRIMARY_KEY

logger = logging.getLogger(__name__)


async def remove_with_filter(
    db: DatabaseClient,
    structure: Structure,
    table: str,
    filter: Any,
    *,
    alias: str | None = None,
    report: QueryReport | None = None,
) -> int:
    """Delete every row of ``table`` matching ``filter``.

    Args:
        db: Database client.
        structure: Structure compiled from the filtered paths; its joins
            make related columns available to the filter.
        table: Physical table name.
        filter: Filter tree (see ``cargo_db.query.filters``).
        alias: Alias the structure was compiled with (default: ``table``).
        report: Collects skipped filter clauses.

    Returns:
        Number of deleted rows.

    Raises:
        InvalidValueError: If no clause of ``filter`` can be applied.  An
            empty filter never means "delete everything".
    """
    assert isinstance(structure.data, ObjectField), "top-level structure must be an object"
    source = FetchSpec(table=table, alias=alias or table)
    query = _Query(db, source, structure.joins)
    id_column = query.column(source.id_column)

    resolvable = {"id": id_column}
    for label, scalar in _scalar_columns(structure.data)[0].items():
        resolvable.setdefault(label, query.column(scalar.column, scalar.kind))

    report = report if report is not None else QueryReport()
    predicate = build_filter(filter, resolvable, report)
    if predicate is None:
        raise InvalidValueError((), "delete filter matches no known field")

    matching = sa.select(id_column).select_from(query.from_clause).where(predicate)
    target = sa.table(table, sa.column(PRIMARY_KEY))
    statement = sa.delete(target).where(
        target.c[PRIMARY_KEY].in_(matching.correlate(None))
    )
    count = await db.execute(statement)
    logger.info("Deleted %d %s row(s)", count, table)
    return count

"""Content store: one object tying the registry to a database.

Usage:
    store = ContentStore(adapter, registry)
    await store.construct_tables()

    restaurant_id = await store.insert("restaurant", {"name": "Test", "reviews": [{"rating": 5}]})
    rows = await store.get("restaurant", ["name", {"reviews": "*"}], filter={"name": {"!eq": "Test"}})
    await store.delete("restaurant", {"id": {"!eq": restaurant_id}})
    await store.close()
"""

import logging
from typing import Any

from cargo_db.adapters.base import DatabaseClient
from cargo_db.errors import MigrationError
from cargo_db.query.executor import fetch_by_structure
from cargo_db.query.filters import QueryReport
from cargo_db.query.insert import insert
from cargo_db.query.remove import remove_with_filter
from cargo_db.schema.registry import Registry
from cargo_db.schema.selector import ALL, DEEP, selector_from_filter
from cargo_db.schema.structure import DEFAULT_MAX_DEPTH, CompileContext, compile_structure
from cargo_db.table.constructor import MigrationResult, construct_tables

logger = logging.getLogger(__name__)


class ContentStore:
    """Read, write and migrate the entities of a registry.

    Args:
        adapter: Database client.
        registry: Frozen registry of content types.
        max_depth: Nesting limit of compiled structures.
    """

    def __init__(
        self,
        adapter: DatabaseClient,
        registry: Registry,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ) -> None:
        self.adapter = adapter
        self.registry = registry
        self.max_depth = max_depth

    def _context(self) -> CompileContext:
        return CompileContext(self.registry, max_depth=self.max_depth)

    async def construct_tables(self, dry_run: bool = False, drop_unused: bool = True) -> MigrationResult:
        """Create or alter the tables of every entity.

        Raises:
            MigrationError: If the migration fails to apply.
        """
        result = await construct_tables(
            self.adapter, self.registry, dry_run=dry_run, drop_unused=drop_unused
        )
        if result.error:
            raise MigrationError(result.error)
        return result

    async def get(
        self,
        type_name: str,
        selector: Any = ALL,
        filter: Any = None,
        sort: Any = None,
        limit: int | None = None,
        report: QueryReport | None = None,
    ) -> list[dict]:
        """Query entities of ``type_name``.

        Filter and sort may reference fields outside ``selector``.

        Raises:
            EntityNotFoundError: If ``type_name`` is not a registered entity.
        """
        schema = self.registry.require_entity(type_name)
        ctx = self._context()
        structure = compile_structure(schema, selector, ctx)
        filter_structure = None
        if filter is not None or sort is not None:
            filter_structure = compile_structure(schema, selector_from_filter(filter, sort), ctx)
        return await fetch_by_structure(
            self.adapter,
            structure,
            schema.table_name,
            filter=filter,
            sort=sort,
            limit=limit,
            filter_structure=filter_structure,
            report=report,
        )

    async def insert(self, type_name: str, value: dict, selector: Any = DEEP) -> int:
        """Insert (or upsert, when ``value`` has an ``id``) one entity; returns its id.

        Under the default ``"**"`` relations are written as ids.  A selector
        that follows a relation (e.g. ``{"author": "*"}``) lets the value
        carry the related row as an object, which is written first.
        """
        schema = self.registry.require_entity(type_name)
        structure = compile_structure(schema, selector, self._context())
        return await insert(self.adapter, structure, schema.table_name, value)

    async def delete(self, type_name: str, filter: Any, report: QueryReport | None = None) -> int:
        """Delete entities matching ``filter``; returns the number deleted."""
        schema = self.registry.require_entity(type_name)
        structure = compile_structure(schema, selector_from_filter(filter), self._context())
        return await remove_with_filter(
            self.adapter, structure, schema.table_name, filter, report=report
        )

    async def close(self) -> None:
        await self.adapter.close()

"""Structure compiler.

A ``Structure`` is the compiled plan for one (schema, selector) pair: a
tree of fields plus the LEFT JOINs the top-level query needs.  The same
tree drives the query executor (read path) and the insert planner
(write path).

Field variants:

- ``ScalarField``: one column, addressed as ``"alias.column"``
- ``ObjectField``: nested fields.  Without ``fetch`` its columns come from
  the current query (inline components, joined relations); with ``fetch``
  it is loaded by a separate query.  ``upload`` marks a relation whose id
  is stored on the owning row.
- ``ArrayField``: rows of another table linked to the parent id
  (component lists, bridges, inverse foreign keys)
- ``CustomField``: a strategy object with its own ``fetch`` / ``upload``
  (dynamic components)

Column references use the alias of the table they belong to, so the
planner can tell columns of the current row from columns of joined rows.
"""

import itertools
import logging
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Protocol, Union

from cargo_db.schema.selector import descend

if TYPE_CHECKING:
    from cargo_db.adapters.base import DatabaseClient
    from cargo_db.schema.registry import Registry, Schema, SchemaField

logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 8


# ============================================================================
# Structure model
# ============================================================================


def split_ref(ref: str) -> tuple[str, str]:
    """Split ``"alias.column"`` into its parts."""
    alias, _, column = ref.partition(".")
    return alias, column


@dataclass(frozen=True)
class Join:
    """``LEFT JOIN table AS alias ON left = right``."""

    table: str
    alias: str
    left: str
    right: str


@dataclass
class FetchSpec:
    """Declarative sub-query: rows of ``table`` where ``alias.key`` is the parent id.

    ``key=None`` describes a top-level query with no parent.  ``id_ref``
    is the column projected as each row's ``id``; ``match`` adds equality
    conditions on ``alias`` columns.
    """

    table: str
    alias: str
    key: str | None = None
    joins: dict[str, Join] = field(default_factory=dict)
    id_ref: str | None = None
    order_by: str | None = None
    match: dict[str, Any] = field(default_factory=dict)

    @property
    def id_column(self) -> str:
        return self.id_ref or f"{self.alias}._id"


@dataclass(frozen=True)
class OutwardsUpload:
    """The owning row stores the related row's id in ``column``."""

    column: str
    table: str


@dataclass(frozen=True)
class InwardsUpload:
    """Child rows of ``table`` reference the parent id through ``parent_column``.

    ``order_column`` receives the element index; ``element_column`` receives
    the id of a referenced row (bridges).  ``references`` marks elements that
    are existing rows of ``table`` itself (inverse foreign keys).
    """

    table: str
    parent_column: str
    order_column: str | None = None
    element_column: str | None = None
    element_table: str | None = None
    conflict: tuple[str, ...] = ()
    references: bool = False

    def link_data(self, parent_id: int, index: int, element: Any) -> dict[str, Any]:
        """Columns linking element ``index`` to ``parent_id``."""
        data: dict[str, Any] = {self.parent_column: parent_id}
        if self.order_column is not None:
            data[self.order_column] = index
        if self.element_column is not None and isinstance(element, int) and not isinstance(element, bool):
            data[self.element_column] = element
        return data


class CustomHandler(Protocol):
    """Strategy behind a ``CustomField``."""

    async def fetch(self, db: "DatabaseClient", parent_id: int) -> Any: ...

    async def upload(self, db: "DatabaseClient", parent_id: int, value: Any) -> None: ...


@dataclass
class ScalarField:
    kind: str  # string | number | boolean
    column: str


@dataclass
class ObjectField:
    fields: dict[str, "StructureField"] = field(default_factory=dict)
    alias: str | None = None
    table: str | None = None
    fetch: FetchSpec | None = None
    upload: OutwardsUpload | None = None
    optional: bool = False  # null when its "id" is null

    @property
    def is_inline(self) -> bool:
        """True if every column of this object comes from the current query."""
        if self.fetch is not None:
            return False
        for sub in self.fields.values():
            if isinstance(sub, (ArrayField, CustomField)):
                return False
            if isinstance(sub, ObjectField) and not sub.is_inline:
                return False
        return True


@dataclass
class ArrayField:
    element: Union[ScalarField, ObjectField]
    fetch: FetchSpec
    upload: InwardsUpload


@dataclass
class CustomField:
    handler: CustomHandler


StructureField = Union[ScalarField, ObjectField, ArrayField, CustomField]


@dataclass
class Structure:
    """Compiled plan: a field tree and the joins of the top-level query."""

    data: StructureField
    joins: dict[str, Join] = field(default_factory=dict)


def walk(obj: ObjectField, path: tuple[str, ...] = ()) -> Iterator[tuple[tuple[str, ...], StructureField]]:
    """Yield ``(path, field)`` for every field resolved by the current query.

    Scalars and fields needing their own query are yielded; inline objects
    are descended into (and yielded too, after their children).
    """
    for name, sub in obj.fields.items():
        sub_path = path + (name,)
        if isinstance(sub, ObjectField) and sub.fetch is None:
            yield from walk(sub, sub_path)
        yield sub_path, sub


# ============================================================================
# Compilation
# ============================================================================


@dataclass
class CompileContext:
    """Per-compile state: registry, alias generator and recursion guards.

    ``visited`` holds the entities on the current descent path; a relation
    back to one of them is returned as ids only.  Fields that would nest
    deeper than ``max_depth`` are omitted; id-only relations are kept.
    """

    registry: "Registry"
    max_depth: int = DEFAULT_MAX_DEPTH
    depth: int = 0
    visited: frozenset[str] = frozenset()
    _counter: Iterator[int] = field(default_factory=lambda: itertools.count(1), repr=False)

    def alias(self) -> str:
        """A join alias unique within this compile."""
        return f"_j{next(self._counter)}"

    def deeper(self, entity: str | None = None) -> "CompileContext":
        visited = self.visited | {entity} if entity else self.visited
        return replace(self, depth=self.depth + 1, visited=visited)


@dataclass
class StructureArgs:
    """Arguments handed to ``DataType.generate_structure``."""

    alias: str
    table: str
    name: str
    constraints: dict[str, Any]
    selector: Any
    ctx: CompileContext


def compile_fields(
    fields: Sequence["SchemaField"],
    selector: Any,
    ctx: CompileContext,
    *,
    alias: str,
    table: str,
    prefix: str = "",
) -> Structure:
    """Compile schema fields read from ``alias`` (physical ``table``).

    ``prefix`` is prepended to column names of inline components.
    """
    fields_out: dict[str, StructureField] = {}
    joins: dict[str, Join] = {}
    for schema_field in fields:
        sub_selector = descend(selector, schema_field.name)
        if sub_selector is None:
            continue
        data_type = schema_field.type
        args = StructureArgs(
            alias=alias,
            table=table,
            name=prefix + schema_field.name,
            constraints=dict(schema_field.constraints),
            selector=sub_selector,
            ctx=ctx,
        )
        if ctx.depth >= ctx.max_depth and data_type.nests(args):
            logger.warning(
                "Omitting %s.%s%s: maximum depth %d reached",
                table, prefix, schema_field.name, ctx.max_depth,
            )
            continue
        result = data_type.generate_structure(args)
        fields_out[schema_field.name] = result.data
        joins.update(result.joins)
    return Structure(ObjectField(fields_out, alias=alias, table=table), joins)


def compile_structure(
    schema: "Schema",
    selector: Any,
    ctx: CompileContext,
    *,
    alias: str | None = None,
) -> Structure:
    """Compile an entity schema and a selector into a ``Structure``.

    Args:
        schema: Entity schema to compile.
        selector: Client projection (see ``cargo_db.schema.selector``).
        ctx: Compile context; share one context between structures that
            are used in the same query so their aliases do not collide.
        alias: Alias of the entity table (default: the table name).

    Example:
        ctx = CompileContext(registry)
        structure = compile_structure(registry.entity("restaurant"), ["name", {"reviews": "*"}], ctx)
        structure.data.fields["reviews"].fetch.table
        # 'restaurant__reviews'
    """
    table = schema.table_name
    root_ctx = replace(ctx, visited=ctx.visited | {schema.name})
    return compile_fields(schema.fields, selector, root_ctx, alias=alias or table, table=table)

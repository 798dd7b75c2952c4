"""Component data type: an embedded field group.

A single component is inlined into the owning table with prefixed column
names (``address_city``).  A component list gets a child table
``{table}__{field}`` whose rows reference the owner through ``_entityId``
and keep their position in ``_order``.
"""

from typing import TYPE_CHECKING

from cargo_db.schema.selector import ALL
from cargo_db.schema.structure import (
    ArrayField,
    FetchSpec,
    InwardsUpload,
    ObjectField,
    Structure,
    StructureArgs,
    compile_fields,
)
from cargo_db.table.builder import Table
from cargo_db.types.base import ColumnArgs, Constraints, DataType, generate_schema_columns

if TYPE_CHECKING:
    from cargo_db.schema.registry import Registry

ENTITY_ID = "_entityId"
ORDER = "_order"


class ComponentPayload(Constraints):
    type: str
    list: bool = False


def child_table_name(table: str, field: str) -> str:
    return f"{table}__{field}"


def add_link_columns(table: Table, parent: str) -> None:
    """``_entityId`` (cascading reference to ``parent``) and ``_order``."""
    table.integer(ENTITY_ID, lambda f: f.nullable(False).references(parent, on_delete="CASCADE"))
    table.integer(ORDER, lambda f: f.nullable(False))
    table.composite((ENTITY_ID, ORDER))


class ComponentType(DataType):
    name = "component"
    payload_model = ComponentPayload
    composite = True

    def verify_payload(self, payload: ComponentPayload, registry: "Registry") -> str | None:
        if registry.component(payload.type) is None:
            return f"type: component '{payload.type}' is not registered"
        return None

    def generate_columns(self, args: ColumnArgs) -> None:
        payload = self.payload(args.constraints)
        component = args.registry.require_schema("component", payload.type)
        if not payload.list:
            generate_schema_columns(
                component.fields, args.table, args.tables, args.registry, prefix=f"{args.name}_"
            )
            return

        def build(child: Table) -> None:
            add_link_columns(child, args.table.name)
            generate_schema_columns(component.fields, child, args.tables, args.registry)

        args.tables.ensure(child_table_name(args.table.name, args.name), build)

    def generate_structure(self, args: StructureArgs) -> Structure:
        payload = self.payload(args.constraints)
        component = args.ctx.registry.require_schema("component", payload.type)
        # A bare "include" on a component means all of its direct fields
        selector = ALL if args.selector is True else args.selector
        ctx = args.ctx.deeper()

        if not payload.list:
            inner = compile_fields(
                component.fields, selector, ctx,
                alias=args.alias, table=args.table, prefix=f"{args.name}_",
            )
            return Structure(ObjectField(inner.data.fields), inner.joins)

        child = child_table_name(args.table, args.name)
        alias = ctx.alias()
        inner = compile_fields(component.fields, selector, ctx, alias=alias, table=child)
        fetch = FetchSpec(
            table=child,
            alias=alias,
            key=ENTITY_ID,
            joins=inner.joins,
            order_by=f"{alias}.{ORDER}",
        )
        upload = InwardsUpload(
            table=child,
            parent_column=ENTITY_ID,
            order_column=ORDER,
            conflict=(ENTITY_ID, ORDER),
        )
        return Structure(ArrayField(inner.data, fetch, upload))

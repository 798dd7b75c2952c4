"""Dynamic component data type: an ordered list of mixed component types.

Storage is a bridge table ``{table}__{field}`` holding ``_entityId``,
``_order`` and ``_type``, plus one side table ``{bridge}__{type}`` per
allowed component type, linked to its bridge row by ``_entryId``.

Values are lists of single-key objects, ``[{"hero": {...}}, {"text": {...}}]``.
Reads run one query per allowed type and merge the rows by ``_order``.
"""

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import Field

from cargo_db.errors import InvalidValueError
from cargo_db.query.executor import fetch_related
from cargo_db.query.insert import InsertPlan, TablePlan, execute_insert_plan, extract_insert_plan
from cargo_db.query.tasks import gather_all
from cargo_db.schema.registry import table_name
from cargo_db.schema.selector import ALL, descend
from cargo_db.schema.structure import (
    CustomField,
    FetchSpec,
    Join,
    ObjectField,
    ScalarField,
    Structure,
    StructureArgs,
    compile_fields,
)
from cargo_db.table.builder import PRIMARY_KEY, Table
from cargo_db.types.base import ColumnArgs, Constraints, DataType, generate_schema_columns

if TYPE_CHECKING:
    from cargo_db.adapters.base import DatabaseClient
    from cargo_db.schema.registry import Registry

logger = logging.getLogger(__name__)

ENTITY_ID = "_entityId"
ORDER = "_order"
TYPE = "_type"
ENTRY_ID = "_entryId"


class DynamicComponentPayload(Constraints):
    types: list[str] = Field(min_length=1)
    list: bool = True


def side_table_name(bridge: str, component: str) -> str:
    return f"{bridge}__{table_name(component)}"


@dataclass
class DynamicVariant:
    """Read and write plan for one allowed component type."""

    table: str
    element: ObjectField  # read projection, includes the bridge order
    fields: ObjectField  # write projection
    fetch: FetchSpec


class DynamicComponentHandler:
    """Fetches and uploads the entries of one dynamic component field."""

    def __init__(self, bridge: str, variants: dict[str, DynamicVariant]) -> None:
        self.bridge = bridge
        self.variants = variants

    def __repr__(self) -> str:
        return f"DynamicComponentHandler({self.bridge!r}, {list(self.variants)})"

    async def fetch(self, db: "DatabaseClient", parent_id: int) -> list[dict]:
        names = list(self.variants)
        results = await gather_all(
            *(fetch_related(db, v.element, v.fetch, parent_id) for v in self.variants.values())
        )
        entries = []
        for type_name, rows in zip(names, results):
            for row in rows:
                order = row.pop(ORDER)
                row.pop("id", None)
                entries.append((order, type_name, row))
        entries.sort(key=lambda entry: entry[0])
        return [{type_name: row} for _, type_name, row in entries]

    async def upload(self, db: "DatabaseClient", parent_id: int, value: Any) -> None:
        if value is None:
            return
        if not isinstance(value, list):
            raise InvalidValueError((), f"expected a list of entries, got {type(value).__name__}")
        await gather_all(
            *(self._upload_entry(db, parent_id, index, entry) for index, entry in enumerate(value))
        )

    async def _upload_entry(self, db: "DatabaseClient", parent_id: int, index: int, entry: Any) -> None:
        if not isinstance(entry, dict) or len(entry) != 1:
            raise InvalidValueError((str(index),), "expected an object with exactly one type key")
        ((type_name, data),) = entry.items()
        variant = self.variants.get(type_name)
        if variant is None:
            raise InvalidValueError((str(index),), f"type '{type_name}' is not allowed here")
        if not isinstance(data, dict):
            raise InvalidValueError((str(index), type_name), "expected an object")

        entry_plan = InsertPlan(
            TablePlan(
                self.bridge,
                {ENTITY_ID: parent_id, ORDER: index, TYPE: type_name},
                conflict=(ENTITY_ID, ORDER),
            )
        )
        entry_id = await execute_insert_plan(db, entry_plan)

        # Side rows are keyed by their bridge row, never by a client id
        data = {k: v for k, v in data.items() if k != "id"}
        side_plan = extract_insert_plan(variant.fields, variant.table, data)
        side_plan.main_table.data[ENTRY_ID] = entry_id
        side_plan.main_table.conflict = (ENTRY_ID,)
        await execute_insert_plan(db, side_plan)


class DynamicComponentType(DataType):
    name = "dynamicComponent"
    payload_model = DynamicComponentPayload
    composite = True

    def verify_payload(self, payload: DynamicComponentPayload, registry: "Registry") -> str | None:
        if not payload.list:
            return "list: only list dynamic components are supported"
        missing = [t for t in payload.types if registry.component(t) is None]
        if missing:
            return "types: components not registered: " + ", ".join(missing)
        return None

    def generate_columns(self, args: ColumnArgs) -> None:
        payload = self.payload(args.constraints)
        bridge = f"{args.table.name}__{args.name}"

        def build_bridge(table: Table) -> None:
            table.integer(
                ENTITY_ID, lambda f: f.nullable(False).references(args.table.name, on_delete="CASCADE")
            )
            table.integer(ORDER, lambda f: f.nullable(False))
            table.string(TYPE, lambda f: f.nullable(False))
            table.composite((ENTITY_ID, ORDER))

        args.tables.ensure(bridge, build_bridge)

        for type_name in payload.types:
            component = args.registry.require_schema("component", type_name)

            def build_side(table: Table, component=component) -> None:
                table.integer(
                    ENTRY_ID,
                    lambda f: f.nullable(False).unique().references(bridge, on_delete="CASCADE"),
                )
                generate_schema_columns(component.fields, table, args.tables, args.registry)

            args.tables.ensure(side_table_name(bridge, type_name), build_side)

    def generate_structure(self, args: StructureArgs) -> Structure:
        payload = self.payload(args.constraints)
        registry = args.ctx.registry
        bridge = f"{args.table}__{args.name}"
        selector = ALL if args.selector is True else args.selector
        ctx = args.ctx.deeper()

        variants: dict[str, DynamicVariant] = {}
        for type_name in payload.types:
            type_selector = descend(selector, type_name)
            if type_selector is None:
                continue
            if type_selector is True:
                type_selector = ALL
            side = side_table_name(bridge, type_name)
            bridge_alias = ctx.alias()
            side_alias = ctx.alias()
            inner = compile_fields(
                registry.require_schema("component", type_name).fields, type_selector, ctx,
                alias=side_alias, table=side,
            )
            element = ObjectField(
                {**inner.data.fields, ORDER: ScalarField("number", f"{bridge_alias}.{ORDER}")},
                alias=side_alias,
                table=side,
            )
            join = Join(
                side, side_alias,
                left=f"{bridge_alias}.{PRIMARY_KEY}", right=f"{side_alias}.{ENTRY_ID}",
            )
            variants[type_name] = DynamicVariant(
                table=side,
                element=element,
                fields=inner.data,
                fetch=FetchSpec(
                    table=bridge,
                    alias=bridge_alias,
                    key=ENTITY_ID,
                    joins={side_alias: join, **inner.joins},
                    id_ref=f"{side_alias}.{PRIMARY_KEY}",
                    order_by=f"{bridge_alias}.{ORDER}",
                    match={TYPE: type_name},
                ),
            )
        return Structure(CustomField(DynamicComponentHandler(bridge, variants)))

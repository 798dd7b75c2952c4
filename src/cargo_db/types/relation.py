"""Relation data type: links between entities.

Storage by relation kind:

- ``one``, ``oneToOne``, ``manyToOne``: nullable foreign key column on the
  owning table, ``ON DELETE SET NULL``
- ``oneToMany``: nothing on this side; the target's inverse field holds
  the foreign key
- ``many``: bridge table ``{table}__{field}``
- ``manyToMany``: one bridge table shared by both sides, named after the
  lexicographically smaller of ``{table}__{field}`` and
  ``{target}__{inverse}``

A relation reached with a structured selector (``"*"``, a field list, an
object) is followed into the target entity; ``True``, ``"**"`` or a cycle
back to an entity already on the path yields ids only.
"""

from typing import TYPE_CHECKING, Literal

from cargo_db.schema.registry import table_name
from cargo_db.schema.selector import is_structured
from cargo_db.schema.structure import (
    ArrayField,
    FetchSpec,
    InwardsUpload,
    Join,
    ObjectField,
    OutwardsUpload,
    ScalarField,
    Structure,
    StructureArgs,
    compile_fields,
)
from cargo_db.table.builder import PRIMARY_KEY, Table
from cargo_db.types.base import ColumnArgs, Constraints, DataType

if TYPE_CHECKING:
    from cargo_db.schema.registry import Registry, Schema

Relation = Literal["one", "many", "oneToOne", "oneToMany", "manyToOne", "manyToMany"]

SIMPLE_RELATIONS = ("one", "oneToOne", "manyToOne")
ENTITY_ID = "_entityId"
TARGET_ID = "_targetId"


class RelationPayload(Constraints):
    type: str
    relation: Relation
    field: str | None = None


def bridge_table_name(table: str, field: str, target_table: str, inverse: str | None) -> str:
    """Name of the bridge table of a relation.

    For ``manyToMany`` pass the inverse field; both sides then agree on the
    same name.  Without an inverse the bridge belongs to this side.

    Example:
        >>> bridge_table_name("restaurant", "tags", "tag", "restaurants")
        'restaurant__tags'
        >>> bridge_table_name("tag", "restaurants", "restaurant", "tags")
        'restaurant__tags'
    """
    own = f"{table}__{field}"
    if inverse is None:
        return own
    return min(own, f"{target_table}__{inverse}")


def _owns_bridge(table: str, field: str, bridge: str) -> bool:
    """True if this side is the ``_entityId`` side of ``bridge``."""
    return bridge == f"{table}__{field}"


def _follows(args: StructureArgs, target: "Schema") -> bool:
    return is_structured(args.selector) and target.name not in args.ctx.visited


class RelationType(DataType):
    name = "relation"
    payload_model = RelationPayload
    composite = True

    def verify_payload(self, payload: RelationPayload, registry: "Registry") -> str | None:
        target = registry.entity(payload.type)
        if target is None:
            return f"type: entity '{payload.type}' is not registered"
        if payload.relation not in ("one", "many") and not payload.field:
            return f"field: relation '{payload.relation}' requires the inverse field name"
        if payload.relation == "oneToMany" and target.get_field(payload.field) is None:
            return f"field: entity '{payload.type}' has no field '{payload.field}'"
        return None

    # ------------------------------------------------------------------
    # Columns
    # ------------------------------------------------------------------

    def generate_columns(self, args: ColumnArgs) -> None:
        payload = self.payload(args.constraints)
        target_table = table_name(payload.type)
        table = args.table.name

        if payload.relation in SIMPLE_RELATIONS:
            column = args.table.integer(args.name)
            column.references(target_table, on_delete="SET NULL")
            if args.constraints.get("unique"):
                column.unique()
            return
        if payload.relation == "oneToMany":
            return

        inverse = payload.field if payload.relation == "manyToMany" else None
        bridge = bridge_table_name(table, args.name, target_table, inverse)
        if _owns_bridge(table, args.name, bridge):
            entity_table, other_table = table, target_table
        else:
            entity_table, other_table = target_table, table

        def build(bridge_table: Table) -> None:
            bridge_table.integer(
                ENTITY_ID, lambda f: f.nullable(False).references(entity_table, on_delete="CASCADE")
            )
            bridge_table.integer(
                TARGET_ID, lambda f: f.nullable(False).references(other_table, on_delete="CASCADE")
            )
            bridge_table.composite((ENTITY_ID, TARGET_ID))

        args.tables.ensure(bridge, build)

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    def nests(self, args: StructureArgs) -> bool:
        # Id-only relations are plain columns or id lists
        target = args.ctx.registry.require_schema("entity", self.payload(args.constraints).type)
        return _follows(args, target)

    def generate_structure(self, args: StructureArgs) -> Structure:
        payload = self.payload(args.constraints)
        target = args.ctx.registry.require_schema("entity", payload.type)
        follow = _follows(args, target)
        if payload.relation in SIMPLE_RELATIONS:
            if not follow:
                return Structure(ScalarField("number", f"{args.alias}.{args.name}"))
            return self._follow_simple(args, target)
        if payload.relation == "oneToMany":
            return self._inverse_array(args, target, payload.field, follow)
        return self._bridge_array(args, target, payload, follow)

    def _compile_target(self, args: StructureArgs, target: "Schema", alias: str) -> Structure:
        return compile_fields(
            target.fields,
            args.selector,
            args.ctx.deeper(target.name),
            alias=alias,
            table=target.table_name,
        )

    def _follow_simple(self, args: StructureArgs, target: "Schema") -> Structure:
        target_alias = args.ctx.alias()
        inner = self._compile_target(args, target, target_alias)
        fields = {"id": ScalarField("number", f"{target_alias}.{PRIMARY_KEY}"), **inner.data.fields}
        obj = ObjectField(
            fields,
            alias=target_alias,
            table=target.table_name,
            upload=OutwardsUpload(column=args.name, table=target.table_name),
            optional=True,
        )

        if obj.is_inline:
            join = Join(
                target.table_name, target_alias,
                left=f"{args.alias}.{args.name}", right=f"{target_alias}.{PRIMARY_KEY}",
            )
            return Structure(obj, {target_alias: join, **inner.joins})

        # Arrays below the target need its id, so load it with its own query
        owner_alias = args.ctx.alias()
        join = Join(
            target.table_name, target_alias,
            left=f"{owner_alias}.{args.name}", right=f"{target_alias}.{PRIMARY_KEY}",
        )
        obj.fetch = FetchSpec(
            table=args.table,
            alias=owner_alias,
            key=PRIMARY_KEY,
            joins={target_alias: join, **inner.joins},
            id_ref=f"{target_alias}.{PRIMARY_KEY}",
        )
        return Structure(obj)

    def _inverse_array(
        self, args: StructureArgs, target: "Schema", inverse: str, follow: bool
    ) -> Structure:
        target_alias = args.ctx.alias()
        if follow:
            inner = self._compile_target(args, target, target_alias)
            element = inner.data
            joins = inner.joins
        else:
            element = ScalarField("number", f"{target_alias}.{PRIMARY_KEY}")
            joins = {}
        fetch = FetchSpec(
            table=target.table_name,
            alias=target_alias,
            key=inverse,
            joins=joins,
            order_by=f"{target_alias}.{PRIMARY_KEY}",
        )
        upload = InwardsUpload(
            table=target.table_name,
            parent_column=inverse,
            element_table=target.table_name,
            conflict=(PRIMARY_KEY,),
            references=True,
        )
        return Structure(ArrayField(element, fetch, upload))

    def _bridge_array(
        self, args: StructureArgs, target: "Schema", payload: RelationPayload, follow: bool
    ) -> Structure:
        inverse = payload.field if payload.relation == "manyToMany" else None
        bridge = bridge_table_name(args.table, args.name, target.table_name, inverse)
        if _owns_bridge(args.table, args.name, bridge):
            own, other = ENTITY_ID, TARGET_ID
        else:
            own, other = TARGET_ID, ENTITY_ID

        bridge_alias = args.ctx.alias()
        if follow:
            target_alias = args.ctx.alias()
            inner = self._compile_target(args, target, target_alias)
            element = inner.data
            join = Join(
                target.table_name, target_alias,
                left=f"{bridge_alias}.{other}", right=f"{target_alias}.{PRIMARY_KEY}",
            )
            fetch = FetchSpec(
                table=bridge,
                alias=bridge_alias,
                key=own,
                joins={target_alias: join, **inner.joins},
                id_ref=f"{target_alias}.{PRIMARY_KEY}",
                order_by=f"{bridge_alias}.{PRIMARY_KEY}",
            )
        else:
            element = ScalarField("number", f"{bridge_alias}.{other}")
            fetch = FetchSpec(
                table=bridge,
                alias=bridge_alias,
                key=own,
                order_by=f"{bridge_alias}.{PRIMARY_KEY}",
            )
        upload = InwardsUpload(
            table=bridge,
            parent_column=own,
            element_column=other,
            element_table=target.table_name,
            conflict=(ENTITY_ID, TARGET_ID),
        )
        return Structure(ArrayField(element, fetch, upload))

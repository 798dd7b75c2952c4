"""Insert planner: turns a ``Structure`` and a value tree into row writes.

An ``InsertPlan`` is one row write (``main_table``) with everything hanging
off it:

- ``prerequisites``: related rows that must be written first because the
  main row stores their id (a relation value given as a new object)
- ``sibling_plans``: related rows whose id is already known; they run
  concurrently with the main write
- ``dependent_plans``: child rows that reference the main row's id
  (component lists, bridge rows, inverse foreign keys); they run after
  the main write, concurrently with each other
- ``custom``: uploads of custom fields, run with the main row's id

Every write is an upsert when a conflict target is known: a value ``id``
upserts on ``_id``, a child row upserts on its link columns.

Usage:
    plan = extract_insert_plan(structure, "restaurant", {"name": "Test", "reviews": [...]})
    restaurant_id = await execute_insert_plan(adapter, plan)
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Any

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql, sqlite

from cargo_db.adapters.base import DatabaseClient
from cargo_db.errors import InvalidValueError
from cargo_db.query.tasks import gather_all
from cargo_db.schema.structure import (
    ArrayField,
    CustomField,
    CustomHandler,
    InwardsUpload,
    ObjectField,
    ScalarField,
    Structure,
    split_ref,
)
from cargo_db.table.builder import PRIMARY_KEY
from cargo_db.values import MISSING, dig, is_reference, is_scalar

logger = logging.getLogger(__name__)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


# ============================================================================
# Plan model
# ============================================================================


@dataclass
class TablePlan:
    """One row write."""

    name: str
    data: dict[str, Any] = field(default_factory=dict)
    conflict: tuple[str, ...] = ()
    update_only: bool = False


@dataclass
class Prerequisite:
    """A row written first; its id fills ``column`` of the dependent row."""

    column: str
    plan: "InsertPlan"


@dataclass
class DependentPlan:
    """A child row plan waiting for its parent's id."""

    plan: "InsertPlan"
    upload: InwardsUpload
    index: int
    element: Any

    def bind(self, parent_id: int) -> "InsertPlan":
        """The child plan with its link columns filled in."""
        link = self.upload.link_data(parent_id, self.index, self.element)
        main = self.plan.main_table
        return replace(self.plan, main_table=replace(main, data={**main.data, **link}))


@dataclass
class CustomUpload:
    handler: CustomHandler
    value: Any


@dataclass
class InsertPlan:
    main_table: TablePlan
    sibling_plans: list["InsertPlan"] = field(default_factory=list)
    dependent_plans: list[DependentPlan] = field(default_factory=list)
    prerequisites: list[Prerequisite] = field(default_factory=list)
    custom: list[CustomUpload] = field(default_factory=list)


# ============================================================================
# Plan extraction
# ============================================================================


def extract_insert_plan(
    structure: Structure | ObjectField,
    table: str,
    value: Any,
    *,
    alias: str | None = None,
) -> InsertPlan:
    """Build the write plan of ``value`` for one row of ``table``.

    Fields absent from ``value`` are left untouched; fields absent from
    ``structure`` are ignored.

    Args:
        structure: Compiled structure (or the object field of one row).
        table: Physical table of the row.
        value: JSON object to write.
        alias: Alias the row's columns were compiled with (default: the
            object's own alias, else ``table``).

    Raises:
        InvalidValueError: If ``value`` does not fit the structure's shape.
    """
    obj = structure.data if isinstance(structure, Structure) else structure
    assert isinstance(obj, ObjectField), "a row plan needs an object structure"
    if not isinstance(value, dict):
        raise InvalidValueError((), f"expected an object, got {type(value).__name__}")

    plan = InsertPlan(TablePlan(table))
    row_id = value.get("id")
    if row_id is not None:
        if not is_reference(row_id):
            raise InvalidValueError(("id",), "expected an integer id")
        plan.main_table.data[PRIMARY_KEY] = row_id
        plan.main_table.conflict = (PRIMARY_KEY,)

    _collect(plan, obj, value, (), alias or obj.alias or table)
    return plan


def _collect(plan: InsertPlan, obj: ObjectField, root: Any, path: tuple[str, ...], alias: str) -> None:
    for name, sub in obj.fields.items():
        sub_path = path + (name,)
        if isinstance(sub, ScalarField) and sub_path == ("id",):
            continue
        item = dig(root, sub_path)
        if item is MISSING:
            continue

        if isinstance(sub, ScalarField):
            column_alias, column = split_ref(sub.column)
            assert column_alias == alias, f"column {sub.column} is not on row {alias}"
            if not is_scalar(item):
                raise InvalidValueError(sub_path, f"expected a scalar, got {type(item).__name__}")
            plan.main_table.data[column] = item
        elif isinstance(sub, ObjectField) and sub.upload is not None:
            _collect_outwards(plan, sub, item, sub_path)
        elif isinstance(sub, ObjectField):
            _collect(plan, sub, root, sub_path, alias)
        elif isinstance(sub, ArrayField):
            if item is None:
                continue
            if not isinstance(item, list):
                raise InvalidValueError(sub_path, f"expected a list, got {type(item).__name__}")
            for index, element in enumerate(item):
                plan.dependent_plans.append(_element_plan(sub, index, element, sub_path))
        elif isinstance(sub, CustomField):
            plan.custom.append(CustomUpload(sub.handler, item))


def _related_plan(obj: ObjectField, value: dict) -> InsertPlan | None:
    """Plan for the related row itself, or ``None`` if ``value`` is only an id."""
    if not any(key != "id" for key in value):
        return None
    return extract_insert_plan(obj, obj.table, value, alias=obj.alias)


def _collect_outwards(plan: InsertPlan, obj: ObjectField, item: Any, path: tuple[str, ...]) -> None:
    column = obj.upload.column
    if item is None or is_reference(item):
        plan.main_table.data[column] = item
        return
    if not isinstance(item, dict):
        raise InvalidValueError(path, "expected an id or an object")
    related = _related_plan(obj, item)
    related_id = item.get("id")
    if related_id is not None and not is_reference(related_id):
        raise InvalidValueError(path + ("id",), "expected an integer id")
    if related is None:
        plan.main_table.data[column] = related_id
    elif related_id is not None:
        plan.main_table.data[column] = related_id
        plan.sibling_plans.append(related)
    else:
        plan.prerequisites.append(Prerequisite(column, related))


def _element_plan(array: ArrayField, index: int, element: Any, path: tuple[str, ...]) -> DependentPlan:
    upload = array.upload
    element_path = path + (str(index),)
    target = array.element

    if upload.element_column is not None:
        # Bridge row; the element is a referenced row
        plan = InsertPlan(TablePlan(upload.table, conflict=upload.conflict))
        if is_reference(element):
            return DependentPlan(plan, upload, index, element)
        if not isinstance(element, dict):
            raise InvalidValueError(element_path, "expected an id or an object")
        related = _related_plan(target, element) if isinstance(target, ObjectField) else None
        if related is not None:
            plan.prerequisites.append(Prerequisite(upload.element_column, related))
        elif is_reference(element.get("id")):
            plan.main_table.data[upload.element_column] = element["id"]
        else:
            raise InvalidValueError(element_path, "expected an object with an integer id")
        return DependentPlan(plan, upload, index, element)

    if upload.references:
        # Inverse foreign key; the element is a row of the target table
        if is_reference(element):
            plan = InsertPlan(TablePlan(upload.table, {PRIMARY_KEY: element}, update_only=True))
            return DependentPlan(plan, upload, index, element)
        if not isinstance(element, dict):
            raise InvalidValueError(element_path, "expected an id or an object")
        if isinstance(target, ObjectField):
            plan = extract_insert_plan(target, upload.table, element, alias=target.alias)
        elif is_reference(element.get("id")):
            plan = InsertPlan(TablePlan(upload.table, {PRIMARY_KEY: element["id"]}, update_only=True))
        else:
            raise InvalidValueError(element_path, "expected an object with an integer id")
        return DependentPlan(plan, upload, index, element)

    # Component list row
    if not isinstance(element, dict):
        raise InvalidValueError(element_path, f"expected an object, got {type(element).__name__}")
    assert isinstance(target, ObjectField)
    plan = extract_insert_plan(target, upload.table, element, alias=target.alias)
    if not plan.main_table.conflict:
        plan.main_table.conflict = upload.conflict
    return DependentPlan(plan, upload, index, element)


# ============================================================================
# Execution
# ============================================================================


def _dml_table(plan: TablePlan) -> sa.TableClause:
    names = dict.fromkeys([PRIMARY_KEY, *plan.conflict, *plan.data])
    return sa.table(plan.name, *(sa.column(name) for name in names))


async def _write_row(db: DatabaseClient, plan: TablePlan) -> int:
    table = _dml_table(plan)
    key = table.c[PRIMARY_KEY]

    if plan.update_only:
        values = {k: v for k, v in plan.data.items() if k != PRIMARY_KEY}
        statement = (
            sa.update(table)
            .where(key == plan.data[PRIMARY_KEY])
            .values(values)
            .returning(key)
        )
        row = await db.execute_returning(statement)
        if row is None:
            raise InvalidValueError(
                (), f"{plan.name} row {plan.data[PRIMARY_KEY]} does not exist"
            )
        return row[PRIMARY_KEY]

    if plan.conflict:
        dialect_insert = _DIALECT_INSERTS.get(db.dialect_name)
        if dialect_insert is None:
            raise NotImplementedError(f"Upsert is not supported on {db.dialect_name}")
        statement = dialect_insert(table).values(plan.data)
        updates = {
            name: statement.excluded[name] for name in plan.data if name not in plan.conflict
        }
        if not updates:
            # No-op update so RETURNING still yields the existing row
            updates = {plan.conflict[0]: statement.excluded[plan.conflict[0]]}
        statement = statement.on_conflict_do_update(
            index_elements=list(plan.conflict), set_=updates
        ).returning(key)
    else:
        statement = sa.insert(table).values(plan.data).returning(key)

    row = await db.execute_returning(statement)
    assert row is not None, "INSERT ... RETURNING produced no row"
    return row[PRIMARY_KEY]


async def execute_insert_plan(db: DatabaseClient, plan: InsertPlan) -> int:
    """Execute ``plan`` and return the id of its main row.

    Order: prerequisites, then the main row concurrently with siblings,
    then dependents and custom uploads concurrently.  The first failure
    cancels the writes still in flight at that stage and propagates;
    writes already sent are not rolled back.
    """
    main = plan.main_table
    if plan.prerequisites:
        ids = await gather_all(*(execute_insert_plan(db, p.plan) for p in plan.prerequisites))
        data = dict(main.data)
        for prerequisite, related_id in zip(plan.prerequisites, ids):
            data[prerequisite.column] = related_id
        main = replace(main, data=data)

    main_id, *_ = await gather_all(
        _write_row(db, main),
        *(execute_insert_plan(db, sibling) for sibling in plan.sibling_plans),
    )
    logger.debug("Wrote %s row %s", main.name, main_id)

    await gather_all(
        *(execute_insert_plan(db, dependent.bind(main_id)) for dependent in plan.dependent_plans),
        *(upload.handler.upload(db, main_id, upload.value) for upload in plan.custom),
    )
    return main_id


async def insert(db: DatabaseClient, structure: Structure, table: str, value: Any) -> int:
    """Plan and write ``value`` as a row of ``table``; returns its id."""
    return await execute_insert_plan(db, extract_insert_plan(structure, table, value))

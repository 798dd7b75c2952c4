"""Tests for the insert planner: plan extraction and execution order."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import sqlite

from cargo_db.errors import InvalidValueError
from cargo_db.query.insert import (
    InsertPlan,
    TablePlan,
    execute_insert_plan,
    extract_insert_plan,
)
from cargo_db.schema.selector import DEEP
from cargo_db.schema.structure import CompileContext, compile_structure


@pytest.fixture
def plan_for(registry):
    """Extract the insert plan of a value for an entity of the restaurant model."""

    def extract(name: str, value, selector=DEEP) -> InsertPlan:
        schema = registry.entity(name)
        structure = compile_structure(schema, selector, CompileContext(registry))
        return extract_insert_plan(structure, schema.table_name, value)

    return extract


def _mock_db(ids: dict[str, int | None], dialect_name: str = "sqlite") -> MagicMock:
    """A client whose writes return the id configured for the written table."""
    db = MagicMock()
    db.dialect_name = dialect_name
    db.written = []

    async def execute_returning(statement):
        db.written.append(statement)
        row_id = ids[statement.table.name]
        return None if row_id is None else {"_id": row_id}

    db.execute_returning = AsyncMock(side_effect=execute_returning)
    return db


def _params(statement) -> dict:
    return statement.compile(dialect=sqlite.dialect()).params


# ============================================================================
# Extraction
# ============================================================================


class TestExtractInsertPlan:
    """Verify how value trees map to row writes."""

    def test_scalars_and_inline_component(self, plan_for) -> None:
        plan = plan_for(
            "restaurant",
            {"name": "Test", "rating": 4, "featured": False, "address": {"city": "Oslo"}},
        )
        assert plan.main_table == TablePlan(
            "restaurant", {"name": "Test", "rating": 4, "featured": False, "address_city": "Oslo"}
        )
        assert plan.dependent_plans == []

    def test_absent_fields_untouched(self, plan_for) -> None:
        """Only keys present in the value are written; explicit nulls are kept."""
        plan = plan_for("restaurant", {"name": "Test", "address": None})
        assert plan.main_table.data == {"name": "Test", "address_city": None, "address_zip": None}

    def test_unselected_fields_ignored(self, plan_for) -> None:
        plan = plan_for("restaurant", {"name": "Test", "rating": 4}, selector="name")
        assert plan.main_table.data == {"name": "Test"}

    def test_id_upserts(self, plan_for) -> None:
        plan = plan_for("tag", {"id": 3, "name": "cozy"})
        assert plan.main_table.data == {"_id": 3, "name": "cozy"}
        assert plan.main_table.conflict == ("_id",)

    def test_component_list(self, plan_for) -> None:
        plan = plan_for("restaurant", {"name": "Test", "reviews": [{"text": "Great", "author": "Ann"}]})
        (dependent,) = plan.dependent_plans
        bound = dependent.bind(11)
        assert bound.main_table.name == "restaurant__reviews"
        assert bound.main_table.data == {"text": "Great", "author": "Ann", "_entityId": 11, "_order": 0}
        assert bound.main_table.conflict == ("_entityId", "_order")

    def test_bind_does_not_mutate(self, plan_for) -> None:
        plan = plan_for("restaurant", {"name": "Test", "reviews": [{"text": "Great"}]})
        (dependent,) = plan.dependent_plans
        dependent.bind(1)
        assert dependent.plan.main_table.data == {"text": "Great"}

    def test_bridge_ids(self, plan_for) -> None:
        plan = plan_for("restaurant", {"name": "Test", "tags": [3, 5]})
        bound = [d.bind(11).main_table for d in plan.dependent_plans]
        assert [t.name for t in bound] == ["restaurant__tags", "restaurant__tags"]
        assert [t.data for t in bound] == [
            {"_entityId": 11, "_targetId": 3},
            {"_entityId": 11, "_targetId": 5},
        ]
        assert bound[0].conflict == ("_entityId", "_targetId")

    def test_bridge_from_other_side(self, plan_for) -> None:
        plan = plan_for("tag", {"name": "cozy", "restaurants": [{"id": 8}]})
        (dependent,) = plan.dependent_plans
        assert dependent.bind(2).main_table.data == {"_entityId": 8, "_targetId": 2}

    def test_bridge_new_target(self, plan_for) -> None:
        """A new related row is written before its bridge row."""
        plan = plan_for("restaurant", {"name": "Test", "tags": [{"name": "cozy"}]}, selector={"tags": "name"})
        (dependent,) = plan.dependent_plans
        (prerequisite,) = dependent.plan.prerequisites
        assert prerequisite.column == "_targetId"
        assert prerequisite.plan.main_table == TablePlan("tag", {"name": "cozy"})

    def test_foreign_key_id(self, plan_for) -> None:
        assert plan_for("restaurant", {"owner": 7}).main_table.data == {"owner": 7}
        assert plan_for("restaurant", {"owner": None}).main_table.data == {"owner": None}

    def test_foreign_key_new_object(self, plan_for) -> None:
        plan = plan_for("restaurant", {"name": "Test", "owner": {"name": "Ann"}}, selector={"name": True, "owner": "name"})
        assert "owner" not in plan.main_table.data
        (prerequisite,) = plan.prerequisites
        assert prerequisite.column == "owner"
        assert prerequisite.plan.main_table == TablePlan("person", {"name": "Ann"})

    def test_foreign_key_existing_object(self, plan_for) -> None:
        """An object with an id is linked and updated alongside."""
        plan = plan_for("restaurant", {"owner": {"id": 4, "name": "Ann"}}, selector={"owner": "name"})
        assert plan.main_table.data == {"owner": 4}
        (sibling,) = plan.sibling_plans
        assert sibling.main_table == TablePlan("person", {"_id": 4, "name": "Ann"}, conflict=("_id",))

    def test_foreign_key_id_only_object(self, plan_for) -> None:
        plan = plan_for("restaurant", {"owner": {"id": 4}}, selector={"owner": "name"})
        assert plan.main_table.data == {"owner": 4}
        assert plan.sibling_plans == []

    def test_inverse_foreign_key(self, plan_for) -> None:
        plan = plan_for("person", {"name": "Ann", "restaurants": [9]})
        (dependent,) = plan.dependent_plans
        bound = dependent.bind(4).main_table
        assert bound == TablePlan("restaurant", {"_id": 9, "owner": 4}, update_only=True)

    def test_dynamic_component_is_custom_upload(self, plan_for) -> None:
        blocks = [{"hero": {"title": "Welcome"}}]
        plan = plan_for("restaurant", {"name": "Test", "blocks": blocks})
        (upload,) = plan.custom
        assert upload.value == blocks

    @pytest.mark.parametrize(
        "value, path",
        [
            ({"name": {"first": "x"}}, ("name",)),
            ({"reviews": {"text": "x"}}, ("reviews",)),
            ({"reviews": ["x"]}, ("reviews", "0")),
            ({"tags": ["cozy"]}, ("tags", "0")),
            ({"owner": ["Ann"]}, ("owner",)),
            ({"id": "3"}, ("id",)),
        ],
    )
    def test_shape_mismatch(self, plan_for, value, path) -> None:
        with pytest.raises(InvalidValueError) as exc:
            plan_for("restaurant", value)
        assert exc.value.path == path
        assert exc.value.status_code == 400

    def test_value_must_be_object(self, plan_for) -> None:
        with pytest.raises(InvalidValueError):
            plan_for("restaurant", ["Test"])


# ============================================================================
# Execution
# ============================================================================


class TestExecuteInsertPlan:
    """Verify write order and statement shape with a mocked client."""

    def test_returns_main_id(self, plan_for) -> None:
        db = _mock_db({"tag": 5})
        plan = plan_for("tag", {"name": "cozy"})
        assert asyncio.run(execute_insert_plan(db, plan)) == 5
        (statement,) = db.written
        assert _params(statement) == {"name": "cozy"}

    def test_prerequisite_id_fills_column(self, plan_for) -> None:
        db = _mock_db({"person": 4, "restaurant": 9})
        plan = plan_for("restaurant", {"name": "Test", "owner": {"name": "Ann"}}, selector={"name": True, "owner": "name"})
        assert asyncio.run(execute_insert_plan(db, plan)) == 9
        person, restaurant = db.written
        assert person.table.name == "person"
        assert _params(restaurant) == {"name": "Test", "owner": 4}

    def test_dependents_after_main_row(self, plan_for) -> None:
        db = _mock_db({"restaurant": 9, "restaurant__reviews": 1, "restaurant__tags": 2})
        plan = plan_for("restaurant", {"name": "Test", "reviews": [{"text": "Great"}], "tags": [3]})
        asyncio.run(execute_insert_plan(db, plan))
        assert db.written[0].table.name == "restaurant"
        by_table = {s.table.name: _params(s) for s in db.written[1:]}
        assert by_table["restaurant__reviews"] == {"text": "Great", "_entityId": 9, "_order": 0}
        assert by_table["restaurant__tags"] == {"_entityId": 9, "_targetId": 3}

    def test_upsert_statement(self, plan_for) -> None:
        db = _mock_db({"tag": 3})
        asyncio.run(execute_insert_plan(db, plan_for("tag", {"id": 3, "name": "cozy"})))
        sql = str(db.written[0].compile(dialect=sqlite.dialect()))
        assert "ON CONFLICT (_id) DO UPDATE" in sql
        assert "RETURNING" in sql

    def test_missing_referenced_row(self, plan_for) -> None:
        """Linking a row that does not exist fails instead of inserting it."""
        db = _mock_db({"person": 4, "restaurant": None})
        plan = plan_for("person", {"name": "Ann", "restaurants": [42]})
        with pytest.raises(InvalidValueError, match="restaurant row 42 does not exist"):
            asyncio.run(execute_insert_plan(db, plan))

    def test_upsert_unsupported_dialect(self, plan_for) -> None:
        db = _mock_db({"tag": 3}, dialect_name="mysql")
        with pytest.raises(NotImplementedError, match="mysql"):
            asyncio.run(execute_insert_plan(db, plan_for("tag", {"id": 3, "name": "cozy"})))

    def test_failure_cancels_sibling_writes(self, plan_for) -> None:
        """A failing dependent stops the dependents still in flight."""
        db = _mock_db({"restaurant": 9})

        async def execute_returning(statement):
            name = statement.table.name
            if name == "restaurant__reviews":
                raise RuntimeError("write failed")
            if name == "restaurant__tags":
                await asyncio.sleep(0.05)
            db.written.append(statement)
            return {"_id": 1}

        db.execute_returning = AsyncMock(side_effect=execute_returning)
        plan = plan_for("restaurant", {"name": "Test", "reviews": [{"text": "Great"}], "tags": [3]})

        async def scenario():
            with pytest.raises(RuntimeError, match="write failed"):
                await execute_insert_plan(db, plan)
            # Give a surviving write time to land
            await asyncio.sleep(0.1)

        asyncio.run(scenario())
        assert [s.table.name for s in db.written] == ["restaurant"]

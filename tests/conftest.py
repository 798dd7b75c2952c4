"""Shared fixtures: a restaurant content model and SQLite databases."""

import json
from collections.abc import Callable
from pathlib import Path

import pytest

from cargo_db.schema.loader import SchemaDefinition, build_registry
from cargo_db.schema.registry import Registry

# ============================================================================
# Content model
# ============================================================================

REVIEW = {
    "name": "review",
    "type": "component",
    "fields": [
        {"name": "text", "type": "shortText"},
        {"name": "author", "type": "shortText"},
    ],
}

ADDRESS = {
    "name": "address",
    "type": "component",
    "fields": [
        {"name": "city", "type": "shortText"},
        {"name": "zip", "type": "shortText"},
    ],
}

HERO = {
    "name": "hero",
    "type": "component",
    "fields": [{"name": "title", "type": "shortText"}],
}

PARAGRAPH = {
    "name": "paragraph",
    "type": "component",
    "fields": [{"name": "body", "type": "longText"}],
}

TAG = {
    "name": "tag",
    "type": "entity",
    "description": {"path": "Taxonomy"},
    "fields": [
        {"name": "name", "type": "shortText", "constraints": {"required": True, "unique": True}},
        {
            "name": "restaurants",
            "type": "relation",
            "constraints": {"type": "restaurant", "relation": "manyToMany", "field": "tags"},
        },
    ],
}

PERSON = {
    "name": "person",
    "type": "entity",
    "fields": [
        {"name": "name", "type": "shortText"},
        {
            "name": "restaurants",
            "type": "relation",
            "constraints": {"type": "restaurant", "relation": "oneToMany", "field": "owner"},
        },
    ],
}

RESTAURANT = {
    "name": "restaurant",
    "type": "entity",
    "description": {"path": "Food/Restaurants", "description": "Places to eat", "icon": "store"},
    "fields": [
        {
            "name": "name",
            "type": "shortText",
            "constraints": {"required": True, "max": 80},
            "description": {"path": "General"},
        },
        {"name": "rating", "type": "integer", "constraints": {"min": 0, "max": 5}},
        {"name": "featured", "type": "boolean"},
        {"name": "address", "type": "component", "constraints": {"type": "address"}},
        {"name": "reviews", "type": "component", "constraints": {"type": "review", "list": True}},
        {
            "name": "tags",
            "type": "relation",
            "constraints": {"type": "tag", "relation": "manyToMany", "field": "restaurants"},
        },
        {
            "name": "owner",
            "type": "relation",
            "constraints": {"type": "person", "relation": "manyToOne", "field": "restaurants"},
        },
        {
            "name": "blocks",
            "type": "dynamicComponent",
            "constraints": {"types": ["hero", "paragraph"]},
        },
    ],
}

RESTAURANT_SCHEMAS = [REVIEW, ADDRESS, HERO, PARAGRAPH, TAG, PERSON, RESTAURANT]


@pytest.fixture
def make_registry() -> Callable[..., Registry]:
    """Build a frozen registry from schema dicts."""

    def make(*schemas: dict) -> Registry:
        return build_registry(SchemaDefinition.model_validate(s) for s in schemas)

    return make


@pytest.fixture
def registry(make_registry) -> Registry:
    return make_registry(*RESTAURANT_SCHEMAS)


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """URL of a fresh SQLite file database."""
    return f"sqlite:///{tmp_path / 'content.db'}"


@pytest.fixture
def schema_dir(tmp_path: Path) -> Path:
    """Directory holding the restaurant content model as schema files."""
    directory = tmp_path / "schemas"
    (directory / "components").mkdir(parents=True)
    for schema in RESTAURANT_SCHEMAS:
        target = directory / "components" if schema["type"] == "component" else directory
        (target / f"{schema['name']}.json").write_text(json.dumps(schema, indent=2))
    return directory

"""cargo-db: schema-driven content store on async SQLAlchemy.

Content types declared as JSON schemas are compiled into table layouts,
and client selectors into query and insert plans over PostgreSQL or SQLite.

Usage:
    from cargo_db import ContentStore, AsyncSQLAdapter, build_registry, load_schema_directory

    registry = build_registry(load_schema_directory(Path("schemas")))
    store = ContentStore(AsyncSQLAdapter("sqlite:///content.db"), registry)
    await store.construct_tables()
"""

__version__ = "0.1.0"

# Adapters
from cargo_db.adapters.base import DatabaseClient
from cargo_db.adapters.sql import AsyncSQLAdapter

# Config
from cargo_db.config.loader import load_db_config
from cargo_db.config.models import DatabaseConfig, DatabaseProfile

# Errors
from cargo_db.errors import (
    CargoError,
    EntityNotFoundError,
    InvalidValueError,
    MigrationError,
    SchemaError,
)

# Factory
from cargo_db.factory import ProfileNotFoundError, get_adapter, open_store, resolve_url

# Query
from cargo_db.query.filters import QueryReport

# Schema
from cargo_db.schema.loader import build_registry, load_schema_directory
from cargo_db.schema.registry import Registry

# Store
from cargo_db.store import ContentStore

__all__ = [
    # Adapters
    "DatabaseClient",
    "AsyncSQLAdapter",
    # Config
    "load_db_config",
    "DatabaseProfile",
    "DatabaseConfig",
    # Errors
    "CargoError",
    "EntityNotFoundError",
    "InvalidValueError",
    "MigrationError",
    "SchemaError",
    # Factory
    "get_adapter",
    "open_store",
    "ProfileNotFoundError",
    "resolve_url",
    # Query
    "QueryReport",
    # Schema
    "build_registry",
    "load_schema_directory",
    "Registry",
    # Store
    "ContentStore",
]

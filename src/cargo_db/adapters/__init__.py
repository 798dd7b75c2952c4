"""Database adapters package.

Provides the ``DatabaseClient`` Protocol and the async SQLAlchemy adapter
for PostgreSQL (``asyncpg``) and SQLite (``aiosqlite``).

Usage:
    from cargo_db.adapters import AsyncSQLAdapter, DatabaseClient
"""

from cargo_db.adapters.base import DatabaseClient
from cargo_db.adapters.sql import AsyncSQLAdapter, create_async_engine_pooled

__all__ = [
    "DatabaseClient",
    "AsyncSQLAdapter",
    "create_async_engine_pooled",
]

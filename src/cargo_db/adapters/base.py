"""Database client protocol definition.

Defines the ``DatabaseClient`` Protocol that the query executor, the
insert planner and the table constructor talk to.  All I/O methods are
``async def``; statements are SQLAlchemy Core constructs.

Usage:
    from cargo_db.adapters.base import DatabaseClient

    async def count(client: DatabaseClient) -> int:
        row = await client.fetch_first(select(func.count()).select_from(table("tag")))
        return row["count_1"]
"""

from collections.abc import Callable, Sequence
from typing import Any, Protocol

from sqlalchemy.engine import Connection, Dialect
from sqlalchemy.sql import Executable


class DatabaseClient(Protocol):
    """Database client interface that all adapters must implement.

    Every statement sent through a client is also rendered to SQL text and
    handed to the client's SQL logger, if one was injected.
    """

    @property
    def dialect(self) -> Dialect:
        """SQLAlchemy dialect used to compile statements."""
        ...

    @property
    def dialect_name(self) -> str:
        """Dialect name, e.g. ``"postgresql"`` or ``"sqlite"``."""
        ...

    async def fetch_all(self, statement: Executable) -> list[dict]:
        """Run a query and return every row as a dict keyed by label.

        Example:
            rows = await client.fetch_all(select(literal_column("1").label("one")))
            # [{"one": 1}]
        """
        ...

    async def fetch_first(self, statement: Executable) -> dict | None:
        """Run a query and return its first row, or ``None``."""
        ...

    async def execute(self, statement: Executable | str) -> int:
        """Execute a write statement in its own transaction.

        Returns:
            Number of rows matched by the statement (``rowcount``).
        """
        ...

    async def execute_returning(self, statement: Executable) -> dict | None:
        """Execute a write statement with ``RETURNING`` and return its first row."""
        ...

    async def execute_script(self, statements: Sequence[str]) -> None:
        """Execute raw SQL statements in order on one connection.

        Each statement is committed on its own, so statements that must run
        outside a transaction (e.g. SQLite ``PRAGMA foreign_keys``) work.
        """
        ...

    async def run_sync(self, fn: Callable[[Connection], Any]) -> Any:
        """Run a synchronous callable (e.g. an inspector) on a connection."""
        ...

    async def close(self) -> None:
        """Close the engine and release pooled connections."""
        ...

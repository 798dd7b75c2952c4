"""Concurrent fan-out for query and insert plans.

Usage:
    from cargo_db.query.tasks import gather_all

    ids = await gather_all(*(execute_insert_plan(db, p) for p in plans))
"""

import asyncio
from collections.abc import Awaitable
from typing import Any


async def gather_all(*awaitables: Awaitable[Any]) -> list[Any]:
    """Await ``awaitables`` concurrently and return their results in order.

    Unlike ``asyncio.gather``, the first failure cancels every sibling that
    is still running before the error reaches the caller, so no write of a
    failed plan lands afterwards.  The failure is re-raised as-is rather
    than wrapped in an ``ExceptionGroup``.
    """
    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(_await(aw)) for aw in awaitables]
    except BaseExceptionGroup as errors:
        first = errors.exceptions[0]
        while isinstance(first, BaseExceptionGroup):
            first = first.exceptions[0]
        raise first from None
    return [task.result() for task in tasks]


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable

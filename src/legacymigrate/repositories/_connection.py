"""
Connection handling helper for database operations.

Readers, stores and repositories accept either an AsyncEngine (the normal
case for a migration run) or an AsyncConnection (when a caller wants
several operations to share one transaction, e.g. in tests).
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine


@asynccontextmanager
async def execute_with_connection(
    conn: AsyncConnection | AsyncEngine,
    transactional: bool = True,
) -> AsyncIterator[AsyncConnection]:
    """
    Context manager for executing database operations.

    Args:
        conn: Database connection or engine
        transactional: If True, wrap in transaction (begin).
                       If False, use bare connection (connect).
                       Only applies when conn is an AsyncEngine.

    Yields:
        AsyncConnection ready for execute() calls

    Example:
        >>> async with execute_with_connection(self._conn) as conn:
        ...     await conn.execute(insert_query, params)

        >>> async with execute_with_connection(self._conn, transactional=False) as conn:
        ...     result = await conn.execute(select_query, params)
        ...     return result.fetchall()

    Note:
        A multi-row INSERT issued inside ``transactional=True`` is all or
        nothing: either every row lands or the transaction is rolled back.
    """
    if isinstance(conn, AsyncEngine):
        if transactional:
            async with conn.begin() as connection:
                yield connection
        else:
            async with conn.connect() as connection:
                yield connection
    else:
        # Caller is responsible for transaction management
        yield conn

# app/db/helpers.py
"""
Database helper functions for common patterns.
Reduces boilerplate in the repository layer.

Every helper runs on a connection the caller already holds, so several
statements can share one transaction scope.
"""

import asyncio
from typing import Any

import psycopg
from psycopg import errors as pg_errors

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class DatabaseError(Exception):
    """Custom exception for database operations."""

    def __init__(self, message: str, operation: str = "unknown", recoverable: bool = True):
        super().__init__(message)
        self.operation = operation
        self.recoverable = recoverable


class UniqueConstraintError(DatabaseError):
    """A unique constraint rejected the statement."""

    def __init__(self, message: str, operation: str = "unknown", constraint: str | None = None):
        super().__init__(message, operation=operation, recoverable=False)
        self.constraint = constraint


def _wrap_error(e: psycopg.Error, operation: str) -> DatabaseError:
    if isinstance(e, pg_errors.UniqueViolation):
        constraint = e.diag.constraint_name if e.diag else None
        return UniqueConstraintError(
            f"Unique constraint violated: {constraint or e}",
            operation=operation,
            constraint=constraint,
        )
    return DatabaseError(
        f"Query failed: {e}",
        operation=operation,
        recoverable=isinstance(e, psycopg.OperationalError),
    )


async def fetch_one(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection
) -> dict[str, Any] | None:
    """
    Execute query and return single row as dict.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Connection (usually inside a transaction) to run on

    Returns:
        Dict with row data or None if no results
    """
    try:
        async with connection.cursor() as cur:
            await cur.execute(query, params)
            row = await cur.fetchone()
            return row if row else None

    except psycopg.Error as e:
        logger.error("Database fetch_one error", query=query[:100], error=str(e))
        raise _wrap_error(e, "fetch_one") from e


async def fetch_all(
    query: str, params: tuple = (), *, connection: psycopg.AsyncConnection
) -> list[dict[str, Any]]:
    """
    Execute query and return all rows as list of dicts.

    Args:
        query: SQL query with %s placeholders
        params: Query parameters
        connection: Connection to run on

    Returns:
        List of dicts with row data
    """
    try:
        async with connection.cursor() as cur:
            await cur.execute(query, params)
            return await cur.fetchall()

    except psycopg.Error as e:
        logger.error("Database fetch_all error", query=query[:100], error=str(e))
        raise _wrap_error(e, "fetch_all") from e


async def fetch_val(query: str, params: tuple = (), *, connection: psycopg.AsyncConnection) -> Any:
    """
    Execute query and return single value.

    Returns:
        Single value from first column of first row
    """
    try:
        async with connection.cursor() as cur:
            await cur.execute(query, params)
            row = await cur.fetchone()
            return list(row.values())[0] if row else None

    except psycopg.Error as e:
        logger.error("Database fetch_val error", query=query[:100], error=str(e))
        raise _wrap_error(e, "fetch_val") from e


async def execute_query(query: str, params: tuple = (), *, connection: psycopg.AsyncConnection) -> int:
    """
    Execute query and return number of affected rows.
    """
    try:
        cursor = await connection.execute(query, params)
        return cursor.rowcount

    except psycopg.Error as e:
        logger.error("Database execute error", query=query[:100], error=str(e))
        raise _wrap_error(e, "execute") from e


def with_db_retry(max_retries: int = 3, base_delay: float = 0.1):
    """
    Decorator to retry database operations on temporary failures.

    Only wrap read paths or whole transactions: a retried call must be safe
    to run again from the start.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Base delay between retries (exponential backoff)
    """

    def decorator(func):
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)

                except psycopg.OperationalError as e:
                    if attempt < max_retries:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Database operation failed, retrying",
                            operation=func.__name__,
                            attempt=attempt + 1,
                            max_retries=max_retries,
                            delay=delay,
                            error=str(e),
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            "Database operation failed after all retries",
                            operation=func.__name__,
                            attempts=max_retries + 1,
                            error=str(e),
                        )
                        raise DatabaseError(
                            f"Operation failed after {max_retries} retries: {e}",
                            operation=func.__name__,
                            recoverable=False,
                        ) from e

                except DatabaseError as e:
                    if e.recoverable and attempt < max_retries:
                        delay = base_delay * (2**attempt)
                        logger.warning(
                            "Database operation failed, retrying",
                            operation=func.__name__,
                            attempt=attempt + 1,
                            delay=delay,
                            error=str(e),
                        )
                        await asyncio.sleep(delay)
                        continue
                    raise

        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        return wrapper

    return decorator

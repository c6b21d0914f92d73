"""
Async PostgreSQL connection pool lifecycle for the KPI Portal backend.

The pool is created once in the FastAPI lifespan hook and stored on
`app.state.db_pool`; there is no module-level handle. Request handlers get
a PostgresRepository bound to a connection acquired from that pool (see
kpi_portal.core.dependencies).

Key Functions:
- create_pool(): Open the asyncpg pool from settings
- close_pool(): Gracefully close a pool
- apply_schema(): Run the idempotent DDL in kpi_portal.sql.schema

Connection Pool Configuration (from Settings):
- db_pool_min_size: minimum idle connections kept in pool (default 2)
- db_pool_max_size: maximum connections in pool (default 10)
- db_command_timeout: query timeout in seconds (default 60)

Usage:
    # In the FastAPI lifespan
    pool = await create_pool(settings)
    app.state.db_pool = pool
    ...
    await close_pool(pool)
"""

import logging
from typing import Optional

import asyncpg
from asyncpg import Pool

from kpi_portal.core.config import Settings
from kpi_portal.core.errors import StorageError
from kpi_portal.sql.schema import SCHEMA_STATEMENTS


logger = logging.getLogger(__name__)


async def create_pool(settings: Settings) -> Pool:
    """
    Open the asyncpg connection pool.

    Args:
        settings: Application settings carrying DATABASE_URL and pool sizing.

    Returns:
        Pool: The asyncpg connection pool instance.

    Raises:
        StorageError: If DATABASE_URL is missing or the database is unreachable.

    Example:
        @asynccontextmanager
        async def lifespan(app: FastAPI):
            app.state.db_pool = await create_pool(get_settings())
            yield
            await close_pool(app.state.db_pool)
    """
    if not settings.database_url:
        raise StorageError("DATABASE_URL is not configured", operation="create_pool")

    try:
        pool = await asyncpg.create_pool(
            dsn=settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
        )
    except (asyncpg.PostgresError, OSError) as exc:
        raise StorageError(f"Could not connect to database: {exc}", operation="create_pool") from exc

    if settings.db_create_schema:
        await apply_schema(pool)
    return pool


async def apply_schema(pool: Pool) -> None:
    """
    Create any missing tables and indexes in one transaction.

    Raises:
        StorageError: If a DDL statement fails.
    """
    try:
        async with pool.acquire() as conn:
            async with conn.transaction():
                for statement in SCHEMA_STATEMENTS:
                    await conn.execute(statement)
    except (asyncpg.PostgresError, OSError) as exc:
        raise StorageError(f"Schema setup failed: {exc}", operation="apply_schema") from exc
    logger.info("Database schema verified (%d statements)", len(SCHEMA_STATEMENTS))


async def close_pool(pool: Optional[Pool]) -> None:
    """
    Close the pool gracefully, waiting for connections to be released.

    Idempotent: passing None does nothing.
    """
    if pool is not None:
        await pool.close()

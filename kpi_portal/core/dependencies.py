"""
FastAPI dependency injection module for the KPI Portal backend.

Provides the per-request collaborators route handlers receive:

- get_repository: Repository for this request. With the postgres backend a
  connection is acquired from `app.state.db_pool` and released when the
  request ends; with the memory backend the shared `app.state.repository`
  is yielded.
- get_settings_dependency: The Settings the app was created with
  (`app.state.settings`), else the cached singleton.
- get_clock: Callable returning the current instant; overridden in tests
  to pin "now".
- get_date_range: The `from`/`to` query parameters normalized into a
  DateRange in the reporting timezone.

Type aliases (recommended in signatures):
    RepositoryDep, SettingsDep, ClockDep, DateRangeDep

Usage:
    @router.get("/summary")
    async def summary(repo: RepositoryDep, settings: SettingsDep, clock: ClockDep):
        ...

In tests:
    app.dependency_overrides[get_clock] = lambda: fixed_clock
"""

from datetime import datetime, timezone
from typing import Annotated, AsyncGenerator, Callable, Optional

from fastapi import Depends, Query, Request

from kpi_portal.core.config import Settings, get_settings
from kpi_portal.core.errors import StorageError
from kpi_portal.repositories import PostgresRepository, Repository
from kpi_portal.services.date_range import DateRange, normalize_date_range


Clock = Callable[[], datetime]


# =============================================================================
# Repository Dependency
# =============================================================================

async def get_repository(request: Request) -> AsyncGenerator[Repository, None]:
    """
    Yield the Repository for the current request.

    Yields:
        Repository: In-memory repository, or a PostgresRepository bound to a
            pooled connection that is released after the response.

    Raises:
        StorageError: If neither a repository nor a pool was set up at startup.
    """
    repository = getattr(request.app.state, "repository", None)
    if repository is not None:
        yield repository
        return

    pool = getattr(request.app.state, "db_pool", None)
    if pool is None:
        raise StorageError("Database pool is not initialized", operation="get_repository")

    async with pool.acquire() as connection:
        yield PostgresRepository(connection)


# =============================================================================
# Settings and clock
# =============================================================================

def get_settings_dependency(request: Request) -> Settings:
    """
    Return the Settings passed to create_app(), falling back to get_settings().

    Tests may still use app.dependency_overrides[get_settings_dependency].
    """
    settings = getattr(request.app.state, "settings", None)
    return settings if settings is not None else get_settings()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_clock() -> Clock:
    """Return the callable used for "now" (UTC wall clock)."""
    return _utc_now


# =============================================================================
# Reporting window
# =============================================================================

def get_date_range(
    settings: Annotated[Settings, Depends(get_settings_dependency)],
    clock: Annotated[Clock, Depends(get_clock)],
    from_: Optional[str] = Query(None, alias="from", description="First day (YYYY-MM-DD); defaults to this Monday"),
    to: Optional[str] = Query(None, description="Last day (YYYY-MM-DD); defaults to today"),
) -> DateRange:
    """
    Normalize the `from`/`to` query parameters in the reporting timezone.

    Raises:
        InvalidDateError: If a bound cannot be parsed.
        ValidationError: If from is after to.
    """
    return normalize_date_range(from_, to, tz=settings.reporting_timezone, now=clock())


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

RepositoryDep = Annotated[Repository, Depends(get_repository)]

SettingsDep = Annotated[Settings, Depends(get_settings_dependency)]

ClockDep = Annotated[Clock, Depends(get_clock)]

DateRangeDep = Annotated[DateRange, Depends(get_date_range)]

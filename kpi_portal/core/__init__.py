"""
Core infrastructure package for the KPI Portal backend.

Provides:
- Configuration management via pydantic-settings
- The error taxonomy rendered by the API exception handlers
- asyncpg pool lifecycle helpers

Re-exports the commonly used pieces so other modules can write:

    from kpi_portal.core import get_settings, NotFoundError

FastAPI dependencies live in kpi_portal.core.dependencies and are imported
from there directly (they depend on the repository package).
"""

# =============================================================================
# Re-exports from kpi_portal.core.config
# =============================================================================
from kpi_portal.core.config import Settings, get_settings

# =============================================================================
# Re-exports from kpi_portal.core.errors
# =============================================================================
from kpi_portal.core.errors import (
    PortalError,
    ValidationError,
    InvalidDateError,
    NotFoundError,
    AlreadyPaidError,
    ConflictError,
    StorageError,
)

# =============================================================================
# Re-exports from kpi_portal.core.database
# =============================================================================
from kpi_portal.core.database import create_pool, close_pool, apply_schema

__all__ = [
    # Configuration management (from config.py)
    'Settings',
    'get_settings',
    # Errors (from errors.py)
    'PortalError',
    'ValidationError',
    'InvalidDateError',
    'NotFoundError',
    'AlreadyPaidError',
    'ConflictError',
    'StorageError',
    # Database pool lifecycle (from database.py)
    'create_pool',
    'close_pool',
    'apply_schema',
]

"""
Storage boundary for the KPI Portal backend.

- base.Repository: abstract interface every service receives explicitly
- memory.InMemoryRepository: dict tables, used by tests and STORAGE_BACKEND=memory
- postgres.PostgresRepository: asyncpg, one connection per request
"""

from kpi_portal.repositories.base import InstallmentSpec, Repository
from kpi_portal.repositories.memory import InMemoryRepository
from kpi_portal.repositories.postgres import PostgresRepository

__all__ = [
    "InstallmentSpec",
    "Repository",
    "InMemoryRepository",
    "PostgresRepository",
]

"""
SQL query module for the KPI Portal backend.

Provides the statements used by PostgresRepository:
- schema: Idempotent DDL applied at startup when requested
- report_queries: Filtered range reads for every record type
- plan_queries: Guarded writes for schedules, settlement, attribution and onboarding

Keeping SQL here leaves the repository class focused on binding parameters
and validating rows into record types.

Example usage:
    from kpi_portal.sql import report_queries

    rows = await conn.fetch(report_queries.LIST_PAYMENTS, start, end, None, None)
"""

from kpi_portal.sql import plan_queries, report_queries
from kpi_portal.sql.schema import SCHEMA_STATEMENTS

__all__ = [
    "plan_queries",
    "report_queries",
    "SCHEMA_STATEMENTS",
]

"""
KPI Portal Backend Package.

FastAPI service layer for the sales, marketing and customer-success reporting
portal. Aggregates daily activity and transactions into KPI summaries and
manages multi-installment payment plans for enrolled customers.

Subpackages:
    - api: FastAPI route handlers
    - core: Configuration, errors, database, and dependencies
    - models: Record types, response schemas and enums
    - repositories: Storage collaborators (PostgreSQL and in-memory)
    - services: Aggregation, attribution, payment-plan and summary logic
    - sql: Parameterized SQL queries
"""

__version__ = "1.0.0"

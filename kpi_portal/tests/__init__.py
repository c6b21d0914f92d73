'''
KPI Portal Backend Test Suite

Test Modules:
-------------
- test_date_range.py: Reporting window normalization
  - Day alignment in the reporting timezone, DST boundaries
  - Week-to-date defaults, idempotence, invalid and inverted windows

- test_aggregation.py: Generic metric aggregation
  - Guarded ratios (never NaN/Infinity)
  - Field totals, per-member breakdowns, pacing, per-day folds

- test_attribution.py: Revenue source and owner attribution
  - Most recent lead wins, case-insensitive email match
  - Reassignment with optimistic version checks

- test_payment_plans.py: Payment plan lifecycle
  - Versioned schedule generation (SPLIT / PIF)
  - Settlement idempotence, derived OVERDUE status

- test_sales.py, test_home.py, test_marketing.py, test_csm.py: Dashboards
  - CSM student history: check-in outcomes and weekly progress

- test_api.py: HTTP contract and error rendering

- test_postgres_repository.py: asyncpg repository, SQL builders, pool lifecycle

Running Tests:
--------------
    pip install -e ".[test]"
    pytest kpi_portal/tests -v

Configuration:
--------------
See conftest.py for shared fixtures and the seeded dataset.
'''

__all__ = []

"""
KPI Portal services.

Business logic for the portal. Services hold no process-wide state; the
ones that read or write records take a `Repository` argument.

Services:
- date_range: Reporting window normalization
- aggregation: Sums, per-member breakdowns, guarded ratios, pacing
- attribution: Revenue source and closer/setter attribution, reassignment
- payment_plans: Versioned installment schedules and settlement
- sales / home / ads / email / csm: KPI summary builders

Only the storage-free helpers are re-exported here; import the
repository-backed services from their modules.
"""

from kpi_portal.services.date_range import (
    DateRange,
    normalize_date_range,
    days_between,
    days_in_current_month,
    start_of_month,
    format_date,
    range_info,
)
from kpi_portal.services.aggregation import (
    MetricSummary,
    safe_ratio,
    sum_fields,
    breakdown_by_member,
    aggregate,
    per_day_average,
    monthly_pacing,
)

__all__ = [
    "DateRange",
    "normalize_date_range",
    "days_between",
    "days_in_current_month",
    "start_of_month",
    "format_date",
    "range_info",
    "MetricSummary",
    "safe_ratio",
    "sum_fields",
    "breakdown_by_member",
    "aggregate",
    "per_day_average",
    "monthly_pacing",
]

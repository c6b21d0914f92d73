"""
Generic metric aggregation for the KPI Portal backend.

Pure folds over record sets already fetched from the repository: totals,
per-actor breakdowns, guarded ratios, per-day averages and monthly pacing.
Nothing here touches storage; the summary builders pick which fields and
formulas to combine.

Rules:
- Missing/None numeric fields count as 0.
- Every ratio goes through `safe_ratio`: a zero (or non-finite) denominator
  yields 0, never NaN/Infinity and never an exception.
- Per-actor breakdowns join display names from TeamMember at read time and
  sort descending by a primary field.
- Monthly pacing always projects over the *current* calendar month's day
  count, whichever month the window covers.
- Empty record sets aggregate to zeroed summaries.

Key Functions:
- safe_ratio: Guarded division
- sum_fields: Totals for a set of numeric fields
- breakdown_by_member: Per-member sums with names joined in, sorted
- aggregate: Filter + totals + breakdown in one call
- per_day_average / monthly_pacing: Rate projections over a DateRange
- group_sum / daily_totals: Keyed and per-day folds used by charts
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Union

import pandas as pd

from kpi_portal.core.errors import ValidationError
from kpi_portal.models.enums import TeamMemberRole
from kpi_portal.models.records import TeamMember
from kpi_portal.services.date_range import DateRange, days_between, days_in_current_month


logger = logging.getLogger(__name__)

UNKNOWN_MEMBER_LABEL = "Unknown"

Number = Union[int, float]


# =============================================================================
# Scalar helpers
# =============================================================================


def to_number(value: Any) -> float:
    """Coerce a possibly-missing numeric value to float (None -> 0)."""
    if value is None:
        return 0.0
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Expected a number, got {value!r}") from exc
    if math.isnan(number):
        return 0.0
    return number


def plain_number(value: Any) -> Number:
    """Return an int when the value is integral, else a float (numpy scalars included)."""
    number = to_number(value)
    if math.isfinite(number) and number.is_integer():
        return int(number)
    return number


def safe_ratio(numerator: Any, denominator: Any) -> float:
    """
    Guarded division.

    Args:
        numerator: Top of the ratio (None counts as 0).
        denominator: Bottom of the ratio (None counts as 0).

    Returns:
        numerator / denominator, or 0.0 when the denominator is 0 or the
        result would not be finite.

    Example:
        >>> safe_ratio(4, 10)
        0.4
        >>> safe_ratio(5, 0)
        0.0
    """
    top = to_number(numerator)
    bottom = to_number(denominator)
    if bottom == 0 or not math.isfinite(bottom) or not math.isfinite(top):
        return 0.0
    result = top / bottom
    return result if math.isfinite(result) else 0.0


# =============================================================================
# Totals
# =============================================================================


def _check_fields(records: Sequence[Any], fields: Sequence[str]) -> None:
    if not records:
        return
    known = type(records[0]).model_fields if hasattr(type(records[0]), "model_fields") else None
    if known is None:
        return
    unknown = [f for f in fields if f not in known]
    if unknown:
        raise ValidationError(
            f"Unknown field(s) for {type(records[0]).__name__}: {', '.join(unknown)}",
            field="fields",
        )


def sum_fields(records: Sequence[Any], fields: Sequence[str]) -> Dict[str, Number]:
    """
    Sum numeric fields across records.

    Args:
        records: Record objects exposing the fields as attributes.
        fields: Field names to total.

    Returns:
        Mapping of field -> total. Every requested field is present, 0 when
        no record carries a value.
    """
    _check_fields(records, fields)
    totals = {name: 0.0 for name in fields}
    for record in records:
        for name in fields:
            totals[name] += to_number(getattr(record, name, None))
    return {name: plain_number(value) for name, value in totals.items()}


def group_sum(
    items: Iterable[Any],
    key: Callable[[Any], Hashable],
    value: Callable[[Any], Any],
) -> Dict[Hashable, Number]:
    """
    Sum `value(item)` per `key(item)`. Items whose key is None are skipped.

    Insertion order of first appearance is preserved.
    """
    totals: Dict[Hashable, float] = {}
    for item in items:
        k = key(item)
        if k is None:
            continue
        totals[k] = totals.get(k, 0.0) + to_number(value(item))
    return {k: plain_number(v) for k, v in totals.items()}


# =============================================================================
# Per-actor breakdowns
# =============================================================================


def breakdown_by_member(
    records: Sequence[Any],
    fields: Sequence[str],
    members: Mapping[int, TeamMember],
    sort_by: Optional[str] = None,
    member_field: str = "team_member_id",
    unknown_label: str = UNKNOWN_MEMBER_LABEL,
) -> List[Dict[str, Any]]:
    """
    Group records by owning team member and sum each field per member.

    Display names are joined from `members` at read time; ids with no
    directory entry show as `unknown_label`.

    Args:
        records: Records carrying `member_field`.
        fields: Numeric fields to sum per member.
        members: Team member directory keyed by id.
        sort_by: Field to sort on, descending. Defaults to the first field.
        member_field: Attribute holding the owning member id.
        unknown_label: Name used for ids missing from the directory.

    Returns:
        One dict per member: {"teamMemberId", "rep", <field>: total, ...},
        sorted descending by `sort_by`, ties broken by name.
    """
    if not fields:
        raise ValidationError("At least one field is required for a breakdown", field="fields")
    primary = sort_by or fields[0]
    if primary not in fields:
        raise ValidationError(f"Sort field {primary!r} is not among the requested fields", field="sort_by")
    if not records:
        return []
    _check_fields(records, fields)

    frame = pd.DataFrame(
        [
            {
                member_field: getattr(record, member_field),
                **{name: to_number(getattr(record, name, None)) for name in fields},
            }
            for record in records
        ]
    )
    grouped = frame.groupby(member_field, sort=False)[list(fields)].sum()

    rows: List[Dict[str, Any]] = []
    for member_id, sums in grouped.iterrows():
        member = members.get(int(member_id))
        row: Dict[str, Any] = {
            "teamMemberId": int(member_id),
            "rep": member.name if member else unknown_label,
        }
        for name in fields:
            row[name] = plain_number(sums[name])
        rows.append(row)

    rows.sort(key=lambda r: (-to_number(r[primary]), r["rep"]))
    return rows


# =============================================================================
# Filter + fold
# =============================================================================


@dataclass
class MetricSummary:
    """Totals plus per-member rows for one aggregation request."""
    totals: Dict[str, Number] = field(default_factory=dict)
    breakdown: List[Dict[str, Any]] = field(default_factory=list)
    record_count: int = 0

    def get(self, name: str) -> Number:
        return self.totals.get(name, 0)


def _coerce_role(role: Union[TeamMemberRole, str, None]) -> Optional[TeamMemberRole]:
    if role is None or isinstance(role, TeamMemberRole):
        return role
    try:
        return TeamMemberRole(str(role).upper())
    except ValueError as exc:
        raise ValidationError(f"Unknown role: {role}", field="role") from exc


def filter_records(
    records: Iterable[Any],
    date_range: Optional[DateRange] = None,
    *,
    date_field: str = "date",
    members: Optional[Mapping[int, TeamMember]] = None,
    role: Union[TeamMemberRole, str, None] = None,
    member_ids: Optional[Iterable[int]] = None,
    member_field: str = "team_member_id",
) -> List[Any]:
    """
    Keep records inside the window and, optionally, owned by a role or member set.

    Raises:
        ValidationError: If `role` is not a known role, or a role filter is
            requested without a member directory.
    """
    wanted_role = _coerce_role(role)
    if wanted_role is not None and members is None:
        raise ValidationError("Filtering by role requires the team member directory", field="role")
    wanted_ids = set(member_ids) if member_ids is not None else None

    kept = []
    for record in records:
        if date_range is not None and not date_range.contains(getattr(record, date_field)):
            continue
        owner = getattr(record, member_field, None)
        if wanted_ids is not None and owner not in wanted_ids:
            continue
        if wanted_role is not None:
            member = members.get(owner) if owner is not None else None
            if member is None or member.role != wanted_role:
                continue
        kept.append(record)
    return kept


def aggregate(
    records: Iterable[Any],
    date_range: Optional[DateRange],
    fields: Sequence[str],
    *,
    members: Optional[Mapping[int, TeamMember]] = None,
    role: Union[TeamMemberRole, str, None] = None,
    member_ids: Optional[Iterable[int]] = None,
    sort_by: Optional[str] = None,
    date_field: str = "date",
    member_field: str = "team_member_id",
) -> MetricSummary:
    """
    Filter a record set and compute totals plus a per-member breakdown.

    Args:
        records: Candidate records (may already be range-filtered by storage).
        date_range: Window to keep; None keeps everything.
        fields: Numeric fields to total.
        members: Team member directory; needed for role filters and names.
        role: Keep only records owned by members of this role.
        member_ids: Keep only records owned by these members.
        sort_by: Breakdown sort field (descending); defaults to fields[0].
        date_field: Attribute holding each record's date/instant.
        member_field: Attribute holding the owning member id.

    Returns:
        MetricSummary. An empty selection yields zeroed totals and no rows.

    Example:
        >>> summary = aggregate(records, window, ["live_calls", "closes"],
        ...                     members=directory, role="CLOSER")
        >>> summary.totals
        {'live_calls': 10, 'closes': 4}
    """
    selected = filter_records(
        records,
        date_range,
        date_field=date_field,
        members=members,
        role=role,
        member_ids=member_ids,
        member_field=member_field,
    )
    totals = sum_fields(selected, fields)
    breakdown = (
        breakdown_by_member(selected, fields, members, sort_by=sort_by, member_field=member_field)
        if members is not None
        else []
    )
    logger.debug("Aggregated %d records over fields %s", len(selected), list(fields))
    return MetricSummary(totals=totals, breakdown=breakdown, record_count=len(selected))


# =============================================================================
# Rates over time
# =============================================================================


def per_day_average(total: Any, date_range: DateRange) -> float:
    """total / inclusive day count of the window."""
    return safe_ratio(total, days_between(date_range))


def monthly_pacing(total: Any, date_range: DateRange, now: Optional[datetime] = None) -> float:
    """
    Project a window total over a month: avgPerDay * daysInCurrentCalendarMonth.

    The month length is always the current month's (relative to `now`),
    even when the window covers a different month.
    """
    return per_day_average(total, date_range) * days_in_current_month(now, date_range.tz)


def daily_totals(
    items: Iterable[Any],
    day: Callable[[Any], date],
    fields: Mapping[str, Callable[[Any], Any]],
) -> pd.DataFrame:
    """
    Per-day sums for chart series.

    Args:
        items: Records to fold.
        day: Returns the calendar day an item belongs to.
        fields: Output column name -> value getter.

    Returns:
        DataFrame indexed by ISO date string (ascending) with one column per
        field, plus a `count` column with the number of items per day.
    """
    rows = [
        {"day": day(item).isoformat(), "count": 1, **{name: to_number(get(item)) for name, get in fields.items()}}
        for item in items
    ]
    columns = ["count", *fields.keys()]
    if not rows:
        return pd.DataFrame(columns=columns)
    frame = pd.DataFrame(rows)
    return frame.groupby("day", sort=True)[columns].sum()

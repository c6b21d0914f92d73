"""
Email broadcast summary builders.

Open and click rates are stored as percentages (0-100). Averages are plain
means over broadcasts (not recipient-weighted) and are returned as strings
with one decimal, e.g. "42.5".
"""

import logging
from typing import List, Optional

from kpi_portal.models.schemas import BroadcastRow, ChartSeries, EmailSummary, RangeInfo, TimeSeriesChart
from kpi_portal.repositories.base import Repository
from kpi_portal.services.aggregation import daily_totals, safe_ratio, sum_fields
from kpi_portal.services.date_range import DateRange, range_info


logger = logging.getLogger(__name__)


def one_decimal(value: float) -> str:
    return f"{value:.1f}"


async def build_email_summary(repo: Repository, date_range: DateRange) -> EmailSummary:
    broadcasts = await repo.list_email_broadcasts(date_range)
    totals = sum_fields(broadcasts, ["recipients_count", "open_rate", "click_rate"])
    count = len(broadcasts)
    return EmailSummary(
        range=RangeInfo(**range_info(date_range)),
        totalBroadcasts=count,
        totalRecipients=totals["recipients_count"],
        avgOpenRate=one_decimal(safe_ratio(totals["open_rate"], count)),
        avgClickRate=one_decimal(safe_ratio(totals["click_rate"], count)),
    )


async def list_broadcasts(
    repo: Repository,
    limit: int,
    date_range: Optional[DateRange] = None,
) -> List[BroadcastRow]:
    """Most recent broadcasts first, at most `limit` rows; rates as "12.3%"."""
    broadcasts = await repo.list_email_broadcasts(date_range, limit=limit)
    return [
        BroadcastRow(
            id=b.id,
            subject=b.subject or "No Subject",
            sentAt=b.sent_at,
            recipients=b.recipients_count,
            openRate=f"{one_decimal(b.open_rate)}%",
            clickRate=f"{one_decimal(b.click_rate)}%",
        )
        for b in broadcasts
    ]


async def build_broadcasts_over_time(repo: Repository, date_range: DateRange) -> TimeSeriesChart:
    """Broadcasts sent and recipients reached per day (reporting-timezone days)."""
    broadcasts = await repo.list_email_broadcasts(date_range)
    zone = date_range.tzinfo
    daily = daily_totals(
        broadcasts,
        day=lambda b: b.sent_at.astimezone(zone).date(),
        fields={"recipients": lambda b: b.recipients_count},
    )
    if daily.empty:
        return TimeSeriesChart()
    return TimeSeriesChart(
        categories=list(daily.index),
        series=[
            ChartSeries(name="Broadcasts Sent", data=[float(v) for v in daily["count"]]),
            ChartSeries(name="Recipients", data=[float(v) for v in daily["recipients"]]),
        ],
    )

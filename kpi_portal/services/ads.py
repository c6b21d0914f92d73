"""
Ads summary builders.

All ad figures are computed over AdPerformance rows inside the window with
spend > 0; zero-spend rows (paused campaigns still reporting impressions)
are ignored everywhere.

- build_ads_summary: spend, reach and cost-per-lead cards
- build_spend_by_campaign: daily spend per campaign as a chart
- build_campaign_metrics: per-campaign daily points
- build_ad_performance: CTR / CPC / CPL totals
"""

import logging
from typing import List

import pandas as pd

from kpi_portal.models.records import AdPerformance
from kpi_portal.models.schemas import (
    AdPerformanceSummary,
    AdsSummary,
    CampaignMetrics,
    CampaignPoint,
    ChartSeries,
    RangeInfo,
    TimeSeriesChart,
)
from kpi_portal.repositories.base import Repository
from kpi_portal.services.aggregation import per_day_average, safe_ratio, sum_fields
from kpi_portal.services.date_range import DateRange, range_info


logger = logging.getLogger(__name__)

AD_FIELDS = ["spend", "impressions", "clicks", "leads", "purchases", "revenue"]


async def _spending_rows(repo: Repository, date_range: DateRange) -> List[AdPerformance]:
    rows = await repo.list_ad_performance(date_range)
    return [r for r in rows if date_range.contains(r.date) and r.spend > 0]


def _campaign_label(row: AdPerformance) -> str:
    return row.campaign_name or f"Campaign {row.campaign_id}"


async def build_ads_summary(repo: Repository, date_range: DateRange) -> AdsSummary:
    """
    Ads cards.

    cpl = totalSpend / leadsCaptured and avgDailySpend = totalSpend /
    daysInRange, both guarded. Values are not rounded.
    """
    rows = await _spending_rows(repo, date_range)
    totals = sum_fields(rows, AD_FIELDS)

    return AdsSummary(
        range=RangeInfo(**range_info(date_range)),
        totalSpend=totals["spend"],
        activeCampaigns=len({r.campaign_id for r in rows}),
        avgDailySpend=per_day_average(totals["spend"], date_range),
        platformCount=len({r.platform for r in rows if r.platform}),
        impressions=totals["impressions"],
        clicks=totals["clicks"],
        leadsCaptured=totals["leads"],
        conversions=totals["purchases"],
        cpl=safe_ratio(totals["spend"], totals["leads"]),
        revenueAttributed=totals["revenue"],
    )


async def build_spend_by_campaign(repo: Repository, date_range: DateRange) -> TimeSeriesChart:
    """
    Daily spend per campaign.

    Returns:
        TimeSeriesChart with ascending ISO dates as categories and one series
        per campaign (0 on days a campaign did not spend).
    """
    rows = await _spending_rows(repo, date_range)
    if not rows:
        return TimeSeriesChart()

    frame = pd.DataFrame(
        [{"day": r.date.isoformat(), "campaign_id": r.campaign_id, "spend": r.spend} for r in rows]
    )
    labels = {}
    for r in rows:
        labels.setdefault(r.campaign_id, _campaign_label(r))

    pivot = frame.pivot_table(index="day", columns="campaign_id", values="spend", aggfunc="sum", fill_value=0)
    pivot = pivot.sort_index()
    return TimeSeriesChart(
        categories=list(pivot.index),
        series=[
            ChartSeries(name=labels[campaign_id], data=[float(v) for v in pivot[campaign_id]])
            for campaign_id in pivot.columns
        ],
    )


async def build_campaign_metrics(repo: Repository, date_range: DateRange) -> List[CampaignMetrics]:
    """Per-campaign daily points, campaigns in order of first appearance."""
    rows = await _spending_rows(repo, date_range)
    campaigns = {}
    for r in rows:
        entry = campaigns.get(r.campaign_id)
        if entry is None:
            entry = campaigns[r.campaign_id] = CampaignMetrics(
                campaignId=r.campaign_id,
                campaign=_campaign_label(r),
                platform=r.platform,
                points=[],
            )
        entry.points.append(CampaignPoint(
            date=r.date.isoformat(),
            spend=r.spend,
            impressions=r.impressions,
            leads=r.leads,
            revenue=r.revenue,
        ))
    return list(campaigns.values())


async def build_ad_performance(repo: Repository, date_range: DateRange) -> AdPerformanceSummary:
    """avgCTR is a percentage (clicks per 100 impressions); CPC and CPL are per click / lead."""
    rows = await _spending_rows(repo, date_range)
    totals = sum_fields(rows, ["impressions", "clicks", "leads", "spend"])
    return AdPerformanceSummary(
        range=RangeInfo(**range_info(date_range)),
        totalImpressions=totals["impressions"],
        totalClicks=totals["clicks"],
        totalLeads=totals["leads"],
        totalSpend=totals["spend"],
        avgCTR=safe_ratio(totals["clicks"], totals["impressions"]) * 100,
        avgCPC=safe_ratio(totals["spend"], totals["clicks"]),
        avgCPL=safe_ratio(totals["spend"], totals["leads"]),
    )

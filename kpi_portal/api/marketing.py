"""
FastAPI router module for marketing dashboards (ads and email).

Ads endpoints (spend > 0 rows only):
- GET /v1/ads/summary
- GET /v1/ads/spend-by-campaign
- GET /v1/ads/campaign-metrics
- GET /v1/ads/performance

Email endpoints:
- GET /v1/email/summary
- GET /v1/email/broadcasts
- GET /v1/email/broadcasts-over-time
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from kpi_portal.core.dependencies import DateRangeDep, RepositoryDep, SettingsDep
from kpi_portal.models.schemas import (
    AdPerformanceSummary,
    AdsSummary,
    BroadcastRow,
    CampaignMetrics,
    EmailSummary,
    TimeSeriesChart,
)
from kpi_portal.services import ads, email


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["marketing"])


class CampaignMetricsResponse(BaseModel):
    campaigns: List[CampaignMetrics] = Field(default_factory=list)


class BroadcastListResponse(BaseModel):
    broadcasts: List[BroadcastRow] = Field(default_factory=list)


# =============================================================================
# Ads
# =============================================================================


@router.get("/ads/summary", response_model=AdsSummary)
async def get_ads_summary(repo: RepositoryDep, date_range: DateRangeDep) -> AdsSummary:
    return await ads.build_ads_summary(repo, date_range)


@router.get("/ads/spend-by-campaign", response_model=TimeSeriesChart)
async def get_spend_by_campaign(repo: RepositoryDep, date_range: DateRangeDep) -> TimeSeriesChart:
    """Daily spend, one series per campaign, 0 on days a campaign did not spend."""
    return await ads.build_spend_by_campaign(repo, date_range)


@router.get("/ads/campaign-metrics", response_model=CampaignMetricsResponse)
async def get_campaign_metrics(repo: RepositoryDep, date_range: DateRangeDep) -> CampaignMetricsResponse:
    return CampaignMetricsResponse(campaigns=await ads.build_campaign_metrics(repo, date_range))


@router.get("/ads/performance", response_model=AdPerformanceSummary)
async def get_ad_performance(repo: RepositoryDep, date_range: DateRangeDep) -> AdPerformanceSummary:
    return await ads.build_ad_performance(repo, date_range)


# =============================================================================
# Email
# =============================================================================


@router.get("/email/summary", response_model=EmailSummary)
async def get_email_summary(repo: RepositoryDep, date_range: DateRangeDep) -> EmailSummary:
    return await email.build_email_summary(repo, date_range)


@router.get("/email/broadcasts", response_model=BroadcastListResponse)
async def get_broadcasts(
    repo: RepositoryDep,
    settings: SettingsDep,
    limit: Optional[int] = Query(None, ge=1, description="Number of broadcasts; defaults to BROADCAST_LIST_LIMIT"),
) -> BroadcastListResponse:
    """Most recent broadcasts first, regardless of the reporting window."""
    limit = min(limit or settings.broadcast_list_limit, settings.max_page_size)
    return BroadcastListResponse(broadcasts=await email.list_broadcasts(repo, limit))


@router.get("/email/broadcasts-over-time", response_model=TimeSeriesChart)
async def get_broadcasts_over_time(repo: RepositoryDep, date_range: DateRangeDep) -> TimeSeriesChart:
    return await email.build_broadcasts_over_time(repo, date_range)

"""
FastAPI router module for the home dashboard.

Endpoints:
- GET /home/summary: cards, cash collected by source, role pie charts
- GET /home/transactions: recent PAID/REFUNDED payments, paginated
"""

import logging
from typing import Optional

from fastapi import APIRouter, Query

from kpi_portal.core.dependencies import ClockDep, DateRangeDep, RepositoryDep, SettingsDep
from kpi_portal.models.schemas import HomeSummaryResponse, TransactionsResponse
from kpi_portal.services.home import build_home_summary, build_transactions


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/home", tags=["home"])


@router.get("/summary", response_model=HomeSummaryResponse)
async def get_home_summary(
    repo: RepositoryDep,
    settings: SettingsDep,
    date_range: DateRangeDep,
    clock: ClockDep,
) -> HomeSummaryResponse:
    """
    Home dashboard for the window.

    overduePayments reflects installments overdue as of now, independent
    of the window.
    """
    return await build_home_summary(repo, date_range, settings, now=clock())


@router.get("/transactions", response_model=TransactionsResponse)
async def get_transactions(
    repo: RepositoryDep,
    settings: SettingsDep,
    date_range: DateRangeDep,
    page: int = Query(1, ge=1, description="1-based page number"),
    limit: Optional[int] = Query(None, ge=1, description="Page size; defaults to DEFAULT_PAGE_SIZE"),
) -> TransactionsResponse:
    """
    Payments and refunds in the window, newest first.

    Refunds carry negative values. `total` counts every matching row, not
    just the page.
    """
    return await build_transactions(repo, date_range, settings, page=page, limit=limit)

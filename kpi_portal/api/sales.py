"""
FastAPI router module for the sales dashboard.

Endpoints:
- GET /sales/top-cards: company-wide sales cards
- GET /sales/closers: closer metrics, per-closer rows and payments table
- GET /sales/setters: setter metrics and per-setter rows
- GET /sales/dm-setters: DM setter metrics and per-DM-setter rows
- GET /team-members: active team members for the member filter

Every summary endpoint accepts `from`/`to` (YYYY-MM-DD, reporting timezone)
and, where it breaks down by rep, an optional `member` name filter.
Errors propagate as PortalError and are rendered by the handlers in
kpi_portal.main.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from kpi_portal.core.dependencies import ClockDep, DateRangeDep, RepositoryDep, SettingsDep
from kpi_portal.models.enums import TeamMemberRole
from kpi_portal.models.schemas import (
    ClosersResponse,
    DmSettersResponse,
    SalesTopCardsResponse,
    SettersResponse,
    TeamMemberOption,
)
from kpi_portal.services import sales


logger = logging.getLogger(__name__)

router = APIRouter(tags=["sales"])

MEMBER_QUERY = Query(None, description="Team member name (case-insensitive) to filter metrics to")


class TeamMembersResponse(BaseModel):
    """Response model for the team member directory."""
    members: List[TeamMemberOption] = Field(default_factory=list)


@router.get("/sales/top-cards", response_model=SalesTopCardsResponse)
async def get_sales_top_cards(
    repo: RepositoryDep,
    date_range: DateRangeDep,
    clock: ClockDep,
) -> SalesTopCardsResponse:
    """
    Company-wide sales cards for the window.

    showUpRate = totalBookedCalls / liveCalls; companyMonthlyPacing projects
    the window's cash per day over the current calendar month.
    """
    return await sales.build_sales_top_cards(repo, date_range, now=clock())


@router.get("/sales/closers", response_model=ClosersResponse)
async def get_closers(
    repo: RepositoryDep,
    settings: SettingsDep,
    date_range: DateRangeDep,
    clock: ClockDep,
    member: Optional[str] = MEMBER_QUERY,
) -> ClosersResponse:
    return await sales.build_closers_report(repo, date_range, settings, member=member, now=clock())


@router.get("/sales/setters", response_model=SettersResponse)
async def get_setters(
    repo: RepositoryDep,
    date_range: DateRangeDep,
    clock: ClockDep,
    member: Optional[str] = MEMBER_QUERY,
) -> SettersResponse:
    return await sales.build_setters_report(repo, date_range, member=member, now=clock())


@router.get("/sales/dm-setters", response_model=DmSettersResponse)
async def get_dm_setters(
    repo: RepositoryDep,
    date_range: DateRangeDep,
    member: Optional[str] = MEMBER_QUERY,
) -> DmSettersResponse:
    return await sales.build_dm_setters_report(repo, date_range, member=member)


@router.get("/team-members", response_model=TeamMembersResponse)
async def get_team_members(
    repo: RepositoryDep,
    role: Optional[TeamMemberRole] = Query(None, description="Only members of this role"),
) -> TeamMembersResponse:
    """Active team members sorted by name."""
    return TeamMembersResponse(members=await sales.list_team_directory(repo, role))

"""
FastAPI router module for customer success and payment plans.

Customer success:
- GET /csm/summary: member, balance, risk and onboarding cards
- GET /csm/high-risk: clients whose latest check-in satisfaction is <= 6
- GET /csm/active: ACTIVE enrollments with plan and cash details
- GET /csm/enrollments/{enrollment_id}/onboarding: checklist steps
- PATCH /csm/enrollments/{enrollment_id}/onboarding: set one step

Student history:
- GET /csm/students/{student_id}/enrollments: all enrollments, newest first
- GET /csm/students/{student_id}/check-ins: check-ins of the latest enrollment
- PATCH /csm/students/{student_id}/check-ins/{check_in_id}: set the outcome
- GET /csm/students/{student_id}/weekly-progress: weeks of the latest enrollment
- PATCH /csm/students/{student_id}/weekly-progress/{week_id}: outcome / notes

Payment plans:
- GET /csm/enrollments/{enrollment_id}/payment-plan: current plan view
- GET /csm/enrollments/{enrollment_id}/payment-plan/drafts: form rows for
  editing, resized with `count`
- PUT /csm/enrollments/{enrollment_id}/payment-plan: generate a new schedule
  version (PIF or SPLIT) and return the recomputed plan
- POST /csm/installments/{installment_id}/settle: pay one installment

Status codes for plan mutations:
    400 VALIDATION_ERROR   SPLIT without installments, superseded schedule
    404 NOT_FOUND          unknown enrollment / installment
    409 ALREADY_PAID       installment already settled
    409 CONFLICT           enrollment changed during schedule generation
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Path, Query
from pydantic import BaseModel, Field

from kpi_portal.core.dependencies import ClockDep, DateRangeDep, RepositoryDep, SettingsDep
from kpi_portal.models.schemas import (
    ActiveClient,
    CheckInOutcomeUpdate,
    CheckInView,
    CsmSummary,
    DraftSchedule,
    HighRiskClient,
    OnboardingStepView,
    OnboardingUpdate,
    PaymentPlanUpdate,
    PaymentPlanView,
    SettlementResult,
    StudentEnrollment,
    WeeklyProgressUpdate,
    WeeklyProgressView,
)
from kpi_portal.services import csm
from kpi_portal.services.payment_plans import PaymentPlanManager, complete_drafts


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/csm", tags=["csm"])


class HighRiskClientsResponse(BaseModel):
    clients: List[HighRiskClient] = Field(default_factory=list)


class ActiveClientsResponse(BaseModel):
    clients: List[ActiveClient] = Field(default_factory=list)


class OnboardingResponse(BaseModel):
    enrollmentId: int
    steps: List[OnboardingStepView]


class StudentEnrollmentsResponse(BaseModel):
    enrollments: List[StudentEnrollment] = Field(default_factory=list)


class CheckInsResponse(BaseModel):
    checkIns: List[CheckInView] = Field(default_factory=list)


class WeeklyProgressResponse(BaseModel):
    progress: List[WeeklyProgressView] = Field(default_factory=list)


# =============================================================================
# Customer success
# =============================================================================


@router.get("/summary", response_model=CsmSummary)
async def get_csm_summary(repo: RepositoryDep, date_range: DateRangeDep, clock: ClockDep) -> CsmSummary:
    """
    Customer-success cards.

    expectedPayments covers unpaid installments due inside the window; the
    other balances cover every current schedule.
    """
    return await csm.build_csm_summary(repo, date_range, now=clock())


@router.get("/high-risk", response_model=HighRiskClientsResponse)
async def get_high_risk_clients(repo: RepositoryDep, settings: SettingsDep) -> HighRiskClientsResponse:
    return HighRiskClientsResponse(clients=await csm.list_high_risk_clients(repo, settings))


@router.get("/active", response_model=ActiveClientsResponse)
async def get_active_clients(repo: RepositoryDep, settings: SettingsDep) -> ActiveClientsResponse:
    return ActiveClientsResponse(clients=await csm.list_active_clients(repo, settings))


@router.get("/enrollments/{enrollment_id}/onboarding", response_model=OnboardingResponse)
async def get_onboarding(
    repo: RepositoryDep,
    enrollment_id: int = Path(..., gt=0),
) -> OnboardingResponse:
    steps = await csm.get_onboarding(repo, enrollment_id)
    return OnboardingResponse(enrollmentId=enrollment_id, steps=steps)


@router.patch("/enrollments/{enrollment_id}/onboarding", response_model=OnboardingResponse)
async def update_onboarding(
    body: OnboardingUpdate,
    repo: RepositoryDep,
    enrollment_id: int = Path(..., gt=0),
) -> OnboardingResponse:
    """Set one checklist step (`field` is a step key such as `slackJoined`)."""
    steps = await csm.update_onboarding(repo, enrollment_id, body.field, body.value)
    return OnboardingResponse(enrollmentId=enrollment_id, steps=steps)


# =============================================================================
# Student history
# =============================================================================


@router.get("/students/{student_id}/enrollments", response_model=StudentEnrollmentsResponse)
async def get_student_enrollments(
    repo: RepositoryDep,
    settings: SettingsDep,
    student_id: int = Path(..., gt=0),
) -> StudentEnrollmentsResponse:
    enrollments = await csm.list_student_enrollments(repo, settings, student_id)
    return StudentEnrollmentsResponse(enrollments=enrollments)


@router.get("/students/{student_id}/check-ins", response_model=CheckInsResponse)
async def get_student_check_ins(
    repo: RepositoryDep,
    student_id: int = Path(..., gt=0),
) -> CheckInsResponse:
    """Check-ins of the student's latest enrollment, newest first."""
    return CheckInsResponse(checkIns=await csm.list_student_check_ins(repo, student_id))


@router.patch("/students/{student_id}/check-ins/{check_in_id}", response_model=CheckInView)
async def update_check_in_outcome(
    body: CheckInOutcomeUpdate,
    repo: RepositoryDep,
    student_id: int = Path(..., gt=0),
    check_in_id: int = Path(..., gt=0),
) -> CheckInView:
    return await csm.update_check_in_outcome(repo, student_id, check_in_id, body.outcome)


@router.get("/students/{student_id}/weekly-progress", response_model=WeeklyProgressResponse)
async def get_weekly_progress(
    repo: RepositoryDep,
    student_id: int = Path(..., gt=0),
) -> WeeklyProgressResponse:
    return WeeklyProgressResponse(progress=await csm.list_weekly_progress(repo, student_id))


@router.patch("/students/{student_id}/weekly-progress/{week_id}", response_model=WeeklyProgressView)
async def update_weekly_progress(
    body: WeeklyProgressUpdate,
    repo: RepositoryDep,
    student_id: int = Path(..., gt=0),
    week_id: int = Path(..., gt=0),
) -> WeeklyProgressView:
    """Update a week's outcome and/or notes; omitted fields are kept."""
    return await csm.update_weekly_progress(repo, student_id, week_id, outcome=body.outcome, notes=body.notes)


# =============================================================================
# Payment plans
# =============================================================================


@router.get("/enrollments/{enrollment_id}/payment-plan", response_model=PaymentPlanView)
async def get_payment_plan(
    repo: RepositoryDep,
    settings: SettingsDep,
    clock: ClockDep,
    enrollment_id: int = Path(..., gt=0),
) -> PaymentPlanView:
    manager = PaymentPlanManager(repo, settings, clock)
    return await manager.get_plan(enrollment_id)


@router.get("/enrollments/{enrollment_id}/payment-plan/drafts", response_model=DraftSchedule)
async def get_payment_plan_drafts(
    repo: RepositoryDep,
    settings: SettingsDep,
    clock: ClockDep,
    enrollment_id: int = Path(..., gt=0),
    count: Optional[int] = Query(None, ge=0, le=60, description="Rows wanted in the form"),
) -> DraftSchedule:
    """Current installments as form rows, truncated or padded to `count`."""
    manager = PaymentPlanManager(repo, settings, clock)
    return await manager.draft_schedule(enrollment_id, count)


@router.put("/enrollments/{enrollment_id}/payment-plan", response_model=PaymentPlanView)
async def update_payment_plan(
    body: PaymentPlanUpdate,
    repo: RepositoryDep,
    settings: SettingsDep,
    clock: ClockDep,
    enrollment_id: int = Path(..., gt=0),
) -> PaymentPlanView:
    """
    Replace the enrollment's plan.

    Only fully specified installment rows are saved. SPLIT requires at least
    one; PIF ignores any installments sent. The previous schedule version is
    kept for audit.
    """
    manager = PaymentPlanManager(repo, settings, clock)
    return await manager.generate_schedule(
        enrollment_id,
        body.planType,
        installments=complete_drafts(body.installments or []),
        contract_value=body.contractValue,
    )


@router.post("/installments/{installment_id}/settle", response_model=SettlementResult)
async def settle_installment(
    repo: RepositoryDep,
    settings: SettingsDep,
    clock: ClockDep,
    installment_id: int = Path(..., gt=0),
) -> SettlementResult:
    """
    Record a PAID payment for the installment and mark it PAID.

    A second call for the same installment returns 409 ALREADY_PAID and
    creates no payment.
    """
    manager = PaymentPlanManager(repo, settings, clock)
    return await manager.settle(installment_id)

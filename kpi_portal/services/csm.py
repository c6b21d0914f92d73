"""
Customer-success builders.

- build_csm_summary: member, balance, risk and onboarding cards
- list_high_risk_clients: enrollments whose latest check-in is at or below
  the risk threshold
- list_active_clients: ACTIVE enrollments with plan and cash details
- get_onboarding / update_onboarding: the fixed per-enrollment checklist
- list_student_enrollments: every enrollment of a student, newest first
- list_student_check_ins / update_check_in_outcome: check-in history of the
  student's latest enrollment and the CSM outcome per check-in
- list_weekly_progress / update_weekly_progress: per-week CSM notes of the
  latest enrollment

Balances are read over each enrollment's current schedule only. OVERDUE is
the read-time predicate shared with the payment plan views.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from kpi_portal.core.config import Settings
from kpi_portal.core.errors import NotFoundError, ValidationError
from kpi_portal.models.enums import EnrollmentStatus, InstallmentStatus, OnboardingStep, PaymentStatus
from kpi_portal.models.records import (
    ONBOARDING_STEP_FIELDS,
    CheckIn,
    Enrollment,
    OnboardingChecklist,
    Student,
    WeeklyProgress,
)
from kpi_portal.models.schemas import (
    ActiveClient,
    CheckInView,
    CsmSummary,
    HighRiskClient,
    OnboardingStepView,
    RangeInfo,
    StudentEnrollment,
    WeeklyProgressView,
)
from kpi_portal.repositories.base import Repository
from kpi_portal.services.aggregation import group_sum, safe_ratio
from kpi_portal.services.attribution import AttributionResolver
from kpi_portal.services.date_range import DateRange, range_info
from kpi_portal.services.directory import load_programs, load_students
from kpi_portal.services.payment_plans import is_overdue


logger = logging.getLogger(__name__)

# Latest check-in satisfaction at or below this marks a client high-risk
HIGH_RISK_SATISFACTION = 6

DEFAULT_OUTCOME = "Risk"


def latest_check_ins(check_ins: Sequence[CheckIn]) -> Dict[int, CheckIn]:
    """Most recent check-in per enrollment (input is newest first)."""
    latest: Dict[int, CheckIn] = {}
    for check_in in check_ins:
        latest.setdefault(check_in.enrollment_id, check_in)
    return latest


def high_risk_check_ins(check_ins: Sequence[CheckIn]) -> List[CheckIn]:
    return [
        c for c in latest_check_ins(check_ins).values()
        if c.satisfaction <= HIGH_RISK_SATISFACTION
    ]


def onboarding_compliance(checklists: Sequence[OnboardingChecklist]) -> float:
    """Completed steps / total steps across every checklist, as a 0..1 ratio."""
    total = len(checklists) * len(OnboardingStep)
    completed = sum(c.completed_count() for c in checklists)
    return safe_ratio(completed, total)


def _installment_counts(installments) -> Dict[int, int]:
    counts: Dict[int, int] = {}
    for inst in installments:
        counts[inst.enrollment_id] = counts.get(inst.enrollment_id, 0) + 1
    return counts


# =============================================================================
# Summary
# =============================================================================


async def build_csm_summary(
    repo: Repository,
    date_range: DateRange,
    now: Optional[datetime] = None,
) -> CsmSummary:
    """
    Customer-success cards.

    totalOwed is every unpaid installment on current schedules;
    expectedPayments is the unpaid part due inside the window.
    """
    now = now or datetime.now(timezone.utc)
    today = now.astimezone(date_range.tzinfo).date()

    active = await repo.list_enrollments(statuses=[EnrollmentStatus.ACTIVE])
    installments = await repo.list_installments(current_only=True)
    unpaid = [i for i in installments if i.status == InstallmentStatus.PENDING]
    overdue = [i for i in unpaid if is_overdue(i, today)]
    expected = [i for i in unpaid if date_range.contains(i.due_date)]

    check_ins = await repo.list_check_ins()
    checklists = await repo.list_onboarding_checklists()

    return CsmSummary(
        range=RangeInfo(**range_info(date_range)),
        activeMembers=len(active),
        totalOwed=sum(i.amount for i in unpaid),
        highRiskClients=len(high_risk_check_ins(check_ins)),
        onboardingCompliance=onboarding_compliance(checklists),
        overdueAmount=sum(i.amount for i in overdue),
        overdueCount=len(overdue),
        expectedPayments=sum(i.amount for i in expected),
    )


# =============================================================================
# Client lists
# =============================================================================


async def list_high_risk_clients(repo: Repository, settings: Settings) -> List[HighRiskClient]:
    """High-risk clients, most recent check-in first."""
    risky = high_risk_check_ins(await repo.list_check_ins())
    if not risky:
        return []

    enrollments = {e.id: e for e in await repo.list_enrollments(ids=[c.enrollment_id for c in risky])}
    students = await load_students(repo, [e.student_id for e in enrollments.values()])
    programs = await load_programs(repo, [e.program_id for e in enrollments.values()])
    counts = _installment_counts(
        await repo.list_installments(enrollment_ids=list(enrollments), current_only=True)
    )

    clients = []
    for check_in in risky:
        enrollment = enrollments.get(check_in.enrollment_id)
        if enrollment is None:
            logger.warning("Check-in %s references missing enrollment %s", check_in.id, check_in.enrollment_id)
            continue
        student = students.get(enrollment.student_id)
        program = programs.get(enrollment.program_id) if enrollment.program_id is not None else None
        clients.append(HighRiskClient(
            enrollmentId=enrollment.id,
            studentId=enrollment.student_id,
            name=student.name if student else settings.unknown_source_label,
            email=student.email if student else "",
            program=program.name if program else settings.unknown_source_label,
            planType=enrollment.plan_type.label,
            installments=counts.get(enrollment.id, 0),
            satisfaction=check_in.satisfaction,
            lastCheckIn=check_in.date,
            selectedOutcome=check_in.outcome or check_in.wins or DEFAULT_OUTCOME,
        ))
    return clients


async def list_active_clients(repo: Repository, settings: Settings) -> List[ActiveClient]:
    """ACTIVE enrollments, latest start date first."""
    enrollments = await repo.list_enrollments(statuses=[EnrollmentStatus.ACTIVE])
    if not enrollments:
        return []
    enrollments = sorted(enrollments, key=lambda e: (e.start_date, e.id), reverse=True)
    ids = [e.id for e in enrollments]

    students = await load_students(repo, [e.student_id for e in enrollments])
    programs = await load_programs(repo, [e.program_id for e in enrollments])
    counts = _installment_counts(await repo.list_installments(enrollment_ids=ids, current_only=True))
    paid = group_sum(
        await repo.list_payments(statuses=[PaymentStatus.PAID], enrollment_ids=ids),
        key=lambda p: p.enrollment_id,
        value=lambda p: p.amount,
    )
    owners = await AttributionResolver(repo, settings).owner_names(enrollments)

    clients = []
    for enrollment in enrollments:
        student = students.get(enrollment.student_id)
        program = programs.get(enrollment.program_id) if enrollment.program_id is not None else None
        names = owners[enrollment.id]
        clients.append(ActiveClient(
            enrollmentId=enrollment.id,
            studentId=enrollment.student_id,
            name=student.name if student else settings.unknown_source_label,
            email=student.email if student else "",
            program=program.name if program else settings.unknown_source_label,
            planType=enrollment.plan_type.label,
            installments=counts.get(enrollment.id, 0),
            startDate=enrollment.start_date,
            endDate=enrollment.end_date,
            cashCollected=paid.get(enrollment.id, 0),
            contractedValue=enrollment.contract_value,
            closer=names.closer_name,
            setter=names.setter_name,
        ))
    return clients


# =============================================================================
# Onboarding
# =============================================================================


def parse_step(key: str) -> OnboardingStep:
    try:
        return OnboardingStep(key)
    except ValueError as exc:
        raise ValidationError(f"Invalid onboarding field: {key}", field="field") from exc


def checklist_view(checklist: Optional[OnboardingChecklist]) -> List[OnboardingStepView]:
    """Every step in fixed order; a missing checklist reads as all unchecked."""
    return [
        OnboardingStepView(
            key=step.value,
            label=step.label,
            checked=checklist.is_done(step) if checklist else False,
        )
        for step in OnboardingStep
    ]


async def _require_enrollment(repo: Repository, enrollment_id: int) -> Enrollment:
    enrollment = await repo.get_enrollment(enrollment_id)
    if enrollment is None:
        raise NotFoundError("Enrollment", enrollment_id)
    return enrollment


async def get_onboarding(repo: Repository, enrollment_id: int) -> List[OnboardingStepView]:
    await _require_enrollment(repo, enrollment_id)
    checklists = await repo.list_onboarding_checklists(enrollment_ids=[enrollment_id])
    return checklist_view(checklists[0] if checklists else None)


async def update_onboarding(
    repo: Repository,
    enrollment_id: int,
    field: str,
    value: bool,
) -> List[OnboardingStepView]:
    """
    Set one checklist step, creating the checklist on first write.

    Raises:
        ValidationError: If `field` is not a checklist step.
        NotFoundError: If the enrollment does not exist.
    """
    step = parse_step(field)
    await _require_enrollment(repo, enrollment_id)
    async with repo.transaction():
        checklist = await repo.upsert_onboarding_checklist(
            enrollment_id,
            {ONBOARDING_STEP_FIELDS[step]: value},
        )
    logger.info("Onboarding step %s set to %s for enrollment %s", step.value, value, enrollment_id)
    return checklist_view(checklist)


# =============================================================================
# Student history
# =============================================================================


async def _require_student(repo: Repository, student_id: int) -> Student:
    students = await repo.list_students(ids=[student_id])
    if not students:
        raise NotFoundError("Student", student_id)
    return students[0]


async def _student_enrollments(repo: Repository, student_id: int) -> List[Enrollment]:
    """The student's enrollments, latest start date first."""
    await _require_student(repo, student_id)
    enrollments = await repo.list_enrollments(student_ids=[student_id])
    return sorted(enrollments, key=lambda e: (e.start_date, e.id), reverse=True)


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


async def list_student_enrollments(
    repo: Repository,
    settings: Settings,
    student_id: int,
) -> List[StudentEnrollment]:
    enrollments = await _student_enrollments(repo, student_id)
    if not enrollments:
        return []
    programs = await load_programs(repo, [e.program_id for e in enrollments])
    owners = await AttributionResolver(repo, settings).owner_names(enrollments)

    rows = []
    for enrollment in enrollments:
        program = programs.get(enrollment.program_id) if enrollment.program_id is not None else None
        rows.append(StudentEnrollment(
            id=enrollment.id,
            program=program.name if program else settings.unknown_source_label,
            planType=enrollment.plan_type.label,
            status=enrollment.status.value,
            contractValue=enrollment.contract_value,
            startDate=enrollment.start_date,
            endDate=enrollment.end_date,
            closer=owners[enrollment.id].closer_name,
            setter=owners[enrollment.id].setter_name,
        ))
    return rows


def check_in_view(check_in: CheckIn) -> CheckInView:
    return CheckInView(
        id=check_in.id,
        enrollmentId=check_in.enrollment_id,
        submittedAt=check_in.date,
        satisfaction=check_in.satisfaction,
        wins=check_in.wins,
        notes=check_in.notes,
        selectedOutcome=check_in.outcome,
    )


async def list_student_check_ins(repo: Repository, student_id: int) -> List[CheckInView]:
    """Check-ins of the student's latest enrollment, newest first."""
    enrollments = await _student_enrollments(repo, student_id)
    if not enrollments:
        return []
    return [check_in_view(c) for c in await repo.list_check_ins(enrollment_ids=[enrollments[0].id])]


async def update_check_in_outcome(
    repo: Repository,
    student_id: int,
    check_in_id: int,
    outcome: Optional[str],
) -> CheckInView:
    """
    Record (or clear, with None or blank) the CSM outcome of a check-in.

    Raises:
        NotFoundError: Unknown student, or a check-in that is not one of
            the student's.
    """
    enrollment_ids = {e.id for e in await _student_enrollments(repo, student_id)}
    async with repo.transaction():
        check_in = await repo.get_check_in(check_in_id)
        if check_in is None or check_in.enrollment_id not in enrollment_ids:
            raise NotFoundError("CheckIn", check_in_id)
        updated = await repo.update_check_in_outcome(check_in.id, _clean_text(outcome))
        if updated is None:
            raise NotFoundError("CheckIn", check_in_id)
    logger.info("Check-in %s outcome set to %r", check_in_id, updated.outcome)
    return check_in_view(updated)


def weekly_progress_view(week: WeeklyProgress) -> WeeklyProgressView:
    return WeeklyProgressView(
        id=week.id,
        enrollmentId=week.enrollment_id,
        weekNumber=week.week_number,
        outcome=week.outcome,
        notes=week.notes,
    )


async def list_weekly_progress(repo: Repository, student_id: int) -> List[WeeklyProgressView]:
    """Weekly progress of the student's latest enrollment, by week number."""
    enrollments = await _student_enrollments(repo, student_id)
    if not enrollments:
        return []
    return [weekly_progress_view(w) for w in await repo.list_weekly_progress(enrollment_ids=[enrollments[0].id])]


async def update_weekly_progress(
    repo: Repository,
    student_id: int,
    week_id: int,
    outcome: Optional[str] = None,
    notes: Optional[str] = None,
) -> WeeklyProgressView:
    """
    Update the outcome and/or notes of one week; None leaves a field as is.

    Raises:
        ValidationError: If neither field is given.
        NotFoundError: Unknown student, or a week that is not the student's.
    """
    if outcome is None and notes is None:
        raise ValidationError("Nothing to update: send outcome and/or notes", field="outcome")

    enrollment_ids = {e.id for e in await _student_enrollments(repo, student_id)}
    async with repo.transaction():
        week = await repo.get_weekly_progress(week_id)
        if week is None or week.enrollment_id not in enrollment_ids:
            raise NotFoundError("WeeklyProgress", week_id)
        updated = await repo.update_weekly_progress(
            week.id,
            outcome=outcome.strip() if outcome is not None else None,
            notes=notes,
        )
        if updated is None:
            raise NotFoundError("WeeklyProgress", week_id)
    logger.info("Weekly progress %s (week %s) updated", week_id, updated.week_number)
    return weekly_progress_view(updated)

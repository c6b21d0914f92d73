"""
Sales summary builders for the KPI Portal backend.

Composes the date window, activity aggregation and payment attribution
into the sales dashboard responses:

- build_sales_top_cards: company-wide cards shown on every sales tab
- build_closers_report: closer metrics, per-closer rows, payments table
- build_setters_report: setter metrics and per-setter rows
- build_dm_setters_report: DM setter metrics and per-DM-setter rows
- list_team_directory: active team members for the member filter

Activity counters by role:
    CLOSER      live_calls, offers_made, closes, scheduled_calls, reschedules
    SETTER      calls_made, pick_ups, booked_calls, closes, reschedules
    DM_SETTER   dms_sent, conversations_started, booked_calls, closes
    all roles   cash_collected (self-reported, surfaced as reportedRevenue)

Cash collected always comes from PAID payments (the source of truth), not
from the self-reported activity cash.

Member filter: `member` is a display name matched case-insensitively within
the tab's role. An unknown name yields zeroed metrics.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from kpi_portal.core.config import Settings
from kpi_portal.models.enums import EnrollmentStatus, PaymentStatus, TeamMemberRole
from kpi_portal.models.records import Enrollment, Payment, TeamMember
from kpi_portal.models.schemas import (
    CloserPerformance,
    ClosersMetrics,
    ClosersResponse,
    DmSetterPerformance,
    DmSettersMetrics,
    DmSettersResponse,
    PaymentRow,
    RangeInfo,
    SalesTopCardsResponse,
    SetterPerformance,
    SettersMetrics,
    SettersResponse,
    TeamMemberOption,
)
from kpi_portal.repositories.base import Repository
from kpi_portal.services.aggregation import (
    aggregate,
    group_sum,
    monthly_pacing,
    per_day_average,
    safe_ratio,
    to_number,
)
from kpi_portal.services.attribution import AttributionResolver
from kpi_portal.services.date_range import DateRange, format_date, range_info, start_of_month
from kpi_portal.services.directory import (
    load_enrollments,
    load_members,
    load_students,
    members_with_role,
    resolve_member,
)


logger = logging.getLogger(__name__)

CLOSER_FIELDS = ["live_calls", "offers_made", "closes", "scheduled_calls", "reschedules", "cash_collected"]
SETTER_FIELDS = ["calls_made", "pick_ups", "booked_calls", "closes", "reschedules", "cash_collected"]
DM_SETTER_FIELDS = ["dms_sent", "conversations_started", "booked_calls", "closes", "cash_collected"]


# =============================================================================
# Shared helpers
# =============================================================================


def _member_filter(
    members: Dict[int, TeamMember],
    member: Optional[str],
    role: TeamMemberRole,
) -> Optional[List[int]]:
    """None for no filter; [] when the name is unknown (zeroes every metric)."""
    if member is None or not member.strip():
        return None
    member_id = resolve_member(members, member, role)
    if member_id is None:
        logger.info("No %s named %r; returning zeroed metrics", role.value, member)
        return []
    return [member_id]


async def _paid_payments(repo: Repository, date_range: DateRange):
    payments = await repo.list_payments(date_range=date_range, statuses=[PaymentStatus.PAID])
    enrollments = await load_enrollments(repo, [p.enrollment_id for p in payments])
    return payments, enrollments


def _cash_by_owner(
    payments: Sequence[Payment],
    enrollments: Dict[int, Enrollment],
    owner_field: str,
) -> Dict[int, float]:
    """PAID cash per assigned closer/setter id (unassigned payments skipped)."""
    return group_sum(
        payments,
        key=lambda p: getattr(enrollments[p.enrollment_id], owner_field)
        if p.enrollment_id in enrollments else None,
        value=lambda p: p.amount,
    )


def _cash_for(cash_by_owner: Dict[int, float], owner_ids) -> float:
    return sum(to_number(cash_by_owner.get(i)) for i in owner_ids)


# =============================================================================
# Top cards
# =============================================================================


async def build_sales_top_cards(
    repo: Repository,
    date_range: DateRange,
    now: Optional[datetime] = None,
) -> SalesTopCardsResponse:
    """
    Company-wide sales cards.

    showUpRate is totalBookedCalls / liveCalls (guarded), where
    totalBookedCalls is setter plus DM setter booked calls.
    """
    members = await load_members(repo)
    activity = await repo.list_activity(date_range)

    closers = aggregate(activity, date_range, ["live_calls", "offers_made"], members=members,
                        role=TeamMemberRole.CLOSER)
    setters = aggregate(activity, date_range, ["calls_made", "pick_ups", "booked_calls"], members=members,
                        role=TeamMemberRole.SETTER)
    dm_setters = aggregate(activity, date_range, ["dms_sent", "booked_calls"], members=members,
                           role=TeamMemberRole.DM_SETTER)

    payments = await repo.list_payments(date_range=date_range, statuses=[PaymentStatus.PAID])
    cash = sum(p.amount for p in payments)
    new_students = await repo.list_enrollments(statuses=[EnrollmentStatus.ACTIVE], started_in=date_range)

    total_booked = setters.get("booked_calls") + dm_setters.get("booked_calls")
    live_calls = closers.get("live_calls")

    return SalesTopCardsResponse(
        range=RangeInfo(**range_info(date_range)),
        totalBookedCalls=total_booked,
        cashCollected=cash,
        liveCalls=live_calls,
        offersMade=closers.get("offers_made"),
        showUpRate=safe_ratio(total_booked, live_calls),
        outboundDials=setters.get("calls_made"),
        dmsSent=dm_setters.get("dms_sent"),
        pickups=setters.get("pick_ups"),
        newStudents=len(new_students),
        companyMonthlyPacing=monthly_pacing(cash, date_range, now),
    )


# =============================================================================
# Closers
# =============================================================================


async def build_closers_report(
    repo: Repository,
    date_range: DateRange,
    settings: Settings,
    member: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ClosersResponse:
    """
    Closer tab: metrics (optionally for one closer), per-closer rows sorted
    by liveCalls, and the PAID payments table newest first.

    Unfiltered cash counts every PAID payment in the window; filtered cash
    counts payments whose enrollment is assigned to that closer.
    closedWonRevenueMTD covers the start of the current month through the
    window end. totalBookedCalls is company-wide (setter and DM-setter
    bookings) unless filtered, then it is the calls booked onto that
    closer's calendar.
    """
    members = await load_members(repo)
    member_ids = _member_filter(members, member, TeamMemberRole.CLOSER)
    activity = await repo.list_activity(date_range)

    summary = aggregate(activity, date_range, CLOSER_FIELDS, members=members,
                        role=TeamMemberRole.CLOSER, member_ids=member_ids, sort_by="live_calls")
    everyone = aggregate(activity, date_range, CLOSER_FIELDS, members=members,
                         role=TeamMemberRole.CLOSER, sort_by="live_calls")
    booked = aggregate(activity, date_range, ["booked_calls"], members=members,
                       member_ids=[m for m, tm in members.items() if tm.role != TeamMemberRole.CLOSER])

    payments, enrollments = await _paid_payments(repo, date_range)
    cash_by_closer = _cash_by_owner(payments, enrollments, "assigned_closer_id")

    mtd_window = DateRange(from_=start_of_month(now, date_range.tz), to=date_range.to, tz=date_range.tz)
    if mtd_window.from_ <= mtd_window.to:
        mtd_payments, mtd_enrollments = await _paid_payments(repo, mtd_window)
    else:
        mtd_payments, mtd_enrollments = [], {}
    mtd_by_closer = _cash_by_owner(mtd_payments, mtd_enrollments, "assigned_closer_id")

    if member_ids is None:
        cash = sum(p.amount for p in payments)
        cash_mtd = sum(p.amount for p in mtd_payments)
        total_booked = booked.get("booked_calls")
    else:
        cash = _cash_for(cash_by_closer, member_ids)
        cash_mtd = _cash_for(mtd_by_closer, member_ids)
        # Calls booked onto the selected closer's calendar
        total_booked = summary.get("scheduled_calls")

    live_calls = summary.get("live_calls")
    offers = summary.get("offers_made")
    closes = summary.get("closes")

    metrics = ClosersMetrics(
        totalBookedCalls=total_booked,
        liveCalls=live_calls,
        offersMade=offers,
        closes=closes,
        offerRate=safe_ratio(offers, live_calls),
        offerToCloseRate=safe_ratio(closes, offers),
        closeRate=safe_ratio(closes, live_calls),
        cashPerLiveCall=safe_ratio(cash, live_calls),
        cashCollected=cash,
        avgCashPerDay=per_day_average(cash, date_range),
        closedWonRevenueMTD=cash_mtd,
        callsOnCalendar=summary.get("scheduled_calls"),
        reschedules=summary.get("reschedules"),
        reportedRevenue=summary.get("cash_collected"),
    )

    performance = []
    for row in everyone.breakdown:
        cc = to_number(cash_by_closer.get(row["teamMemberId"]))
        performance.append(CloserPerformance(
            rep=row["rep"],
            liveCalls=row["live_calls"],
            closes=row["closes"],
            callsOnCalendar=row["scheduled_calls"],
            offerToClosePct=safe_ratio(row["closes"], row["offers_made"]),
            closePct=safe_ratio(row["closes"], row["live_calls"]),
            ccPerLiveCall=safe_ratio(cc, row["live_calls"]),
            ccByRep=cc,
            reschedules=row["reschedules"],
            reportedRevenue=row["cash_collected"],
        ))

    rows = await build_payment_rows(repo, payments, enrollments, settings)
    logger.debug("Closers report: %d rows, %d payments", len(performance), len(rows))
    return ClosersResponse(
        range=RangeInfo(**range_info(date_range)),
        metrics=metrics,
        performance=performance,
        payments=rows,
    )


async def build_payment_rows(
    repo: Repository,
    payments: Sequence[Payment],
    enrollments: Dict[int, Enrollment],
    settings: Settings,
) -> List[PaymentRow]:
    """Payments table rows (input order kept) with student and owner names joined in."""
    students = await load_students(repo, [e.student_id for e in enrollments.values()])
    resolver = AttributionResolver(repo, settings)
    owners = await resolver.owner_names(list(enrollments.values()))

    rows = []
    for payment in payments:
        enrollment = enrollments.get(payment.enrollment_id)
        student = students.get(enrollment.student_id) if enrollment else None
        names = owners.get(payment.enrollment_id)
        rows.append(PaymentRow(
            id=payment.id,
            date=format_date(payment.date, settings.reporting_timezone),
            name=student.name if student else settings.unknown_source_label,
            cc=payment.amount,
            closer=names.closer_name if names else settings.unassigned_label,
            setter=names.setter_name if names else settings.unassigned_label,
            assignedCloserId=enrollment.assigned_closer_id if enrollment else None,
            assignedSetterId=enrollment.assigned_setter_id if enrollment else None,
        ))
    return rows


# =============================================================================
# Setters
# =============================================================================


def _setter_cash(
    payments: Sequence[Payment],
    enrollments: Dict[int, Enrollment],
    members: Dict[int, TeamMember],
    role: TeamMemberRole,
    member_ids: Optional[List[int]],
):
    by_setter = _cash_by_owner(payments, enrollments, "assigned_setter_id")
    if member_ids is not None:
        owners = member_ids
    else:
        in_role = members_with_role(members, role)
        owners = [mid for mid in by_setter if mid in in_role]
    return by_setter, _cash_for(by_setter, owners)


async def build_setters_report(
    repo: Repository,
    date_range: DateRange,
    member: Optional[str] = None,
    now: Optional[datetime] = None,
) -> SettersResponse:
    """
    Setter tab: metrics (optionally for one setter) and per-setter rows
    sorted by bookedCalls. Cash counts PAID payments whose enrollment's
    setter is a SETTER (or the filtered setter).
    """
    members = await load_members(repo)
    member_ids = _member_filter(members, member, TeamMemberRole.SETTER)
    activity = await repo.list_activity(date_range)

    summary = aggregate(activity, date_range, SETTER_FIELDS, members=members,
                        role=TeamMemberRole.SETTER, member_ids=member_ids)
    everyone = aggregate(activity, date_range, SETTER_FIELDS, members=members,
                         role=TeamMemberRole.SETTER, sort_by="booked_calls")

    payments, enrollments = await _paid_payments(repo, date_range)
    by_setter, cash = _setter_cash(payments, enrollments, members, TeamMemberRole.SETTER, member_ids)

    booked = summary.get("booked_calls")
    pick_ups = summary.get("pick_ups")
    metrics = SettersMetrics(
        outboundDials=summary.get("calls_made"),
        pickUps=pick_ups,
        bookedCalls=booked,
        reschedules=summary.get("reschedules"),
        closedWon=summary.get("closes"),
        cashCollected=cash,
        pickUpToBookedPct=safe_ratio(booked, pick_ups),
        cashPerDay=per_day_average(cash, date_range),
        cashPerBookedCall=safe_ratio(cash, booked),
        monthlyPacing=monthly_pacing(cash, date_range, now),
        reportedRevenue=summary.get("cash_collected"),
    )
    performance = [
        SetterPerformance(
            rep=row["rep"],
            callsMade=row["calls_made"],
            pickUps=row["pick_ups"],
            bookedCalls=row["booked_calls"],
            closedWon=row["closes"],
            ccBySetter=to_number(by_setter.get(row["teamMemberId"])),
            reportedRevenue=row["cash_collected"],
        )
        for row in everyone.breakdown
    ]
    return SettersResponse(range=RangeInfo(**range_info(date_range)), metrics=metrics, performance=performance)


# =============================================================================
# DM setters
# =============================================================================


async def build_dm_setters_report(
    repo: Repository,
    date_range: DateRange,
    member: Optional[str] = None,
) -> DmSettersResponse:
    """
    DM setter tab: metrics (optionally for one DM setter) and per-DM-setter
    rows sorted by totalCallsBooked.

    conversationRate = conversationsStarted / dmsSent
    bookingRate = bookedCalls / conversationsStarted
    """
    members = await load_members(repo)
    member_ids = _member_filter(members, member, TeamMemberRole.DM_SETTER)
    activity = await repo.list_activity(date_range)

    summary = aggregate(activity, date_range, DM_SETTER_FIELDS, members=members,
                        role=TeamMemberRole.DM_SETTER, member_ids=member_ids)
    everyone = aggregate(activity, date_range, DM_SETTER_FIELDS, members=members,
                         role=TeamMemberRole.DM_SETTER, sort_by="booked_calls")

    payments, enrollments = await _paid_payments(repo, date_range)
    by_setter, cash = _setter_cash(payments, enrollments, members, TeamMemberRole.DM_SETTER, member_ids)

    dms = summary.get("dms_sent")
    conversations = summary.get("conversations_started")
    booked = summary.get("booked_calls")
    metrics = DmSettersMetrics(
        dmsOutbound=dms,
        conversationsStarted=conversations,
        bookedCalls=booked,
        closedWon=summary.get("closes"),
        cashCollected=cash,
        conversationRate=safe_ratio(conversations, dms),
        bookingRate=safe_ratio(booked, conversations),
        cashPerDay=per_day_average(cash, date_range),
        cashPerBookedCall=safe_ratio(cash, booked),
        reportedRevenue=summary.get("cash_collected"),
    )
    performance = [
        DmSetterPerformance(
            rep=row["rep"],
            newOutboundConvos=row["dms_sent"],
            outboundResponses=row["conversations_started"],
            totalCallsBooked=row["booked_calls"],
            closedWon=row["closes"],
            ccByDmSetter=to_number(by_setter.get(row["teamMemberId"])),
            reportedRevenue=row["cash_collected"],
        )
        for row in everyone.breakdown
    ]
    return DmSettersResponse(range=RangeInfo(**range_info(date_range)), metrics=metrics, performance=performance)


# =============================================================================
# Team directory
# =============================================================================


async def list_team_directory(
    repo: Repository,
    role: Optional[TeamMemberRole] = None,
) -> List[TeamMemberOption]:
    """Active team members (optionally of one role), sorted by name."""
    members = await repo.list_team_members(role=role, active_only=True)
    return [TeamMemberOption(id=m.id, name=m.name, role=m.role) for m in members]


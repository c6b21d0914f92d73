"""
Home dashboard builders.

The home page combines revenue, marketing and team activity into one view:

- build_home_summary: top cards, cash collected by source, role pie charts
- build_transactions: recent PAID/REFUNDED payments, paginated

Cards:
    netRevenue        PAID payments in range
    newCustomers      distinct students with an enrollment starting in range
    closedWonRevenue  contract value of non-DROPPED enrollments starting in range
    leadsCaptured     leads created in range
    adSpend           ad spend in range
    overduePayments   current-schedule installments that are OVERDUE right now
    refunds           REFUNDED payments in range

Overdue counts are evaluated with the same read-time predicate the payment
plan views use, against today in the reporting timezone.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from kpi_portal.core.config import Settings
from kpi_portal.core.errors import ValidationError
from kpi_portal.models.enums import EnrollmentStatus, PaymentStatus, TeamMemberRole
from kpi_portal.models.records import Enrollment, Payment, Student, TeamMember
from kpi_portal.models.schemas import (
    CashBySourceItem,
    HomeCards,
    HomePieCharts,
    HomeSummaryResponse,
    MetricBreakdown,
    OverdueSummary,
    RangeInfo,
    Transaction,
    TransactionsResponse,
)
from kpi_portal.repositories.base import Repository
from kpi_portal.services.aggregation import aggregate, group_sum
from kpi_portal.services.attribution import AttributionResolver, normalize_email
from kpi_portal.services.date_range import DateRange, format_date, range_info
from kpi_portal.services.directory import (
    load_enrollments,
    load_members,
    load_programs,
    load_students,
    payer_email,
)
from kpi_portal.services.payment_plans import is_overdue


logger = logging.getLogger(__name__)

# Role -> activity counter shown in that role's pie chart
PIE_CHART_FIELDS = {
    TeamMemberRole.CLOSER: "closes",
    TeamMemberRole.SETTER: "calls_made",
    TeamMemberRole.DM_SETTER: "dms_sent",
}

WON_STATUSES = [EnrollmentStatus.ACTIVE, EnrollmentStatus.PAUSED, EnrollmentStatus.COMPLETED]


# =============================================================================
# Summary
# =============================================================================


async def build_home_summary(
    repo: Repository,
    date_range: DateRange,
    settings: Settings,
    now: Optional[datetime] = None,
) -> HomeSummaryResponse:
    """
    Build the home dashboard.

    Args:
        repo: Repository for this request.
        date_range: Normalized reporting window.
        settings: Label defaults.
        now: Current instant used for the OVERDUE predicate.

    Returns:
        HomeSummaryResponse with cards, cash by source and pie charts.
    """
    now = now or datetime.now(timezone.utc)
    today = now.astimezone(date_range.tzinfo).date()

    payments = await repo.list_payments(
        date_range=date_range,
        statuses=[PaymentStatus.PAID, PaymentStatus.REFUNDED],
    )
    paid = [p for p in payments if p.status == PaymentStatus.PAID]
    refunded = [p for p in payments if p.status == PaymentStatus.REFUNDED]

    started = await repo.list_enrollments(started_in=date_range)
    won = [e for e in started if e.status in WON_STATUSES]

    leads = await repo.list_leads(date_range=date_range)
    ads = await repo.list_ad_performance(date_range)

    overdue = [i for i in await repo.list_installments(current_only=True) if is_overdue(i, today)]

    cards = HomeCards(
        netRevenue=sum(p.amount for p in paid),
        newCustomers=len({e.student_id for e in started}),
        closedWonRevenue=sum(e.contract_value for e in won),
        leadsCaptured=len(leads),
        adSpend=sum(a.spend for a in ads),
        overduePayments=OverdueSummary(count=len(overdue), total=sum(i.amount for i in overdue)),
        refunds=sum(p.amount for p in refunded),
    )

    enrollments = await load_enrollments(repo, [p.enrollment_id for p in paid])
    students = await load_students(repo, [e.student_id for e in enrollments.values()])
    by_source = await cash_by_source(repo, paid, enrollments, students, settings)

    members = await load_members(repo)
    activity = await repo.list_activity(date_range)

    logger.debug(
        "Home summary %s..%s: %d payments, %d enrollments, %d overdue installments",
        date_range.first_day, date_range.last_day, len(payments), len(started), len(overdue),
    )
    return HomeSummaryResponse(
        range=RangeInfo(**range_info(date_range)),
        cards=cards,
        cashCollectedBySource=by_source,
        pieCharts=HomePieCharts(
            closedCallsByCloser=pie_chart(activity, date_range, members, TeamMemberRole.CLOSER),
            callsMadeBySetter=pie_chart(activity, date_range, members, TeamMemberRole.SETTER),
            dmsSentByDmSetter=pie_chart(activity, date_range, members, TeamMemberRole.DM_SETTER),
        ),
    )


async def cash_by_source(
    repo: Repository,
    payments: Sequence[Payment],
    enrollments: Dict[int, Enrollment],
    students: Dict[int, Student],
    settings: Settings,
) -> List[CashBySourceItem]:
    """PAID cash grouped by lead source, largest first; unmatched payers use the revenue default label."""
    resolver = AttributionResolver(repo, settings)
    emails = {p.id: payer_email(p, enrollments.get(p.enrollment_id), students) for p in payments}
    sources = await resolver.attribute_sources(emails.values(), default=settings.revenue_source_default)

    totals = group_sum(
        payments,
        key=lambda p: sources.get(normalize_email(emails[p.id]), settings.revenue_source_default),
        value=lambda p: p.amount,
    )
    items = [CashBySourceItem(source=source, amount=amount) for source, amount in totals.items()]
    items.sort(key=lambda item: (-item.amount, item.source))
    return items


def pie_chart(
    activity,
    date_range: DateRange,
    members: Dict[int, TeamMember],
    role: TeamMemberRole,
) -> List[MetricBreakdown]:
    """One slice per member of `role`; zero slices dropped, largest first."""
    field = PIE_CHART_FIELDS[role]
    summary = aggregate(activity, date_range, [field], members=members, role=role)
    return [
        MetricBreakdown(name=row["rep"], value=row[field])
        for row in summary.breakdown
        if row[field] > 0
    ]


# =============================================================================
# Transactions
# =============================================================================


async def build_transactions(
    repo: Repository,
    date_range: DateRange,
    settings: Settings,
    page: int = 1,
    limit: Optional[int] = None,
) -> TransactionsResponse:
    """
    Recent PAID and REFUNDED payments, newest first.

    Refunds are reported as negative values. Source uses the payer's most
    recent lead (settings.unknown_source_label when none matches);
    lineOfBusiness is the enrollment's program name.

    Raises:
        ValidationError: If page < 1 or limit is outside 1..max_page_size.
    """
    limit = settings.default_page_size if limit is None else limit
    if page < 1:
        raise ValidationError("page must be at least 1", field="page")
    if limit < 1 or limit > settings.max_page_size:
        raise ValidationError(f"limit must be between 1 and {settings.max_page_size}", field="limit")

    payments = await repo.list_payments(
        date_range=date_range,
        statuses=[PaymentStatus.PAID, PaymentStatus.REFUNDED],
    )
    start = (page - 1) * limit
    window = payments[start:start + limit]

    enrollments = await load_enrollments(repo, [p.enrollment_id for p in window])
    students = await load_students(repo, [e.student_id for e in enrollments.values()])
    programs = await load_programs(repo, [e.program_id for e in enrollments.values()])

    resolver = AttributionResolver(repo, settings)
    emails = {p.id: payer_email(p, enrollments.get(p.enrollment_id), students) for p in window}
    sources = await resolver.attribute_sources(emails.values())

    transactions = []
    for payment in window:
        enrollment = enrollments.get(payment.enrollment_id)
        student = students.get(enrollment.student_id) if enrollment else None
        program = programs.get(enrollment.program_id) if enrollment and enrollment.program_id else None
        sign = -1 if payment.status == PaymentStatus.REFUNDED else 1
        transactions.append(Transaction(
            id=payment.id,
            date=format_date(payment.date, date_range.tz),
            name=student.name if student else settings.unknown_source_label,
            value=sign * payment.amount,
            source=sources.get(normalize_email(emails[payment.id]), settings.unknown_source_label),
            lineOfBusiness=program.name if program else settings.unknown_source_label,
        ))

    return TransactionsResponse(transactions=transactions, total=len(payments), page=page, limit=limit)

"""
asyncpg-backed repository.

A PostgresRepository is bound to one connection acquired from the pool for
the duration of a request (see kpi_portal.core.dependencies); it is never
shared between requests. Statements live in kpi_portal.sql.

Error mapping:
- asyncpg.PostgresError / asyncpg.InterfaceError / OSError -> StorageError
- Rows that fail record validation -> ValidationError (from parse_record)

No retries happen here; failures surface to the caller unchanged.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence

import asyncpg

from kpi_portal.core.errors import NotFoundError, StorageError
from kpi_portal.models.enums import EnrollmentStatus, PaymentStatus, PlanType, TeamMemberRole
from kpi_portal.models.records import (
    ActivityRecord,
    AdPerformance,
    CheckIn,
    EmailBroadcast,
    Enrollment,
    Installment,
    Lead,
    OnboardingChecklist,
    Payment,
    PaymentSchedule,
    Program,
    Student,
    TeamMember,
    WeeklyProgress,
    parse_record,
    parse_records,
)
from kpi_portal.repositories.base import InstallmentSpec, Repository
from kpi_portal.services.date_range import DateRange
from kpi_portal.sql import plan_queries, report_queries


logger = logging.getLogger(__name__)

STORAGE_EXCEPTIONS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError)


def _ids(values: Optional[Iterable[int]]) -> Optional[List[int]]:
    return list(values) if values is not None else None


def _values(enums: Optional[Sequence[Any]]) -> Optional[List[str]]:
    return [getattr(e, "value", e) for e in enums] if enums is not None else None


def _days(date_range: Optional[DateRange]):
    return (date_range.first_day, date_range.last_day) if date_range else (None, None)


def _instants(date_range: Optional[DateRange]):
    return (date_range.from_, date_range.to) if date_range else (None, None)


class PostgresRepository(Repository):
    """
    Repository over a single asyncpg connection.

    Args:
        conn: Connection acquired from the pool; released by the caller.
    """

    def __init__(self, conn: asyncpg.Connection):
        self._conn = conn
        self._transaction_depth = 0

    # =========================================================================
    # Execution helpers
    # =========================================================================

    async def _fetch(self, operation: str, query: str, *args: Any) -> List[asyncpg.Record]:
        try:
            return await self._conn.fetch(query, *args)
        except STORAGE_EXCEPTIONS as exc:
            logger.error("Storage failure during %s", operation, exc_info=True)
            raise StorageError(f"{operation} failed: {exc}", operation=operation) from exc

    async def _fetchrow(self, operation: str, query: str, *args: Any) -> Optional[asyncpg.Record]:
        try:
            return await self._conn.fetchrow(query, *args)
        except STORAGE_EXCEPTIONS as exc:
            logger.error("Storage failure during %s", operation, exc_info=True)
            raise StorageError(f"{operation} failed: {exc}", operation=operation) from exc

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._transaction_depth:
            self._transaction_depth += 1
            try:
                yield
            finally:
                self._transaction_depth -= 1
            return

        try:
            transaction = self._conn.transaction()
            await transaction.start()
        except STORAGE_EXCEPTIONS as exc:
            logger.error("Could not open transaction", exc_info=True)
            raise StorageError(f"Could not open transaction: {exc}", operation="transaction") from exc

        self._transaction_depth = 1
        try:
            yield
        except BaseException:
            try:
                await transaction.rollback()
            except STORAGE_EXCEPTIONS:
                logger.error("Rollback failed", exc_info=True)
            raise
        else:
            try:
                await transaction.commit()
            except STORAGE_EXCEPTIONS as exc:
                logger.error("Commit failed", exc_info=True)
                raise StorageError(f"Commit failed: {exc}", operation="transaction") from exc
        finally:
            self._transaction_depth = 0

    # =========================================================================
    # Directory
    # =========================================================================

    async def list_team_members(
        self,
        role: Optional[TeamMemberRole] = None,
        active_only: bool = False,
    ) -> List[TeamMember]:
        rows = await self._fetch(
            "list_team_members",
            report_queries.LIST_TEAM_MEMBERS,
            role.value if role else None,
            active_only,
        )
        return parse_records(TeamMember, rows)

    async def get_team_member(self, member_id: int) -> Optional[TeamMember]:
        row = await self._fetchrow("get_team_member", report_queries.GET_TEAM_MEMBER, member_id)
        return parse_record(TeamMember, row) if row else None

    async def list_students(self, ids: Optional[Iterable[int]] = None) -> List[Student]:
        rows = await self._fetch("list_students", report_queries.LIST_STUDENTS, _ids(ids))
        return parse_records(Student, rows)

    async def list_programs(self, ids: Optional[Iterable[int]] = None) -> List[Program]:
        rows = await self._fetch("list_programs", report_queries.LIST_PROGRAMS, _ids(ids))
        return parse_records(Program, rows)

    # =========================================================================
    # Activity
    # =========================================================================

    async def list_activity(
        self,
        date_range: Optional[DateRange] = None,
        member_ids: Optional[Iterable[int]] = None,
    ) -> List[ActivityRecord]:
        first_day, last_day = _days(date_range)
        rows = await self._fetch(
            "list_activity",
            report_queries.LIST_ACTIVITY,
            first_day,
            last_day,
            _ids(member_ids),
        )
        return parse_records(ActivityRecord, rows)

    # =========================================================================
    # Enrollments and payments
    # =========================================================================

    async def list_enrollments(
        self,
        statuses: Optional[Sequence[EnrollmentStatus]] = None,
        started_in: Optional[DateRange] = None,
        ids: Optional[Iterable[int]] = None,
        student_ids: Optional[Iterable[int]] = None,
    ) -> List[Enrollment]:
        first_day, last_day = _days(started_in)
        rows = await self._fetch(
            "list_enrollments",
            report_queries.LIST_ENROLLMENTS,
            _values(statuses),
            first_day,
            last_day,
            _ids(ids),
            _ids(student_ids),
        )
        return parse_records(Enrollment, rows)

    async def get_enrollment(self, enrollment_id: int) -> Optional[Enrollment]:
        row = await self._fetchrow("get_enrollment", report_queries.GET_ENROLLMENT, enrollment_id)
        return parse_record(Enrollment, row) if row else None

    async def update_enrollment(
        self,
        enrollment_id: int,
        expected_version: Optional[int],
        **changes,
    ) -> Optional[Enrollment]:
        columns = list(changes)
        query = plan_queries.get_update_enrollment_query(columns)
        row = await self._fetchrow(
            "update_enrollment",
            query,
            enrollment_id,
            expected_version,
            *[getattr(changes[c], "value", changes[c]) for c in columns],
        )
        return parse_record(Enrollment, row) if row else None

    async def list_payments(
        self,
        date_range: Optional[DateRange] = None,
        statuses: Optional[Sequence[PaymentStatus]] = None,
        enrollment_ids: Optional[Iterable[int]] = None,
    ) -> List[Payment]:
        start, end = _instants(date_range)
        rows = await self._fetch(
            "list_payments",
            report_queries.LIST_PAYMENTS,
            start,
            end,
            _values(statuses),
            _ids(enrollment_ids),
        )
        return parse_records(Payment, rows)

    async def get_payment(self, payment_id: int) -> Optional[Payment]:
        row = await self._fetchrow("get_payment", report_queries.GET_PAYMENT, payment_id)
        return parse_record(Payment, row) if row else None

    async def insert_payment(
        self,
        enrollment_id: int,
        amount: float,
        paid_at: datetime,
        status: PaymentStatus = PaymentStatus.PAID,
        method: Optional[str] = None,
        payer_email: Optional[str] = None,
    ) -> Payment:
        row = await self._fetchrow(
            "insert_payment",
            plan_queries.INSERT_PAYMENT,
            enrollment_id,
            amount,
            paid_at,
            status.value,
            method,
            payer_email,
        )
        return parse_record(Payment, row)

    # =========================================================================
    # Schedules and installments
    # =========================================================================

    async def create_schedule(
        self,
        enrollment_id: int,
        plan_type: PlanType,
        created_at: datetime,
    ) -> PaymentSchedule:
        locked = await self._fetchrow("lock_enrollment", plan_queries.LOCK_ENROLLMENT, enrollment_id)
        if locked is None:
            raise NotFoundError("Enrollment", enrollment_id)
        row = await self._fetchrow(
            "create_schedule",
            plan_queries.INSERT_SCHEDULE,
            enrollment_id,
            plan_type.value,
            created_at,
        )
        return parse_record(PaymentSchedule, row)

    async def list_schedules(self, enrollment_id: int) -> List[PaymentSchedule]:
        rows = await self._fetch("list_schedules", report_queries.LIST_SCHEDULES, enrollment_id)
        return parse_records(PaymentSchedule, rows)

    async def insert_installments(
        self,
        schedule: PaymentSchedule,
        entries: Sequence[InstallmentSpec],
    ) -> List[Installment]:
        if not entries:
            return []
        rows = await self._fetch(
            "insert_installments",
            plan_queries.INSERT_INSTALLMENTS,
            schedule.enrollment_id,
            schedule.id,
            [due_date for due_date, _ in entries],
            [amount for _, amount in entries],
        )
        installments = parse_records(Installment, rows)
        return sorted(installments, key=lambda i: i.id)

    async def list_installments(
        self,
        enrollment_ids: Optional[Iterable[int]] = None,
        schedule_id: Optional[int] = None,
        current_only: bool = True,
    ) -> List[Installment]:
        rows = await self._fetch(
            "list_installments",
            report_queries.LIST_INSTALLMENTS,
            _ids(enrollment_ids),
            schedule_id,
            current_only,
        )
        return parse_records(Installment, rows)

    async def get_installment(self, installment_id: int) -> Optional[Installment]:
        row = await self._fetchrow("get_installment", report_queries.GET_INSTALLMENT, installment_id)
        return parse_record(Installment, row) if row else None

    async def mark_installment_paid(self, installment_id: int, payment_id: int) -> Optional[Installment]:
        row = await self._fetchrow(
            "mark_installment_paid",
            plan_queries.MARK_INSTALLMENT_PAID,
            installment_id,
            payment_id,
        )
        return parse_record(Installment, row) if row else None

    # =========================================================================
    # Marketing
    # =========================================================================

    async def list_leads(
        self,
        emails: Optional[Iterable[str]] = None,
        date_range: Optional[DateRange] = None,
    ) -> List[Lead]:
        normalized = sorted({e.strip().lower() for e in emails}) if emails is not None else None
        start, end = _instants(date_range)
        rows = await self._fetch("list_leads", report_queries.LIST_LEADS, normalized, start, end)
        return parse_records(Lead, rows)

    async def list_ad_performance(self, date_range: Optional[DateRange] = None) -> List[AdPerformance]:
        first_day, last_day = _days(date_range)
        rows = await self._fetch("list_ad_performance", report_queries.LIST_AD_PERFORMANCE, first_day, last_day)
        return parse_records(AdPerformance, rows)

    async def list_email_broadcasts(
        self,
        date_range: Optional[DateRange] = None,
        limit: Optional[int] = None,
    ) -> List[EmailBroadcast]:
        start, end = _instants(date_range)
        rows = await self._fetch(
            "list_email_broadcasts",
            report_queries.LIST_EMAIL_BROADCASTS,
            start,
            end,
            limit,
        )
        return parse_records(EmailBroadcast, rows)

    # =========================================================================
    # Customer success
    # =========================================================================

    async def list_check_ins(self, enrollment_ids: Optional[Iterable[int]] = None) -> List[CheckIn]:
        rows = await self._fetch("list_check_ins", report_queries.LIST_CHECK_INS, _ids(enrollment_ids))
        return parse_records(CheckIn, rows)

    async def list_onboarding_checklists(
        self,
        enrollment_ids: Optional[Iterable[int]] = None,
    ) -> List[OnboardingChecklist]:
        rows = await self._fetch(
            "list_onboarding_checklists",
            report_queries.LIST_ONBOARDING_CHECKLISTS,
            _ids(enrollment_ids),
        )
        return parse_records(OnboardingChecklist, rows)

    async def upsert_onboarding_checklist(
        self,
        enrollment_id: int,
        changes: Dict[str, bool],
    ) -> OnboardingChecklist:
        columns = list(changes)
        row = await self._fetchrow(
            "upsert_onboarding_checklist",
            plan_queries.get_upsert_onboarding_query(columns),
            enrollment_id,
            *[changes[c] for c in columns],
        )
        return parse_record(OnboardingChecklist, row)

    async def get_check_in(self, check_in_id: int) -> Optional[CheckIn]:
        row = await self._fetchrow("get_check_in", report_queries.GET_CHECK_IN, check_in_id)
        return parse_record(CheckIn, row) if row else None

    async def update_check_in_outcome(self, check_in_id: int, outcome: Optional[str]) -> Optional[CheckIn]:
        row = await self._fetchrow(
            "update_check_in_outcome",
            plan_queries.UPDATE_CHECK_IN_OUTCOME,
            check_in_id,
            outcome,
        )
        return parse_record(CheckIn, row) if row else None

    async def list_weekly_progress(self, enrollment_ids: Optional[Iterable[int]] = None) -> List[WeeklyProgress]:
        rows = await self._fetch("list_weekly_progress", report_queries.LIST_WEEKLY_PROGRESS, _ids(enrollment_ids))
        return parse_records(WeeklyProgress, rows)

    async def get_weekly_progress(self, week_id: int) -> Optional[WeeklyProgress]:
        row = await self._fetchrow("get_weekly_progress", report_queries.GET_WEEKLY_PROGRESS, week_id)
        return parse_record(WeeklyProgress, row) if row else None

    async def update_weekly_progress(
        self,
        week_id: int,
        outcome: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[WeeklyProgress]:
        row = await self._fetchrow(
            "update_weekly_progress",
            plan_queries.UPDATE_WEEKLY_PROGRESS,
            week_id,
            outcome,
            notes,
        )
        return parse_record(WeeklyProgress, row) if row else None

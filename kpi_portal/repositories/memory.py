"""
In-process repository backed by plain dict tables.

Used by the test suite and by `STORAGE_BACKEND=memory` deployments (demos,
local frontend work). Transactions snapshot every table on entry and restore
the snapshot if the block raises, so multi-row writes are all-or-nothing
exactly as with PostgreSQL. Records are immutable pydantic models; writes
replace them, so a shallow copy of each table is a complete snapshot.

Seeding:
    repo = InMemoryRepository()
    repo.seed(
        TeamMember(id=1, name="Alice", role=TeamMemberRole.CLOSER),
        Enrollment(id=10, student_id=1, start_date=date(2026, 3, 1)),
    )
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Type

from kpi_portal.core.errors import NotFoundError, ValidationError
from kpi_portal.models.enums import EnrollmentStatus, InstallmentStatus, PaymentStatus, PlanType, TeamMemberRole
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
    StoredRecord,
    TeamMember,
    WeeklyProgress,
    parse_record,
)
from kpi_portal.repositories.base import InstallmentSpec, Repository
from kpi_portal.services.date_range import DateRange


logger = logging.getLogger(__name__)


TABLES: Dict[Type[StoredRecord], str] = {
    TeamMember: "team_members",
    Student: "students",
    Program: "programs",
    ActivityRecord: "activity_records",
    Enrollment: "enrollments",
    Payment: "payments",
    PaymentSchedule: "payment_schedules",
    Installment: "installments",
    Lead: "leads",
    AdPerformance: "ad_performance",
    EmailBroadcast: "email_broadcasts",
    CheckIn: "check_ins",
    OnboardingChecklist: "onboarding_checklists",
    WeeklyProgress: "weekly_progress",
}


def _id_filter(ids: Optional[Iterable[int]]):
    return set(ids) if ids is not None else None


class InMemoryRepository(Repository):
    """Dict-backed Repository with snapshot/rollback transactions."""

    def __init__(self) -> None:
        self._tables: Dict[str, Dict[int, StoredRecord]] = {name: {} for name in TABLES.values()}
        self._transaction_depth = 0

    # =========================================================================
    # Seeding and internals
    # =========================================================================

    def seed(self, *records: StoredRecord) -> "InMemoryRepository":
        """Insert records as-is (ids included). Returns self for chaining."""
        for record in records:
            table = TABLES.get(type(record))
            if table is None:
                raise ValidationError(f"Cannot store {type(record).__name__}")
            self._tables[table][record.id] = record
        return self

    def _rows(self, model: Type[StoredRecord]) -> List[Any]:
        return list(self._tables[TABLES[model]].values())

    def _next_id(self, model: Type[StoredRecord]) -> int:
        table = self._tables[TABLES[model]]
        return max(table, default=0) + 1

    def _put(self, record: StoredRecord) -> None:
        self._tables[TABLES[type(record)]][record.id] = record

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[None]:
        if self._transaction_depth:
            self._transaction_depth += 1
            try:
                yield
            finally:
                self._transaction_depth -= 1
            return

        snapshot = {name: dict(rows) for name, rows in self._tables.items()}
        self._transaction_depth = 1
        try:
            yield
        except BaseException:
            self._tables = snapshot
            logger.debug("In-memory transaction rolled back")
            raise
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
        members = [
            m for m in self._rows(TeamMember)
            if (role is None or m.role == role) and (m.active or not active_only)
        ]
        return sorted(members, key=lambda m: (m.name, m.id))

    async def get_team_member(self, member_id: int) -> Optional[TeamMember]:
        return self._tables["team_members"].get(member_id)

    async def list_students(self, ids: Optional[Iterable[int]] = None) -> List[Student]:
        wanted = _id_filter(ids)
        return [s for s in self._rows(Student) if wanted is None or s.id in wanted]

    async def list_programs(self, ids: Optional[Iterable[int]] = None) -> List[Program]:
        wanted = _id_filter(ids)
        return [p for p in self._rows(Program) if wanted is None or p.id in wanted]

    # =========================================================================
    # Activity
    # =========================================================================

    async def list_activity(
        self,
        date_range: Optional[DateRange] = None,
        member_ids: Optional[Iterable[int]] = None,
    ) -> List[ActivityRecord]:
        wanted = _id_filter(member_ids)
        rows = [
            r for r in self._rows(ActivityRecord)
            if (date_range is None or date_range.contains(r.date))
            and (wanted is None or r.team_member_id in wanted)
        ]
        return sorted(rows, key=lambda r: (r.date, r.team_member_id, r.id))

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
        wanted = _id_filter(ids)
        students = _id_filter(student_ids)
        rows = [
            e for e in self._rows(Enrollment)
            if (statuses is None or e.status in statuses)
            and (started_in is None or started_in.contains(e.start_date))
            and (wanted is None or e.id in wanted)
            and (students is None or e.student_id in students)
        ]
        return sorted(rows, key=lambda e: e.id)

    async def get_enrollment(self, enrollment_id: int) -> Optional[Enrollment]:
        return self._tables["enrollments"].get(enrollment_id)

    async def update_enrollment(
        self,
        enrollment_id: int,
        expected_version: Optional[int],
        **changes,
    ) -> Optional[Enrollment]:
        current = self._tables["enrollments"].get(enrollment_id)
        if current is None or expected_version not in (None, current.version):
            return None
        updated = current.with_changes(**changes, version=current.version + 1)
        self._put(updated)
        return updated

    async def list_payments(
        self,
        date_range: Optional[DateRange] = None,
        statuses: Optional[Sequence[PaymentStatus]] = None,
        enrollment_ids: Optional[Iterable[int]] = None,
    ) -> List[Payment]:
        wanted = _id_filter(enrollment_ids)
        rows = [
            p for p in self._rows(Payment)
            if (date_range is None or date_range.contains(p.date))
            and (statuses is None or p.status in statuses)
            and (wanted is None or p.enrollment_id in wanted)
        ]
        return sorted(rows, key=lambda p: (p.date, p.id), reverse=True)

    async def get_payment(self, payment_id: int) -> Optional[Payment]:
        return self._tables["payments"].get(payment_id)

    async def insert_payment(
        self,
        enrollment_id: int,
        amount: float,
        paid_at: datetime,
        status: PaymentStatus = PaymentStatus.PAID,
        method: Optional[str] = None,
        payer_email: Optional[str] = None,
    ) -> Payment:
        payment = parse_record(Payment, {
            "id": self._next_id(Payment),
            "enrollment_id": enrollment_id,
            "amount": amount,
            "date": paid_at,
            "status": status,
            "method": method,
            "payer_email": payer_email,
        })
        self._put(payment)
        return payment

    # =========================================================================
    # Schedules and installments
    # =========================================================================

    async def create_schedule(
        self,
        enrollment_id: int,
        plan_type: PlanType,
        created_at: datetime,
    ) -> PaymentSchedule:
        if enrollment_id not in self._tables["enrollments"]:
            raise NotFoundError("Enrollment", enrollment_id)
        versions = [s.version for s in self._rows(PaymentSchedule) if s.enrollment_id == enrollment_id]
        schedule = PaymentSchedule(
            id=self._next_id(PaymentSchedule),
            enrollment_id=enrollment_id,
            version=max(versions, default=0) + 1,
            plan_type=plan_type,
            created_at=created_at,
        )
        self._put(schedule)
        return schedule

    async def list_schedules(self, enrollment_id: int) -> List[PaymentSchedule]:
        rows = [s for s in self._rows(PaymentSchedule) if s.enrollment_id == enrollment_id]
        return sorted(rows, key=lambda s: s.version)

    async def insert_installments(
        self,
        schedule: PaymentSchedule,
        entries: Sequence[InstallmentSpec],
    ) -> List[Installment]:
        created = []
        for due_date, amount in entries:
            installment = parse_record(Installment, {
                "id": self._next_id(Installment),
                "enrollment_id": schedule.enrollment_id,
                "schedule_id": schedule.id,
                "due_date": due_date,
                "amount": amount,
                "status": InstallmentStatus.PENDING,
            })
            self._put(installment)
            created.append(installment)
        return created

    async def list_installments(
        self,
        enrollment_ids: Optional[Iterable[int]] = None,
        schedule_id: Optional[int] = None,
        current_only: bool = True,
    ) -> List[Installment]:
        wanted = _id_filter(enrollment_ids)
        current_schedules = {
            e.current_schedule_id for e in self._rows(Enrollment) if e.current_schedule_id is not None
        }
        rows = [
            i for i in self._rows(Installment)
            if (wanted is None or i.enrollment_id in wanted)
            and (schedule_id is None or i.schedule_id == schedule_id)
            and (not current_only or i.schedule_id in current_schedules)
        ]
        return sorted(rows, key=lambda i: (i.due_date, i.id))

    async def get_installment(self, installment_id: int) -> Optional[Installment]:
        return self._tables["installments"].get(installment_id)

    async def mark_installment_paid(self, installment_id: int, payment_id: int) -> Optional[Installment]:
        current = self._tables["installments"].get(installment_id)
        if current is None or current.status != InstallmentStatus.PENDING:
            return None
        updated = current.with_changes(status=InstallmentStatus.PAID, payment_id=payment_id)
        self._put(updated)
        return updated

    # =========================================================================
    # Marketing
    # =========================================================================

    async def list_leads(
        self,
        emails: Optional[Iterable[str]] = None,
        date_range: Optional[DateRange] = None,
    ) -> List[Lead]:
        wanted = {e.strip().lower() for e in emails} if emails is not None else None
        rows = [
            lead for lead in self._rows(Lead)
            if (wanted is None or lead.email.strip().lower() in wanted)
            and (date_range is None or date_range.contains(lead.created_at))
        ]
        return sorted(rows, key=lambda lead: (lead.created_at, lead.id), reverse=True)

    async def list_ad_performance(self, date_range: Optional[DateRange] = None) -> List[AdPerformance]:
        rows = [r for r in self._rows(AdPerformance) if date_range is None or date_range.contains(r.date)]
        return sorted(rows, key=lambda r: (r.date, r.campaign_id, r.id))

    async def list_email_broadcasts(
        self,
        date_range: Optional[DateRange] = None,
        limit: Optional[int] = None,
    ) -> List[EmailBroadcast]:
        rows = [b for b in self._rows(EmailBroadcast) if date_range is None or date_range.contains(b.sent_at)]
        rows.sort(key=lambda b: (b.sent_at, b.id), reverse=True)
        return rows[:limit] if limit is not None else rows

    # =========================================================================
    # Customer success
    # =========================================================================

    async def list_check_ins(self, enrollment_ids: Optional[Iterable[int]] = None) -> List[CheckIn]:
        wanted = _id_filter(enrollment_ids)
        rows = [c for c in self._rows(CheckIn) if wanted is None or c.enrollment_id in wanted]
        return sorted(rows, key=lambda c: (c.date, c.id), reverse=True)

    async def list_onboarding_checklists(
        self,
        enrollment_ids: Optional[Iterable[int]] = None,
    ) -> List[OnboardingChecklist]:
        wanted = _id_filter(enrollment_ids)
        return [c for c in self._rows(OnboardingChecklist) if wanted is None or c.enrollment_id in wanted]

    async def upsert_onboarding_checklist(
        self,
        enrollment_id: int,
        changes: Dict[str, bool],
    ) -> OnboardingChecklist:
        existing = next(
            (c for c in self._rows(OnboardingChecklist) if c.enrollment_id == enrollment_id),
            None,
        )
        if existing is None:
            existing = OnboardingChecklist(id=self._next_id(OnboardingChecklist), enrollment_id=enrollment_id)
        updated = existing.with_changes(**changes)
        self._put(updated)
        return updated

    async def get_check_in(self, check_in_id: int) -> Optional[CheckIn]:
        return self._tables["check_ins"].get(check_in_id)

    async def update_check_in_outcome(self, check_in_id: int, outcome: Optional[str]) -> Optional[CheckIn]:
        current = self._tables["check_ins"].get(check_in_id)
        if current is None:
            return None
        updated = current.with_changes(outcome=outcome)
        self._put(updated)
        return updated

    async def list_weekly_progress(self, enrollment_ids: Optional[Iterable[int]] = None) -> List[WeeklyProgress]:
        wanted = _id_filter(enrollment_ids)
        rows = [w for w in self._rows(WeeklyProgress) if wanted is None or w.enrollment_id in wanted]
        return sorted(rows, key=lambda w: (w.enrollment_id, w.week_number))

    async def get_weekly_progress(self, week_id: int) -> Optional[WeeklyProgress]:
        return self._tables["weekly_progress"].get(week_id)

    async def update_weekly_progress(
        self,
        week_id: int,
        outcome: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[WeeklyProgress]:
        current = self._tables["weekly_progress"].get(week_id)
        if current is None:
            return None
        changes = {k: v for k, v in {"outcome": outcome, "notes": notes}.items() if v is not None}
        updated = current.with_changes(**changes)
        self._put(updated)
        return updated

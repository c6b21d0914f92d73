"""
Repository interface for the KPI Portal backend.

The engine never holds a storage handle of its own: every builder and
manager receives a `Repository` instance explicitly. Implementations:

- PostgresRepository: asyncpg, one connection per request (repositories.postgres)
- InMemoryRepository: dict tables with snapshot/rollback (repositories.memory)

All reads return validated record types from kpi_portal.models.records.
The two multi-row mutations (schedule generation, settlement) and
reassignment are wrapped by callers in `async with repo.transaction():`,
which must be all-or-nothing.

Write primitives carry their own guards so concurrent callers cannot slip
past a check made in Python:
- mark_installment_paid only flips a PENDING installment (returns None otherwise)
- update_enrollment is compare-and-set on `version`
"""

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import AsyncContextManager, Dict, Iterable, List, Optional, Sequence, Tuple

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
)
from kpi_portal.services.date_range import DateRange


# (due_date, amount) pairs for a new schedule
InstallmentSpec = Tuple[date, float]


class Repository(ABC):
    """Abstract record store consumed by the engine."""

    # =========================================================================
    # Transactions
    # =========================================================================

    @abstractmethod
    def transaction(self) -> AsyncContextManager[None]:
        """
        All-or-nothing boundary for multi-row writes.

        Nested use joins the outer transaction. Any exception raised inside
        the block rolls every write back and propagates unchanged.
        """

    # =========================================================================
    # Directory
    # =========================================================================

    @abstractmethod
    async def list_team_members(
        self,
        role: Optional[TeamMemberRole] = None,
        active_only: bool = False,
    ) -> List[TeamMember]:
        """Team members ordered by name."""

    @abstractmethod
    async def get_team_member(self, member_id: int) -> Optional[TeamMember]:
        ...

    @abstractmethod
    async def list_students(self, ids: Optional[Iterable[int]] = None) -> List[Student]:
        ...

    @abstractmethod
    async def list_programs(self, ids: Optional[Iterable[int]] = None) -> List[Program]:
        ...

    # =========================================================================
    # Activity
    # =========================================================================

    @abstractmethod
    async def list_activity(
        self,
        date_range: Optional[DateRange] = None,
        member_ids: Optional[Iterable[int]] = None,
    ) -> List[ActivityRecord]:
        """Activity records whose calendar day falls in the window."""

    # =========================================================================
    # Enrollments and payments
    # =========================================================================

    @abstractmethod
    async def list_enrollments(
        self,
        statuses: Optional[Sequence[EnrollmentStatus]] = None,
        started_in: Optional[DateRange] = None,
        ids: Optional[Iterable[int]] = None,
        student_ids: Optional[Iterable[int]] = None,
    ) -> List[Enrollment]:
        ...

    @abstractmethod
    async def get_enrollment(self, enrollment_id: int) -> Optional[Enrollment]:
        ...

    @abstractmethod
    async def update_enrollment(
        self,
        enrollment_id: int,
        expected_version: Optional[int],
        **changes,
    ) -> Optional[Enrollment]:
        """
        Apply `changes` and bump `version` if the stored version still equals
        `expected_version`. With `expected_version=None` the write is
        unconditional (last write wins).

        Returns:
            The updated enrollment, or None when the row is missing or its
            version moved on.
        """

    @abstractmethod
    async def list_payments(
        self,
        date_range: Optional[DateRange] = None,
        statuses: Optional[Sequence[PaymentStatus]] = None,
        enrollment_ids: Optional[Iterable[int]] = None,
    ) -> List[Payment]:
        """Payments ordered newest first."""

    @abstractmethod
    async def get_payment(self, payment_id: int) -> Optional[Payment]:
        ...

    @abstractmethod
    async def insert_payment(
        self,
        enrollment_id: int,
        amount: float,
        paid_at: datetime,
        status: PaymentStatus = PaymentStatus.PAID,
        method: Optional[str] = None,
        payer_email: Optional[str] = None,
    ) -> Payment:
        ...

    # =========================================================================
    # Schedules and installments
    # =========================================================================

    @abstractmethod
    async def create_schedule(
        self,
        enrollment_id: int,
        plan_type: PlanType,
        created_at: datetime,
    ) -> PaymentSchedule:
        """Create the next schedule version for an enrollment (not yet current)."""

    @abstractmethod
    async def list_schedules(self, enrollment_id: int) -> List[PaymentSchedule]:
        """All schedule versions, oldest first."""

    @abstractmethod
    async def insert_installments(
        self,
        schedule: PaymentSchedule,
        entries: Sequence[InstallmentSpec],
    ) -> List[Installment]:
        ...

    @abstractmethod
    async def list_installments(
        self,
        enrollment_ids: Optional[Iterable[int]] = None,
        schedule_id: Optional[int] = None,
        current_only: bool = True,
    ) -> List[Installment]:
        """
        Installments ordered by due date.

        With `current_only`, only rows of each enrollment's current schedule
        are returned; superseded versions stay stored but invisible.
        """

    @abstractmethod
    async def get_installment(self, installment_id: int) -> Optional[Installment]:
        ...

    @abstractmethod
    async def mark_installment_paid(self, installment_id: int, payment_id: int) -> Optional[Installment]:
        """Flip a PENDING installment to PAID. Returns None if it was not PENDING."""

    # =========================================================================
    # Marketing
    # =========================================================================

    @abstractmethod
    async def list_leads(
        self,
        emails: Optional[Iterable[str]] = None,
        date_range: Optional[DateRange] = None,
    ) -> List[Lead]:
        """Leads ordered newest first. Email matching is case-insensitive."""

    @abstractmethod
    async def list_ad_performance(self, date_range: Optional[DateRange] = None) -> List[AdPerformance]:
        """Ad rows ordered by date, then campaign."""

    @abstractmethod
    async def list_email_broadcasts(
        self,
        date_range: Optional[DateRange] = None,
        limit: Optional[int] = None,
    ) -> List[EmailBroadcast]:
        """Broadcasts ordered newest first."""

    # =========================================================================
    # Customer success
    # =========================================================================

    @abstractmethod
    async def list_check_ins(self, enrollment_ids: Optional[Iterable[int]] = None) -> List[CheckIn]:
        """Check-ins ordered newest first."""

    @abstractmethod
    async def list_onboarding_checklists(
        self,
        enrollment_ids: Optional[Iterable[int]] = None,
    ) -> List[OnboardingChecklist]:
        ...

    @abstractmethod
    async def upsert_onboarding_checklist(
        self,
        enrollment_id: int,
        changes: Dict[str, bool],
    ) -> OnboardingChecklist:
        """Create the checklist if missing, then apply the step changes."""

    @abstractmethod
    async def get_check_in(self, check_in_id: int) -> Optional[CheckIn]:
        ...

    @abstractmethod
    async def update_check_in_outcome(self, check_in_id: int, outcome: Optional[str]) -> Optional[CheckIn]:
        """Set the CSM outcome of a check-in. Returns None if it does not exist."""

    @abstractmethod
    async def list_weekly_progress(self, enrollment_ids: Optional[Iterable[int]] = None) -> List[WeeklyProgress]:
        """Weekly progress rows ordered by enrollment, then week number."""

    @abstractmethod
    async def get_weekly_progress(self, week_id: int) -> Optional[WeeklyProgress]:
        ...

    @abstractmethod
    async def update_weekly_progress(
        self,
        week_id: int,
        outcome: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Optional[WeeklyProgress]:
        """
        Apply the given fields (None leaves a field unchanged).

        Returns None if the row does not exist.
        """

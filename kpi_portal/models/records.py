"""
Stored record types read and written through the repository boundary.

Every entity the engine touches has an explicit Pydantic model here; rows
coming out of storage are validated into these types by `parse_record`, so
malformed data (negative counters, an installment marked PAID without a
payment) fails at the boundary instead of deep inside an aggregation.

Entities:
- TeamMember, Student, Program: directory data
- ActivityRecord: one per team member per calendar day (end-of-day report)
- Enrollment, Payment, PaymentSchedule, Installment: revenue and plan lifecycle
- Lead: marketing lead used for source attribution
- AdPerformance, EmailBroadcast: marketing time series
- CheckIn, OnboardingChecklist, WeeklyProgress: customer-success tracking
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from kpi_portal.core.errors import ValidationError
from kpi_portal.models.enums import (
    EnrollmentStatus,
    InstallmentStatus,
    OnboardingStep,
    PaymentStatus,
    PlanType,
    TeamMemberRole,
)


RecordT = TypeVar("RecordT", bound=BaseModel)


def _as_aware(value: Any) -> Any:
    # Naive timestamps from fixtures or older rows are taken as UTC
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class StoredRecord(BaseModel):
    """Base for stored records: immutable-by-convention, ignores unknown columns."""

    model_config = ConfigDict(extra="ignore")

    def with_changes(self: RecordT, **changes: Any) -> RecordT:
        """Return a re-validated copy with `changes` applied."""
        return parse_record(type(self), {**self.model_dump(), **changes})


# =============================================================================
# Directory
# =============================================================================


class TeamMember(StoredRecord):
    """Sales team member. Soft-deleted via active=False, never removed."""

    id: int
    name: str
    role: TeamMemberRole
    active: bool = True


class Student(StoredRecord):
    id: int
    name: str
    email: str


class Program(StoredRecord):
    id: int
    name: str
    price: float = Field(default=0.0, ge=0)


# =============================================================================
# Activity
# =============================================================================


class ActivityRecord(StoredRecord):
    """
    End-of-day activity report for one team member.

    Which counters are filled depends on the member's role; anything the
    role does not report is left as None and aggregates as 0.

    Attributes:
        calls_made: Outbound dials (setters).
        pick_ups: Dials that were answered (setters).
        live_calls: Sales calls that actually happened (closers).
        booked_calls: Calls put on a closer's calendar (setters, DM setters).
        dms_sent: Outbound direct messages (DM setters).
        conversations_started: DM threads that got a reply (DM setters).
        offers_made: Offers pitched on live calls (closers).
        closes: Deals won.
        scheduled_calls: Calls currently on the member's calendar.
        reschedules: Calls moved to a new slot.
        unqualified_leads: Leads disqualified on the call.
        cash_collected: Self-reported cash for the day.
    """

    id: int
    team_member_id: int
    date: date

    calls_made: Optional[int] = Field(default=None, ge=0)
    pick_ups: Optional[int] = Field(default=None, ge=0)
    live_calls: Optional[int] = Field(default=None, ge=0)
    booked_calls: Optional[int] = Field(default=None, ge=0)
    dms_sent: Optional[int] = Field(default=None, ge=0)
    conversations_started: Optional[int] = Field(default=None, ge=0)
    offers_made: Optional[int] = Field(default=None, ge=0)
    closes: Optional[int] = Field(default=None, ge=0)
    scheduled_calls: Optional[int] = Field(default=None, ge=0)
    reschedules: Optional[int] = Field(default=None, ge=0)
    unqualified_leads: Optional[int] = Field(default=None, ge=0)
    cash_collected: Optional[float] = Field(default=None, ge=0)

    notes: Optional[str] = None
    struggles: Optional[str] = None


ACTIVITY_COUNTERS: List[str] = [
    "calls_made",
    "pick_ups",
    "live_calls",
    "booked_calls",
    "dms_sent",
    "conversations_started",
    "offers_made",
    "closes",
    "scheduled_calls",
    "reschedules",
    "unqualified_leads",
    "cash_collected",
]


# =============================================================================
# Enrollment, payments and installment schedules
# =============================================================================


class Enrollment(StoredRecord):
    """
    A student's enrollment in a program.

    `version` increments on every write and backs optimistic checks on
    reassignment. `current_schedule_id` points at the live installment
    schedule; older schedules are kept for audit.
    """

    id: int
    student_id: int
    program_id: Optional[int] = None
    plan_type: PlanType = PlanType.PIF
    contract_value: float = Field(default=0.0, ge=0)
    status: EnrollmentStatus = EnrollmentStatus.ACTIVE
    assigned_closer_id: Optional[int] = None
    assigned_setter_id: Optional[int] = None
    start_date: date
    end_date: Optional[date] = None
    current_schedule_id: Optional[int] = None
    version: int = Field(default=1, ge=1)


class Payment(StoredRecord):
    id: int
    enrollment_id: int
    amount: float = Field(ge=0)
    date: datetime
    status: PaymentStatus = PaymentStatus.PAID
    method: Optional[str] = None
    payer_email: Optional[str] = None

    aware_date = field_validator("date", mode="before")(_as_aware)


class PaymentSchedule(StoredRecord):
    """One generated version of an enrollment's installment schedule."""

    id: int
    enrollment_id: int
    version: int = Field(ge=1)
    plan_type: PlanType
    created_at: datetime

    aware_created = field_validator("created_at", mode="before")(_as_aware)


class Installment(StoredRecord):
    """
    A scheduled installment.

    Stored status is PENDING or PAID only; OVERDUE is computed on read.
    A PAID installment always references the payment that settled it.
    """

    id: int
    enrollment_id: int
    schedule_id: int
    due_date: date
    amount: float = Field(gt=0)
    status: InstallmentStatus = InstallmentStatus.PENDING
    payment_id: Optional[int] = None

    @model_validator(mode="after")
    def _check_status(self) -> "Installment":
        if self.status == InstallmentStatus.OVERDUE:
            raise ValueError("OVERDUE is derived at read time and cannot be stored")
        if self.status == InstallmentStatus.PAID and self.payment_id is None:
            raise ValueError("a PAID installment must reference its payment")
        return self


# =============================================================================
# Marketing
# =============================================================================


class Lead(StoredRecord):
    id: int
    email: str
    source: Optional[str] = None
    campaign: Optional[str] = None
    medium: Optional[str] = None
    created_at: datetime

    aware_created = field_validator("created_at", mode="before")(_as_aware)


class AdPerformance(StoredRecord):
    """Daily ad metrics for one campaign."""

    id: int
    date: date
    campaign_id: int
    campaign_name: Optional[str] = None
    platform: Optional[str] = None
    spend: float = Field(default=0.0, ge=0)
    impressions: int = Field(default=0, ge=0)
    clicks: int = Field(default=0, ge=0)
    leads: int = Field(default=0, ge=0)
    purchases: int = Field(default=0, ge=0)
    revenue: float = Field(default=0.0, ge=0)


class EmailBroadcast(StoredRecord):
    """One email send. Rates are percentages (0-100)."""

    id: int
    subject: Optional[str] = None
    sent_at: datetime
    recipients_count: int = Field(default=0, ge=0)
    open_rate: float = Field(default=0.0, ge=0)
    click_rate: float = Field(default=0.0, ge=0)

    aware_sent = field_validator("sent_at", mode="before")(_as_aware)


# =============================================================================
# Customer success
# =============================================================================


class CheckIn(StoredRecord):
    id: int
    enrollment_id: int
    date: datetime
    satisfaction: int = Field(ge=0, le=10)
    wins: Optional[str] = None
    notes: Optional[str] = None
    outcome: Optional[str] = None

    aware_date = field_validator("date", mode="before")(_as_aware)


class OnboardingChecklist(StoredRecord):
    """Onboarding checklist for one enrollment; one boolean per fixed step."""

    id: int
    enrollment_id: int
    call_completed: bool = False
    slack_joined: bool = False
    course_access: bool = False
    community_intro: bool = False
    goals_set: bool = False
    referrals_asked: bool = False

    def is_done(self, step: OnboardingStep) -> bool:
        return bool(getattr(self, ONBOARDING_STEP_FIELDS[step]))

    def completed_count(self) -> int:
        return sum(1 for step in OnboardingStep if self.is_done(step))


class WeeklyProgress(StoredRecord):
    """CSM notes for one program week of an enrollment."""

    id: int
    enrollment_id: int
    week_number: int = Field(ge=1)
    outcome: Optional[str] = None
    notes: Optional[str] = None


ONBOARDING_STEP_FIELDS: Dict[OnboardingStep, str] = {
    OnboardingStep.CALL_COMPLETED: "call_completed",
    OnboardingStep.SLACK_JOINED: "slack_joined",
    OnboardingStep.COURSE_ACCESS: "course_access",
    OnboardingStep.COMMUNITY_INTRO: "community_intro",
    OnboardingStep.GOALS_SET: "goals_set",
    OnboardingStep.REFERRALS_ASKED: "referrals_asked",
}


# =============================================================================
# Boundary helpers
# =============================================================================


def parse_record(model: Type[RecordT], data: Mapping[str, Any]) -> RecordT:
    """
    Validate a storage row into a record type.

    Args:
        model: Record class to build.
        data: Row mapping (asyncpg.Record, dict, ...).

    Returns:
        The validated record.

    Raises:
        ValidationError: If the row violates the record's constraints.
    """
    try:
        return model.model_validate(dict(data))
    except PydanticValidationError as exc:
        first = exc.errors()[0] if exc.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise ValidationError(
            f"Invalid {model.__name__}: {first.get('msg', str(exc))}",
            field=field,
        ) from exc


def parse_records(model: Type[RecordT], rows: List[Mapping[str, Any]]) -> List[RecordT]:
    return [parse_record(model, row) for row in rows]

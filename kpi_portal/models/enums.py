"""
Enumeration definitions for the KPI Portal backend.

All enums inherit from both `str` and `Enum` so they serialize as their
values in Pydantic models and JSON responses, and compare equal to the raw
strings stored in the database.
"""

from enum import Enum


class TeamMemberRole(str, Enum):
    """
    Sales team roles. Each role reports a different subset of activity counters.

    - CLOSER: Takes live calls, makes offers and closes deals
    - SETTER: Dials outbound, books calls from pick-ups
    - DM_SETTER: Books calls from direct-message conversations
    """
    CLOSER = "CLOSER"
    SETTER = "SETTER"
    DM_SETTER = "DM_SETTER"


class PlanType(str, Enum):
    """
    Enrollment payment plan type.

    - PIF: Pay-in-full, one lump payment, no installment schedule
    - SPLIT: Multi-installment payment plan
    """
    PIF = "PIF"
    SPLIT = "SPLIT"

    @property
    def label(self) -> str:
        """Display label used by the portal UI."""
        return "Split Pay" if self is PlanType.SPLIT else "PIF"

    @classmethod
    def from_label(cls, value: str) -> "PlanType":
        """Accept either the enum value or the UI label ('Split Pay')."""
        normalized = value.strip().upper().replace(" ", "_")
        if normalized in ("SPLIT", "SPLIT_PAY"):
            return cls.SPLIT
        if normalized in ("PIF", "PAY_IN_FULL"):
            return cls.PIF
        raise ValueError(f"Unknown plan type: {value}")


class EnrollmentStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    DROPPED = "DROPPED"
    COMPLETED = "COMPLETED"


class PaymentStatus(str, Enum):
    PAID = "PAID"
    PENDING = "PENDING"
    REFUNDED = "REFUNDED"


class InstallmentStatus(str, Enum):
    """
    Installment states.

    Only PENDING and PAID are ever stored. OVERDUE is derived at read time
    (due date in the past and still PENDING) and only appears in read DTOs.
    """
    PENDING = "PENDING"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class AssignmentField(str, Enum):
    """Enrollment attribution slots that can be reassigned."""
    CLOSER = "closer"
    SETTER = "setter"


class OnboardingStep(str, Enum):
    """
    Fixed onboarding checklist steps tracked per enrollment.

    Values are the checklist keys; labels are what the CSM sees.
    """
    CALL_COMPLETED = "callCompleted"
    SLACK_JOINED = "slackJoined"
    COURSE_ACCESS = "courseAccess"
    COMMUNITY_INTRO = "communityIntro"
    GOALS_SET = "goalsSet"
    REFERRALS_ASKED = "referralsAsked"

    @property
    def label(self) -> str:
        return ONBOARDING_LABELS[self]


ONBOARDING_LABELS = {
    OnboardingStep.CALL_COMPLETED: "OB Calls Completed",
    OnboardingStep.SLACK_JOINED: "Slack profile setup",
    OnboardingStep.COURSE_ACCESS: "Course access granted",
    OnboardingStep.COMMUNITY_INTRO: "Introduction video/message posted",
    OnboardingStep.GOALS_SET: "Asked about main goals",
    OnboardingStep.REFERRALS_ASKED: "Ask for 5 referrals",
}

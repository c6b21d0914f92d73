"""
Pytest test module for the customer-success dashboard.

Covers kpi_portal.services.csm:
- Summary cards (owed, overdue, expected, high risk, onboarding compliance)
- High-risk and active client lists
- Onboarding checklist reads and single-step updates
- Student history: enrollments, check-in outcomes and weekly progress
"""

import pytest

from kpi_portal.core.errors import NotFoundError, ValidationError
from kpi_portal.models import OnboardingStep
from kpi_portal.services.csm import (
    build_csm_summary,
    get_onboarding,
    list_active_clients,
    list_high_risk_clients,
    list_student_check_ins,
    list_student_enrollments,
    list_weekly_progress,
    update_check_in_outcome,
    update_onboarding,
    update_weekly_progress,
)


pytestmark = pytest.mark.asyncio


class TestCsmSummary:

    async def test_cards(self, repo, week, fixed_now) -> None:
        summary = await build_csm_summary(repo, week, now=fixed_now)

        assert summary.activeMembers == 3
        assert summary.totalOwed == 2000
        assert summary.overdueAmount == 1000
        assert summary.overdueCount == 1
        # Only the 03-06 installment is due inside the week
        assert summary.expectedPayments == 1000
        # Latest check-ins: enrollment 11 scored 4, enrollment 14 scored 6
        assert summary.highRiskClients == 2
        assert summary.onboardingCompliance == pytest.approx(9 / 12)

    async def test_empty_repository(self, empty_repo, week, fixed_now) -> None:
        summary = await build_csm_summary(empty_repo, week, now=fixed_now)

        assert summary.activeMembers == 0
        assert summary.totalOwed == 0
        assert summary.onboardingCompliance == 0


class TestClientLists:

    async def test_high_risk_uses_latest_check_in(self, repo, settings) -> None:
        clients = await list_high_risk_clients(repo, settings)

        assert [(c.enrollmentId, c.satisfaction, c.selectedOutcome) for c in clients] == [
            (11, 4, "Risk"),
            (14, 6, "First client"),
        ]
        john = clients[0]
        assert (john.name, john.program, john.planType, john.installments) == ("John Roe", "Mastermind", "PIF", 0)

    async def test_no_check_ins(self, empty_repo, settings) -> None:
        assert await list_high_risk_clients(empty_repo, settings) == []

    async def test_active_clients_latest_start_first(self, repo, settings) -> None:
        clients = await list_active_clients(repo, settings)

        assert [c.enrollmentId for c in clients] == [11, 10, 14]
        jane = clients[1]
        assert jane.planType == "Split Pay"
        assert jane.installments == 3
        assert jane.cashCollected == 1000
        assert jane.contractedValue == 3000
        assert (jane.closer, jane.setter) == ("Alice Closer", "Sam Setter")
        assert (clients[2].cashCollected, clients[2].closer) == (0, "Unassigned")


class TestOnboarding:

    async def test_existing_checklist(self, repo) -> None:
        steps = await get_onboarding(repo, 10)

        assert [s.key for s in steps] == [step.value for step in OnboardingStep]
        assert [s.checked for s in steps] == [True, True, True, False, False, False]
        assert steps[0].label == "OB Calls Completed"

    async def test_missing_checklist_reads_unchecked(self, repo) -> None:
        steps = await get_onboarding(repo, 14)

        assert not any(s.checked for s in steps)

    async def test_update_creates_checklist(self, repo) -> None:
        steps = await update_onboarding(repo, 14, "goalsSet", True)

        assert {s.key: s.checked for s in steps}["goalsSet"] is True
        assert [s.checked for s in await get_onboarding(repo, 14)].count(True) == 1

    async def test_update_toggles_one_step(self, repo) -> None:
        await update_onboarding(repo, 10, "slackJoined", False)

        checked = {s.key: s.checked for s in await get_onboarding(repo, 10)}
        assert checked["slackJoined"] is False
        assert checked["callCompleted"] is True

    async def test_invalid_step(self, repo) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await update_onboarding(repo, 10, "hasTattoo", True)

        assert exc_info.value.details["field"] == "field"

    async def test_unknown_enrollment(self, repo) -> None:
        with pytest.raises(NotFoundError):
            await get_onboarding(repo, 999)
        with pytest.raises(NotFoundError):
            await update_onboarding(repo, 999, "goalsSet", True)


class TestStudentHistory:

    async def test_enrollments_newest_first(self, repo, settings) -> None:
        enrollments = await list_student_enrollments(repo, settings, 1)

        assert [e.id for e in enrollments] == [10, 13]
        current, past = enrollments
        assert (current.program, current.planType, current.status) == ("Coaching", "Split Pay", "ACTIVE")
        assert (current.closer, current.setter) == ("Alice Closer", "Sam Setter")
        assert (past.status, past.closer) == ("COMPLETED", "Unassigned")

    async def test_unknown_student(self, repo, settings) -> None:
        with pytest.raises(NotFoundError):
            await list_student_enrollments(repo, settings, 999)
        with pytest.raises(NotFoundError):
            await list_student_check_ins(repo, 999)
        with pytest.raises(NotFoundError):
            await list_weekly_progress(repo, 999)

    async def test_check_ins_of_latest_enrollment(self, repo) -> None:
        check_ins = await list_student_check_ins(repo, 3)

        # Mia's latest enrollment is 12 (03-03), which has no check-ins
        assert check_ins == []
        assert [c.id for c in await list_student_check_ins(repo, 1)] == [2, 1]

    async def test_outcome_is_recorded_and_shown_as_risk_reason(self, repo, settings) -> None:
        view = await update_check_in_outcome(repo, 2, 3, "  Refund requested ")

        assert (view.id, view.selectedOutcome) == (3, "Refund requested")
        clients = await list_high_risk_clients(repo, settings)
        assert clients[0].selectedOutcome == "Refund requested"

    async def test_blank_outcome_clears_it(self, repo) -> None:
        await update_check_in_outcome(repo, 1, 2, "Happy")
        view = await update_check_in_outcome(repo, 1, 2, "   ")

        assert view.selectedOutcome is None

    async def test_other_students_check_in_is_not_found(self, repo) -> None:
        with pytest.raises(NotFoundError):
            await update_check_in_outcome(repo, 1, 3, "Happy")
        with pytest.raises(NotFoundError):
            await update_check_in_outcome(repo, 1, 999, "Happy")

        assert (await repo.get_check_in(3)).outcome is None

    async def test_weekly_progress_of_latest_enrollment(self, repo) -> None:
        weeks = await list_weekly_progress(repo, 1)

        assert [(w.id, w.weekNumber, w.outcome) for w in weeks] == [(1, 1, "On track"), (2, 2, None)]
        assert await list_weekly_progress(repo, 2) == []

    async def test_partial_update_keeps_other_field(self, repo) -> None:
        week = await update_weekly_progress(repo, 1, 1, outcome="Behind")

        assert (week.outcome, week.notes) == ("Behind", "Offer drafted")
        week = await update_weekly_progress(repo, 1, 1, notes="Needs a call")
        assert (week.outcome, week.notes) == ("Behind", "Needs a call")

    async def test_weekly_update_needs_a_field(self, repo) -> None:
        with pytest.raises(ValidationError) as exc_info:
            await update_weekly_progress(repo, 1, 1)

        assert exc_info.value.details["field"] == "outcome"

    async def test_other_students_week_is_not_found(self, repo) -> None:
        with pytest.raises(NotFoundError):
            await update_weekly_progress(repo, 2, 1, outcome="Behind")

        assert (await repo.get_weekly_progress(1)).outcome == "On track"

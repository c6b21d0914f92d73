"""
Pytest test module for the payment plan lifecycle.

Covers kpi_portal.services.payment_plans:
- SPLIT and PIF schedule generation, versioning and the current pointer
- Settlement: one PAID payment per installment, double-settle rejection,
  superseded schedules, rollback on failure
- Plan view totals and the read-time OVERDUE predicate
- Edit-session draft helpers
"""

from datetime import date
from unittest.mock import AsyncMock, patch

import pytest
from pydantic import ValidationError as SchemaError

from kpi_portal.core.errors import AlreadyPaidError, ConflictError, NotFoundError, ValidationError
from kpi_portal.models import (
    Installment,
    InstallmentDraft,
    InstallmentEntry,
    InstallmentStatus,
    PaymentStatus,
    PlanType,
)
from kpi_portal.services.payment_plans import (
    PaymentPlanManager,
    complete_drafts,
    is_overdue,
    read_status,
    resize_drafts,
)


pytestmark = pytest.mark.asyncio


def monthly(amount: float = 1000, count: int = 3):
    return [InstallmentEntry(dueDate=date(2026, 4 + i, 1), amountOwed=amount) for i in range(count)]


@pytest.fixture
def manager(repo, settings, clock) -> PaymentPlanManager:
    return PaymentPlanManager(repo, settings, clock)


class TestGenerateSchedule:

    async def test_split_creates_pending_installments(self, manager, repo) -> None:
        plan = await manager.generate_schedule(14, PlanType.SPLIT, monthly())

        assert plan.planType == PlanType.SPLIT
        assert plan.installments == 3
        assert [i.dueDate for i in plan.schedule] == [date(2026, 4, 1), date(2026, 5, 1), date(2026, 6, 1)]
        assert all(i.status == InstallmentStatus.PENDING for i in plan.schedule)
        assert all(i.amountOwed == 1000 for i in plan.schedule)
        assert plan.scheduleVersion == 1

        enrollment = await repo.get_enrollment(14)
        assert enrollment.plan_type == PlanType.SPLIT
        assert enrollment.current_schedule_id is not None

    async def test_pif_has_no_installments(self, manager, repo) -> None:
        plan = await manager.generate_schedule(10, PlanType.PIF, monthly())

        assert plan.planType == PlanType.PIF
        assert plan.installments is None
        assert plan.schedule == []
        assert await repo.list_installments(enrollment_ids=[10]) == []

    async def test_split_requires_installments(self, manager, repo) -> None:
        with pytest.raises(ValidationError):
            await manager.generate_schedule(14, PlanType.SPLIT, [])

        assert await repo.list_schedules(14) == []

    async def test_unknown_enrollment(self, manager) -> None:
        with pytest.raises(NotFoundError):
            await manager.generate_schedule(999, PlanType.SPLIT, monthly())

    async def test_regeneration_keeps_old_version_for_audit(self, manager, repo) -> None:
        await manager.generate_schedule(14, PlanType.SPLIT, monthly())
        plan = await manager.generate_schedule(14, PlanType.SPLIT, monthly(amount=1500, count=2))

        assert plan.scheduleVersion == 2
        assert [i.amountOwed for i in plan.schedule] == [1500, 1500]
        assert [s.version for s in await repo.list_schedules(14)] == [1, 2]

        every_version = await repo.list_installments(enrollment_ids=[14], current_only=False)
        assert len(every_version) == 5

    async def test_contract_value_update(self, manager) -> None:
        plan = await manager.generate_schedule(14, PlanType.SPLIT, monthly(amount=1200), contract_value=3600)

        assert plan.contractValue == 3600
        assert plan.remaining == 3600

    async def test_amount_mismatch_only_warns(self, manager, caplog) -> None:
        with caplog.at_level("WARNING", logger="kpi_portal.services.payment_plans"):
            plan = await manager.generate_schedule(14, PlanType.SPLIT, monthly(amount=500))

        assert plan.installments == 3
        assert "installments total 1500.00" in caplog.text

    async def test_failure_rolls_back_new_version(self, manager, repo) -> None:
        with patch.object(repo, "update_enrollment", AsyncMock(return_value=None)):
            with pytest.raises(ConflictError):
                await manager.generate_schedule(10, PlanType.SPLIT, monthly())

        assert [s.id for s in await repo.list_schedules(10)] == [1]
        assert [i.id for i in await repo.list_installments(enrollment_ids=[10])] == [1, 2, 3]


class TestSettle:

    async def test_settle_split_example(self, manager, repo) -> None:
        plan = await manager.generate_schedule(14, PlanType.SPLIT, monthly())
        first = plan.schedule[0]

        result = await manager.settle(first.id)

        assert result.plan.totalPaid == 1000
        assert result.plan.remaining == 2000
        assert result.installment.status == InstallmentStatus.PAID
        assert result.installment.paymentId == result.paymentId

        payment = await repo.get_payment(result.paymentId)
        assert payment.amount == 1000
        assert payment.status == PaymentStatus.PAID
        assert payment.method == "installment"
        assert payment.payer_email == "mia@example.com"

    async def test_double_settle_creates_no_duplicate_payment(self, manager, repo) -> None:
        plan = await manager.generate_schedule(14, PlanType.SPLIT, monthly())
        installment_id = plan.schedule[0].id

        await manager.settle(installment_id)
        with pytest.raises(AlreadyPaidError) as exc_info:
            await manager.settle(installment_id)

        assert exc_info.value.status_code == 409
        payments = await repo.list_payments(enrollment_ids=[14])
        assert len(payments) == 1

    async def test_lost_race_rolls_back_payment(self, manager, repo) -> None:
        with patch.object(repo, "mark_installment_paid", AsyncMock(return_value=None)):
            with pytest.raises(AlreadyPaidError):
                await manager.settle(2)

        assert [p.id for p in await repo.list_payments(enrollment_ids=[10])] == [100]
        assert (await repo.get_installment(2)).status == InstallmentStatus.PENDING

    async def test_unknown_installment(self, manager) -> None:
        with pytest.raises(NotFoundError):
            await manager.settle(999)

    async def test_superseded_schedule_cannot_be_settled(self, manager) -> None:
        await manager.generate_schedule(10, PlanType.SPLIT, monthly())

        with pytest.raises(ValidationError):
            await manager.settle(2)


class TestPlanView:

    async def test_seeded_plan(self, manager) -> None:
        plan = await manager.get_plan(10)

        assert plan.installments == 3
        assert plan.totalPaid == 1000
        assert plan.remaining == 2000
        statuses = [(i.id, i.status, i.isOverdue) for i in plan.schedule]
        # Today is 2026-03-18: the 03-06 installment is overdue
        assert statuses == [
            (1, InstallmentStatus.PAID, False),
            (2, InstallmentStatus.OVERDUE, True),
            (3, InstallmentStatus.PENDING, False),
        ]
        assert plan.schedule[0].amountPaid == 1000
        assert plan.schedule[0].paidAt is not None

    async def test_remaining_never_negative(self, manager) -> None:
        # Enrollment 11 paid 5000 against a 5000 contract
        plan = await manager.get_plan(11)

        assert plan.remaining == 0
        assert plan.installments is None

    async def test_unknown_enrollment(self, manager) -> None:
        with pytest.raises(NotFoundError):
            await manager.get_plan(999)


class TestOverduePredicate:

    def _installment(self, due: date, status=InstallmentStatus.PENDING, payment_id=None) -> Installment:
        return Installment(id=1, enrollment_id=1, schedule_id=1, due_date=due, amount=100,
                           status=status, payment_id=payment_id)

    async def test_due_day_itself_is_not_overdue(self) -> None:
        today = date(2026, 3, 18)

        assert not is_overdue(self._installment(today), today)
        assert is_overdue(self._installment(date(2026, 3, 17)), today)

    async def test_paid_is_never_overdue(self) -> None:
        paid = self._installment(date(2026, 1, 1), InstallmentStatus.PAID, payment_id=5)

        assert read_status(paid, date(2026, 3, 18)) == InstallmentStatus.PAID

    async def test_overdue_cannot_be_stored(self) -> None:
        with pytest.raises(ValueError):
            self._installment(date(2026, 1, 1), InstallmentStatus.OVERDUE)

    async def test_paid_requires_payment(self) -> None:
        with pytest.raises(ValueError):
            self._installment(date(2026, 1, 1), InstallmentStatus.PAID)


class TestDrafts:

    async def test_resize_pads_and_truncates(self) -> None:
        drafts = [InstallmentDraft(dueDate=date(2026, 4, 1), amountOwed=500)]

        grown = resize_drafts(drafts, 3)
        assert len(grown) == 3
        assert grown[0].amountOwed == 500
        assert grown[2].dueDate is None

        assert resize_drafts(grown, 1) == drafts

    async def test_resize_rejects_negative(self) -> None:
        with pytest.raises(ValidationError):
            resize_drafts([], -1)

    async def test_complete_drafts_keeps_full_rows(self) -> None:
        drafts = [
            InstallmentDraft(dueDate=date(2026, 4, 1), amountOwed=500),
            InstallmentDraft(dueDate=None, amountOwed=500),
            InstallmentDraft(dueDate="", amountOwed=""),
            InstallmentDraft(dueDate=date(2026, 5, 1), amountOwed=0),
        ]

        entries = complete_drafts(drafts)

        assert entries == [InstallmentEntry(dueDate=date(2026, 4, 1), amountOwed=500)]

    @pytest.mark.parametrize("amount", [0.001, 0.009])
    async def test_sub_cent_amounts_are_rejected(self, amount) -> None:
        with pytest.raises(SchemaError):
            InstallmentEntry(dueDate=date(2026, 4, 1), amountOwed=amount)
        with pytest.raises(SchemaError):
            InstallmentDraft(dueDate=date(2026, 4, 1), amountOwed=amount)

    async def test_draft_schedule_starts_from_current_rows(self, manager) -> None:
        drafts = await manager.draft_schedule(10, count=5)

        assert drafts.planType == PlanType.SPLIT
        assert [d.amountOwed for d in drafts.installments] == [1000, 1000, 1000, None, None]
        assert drafts.installments[0].dueDate == date(2026, 3, 2)

    async def test_draft_schedule_without_count(self, manager) -> None:
        assert len((await manager.draft_schedule(10)).installments) == 3
        assert (await manager.draft_schedule(11)).installments == []

    async def test_draft_schedule_unknown_enrollment(self, manager) -> None:
        with pytest.raises(NotFoundError):
            await manager.draft_schedule(999)

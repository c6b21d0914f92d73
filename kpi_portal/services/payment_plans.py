"""
Payment plan lifecycle for the KPI Portal backend.

Installment state machine:

    PENDING --settle--> PAID
    PENDING --(due date passed, read time only)--> OVERDUE

OVERDUE is never stored. `is_overdue` is evaluated whenever a plan is read:
an installment is overdue when it is still PENDING and its due date is
before today in the reporting timezone (the due day itself is not overdue).

Schedules are versioned. Generating a plan writes a new PaymentSchedule
(plus its installments for SPLIT) and swaps Enrollment.current_schedule_id
to it in the same transaction. Earlier versions stay stored for audit but
are invisible to plan reads and cannot be settled.

Settlement creates the PAID payment and flips the installment to PAID in
one transaction; the installment update only matches PENDING rows, so two
concurrent settlements cannot both succeed.

Key Functions:
- is_overdue: Read-time OVERDUE predicate
- resize_drafts / complete_drafts: Edit-session helpers for the plan form
- PaymentPlanManager.draft_schedule: Current rows resized for the plan form
- PaymentPlanManager.generate_schedule: New schedule version (PIF or SPLIT)
- PaymentPlanManager.settle: Pay one installment
- PaymentPlanManager.get_plan: Plan view with totals and schedule
"""

import logging
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence

from kpi_portal.core.config import Settings, get_settings
from kpi_portal.core.errors import AlreadyPaidError, ConflictError, NotFoundError, ValidationError
from kpi_portal.models.enums import InstallmentStatus, PaymentStatus, PlanType
from kpi_portal.models.records import Enrollment, Installment, Payment
from kpi_portal.models.schemas import (
    DraftSchedule,
    InstallmentDraft,
    InstallmentEntry,
    InstallmentView,
    PaymentPlanView,
    SettlementResult,
)
from kpi_portal.repositories.base import Repository


logger = logging.getLogger(__name__)

# Tolerance for the installment-sum vs contract-value check
AMOUNT_TOLERANCE = 0.005


# =============================================================================
# Pure helpers
# =============================================================================


def is_overdue(installment: Installment, today: date) -> bool:
    """PENDING and due strictly before `today`."""
    return installment.status == InstallmentStatus.PENDING and installment.due_date < today


def read_status(installment: Installment, today: date) -> InstallmentStatus:
    """Stored status with OVERDUE derived on top."""
    return InstallmentStatus.OVERDUE if is_overdue(installment, today) else installment.status


def resize_drafts(drafts: Sequence[InstallmentDraft], count: int) -> List[InstallmentDraft]:
    """
    Truncate or pad an edit-session installment list to `count` rows.

    Padding rows are empty placeholders; existing rows keep their values.

    Raises:
        ValidationError: If count is negative.
    """
    if count < 0:
        raise ValidationError("Installment count must not be negative", field="installments")
    resized = list(drafts[:count])
    resized.extend(InstallmentDraft() for _ in range(count - len(resized)))
    return resized


def complete_drafts(drafts: Sequence[InstallmentDraft]) -> List[InstallmentEntry]:
    """
    Keep only fully specified rows (due date and non-zero amount) for saving.
    """
    return [
        InstallmentEntry(dueDate=d.dueDate, amountOwed=d.amountOwed)
        for d in drafts
        if d.dueDate is not None and d.amountOwed
    ]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Manager
# =============================================================================


class PaymentPlanManager:
    """
    Generates, settles and reads installment plans.

    Args:
        repo: Repository for this request.
        settings: Reporting timezone and settlement defaults.
        clock: Returns the current instant; injectable for tests.
    """

    def __init__(
        self,
        repo: Repository,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.repo = repo
        self.settings = settings or get_settings()
        self.clock = clock or _utc_now

    def now(self) -> datetime:
        current = self.clock()
        if current.tzinfo is None:
            current = current.replace(tzinfo=timezone.utc)
        return current.astimezone(self.settings.tzinfo)

    def today(self) -> date:
        return self.now().date()

    async def _enrollment(self, enrollment_id: int) -> Enrollment:
        enrollment = await self.repo.get_enrollment(enrollment_id)
        if enrollment is None:
            raise NotFoundError("Enrollment", enrollment_id)
        return enrollment

    # =========================================================================
    # Schedule generation
    # =========================================================================

    async def generate_schedule(
        self,
        enrollment_id: int,
        plan_type: PlanType,
        installments: Optional[Sequence[InstallmentEntry]] = None,
        contract_value: Optional[float] = None,
    ) -> PaymentPlanView:
        """
        Replace the enrollment's plan with a new schedule version.

        Args:
            enrollment_id: Enrollment to re-plan.
            plan_type: PIF (no installments) or SPLIT.
            installments: SPLIT entries, persisted in the given order.
            contract_value: Optional new contract value applied in the same write.

        Returns:
            PaymentPlanView of the new current schedule.

        Raises:
            NotFoundError: Unknown enrollment.
            ValidationError: SPLIT without installments.
            ConflictError: The enrollment changed while the schedule was written.

        Example:
            >>> await manager.generate_schedule(10, PlanType.SPLIT, [
            ...     InstallmentEntry(dueDate=date(2026, 4, 1), amountOwed=1000),
            ...     InstallmentEntry(dueDate=date(2026, 5, 1), amountOwed=1000),
            ... ])
        """
        plan_type = PlanType(plan_type)
        entries = list(installments or [])
        if plan_type == PlanType.SPLIT and not entries:
            raise ValidationError("A SPLIT plan needs at least one installment", field="installments")
        if plan_type == PlanType.PIF:
            entries = []

        async with self.repo.transaction():
            enrollment = await self._enrollment(enrollment_id)
            schedule = await self.repo.create_schedule(enrollment.id, plan_type, self.now())
            await self.repo.insert_installments(schedule, [(e.dueDate, e.amountOwed) for e in entries])

            changes = {"plan_type": plan_type, "current_schedule_id": schedule.id}
            if contract_value is not None:
                changes["contract_value"] = contract_value
            updated = await self.repo.update_enrollment(enrollment.id, enrollment.version, **changes)
            if updated is None:
                current = await self._enrollment(enrollment.id)
                raise ConflictError("Enrollment", enrollment.id, enrollment.version, current.version)

        if plan_type == PlanType.SPLIT:
            scheduled = sum(e.amountOwed for e in entries)
            if abs(scheduled - updated.contract_value) > AMOUNT_TOLERANCE:
                logger.warning(
                    "Enrollment %s: installments total %.2f but contract value is %.2f",
                    updated.id, scheduled, updated.contract_value,
                )

        logger.info(
            "Generated %s schedule v%s for enrollment %s with %d installment(s)",
            plan_type.value, schedule.version, updated.id, len(entries),
        )
        return await self.build_plan_view(updated)

    # =========================================================================
    # Settlement
    # =========================================================================

    async def settle(self, installment_id: int) -> SettlementResult:
        """
        Pay an installment: create a PAID payment and link it.

        Raises:
            NotFoundError: Unknown installment or enrollment.
            AlreadyPaidError: The installment is already PAID (no payment is
                created).
            ValidationError: The installment belongs to a superseded schedule.
        """
        async with self.repo.transaction():
            installment = await self.repo.get_installment(installment_id)
            if installment is None:
                raise NotFoundError("Installment", installment_id)
            if installment.status == InstallmentStatus.PAID:
                logger.warning("Rejected second settlement of installment %s", installment_id)
                raise AlreadyPaidError(installment_id, installment.payment_id)

            enrollment = await self._enrollment(installment.enrollment_id)
            if enrollment.current_schedule_id != installment.schedule_id:
                raise ValidationError(
                    f"Installment {installment_id} belongs to a superseded schedule",
                    field="installmentId",
                )

            students = await self.repo.list_students(ids=[enrollment.student_id])
            payment = await self.repo.insert_payment(
                enrollment_id=enrollment.id,
                amount=installment.amount,
                paid_at=self.now(),
                status=PaymentStatus.PAID,
                method=self.settings.settlement_payment_method,
                payer_email=students[0].email if students else None,
            )
            paid = await self.repo.mark_installment_paid(installment.id, payment.id)
            if paid is None:
                # Lost a race with another settlement; the rollback drops our payment
                current = await self.repo.get_installment(installment.id)
                raise AlreadyPaidError(installment.id, current.payment_id if current else None)

        logger.info(
            "Settled installment %s of enrollment %s with payment %s (%.2f)",
            paid.id, enrollment.id, payment.id, payment.amount,
        )
        plan = await self.build_plan_view(enrollment)
        return SettlementResult(
            installment=self.installment_view(paid, {payment.id: payment}, self.today()),
            paymentId=payment.id,
            plan=plan,
        )

    # =========================================================================
    # Reads
    # =========================================================================

    async def get_plan(self, enrollment_id: int) -> PaymentPlanView:
        return await self.build_plan_view(await self._enrollment(enrollment_id))

    async def draft_schedule(self, enrollment_id: int, count: Optional[int] = None) -> DraftSchedule:
        """
        Form rows for editing the enrollment's plan.

        Starts from the current schedule's installments and truncates or pads
        them to `count` rows; nothing is written.
        """
        enrollment = await self._enrollment(enrollment_id)
        installments = await self.repo.list_installments(enrollment_ids=[enrollment.id], current_only=True)
        drafts = [
            InstallmentDraft(dueDate=i.due_date, amountOwed=i.amount)
            for i in installments
            if i.schedule_id == enrollment.current_schedule_id
        ]
        if count is not None:
            drafts = resize_drafts(drafts, count)
        return DraftSchedule(enrollmentId=enrollment.id, planType=enrollment.plan_type, installments=drafts)

    def installment_view(
        self,
        installment: Installment,
        payments: Dict[int, Payment],
        today: date,
    ) -> InstallmentView:
        payment = payments.get(installment.payment_id) if installment.payment_id is not None else None
        return InstallmentView(
            id=installment.id,
            dueDate=installment.due_date,
            amountOwed=installment.amount,
            status=read_status(installment, today),
            isOverdue=is_overdue(installment, today),
            paidAt=payment.date if payment else None,
            amountPaid=payment.amount if payment else 0.0,
            paymentId=installment.payment_id,
        )

    async def build_plan_view(self, enrollment: Enrollment) -> PaymentPlanView:
        """
        Plan view of the enrollment's current schedule.

        totalPaid sums every PAID payment of the enrollment (settlements and
        lump payments alike); remaining never drops below zero.
        """
        installments = await self.repo.list_installments(enrollment_ids=[enrollment.id], current_only=True)
        installments = [i for i in installments if i.schedule_id == enrollment.current_schedule_id]
        payments = await self.repo.list_payments(statuses=[PaymentStatus.PAID], enrollment_ids=[enrollment.id])
        by_id = {p.id: p for p in payments}

        total_paid = round(sum(p.amount for p in payments), 2)
        remaining = round(max(enrollment.contract_value - total_paid, 0.0), 2)
        version = None
        if enrollment.current_schedule_id is not None:
            schedules = await self.repo.list_schedules(enrollment.id)
            version = next((s.version for s in schedules if s.id == enrollment.current_schedule_id), None)

        today = self.today()
        return PaymentPlanView(
            enrollmentId=enrollment.id,
            planType=enrollment.plan_type,
            installments=len(installments) if enrollment.plan_type == PlanType.SPLIT else None,
            contractValue=enrollment.contract_value,
            totalPaid=total_paid,
            remaining=remaining,
            scheduleVersion=version,
            schedule=[self.installment_view(i, by_id, today) for i in installments],
        )

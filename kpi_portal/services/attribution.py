"""
Revenue attribution for the KPI Portal backend.

Answers two questions for a transaction:

1. Which marketing source brought the payer in? The most recent Lead whose
   email matches the payer email (case-insensitive, surrounding whitespace
   ignored) wins; no match yields the configured fallback label
   ("Unknown", or "Direct/Unknown" in revenue breakdowns).
2. Which team members own it? Attribution is a property of the enrollment,
   not the payment: the enrollment's assigned closer/setter ids resolve to
   display names at read time, with "Unassigned" for null or dangling ids.

Reassignment is the only mutating operation. It is keyed by payment id,
applied to the payment's enrollment, idempotent (same value twice is a
no-op), and optionally guarded by the enrollment version.

Key Functions:
- normalize_email: Canonical form used for lead matching
- AttributionResolver.attribute_source / attribute_sources
- AttributionResolver.attribute_owners / owner_names
- AttributionResolver.reassign / apply_assignment
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping, Optional, Sequence

from kpi_portal.core.config import Settings, get_settings
from kpi_portal.core.errors import ConflictError, NotFoundError, ValidationError
from kpi_portal.models.enums import AssignmentField
from kpi_portal.models.records import Enrollment, TeamMember
from kpi_portal.models.schemas import EnrollmentView
from kpi_portal.repositories.base import Repository


logger = logging.getLogger(__name__)

ASSIGNMENT_COLUMNS: Dict[AssignmentField, str] = {
    AssignmentField.CLOSER: "assigned_closer_id",
    AssignmentField.SETTER: "assigned_setter_id",
}


def normalize_email(email: Optional[str]) -> Optional[str]:
    """Lower-cased, trimmed email, or None when blank."""
    if email is None:
        return None
    cleaned = email.strip().lower()
    return cleaned or None


@dataclass(frozen=True)
class OwnerNames:
    closer_name: str
    setter_name: str


class AttributionResolver:
    """
    Resolves revenue sources and owners, and applies reassignments.

    Args:
        repo: Repository for this request.
        settings: Label defaults; the cached settings when omitted.
    """

    def __init__(self, repo: Repository, settings: Optional[Settings] = None):
        self.repo = repo
        self.settings = settings or get_settings()

    # =========================================================================
    # Source attribution
    # =========================================================================

    async def attribute_source(self, payer_email: Optional[str], default: Optional[str] = None) -> str:
        """
        Source label of the most recent lead with this email.

        Args:
            payer_email: Email on the payment.
            default: Label when nothing matches; settings.unknown_source_label
                when omitted.
        """
        sources = await self.attribute_sources([payer_email], default=default)
        return sources.get(normalize_email(payer_email), default or self.settings.unknown_source_label)

    async def attribute_sources(
        self,
        payer_emails: Iterable[Optional[str]],
        default: Optional[str] = None,
    ) -> Dict[Optional[str], str]:
        """
        Bulk source attribution with one lead read.

        Returns:
            Mapping of normalized email -> source label. Blank emails map
            under None to the default label.
        """
        fallback = default or self.settings.unknown_source_label
        wanted = {normalize_email(e) for e in payer_emails}
        lookup = sorted(e for e in wanted if e is not None)

        latest: Dict[str, str] = {}
        if lookup:
            # Leads come back newest first; the first hit per email wins
            for lead in await self.repo.list_leads(emails=lookup):
                key = normalize_email(lead.email)
                if key not in latest:
                    latest[key] = lead.source or fallback

        return {email: latest.get(email, fallback) if email else fallback for email in wanted}

    # =========================================================================
    # Owner attribution
    # =========================================================================

    async def member_directory(self) -> Dict[int, TeamMember]:
        """All team members keyed by id, inactive ones included."""
        return {m.id: m for m in await self.repo.list_team_members()}

    def _name(self, member_id: Optional[int], members: Mapping[int, TeamMember]) -> str:
        member = members.get(member_id) if member_id is not None else None
        return member.name if member else self.settings.unassigned_label

    async def attribute_owners(
        self,
        enrollment: Enrollment,
        members: Optional[Mapping[int, TeamMember]] = None,
    ) -> OwnerNames:
        """Resolve the enrollment's closer/setter ids to display names."""
        if members is None:
            members = await self.member_directory()
        return OwnerNames(
            closer_name=self._name(enrollment.assigned_closer_id, members),
            setter_name=self._name(enrollment.assigned_setter_id, members),
        )

    async def owner_names(self, enrollments: Sequence[Enrollment]) -> Dict[int, OwnerNames]:
        """Owner names for many enrollments with one directory read."""
        members = await self.member_directory()
        return {e.id: await self.attribute_owners(e, members) for e in enrollments}

    async def enrollment_view(self, enrollment: Enrollment) -> EnrollmentView:
        owners = await self.attribute_owners(enrollment)
        return EnrollmentView(
            id=enrollment.id,
            studentId=enrollment.student_id,
            planType=enrollment.plan_type,
            contractValue=enrollment.contract_value,
            assignedCloserId=enrollment.assigned_closer_id,
            assignedSetterId=enrollment.assigned_setter_id,
            closerName=owners.closer_name,
            setterName=owners.setter_name,
            version=enrollment.version,
        )

    # =========================================================================
    # Reassignment
    # =========================================================================

    async def reassign(
        self,
        payment_id: int,
        field: AssignmentField,
        member_id: Optional[int],
        expected_version: Optional[int] = None,
    ) -> Enrollment:
        """
        Set (or clear, with None) the closer or setter of a payment's enrollment.

        Args:
            payment_id: Payment whose enrollment is reassigned.
            field: AssignmentField.CLOSER or AssignmentField.SETTER.
            member_id: New team member id, or None to clear.
            expected_version: Enrollment version the caller last read.

        Returns:
            The enrollment after the change (unchanged when already set).

        Raises:
            NotFoundError: Unknown payment, enrollment or team member.
            ConflictError: The enrollment version moved past expected_version.

        Example:
            >>> await resolver.reassign(42, AssignmentField.CLOSER, 7)
            >>> await resolver.reassign(42, AssignmentField.CLOSER, None)
        """
        return await self.apply_assignment(payment_id, {field: member_id}, expected_version)

    async def apply_assignment(
        self,
        payment_id: int,
        changes: Mapping[AssignmentField, Optional[int]],
        expected_version: Optional[int] = None,
    ) -> Enrollment:
        """Apply closer and/or setter changes to one enrollment in one transaction."""
        parsed: Dict[AssignmentField, Optional[int]] = {}
        for field, member_id in changes.items():
            try:
                parsed[AssignmentField(field)] = member_id
            except ValueError as exc:
                raise ValidationError(f"Unknown assignment field: {field}", field="field") from exc

        async with self.repo.transaction():
            payment = await self.repo.get_payment(payment_id)
            if payment is None:
                raise NotFoundError("Payment", payment_id)
            enrollment = await self.repo.get_enrollment(payment.enrollment_id)
            if enrollment is None:
                raise NotFoundError("Enrollment", payment.enrollment_id)

            if expected_version is not None and expected_version != enrollment.version:
                logger.warning(
                    "Rejected stale reassignment of enrollment %s (expected v%s, found v%s)",
                    enrollment.id, expected_version, enrollment.version,
                )
                raise ConflictError("Enrollment", enrollment.id, expected_version, enrollment.version)

            for member_id in parsed.values():
                if member_id is not None and await self.repo.get_team_member(member_id) is None:
                    raise NotFoundError("TeamMember", member_id)

            updates = {
                ASSIGNMENT_COLUMNS[field]: member_id
                for field, member_id in parsed.items()
                if getattr(enrollment, ASSIGNMENT_COLUMNS[field]) != member_id
            }
            if not updates:
                return enrollment

            # Without expected_version the write is unconditional: last write wins
            updated = await self.repo.update_enrollment(enrollment.id, expected_version, **updates)
            if updated is None:
                current = await self.repo.get_enrollment(enrollment.id)
                if current is None:
                    raise NotFoundError("Enrollment", enrollment.id)
                raise ConflictError("Enrollment", enrollment.id, expected_version, current.version)

        logger.info(
            "Reassigned enrollment %s via payment %s: %s (v%s)",
            updated.id, payment_id, updates, updated.version,
        )
        return updated

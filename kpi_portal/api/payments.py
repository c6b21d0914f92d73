"""
FastAPI router module for payment attribution.

Endpoint:
- PATCH /payments/{payment_id}/assignment

Body keys are optional and nullable: an omitted key leaves that slot as it
is, an explicit null clears it. Closer and setter changes are applied to the
payment's enrollment in one transaction. With `expectedVersion`, a stale
enrollment is rejected with 409 CONFLICT.
"""

import logging

from fastapi import APIRouter, Path

from kpi_portal.core.dependencies import RepositoryDep, SettingsDep
from kpi_portal.models.enums import AssignmentField
from kpi_portal.models.schemas import AssignmentResponse, AssignmentUpdate
from kpi_portal.services.attribution import AttributionResolver


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])

BODY_FIELDS = {
    "assignedCloserId": AssignmentField.CLOSER,
    "assignedSetterId": AssignmentField.SETTER,
}


@router.patch("/{payment_id}/assignment", response_model=AssignmentResponse)
async def update_payment_assignment(
    body: AssignmentUpdate,
    repo: RepositoryDep,
    settings: SettingsDep,
    payment_id: int = Path(..., gt=0),
) -> AssignmentResponse:
    """
    Reassign the closer and/or setter credited for a payment.

    Raises:
        NotFoundError: Unknown payment or team member (404).
        ConflictError: expectedVersion is stale (409).
    """
    changes = {
        field: getattr(body, key)
        for key, field in BODY_FIELDS.items()
        if key in body.model_fields_set
    }
    resolver = AttributionResolver(repo, settings)
    enrollment = await resolver.apply_assignment(payment_id, changes, body.expectedVersion)
    return AssignmentResponse(success=True, enrollment=await resolver.enrollment_view(enrollment))

"""
Error taxonomy for the KPI Portal backend.

Structured exceptions with machine-readable codes and the HTTP status each
one maps to. Route handlers let these propagate; the handlers registered in
kpi_portal.main render them as JSON.

Hierarchy:
    PortalError
    ├── ValidationError      (400)  malformed dates, negative counters, bad installment entries
    ├── NotFoundError        (404)  unknown enrollment / installment / payment / team member
    ├── AlreadyPaidError     (409)  double settlement of an installment
    ├── ConflictError        (409)  stale enrollment version on reassignment
    └── StorageError         (500)  transaction or connectivity failure
"""

from typing import Any, Dict, Optional


class PortalError(Exception):
    """Base exception for all KPI Portal errors."""

    status_code: int = 500

    def __init__(self, message: str, code: str = "UNKNOWN",
                 details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(f"[{code}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(PortalError):
    """Caller supplied malformed input. Never retried."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, **kwargs: Any):
        self.field = field
        details = {"field": field, **kwargs} if field else dict(kwargs)
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class InvalidDateError(ValidationError):
    """A from/to value could not be parsed as a date or timestamp."""

    def __init__(self, value: str, field: Optional[str] = None):
        self.value = value
        super().__init__(f"Invalid date: {value}", field=field, value=value)
        self.code = "INVALID_DATE"


class NotFoundError(PortalError):
    """Referenced entity does not exist."""

    status_code = 404

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            f"{entity} {entity_id} not found",
            code="NOT_FOUND",
            details={"entity": entity, "id": entity_id},
        )


class AlreadyPaidError(PortalError):
    """Installment was already settled. Idempotent callers may treat this as success."""

    status_code = 409

    def __init__(self, installment_id: int, payment_id: Optional[int] = None):
        self.installment_id = installment_id
        self.payment_id = payment_id
        super().__init__(
            f"Installment {installment_id} is already paid",
            code="ALREADY_PAID",
            details={"installmentId": installment_id, "paymentId": payment_id},
        )


class ConflictError(PortalError):
    """Write was based on a stale version of the enrollment."""

    status_code = 409

    def __init__(self, entity: str, entity_id: Any, expected: int, actual: int):
        super().__init__(
            f"{entity} {entity_id} was modified (expected version {expected}, found {actual})",
            code="CONFLICT",
            details={"entity": entity, "id": entity_id,
                     "expectedVersion": expected, "actualVersion": actual},
        )


class StorageError(PortalError):
    """Storage collaborator failed. Surfaced unchanged, never retried here."""

    status_code = 500

    def __init__(self, message: str, operation: Optional[str] = None):
        self.operation = operation
        super().__init__(
            message,
            code="STORAGE_ERROR",
            details={"operation": operation} if operation else {},
        )

"""
Write queries for payment plans, settlement, attribution and customer success.

The guarded writes encode their precondition in the WHERE clause so a
concurrent request cannot slip between a read and the write:

- MARK_INSTALLMENT_PAID only matches PENDING rows
- get_update_enrollment_query only matches the expected version, when one
  is bound

Callers detect a lost race by getting no row back.
"""

from typing import Iterable, List

from kpi_portal.core.errors import ValidationError


# Enrollment columns a caller may change through update_enrollment
ENROLLMENT_MUTABLE_COLUMNS = frozenset({
    "plan_type",
    "contract_value",
    "status",
    "assigned_closer_id",
    "assigned_setter_id",
    "end_date",
    "current_schedule_id",
})

ONBOARDING_COLUMNS = frozenset({
    "call_completed",
    "slack_joined",
    "course_access",
    "community_intro",
    "goals_set",
    "referrals_asked",
})


INSERT_PAYMENT = """
    INSERT INTO payments (enrollment_id, amount, date, status, method, payer_email)
    VALUES ($1, $2, $3, $4, $5, $6)
    RETURNING *
"""

# Serializes schedule generation per enrollment
LOCK_ENROLLMENT = """
    SELECT id
    FROM enrollments
    WHERE id = $1
    FOR UPDATE
"""

INSERT_SCHEDULE = """
    INSERT INTO payment_schedules (enrollment_id, version, plan_type, created_at)
    SELECT $1, COALESCE(MAX(version), 0) + 1, $2, $3
    FROM payment_schedules
    WHERE enrollment_id = $1
    RETURNING *
"""

# $3/$4: parallel arrays of due dates and amounts
INSERT_INSTALLMENTS = """
    INSERT INTO installments (enrollment_id, schedule_id, due_date, amount, status)
    SELECT $1, $2, entry.due_date, entry.amount, 'PENDING'
    FROM unnest($3::date[], $4::numeric[]) WITH ORDINALITY AS entry(due_date, amount, position)
    ORDER BY entry.position
    RETURNING *
"""

MARK_INSTALLMENT_PAID = """
    UPDATE installments
    SET status = 'PAID', payment_id = $2
    WHERE id = $1 AND status = 'PENDING'
    RETURNING *
"""

UPDATE_CHECK_IN_OUTCOME = """
    UPDATE check_ins
    SET outcome = $2
    WHERE id = $1
    RETURNING *
"""

# A NULL parameter leaves its column unchanged
UPDATE_WEEKLY_PROGRESS = """
    UPDATE weekly_progress
    SET outcome = COALESCE($2, outcome),
        notes = COALESCE($3, notes)
    WHERE id = $1
    RETURNING *
"""


def get_update_enrollment_query(columns: Iterable[str]) -> str:
    """
    Build the compare-and-set enrollment update.

    Args:
        columns: Columns to set, bound in order to $3, $4, ...

    Returns:
        str: UPDATE matching `id = $1`, and `version = $2` unless $2 is
        NULL, bumping version.

    Raises:
        ValidationError: If a column is not updatable.

    Example:
        >>> get_update_enrollment_query(["assigned_closer_id"])  # doctest: +ELLIPSIS
        '...SET assigned_closer_id = $3, version = version + 1...'
    """
    names: List[str] = list(columns)
    unknown = [name for name in names if name not in ENROLLMENT_MUTABLE_COLUMNS]
    if unknown:
        raise ValidationError(f"Enrollment column(s) not updatable: {', '.join(unknown)}")

    assignments = [f"{name} = ${index}" for index, name in enumerate(names, start=3)]
    assignments.append("version = version + 1")
    return (
        "UPDATE enrollments "
        f"SET {', '.join(assignments)} "
        "WHERE id = $1 AND ($2::integer IS NULL OR version = $2) "
        "RETURNING *"
    )


def get_upsert_onboarding_query(columns: Iterable[str]) -> str:
    """
    Build the onboarding checklist upsert.

    Args:
        columns: Step columns to set, bound in order to $2, $3, ...

    Returns:
        str: INSERT ... ON CONFLICT (enrollment_id) DO UPDATE returning the row.
    """
    names: List[str] = list(columns)
    unknown = [name for name in names if name not in ONBOARDING_COLUMNS]
    if unknown:
        raise ValidationError(f"Unknown onboarding step column(s): {', '.join(unknown)}")

    insert_columns = ", ".join(["enrollment_id", *names])
    placeholders = ", ".join(f"${index}" for index in range(1, len(names) + 2))
    updates = ", ".join(f"{name} = EXCLUDED.{name}" for name in names) or "enrollment_id = EXCLUDED.enrollment_id"
    return (
        f"INSERT INTO onboarding_checklists ({insert_columns}) "
        f"VALUES ({placeholders}) "
        f"ON CONFLICT (enrollment_id) DO UPDATE SET {updates} "
        "RETURNING *"
    )

"""
Parameterized read queries for the KPI Portal repository.

Every filter is optional: a NULL parameter disables its predicate, so one
statement serves all call sites (`$n IS NULL OR column ...`). Window
predicates take the normalized DateRange bounds: calendar days for DATE
columns, aware instants for TIMESTAMPTZ columns.

Ordering contracts (relied on by the summary builders):
    team members    name, id
    activity        date, team_member_id, id
    payments        newest first
    installments    due_date, id
    leads           newest first (most recent lead wins attribution)
    broadcasts      newest first
    check-ins       newest first
    weekly progress week_number
"""


# =============================================================================
# Directory
# =============================================================================

LIST_TEAM_MEMBERS = """
    SELECT id, name, role, active
    FROM team_members
    WHERE ($1::text IS NULL OR role = $1)
      AND (NOT $2::boolean OR active)
    ORDER BY name, id
"""

GET_TEAM_MEMBER = """
    SELECT id, name, role, active
    FROM team_members
    WHERE id = $1
"""

LIST_STUDENTS = """
    SELECT id, name, email
    FROM students
    WHERE ($1::int[] IS NULL OR id = ANY($1::int[]))
    ORDER BY id
"""

LIST_PROGRAMS = """
    SELECT id, name, price
    FROM programs
    WHERE ($1::int[] IS NULL OR id = ANY($1::int[]))
    ORDER BY id
"""


# =============================================================================
# Activity
# =============================================================================

# $1/$2: first/last calendar day of the window
LIST_ACTIVITY = """
    SELECT *
    FROM activity_records
    WHERE ($1::date IS NULL OR date >= $1)
      AND ($2::date IS NULL OR date <= $2)
      AND ($3::int[] IS NULL OR team_member_id = ANY($3::int[]))
    ORDER BY date, team_member_id, id
"""


# =============================================================================
# Enrollments and payments
# =============================================================================

LIST_ENROLLMENTS = """
    SELECT *
    FROM enrollments
    WHERE ($1::text[] IS NULL OR status = ANY($1::text[]))
      AND ($2::date IS NULL OR start_date >= $2)
      AND ($3::date IS NULL OR start_date <= $3)
      AND ($4::int[] IS NULL OR id = ANY($4::int[]))
      AND ($5::int[] IS NULL OR student_id = ANY($5::int[]))
    ORDER BY id
"""

GET_ENROLLMENT = """
    SELECT *
    FROM enrollments
    WHERE id = $1
"""

# $1/$2: window instants (00:00:00.000 .. 23:59:59.999 in the reporting tz)
LIST_PAYMENTS = """
    SELECT *
    FROM payments
    WHERE ($1::timestamptz IS NULL OR date >= $1)
      AND ($2::timestamptz IS NULL OR date <= $2)
      AND ($3::text[] IS NULL OR status = ANY($3::text[]))
      AND ($4::int[] IS NULL OR enrollment_id = ANY($4::int[]))
    ORDER BY date DESC, id DESC
"""

GET_PAYMENT = """
    SELECT *
    FROM payments
    WHERE id = $1
"""


# =============================================================================
# Schedules and installments
# =============================================================================

LIST_SCHEDULES = """
    SELECT *
    FROM payment_schedules
    WHERE enrollment_id = $1
    ORDER BY version
"""

# $3: restrict to each enrollment's current schedule
LIST_INSTALLMENTS = """
    SELECT i.*
    FROM installments i
    JOIN enrollments e ON e.id = i.enrollment_id
    WHERE ($1::int[] IS NULL OR i.enrollment_id = ANY($1::int[]))
      AND ($2::int IS NULL OR i.schedule_id = $2)
      AND (NOT $3::boolean OR i.schedule_id = e.current_schedule_id)
    ORDER BY i.due_date, i.id
"""

GET_INSTALLMENT = """
    SELECT *
    FROM installments
    WHERE id = $1
"""


# =============================================================================
# Marketing
# =============================================================================

# $1: already lower-cased, trimmed emails
LIST_LEADS = """
    SELECT *
    FROM leads
    WHERE ($1::text[] IS NULL OR lower(trim(email)) = ANY($1::text[]))
      AND ($2::timestamptz IS NULL OR created_at >= $2)
      AND ($3::timestamptz IS NULL OR created_at <= $3)
    ORDER BY created_at DESC, id DESC
"""

LIST_AD_PERFORMANCE = """
    SELECT *
    FROM ad_performance
    WHERE ($1::date IS NULL OR date >= $1)
      AND ($2::date IS NULL OR date <= $2)
    ORDER BY date, campaign_id, id
"""

LIST_EMAIL_BROADCASTS = """
    SELECT *
    FROM email_broadcasts
    WHERE ($1::timestamptz IS NULL OR sent_at >= $1)
      AND ($2::timestamptz IS NULL OR sent_at <= $2)
    ORDER BY sent_at DESC, id DESC
    LIMIT $3::int
"""


# =============================================================================
# Customer success
# =============================================================================

LIST_CHECK_INS = """
    SELECT *
    FROM check_ins
    WHERE ($1::int[] IS NULL OR enrollment_id = ANY($1::int[]))
    ORDER BY date DESC, id DESC
"""

LIST_ONBOARDING_CHECKLISTS = """
    SELECT *
    FROM onboarding_checklists
    WHERE ($1::int[] IS NULL OR enrollment_id = ANY($1::int[]))
    ORDER BY enrollment_id
"""

GET_CHECK_IN = """
    SELECT *
    FROM check_ins
    WHERE id = $1
"""

LIST_WEEKLY_PROGRESS = """
    SELECT *
    FROM weekly_progress
    WHERE ($1::int[] IS NULL OR enrollment_id = ANY($1::int[]))
    ORDER BY enrollment_id, week_number
"""

GET_WEEKLY_PROGRESS = """
    SELECT *
    FROM weekly_progress
    WHERE id = $1
"""

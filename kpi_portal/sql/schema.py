"""
PostgreSQL schema for the KPI Portal backend.

Applied by `kpi_portal.core.database.apply_schema` when DB_CREATE_SCHEMA is
set; every statement is idempotent (IF NOT EXISTS) so it is safe on an
existing database.

Installments are never deleted: each regeneration writes a new
payment_schedules version and enrollments.current_schedule_id is swapped
to it in the same transaction.
"""

from typing import List


SCHEMA_STATEMENTS: List[str] = [
    """
    CREATE TABLE IF NOT EXISTS team_members (
        id          SERIAL PRIMARY KEY,
        name        TEXT NOT NULL,
        role        TEXT NOT NULL CHECK (role IN ('CLOSER', 'SETTER', 'DM_SETTER')),
        active      BOOLEAN NOT NULL DEFAULT TRUE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS students (
        id          SERIAL PRIMARY KEY,
        name        TEXT NOT NULL,
        email       TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS programs (
        id          SERIAL PRIMARY KEY,
        name        TEXT NOT NULL,
        price       NUMERIC(12, 2) NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS activity_records (
        id                      SERIAL PRIMARY KEY,
        team_member_id          INTEGER NOT NULL REFERENCES team_members(id),
        date                    DATE NOT NULL,
        calls_made              INTEGER CHECK (calls_made >= 0),
        pick_ups                INTEGER CHECK (pick_ups >= 0),
        live_calls              INTEGER CHECK (live_calls >= 0),
        booked_calls            INTEGER CHECK (booked_calls >= 0),
        dms_sent                INTEGER CHECK (dms_sent >= 0),
        conversations_started   INTEGER CHECK (conversations_started >= 0),
        offers_made             INTEGER CHECK (offers_made >= 0),
        closes                  INTEGER CHECK (closes >= 0),
        scheduled_calls         INTEGER CHECK (scheduled_calls >= 0),
        reschedules             INTEGER CHECK (reschedules >= 0),
        unqualified_leads       INTEGER CHECK (unqualified_leads >= 0),
        cash_collected          NUMERIC(12, 2) CHECK (cash_collected >= 0),
        notes                   TEXT,
        struggles               TEXT,
        UNIQUE (team_member_id, date)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS enrollments (
        id                  SERIAL PRIMARY KEY,
        student_id          INTEGER NOT NULL REFERENCES students(id),
        program_id          INTEGER REFERENCES programs(id),
        plan_type           TEXT NOT NULL DEFAULT 'PIF' CHECK (plan_type IN ('PIF', 'SPLIT')),
        contract_value      NUMERIC(12, 2) NOT NULL DEFAULT 0,
        status              TEXT NOT NULL DEFAULT 'ACTIVE',
        assigned_closer_id  INTEGER REFERENCES team_members(id),
        assigned_setter_id  INTEGER REFERENCES team_members(id),
        start_date          DATE NOT NULL,
        end_date            DATE,
        current_schedule_id INTEGER,
        version             INTEGER NOT NULL DEFAULT 1
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payments (
        id              SERIAL PRIMARY KEY,
        enrollment_id   INTEGER NOT NULL REFERENCES enrollments(id),
        amount          NUMERIC(12, 2) NOT NULL CHECK (amount >= 0),
        date            TIMESTAMPTZ NOT NULL,
        status          TEXT NOT NULL DEFAULT 'PAID',
        method          TEXT,
        payer_email     TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS payment_schedules (
        id              SERIAL PRIMARY KEY,
        enrollment_id   INTEGER NOT NULL REFERENCES enrollments(id),
        version         INTEGER NOT NULL,
        plan_type       TEXT NOT NULL,
        created_at      TIMESTAMPTZ NOT NULL,
        UNIQUE (enrollment_id, version)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS installments (
        id              SERIAL PRIMARY KEY,
        enrollment_id   INTEGER NOT NULL REFERENCES enrollments(id),
        schedule_id     INTEGER NOT NULL REFERENCES payment_schedules(id),
        due_date        DATE NOT NULL,
        amount          NUMERIC(12, 2) NOT NULL CHECK (amount > 0),
        status          TEXT NOT NULL DEFAULT 'PENDING' CHECK (status IN ('PENDING', 'PAID')),
        payment_id      INTEGER REFERENCES payments(id),
        CHECK (status <> 'PAID' OR payment_id IS NOT NULL)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS leads (
        id          SERIAL PRIMARY KEY,
        email       TEXT NOT NULL,
        source      TEXT,
        campaign    TEXT,
        medium      TEXT,
        created_at  TIMESTAMPTZ NOT NULL DEFAULT now()
    )
    """,
    "CREATE INDEX IF NOT EXISTS leads_email_idx ON leads (lower(trim(email)))",
    """
    CREATE TABLE IF NOT EXISTS ad_performance (
        id              SERIAL PRIMARY KEY,
        date            DATE NOT NULL,
        campaign_id     INTEGER NOT NULL,
        campaign_name   TEXT,
        platform        TEXT,
        spend           NUMERIC(12, 2) NOT NULL DEFAULT 0,
        impressions     INTEGER NOT NULL DEFAULT 0,
        clicks          INTEGER NOT NULL DEFAULT 0,
        leads           INTEGER NOT NULL DEFAULT 0,
        purchases       INTEGER NOT NULL DEFAULT 0,
        revenue         NUMERIC(12, 2) NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS email_broadcasts (
        id                  SERIAL PRIMARY KEY,
        subject             TEXT,
        sent_at             TIMESTAMPTZ NOT NULL,
        recipients_count    INTEGER NOT NULL DEFAULT 0,
        open_rate           NUMERIC(6, 2) NOT NULL DEFAULT 0,
        click_rate          NUMERIC(6, 2) NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS check_ins (
        id              SERIAL PRIMARY KEY,
        enrollment_id   INTEGER NOT NULL REFERENCES enrollments(id),
        date            TIMESTAMPTZ NOT NULL,
        satisfaction    INTEGER NOT NULL CHECK (satisfaction BETWEEN 0 AND 10),
        wins            TEXT,
        notes           TEXT,
        outcome         TEXT
    )
    """,
    # Databases created before check-in outcomes existed
    """
    ALTER TABLE check_ins ADD COLUMN IF NOT EXISTS outcome TEXT
    """,
    """
    CREATE TABLE IF NOT EXISTS onboarding_checklists (
        id              SERIAL PRIMARY KEY,
        enrollment_id   INTEGER NOT NULL UNIQUE REFERENCES enrollments(id),
        call_completed  BOOLEAN NOT NULL DEFAULT FALSE,
        slack_joined    BOOLEAN NOT NULL DEFAULT FALSE,
        course_access   BOOLEAN NOT NULL DEFAULT FALSE,
        community_intro BOOLEAN NOT NULL DEFAULT FALSE,
        goals_set       BOOLEAN NOT NULL DEFAULT FALSE,
        referrals_asked BOOLEAN NOT NULL DEFAULT FALSE
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS weekly_progress (
        id              SERIAL PRIMARY KEY,
        enrollment_id   INTEGER NOT NULL REFERENCES enrollments(id),
        week_number     INTEGER NOT NULL CHECK (week_number >= 1),
        outcome         TEXT,
        notes           TEXT,
        UNIQUE (enrollment_id, week_number)
    )
    """,
]

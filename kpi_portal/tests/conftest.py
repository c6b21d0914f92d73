"""
Pytest Configuration and Shared Fixtures for KPI Portal Backend Tests.

This module provides fixtures and configuration for all backend tests:
- Settings pinned to the memory backend and the Europe/Bucharest reporting zone
- A fixed clock (Wednesday 2026-03-18, 10:00 UTC)
- A seeded InMemoryRepository covering every entity type
- The reporting week 2026-03-02 .. 2026-03-08 used by most summary tests
- A mock asyncpg connection/pool for PostgresRepository and database tests

Seeded data (reporting week 2026-03-02 .. 2026-03-08):

    Team: 1 Alice Closer, 2 Bob Closer (CLOSER), 3 Sam Setter (SETTER),
          4 Dana DM (DM_SETTER), 5 Old Closer (CLOSER, inactive)
    Activity: Alice live_calls [2, 3, 5], closes [1, 1, 2]; Bob 1 live call;
              Sam 90 dials / 18 pick-ups / 7 booked; Dana 30 DMs / 2 booked
    Enrollments:
        10 Jane  SPLIT 3000 ACTIVE     closer 1, setter 3, starts 03-02
        11 John  PIF   5000 ACTIVE     closer 2, setter 4, starts 03-05
        12 Mia   PIF   3000 DROPPED    closer 1,           starts 03-03
        13 Jane  PIF   2000 COMPLETED                      starts 01-10
        14 Mia   PIF   3000 ACTIVE     (no plan yet)       starts 02-01
    Payments: 100 Jane 1000 PAID 03-02, 101 John 5000 PAID 03-05,
              102 Mia 500 REFUNDED 03-06, 103 Jane 700 PAID 02-20
    Enrollment 10 schedule v1: 1000 PAID (03-02), 1000 due 03-06,
              1000 due 04-10
    Check-ins: 10 scored 5 then 8, 11 scored 9 then 4, 14 scored 6
    Weekly progress: enrollment 10 weeks 1 (On track) and 2, enrollment 13 week 1
"""

from datetime import date, datetime, timezone
from typing import Callable, List
from unittest.mock import AsyncMock, MagicMock, Mock

import pytest

from kpi_portal.core.config import Settings
from kpi_portal.models import (
    ActivityRecord,
    AdPerformance,
    CheckIn,
    EmailBroadcast,
    Enrollment,
    EnrollmentStatus,
    Installment,
    InstallmentStatus,
    Lead,
    OnboardingChecklist,
    Payment,
    PaymentSchedule,
    PaymentStatus,
    PlanType,
    Program,
    Student,
    TeamMember,
    TeamMemberRole,
    WeeklyProgress,
)
from kpi_portal.repositories import InMemoryRepository
from kpi_portal.services.date_range import DateRange, normalize_date_range


FIXED_NOW = datetime(2026, 3, 18, 10, 0, tzinfo=timezone.utc)
TIMEZONE = "Europe/Bucharest"


def utc(year: int, month: int, day: int, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


# ============================================================
# PYTEST HOOKS
# ============================================================

def pytest_configure(config) -> None:
    """
    Configure custom pytest markers for test organization.

    Custom markers defined:
    - integration: Marks tests requiring a live PostgreSQL database
    """
    config.addinivalue_line(
        'markers',
        'integration: marks tests requiring a live PostgreSQL database'
    )


# ============================================================
# SETTINGS AND CLOCK
# ============================================================

@pytest.fixture
def settings() -> Settings:
    """Settings for the memory backend; independent of the process environment."""
    return Settings(
        _env_file=None,
        storage_backend='memory',
        database_url=None,
        reporting_timezone=TIMEZONE,
    )


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Clock pinned to FIXED_NOW."""
    return lambda: FIXED_NOW


@pytest.fixture
def week() -> DateRange:
    """Reporting week Monday 2026-03-02 .. Sunday 2026-03-08."""
    return normalize_date_range("2026-03-02", "2026-03-08", tz=TIMEZONE, now=FIXED_NOW)


# ============================================================
# SEEDED REPOSITORY
# ============================================================

def _team() -> List[TeamMember]:
    return [
        TeamMember(id=1, name="Alice Closer", role=TeamMemberRole.CLOSER),
        TeamMember(id=2, name="Bob Closer", role=TeamMemberRole.CLOSER),
        TeamMember(id=3, name="Sam Setter", role=TeamMemberRole.SETTER),
        TeamMember(id=4, name="Dana DM", role=TeamMemberRole.DM_SETTER),
        TeamMember(id=5, name="Old Closer", role=TeamMemberRole.CLOSER, active=False),
    ]


def _activity() -> List[ActivityRecord]:
    return [
        ActivityRecord(id=1, team_member_id=1, date=date(2026, 3, 2), live_calls=2, offers_made=2,
                       closes=1, scheduled_calls=4, reschedules=0, cash_collected=1000),
        ActivityRecord(id=2, team_member_id=1, date=date(2026, 3, 3), live_calls=3, offers_made=2,
                       closes=1, scheduled_calls=3, reschedules=1, cash_collected=0),
        ActivityRecord(id=3, team_member_id=1, date=date(2026, 3, 4), live_calls=5, offers_made=3,
                       closes=2, scheduled_calls=5, reschedules=0, cash_collected=500),
        ActivityRecord(id=4, team_member_id=2, date=date(2026, 3, 2), live_calls=1, offers_made=1,
                       closes=0),
        ActivityRecord(id=5, team_member_id=3, date=date(2026, 3, 2), calls_made=50, pick_ups=10,
                       booked_calls=4, closes=1, reschedules=1),
        ActivityRecord(id=6, team_member_id=3, date=date(2026, 3, 3), calls_made=40, pick_ups=8,
                       booked_calls=3, closes=0),
        ActivityRecord(id=7, team_member_id=4, date=date(2026, 3, 4), dms_sent=30,
                       conversations_started=10, booked_calls=2, closes=1),
        # Outside the reporting week
        ActivityRecord(id=8, team_member_id=1, date=date(2026, 3, 10), live_calls=100, closes=50),
    ]


def _enrollments() -> List[Enrollment]:
    return [
        Enrollment(id=10, student_id=1, program_id=1, plan_type=PlanType.SPLIT, contract_value=3000,
                   assigned_closer_id=1, assigned_setter_id=3, start_date=date(2026, 3, 2),
                   current_schedule_id=1),
        Enrollment(id=11, student_id=2, program_id=2, plan_type=PlanType.PIF, contract_value=5000,
                   assigned_closer_id=2, assigned_setter_id=4, start_date=date(2026, 3, 5)),
        Enrollment(id=12, student_id=3, program_id=1, contract_value=3000, status=EnrollmentStatus.DROPPED,
                   assigned_closer_id=1, start_date=date(2026, 3, 3)),
        Enrollment(id=13, student_id=1, program_id=2, contract_value=2000, status=EnrollmentStatus.COMPLETED,
                   start_date=date(2026, 1, 10)),
        Enrollment(id=14, student_id=3, program_id=1, contract_value=3000, start_date=date(2026, 2, 1)),
    ]


def _payments() -> List[Payment]:
    return [
        Payment(id=100, enrollment_id=10, amount=1000, date=utc(2026, 3, 2)),
        Payment(id=101, enrollment_id=11, amount=5000, date=utc(2026, 3, 5, 9),
                payer_email=" JOHN@example.com "),
        Payment(id=102, enrollment_id=12, amount=500, date=utc(2026, 3, 6, 15), status=PaymentStatus.REFUNDED),
        Payment(id=103, enrollment_id=13, amount=700, date=utc(2026, 2, 20)),
    ]


def _plan() -> list:
    return [
        PaymentSchedule(id=1, enrollment_id=10, version=1, plan_type=PlanType.SPLIT, created_at=utc(2026, 3, 1)),
        Installment(id=1, enrollment_id=10, schedule_id=1, due_date=date(2026, 3, 2), amount=1000,
                    status=InstallmentStatus.PAID, payment_id=100),
        Installment(id=2, enrollment_id=10, schedule_id=1, due_date=date(2026, 3, 6), amount=1000),
        Installment(id=3, enrollment_id=10, schedule_id=1, due_date=date(2026, 4, 10), amount=1000),
    ]


def _marketing() -> list:
    return [
        Lead(id=1, email="jane@example.com", source="Instagram", created_at=utc(2026, 3, 1, 8)),
        Lead(id=2, email="Jane@Example.com", source="YouTube", created_at=utc(2026, 2, 1)),
        Lead(id=3, email="john@example.com", source=None, created_at=utc(2026, 3, 3)),
        Lead(id=4, email="new@example.com", source="Facebook", created_at=utc(2026, 3, 4)),
        AdPerformance(id=1, date=date(2026, 3, 2), campaign_id=1, campaign_name="Spring Promo", platform="Meta",
                      spend=100, impressions=10000, clicks=200, leads=10, purchases=1, revenue=500),
        AdPerformance(id=2, date=date(2026, 3, 3), campaign_id=1, campaign_name="Spring Promo", platform="Meta",
                      spend=50, impressions=5000, clicks=100, leads=5),
        AdPerformance(id=3, date=date(2026, 3, 3), campaign_id=2, platform="Google",
                      spend=30, impressions=3000, clicks=30),
        AdPerformance(id=4, date=date(2026, 3, 4), campaign_id=3, campaign_name="Paused", platform="TikTok",
                      spend=0, impressions=999, clicks=9, leads=1),
        EmailBroadcast(id=1, subject="Welcome", sent_at=utc(2026, 3, 2, 10), recipients_count=100,
                       open_rate=40.0, click_rate=5.0),
        EmailBroadcast(id=2, subject=None, sent_at=utc(2026, 3, 2, 18), recipients_count=50,
                       open_rate=45.0, click_rate=2.5),
        EmailBroadcast(id=3, subject="Webinar", sent_at=utc(2026, 3, 5, 10), recipients_count=200,
                       open_rate=30.0, click_rate=4.0),
        EmailBroadcast(id=4, subject="Old news", sent_at=utc(2026, 2, 20), recipients_count=10,
                       open_rate=10.0, click_rate=1.0),
    ]


def _customer_success() -> list:
    return [
        CheckIn(id=1, enrollment_id=10, date=utc(2026, 3, 1), satisfaction=5),
        CheckIn(id=2, enrollment_id=10, date=utc(2026, 3, 10), satisfaction=8),
        CheckIn(id=3, enrollment_id=11, date=utc(2026, 3, 12), satisfaction=4),
        CheckIn(id=4, enrollment_id=11, date=utc(2026, 3, 1), satisfaction=9),
        CheckIn(id=5, enrollment_id=14, date=utc(2026, 3, 11), satisfaction=6, wins="First client"),
        OnboardingChecklist(id=1, enrollment_id=10, call_completed=True, slack_joined=True, course_access=True),
        OnboardingChecklist(id=2, enrollment_id=11, call_completed=True, slack_joined=True, course_access=True,
                            community_intro=True, goals_set=True, referrals_asked=True),
        WeeklyProgress(id=1, enrollment_id=10, week_number=1, outcome="On track", notes="Offer drafted"),
        WeeklyProgress(id=2, enrollment_id=10, week_number=2),
        WeeklyProgress(id=3, enrollment_id=13, week_number=1, outcome="Graduated"),
    ]


@pytest.fixture
def repo() -> InMemoryRepository:
    """InMemoryRepository seeded with the dataset described in the module docstring."""
    return InMemoryRepository().seed(
        *_team(),
        Student(id=1, name="Jane Doe", email="jane@example.com"),
        Student(id=2, name="John Roe", email="john@example.com"),
        Student(id=3, name="Mia Poe", email="mia@example.com"),
        Program(id=1, name="Coaching", price=3000),
        Program(id=2, name="Mastermind", price=5000),
        *_activity(),
        *_enrollments(),
        *_payments(),
        *_plan(),
        *_marketing(),
        *_customer_success(),
    )


@pytest.fixture
def empty_repo() -> InMemoryRepository:
    return InMemoryRepository()


# ============================================================
# DATABASE MOCK FIXTURES
# ============================================================

@pytest.fixture
def mock_conn() -> AsyncMock:
    """
    Mock asyncpg connection.

    Methods Mocked:
        - conn.fetch(query, *args): returns []
        - conn.fetchrow(query, *args): returns None
        - conn.execute(query, *args): returns None
        - conn.transaction(): object with async start/commit/rollback
    """
    conn = AsyncMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.execute = AsyncMock(return_value=None)

    transaction = MagicMock()
    transaction.start = AsyncMock(return_value=None)
    transaction.commit = AsyncMock(return_value=None)
    transaction.rollback = AsyncMock(return_value=None)
    conn.transaction = Mock(return_value=transaction)
    return conn


@pytest.fixture
def mock_db_pool(mock_conn: AsyncMock) -> AsyncMock:
    """
    Mock asyncpg pool whose acquire() is an async context manager yielding mock_conn.
    """
    pool = AsyncMock()
    acquire_context = AsyncMock()
    acquire_context.__aenter__ = AsyncMock(return_value=mock_conn)
    acquire_context.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = Mock(return_value=acquire_context)
    pool.close = AsyncMock(return_value=None)
    return pool

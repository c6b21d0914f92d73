"""
Package initialization for KPI Portal models.

Re-exports the enumerations, stored record types and API schemas so other
modules can import them from kpi_portal.models directly.

Usage:
    from kpi_portal.models import (
        PlanType,
        Enrollment,
        Installment,
        PaymentPlanView,
    )
"""

# =============================================================================
# Enums
# =============================================================================

from kpi_portal.models.enums import (
    TeamMemberRole,
    PlanType,
    EnrollmentStatus,
    PaymentStatus,
    InstallmentStatus,
    AssignmentField,
    OnboardingStep,
    ONBOARDING_LABELS,
)

# =============================================================================
# Stored records
# =============================================================================

from kpi_portal.models.records import (
    StoredRecord,
    TeamMember,
    Student,
    Program,
    ActivityRecord,
    ACTIVITY_COUNTERS,
    Enrollment,
    Payment,
    PaymentSchedule,
    Installment,
    Lead,
    AdPerformance,
    EmailBroadcast,
    CheckIn,
    OnboardingChecklist,
    WeeklyProgress,
    ONBOARDING_STEP_FIELDS,
    parse_record,
    parse_records,
)

# =============================================================================
# API schemas
# =============================================================================

from kpi_portal.models.schemas import (
    RangeInfo,
    MetricBreakdown,
    ChartSeries,
    TimeSeriesChart,
    TeamMemberOption,
    SalesTopCards,
    SalesTopCardsResponse,
    ClosersMetrics,
    CloserPerformance,
    ClosersResponse,
    PaymentRow,
    SettersMetrics,
    SetterPerformance,
    SettersResponse,
    DmSettersMetrics,
    DmSetterPerformance,
    DmSettersResponse,
    OverdueSummary,
    HomeCards,
    CashBySourceItem,
    HomePieCharts,
    HomeSummaryResponse,
    Transaction,
    TransactionsResponse,
    AdsSummary,
    AdPerformanceSummary,
    CampaignPoint,
    CampaignMetrics,
    EmailSummary,
    BroadcastRow,
    CsmSummary,
    HighRiskClient,
    ActiveClient,
    OnboardingStepView,
    OnboardingUpdate,
    StudentEnrollment,
    CheckInView,
    CheckInOutcomeUpdate,
    WeeklyProgressView,
    WeeklyProgressUpdate,
    InstallmentEntry,
    InstallmentDraft,
    PaymentPlanUpdate,
    DraftSchedule,
    InstallmentView,
    PaymentPlanView,
    SettlementResult,
    AssignmentUpdate,
    EnrollmentView,
    AssignmentResponse,
)

"""
Pydantic request/response models for the KPI Portal API.

Response models keep the camelCase field names the portal frontend already
consumes. Every summary response echoes the normalized reporting window as
`range: {from, to, tz}`.

Groups:
- Shared: RangeInfo, MetricBreakdown, ChartSeries, TimeSeriesChart
- Sales: SalesTopCards, ClosersMetrics, CloserPerformance, PaymentRow,
  SettersMetrics, SetterPerformance, DmSettersMetrics, DmSetterPerformance
- Home: HomeCards, CashBySourceItem, Transaction, HomePieCharts
- Marketing: AdsSummary, AdPerformanceSummary, CampaignMetrics, EmailSummary, BroadcastRow
- Customer success: CsmSummary, HighRiskClient, ActiveClient, OnboardingStepView,
  StudentEnrollment, CheckInView, CheckInOutcomeUpdate, WeeklyProgressView,
  WeeklyProgressUpdate
- Payment plans: InstallmentEntry, InstallmentDraft, PaymentPlanUpdate,
  DraftSchedule, InstallmentView, PaymentPlanView, SettlementResult
- Attribution: AssignmentUpdate, EnrollmentView
"""

from datetime import date as DateType, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from kpi_portal.models.enums import InstallmentStatus, PlanType, TeamMemberRole


# =============================================================================
# Shared
# =============================================================================


class RangeInfo(BaseModel):
    """Normalized reporting window echoed back to the caller."""

    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(..., alias="from", description="First day of the window (YYYY-MM-DD)")
    to: str = Field(..., description="Last day of the window (YYYY-MM-DD)")
    tz: str = Field(..., description="Reporting timezone")


class MetricBreakdown(BaseModel):
    name: str
    value: float


class ChartSeries(BaseModel):
    name: str
    data: List[float]


class TimeSeriesChart(BaseModel):
    categories: List[str] = Field(default_factory=list, description="X-axis dates")
    series: List[ChartSeries] = Field(default_factory=list)


class TeamMemberOption(BaseModel):
    id: int
    name: str
    role: TeamMemberRole


# =============================================================================
# Sales
# =============================================================================


class SalesTopCards(BaseModel):
    """Company-wide sales cards shown on every sales tab."""

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "totalBookedCalls": 40,
                "cashCollected": 12000.0,
                "liveCalls": 25,
                "offersMade": 15,
                "showUpRate": 1.6,
                "outboundDials": 900,
                "dmsSent": 300,
                "pickups": 120,
                "newStudents": 4,
                "companyMonthlyPacing": 53142.86,
            }
        }
    )

    totalBookedCalls: int = Field(..., ge=0, description="Setter + DM setter booked calls")
    cashCollected: float = Field(..., description="PAID payments in range")
    liveCalls: int = Field(..., ge=0)
    offersMade: int = Field(..., ge=0)
    showUpRate: float = Field(..., description="totalBookedCalls / liveCalls")
    outboundDials: int = Field(..., ge=0)
    dmsSent: int = Field(..., ge=0)
    pickups: int = Field(..., ge=0)
    newStudents: int = Field(..., ge=0, description="ACTIVE enrollments starting in range")
    companyMonthlyPacing: float = Field(..., description="Cash per day projected over the current month")


class ClosersMetrics(BaseModel):
    totalBookedCalls: int
    liveCalls: int
    offersMade: int
    closes: int
    offerRate: float = Field(..., description="offersMade / liveCalls")
    offerToCloseRate: float = Field(..., description="closes / offersMade")
    closeRate: float = Field(..., description="closes / liveCalls")
    cashPerLiveCall: float = Field(..., description="cashCollected / liveCalls")
    cashCollected: float
    avgCashPerDay: float
    closedWonRevenueMTD: float
    callsOnCalendar: int
    reschedules: int
    reportedRevenue: float = Field(..., description="Self-reported cash from activity records")


class CloserPerformance(BaseModel):
    rep: str
    liveCalls: int
    closes: int
    callsOnCalendar: int
    offerToClosePct: float
    closePct: float
    ccPerLiveCall: float
    ccByRep: float
    reschedules: int
    reportedRevenue: float


class PaymentRow(BaseModel):
    id: int
    date: str
    name: str
    cc: float
    closer: str
    setter: str
    assignedCloserId: Optional[int] = None
    assignedSetterId: Optional[int] = None


class SettersMetrics(BaseModel):
    outboundDials: int
    pickUps: int
    bookedCalls: int
    reschedules: int
    closedWon: int
    cashCollected: float
    pickUpToBookedPct: float = Field(..., description="bookedCalls / pickUps")
    cashPerDay: float
    cashPerBookedCall: float = Field(..., description="cashCollected / bookedCalls")
    monthlyPacing: float
    reportedRevenue: float


class SetterPerformance(BaseModel):
    rep: str
    callsMade: int
    pickUps: int
    bookedCalls: int
    closedWon: int
    ccBySetter: float
    reportedRevenue: float


class DmSettersMetrics(BaseModel):
    dmsOutbound: int
    conversationsStarted: int
    bookedCalls: int
    closedWon: int
    cashCollected: float
    conversationRate: float = Field(..., description="conversationsStarted / dmsSent")
    bookingRate: float = Field(..., description="bookedCalls / conversationsStarted")
    cashPerDay: float
    cashPerBookedCall: float
    reportedRevenue: float


class DmSetterPerformance(BaseModel):
    rep: str
    newOutboundConvos: int
    outboundResponses: int
    totalCallsBooked: int
    closedWon: int
    ccByDmSetter: float
    reportedRevenue: float


class SalesTopCardsResponse(SalesTopCards):
    range: RangeInfo


class ClosersResponse(BaseModel):
    range: RangeInfo
    metrics: ClosersMetrics
    performance: List[CloserPerformance]
    payments: List[PaymentRow]


class SettersResponse(BaseModel):
    range: RangeInfo
    metrics: SettersMetrics
    performance: List[SetterPerformance]


class DmSettersResponse(BaseModel):
    range: RangeInfo
    metrics: DmSettersMetrics
    performance: List[DmSetterPerformance]


# =============================================================================
# Home
# =============================================================================


class OverdueSummary(BaseModel):
    count: int
    total: float


class HomeCards(BaseModel):
    netRevenue: float
    newCustomers: int
    closedWonRevenue: float
    leadsCaptured: int
    adSpend: float
    overduePayments: OverdueSummary
    refunds: float


class CashBySourceItem(BaseModel):
    source: str
    amount: float


class HomePieCharts(BaseModel):
    closedCallsByCloser: List[MetricBreakdown]
    callsMadeBySetter: List[MetricBreakdown]
    dmsSentByDmSetter: List[MetricBreakdown]


class HomeSummaryResponse(BaseModel):
    range: RangeInfo
    cards: HomeCards
    cashCollectedBySource: List[CashBySourceItem]
    pieCharts: HomePieCharts


class Transaction(BaseModel):
    id: int
    date: str
    name: str
    value: float = Field(..., description="Negative for refunds")
    source: str
    lineOfBusiness: str


class TransactionsResponse(BaseModel):
    transactions: List[Transaction]
    total: int
    page: int
    limit: int


# =============================================================================
# Marketing
# =============================================================================


class AdsSummary(BaseModel):
    range: RangeInfo
    totalSpend: float
    activeCampaigns: int
    avgDailySpend: float = Field(..., description="totalSpend / daysInRange")
    platformCount: int
    impressions: int
    clicks: int
    leadsCaptured: int
    conversions: int
    cpl: float = Field(..., description="totalSpend / leadsCaptured")
    revenueAttributed: float


class AdPerformanceSummary(BaseModel):
    range: RangeInfo
    totalImpressions: int
    totalClicks: int
    totalLeads: int
    totalSpend: float
    avgCTR: float = Field(..., description="Clicks per impression, as a percentage")
    avgCPC: float
    avgCPL: float


class CampaignPoint(BaseModel):
    date: str
    spend: float
    impressions: int
    leads: int
    revenue: float


class CampaignMetrics(BaseModel):
    campaignId: int
    campaign: str
    platform: Optional[str] = None
    points: List[CampaignPoint]


class EmailSummary(BaseModel):
    range: RangeInfo
    totalBroadcasts: int
    totalRecipients: int
    avgOpenRate: str = Field(..., description="Mean open rate, one decimal")
    avgClickRate: str = Field(..., description="Mean click rate, one decimal")


class BroadcastRow(BaseModel):
    id: int
    subject: str
    sentAt: datetime
    recipients: int
    openRate: str
    clickRate: str


# =============================================================================
# Customer success
# =============================================================================


class CsmSummary(BaseModel):
    range: RangeInfo
    activeMembers: int
    totalOwed: float = Field(..., description="Unpaid installments across current schedules")
    highRiskClients: int
    onboardingCompliance: float = Field(
        ..., ge=0.0, le=1.0,
        description="completed checklist steps / total checklist steps"
    )
    overdueAmount: float
    overdueCount: int
    expectedPayments: float = Field(..., description="Unpaid installments due in range")


class HighRiskClient(BaseModel):
    enrollmentId: int
    studentId: int
    name: str
    email: str
    program: str
    planType: str
    installments: int
    satisfaction: int
    lastCheckIn: datetime
    selectedOutcome: str


class ActiveClient(BaseModel):
    enrollmentId: int
    studentId: int
    name: str
    email: str
    program: str
    planType: str
    installments: int
    startDate: DateType
    endDate: Optional[DateType] = None
    cashCollected: float
    contractedValue: float
    closer: str
    setter: str


class OnboardingStepView(BaseModel):
    key: str
    label: str
    checked: bool


class OnboardingUpdate(BaseModel):
    field: str
    value: bool


class StudentEnrollment(BaseModel):
    id: int
    program: str
    planType: str
    status: str
    contractValue: float
    startDate: DateType
    endDate: Optional[DateType] = None
    closer: str
    setter: str


class CheckInView(BaseModel):
    id: int
    enrollmentId: int
    submittedAt: datetime
    satisfaction: int
    wins: Optional[str] = None
    notes: Optional[str] = None
    selectedOutcome: Optional[str] = Field(None, description="Outcome recorded by the CSM")


class CheckInOutcomeUpdate(BaseModel):
    """`outcome: null` clears the recorded outcome."""

    outcome: Optional[str] = Field(..., max_length=100)


class WeeklyProgressView(BaseModel):
    id: int
    enrollmentId: int
    weekNumber: int
    outcome: Optional[str] = None
    notes: Optional[str] = None


class WeeklyProgressUpdate(BaseModel):
    """Omitted or null fields are left unchanged."""

    outcome: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = Field(None, max_length=5000)


# =============================================================================
# Payment plans
# =============================================================================

# Smallest amount the NUMERIC(12, 2) columns can hold
MIN_AMOUNT = 0.01


class InstallmentEntry(BaseModel):
    """One caller-supplied installment of a SPLIT schedule."""

    dueDate: DateType = Field(..., description="Due date (YYYY-MM-DD)")
    amountOwed: float = Field(..., ge=MIN_AMOUNT, description="Amount owed, at least one cent")


class InstallmentDraft(BaseModel):
    """
    Edit-session row for an installment. Either field may still be empty
    while the user is filling the form; only complete rows are saved.
    """

    dueDate: Optional[DateType] = None
    amountOwed: Optional[float] = Field(default=None, ge=0, description="0 or empty while unfilled")

    @field_validator("dueDate", "amountOwed", mode="before")
    @classmethod
    def _blank_is_empty(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("amountOwed")
    @classmethod
    def _at_least_one_cent(cls, value):
        if value and value < MIN_AMOUNT:
            raise ValueError(f"amountOwed must be 0 or at least {MIN_AMOUNT}")
        return value


class PaymentPlanUpdate(BaseModel):
    """
    Plan-mutation request body.

    `installments` are the form rows as edited; incomplete rows are dropped
    on save.
    """

    planType: PlanType
    installments: Optional[List[InstallmentDraft]] = None
    contractValue: Optional[float] = Field(default=None, ge=0)

    @field_validator("planType", mode="before")
    @classmethod
    def _accept_label(cls, value):
        if isinstance(value, str):
            return PlanType.from_label(value)
        return value


class DraftSchedule(BaseModel):
    """Installment form rows for an enrollment, resized to the requested count."""

    enrollmentId: int
    planType: PlanType
    installments: List[InstallmentDraft] = Field(default_factory=list)


class InstallmentView(BaseModel):
    id: int
    dueDate: DateType
    amountOwed: float
    status: InstallmentStatus = Field(..., description="PENDING, PAID, or derived OVERDUE")
    isOverdue: bool
    paidAt: Optional[datetime] = None
    amountPaid: float = 0.0
    paymentId: Optional[int] = None


class PaymentPlanView(BaseModel):
    enrollmentId: int
    planType: PlanType
    installments: Optional[int] = Field(default=None, description="Installment count, null for PIF")
    contractValue: float
    totalPaid: float
    remaining: float
    scheduleVersion: Optional[int] = None
    schedule: List[InstallmentView]


class SettlementResult(BaseModel):
    installment: InstallmentView
    paymentId: int
    plan: PaymentPlanView


# =============================================================================
# Attribution
# =============================================================================


class AssignmentUpdate(BaseModel):
    """
    Assignment-mutation body. An omitted key leaves that slot unchanged;
    an explicit null clears it.
    """

    assignedCloserId: Optional[int] = Field(default=None, gt=0)
    assignedSetterId: Optional[int] = Field(default=None, gt=0)
    expectedVersion: Optional[int] = Field(default=None, ge=1)


class EnrollmentView(BaseModel):
    id: int
    studentId: int
    planType: PlanType
    contractValue: float
    assignedCloserId: Optional[int] = None
    assignedSetterId: Optional[int] = None
    closerName: str
    setterName: str
    version: int


class AssignmentResponse(BaseModel):
    success: bool = True
    enrollment: EnrollmentView

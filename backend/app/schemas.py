from pydantic import AfterValidator, BaseModel, ConfigDict, field_validator
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Annotated, Dict, Optional, List
from uuid import UUID

from app.services.bill_service import parse_reminder_days

CENT = Decimal("0.01")

# Amounts and percentages leave the API rounded to cents
Money = Annotated[Decimal, AfterValidator(lambda v: v.quantize(CENT, rounding=ROUND_HALF_UP))]


# Declared recurring payment schemas
class RecurringPaymentCreate(BaseModel):
    account_id: UUID
    name: str
    amount: Decimal
    frequency: str
    next_due_date: Optional[datetime] = None
    category_id: Optional[UUID] = None
    merchant: Optional[str] = None
    reminder_days: Optional[List[int]] = None
    # Merchant signature of a detection on the same account to confirm
    source_signature: Optional[str] = None


class RecurringPaymentUpdate(BaseModel):
    name: Optional[str] = None
    merchant: Optional[str] = None
    amount: Optional[Decimal] = None
    category_id: Optional[UUID] = None
    frequency: Optional[str] = None
    next_due_date: Optional[datetime] = None
    reminder_days: Optional[List[int]] = None


class RecurringPaymentResponse(BaseModel):
    id: UUID
    account_id: UUID
    name: str
    merchant: Optional[str] = None
    amount: Money
    currency: Optional[str] = None
    frequency: str
    next_due_date: datetime
    category_id: Optional[UUID] = None
    is_active: bool
    status: str
    payment_date: Optional[datetime] = None
    last_processed: Optional[datetime] = None
    reminder_days: List[int]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("reminder_days", mode="before")
    @classmethod
    def split_reminder_days(cls, value):
        if isinstance(value, str):
            return parse_reminder_days(value)
        return value


class MarkPaidRequest(BaseModel):
    payment_date: Optional[datetime] = None


class ReminderSettingsUpdate(BaseModel):
    reminder_days: List[int]


class BusinessDayAdjustmentRequest(BaseModel):
    direction: str = "forward"


class BusinessDayAdjustmentResponse(BaseModel):
    adjusted_count: int


# Detection schemas
class RecurringDetectionResponse(BaseModel):
    account_id: str
    merchant_signature: str
    suggested_name: str
    suggested_category_id: Optional[str] = None
    frequency: str
    confidence: float
    risk_score: float
    average_amount: Money
    occurrences: int
    first_occurrence: datetime
    last_occurrence: datetime
    next_expected_date: datetime
    amount_consistency: float
    timing_regularity: float
    existing_payment_id: Optional[str] = None
    is_new: bool
    transaction_ids: List[str] = []


# Cost analysis schemas
class CategoryCostResponse(BaseModel):
    category_id: Optional[str] = None
    monthly_amount: Money
    quarterly_amount: Money
    yearly_amount: Money
    percentage: Money
    payment_count: int

    model_config = ConfigDict(from_attributes=True)


class FrequencyCostResponse(BaseModel):
    count: int
    total: Money

    model_config = ConfigDict(from_attributes=True)


class TrendDeltaResponse(BaseModel):
    current: Money
    previous: Money
    change: Money
    change_percentage: Money

    model_config = ConfigDict(from_attributes=True)


class BudgetUtilizationResponse(BaseModel):
    total_budget: Money
    recurring_allocation: Money
    available_spending: Money
    utilization_percentage: Money

    model_config = ConfigDict(from_attributes=True)


class SpendingProjectionsResponse(BaseModel):
    next_month: Money
    next_3_months: Money
    next_6_months: Money
    next_year: Money

    model_config = ConfigDict(from_attributes=True)


class OptimizationSuggestionResponse(BaseModel):
    type: str
    payment_id: str
    payment_name: str
    suggestion: str
    potential_savings: Money
    priority: str

    model_config = ConfigDict(from_attributes=True)


class CostAnalysisResponse(BaseModel):
    total_monthly: Money
    total_quarterly: Money
    total_yearly: Money
    category_breakdown: List[CategoryCostResponse]
    frequency_breakdown: Dict[str, FrequencyCostResponse]
    month_over_month: TrendDeltaResponse
    quarter_over_quarter: TrendDeltaResponse
    budget: BudgetUtilizationResponse
    projections: SpendingProjectionsResponse
    suggestions: List[OptimizationSuggestionResponse]

    model_config = ConfigDict(from_attributes=True)


class MonthlyProjectionResponse(BaseModel):
    month: str
    recurring_amount: Money
    estimated_total: Money
    budget_remaining: Money
    is_over_budget: bool

    model_config = ConfigDict(from_attributes=True)


# Bill tracking schemas
class MissedPaymentResponse(BaseModel):
    payment_id: str
    name: str
    expected_amount: Money
    expected_date: datetime
    days_overdue: int
    account_id: str
    last_payment_date: Optional[datetime] = None
    consecutive_misses: int

    model_config = ConfigDict(from_attributes=True)


class NextBillDueResponse(BaseModel):
    name: str
    amount: Money
    due_date: datetime
    days_until_due: int

    model_config = ConfigDict(from_attributes=True)


class BillSummaryResponse(BaseModel):
    upcoming_bills: int
    overdue_bills: int
    total_amount_due: Money
    next_bill_due: Optional[NextBillDueResponse] = None

    model_config = ConfigDict(from_attributes=True)


# Alert schemas
class AlertResponse(BaseModel):
    id: UUID
    account_id: UUID
    alert_type: str
    message: str
    current_value: Optional[str] = None
    threshold_value: Optional[str] = None
    status: str
    triggered_at: datetime
    acknowledged_at: Optional[datetime] = None
    snoozed_until: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SnoozeRequest(BaseModel):
    minutes: int = 60

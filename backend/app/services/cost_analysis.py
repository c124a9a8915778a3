"""
Cost analysis for declared recurring payments.

Every amount is normalized to a monthly equivalent with Decimal arithmetic; quarterly
and yearly totals are derived from the monthly total, so the three figures always
agree exactly.
"""
import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from app.models import RecurringPayment
from app.services.merchant_signature import merchant_signature
from app.services.pattern_analysis import FREQUENCIES, QUARTERLY, WEEKLY, YEARLY
from app.services.recurring_config import CostAnalysisConfig
from app.services.recurring_repository import RecurringPaymentRepository

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

EXPENSIVE_SHARE = Decimal("0.2")
EXPENSIVE_SAVINGS_RATE = Decimal("0.1")
# Variable spend on top of recurring payments, used by the month-by-month projection
VARIABLE_SPEND_FACTOR = Decimal("1.5")


def monthly_equivalent(amount: Decimal, frequency: str) -> Decimal:
    """Normalize an amount to a monthly figure (weekly x 52/12, quarterly / 3, yearly / 12)."""
    value = abs(Decimal(amount))
    if frequency == WEEKLY:
        return value * Decimal("52") / Decimal("12")
    if frequency == QUARTERLY:
        return value / Decimal("3")
    if frequency == YEARLY:
        return value / Decimal("12")
    return value


def percentage_change(current: Decimal, previous: Decimal) -> Decimal:
    if previous == 0:
        return ZERO
    return (current - previous) / previous * HUNDRED


@dataclass
class CategoryCost:
    category_id: Optional[str]
    monthly_amount: Decimal
    quarterly_amount: Decimal
    yearly_amount: Decimal
    percentage: Decimal
    payment_count: int


@dataclass
class FrequencyCost:
    count: int = 0
    total: Decimal = ZERO


@dataclass
class TrendDelta:
    current: Decimal
    previous: Decimal
    change: Decimal
    change_percentage: Decimal


@dataclass
class BudgetUtilization:
    total_budget: Decimal
    recurring_allocation: Decimal
    available_spending: Decimal
    utilization_percentage: Decimal


@dataclass
class SpendingProjections:
    next_month: Decimal
    next_3_months: Decimal
    next_6_months: Decimal
    next_year: Decimal


@dataclass
class MonthlyProjection:
    month: str
    recurring_amount: Decimal
    estimated_total: Decimal
    budget_remaining: Decimal
    is_over_budget: bool


@dataclass
class OptimizationSuggestion:
    type: str  # duplicate, expensive
    payment_id: str
    payment_name: str
    suggestion: str
    potential_savings: Decimal
    priority: str  # high, medium, low


@dataclass
class CostAnalysis:
    total_monthly: Decimal
    total_quarterly: Decimal
    total_yearly: Decimal
    category_breakdown: List[CategoryCost]
    frequency_breakdown: Dict[str, FrequencyCost]
    month_over_month: TrendDelta
    quarter_over_quarter: TrendDelta
    budget: BudgetUtilization
    projections: SpendingProjections
    suggestions: List[OptimizationSuggestion] = field(default_factory=list)


class CostAnalysisCache:
    """Per-user cache of computed analyses with an explicit time-to-live."""

    def __init__(self, ttl_seconds: int = 300):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._entries: Dict[str, Tuple[datetime, CostAnalysis]] = {}

    def get(self, user_id: str, now: datetime) -> Optional[CostAnalysis]:
        entry = self._entries.get(user_id)
        if entry is None:
            return None
        stored_at, analysis = entry
        if now - stored_at >= self.ttl:
            del self._entries[user_id]
            return None
        return analysis

    def put(self, user_id: str, analysis: CostAnalysis, now: datetime) -> None:
        if self.ttl.total_seconds() <= 0:
            return
        self._entries[user_id] = (now, analysis)

    def invalidate(self, user_id: str) -> None:
        self._entries.pop(user_id, None)

    def clear(self) -> None:
        self._entries.clear()


def _month_start(value: datetime) -> datetime:
    return value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _quarter_start(value: datetime) -> datetime:
    first_month = ((value.month - 1) // 3) * 3 + 1
    return _month_start(value).replace(month=first_month)


def category_breakdown(payments: List[RecurringPayment], total_monthly: Decimal) -> List[CategoryCost]:
    monthly_by_category: Dict[Optional[str], Decimal] = {}
    counts: Dict[Optional[str], int] = {}
    for payment in payments:
        key = str(payment.category_id) if payment.category_id else None
        monthly_by_category[key] = monthly_by_category.get(key, ZERO) + monthly_equivalent(payment.amount, payment.frequency)
        counts[key] = counts.get(key, 0) + 1

    breakdown = []
    for category_id, monthly in monthly_by_category.items():
        breakdown.append(CategoryCost(
            category_id=category_id,
            monthly_amount=monthly,
            quarterly_amount=monthly * 3,
            yearly_amount=monthly * 12,
            percentage=(monthly / total_monthly * HUNDRED) if total_monthly > 0 else ZERO,
            payment_count=counts[category_id],
        ))

    breakdown.sort(key=lambda c: c.monthly_amount, reverse=True)
    return breakdown


def frequency_breakdown(payments: List[RecurringPayment]) -> Dict[str, FrequencyCost]:
    """Raw (not normalized) totals per frequency, for display."""
    breakdown = {frequency: FrequencyCost() for frequency in FREQUENCIES}
    for payment in payments:
        entry = breakdown.setdefault(payment.frequency, FrequencyCost())
        entry.count += 1
        entry.total += abs(Decimal(payment.amount))
    return breakdown


def _created_between(payments: List[RecurringPayment], start: datetime, end: datetime) -> Decimal:
    return sum(
        (abs(Decimal(p.amount)) for p in payments if p.created_at and start <= p.created_at < end),
        ZERO,
    )


def trend_deltas(payments: List[RecurringPayment], now: datetime) -> Tuple[TrendDelta, TrendDelta]:
    """Sum of payments created this month/quarter versus the previous calendar month/quarter."""
    month_start = _month_start(now)
    previous_month_start = month_start - relativedelta(months=1)
    quarter_start = _quarter_start(now)
    previous_quarter_start = quarter_start - relativedelta(months=3)
    upper = now + timedelta(microseconds=1)

    current_month = _created_between(payments, month_start, upper)
    previous_month = _created_between(payments, previous_month_start, month_start)
    current_quarter = _created_between(payments, quarter_start, upper)
    previous_quarter = _created_between(payments, previous_quarter_start, quarter_start)

    return (
        TrendDelta(
            current=current_month,
            previous=previous_month,
            change=current_month - previous_month,
            change_percentage=percentage_change(current_month, previous_month),
        ),
        TrendDelta(
            current=current_quarter,
            previous=previous_quarter,
            change=current_quarter - previous_quarter,
            change_percentage=percentage_change(current_quarter, previous_quarter),
        ),
    )


def budget_utilization(income: Decimal, recurring_monthly: Decimal, budget_fraction: Decimal) -> BudgetUtilization:
    total_budget = income * Decimal(budget_fraction)
    return BudgetUtilization(
        total_budget=total_budget,
        recurring_allocation=recurring_monthly,
        available_spending=max(ZERO, total_budget - recurring_monthly),
        utilization_percentage=(recurring_monthly / total_budget * HUNDRED) if total_budget > 0 else ZERO,
    )


def optimization_suggestions(payments: List[RecurringPayment]) -> List[OptimizationSuggestion]:
    """Flag likely duplicates (same merchant signature) and the most expensive fifth."""
    suggestions: List[OptimizationSuggestion] = []
    ordered = sorted(payments, key=lambda p: p.created_at or datetime.min)

    by_signature: Dict[str, List[RecurringPayment]] = {}
    for payment in ordered:
        signature = merchant_signature(payment.name or "")
        if signature:
            by_signature.setdefault(signature, []).append(payment)

    for group in by_signature.values():
        if len(group) < 2:
            continue
        original = group[0]
        for duplicate in group[1:]:
            suggestions.append(OptimizationSuggestion(
                type="duplicate",
                payment_id=str(duplicate.id),
                payment_name=duplicate.name,
                suggestion=(
                    f"Potential duplicate payment detected. Consider canceling if this is "
                    f"the same service as {original.name}."
                ),
                potential_savings=abs(Decimal(duplicate.amount)),
                priority="medium",
            ))

    expensive_count = math.ceil(len(ordered) * EXPENSIVE_SHARE)
    by_amount = sorted(ordered, key=lambda p: abs(Decimal(p.amount)), reverse=True)
    for payment in by_amount[:expensive_count]:
        amount = abs(Decimal(payment.amount))
        suggestions.append(OptimizationSuggestion(
            type="expensive",
            payment_id=str(payment.id),
            payment_name=payment.name,
            suggestion=(
                f"This is one of your most expensive recurring payments. "
                f"Consider reviewing if you're getting value for {amount:.2f}."
            ),
            potential_savings=amount * EXPENSIVE_SAVINGS_RATE,
            priority="low",
        ))

    return suggestions


class CostAnalysisService:
    """Aggregates a user's active declared payments into a CostAnalysis."""

    def __init__(
        self,
        repository: RecurringPaymentRepository,
        config: Optional[CostAnalysisConfig] = None,
        cache: Optional[CostAnalysisCache] = None,
    ):
        self.repository = repository
        self.config = config or CostAnalysisConfig()
        self.cache = cache if cache is not None else CostAnalysisCache(self.config.cache_ttl_seconds)

    def _trailing_income(self, user_id: str, now: datetime) -> Decimal:
        since = now - timedelta(days=self.config.income_window_days)
        income = self.repository.list_income_transactions(user_id, since)
        return sum((Decimal(t.amount) for t in income if Decimal(t.amount) > 0), ZERO)

    def get_cost_analysis(self, user_id: str, now: datetime, use_cache: bool = True) -> CostAnalysis:
        if use_cache:
            cached = self.cache.get(user_id, now)
            if cached is not None:
                logger.debug(f"[COST_ANALYSIS] Cache hit for user {user_id}")
                return cached

        payments = self.repository.list_active_recurring_payments(user_id)
        income = self._trailing_income(user_id, now)

        total_monthly = sum(
            (monthly_equivalent(p.amount, p.frequency) for p in payments),
            ZERO,
        )
        month_over_month, quarter_over_quarter = trend_deltas(payments, now)

        analysis = CostAnalysis(
            total_monthly=total_monthly,
            total_quarterly=total_monthly * 3,
            total_yearly=total_monthly * 12,
            category_breakdown=category_breakdown(payments, total_monthly),
            frequency_breakdown=frequency_breakdown(payments),
            month_over_month=month_over_month,
            quarter_over_quarter=quarter_over_quarter,
            budget=budget_utilization(income, total_monthly, self.config.budget_fraction),
            projections=SpendingProjections(
                next_month=total_monthly,
                next_3_months=total_monthly * 3,
                next_6_months=total_monthly * 6,
                next_year=total_monthly * 12,
            ),
            suggestions=optimization_suggestions(payments),
        )

        logger.info(
            f"[COST_ANALYSIS] User {user_id}: {len(payments)} active payments, "
            f"monthly total {total_monthly:.2f}"
        )

        if use_cache:
            self.cache.put(user_id, analysis, now)
        return analysis

    def monthly_projections(self, user_id: str, now: datetime, months: Optional[int] = None) -> List[MonthlyProjection]:
        """Month-by-month outlook: recurring spend plus an allowance for variable spend."""
        months = months or self.config.projection_months
        analysis = self.get_cost_analysis(user_id, now)
        estimated_total = analysis.total_monthly * VARIABLE_SPEND_FACTOR

        projections = []
        for offset in range(months):
            month = now + relativedelta(months=offset)
            remaining = analysis.budget.total_budget - estimated_total
            projections.append(MonthlyProjection(
                month=month.strftime("%b %Y"),
                recurring_amount=analysis.total_monthly,
                estimated_total=estimated_total,
                budget_remaining=remaining,
                is_over_budget=remaining < 0,
            ))
        return projections

    def invalidate(self, user_id: str) -> None:
        self.cache.invalidate(user_id)

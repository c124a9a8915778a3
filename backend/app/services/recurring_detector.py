"""
Recurring payment pattern detection for discovering undeclared subscriptions and bills.

Core approach: group a user's expense transactions by (account, merchant signature),
keep groups that reach the minimum occurrence floor, then score each group on amount
consistency, cadence regularity, sample size and history length.

Usage:
    detector = RecurringPatternDetector(repository, user_id, config)
    detections = detector.detect(now=datetime.utcnow())
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta

from app.models import RecurringPayment, Transaction
from app.services.merchant_signature import merchant_signature
from app.services.pattern_analysis import (
    advance_by_frequency,
    amount_consistency,
    frequency_fit,
    mean_amount,
    pattern_confidence,
    pattern_risk,
)
from app.services.recurring_config import RecurringDetectionConfig
from app.services.recurring_repository import RecurringPaymentRepository

logger = logging.getLogger(__name__)

# A declared payment tracks a pattern when amounts differ by at most 10% of the declared amount
EXISTING_PAYMENT_AMOUNT_TOLERANCE = Decimal("0.10")

GroupKey = Tuple[str, str]


@dataclass
class TransactionPattern:
    """A scored candidate built from one (account, signature) group."""
    account_id: str
    merchant_signature: str
    observations: List[Tuple[Decimal, datetime]]
    frequency: str
    confidence: float
    average_amount: Decimal
    last_occurrence: datetime
    next_expected_date: datetime
    category_id: Optional[str] = None
    amount_consistency: float = 0.0
    timing_regularity: float = 0.0
    transaction_ids: List[str] = field(default_factory=list)

    @property
    def occurrences(self) -> int:
        return len(self.observations)

    @property
    def first_occurrence(self) -> datetime:
        return self.observations[0][1]


@dataclass
class RecurringPaymentDetection:
    pattern: TransactionPattern
    suggested_name: str
    suggested_category_id: Optional[str]
    existing_payment_id: Optional[str]
    is_new: bool
    risk_score: float


def group_candidates(
    transactions: List[Transaction],
    min_occurrences: int,
) -> Dict[GroupKey, List[Transaction]]:
    """
    Partition transactions by (account, merchant signature).

    Groups below min_occurrences are dropped here; fewer observations cannot carry
    a frequency inference no matter how regular they look.
    """
    groups: Dict[GroupKey, List[Transaction]] = defaultdict(list)
    for txn in transactions:
        signature = merchant_signature(txn.description or txn.merchant or "")
        if not signature:
            continue
        groups[(str(txn.account_id), signature)].append(txn)

    return {key: txns for key, txns in groups.items() if len(txns) >= min_occurrences}


def most_common_category(transactions: List[Transaction]) -> Optional[str]:
    """Most frequent category id; ties go to the category seen first."""
    counts: Dict[str, int] = {}
    for txn in transactions:
        if txn.category_id:
            key = str(txn.category_id)
            counts[key] = counts.get(key, 0) + 1

    if not counts:
        return None

    # max() keeps the first maximal item, and dicts keep insertion order
    return max(counts.items(), key=lambda item: item[1])[0]


def analyze_group(
    account_id: str,
    signature: str,
    transactions: List[Transaction],
    config: RecurringDetectionConfig,
) -> TransactionPattern:
    """Score one candidate group."""
    ordered = sorted(transactions, key=lambda t: t.booked_at)
    amounts = [abs(Decimal(t.amount)) for t in ordered]
    dates = [t.booked_at for t in ordered]

    consistency = amount_consistency(amounts, config.amount_tolerance_percent)
    fit = frequency_fit(dates, config.date_variance_days)
    span_days = (dates[-1] - dates[0]).days if dates else 0

    confidence = pattern_confidence(
        consistency=consistency,
        regularity=fit.regularity,
        occurrences=len(ordered),
        span_days=span_days,
        min_occurrences=config.min_occurrences,
    )

    return TransactionPattern(
        account_id=account_id,
        merchant_signature=signature,
        observations=list(zip(amounts, dates)),
        frequency=fit.frequency,
        confidence=confidence,
        average_amount=mean_amount(amounts),
        last_occurrence=dates[-1],
        next_expected_date=advance_by_frequency(dates[-1], fit.frequency),
        category_id=most_common_category(ordered),
        amount_consistency=consistency,
        timing_regularity=fit.regularity,
        transaction_ids=[str(t.id) for t in ordered],
    )


def find_matching_payment(
    pattern: TransactionPattern,
    payments: List[RecurringPayment],
) -> Optional[RecurringPayment]:
    """First active payment on the same account whose amount is within 10% of the pattern mean."""
    for payment in payments:
        if str(payment.account_id) != pattern.account_id:
            continue
        declared = abs(Decimal(payment.amount))
        if abs(pattern.average_amount - declared) <= declared * EXISTING_PAYMENT_AMOUNT_TOLERANCE:
            return payment
    return None


def suggested_payment_name(pattern: TransactionPattern) -> str:
    merchant = " ".join(word[:1].upper() + word[1:] for word in pattern.merchant_signature.split(" "))
    return f"{merchant} ({pattern.frequency.capitalize()})"


class RecurringPatternDetector:
    """
    Detects recurring payment patterns for one user.

    Algorithm:
    1. Batch-load expense transactions inside the lookback window
    2. Group by account and merchant signature, dropping groups under the floor
    3. Score amount consistency, cadence fit and confidence per group
    4. Reconcile survivors against declared payments and attach a risk score
    """

    def __init__(
        self,
        repository: RecurringPaymentRepository,
        user_id: str,
        config: Optional[RecurringDetectionConfig] = None,
    ):
        self.repository = repository
        self.user_id = user_id
        self.config = config or RecurringDetectionConfig()
        self._existing_payments: Optional[List[RecurringPayment]] = None

    def _load_existing_payments(self) -> List[RecurringPayment]:
        """Load and cache active declared payments for this run."""
        if self._existing_payments is None:
            self._existing_payments = self.repository.list_active_recurring_payments(self.user_id)
        return self._existing_payments

    def detect_patterns(self, now: datetime) -> List[TransactionPattern]:
        """Patterns that clear the confidence threshold, unsorted."""
        since = now - relativedelta(months=self.config.lookback_months)
        transactions = self.repository.list_expense_transactions(self.user_id, since)

        if not transactions:
            logger.info(f"[RECURRING_DETECTOR] No expense transactions for user {self.user_id}")
            return []

        groups = group_candidates(transactions, self.config.min_occurrences)
        logger.info(
            f"[RECURRING_DETECTOR] Analyzing {len(transactions)} transactions in "
            f"{len(groups)} candidate groups for user {self.user_id}"
        )

        patterns: List[TransactionPattern] = []
        for (account_id, signature), group_txns in groups.items():
            pattern = analyze_group(account_id, signature, group_txns, self.config)
            if pattern.confidence >= self.config.confidence_threshold:
                patterns.append(pattern)
            else:
                logger.debug(
                    f"[RECURRING_DETECTOR] Dropped '{signature}' ({account_id}): "
                    f"confidence {pattern.confidence:.2f} below threshold"
                )

        return patterns

    def detect(self, now: datetime) -> List[RecurringPaymentDetection]:
        """Detected patterns reconciled against declared payments, highest confidence first."""
        patterns = self.detect_patterns(now)
        existing = self._load_existing_payments() if patterns else []

        detections: List[RecurringPaymentDetection] = []
        for pattern in patterns:
            match = find_matching_payment(pattern, existing)
            detections.append(
                RecurringPaymentDetection(
                    pattern=pattern,
                    suggested_name=suggested_payment_name(pattern),
                    suggested_category_id=pattern.category_id,
                    existing_payment_id=str(match.id) if match else None,
                    is_new=match is None,
                    risk_score=pattern_risk(
                        confidence=pattern.confidence,
                        average_amount=pattern.average_amount,
                        occurrences=pattern.occurrences,
                        first_seen=pattern.first_occurrence,
                        now=now,
                    ),
                )
            )

        detections.sort(key=lambda d: (d.pattern.confidence, d.pattern.occurrences), reverse=True)

        logger.info(
            f"[RECURRING_DETECTOR] Final result: {len(detections)} patterns "
            f"({sum(1 for d in detections if d.is_new)} new) for user {self.user_id}"
        )
        for d in detections:
            logger.info(
                f"  - {d.suggested_name} ({d.pattern.account_id}): {d.pattern.frequency}, "
                f"{d.pattern.average_amount:.2f}, {d.pattern.occurrences} txns, "
                f"{d.pattern.confidence:.2f} confidence"
            )

        return detections

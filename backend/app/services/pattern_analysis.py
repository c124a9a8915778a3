"""
Amount, timing, confidence and risk scoring for recurring payment candidates.

All functions are pure. Amounts are Decimal, dates are datetimes, and "now" is always
passed in by the caller.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Sequence, Tuple

from dateutil.relativedelta import relativedelta

WEEKLY = "weekly"
MONTHLY = "monthly"
QUARTERLY = "quarterly"
YEARLY = "yearly"

FREQUENCIES = (WEEKLY, MONTHLY, QUARTERLY, YEARLY)

# (expected interval in days, multiplier applied to the date variance parameter)
FREQUENCY_INTERVALS: Dict[str, Tuple[int, int]] = {
    WEEKLY: (7, 1),
    MONTHLY: (30, 2),
    QUARTERLY: (91, 3),
    YEARLY: (365, 7),
}

CONFIDENCE_CONSISTENCY_WEIGHT = 0.6
CONFIDENCE_OCCURRENCE_WEIGHT = 0.25
CONFIDENCE_SPAN_WEIGHT = 0.15

RISK_CONFIDENCE_WEIGHT = 0.4
RISK_LARGE_AMOUNT = Decimal("10000")
RISK_MEDIUM_AMOUNT = Decimal("5000")
RISK_LARGE_AMOUNT_PENALTY = 0.3
RISK_MEDIUM_AMOUNT_PENALTY = 0.15
RISK_FEW_OCCURRENCES = 5
RISK_FEW_OCCURRENCES_PENALTY = 0.2
RISK_NEW_PATTERN_DAYS = 90
RISK_NEW_PATTERN_PENALTY = 0.1


@dataclass
class FrequencyFit:
    """Best-fitting frequency class and the share of gaps that matched it."""
    frequency: str
    regularity: float


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def validate_frequency(frequency: str) -> str:
    if frequency not in FREQUENCIES:
        raise ValueError(f"Unsupported frequency: {frequency}")
    return frequency


def advance_by_frequency(value: datetime, frequency: str, cycles: int = 1) -> datetime:
    """
    Move a date forward by whole frequency cycles.

    Monthly, quarterly and yearly steps keep the day-of-month and clamp to the
    last valid day (Jan 31 + 1 month = Feb 28/29).
    """
    validate_frequency(frequency)
    if frequency == WEEKLY:
        return value + timedelta(days=7 * cycles)
    if frequency == MONTHLY:
        return value + relativedelta(months=cycles)
    if frequency == QUARTERLY:
        return value + relativedelta(months=3 * cycles)
    return value + relativedelta(years=cycles)


def mean_amount(amounts: Sequence[Decimal]) -> Decimal:
    if not amounts:
        return Decimal("0")
    return sum((abs(a) for a in amounts), Decimal("0")) / Decimal(len(amounts))


def amount_consistency(amounts: Sequence[Decimal], tolerance_percent: float) -> float:
    """Share of amounts that fall within tolerance_percent of their mean (0.0 - 1.0)."""
    if not amounts:
        return 0.0

    average = mean_amount(amounts)
    tolerance = average * Decimal(str(tolerance_percent)) / Decimal("100")
    consistent = sum(1 for amount in amounts if abs(abs(amount) - average) <= tolerance)
    return consistent / len(amounts)


def interval_days(dates: Sequence[datetime]) -> List[int]:
    ordered = sorted(dates)
    return [(ordered[i] - ordered[i - 1]).days for i in range(1, len(ordered))]


def frequency_fit(dates: Sequence[datetime], date_variance_days: int) -> FrequencyFit:
    """
    Score each frequency class by the fraction of day-gaps within its tolerance.

    Tolerance grows with the class (variance x1 weekly, x2 monthly, x3 quarterly,
    x7 yearly). The highest fraction wins; monthly wins any tie it takes part in.
    Fewer than two dates give no gaps, so regularity is 0 and frequency is monthly.
    """
    gaps = interval_days(dates)
    if not gaps:
        return FrequencyFit(frequency=MONTHLY, regularity=0.0)

    scores: Dict[str, float] = {}
    for frequency, (expected, multiplier) in FREQUENCY_INTERVALS.items():
        tolerance = date_variance_days * multiplier
        matching = sum(1 for gap in gaps if abs(gap - expected) <= tolerance)
        scores[frequency] = matching / len(gaps)

    best_score = max(scores.values())
    if best_score == 0 or scores[MONTHLY] == best_score:
        return FrequencyFit(frequency=MONTHLY, regularity=best_score)

    for frequency in FREQUENCIES:
        if scores[frequency] == best_score:
            return FrequencyFit(frequency=frequency, regularity=best_score)

    return FrequencyFit(frequency=MONTHLY, regularity=best_score)


def pattern_confidence(
    consistency: float,
    regularity: float,
    occurrences: int,
    span_days: int,
    min_occurrences: int,
) -> float:
    """Weighted blend of consistency, sample size and history length, clamped to [0, 1]."""
    base = (consistency + regularity) / 2
    occurrence_boost = min(occurrences / (2 * min_occurrences), 1.0) if min_occurrences > 0 else 1.0
    span_boost = min(max(span_days, 0) / 365, 1.0)
    return _clamp(
        base * CONFIDENCE_CONSISTENCY_WEIGHT
        + occurrence_boost * CONFIDENCE_OCCURRENCE_WEIGHT
        + span_boost * CONFIDENCE_SPAN_WEIGHT
    )


def pattern_risk(
    confidence: float,
    average_amount: Decimal,
    occurrences: int,
    first_seen: datetime,
    now: datetime,
) -> float:
    """Higher means more scrutiny: low confidence, large amounts, sparse or new patterns."""
    risk = (1 - confidence) * RISK_CONFIDENCE_WEIGHT

    if average_amount >= RISK_LARGE_AMOUNT:
        risk += RISK_LARGE_AMOUNT_PENALTY
    elif average_amount >= RISK_MEDIUM_AMOUNT:
        risk += RISK_MEDIUM_AMOUNT_PENALTY

    if occurrences < RISK_FEW_OCCURRENCES:
        risk += RISK_FEW_OCCURRENCES_PENALTY

    if (now - first_seen).days < RISK_NEW_PATTERN_DAYS:
        risk += RISK_NEW_PATTERN_PENALTY

    return _clamp(risk)

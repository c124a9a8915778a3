"""
Amount, cadence, confidence and risk scoring checks.
"""
import os
import sys
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.services.pattern_analysis import (  # noqa: E402
    MONTHLY,
    QUARTERLY,
    WEEKLY,
    YEARLY,
    advance_by_frequency,
    amount_consistency,
    frequency_fit,
    mean_amount,
    pattern_confidence,
    pattern_risk,
    validate_frequency,
)


def _dates(start: datetime, gaps):
    dates = [start]
    for gap in gaps:
        dates.append(dates[-1] + timedelta(days=gap))
    return dates


def test_amounts_within_tolerance_are_fully_consistent() -> None:
    amounts = [Decimal("599.00"), Decimal("605.00"), Decimal("595.00")]
    assert amount_consistency(amounts, 5.0) == 1.0


def test_amounts_all_outside_tolerance_score_zero() -> None:
    amounts = [Decimal("100.00"), Decimal("300.00")]
    assert amount_consistency(amounts, 5.0) == 0.0


def test_partial_consistency_is_a_fraction() -> None:
    amounts = [Decimal("100"), Decimal("100"), Decimal("100"), Decimal("160")]
    # mean 115, band 5.75: no amount is inside
    assert amount_consistency(amounts, 5.0) == 0.0
    # band 23: the three 100s are inside, 160 is not
    assert amount_consistency(amounts, 20.0) == 0.75


def test_mean_amount_uses_absolute_values() -> None:
    assert mean_amount([Decimal("-100"), Decimal("-200")]) == Decimal("150")
    assert mean_amount([]) == Decimal("0")


def test_weekly_cadence() -> None:
    fit = frequency_fit(_dates(datetime(2024, 1, 1), [7, 7, 8, 6]), 3)
    assert fit.frequency == WEEKLY
    assert fit.regularity == 1.0


def test_monthly_cadence_with_uneven_month_lengths() -> None:
    fit = frequency_fit(_dates(datetime(2024, 1, 1), [31, 29, 31, 30]), 3)
    assert fit.frequency == MONTHLY
    assert fit.regularity == 1.0


def test_quarterly_and_yearly_cadence() -> None:
    assert frequency_fit(_dates(datetime(2023, 1, 1), [90, 92, 91]), 3).frequency == QUARTERLY
    assert frequency_fit(_dates(datetime(2021, 1, 1), [365, 366]), 3).frequency == YEARLY


def test_single_observation_has_no_timing_score() -> None:
    fit = frequency_fit([datetime(2024, 1, 1)], 3)
    assert fit.frequency == MONTHLY
    assert fit.regularity == 0.0


def test_irregular_gaps_default_to_monthly_with_zero_regularity() -> None:
    fit = frequency_fit(_dates(datetime(2024, 1, 1), [2, 50, 200]), 3)
    assert fit.frequency == MONTHLY
    assert fit.regularity == 0.0


def test_tie_goes_to_monthly() -> None:
    # one weekly gap and one monthly gap
    fit = frequency_fit(_dates(datetime(2024, 1, 1), [7, 30]), 3)
    assert fit.frequency == MONTHLY
    assert fit.regularity == 0.5


def test_advance_clamps_to_month_end() -> None:
    assert advance_by_frequency(datetime(2024, 1, 31), MONTHLY) == datetime(2024, 2, 29)
    assert advance_by_frequency(datetime(2023, 1, 31), MONTHLY) == datetime(2023, 2, 28)
    assert advance_by_frequency(datetime(2024, 11, 30), QUARTERLY) == datetime(2025, 2, 28)
    assert advance_by_frequency(datetime(2024, 2, 29), YEARLY) == datetime(2025, 2, 28)
    assert advance_by_frequency(datetime(2024, 1, 1), WEEKLY) == datetime(2024, 1, 8)


def test_advance_keeps_time_of_day() -> None:
    assert advance_by_frequency(datetime(2024, 3, 15, 9, 30), MONTHLY) == datetime(2024, 4, 15, 9, 30)


def test_unknown_frequency_is_rejected() -> None:
    with pytest.raises(ValueError):
        validate_frequency("daily")
    with pytest.raises(ValueError):
        advance_by_frequency(datetime(2024, 1, 1), "fortnightly")


def test_confidence_is_non_decreasing_in_occurrences() -> None:
    scores = [
        pattern_confidence(consistency=0.9, regularity=0.8, occurrences=n, span_days=120, min_occurrences=3)
        for n in range(3, 10)
    ]
    assert scores == sorted(scores)
    # saturates at twice the minimum
    assert scores[3] == scores[-1]


def test_confidence_is_clamped() -> None:
    score = pattern_confidence(consistency=1.0, regularity=1.0, occurrences=50, span_days=5000, min_occurrences=3)
    assert score == pytest.approx(1.0)
    assert 0.0 <= pattern_confidence(0.0, 0.0, 0, 0, 3) <= 1.0


def test_risk_accumulates_penalties() -> None:
    now = datetime(2024, 6, 1)
    risk = pattern_risk(
        confidence=1.0,
        average_amount=Decimal("12000"),
        occurrences=3,
        first_seen=now - timedelta(days=30),
        now=now,
    )
    assert risk == pytest.approx(0.6)


def test_medium_amount_and_established_pattern() -> None:
    now = datetime(2024, 6, 1)
    risk = pattern_risk(
        confidence=0.8,
        average_amount=Decimal("6000"),
        occurrences=8,
        first_seen=now - timedelta(days=200),
        now=now,
    )
    assert risk == pytest.approx(0.2 * 0.4 + 0.15)


def test_risk_is_clamped_to_one() -> None:
    now = datetime(2024, 6, 1)
    risk = pattern_risk(0.0, Decimal("50000"), 2, now - timedelta(days=1), now)
    assert risk <= 1.0

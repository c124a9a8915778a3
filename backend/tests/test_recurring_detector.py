"""
Recurring pattern detection checks against an in-memory repository.
"""
import os
import sys
from datetime import datetime, timedelta

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.services.recurring_config import RecurringDetectionConfig  # noqa: E402
from app.services.recurring_detector import (  # noqa: E402
    RecurringPatternDetector,
    group_candidates,
    most_common_category,
)
from tests.fakes import ACCOUNT_ID, USER_ID, FakeRepository, make_payment, make_transaction  # noqa: E402

OTHER_ACCOUNT_ID = "22222222-2222-2222-2222-222222222222"
NOW = datetime(2024, 3, 5, 12, 0)


def _netflix_transactions(amounts=("-599.00", "-599.00", "-599.00"), description="Netflix Subscription"):
    dates = [datetime(2024, 1, 1), datetime(2024, 1, 31), datetime(2024, 3, 2)]
    return [make_transaction(amount, booked_at, description) for amount, booked_at in zip(amounts, dates)]


def test_three_monthly_charges_are_detected() -> None:
    repository = FakeRepository(transactions=_netflix_transactions())
    detections = RecurringPatternDetector(repository, USER_ID).detect(NOW)

    assert len(detections) == 1
    detection = detections[0]
    assert detection.pattern.frequency == "monthly"
    assert detection.pattern.confidence > 0.7
    assert "Netflix" in detection.suggested_name
    assert detection.suggested_name == "Netflix (Monthly)"
    assert detection.is_new
    assert detection.existing_payment_id is None
    assert detection.pattern.next_expected_date == datetime(2024, 4, 2)
    assert len(detection.pattern.transaction_ids) == 3


def test_two_charges_stay_below_the_occurrence_floor() -> None:
    transactions = _netflix_transactions()[:2]
    repository = FakeRepository(transactions=transactions)
    config = RecurringDetectionConfig(confidence_threshold=0.1)

    assert RecurringPatternDetector(repository, USER_ID, config).detect(NOW) == []


def test_inconsistent_amounts_are_not_detected() -> None:
    repository = FakeRepository(transactions=_netflix_transactions(amounts=("-1000", "-2000", "-500")))
    assert RecurringPatternDetector(repository, USER_ID).detect(NOW) == []


def test_perfect_pattern_under_a_raised_floor_is_dropped() -> None:
    repository = FakeRepository(transactions=_netflix_transactions())
    config = RecurringDetectionConfig(min_occurrences=4, confidence_threshold=0.1)
    assert RecurringPatternDetector(repository, USER_ID, config).detect(NOW) == []


def test_groups_are_split_by_account() -> None:
    transactions = _netflix_transactions()
    transactions += [
        make_transaction(t.amount, t.booked_at, t.description, account_id=OTHER_ACCOUNT_ID)
        for t in _netflix_transactions()
    ]
    groups = group_candidates(transactions, 3)
    assert set(groups) == {(ACCOUNT_ID, "netflix"), (OTHER_ACCOUNT_ID, "netflix")}


def test_transactions_outside_lookback_are_ignored() -> None:
    repository = FakeRepository(transactions=_netflix_transactions())
    config = RecurringDetectionConfig(lookback_months=1)
    assert RecurringPatternDetector(repository, USER_ID, config).detect(NOW) == []


def test_declared_payment_marks_pattern_as_tracked() -> None:
    payment = make_payment(name="Netflix", amount="649.00")
    repository = FakeRepository(transactions=_netflix_transactions(), payments=[payment])

    detections = RecurringPatternDetector(repository, USER_ID).detect(NOW)

    assert len(detections) == 1
    assert not detections[0].is_new
    assert detections[0].existing_payment_id == str(payment.id)


def test_declared_payment_on_another_account_does_not_match() -> None:
    payment = make_payment(name="Netflix", amount="599.00", account_id=OTHER_ACCOUNT_ID)
    repository = FakeRepository(transactions=_netflix_transactions(), payments=[payment])

    detections = RecurringPatternDetector(repository, USER_ID).detect(NOW)

    assert detections[0].is_new


def test_declared_payment_with_distant_amount_does_not_match() -> None:
    payment = make_payment(name="Netflix", amount="799.00")
    repository = FakeRepository(transactions=_netflix_transactions(), payments=[payment])

    assert RecurringPatternDetector(repository, USER_ID).detect(NOW)[0].is_new


def test_results_are_sorted_by_confidence() -> None:
    weekly_start = datetime(2023, 9, 1)
    gym = [
        make_transaction("-250.00", weekly_start + timedelta(days=7 * i), "CULT FIT GYM")
        for i in range(20)
    ]
    repository = FakeRepository(transactions=_netflix_transactions() + gym)
    config = RecurringDetectionConfig(confidence_threshold=0.5)

    detections = RecurringPatternDetector(repository, USER_ID, config).detect(NOW)

    assert [d.pattern.merchant_signature for d in detections] == ["cult fit gym", "netflix"]
    confidences = [d.pattern.confidence for d in detections]
    assert confidences == sorted(confidences, reverse=True)
    assert detections[0].pattern.frequency == "weekly"


def test_expense_transactions_are_loaded_once() -> None:
    repository = FakeRepository(transactions=_netflix_transactions())
    RecurringPatternDetector(repository, USER_ID).detect(NOW)
    assert repository.expense_queries == 1


def test_no_history_gives_no_detections() -> None:
    assert RecurringPatternDetector(FakeRepository(), USER_ID).detect(NOW) == []


def test_most_common_category_breaks_ties_by_first_seen() -> None:
    transactions = [
        make_transaction("-10", datetime(2024, 1, 1), category_id="cat-b"),
        make_transaction("-10", datetime(2024, 2, 1), category_id="cat-a"),
        make_transaction("-10", datetime(2024, 3, 1), category_id="cat-a"),
        make_transaction("-10", datetime(2024, 4, 1), category_id="cat-b"),
    ]
    assert most_common_category(transactions) == "cat-b"
    assert most_common_category([make_transaction("-10", datetime(2024, 1, 1))]) is None

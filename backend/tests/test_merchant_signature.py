"""
Merchant signature normalization checks.
"""
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.services.merchant_signature import clean_description, merchant_signature  # noqa: E402


def test_strips_card_fragments_dates_amounts_and_stop_words() -> None:
    signature = merchant_signature("NETFLIX.COM 4829*1123 12/05 Rs.649.00 AUTOPAY")
    assert signature == "netflix com"


def test_stop_words_are_dropped() -> None:
    assert merchant_signature("Netflix Subscription") == "netflix"
    assert merchant_signature("SPOTIFY xxxx1234 recurring payment") == "spotify"


def test_same_payee_with_different_dates_and_amounts_shares_signature() -> None:
    first = merchant_signature("AIRTEL POSTPAID 05/01/2024 INR 799.00")
    second = merchant_signature("AIRTEL POSTPAID 05/02/2024 INR 812.50")
    assert first == second == "airtel postpaid"


def test_keeps_at_most_three_significant_words() -> None:
    assert merchant_signature("Tata Play DTH Recharge Monthly Pack") == "tata play dth"


def test_short_words_fall_back_to_cleaned_prefix() -> None:
    assert merchant_signature("ab cd") == "ab cd"


def test_empty_description_gives_empty_signature() -> None:
    assert merchant_signature("") == ""
    assert merchant_signature(None) == ""
    assert clean_description("   ") == ""


def test_signature_is_case_insensitive() -> None:
    assert merchant_signature("YouTube Premium") == merchant_signature("YOUTUBE PREMIUM")

"""
Merchant signature normalization.

Turns a free-text bank description ("NETFLIX.COM 4829*1123 12/05 Rs.649.00 AUTOPAY")
into a short comparable key ("netflix com") so that charges from the same payee
land in the same candidate group.
"""
import re

SIGNATURE_MAX_WORDS = 3
SIGNATURE_FALLBACK_LENGTH = 20
MIN_SIGNIFICANT_WORD_LENGTH = 3

# Generic payment-processing words that say nothing about the payee
STOP_WORDS = {
    "payment",
    "payments",
    "autopay",
    "auto",
    "recurring",
    "subscription",
    "subscriptions",
    "bill",
    "billpay",
}

CURRENCY_AMOUNT_PATTERN = re.compile(
    r"(?:₹|\$|€|£|\brs\.?|\binr\b|\busd\b|\beur\b|\bgbp\b)\s*\d[\d,]*(?:\.\d+)?"
)
DATE_PATTERN = re.compile(r"\b\d{1,4}[/\-.]\d{1,2}(?:[/\-.]\d{2,4})?\b")
DECIMAL_AMOUNT_PATTERN = re.compile(r"\b\d[\d,]*\.\d{2}\b")
# Masked card fragments: "xxxx1234", "****1234", "4829*1123", bare 4+ digit runs
CARD_FRAGMENT_PATTERN = re.compile(r"(?<![a-z])[x*#]*\d{4,}(?:[x*#]+\d+)?")
PUNCTUATION_PATTERN = re.compile(r"[^\w\s]|_")
WHITESPACE_PATTERN = re.compile(r"\s+")


def clean_description(description: str) -> str:
    """Lower-case and strip amounts, dates, card fragments, punctuation and stop-words."""
    if not description:
        return ""

    text = description.lower()
    text = CURRENCY_AMOUNT_PATTERN.sub(" ", text)
    text = DATE_PATTERN.sub(" ", text)
    text = DECIMAL_AMOUNT_PATTERN.sub(" ", text)
    text = CARD_FRAGMENT_PATTERN.sub(" ", text)
    text = PUNCTUATION_PATTERN.sub(" ", text)

    words = [word for word in WHITESPACE_PATTERN.split(text) if word and word not in STOP_WORDS]
    return " ".join(words)


def merchant_signature(description: str) -> str:
    """
    Build the merchant signature for a transaction description.

    Returns the first one to three significant words (longer than two characters),
    or the first 20 characters of the cleaned text when no word qualifies.
    """
    cleaned = clean_description(description)
    if not cleaned:
        return ""

    significant = [word for word in cleaned.split(" ") if len(word) >= MIN_SIGNIFICANT_WORD_LENGTH]
    if significant:
        return " ".join(significant[:SIGNATURE_MAX_WORDS])

    return cleaned[:SIGNATURE_FALLBACK_LENGTH].strip()

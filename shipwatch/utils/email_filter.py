"""
Keyword pre-filter for incoming messages.

Decides whether a message is plausibly shipping-related before any
extraction effort is spent on it.
"""

import re
from typing import NamedTuple

SHIPPING_KEYWORDS = [
    # Order related
    "order",
    "ordered",
    "confirmed",
    "placed",
    "purchase",
    "bought",
    "order confirmation",
    "order placed",
    "order id",
    "order number",
    # Shipping related
    "ship",
    "shipped",
    "shipping",
    "shipment",
    "dispatch",
    "dispatched",
    "courier",
    "carrier",
    "awb",
    "tracking",
    "track",
    "consignment",
    "parcel",
    "package",
    # Transit related
    "transit",
    "in transit",
    "on the way",
    "on its way",
    "out for delivery",
    "ofd",
    "arriving",
    "expected delivery",
    "delivery date",
    "en route",
    # Delivery related
    "deliver",
    "delivered",
    "delivery",
    "handed over",
    "received by",
    "left at",
    "delivery attempt",
    "failed delivery",
    "undelivered",
    "rescheduled",
    "reattempt",
    # Carrier names
    "delhivery",
    "bluedart",
    "blue dart",
    "dtdc",
    "ekart",
    "xpressbees",
    "xpress bees",
    "shiprocket",
    "shadowfax",
    "ecom express",
    "amazon logistics",
    "fedex",
    "dhl",
    "gati",
    "india post",
    "speed post",
    "professional couriers",
    # E-commerce platforms
    "flipkart",
    "amazon",
    "myntra",
    "meesho",
    "ajio",
    "nykaa",
    "snapdeal",
    "tata cliq",
    "jiomart",
    "bigbasket",
    "blinkit",
    "zepto",
    "swiggy instamart",
    "firstcry",
    "bewakoof",
    # Shopify / D2C
    "shopify",
    "your order is on the way",
    "view your order",
    "track your order",
    "track package",
    "track shipment",
]

# Promotional, account and job-posting language
EXCLUDE_KEYWORDS = [
    "unsubscribe from shipping",
    "shipping policy",
    "free shipping offer",
    "shipping rates",
    "delivery charges",
    "delivery partner wanted",
    "job",
    "career",
    "hiring",
    "recruitment",
    "newsletter",
    "promotional",
    "sale alert",
    "discount code",
    "password reset",
    "verify your email",
    "login alert",
    "invoice only",
    "payment receipt",
    "subscription",
]

# Phrases strong enough to keep a message in play on their own: they
# override an exclude keyword and relax the match threshold to one
STRONG_INDICATORS = [
    "tracking number",
    "awb",
    "has been shipped",
    "has been dispatched",
    "has been delivered",
    "is on the way",
    "out for delivery",
    "in transit",
    "track your order",
    "dispatch",
    "shipment",
]


def _keyword_regex(keyword: str) -> re.Pattern[str]:
    # Anchored at the start of a word only, so "ship" also matches "shipped"
    return re.compile(r"\b" + re.escape(keyword))


_SHIPPING_RES = [(kw, _keyword_regex(kw)) for kw in SHIPPING_KEYWORDS]
_EXCLUDE_RES = [(kw, _keyword_regex(kw)) for kw in EXCLUDE_KEYWORDS]
_STRONG_RES = [_keyword_regex(kw) for kw in STRONG_INDICATORS]


class PrefilterResult(NamedTuple):
    """Result of the shipping pre-filter."""

    is_likely: bool
    matched_keywords: list[str]
    reason: str


def match_keywords(text: str) -> list[str]:
    """
    Shipping keywords found in lower-cased text.

    A keyword only counts where its match is not part of a longer keyword's
    match, so "delivery" yields "delivery" and not also "deliver".
    """
    spans = {
        kw: [m.span() for m in regex.finditer(text)] for kw, regex in _SHIPPING_RES
    }
    all_spans = [(kw, span) for kw, kw_spans in spans.items() for span in kw_spans]

    def _covered(keyword: str, span: tuple[int, int]) -> bool:
        start, end = span
        return any(
            other != keyword
            and other_start <= start
            and end <= other_end
            and other_end - other_start > end - start
            for other, (other_start, other_end) in all_spans
        )

    return [
        kw
        for kw, kw_spans in spans.items()
        if any(not _covered(kw, span) for span in kw_spans)
    ]


def classify(
    subject: str | None,
    sender: str | None,
    body_snippet: str | None,
    min_matches: int = 2,
) -> PrefilterResult:
    """
    Decide whether a message is plausibly about a shipment.

    Args:
        subject: Subject line
        sender: Sender address or header
        body_snippet: Leading part of the body text
        min_matches: Keyword matches needed without a strong indicator

    Returns:
        PrefilterResult: (is_likely, matched_keywords, reason)
    """
    text = f"{subject or ''} {sender or ''} {body_snippet or ''}".lower()

    matched = match_keywords(text)
    has_strong = any(r.search(text) for r in _STRONG_RES)

    excluded_by = next((kw for kw, regex in _EXCLUDE_RES if regex.search(text)), None)
    if excluded_by is not None and not has_strong:
        return PrefilterResult(False, matched, f"Matches exclude keyword: {excluded_by}")

    if len(matched) >= min_matches:
        return PrefilterResult(True, matched, f"Matched {len(matched)} keywords")
    if matched and has_strong:
        return PrefilterResult(True, matched, "Matched strong shipping indicator")

    return PrefilterResult(False, matched, "Too few shipping keywords")

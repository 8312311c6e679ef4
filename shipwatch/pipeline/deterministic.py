"""
Deterministic shipment extraction.

Pulls tracking number, carrier, merchant, order number, product name and a
coarse status straight out of message text with regexes and the catalog
tables. Pure: no I/O and never raises on odd input; an all-empty result means
the message did not carry enough for the pattern engine.
"""

import re
from typing import Optional

from shipwatch.models.message import ExtractionResult, RawMessage
from shipwatch.models.shipment import ExtractionMethod, ShipmentStatus
from shipwatch.utils.catalog import (
    TRACKING_PATTERNS,
    TrackingPattern,
    carrier_for_sender,
    is_store_platform_sender,
    match_carrier_in_text,
    match_merchant_in_text,
    merchant_for_sender,
    merchant_from_domain,
    normalize_carrier_name,
    sender_display_name,
    sender_domain,
)
from shipwatch.utils.html import html_to_text

# Ordered: structured marketplace ids first, labeled ids last
ORDER_NUMBER_PATTERNS = [
    re.compile(r"\b(\d{3}-\d{7}-\d{7})\b"),  # Amazon
    re.compile(r"\b(OD\d{15,21})\b"),  # Flipkart
    re.compile(
        r"\border\s*(?:id|no\.?|number|#)?\s*[:#]?\s*"
        r"((?=[A-Z0-9\-]*\d)[A-Z0-9][A-Z0-9\-]{5,19})\b",
        re.I,
    ),
]

# "shipped via X", "delivered by X"; X must be capitalized words
_CARRIER_PHRASE_RE = re.compile(
    r"(?i:(?:shipped|sent|dispatched)\s+(?:via|with|through|by)|delivered\s+by|"
    r"handed\s+over\s+to)\s+"
    r"([A-Z][A-Za-z&.\-]*(?:\s+[A-Z][A-Za-z&.\-]*){0,2})"
)
_NOT_CARRIER_WORDS = {
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
    "today",
    "tomorrow",
    "tonight",
    "end",
    "the",
    "our",
    "your",
    "us",
    "you",
    "customer",
    "jan",
    "feb",
    "mar",
    "apr",
    "may",
    "jun",
    "jul",
    "aug",
    "sep",
    "oct",
    "nov",
    "dec",
}

_PRODUCT_SUBJECT_PATTERNS = [
    re.compile(
        r"\b(?:order|item|package)\s+(?:of|for|containing)\s+[\"'“]?(?P<item>.+?)[\"'”]?"
        r"\s+(?:has|have|is|was|were)\s+(?:been\s+)?"
        r"(?:shipped|delivered|dispatched|out for delivery)",
        re.I,
    ),
    re.compile(
        r"\byour\s+(?P<item>.+?)\s+(?:has|have|is|was|were)\s+(?:been\s+)?"
        r"(?:shipped|delivered|dispatched|out for delivery)",
        re.I,
    ),
]

_EXPECTED_DELIVERY_RE = re.compile(
    r"(?:arriving|arrives|expected delivery(?: date)?|estimated delivery(?: date)?|"
    r"delivery by|expected by|will be delivered(?: by| on)?)\s*[:\-]?\s*(?:on|by)?\s*"
    r"(?P<date>today|tomorrow|"
    r"(?:[A-Z][a-z]+,?\s+)?\d{1,2}(?:st|nd|rd|th)?\s+[A-Z][a-z]{2,8}(?:,?\s+\d{4})?|"
    r"(?:[A-Z][a-z]+,?\s+)?[A-Z][a-z]{2,8}\s+\d{1,2}(?:st|nd|rd|th)?(?:,?\s+\d{4})?|"
    r"\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4})",
    re.I,
)

# Sentences that describe the mail itself rather than the package
_SENTENCE_BREAK_RE = re.compile(r"(?<=[.!?])\s+|\n")

_FOOTER_MARKERS = (
    "unsubscribe",
    "privacy",
    "terms",
    "this message",
    "this email",
    "email delivered",
    "footer",
    "copyright",
    "©",
)

_EXCEPTION_PATTERNS = [
    re.compile(r"\bfailed delivery\b"),
    re.compile(r"\bdelivery (?:attempt )?(?:has )?failed\b"),
    re.compile(r"\bdelivery attempt(?:ed)?\b"),
    re.compile(r"\bundelivered\b"),
    re.compile(r"\b(?:could not|couldn't|cannot|can't|was not|wasn't|not) (?:be )?delivered\b"),
    re.compile(r"\bnot (?:yet|been) delivered\b"),
    re.compile(r"\breturned to (?:sender|origin|seller)\b"),
    re.compile(r"\breturn to origin\b"),
    re.compile(r"\brto\b"),
    re.compile(r"\bdelivery exception\b"),
    re.compile(r"\bshipment (?:is )?on hold\b"),
]

# Phrases that mention a later state without reporting it
_NEUTRALIZE_PATTERNS = [
    re.compile(r"\b(?:will|to|should|would|shall) be (?:delivered|shipped|dispatched)\b"),
    re.compile(r"\bbeing (?:delivered|shipped|dispatched)\b"),
    re.compile(r"\bonce (?:it is |it's )?(?:delivered|shipped|dispatched)\b"),
    re.compile(r"\bafter (?:it is |it's )?(?:delivered|shipped)\b"),
    re.compile(r"\bemail delivered\b"),
]

# Precedence order: the most terminal state mentioned anywhere wins
STATUS_PATTERNS: list[tuple[ShipmentStatus, list[re.Pattern[str]]]] = [
    (
        ShipmentStatus.DELIVERED,
        [
            re.compile(r"\bdelivered\b"),
            re.compile(r"\bhanded over to (?:you|the recipient)\b"),
            re.compile(r"\bdelivery (?:is )?complete(?:d)?\b"),
            re.compile(r"\bpackage received\b"),
        ],
    ),
    (
        ShipmentStatus.OUT_FOR_DELIVERY,
        [
            re.compile(r"\bout for\s*delivery\b"),
            re.compile(r"\bofd\b"),
            re.compile(r"\bin for delivery\b"),
            re.compile(r"\barriving today\b"),
        ],
    ),
    (
        ShipmentStatus.IN_TRANSIT,
        [
            re.compile(r"\bin[\s\-]transit\b"),
            re.compile(r"\ben[\s\-]?route\b"),
            re.compile(r"\bon (?:its|the) way\b"),
            re.compile(r"\b(?:reached|arrived at) (?:the |a |our )?[\w ]{0,30}?(?:hub|facility)\b"),
        ],
    ),
    (
        ShipmentStatus.SHIPPED,
        [
            re.compile(r"\bshipped\b"),
            re.compile(r"\bdispatched\b"),
            re.compile(r"\bpicked up\b"),
        ],
    ),
    (
        ShipmentStatus.ORDERED,
        [
            re.compile(r"\border (?:is )?(?:confirmed|placed|received)\b"),
            re.compile(r"\bthank(?:s| you) for (?:your )?(?:order|shopping)\b"),
            re.compile(r"\bconfirmed\b"),
        ],
    ),
]


def _message_text(message: RawMessage) -> str:
    if message.body_text:
        return message.body_text
    if message.body_html:
        return html_to_text(message.body_html)
    return ""


def _compact(value: str) -> str:
    return re.sub(r"[\s\-]", "", value).upper()


def find_order_number(text: str) -> Optional[str]:
    """First order number found in `text`, by pattern order."""
    for pattern in ORDER_NUMBER_PATTERNS:
        match = pattern.search(text)
        if match:
            return match.group(1)
    return None


def _pattern_for_candidate(candidate: str) -> Optional[TrackingPattern]:
    """Carrier-specific pattern that fully matches a labeled candidate."""
    for pattern in TRACKING_PATTERNS:
        if pattern.labeled or pattern.carrier is None:
            continue
        if pattern.regex.fullmatch(candidate):
            return pattern
    return None


def find_tracking_number(
    text: str, order_number: Optional[str] = None
) -> tuple[Optional[str], Optional[TrackingPattern]]:
    """
    Tiered tracking number search.

    Labeled patterns are tried first, then carrier shapes from most to least
    specific, then the generic long number. A candidate that is part of the
    order number is skipped.

    Returns:
        (tracking_number, pattern that carries the carrier hint)
    """
    compact_order = _compact(order_number) if order_number else None

    for pattern in TRACKING_PATTERNS:
        for match in pattern.regex.finditer(text):
            candidate = match.group(1).upper()
            if compact_order and candidate in compact_order:
                continue
            if pattern.labeled:
                return candidate, _pattern_for_candidate(candidate)
            return candidate, pattern

    return None, None


def find_carrier_phrase(text: str) -> Optional[str]:
    """Carrier named in a "shipped via X" / "delivered by X" phrase."""
    for match in _CARRIER_PHRASE_RE.finditer(text):
        name = match.group(1).strip(" .-")
        first_word = name.split()[0].lower().strip(".")
        if first_word in _NOT_CARRIER_WORDS:
            continue
        known = match_carrier_in_text(name)
        return known or normalize_carrier_name(name)
    return None


def find_carrier(
    message: RawMessage, text: str, tracking_pattern: Optional[TrackingPattern]
) -> Optional[str]:
    carrier = carrier_for_sender(message.sender)
    if carrier:
        return carrier

    carrier = match_carrier_in_text(f"{message.subject}\n{text}")
    if carrier:
        return carrier

    carrier = find_carrier_phrase(text)
    if carrier:
        return carrier

    if tracking_pattern is not None:
        return tracking_pattern.carrier
    return None


def find_merchant(message: RawMessage) -> Optional[str]:
    merchant = merchant_for_sender(message.sender)
    if merchant:
        return merchant

    merchant = match_merchant_in_text(message.subject)
    if merchant:
        return merchant

    if is_store_platform_sender(message.sender):
        return sender_display_name(message.sender)

    # A carrier's own domain names the carrier, not the seller
    if carrier_for_sender(message.sender):
        return None

    return merchant_from_domain(sender_domain(message.sender))


def find_product_name(subject: str) -> Optional[str]:
    for pattern in _PRODUCT_SUBJECT_PATTERNS:
        match = pattern.search(subject)
        if match:
            item = match.group("item").strip(" \"'“”")
            return item or None
    return None


def find_expected_delivery(text: str) -> Optional[str]:
    match = _EXPECTED_DELIVERY_RE.search(text)
    if match:
        return match.group("date").strip()
    return None


def _status_sentences(subject: str, text: str) -> str:
    sentences = [subject, *_SENTENCE_BREAK_RE.split(text)]
    kept = [
        sentence
        for sentence in (s.strip().lower() for s in sentences)
        if sentence and not any(marker in sentence for marker in _FOOTER_MARKERS)
    ]
    return "\n".join(kept)


def find_status(subject: str, text: str) -> Optional[ShipmentStatus]:
    """
    Keyword status scan in precedence order.

    Footer sentences are ignored. Exception phrases are recognised and removed
    before the scan so "could not be delivered" never reads as delivered;
    future-tense mentions ("will be delivered") are neutralized.
    """
    scan = _status_sentences(subject, text)

    has_exception = False
    for pattern in _EXCEPTION_PATTERNS:
        scan, count = pattern.subn(" ", scan)
        has_exception = has_exception or count > 0

    for pattern in _NEUTRALIZE_PATTERNS:
        scan = pattern.sub(" ", scan)

    for status, patterns in STATUS_PATTERNS:
        if any(p.search(scan) for p in patterns):
            return status

    if has_exception:
        return ShipmentStatus.EXCEPTION
    return None


def extract_deterministic(message: RawMessage) -> ExtractionResult:
    """
    Extract shipment facts from a message with patterns only.

    Args:
        message: Decoded message

    Returns:
        ExtractionResult with extraction_method=pattern; any field may be None
    """
    text = _message_text(message)
    searchable = f"{message.subject}\n{text}"

    order_number = find_order_number(searchable)
    tracking_number, tracking_pattern = find_tracking_number(searchable, order_number)

    return ExtractionResult(
        product_name=find_product_name(message.subject),
        merchant=find_merchant(message),
        carrier=find_carrier(message, text, tracking_pattern),
        tracking_number=tracking_number,
        order_number=order_number,
        status=find_status(message.subject, text),
        expected_delivery=find_expected_delivery(searchable),
        summary="",
        extraction_method=ExtractionMethod.PATTERN,
        message_id=message.message_id,
        message_timestamp=message.timestamp,
        raw_subject=message.subject or None,
        raw_sender=message.sender or None,
    )


def needs_generative(result: ExtractionResult) -> bool:
    """True unless the pattern result has both an identifier and a carrier."""
    return not (result.has_identifier and result.carrier)

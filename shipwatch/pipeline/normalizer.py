"""
Normalization of extraction results.

Canonicalizes carrier and merchant names, maps free-text status onto
ShipmentStatus, discards implausible product names, cleans identifiers and
backfills a templated summary.
"""

import re
from typing import Optional

from shipwatch.models.message import ExtractionResult
from shipwatch.models.shipment import ShipmentStatus
from shipwatch.utils.catalog import normalize_carrier_name, normalize_merchant_name

# Free-text status vocabulary; keys are lower-cased with "_"/"-" as spaces
STATUS_ALIASES: dict[str, ShipmentStatus] = {
    "ordered": ShipmentStatus.ORDERED,
    "order placed": ShipmentStatus.ORDERED,
    "placed": ShipmentStatus.ORDERED,
    "confirmed": ShipmentStatus.ORDERED,
    "order confirmed": ShipmentStatus.ORDERED,
    "processing": ShipmentStatus.ORDERED,
    "shipped": ShipmentStatus.SHIPPED,
    "dispatched": ShipmentStatus.SHIPPED,
    "picked up": ShipmentStatus.SHIPPED,
    "label created": ShipmentStatus.SHIPPED,
    "in transit": ShipmentStatus.IN_TRANSIT,
    "transit": ShipmentStatus.IN_TRANSIT,
    "on the way": ShipmentStatus.IN_TRANSIT,
    "en route": ShipmentStatus.IN_TRANSIT,
    "out for delivery": ShipmentStatus.OUT_FOR_DELIVERY,
    "ofd": ShipmentStatus.OUT_FOR_DELIVERY,
    "delivered": ShipmentStatus.DELIVERED,
    "exception": ShipmentStatus.EXCEPTION,
    "failed": ShipmentStatus.EXCEPTION,
    "failed delivery": ShipmentStatus.EXCEPTION,
    "delivery failed": ShipmentStatus.EXCEPTION,
    "undelivered": ShipmentStatus.EXCEPTION,
    "returned": ShipmentStatus.EXCEPTION,
    "rto": ShipmentStatus.EXCEPTION,
}

DEFAULT_STATUS = ShipmentStatus.IN_TRANSIT

# Product names that are really placeholders
_PLACEHOLDER_PRODUCTS = {
    "your order",
    "order",
    "your package",
    "package",
    "your item",
    "item",
    "items",
    "your shipment",
    "shipment",
    "product",
    "parcel",
    "your parcel",
    "n/a",
    "na",
    "none",
    "null",
    "unknown",
}

_NUMERIC_RE = re.compile(r"^[\d\s\-#/]+$")
_ORDER_PREFIX_RE = re.compile(r"^(?:OD|ORD)[\s\-#:]*\d", re.I)
# Upper-case alphanumeric token with digits, e.g. "FMPC1234567890"
_CODE_RE = re.compile(r"^(?=.*\d)[A-Z0-9\-]{6,}$")

_INNER_WS_RE = re.compile(r"\s+")


def normalize_status(value: Optional[ShipmentStatus | str]) -> ShipmentStatus:
    """
    Map a status value onto ShipmentStatus.

    Unrecognised or missing values become in_transit, never delivered.
    """
    if isinstance(value, ShipmentStatus):
        return value
    if not value:
        return DEFAULT_STATUS

    key = re.sub(r"[_\-]+", " ", value.strip().lower())
    key = _INNER_WS_RE.sub(" ", key)
    return STATUS_ALIASES.get(key, DEFAULT_STATUS)


def is_plausible_product_name(name: Optional[str]) -> bool:
    """Reject identifiers and placeholders masquerading as product names."""
    if not name:
        return False
    cleaned = name.strip()
    if len(cleaned) < 2:
        return False
    if cleaned.lower() in _PLACEHOLDER_PRODUCTS:
        return False
    if _NUMERIC_RE.match(cleaned):
        return False
    if _ORDER_PREFIX_RE.match(cleaned):
        return False
    if _CODE_RE.match(cleaned):
        return False
    return True


def normalize_identifier(value: Optional[str]) -> Optional[str]:
    """Trim, upper-case and remove inner whitespace from an identifier."""
    if value is None:
        return None
    cleaned = _INNER_WS_RE.sub("", value).upper()
    if cleaned in {"", "NULL", "NONE", "N/A", "NA"}:
        return None
    return cleaned


def template_summary(
    status: ShipmentStatus,
    merchant: Optional[str],
    carrier: Optional[str],
) -> str:
    """One-sentence summary from (status, merchant, carrier)."""
    subject = f"Your {merchant} package" if merchant else "Your package"
    via = f" with {carrier}" if carrier else ""

    if status is ShipmentStatus.ORDERED:
        return f"{subject} has been ordered and is waiting to ship."
    if status is ShipmentStatus.SHIPPED:
        return f"{subject} has shipped{via}."
    if status is ShipmentStatus.IN_TRANSIT:
        return f"{subject} is in transit{via}."
    if status is ShipmentStatus.OUT_FOR_DELIVERY:
        return f"{subject} is out for delivery{via}."
    if status is ShipmentStatus.DELIVERED:
        return f"{subject} has been delivered{via}."
    return f"{subject} hit a delivery issue{via}; check the latest update."


def normalize(result: ExtractionResult, summary_min_length: int = 20) -> ExtractionResult:
    """
    Normalize a raw extraction result.

    Args:
        result: Pattern or generative extraction
        summary_min_length: Summaries shorter than this are replaced

    Returns:
        New ExtractionResult whose status is a ShipmentStatus
    """
    status = normalize_status(result.status)
    carrier = normalize_carrier_name(result.carrier)
    merchant = normalize_merchant_name(result.merchant)

    product_name = result.product_name.strip() if result.product_name else None
    if not is_plausible_product_name(product_name):
        product_name = None

    expected_delivery = (
        result.expected_delivery.strip() if result.expected_delivery else None
    ) or None

    summary = (result.summary or "").strip()
    if len(summary) < summary_min_length:
        summary = template_summary(status, merchant, carrier)

    return result.model_copy(
        update={
            "status": status,
            "carrier": carrier,
            "merchant": merchant,
            "product_name": product_name,
            "tracking_number": normalize_identifier(result.tracking_number),
            "order_number": normalize_identifier(result.order_number),
            "expected_delivery": expected_delivery,
            "summary": summary,
        }
    )

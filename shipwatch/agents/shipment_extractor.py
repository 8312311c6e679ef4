"""
Generative Shipment Extractor

Fallback extractor for messages the pattern engine cannot fully read. Sends a
bounded, cleaned rendition of the message (or a screenshot) to the model with
a strict JSON contract, and validates the answer before it is used.
"""

import json
import logging
import re
from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from shipwatch.agents.model_client import GenerativeExtractionError, ModelClient
from shipwatch.models.message import ExtractionResult, RawMessage
from shipwatch.models.shipment import ExtractionMethod, ShipmentStatus
from shipwatch.utils.catalog import CARRIER_ALIASES, MERCHANT_ALIASES
from shipwatch.utils.hash import compute_sha256, image_message_id
from shipwatch.utils.html import clean_email_content

logger = logging.getLogger(__name__)

KNOWN_CARRIERS = sorted(set(CARRIER_ALIASES.values()))
KNOWN_MERCHANTS = sorted(set(MERCHANT_ALIASES.values()))

STATUS_CHOICES = "|".join(status.name for status in ShipmentStatus)

_NULL_STRINGS = {"", "null", "none", "n/a", "na", "unknown"}

_CODE_FENCE_RE = re.compile(r"^```(?:json|JSON)?\s*|\s*```$")


class GenerativeExtraction(BaseModel):
    """Response contract for the extraction prompt. `status` is required."""

    product_name: Optional[str] = Field(default=None, description="Item name")
    merchant: Optional[str] = Field(default=None, description="Seller/store name")
    carrier: Optional[str] = Field(default=None, description="Delivery company")
    tracking_number: Optional[str] = Field(
        default=None, description="Shipment tracking ID"
    )
    order_number: Optional[str] = Field(default=None, description="Order ID")
    status: str = Field(description="One of the fixed status names")
    expected_delivery: Optional[str] = Field(
        default=None, description="Expected delivery date, as written"
    )
    summary: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("summary", "ai_summary"),
        description="Short human-readable summary",
    )

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    @field_validator("*", mode="before")
    @classmethod
    def _null_strings_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            if value.lower() in _NULL_STRINGS:
                return None
        return value


EXTRACTION_PROMPT = f"""You are a shipping email parser for Indian e-commerce. Extract information from this message accurately.

CRITICAL RULES:
1. MERCHANT is the SELLER/STORE (who sold the item), NOT the delivery company
2. CARRIER is the DELIVERY COMPANY (Delhivery, BlueDart, DTDC, Ekart, Xpressbees, Shiprocket, Shadowfax, etc.)
3. product_name must be the ACTUAL ITEM NAME, never an order number, tracking number or generic text like "your order"
4. If there are multiple items, give the first one and add "(+N more)"
5. status must be one of: {STATUS_CHOICES}
6. For Shopify stores, the merchant is the store name, not "Shopify"
7. tracking_number is the SHIPMENT tracking ID (often 10+ characters), NOT the order number
8. Use null for anything the message does not state

KNOWN CARRIERS: {", ".join(KNOWN_CARRIERS)}
KNOWN MERCHANTS: {", ".join(KNOWN_MERCHANTS)}

Respond with ONLY one valid JSON object (no markdown, no backticks):
{{
  "product_name": "exact item name or null",
  "merchant": "store/seller name or null",
  "carrier": "delivery company name or null",
  "tracking_number": "shipment tracking ID or null",
  "order_number": "order ID or null",
  "status": "{STATUS_CHOICES}",
  "expected_delivery": "date string or null",
  "summary": "1-2 sentence summary of where the shipment is, written for the customer"
}}
"""

IMAGE_PROMPT = (
    EXTRACTION_PROMPT
    + """
The attached image is a screenshot of an order or tracking page. Read the
shipment details from it.
"""
)

SUMMARY_PROMPT = """Based on these shipping updates (newest first), write a 2-3 sentence summary of where this package is and what the customer should know:

{updates}

Current status: {status}

Write naturally, like a helpful assistant. Be specific about dates and locations if mentioned. If there was a delivery issue, explain what happened and what to do next. Reply with the summary text only."""


def strip_code_fences(text: str) -> str:
    """Remove a wrapping ``` / ```json fence from a model response."""
    return _CODE_FENCE_RE.sub("", text.strip()).strip()


def parse_generative_response(text: str) -> GenerativeExtraction:
    """
    Parse and validate a model response.

    Raises:
        GenerativeExtractionError: Not JSON, not an object, or schema violation
    """
    payload = strip_code_fences(text)
    try:
        data = json.loads(payload)
    except json.JSONDecodeError as e:
        raise GenerativeExtractionError(f"Response is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise GenerativeExtractionError(
            f"Expected a JSON object, got {type(data).__name__}"
        )

    try:
        return GenerativeExtraction.model_validate(data)
    except ValidationError as e:
        raise GenerativeExtractionError(f"Response failed validation: {e}") from e


def build_message_prompt(message: RawMessage, content_char_budget: int = 4000) -> str:
    body = clean_email_content(
        message.body_html, message.body_text, max_chars=content_char_budget
    )
    return (
        f"{EXTRACTION_PROMPT}\nMESSAGE:\n"
        f"Subject: {message.subject}\n"
        f"From: {message.sender}\n"
        f"Date: {message.timestamp.isoformat()}\n\n"
        f"Body:\n{body}\n"
    )


def _to_result(
    extraction: GenerativeExtraction,
    message_id: str,
    message_timestamp: datetime,
    raw_subject: Optional[str],
    raw_sender: Optional[str],
) -> ExtractionResult:
    return ExtractionResult(
        product_name=extraction.product_name,
        merchant=extraction.merchant,
        carrier=extraction.carrier,
        tracking_number=extraction.tracking_number,
        order_number=extraction.order_number,
        status=extraction.status,
        expected_delivery=extraction.expected_delivery,
        summary=extraction.summary or "",
        extraction_method=ExtractionMethod.GENERATIVE,
        message_id=message_id,
        message_timestamp=message_timestamp,
        raw_subject=raw_subject,
        raw_sender=raw_sender,
    )


async def extract_generative(
    message: RawMessage,
    model_client: ModelClient,
    image_bytes: Optional[bytes] = None,
    content_char_budget: int = 4000,
) -> ExtractionResult:
    """
    Extract shipment facts from a message with the generative model.

    Args:
        message: Decoded message
        model_client: Completion collaborator
        image_bytes: Optional attachment sent alongside the text
        content_char_budget: Body characters sent to the model

    Returns:
        ExtractionResult with extraction_method=generative (not yet normalized)

    Raises:
        RateLimitedError: The provider rate-limited the call
        GenerativeExtractionError: Any other failure, including bad output
    """
    prompt = build_message_prompt(message, content_char_budget)
    response = await model_client.complete(prompt, image_bytes=image_bytes)
    extraction = parse_generative_response(response)

    return _to_result(
        extraction,
        message_id=message.message_id,
        message_timestamp=message.timestamp,
        raw_subject=message.subject or None,
        raw_sender=message.sender or None,
    )


async def extract_from_image(
    image_bytes: bytes,
    model_client: ModelClient,
    received_at: datetime,
    caption: Optional[str] = None,
) -> ExtractionResult:
    """
    Extract shipment facts from a tracking-page screenshot.

    The result's message id is derived from the image hash so the same
    screenshot always maps to the same ledger entry.
    """
    prompt = IMAGE_PROMPT
    if caption:
        prompt = f"{prompt}\nUser note: {caption}\n"

    response = await model_client.complete(prompt, image_bytes=image_bytes)
    extraction = parse_generative_response(response)

    return _to_result(
        extraction,
        message_id=image_message_id(compute_sha256(image_bytes)),
        message_timestamp=received_at,
        raw_subject=caption or "Shipment screenshot",
        raw_sender=None,
    )


def combine_results(
    generative: ExtractionResult, deterministic: ExtractionResult
) -> ExtractionResult:
    """
    Merge a generative result with the pattern result for the same message.

    Pattern-found identifiers and carrier win; every other field comes from
    the model and falls back to the pattern value.
    """
    return generative.model_copy(
        update={
            "tracking_number": deterministic.tracking_number
            or generative.tracking_number,
            "order_number": deterministic.order_number or generative.order_number,
            "carrier": deterministic.carrier or generative.carrier,
            "product_name": generative.product_name or deterministic.product_name,
            "merchant": generative.merchant or deterministic.merchant,
            "status": generative.status or deterministic.status,
            "expected_delivery": generative.expected_delivery
            or deterministic.expected_delivery,
            "summary": generative.summary or deterministic.summary,
            "extraction_method": ExtractionMethod.GENERATIVE,
        }
    )


async def generate_shipment_summary(
    updates: list[tuple[Optional[datetime], str]],
    current_status: ShipmentStatus,
    model_client: ModelClient,
) -> str:
    """
    Write a fresh summary for a shipment from all of its message subjects.

    Args:
        updates: (date, subject) pairs, newest first
        current_status: Effective status of the shipment
        model_client: Completion collaborator

    Returns:
        Summary text

    Raises:
        GenerativeExtractionError: The call failed or returned nothing
    """
    lines = [
        f"Update {i} ({date.isoformat() if date else 'unknown date'}): {subject}"
        for i, (date, subject) in enumerate(updates, start=1)
    ]
    prompt = SUMMARY_PROMPT.format(
        updates="\n".join(lines), status=current_status.label
    )

    response = await model_client.complete(prompt)
    summary = strip_code_fences(response)
    if not summary:
        raise GenerativeExtractionError("Empty summary from model")
    return summary

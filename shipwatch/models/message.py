from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from shipwatch.models.shipment import ExtractionMethod, ShipmentStatus
from shipwatch.utils.dates import ensure_utc


class RawMessage(BaseModel):
    """
    A decoded message as yielded by a mailbox.

    Immutable once created; `timestamp` is always UTC.
    """

    message_id: str = Field(description="Mailbox message identifier")
    subject: str = Field(default="", description="Subject line")
    sender: str = Field(default="", description="From header")
    body_text: str = Field(default="", description="Plain-text body")
    body_html: Optional[str] = Field(default=None, description="HTML body, if any")
    timestamp: datetime = Field(description="Message date")

    model_config = ConfigDict(frozen=True)

    @field_validator("timestamp")
    @classmethod
    def _timestamp_to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class ExtractionResult(BaseModel):
    """
    Shipment facts extracted from a single message.

    Before normalization `status` may hold the model's free text; afterwards
    it always holds a ShipmentStatus.
    """

    product_name: Optional[str] = Field(default=None, description="Product name")
    merchant: Optional[str] = Field(default=None, description="Merchant/seller name")
    carrier: Optional[str] = Field(default=None, description="Delivering carrier")
    tracking_number: Optional[str] = Field(
        default=None, description="Carrier tracking number"
    )
    order_number: Optional[str] = Field(
        default=None, description="Merchant order number"
    )
    status: Optional[ShipmentStatus | str] = Field(
        default=None, description="Status (free text until normalized)"
    )
    expected_delivery: Optional[str] = Field(
        default=None, description="Expected delivery, as written"
    )
    summary: str = Field(default="", description="One-line summary")
    extraction_method: ExtractionMethod = Field(
        default=ExtractionMethod.PATTERN, description="How the facts were extracted"
    )

    # Provenance
    message_id: str = Field(description="Id of the source message")
    message_timestamp: datetime = Field(description="Date of the source message")
    raw_subject: Optional[str] = Field(default=None, description="Source subject")
    raw_sender: Optional[str] = Field(default=None, description="Source sender")

    @field_validator("message_timestamp")
    @classmethod
    def _message_timestamp_to_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def has_identifier(self) -> bool:
        return bool(self.tracking_number or self.order_number)

    @property
    def shipment_status(self) -> Optional[ShipmentStatus]:
        """Status as an enum member, or None while it is still free text."""
        if isinstance(self.status, ShipmentStatus):
            return self.status
        return None

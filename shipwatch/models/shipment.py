from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shipwatch.utils.catalog import tracking_url_for


class ShipmentStatus(StrEnum):
    """Shipment lifecycle status"""

    ORDERED = "ordered"  # Order confirmed, not yet handed to a carrier
    SHIPPED = "shipped"  # Handed to the carrier
    IN_TRANSIT = "in_transit"  # Moving through the carrier network
    OUT_FOR_DELIVERY = "out_for_delivery"  # With the delivery agent
    DELIVERED = "delivered"  # Delivered to the recipient
    EXCEPTION = "exception"  # Failed delivery, returned, undeliverable

    @property
    def rank(self) -> int:
        """Progress rank; higher means further along."""
        return _STATUS_RANKS[self]

    @property
    def label(self) -> str:
        """Human-readable label for display."""
        return STATUS_LABELS[self]

    @classmethod
    def can_advance(cls, current: "ShipmentStatus", incoming: "ShipmentStatus") -> bool:
        """Whether `incoming` is strictly further along than `current`."""
        return incoming.rank > current.rank


_STATUS_RANKS: dict[ShipmentStatus, int] = {
    ShipmentStatus.ORDERED: 1,
    ShipmentStatus.SHIPPED: 2,
    ShipmentStatus.IN_TRANSIT: 3,
    ShipmentStatus.EXCEPTION: 3,
    ShipmentStatus.OUT_FOR_DELIVERY: 4,
    ShipmentStatus.DELIVERED: 5,
}

STATUS_LABELS: dict[ShipmentStatus, str] = {
    ShipmentStatus.ORDERED: "Order Confirmed",
    ShipmentStatus.SHIPPED: "Shipped",
    ShipmentStatus.IN_TRANSIT: "In Transit",
    ShipmentStatus.OUT_FOR_DELIVERY: "Out for Delivery",
    ShipmentStatus.DELIVERED: "Delivered",
    ShipmentStatus.EXCEPTION: "Delivery Issue",
}


class ExtractionMethod(StrEnum):
    """How the facts of a shipment were extracted"""

    FALLBACK = "fallback"  # Pattern result kept after the model failed
    PATTERN = "pattern"  # Deterministic regex/keyword extraction
    GENERATIVE = "generative"  # Generative model extraction

    @property
    def trust(self) -> int:
        """Trust rank used when deciding whether to replace a summary."""
        return _METHOD_TRUST[self]


_METHOD_TRUST: dict[ExtractionMethod, int] = {
    ExtractionMethod.FALLBACK: 0,
    ExtractionMethod.PATTERN: 1,
    ExtractionMethod.GENERATIVE: 2,
}


def identity_key_for(
    tracking_number: Optional[str],
    order_number: Optional[str],
    message_id: str,
) -> str:
    """
    Build the identity key of a shipment.

    The tracking number is the strongest identity, then the order number,
    then the id of the message that first described the shipment.
    """
    if tracking_number:
        return f"trk:{tracking_number}"
    if order_number:
        return f"ord:{order_number}"
    return f"msg:{message_id}"


class ShipmentRecord(BaseModel):
    """
    Persisted, reconciled view of one physical shipment for one user.

    Facts are accumulated across every message that described the shipment.
    Status only moves forward unless a user override is set.
    """

    # Identity
    id: str = Field(description="Internal shipment identifier (UUID)")
    user_id: str = Field(description="User who owns this shipment")
    identity_key: str = Field(
        description="Dedup key: trk:<tracking>, ord:<order> or msg:<message id>"
    )

    # Shipment facts
    tracking_number: Optional[str] = Field(
        default=None, description="Carrier tracking number"
    )
    carrier: Optional[str] = Field(default=None, description="Canonical carrier name")
    product_name: Optional[str] = Field(default=None, description="Product name")
    merchant: Optional[str] = Field(default=None, description="Canonical merchant name")
    order_number: Optional[str] = Field(
        default=None, description="Merchant order number"
    )
    expected_delivery: Optional[str] = Field(
        default=None, description="Expected delivery, as written in the message"
    )
    summary: Optional[str] = Field(default=None, description="One-line summary")

    # Status
    status: ShipmentStatus = Field(
        default=ShipmentStatus.IN_TRANSIT, description="Inferred status"
    )
    status_override: Optional[ShipmentStatus] = Field(
        default=None, description="User-set status; wins over the inferred status"
    )

    # Provenance
    message_timestamp: datetime = Field(
        description="Timestamp of the newest message describing this shipment"
    )
    source_message_id: str = Field(
        description="Id of the message that first described this shipment"
    )
    extraction_method: ExtractionMethod = Field(
        default=ExtractionMethod.PATTERN,
        description="Most trusted extraction method seen for this shipment",
    )
    raw_subject: Optional[str] = Field(
        default=None, description="Subject of the originating message"
    )
    raw_sender: Optional[str] = Field(
        default=None, description="Sender of the originating message"
    )

    archived: bool = Field(default=False, description="Hidden from the default list")

    # Timestamps
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Record creation time",
    )
    updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Last update time",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "6f1c7c2e-5d7b-4f7a-9a51-2b0b8c1d9e10",
                "user_id": "usr_xyz789",
                "identity_key": "trk:TBA123456789012",
                "tracking_number": "TBA123456789012",
                "carrier": "Amazon Logistics",
                "product_name": "Wireless Mouse",
                "merchant": "Amazon",
                "order_number": "402-1234567-1234567",
                "status": "shipped",
                "message_timestamp": "2026-01-23T10:00:00Z",
                "source_message_id": "18c2f3a9b7d",
                "extraction_method": "pattern",
            }
        }
    )

    @property
    def effective_status(self) -> ShipmentStatus:
        """Status shown to the user; an override always wins."""
        return self.status_override or self.status

    @property
    def status_label(self) -> str:
        return self.effective_status.label

    @property
    def tracking_url(self) -> Optional[str]:
        return tracking_url_for(self.carrier, self.tracking_number)


# Manual action models


class ShipmentUpdateRequest(BaseModel):
    """Manual field override for a shipment."""

    tracking_number: Optional[str] = Field(
        default=None, description="Replacement tracking number"
    )
    carrier: Optional[str] = Field(default=None, description="Replacement carrier")
    product_name: Optional[str] = Field(
        default=None, description="Replacement product name"
    )
    merchant: Optional[str] = Field(default=None, description="Replacement merchant")
    order_number: Optional[str] = Field(
        default=None, description="Replacement order number"
    )
    expected_delivery: Optional[str] = Field(
        default=None, description="Replacement expected delivery"
    )
    summary: Optional[str] = Field(default=None, description="Replacement summary")

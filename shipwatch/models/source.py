from datetime import datetime, timezone
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class SourceType(StrEnum):
    """Where a processed message came from"""

    EMAIL = "email"  # Mailbox message
    SCREENSHOT = "screenshot"  # User-shared screenshot of a tracking page


class ProcessingOutcome(StrEnum):
    """What happened to a processed message"""

    NOT_SHIPPING = "not_shipping"  # Rejected by the keyword pre-filter
    SKIPPED = "skipped"  # No identifier and no strong signal
    CREATED = "created"  # Created a new shipment
    UPDATED = "updated"  # Changed an existing shipment
    UNCHANGED = "unchanged"  # Matched a shipment, nothing new


class ProcessedMessage(BaseModel):
    """
    Ledger entry for a message that has been handled for a user.

    Prevents re-extraction on later syncs and enables screenshot duplicate
    detection.
    """

    # Identity
    id: str = Field(description="Internal ledger identifier (UUID)")
    user_id: str = Field(description="User who owns this message")
    message_id: str = Field(description="Mailbox message id, or image-<sha256>")

    source_type: SourceType = Field(
        default=SourceType.EMAIL, description="Type of source"
    )
    outcome: ProcessingOutcome = Field(description="Processing outcome")

    # Message metadata
    subject: Optional[str] = Field(default=None, description="Subject line")
    sender: Optional[str] = Field(default=None, description="Sender")
    message_date: Optional[datetime] = Field(default=None, description="Message date")
    matched_keywords: list[str] = Field(
        default_factory=list, description="Pre-filter keywords that matched"
    )

    # Screenshot fields
    image_hash: Optional[str] = Field(
        default=None,
        description="SHA-256 of the screenshot for duplicate detection",
    )

    shipment_id: Optional[str] = Field(
        default=None, description="Linked shipment id (if any)"
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Record creation time",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "2a0e0a4c-92a1-4c6e-8d1c-0f5b3f1e7c11",
                "user_id": "usr_xyz789",
                "message_id": "18c2f3a9b7d",
                "source_type": "email",
                "outcome": "created",
                "subject": "Your Amazon.in order has been shipped",
                "sender": "shipment-tracking@amazon.in",
                "message_date": "2026-01-23T10:00:00Z",
                "matched_keywords": ["shipped", "tracking"],
                "shipment_id": "6f1c7c2e-5d7b-4f7a-9a51-2b0b8c1d9e10",
            }
        }
    )

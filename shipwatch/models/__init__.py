"""
Shipwatch data models.

This package contains all Pydantic models for the shipment tracker.
"""

# Message models
from shipwatch.models.message import ExtractionResult, RawMessage

# Shipment models
from shipwatch.models.shipment import (
    STATUS_LABELS,
    ExtractionMethod,
    ShipmentRecord,
    ShipmentStatus,
    ShipmentUpdateRequest,
    identity_key_for,
)

# Source models
from shipwatch.models.source import ProcessedMessage, ProcessingOutcome, SourceType

# Sync models
from shipwatch.models.sync import SyncReport

__all__ = [
    # Message models
    "ExtractionResult",
    "RawMessage",
    # Shipment models
    "STATUS_LABELS",
    "ExtractionMethod",
    "ShipmentRecord",
    "ShipmentStatus",
    "ShipmentUpdateRequest",
    "identity_key_for",
    # Source models
    "ProcessedMessage",
    "ProcessingOutcome",
    "SourceType",
    # Sync models
    "SyncReport",
]

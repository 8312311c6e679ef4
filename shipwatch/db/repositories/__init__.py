"""
Repository implementations for the Shipwatch database.

Repositories encapsulate SQLAlchemy queries and Pydantic model conversions.
"""

from shipwatch.db.repositories.shipment import ShipmentRepository
from shipwatch.db.repositories.source import ProcessedMessageRepository

__all__ = [
    "ProcessedMessageRepository",
    "ShipmentRepository",
]

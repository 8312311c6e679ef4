"""
Age-based status inference.

Delivery is often never confirmed by email, so in-flight shipments are
promoted once enough time has passed since their newest message.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from shipwatch.models.shipment import ShipmentRecord, ShipmentStatus
from shipwatch.utils.dates import ensure_utc, utc_now

logger = logging.getLogger(__name__)

_PROMOTABLE_TO_DELIVERED = {
    ShipmentStatus.SHIPPED,
    ShipmentStatus.IN_TRANSIT,
    ShipmentStatus.OUT_FOR_DELIVERY,
}


def infer_status(
    message_timestamp: datetime,
    current_status: ShipmentStatus,
    now: Optional[datetime] = None,
    delivered_after_days: int = 14,
    in_transit_after_days: int = 7,
) -> ShipmentStatus:
    """
    Promote a stale in-flight status based on message age.

    Pure and idempotent. Ordered and exception are never promoted.

    Args:
        message_timestamp: Date of the newest message for the shipment
        current_status: Status before inference
        now: Reference time (defaults to the current UTC time)
        delivered_after_days: Age after which in-flight becomes delivered
        in_transit_after_days: Age after which shipped becomes in transit

    Returns:
        Inferred status (never lower in rank than current_status)
    """
    now = ensure_utc(now) if now is not None else utc_now()
    age = now - ensure_utc(message_timestamp)

    if age > timedelta(days=delivered_after_days) and (
        current_status in _PROMOTABLE_TO_DELIVERED
    ):
        return ShipmentStatus.DELIVERED

    if age > timedelta(days=in_transit_after_days) and (
        current_status is ShipmentStatus.SHIPPED
    ):
        return ShipmentStatus.IN_TRANSIT

    return current_status


def sweep_statuses(
    records: Iterable[ShipmentRecord],
    now: Optional[datetime] = None,
    delivered_after_days: int = 14,
    in_transit_after_days: int = 7,
) -> list[tuple[ShipmentRecord, ShipmentStatus]]:
    """
    Re-run inference over persisted records.

    Records with a status override are left alone.

    Returns:
        (record, new_status) for every record whose status would change
    """
    changes = []
    for record in records:
        if record.status_override is not None:
            continue
        inferred = infer_status(
            record.message_timestamp,
            record.status,
            now=now,
            delivered_after_days=delivered_after_days,
            in_transit_after_days=in_transit_after_days,
        )
        if inferred != record.status and ShipmentStatus.can_advance(
            record.status, inferred
        ):
            changes.append((record, inferred))

    if changes:
        logger.info(
            "Status sweep found stale shipments",
            extra={"json_fields": {"promotions": len(changes)}},
        )
    return changes

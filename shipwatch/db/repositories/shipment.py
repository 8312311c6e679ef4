"""
Shipment repository for database operations.

Handles shipment lookup by identity key and alternate identifiers, field
updates, and the manual user actions (override, archive, edit, delete).
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Table, and_, delete, select, update

from shipwatch.db.repositories.base import BaseRepository, to_uuid
from shipwatch.db.tables import processed_messages, shipments
from shipwatch.models.shipment import (
    ExtractionMethod,
    ShipmentRecord,
    ShipmentStatus,
    ShipmentUpdateRequest,
    identity_key_for,
)
from shipwatch.utils.dates import ensure_utc, utc_now

# Statuses the age sweep may still promote
IN_FLIGHT_STATUSES = [
    ShipmentStatus.SHIPPED,
    ShipmentStatus.IN_TRANSIT,
    ShipmentStatus.OUT_FOR_DELIVERY,
]

MANUAL_DELIVERED_SUMMARY = "Manually marked as delivered."


def _column_value(value: Any) -> Any:
    """Enum members are stored as their string values."""
    if isinstance(value, (ShipmentStatus, ExtractionMethod)):
        return value.value
    return value


class ShipmentRepository(BaseRepository[ShipmentRecord]):
    """Repository for ShipmentRecord operations."""

    @property
    def table(self) -> Table:
        return shipments

    def _row_to_model(self, row: Any) -> ShipmentRecord:
        """Convert database row to ShipmentRecord model."""
        return ShipmentRecord(
            id=str(row.id),
            user_id=row.user_id,
            identity_key=row.identity_key,
            tracking_number=row.tracking_number,
            carrier=row.carrier,
            product_name=row.product_name,
            merchant=row.merchant,
            order_number=row.order_number,
            expected_delivery=row.expected_delivery,
            summary=row.summary,
            status=ShipmentStatus(row.status),
            status_override=(
                ShipmentStatus(row.status_override) if row.status_override else None
            ),
            message_timestamp=ensure_utc(row.message_timestamp),
            source_message_id=row.source_message_id,
            extraction_method=ExtractionMethod(row.extraction_method),
            raw_subject=row.raw_subject,
            raw_sender=row.raw_sender,
            archived=bool(row.archived),
            created_at=ensure_utc(row.created_at),
            updated_at=ensure_utc(row.updated_at),
        )

    def _model_to_dict(self, model: ShipmentRecord) -> dict:
        """Convert ShipmentRecord model to database dict."""
        return {
            "id": UUID(model.id) if model.id else uuid4(),
            "user_id": model.user_id,
            "identity_key": model.identity_key,
            "tracking_number": model.tracking_number,
            "carrier": model.carrier,
            "product_name": model.product_name,
            "merchant": model.merchant,
            "order_number": model.order_number,
            "expected_delivery": model.expected_delivery,
            "summary": model.summary,
            "status": model.status.value,
            "status_override": (
                model.status_override.value if model.status_override else None
            ),
            "message_timestamp": model.message_timestamp,
            "source_message_id": model.source_message_id,
            "extraction_method": model.extraction_method.value,
            "raw_subject": model.raw_subject,
            "raw_sender": model.raw_sender,
            "archived": model.archived,
            "created_at": model.created_at,
            "updated_at": model.updated_at,
        }

    def _fetch_all(self, stmt) -> list[ShipmentRecord]:
        result = self.session.execute(stmt)
        return [self._row_to_model(row) for row in result.fetchall()]

    def _fetch_one(self, stmt) -> ShipmentRecord | None:
        row = self.session.execute(stmt).fetchone()
        if row is None:
            return None
        return self._row_to_model(row)

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def get_by_identity(self, user_id: str, identity_key: str) -> ShipmentRecord | None:
        """
        Get shipment by its unique (user_id, identity_key).

        Args:
            user_id: User ID
            identity_key: trk:/ord:/msg: identity key

        Returns:
            ShipmentRecord or None
        """
        stmt = select(self.table).where(
            and_(
                self.table.c.user_id == user_id,
                self.table.c.identity_key == identity_key,
            )
        )
        return self._fetch_one(stmt)

    def get_for_user(self, user_id: str, shipment_id: str | UUID) -> ShipmentRecord | None:
        """Get a shipment by ID, scoped to its owner."""
        stmt = select(self.table).where(
            and_(
                self.table.c.id == to_uuid(shipment_id),
                self.table.c.user_id == user_id,
            )
        )
        return self._fetch_one(stmt)

    def find_by_tracking_number(
        self, user_id: str, tracking_number: str
    ) -> ShipmentRecord | None:
        """Newest shipment for the user holding this tracking number."""
        stmt = (
            select(self.table)
            .where(
                and_(
                    self.table.c.user_id == user_id,
                    self.table.c.tracking_number == tracking_number,
                )
            )
            .order_by(self.table.c.message_timestamp.desc(), self.table.c.id)
            .limit(1)
        )
        return self._fetch_one(stmt)

    def find_by_order_number(
        self, user_id: str, order_number: str
    ) -> list[ShipmentRecord]:
        """All shipments for the user with this order number, newest first."""
        stmt = (
            select(self.table)
            .where(
                and_(
                    self.table.c.user_id == user_id,
                    self.table.c.order_number == order_number,
                )
            )
            .order_by(self.table.c.message_timestamp.desc(), self.table.c.id)
        )
        return self._fetch_all(stmt)

    def list_by_user(
        self, user_id: str, include_archived: bool = True
    ) -> list[ShipmentRecord]:
        """
        List shipments for a user, newest message first.

        Args:
            user_id: User ID
            include_archived: Include soft-hidden shipments

        Returns:
            List of shipments
        """
        conditions = [self.table.c.user_id == user_id]
        if not include_archived:
            conditions.append(self.table.c.archived.is_(False))

        stmt = (
            select(self.table)
            .where(and_(*conditions))
            .order_by(self.table.c.message_timestamp.desc(), self.table.c.id)
        )
        return self._fetch_all(stmt)

    def list_in_flight(self, user_id: str | None = None) -> list[ShipmentRecord]:
        """Shipments the age sweep may promote (no override set)."""
        conditions = [
            self.table.c.status.in_([s.value for s in IN_FLIGHT_STATUSES]),
            self.table.c.status_override.is_(None),
        ]
        if user_id is not None:
            conditions.append(self.table.c.user_id == user_id)

        stmt = (
            select(self.table)
            .where(and_(*conditions))
            .order_by(self.table.c.message_timestamp.asc(), self.table.c.id)
        )
        return self._fetch_all(stmt)

    # -------------------------------------------------------------------------
    # Automated writes
    # -------------------------------------------------------------------------

    def apply_updates(self, shipment_id: str | UUID, updates: dict) -> bool:
        """
        Write a merge result.

        Args:
            shipment_id: Shipment ID
            updates: Field -> new value, as produced by the merge

        Returns:
            True if the shipment was updated
        """
        if not updates:
            return False
        values = {field: _column_value(value) for field, value in updates.items()}
        return self.update_by_id(shipment_id, **values)

    def update_status(
        self,
        shipment_id: str | UUID,
        status: ShipmentStatus,
        now: datetime | None = None,
    ) -> bool:
        """Set the inferred status (used by the age sweep)."""
        return self.update_by_id(
            shipment_id, status=status.value, updated_at=now or utc_now()
        )

    # -------------------------------------------------------------------------
    # Manual user actions
    # -------------------------------------------------------------------------

    def _update_for_user(self, user_id: str, shipment_id: str | UUID, **values) -> bool:
        stmt = (
            update(self.table)
            .where(
                and_(
                    self.table.c.id == to_uuid(shipment_id),
                    self.table.c.user_id == user_id,
                )
            )
            .values(**values)
        )
        result = self.session.execute(stmt)
        return result.rowcount > 0

    def set_status_override(
        self,
        user_id: str,
        shipment_id: str | UUID,
        status: ShipmentStatus = ShipmentStatus.DELIVERED,
        now: datetime | None = None,
    ) -> bool:
        """
        Pin the effective status of a shipment.

        Marking delivered also replaces the summary with a note that the user
        did it.
        """
        values: dict[str, Any] = {
            "status_override": status.value,
            "updated_at": now or utc_now(),
        }
        if status is ShipmentStatus.DELIVERED:
            values["summary"] = MANUAL_DELIVERED_SUMMARY
        return self._update_for_user(user_id, shipment_id, **values)

    def clear_status_override(
        self, user_id: str, shipment_id: str | UUID, now: datetime | None = None
    ) -> bool:
        """Hand the status back to automated inference."""
        return self._update_for_user(
            user_id, shipment_id, status_override=None, updated_at=now or utc_now()
        )

    def set_archived(
        self,
        user_id: str,
        shipment_id: str | UUID,
        archived: bool = True,
        now: datetime | None = None,
    ) -> bool:
        """Soft-hide (or unhide) a shipment."""
        return self._update_for_user(
            user_id, shipment_id, archived=archived, updated_at=now or utc_now()
        )

    def update_fields(
        self,
        user_id: str,
        shipment_id: str | UUID,
        request: ShipmentUpdateRequest,
        now: datetime | None = None,
    ) -> ShipmentRecord | None:
        """
        Manually overwrite shipment fields.

        Unlike automated merges, provided values replace existing ones. The
        identity key follows a changed tracking/order number unless another
        shipment already holds the new key.

        Returns:
            Updated shipment, or None if not found
        """
        existing = self.get_for_user(user_id, shipment_id)
        if existing is None:
            return None

        values: dict[str, Any] = request.model_dump(exclude_none=True)
        if not values:
            return existing

        tracking_number = values.get("tracking_number", existing.tracking_number)
        order_number = values.get("order_number", existing.order_number)
        identity_key = identity_key_for(
            tracking_number, order_number, existing.source_message_id
        )
        if identity_key != existing.identity_key:
            holder = self.get_by_identity(user_id, identity_key)
            if holder is None:
                values["identity_key"] = identity_key

        values["updated_at"] = now or utc_now()
        self._update_for_user(user_id, shipment_id, **values)
        return self.get_for_user(user_id, shipment_id)

    def delete_for_user(self, user_id: str, shipment_id: str | UUID) -> bool:
        """
        Delete a shipment owned by the user.

        Ledger entries pointing at it are unlinked, not removed, so the
        messages are not re-imported on the next sync.
        """
        if self.get_for_user(user_id, shipment_id) is None:
            return False

        shipment_uuid = to_uuid(shipment_id)
        self.session.execute(
            update(processed_messages)
            .where(processed_messages.c.shipment_id == shipment_uuid)
            .values(shipment_id=None)
        )
        stmt = delete(self.table).where(
            and_(
                self.table.c.id == shipment_uuid,
                self.table.c.user_id == user_id,
            )
        )
        result = self.session.execute(stmt)
        return result.rowcount > 0

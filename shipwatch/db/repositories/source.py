"""
Processed-message repository.

The ledger of messages already handled per user: skips re-extraction on later
syncs and detects duplicate screenshots by hash.
"""

from typing import Any, Iterable
from uuid import UUID, uuid4

from sqlalchemy import Table, and_, select, update

from shipwatch.db.repositories.base import BaseRepository, to_uuid
from shipwatch.db.tables import processed_messages
from shipwatch.models.source import ProcessedMessage, ProcessingOutcome, SourceType
from shipwatch.utils.dates import ensure_utc


class ProcessedMessageRepository(BaseRepository[ProcessedMessage]):
    """Repository for ProcessedMessage operations with duplicate detection."""

    @property
    def table(self) -> Table:
        return processed_messages

    def _row_to_model(self, row: Any) -> ProcessedMessage:
        """Convert database row to ProcessedMessage model."""
        return ProcessedMessage(
            id=str(row.id),
            user_id=row.user_id,
            message_id=row.message_id,
            source_type=SourceType(row.source_type),
            outcome=ProcessingOutcome(row.outcome),
            subject=row.subject,
            sender=row.sender,
            message_date=ensure_utc(row.message_date),
            matched_keywords=list(row.matched_keywords or []),
            image_hash=row.image_hash,
            shipment_id=str(row.shipment_id) if row.shipment_id else None,
            created_at=ensure_utc(row.created_at),
        )

    def _model_to_dict(self, model: ProcessedMessage) -> dict:
        """Convert ProcessedMessage model to database dict."""
        return {
            "id": UUID(model.id) if model.id else uuid4(),
            "user_id": model.user_id,
            "message_id": model.message_id,
            "source_type": model.source_type.value,
            "outcome": model.outcome.value,
            "subject": model.subject,
            "sender": model.sender,
            "message_date": model.message_date,
            "matched_keywords": list(model.matched_keywords),
            "image_hash": model.image_hash,
            "shipment_id": UUID(model.shipment_id) if model.shipment_id else None,
            "created_at": model.created_at,
        }

    def get_by_message_id(self, user_id: str, message_id: str) -> ProcessedMessage | None:
        """
        Find the ledger entry for a message.

        Args:
            user_id: User ID
            message_id: Mailbox message id (or image-<sha256>)

        Returns:
            ProcessedMessage if the message was handled before, None otherwise
        """
        stmt = select(self.table).where(
            and_(
                self.table.c.user_id == user_id,
                self.table.c.message_id == message_id,
            )
        )
        row = self.session.execute(stmt).fetchone()
        if row is None:
            return None
        return self._row_to_model(row)

    def processed_ids(self, user_id: str, message_ids: Iterable[str]) -> set[str]:
        """Subset of `message_ids` already in the user's ledger."""
        message_ids = list(message_ids)
        if not message_ids:
            return set()

        stmt = select(self.table.c.message_id).where(
            and_(
                self.table.c.user_id == user_id,
                self.table.c.message_id.in_(message_ids),
            )
        )
        return {row.message_id for row in self.session.execute(stmt).fetchall()}

    def find_by_image_hash(self, user_id: str, image_hash: str) -> ProcessedMessage | None:
        """
        Find a screenshot by SHA-256 hash.

        Used for screenshot duplicate detection.
        """
        stmt = select(self.table).where(
            and_(
                self.table.c.user_id == user_id,
                self.table.c.image_hash == image_hash,
            )
        )
        row = self.session.execute(stmt).fetchone()
        if row is None:
            return None
        return self._row_to_model(row)

    def list_for_shipment(
        self, user_id: str, shipment_id: str | UUID
    ) -> list[ProcessedMessage]:
        """Messages linked to a shipment, newest first."""
        stmt = (
            select(self.table)
            .where(
                and_(
                    self.table.c.user_id == user_id,
                    self.table.c.shipment_id == to_uuid(shipment_id),
                )
            )
            .order_by(self.table.c.message_date.desc(), self.table.c.id)
        )
        result = self.session.execute(stmt)
        return [self._row_to_model(row) for row in result.fetchall()]

    def repoint_shipment(
        self, from_shipment_id: str | UUID, to_shipment_id: str | UUID
    ) -> int:
        """Move ledger links from one shipment to another (duplicate collapse)."""
        stmt = (
            update(self.table)
            .where(self.table.c.shipment_id == to_uuid(from_shipment_id))
            .values(shipment_id=to_uuid(to_shipment_id))
        )
        return self.session.execute(stmt).rowcount

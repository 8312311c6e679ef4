"""
SQLAlchemy Table definitions for the Shipwatch database.

Uses SQLAlchemy Core (not ORM) with Pydantic models mapped in the
repositories. Column types are portable so the same schema runs on Cloud SQL
(PostgreSQL) and SQLite.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB

metadata = MetaData()

JSONVariant = JSON().with_variant(JSONB(), "postgresql")

# =============================================================================
# TABLE: shipments
# =============================================================================

shipments = Table(
    "shipments",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("user_id", String(255), nullable=False),
    Column("identity_key", String(300), nullable=False),
    # Shipment facts
    Column("tracking_number", String(100)),
    Column("carrier", String(100)),
    Column("product_name", Text),
    Column("merchant", String(255)),
    Column("order_number", String(100)),
    Column("expected_delivery", String(100)),
    Column("summary", Text),
    # Status
    Column("status", String(30), nullable=False, default="in_transit"),
    Column("status_override", String(30)),
    # Provenance
    Column("message_timestamp", DateTime(timezone=True), nullable=False),
    Column("source_message_id", String(255), nullable=False),
    Column("extraction_method", String(20), nullable=False, default="pattern"),
    Column("raw_subject", Text),
    Column("raw_sender", String(500)),
    Column("archived", Boolean, nullable=False, default=False),
    # Timestamps
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("user_id", "identity_key", name="uq_shipments_user_identity"),
    Index("ix_shipments_user_order", "user_id", "order_number"),
    Index("ix_shipments_user_tracking", "user_id", "tracking_number"),
    Index("ix_shipments_user_message_ts", "user_id", "message_timestamp"),
)

# =============================================================================
# TABLE: processed_messages
# =============================================================================

processed_messages = Table(
    "processed_messages",
    metadata,
    Column("id", Uuid, primary_key=True),
    Column("user_id", String(255), nullable=False),
    Column("message_id", String(255), nullable=False),
    Column("source_type", String(20), nullable=False, default="email"),
    Column("outcome", String(20), nullable=False),
    Column("subject", Text),
    Column("sender", String(500)),
    Column("message_date", DateTime(timezone=True)),
    Column("matched_keywords", JSONVariant, default=[]),
    Column("image_hash", String(64)),
    Column(
        "shipment_id",
        Uuid,
        ForeignKey("shipments.id", ondelete="SET NULL"),
    ),
    Column("created_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("user_id", "message_id", name="uq_processed_user_message"),
    Index("ix_processed_user_image_hash", "user_id", "image_hash"),
)

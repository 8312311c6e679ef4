"""Tests for shipment, message and ledger models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from shipwatch.models.message import ExtractionResult, RawMessage
from shipwatch.models.shipment import (
    ExtractionMethod,
    ShipmentRecord,
    ShipmentStatus,
    identity_key_for,
)
from shipwatch.models.sync import SyncReport

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class TestShipmentStatus:
    def test_rank_order(self):
        assert ShipmentStatus.ORDERED.rank < ShipmentStatus.SHIPPED.rank
        assert ShipmentStatus.SHIPPED.rank < ShipmentStatus.IN_TRANSIT.rank
        assert ShipmentStatus.IN_TRANSIT.rank < ShipmentStatus.OUT_FOR_DELIVERY.rank
        assert ShipmentStatus.OUT_FOR_DELIVERY.rank < ShipmentStatus.DELIVERED.rank

    def test_exception_shares_in_transit_rank(self):
        assert ShipmentStatus.EXCEPTION.rank == ShipmentStatus.IN_TRANSIT.rank

    def test_can_advance(self):
        assert ShipmentStatus.can_advance(
            ShipmentStatus.SHIPPED, ShipmentStatus.DELIVERED
        )
        assert not ShipmentStatus.can_advance(
            ShipmentStatus.DELIVERED, ShipmentStatus.SHIPPED
        )
        assert not ShipmentStatus.can_advance(
            ShipmentStatus.IN_TRANSIT, ShipmentStatus.EXCEPTION
        )

    def test_labels(self):
        assert ShipmentStatus.ORDERED.label == "Order Confirmed"
        assert ShipmentStatus.EXCEPTION.label == "Delivery Issue"
        assert ShipmentStatus.OUT_FOR_DELIVERY.label == "Out for Delivery"


class TestExtractionMethod:
    def test_trust_order(self):
        assert (
            ExtractionMethod.FALLBACK.trust
            < ExtractionMethod.PATTERN.trust
            < ExtractionMethod.GENERATIVE.trust
        )


class TestIdentityKey:
    def test_tracking_wins(self):
        assert identity_key_for("FMPC1234567890", "OD123", "m1") == "trk:FMPC1234567890"

    def test_order_second(self):
        assert identity_key_for(None, "OD123", "m1") == "ord:OD123"

    def test_message_last(self):
        assert identity_key_for(None, None, "m1") == "msg:m1"


class TestShipmentRecord:
    def _record(self, **overrides) -> ShipmentRecord:
        data = dict(
            id="6f1c7c2e-5d7b-4f7a-9a51-2b0b8c1d9e10",
            user_id="user-1",
            identity_key="trk:FMPC1234567890",
            tracking_number="FMPC1234567890",
            carrier="Ekart",
            status=ShipmentStatus.IN_TRANSIT,
            message_timestamp=NOW,
            source_message_id="m1",
        )
        data.update(overrides)
        return ShipmentRecord(**data)

    def test_effective_status_without_override(self):
        record = self._record()
        assert record.effective_status == ShipmentStatus.IN_TRANSIT
        assert record.status_label == "In Transit"

    def test_override_wins(self):
        record = self._record(status_override=ShipmentStatus.DELIVERED)
        assert record.effective_status == ShipmentStatus.DELIVERED
        assert record.status == ShipmentStatus.IN_TRANSIT

    def test_tracking_url(self):
        record = self._record()
        assert record.tracking_url == (
            "https://www.ekartlogistics.com/track/FMPC1234567890"
        )

    def test_tracking_url_unknown_carrier(self):
        record = self._record(carrier="Acme Couriers")
        assert record.tracking_url is None

    def test_serializes_enums_as_values(self):
        data = self._record().model_dump(mode="json")
        assert data["status"] == "in_transit"
        assert data["extraction_method"] == "pattern"


class TestRawMessage:
    def test_naive_timestamp_is_utc(self):
        message = RawMessage(message_id="m1", timestamp=datetime(2026, 3, 1, 9, 30))
        assert message.timestamp.tzinfo == timezone.utc
        assert message.timestamp.hour == 9

    def test_offset_timestamp_converted(self):
        ist = timezone(timedelta(hours=5, minutes=30))
        message = RawMessage(
            message_id="m1", timestamp=datetime(2026, 3, 1, 9, 30, tzinfo=ist)
        )
        assert message.timestamp == datetime(2026, 3, 1, 4, 0, tzinfo=timezone.utc)

    def test_frozen(self):
        message = RawMessage(message_id="m1", timestamp=NOW)
        with pytest.raises(ValidationError):
            message.subject = "changed"


class TestExtractionResult:
    def test_has_identifier(self):
        result = ExtractionResult(
            message_id="m1", message_timestamp=NOW, order_number="OD1"
        )
        assert result.has_identifier

    def test_no_identifier(self):
        result = ExtractionResult(message_id="m1", message_timestamp=NOW)
        assert not result.has_identifier

    def test_shipment_status_for_free_text(self):
        result = ExtractionResult(
            message_id="m1", message_timestamp=NOW, status="On its way"
        )
        assert result.shipment_status is None

    def test_shipment_status_for_enum(self):
        result = ExtractionResult(
            message_id="m1", message_timestamp=NOW, status=ShipmentStatus.SHIPPED
        )
        assert result.shipment_status == ShipmentStatus.SHIPPED


class TestSyncReport:
    def test_processed_total(self):
        report = SyncReport(
            user_id="user-1", not_shipping=2, skipped=1, created=3, updated=1
        )
        assert report.processed == 7
        assert report.shipments == []

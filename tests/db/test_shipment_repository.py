"""
Tests for the shipment repository and the processed-message ledger.

Run against an in-memory SQLite database built from the same table
definitions as production.
"""

from datetime import timedelta
from uuid import uuid4

import pytest

from shipwatch.models.shipment import (
    ExtractionMethod,
    ShipmentRecord,
    ShipmentStatus,
    ShipmentUpdateRequest,
)
from shipwatch.models.source import ProcessedMessage, ProcessingOutcome, SourceType

USER = "user-1"


@pytest.fixture
def make_record(now):
    def _make(**overrides) -> ShipmentRecord:
        data = dict(
            id=str(uuid4()),
            user_id=USER,
            identity_key="trk:1490812345678",
            tracking_number="1490812345678",
            carrier="Delhivery",
            status=ShipmentStatus.SHIPPED,
            message_timestamp=now - timedelta(days=1),
            source_message_id="m1",
            created_at=now,
            updated_at=now,
        )
        data.update(overrides)
        return ShipmentRecord(**data)

    return _make


@pytest.fixture
def make_entry(now):
    def _make(message_id: str = "m1", **overrides) -> ProcessedMessage:
        data = dict(
            id=str(uuid4()),
            user_id=USER,
            message_id=message_id,
            outcome=ProcessingOutcome.CREATED,
            subject="Your package has shipped",
            message_date=now,
            created_at=now,
        )
        data.update(overrides)
        return ProcessedMessage(**data)

    return _make


class TestShipmentLookups:
    """Tests for identity and alternate-identifier lookups."""

    def test_create_and_get_by_identity(self, uow_factory, make_record):
        record = make_record(extraction_method=ExtractionMethod.GENERATIVE)
        with uow_factory() as uow:
            uow.shipments.create(record)
            uow.commit()

        with uow_factory() as uow:
            stored = uow.shipments.get_by_identity(USER, "trk:1490812345678")

        assert stored == record

    def test_identity_scoped_to_user(self, uow_factory, make_record):
        with uow_factory() as uow:
            uow.shipments.create(make_record())
            uow.commit()
            assert uow.shipments.get_by_identity("user-2", "trk:1490812345678") is None

    def test_find_by_order_number_newest_first(self, uow_factory, make_record, now):
        older = make_record(
            identity_key="ord:A12345",
            tracking_number=None,
            order_number="A12345",
            message_timestamp=now - timedelta(days=5),
        )
        newer = make_record(
            identity_key="trk:FMPC1234567890",
            tracking_number="FMPC1234567890",
            order_number="A12345",
            message_timestamp=now - timedelta(days=1),
        )
        with uow_factory() as uow:
            uow.shipments.create(older)
            uow.shipments.create(newer)
            uow.commit()

            found = uow.shipments.find_by_order_number(USER, "A12345")

        assert [r.id for r in found] == [newer.id, older.id]

    def test_find_by_tracking_number(self, uow_factory, make_record):
        record = make_record(identity_key="ord:A12345", order_number="A12345")
        with uow_factory() as uow:
            uow.shipments.create(record)
            uow.commit()

            assert uow.shipments.find_by_tracking_number(USER, "1490812345678").id == record.id
            assert uow.shipments.find_by_tracking_number(USER, "999") is None

    def test_list_by_user_archived(self, uow_factory, make_record):
        visible = make_record()
        hidden = make_record(identity_key="ord:B1", order_number="B1", archived=True)
        with uow_factory() as uow:
            uow.shipments.create(visible)
            uow.shipments.create(hidden)
            uow.commit()

            assert [r.id for r in uow.shipments.list_by_user(USER, include_archived=False)] == [
                visible.id
            ]
            assert len(uow.shipments.list_by_user(USER)) == 2

    def test_list_in_flight(self, uow_factory, make_record):
        in_flight = make_record()
        delivered = make_record(
            identity_key="ord:B1", order_number="B1", status=ShipmentStatus.DELIVERED
        )
        overridden = make_record(
            identity_key="ord:B2",
            order_number="B2",
            status_override=ShipmentStatus.DELIVERED,
        )
        ordered = make_record(
            identity_key="ord:B3", order_number="B3", status=ShipmentStatus.ORDERED
        )
        with uow_factory() as uow:
            for record in (in_flight, delivered, overridden, ordered):
                uow.shipments.create(record)
            uow.commit()

            assert [r.id for r in uow.shipments.list_in_flight(USER)] == [in_flight.id]
            assert [r.id for r in uow.shipments.list_in_flight()] == [in_flight.id]

    def test_rollback_without_commit(self, uow_factory, make_record):
        with uow_factory() as uow:
            uow.shipments.create(make_record())

        with uow_factory() as uow:
            assert uow.shipments.list_by_user(USER) == []


class TestShipmentWrites:
    """Tests for automated and manual writes."""

    def test_apply_updates_stores_enum_values(self, uow_factory, make_record, now):
        record = make_record()
        with uow_factory() as uow:
            uow.shipments.create(record)
            uow.shipments.apply_updates(
                record.id,
                {
                    "status": ShipmentStatus.DELIVERED,
                    "extraction_method": ExtractionMethod.GENERATIVE,
                    "updated_at": now,
                },
            )
            uow.commit()

            stored = uow.shipments.get_by_id(record.id)

        assert stored.status == ShipmentStatus.DELIVERED
        assert stored.extraction_method == ExtractionMethod.GENERATIVE

    def test_apply_empty_updates(self, uow_factory, make_record):
        record = make_record()
        with uow_factory() as uow:
            uow.shipments.create(record)
            assert uow.shipments.apply_updates(record.id, {}) is False

    def test_set_and_clear_override(self, uow_factory, make_record):
        record = make_record(summary="Your package has shipped with Delhivery.")
        with uow_factory() as uow:
            uow.shipments.create(record)
            assert uow.shipments.set_status_override(USER, record.id)
            uow.commit()

            stored = uow.shipments.get_by_id(record.id)
            assert stored.effective_status == ShipmentStatus.DELIVERED
            assert stored.status == ShipmentStatus.SHIPPED
            assert stored.summary == "Manually marked as delivered."

            assert uow.shipments.clear_status_override(USER, record.id)
            uow.commit()
            assert uow.shipments.get_by_id(record.id).status_override is None

    def test_exception_override_keeps_summary(self, uow_factory, make_record):
        record = make_record(summary="Your package has shipped with Delhivery.")
        with uow_factory() as uow:
            uow.shipments.create(record)
            uow.shipments.set_status_override(USER, record.id, ShipmentStatus.EXCEPTION)
            uow.commit()

            stored = uow.shipments.get_by_id(record.id)

        assert stored.effective_status == ShipmentStatus.EXCEPTION
        assert stored.summary == "Your package has shipped with Delhivery."

    def test_override_other_user(self, uow_factory, make_record):
        record = make_record()
        with uow_factory() as uow:
            uow.shipments.create(record)
            assert not uow.shipments.set_status_override("user-2", record.id)

    def test_update_fields_rekeys(self, uow_factory, make_record):
        record = make_record(identity_key="ord:A12345", tracking_number=None, order_number="A12345")
        with uow_factory() as uow:
            uow.shipments.create(record)
            updated = uow.shipments.update_fields(
                USER,
                record.id,
                ShipmentUpdateRequest(tracking_number="FMPC1234567890", carrier="Ekart"),
            )
            uow.commit()

        assert updated.identity_key == "trk:FMPC1234567890"
        assert updated.carrier == "Ekart"

    def test_update_fields_keeps_key_when_taken(self, uow_factory, make_record):
        holder = make_record(identity_key="trk:FMPC1234567890", tracking_number="FMPC1234567890")
        record = make_record(identity_key="ord:A12345", tracking_number=None, order_number="A12345")
        with uow_factory() as uow:
            uow.shipments.create(holder)
            uow.shipments.create(record)
            updated = uow.shipments.update_fields(
                USER, record.id, ShipmentUpdateRequest(tracking_number="FMPC1234567890")
            )
            uow.commit()

        assert updated.identity_key == "ord:A12345"
        assert updated.tracking_number == "FMPC1234567890"

    def test_update_fields_overwrites(self, uow_factory, make_record):
        record = make_record(product_name="Shirt")
        with uow_factory() as uow:
            uow.shipments.create(record)
            updated = uow.shipments.update_fields(
                USER, record.id, ShipmentUpdateRequest(product_name="Linen Shirt")
            )

        assert updated.product_name == "Linen Shirt"
        assert updated.identity_key == record.identity_key

    def test_update_fields_not_found(self, uow_factory):
        with uow_factory() as uow:
            assert (
                uow.shipments.update_fields(
                    USER, str(uuid4()), ShipmentUpdateRequest(carrier="Ekart")
                )
                is None
            )

    def test_delete_unlinks_ledger(self, uow_factory, make_record, make_entry):
        record = make_record()
        with uow_factory() as uow:
            uow.shipments.create(record)
            uow.processed_messages.create(make_entry(shipment_id=record.id))
            uow.commit()

            assert not uow.shipments.delete_for_user("user-2", record.id)
            assert uow.shipments.delete_for_user(USER, record.id)
            uow.commit()

            assert uow.shipments.get_by_id(record.id) is None
            assert uow.processed_messages.get_by_message_id(USER, "m1").shipment_id is None


class TestProcessedMessageLedger:
    """Tests for the processed-message ledger."""

    def test_round_trip(self, uow_factory, make_entry):
        entry = make_entry(matched_keywords=["shipped", "tracking"])
        with uow_factory() as uow:
            uow.processed_messages.create(entry)
            uow.commit()

            assert uow.processed_messages.get_by_message_id(USER, "m1") == entry

    def test_processed_ids(self, uow_factory, make_entry):
        with uow_factory() as uow:
            uow.processed_messages.create(make_entry("m1"))
            uow.processed_messages.create(make_entry("m2", user_id="user-2"))
            uow.commit()

            assert uow.processed_messages.processed_ids(USER, ["m1", "m2", "m3"]) == {"m1"}
            assert uow.processed_messages.processed_ids(USER, []) == set()

    def test_find_by_image_hash(self, uow_factory, make_entry):
        entry = make_entry(
            "image-abc",
            source_type=SourceType.SCREENSHOT,
            image_hash="abc",
        )
        with uow_factory() as uow:
            uow.processed_messages.create(entry)
            uow.commit()

            assert uow.processed_messages.find_by_image_hash(USER, "abc").id == entry.id
            assert uow.processed_messages.find_by_image_hash("user-2", "abc") is None

    def test_list_for_shipment_newest_first(self, uow_factory, make_record, make_entry, now):
        record = make_record()
        old = make_entry("m1", shipment_id=record.id, message_date=now - timedelta(days=3))
        new = make_entry("m2", shipment_id=record.id, message_date=now)
        with uow_factory() as uow:
            uow.shipments.create(record)
            uow.processed_messages.create(old)
            uow.processed_messages.create(new)
            uow.commit()

            entries = uow.processed_messages.list_for_shipment(USER, record.id)

        assert [e.message_id for e in entries] == ["m2", "m1"]

    def test_repoint_shipment(self, uow_factory, make_record, make_entry):
        primary = make_record()
        duplicate = make_record(identity_key="ord:A12345", tracking_number=None, order_number="A12345")
        with uow_factory() as uow:
            uow.shipments.create(primary)
            uow.shipments.create(duplicate)
            uow.processed_messages.create(make_entry("m1", shipment_id=duplicate.id))
            uow.processed_messages.create(make_entry("m2", shipment_id=duplicate.id))

            moved = uow.processed_messages.repoint_shipment(duplicate.id, primary.id)
            uow.commit()

            assert moved == 2
            assert {
                e.message_id for e in uow.processed_messages.list_for_shipment(USER, primary.id)
            } == {"m1", "m2"}

"""
Tests for worker task handlers.
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from shipwatch.agents.model_client import GenerativeExtractionError
from shipwatch.db.repositories.shipment import MANUAL_DELIVERED_SUMMARY
from shipwatch.models.shipment import ShipmentRecord, ShipmentStatus
from shipwatch.models.source import ProcessedMessage, ProcessingOutcome
from shipwatch.utils.hash import compute_sha256
from shipwatch.worker import handlers
from shipwatch.worker.handlers import (
    configure_worker,
    handle_archive,
    handle_clear_override,
    handle_delete_shipment,
    handle_list_shipments,
    handle_mark_delivered,
    handle_override_fields,
    handle_parse_image,
    handle_refresh_summary,
    handle_shipment_sync,
    handle_status_sweep,
)
from shipwatch.worker.mailbox import MailboxAuthError
from shipwatch.worker.sync import ShipmentSyncService

pytest_plugins = ("pytest_asyncio",)

USER = "user-1"

SCREENSHOT_RESPONSE = {
    "product_name": "Trail Running Shoes",
    "merchant": "Myntra",
    "carrier": "Delhivery",
    "tracking_number": "1490812345678",
    "order_number": None,
    "status": "IN_TRANSIT",
    "summary": "Your Trail Running Shoes from Myntra are in transit with Delhivery.",
}


@pytest.fixture
def model_client() -> MagicMock:
    client = MagicMock()
    client.complete = AsyncMock(return_value=json.dumps(SCREENSHOT_RESPONSE))
    return client


@pytest.fixture
def service(uow_factory, fast_settings, model_client) -> ShipmentSyncService:
    return ShipmentSyncService(
        model_client=model_client,
        settings=fast_settings,
        unit_of_work=uow_factory,
        sleep=AsyncMock(),
    )


@pytest.fixture
def seed(uow_factory, now):
    """Insert a shipment for USER and return it."""

    def _seed(**overrides) -> ShipmentRecord:
        data = dict(
            id=str(uuid4()),
            user_id=USER,
            identity_key="trk:1490812345678",
            tracking_number="1490812345678",
            carrier="Delhivery",
            merchant="Myntra",
            summary="Your Myntra package has shipped with Delhivery.",
            status=ShipmentStatus.SHIPPED,
            message_timestamp=now - timedelta(days=2),
            source_message_id="m1",
            raw_subject="Your package has shipped",
            created_at=now,
            updated_at=now,
        )
        data.update(overrides)
        with uow_factory() as uow:
            record = uow.shipments.create(ShipmentRecord(**data))
            uow.commit()
        return record

    return _seed


def _ledger(record: ShipmentRecord, message_id: str, subject: str, when) -> ProcessedMessage:
    return ProcessedMessage(
        id=str(uuid4()),
        user_id=record.user_id,
        message_id=message_id,
        outcome=ProcessingOutcome.CREATED,
        subject=subject,
        message_date=when,
        shipment_id=record.id,
    )


def _mailbox(**kwargs) -> MagicMock:
    mailbox = MagicMock()
    mailbox.search_messages = AsyncMock(**kwargs)
    return mailbox


class TestConfigureWorker:
    def test_without_database_config(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.delenv("INSTANCE_CONNECTION_NAME", raising=False)

        with patch.object(handlers, "load_dotenv"), patch.object(
            handlers, "setup_logging"
        ), patch.object(handlers, "DatabaseConnection") as db:
            assert configure_worker() is False
            db.initialize.assert_not_called()

    def test_with_database_url(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")

        with patch.object(handlers, "load_dotenv"), patch.object(
            handlers, "setup_logging"
        ) as setup_logging, patch.object(handlers, "DatabaseConnection") as db:
            assert configure_worker("test-worker") is True
            setup_logging.assert_called_once_with("test-worker")
            db.initialize.assert_called_once()

    def test_connection_failure(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite://")

        with patch.object(handlers, "load_dotenv"), patch.object(
            handlers, "setup_logging"
        ), patch.object(handlers, "DatabaseConnection") as db:
            db.initialize.side_effect = RuntimeError("connection refused")
            assert configure_worker() is False


class TestHandleShipmentSync:
    @pytest.mark.asyncio
    async def test_completed(self, service, make_message):
        message = make_message(
            message_id="amz-1",
            subject="Your order has been delivered",
            body_text="Your package with AWB 1234567890123 has been handed over.",
        )

        result = await handle_shipment_sync(
            USER, _mailbox(return_value=[message]), service=service
        )

        assert result["status"] == "completed"
        assert result["created"] == 1
        assert result["shipments"][0]["carrier"] == "Amazon Logistics"

    @pytest.mark.asyncio
    async def test_auth_failure_returns_current_shipments(self, service, seed):
        seed()

        result = await handle_shipment_sync(
            USER,
            _mailbox(side_effect=MailboxAuthError("token expired")),
            service=service,
        )

        assert result["status"] == "reauthenticate"
        assert result["error"] == "token expired"
        assert len(result["shipments"]) == 1

    @pytest.mark.asyncio
    async def test_unexpected_failure(self, service):
        result = await handle_shipment_sync(
            USER, _mailbox(side_effect=RuntimeError("boom")), service=service
        )

        assert result["status"] == "failed"
        assert result["error"] == "boom"


class TestHandleParseImage:
    @pytest.mark.asyncio
    async def test_creates_shipment(self, service, uow_factory, now):
        image = b"\x89PNG\r\n\x1a\nscreenshot-1"

        result = await handle_parse_image(USER, image, received_at=now, service=service)

        assert result["status"] == "created"
        assert result["image_hash"] == compute_sha256(image)
        assert result["shipment"]["tracking_number"] == "1490812345678"
        assert result["shipment"]["carrier"] == "Delhivery"
        assert result["shipment"]["extraction_method"] == "generative"
        with uow_factory() as uow:
            entry = uow.processed_messages.find_by_image_hash(USER, result["image_hash"])
        assert entry.source_type == "screenshot"
        assert entry.shipment_id == result["shipment_id"]

    @pytest.mark.asyncio
    async def test_same_image_is_duplicate(self, service, model_client, now):
        image = b"\x89PNG\r\n\x1a\nscreenshot-2"

        first = await handle_parse_image(USER, image, received_at=now, service=service)
        second = await handle_parse_image(USER, image, received_at=now, service=service)

        assert second["status"] == "duplicate"
        assert second["shipment_id"] == first["shipment_id"]
        model_client.complete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_same_image_other_user_not_duplicate(self, service, now):
        image = b"\x89PNG\r\n\x1a\nscreenshot-3"

        await handle_parse_image(USER, image, received_at=now, service=service)
        result = await handle_parse_image("user-2", image, received_at=now, service=service)

        assert result["status"] == "created"

    @pytest.mark.asyncio
    async def test_model_failure(self, service, model_client, uow_factory, now):
        model_client.complete.side_effect = GenerativeExtractionError("unreadable")
        image = b"\x89PNG\r\n\x1a\nscreenshot-4"

        result = await handle_parse_image(USER, image, received_at=now, service=service)

        assert result["status"] == "failed"
        with uow_factory() as uow:
            assert uow.processed_messages.find_by_image_hash(USER, result["image_hash"]) is None

    @pytest.mark.asyncio
    async def test_no_model_client(self, uow_factory, fast_settings):
        service = ShipmentSyncService(settings=fast_settings, unit_of_work=uow_factory)

        result = await handle_parse_image(USER, b"image", service=service)

        assert result["status"] == "failed"


class TestHandleStatusSweep:
    def test_promotes_stale(self, service, seed, now):
        seed(message_timestamp=now - timedelta(days=20))

        result = handle_status_sweep(USER, now=now, service=service)

        assert result == {"status": "completed", "promoted": 1}


class TestManualActions:
    def test_mark_delivered(self, service, seed):
        record = seed()

        result = handle_mark_delivered(USER, record.id, service=service)

        assert result["status"] == "updated"
        assert result["shipment"]["status_override"] == "delivered"
        assert result["shipment"]["status"] == "shipped"
        assert result["shipment"]["summary"] == MANUAL_DELIVERED_SUMMARY

    def test_mark_delivered_other_user(self, service, seed):
        record = seed()

        result = handle_mark_delivered("user-2", record.id, service=service)

        assert result["status"] == "not_found"

    def test_clear_override(self, service, seed):
        record = seed(status_override=ShipmentStatus.DELIVERED)

        result = handle_clear_override(USER, record.id, service=service)

        assert result["status"] == "updated"
        assert result["shipment"]["status_override"] is None

    def test_archive_hides_from_list(self, service, seed):
        record = seed()

        result = handle_archive(USER, record.id, service=service)

        assert result == {"status": "updated", "shipment_id": record.id, "archived": True}
        assert handle_list_shipments(USER, service=service)["shipments"] == []
        listed = handle_list_shipments(USER, include_archived=True, service=service)
        assert [s["id"] for s in listed["shipments"]] == [record.id]

    def test_override_fields_rekeys(self, service, seed):
        record = seed(
            identity_key="ord:A12345",
            tracking_number=None,
            order_number="A12345",
        )

        result = handle_override_fields(
            USER,
            record.id,
            {"tracking_number": "FMPC1234567890", "carrier": "Ekart"},
            service=service,
        )

        assert result["status"] == "updated"
        assert result["shipment"]["identity_key"] == "trk:FMPC1234567890"
        assert result["shipment"]["carrier"] == "Ekart"

    def test_override_fields_invalid(self, service, seed):
        record = seed()

        result = handle_override_fields(
            USER, record.id, {"summary": ["not", "a", "string"]}, service=service
        )

        assert result["status"] == "invalid"

    def test_override_fields_not_found(self, service):
        result = handle_override_fields(
            USER, str(uuid4()), {"carrier": "Ekart"}, service=service
        )

        assert result["status"] == "not_found"

    def test_delete_unlinks_ledger(self, service, seed, uow_factory, now):
        record = seed()
        with uow_factory() as uow:
            uow.processed_messages.create(_ledger(record, "m1", "Shipped", now))
            uow.commit()

        result = handle_delete_shipment(USER, record.id, service=service)

        assert result == {"status": "deleted", "shipment_id": record.id}
        with uow_factory() as uow:
            assert uow.shipments.get_by_id(record.id) is None
            entry = uow.processed_messages.get_by_message_id(USER, "m1")
        assert entry is not None
        assert entry.shipment_id is None

    def test_delete_other_user(self, service, seed):
        record = seed()

        result = handle_delete_shipment("user-2", record.id, service=service)

        assert result["status"] == "not_found"

    @pytest.mark.parametrize(
        "handler",
        [handle_mark_delivered, handle_clear_override, handle_archive, handle_delete_shipment],
    )
    def test_malformed_shipment_id(self, service, seed, handler):
        seed()

        result = handler(USER, "not-a-uuid", service=service)

        assert result == {"status": "not_found", "shipment_id": "not-a-uuid"}

    def test_override_fields_malformed_shipment_id(self, service):
        result = handle_override_fields(
            USER, "not-a-uuid", {"carrier": "Ekart"}, service=service
        )

        assert result == {"status": "not_found", "shipment_id": "not-a-uuid"}


class TestHandleListShipments:
    def test_includes_display_fields(self, service, seed):
        seed(status_override=ShipmentStatus.DELIVERED)

        result = handle_list_shipments(USER, service=service)

        [shipment] = result["shipments"]
        assert shipment["status"] == "shipped"
        assert shipment["effective_status"] == "delivered"
        assert shipment["status_label"] == "Delivered"
        assert shipment["tracking_url"] == (
            "https://www.delhivery.com/track/package/1490812345678"
        )

    def test_other_users_not_listed(self, service, seed):
        seed()
        assert handle_list_shipments("user-2", service=service)["shipments"] == []


class TestHandleRefreshSummary:
    @pytest.mark.asyncio
    async def test_summary_from_linked_messages(
        self, service, seed, model_client, uow_factory, now
    ):
        record = seed()
        with uow_factory() as uow:
            uow.processed_messages.create(
                _ledger(record, "m1", "Your package has shipped", now - timedelta(days=2))
            )
            uow.processed_messages.create(
                _ledger(record, "m2", "Your package is out for delivery", now)
            )
            uow.commit()
        model_client.complete.return_value = "Your Myntra package arrives today."

        result = await handle_refresh_summary(USER, record.id, service=service)

        assert result == {
            "status": "updated",
            "shipment_id": record.id,
            "summary": "Your Myntra package arrives today.",
        }
        prompt = model_client.complete.call_args.args[0]
        assert prompt.index("out for delivery") < prompt.index("has shipped")
        with uow_factory() as uow:
            assert uow.shipments.get_by_id(record.id).summary == (
                "Your Myntra package arrives today."
            )

    @pytest.mark.asyncio
    async def test_falls_back_to_raw_subject(self, service, seed, model_client):
        record = seed()
        model_client.complete.return_value = "Shipped and on its way."

        result = await handle_refresh_summary(USER, record.id, service=service)

        assert result["status"] == "updated"
        assert "Your package has shipped" in model_client.complete.call_args.args[0]

    @pytest.mark.asyncio
    async def test_model_failure(self, service, seed, model_client, uow_factory):
        record = seed()
        model_client.complete.side_effect = GenerativeExtractionError("timeout")

        result = await handle_refresh_summary(USER, record.id, service=service)

        assert result["status"] == "failed"
        with uow_factory() as uow:
            assert uow.shipments.get_by_id(record.id).summary == record.summary

    @pytest.mark.asyncio
    async def test_not_found(self, service):
        result = await handle_refresh_summary(USER, str(uuid4()), service=service)
        assert result["status"] == "not_found"

    @pytest.mark.asyncio
    async def test_malformed_shipment_id(self, service):
        result = await handle_refresh_summary(USER, "not-a-uuid", service=service)
        assert result["status"] == "not_found"

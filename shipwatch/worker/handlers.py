"""
Task handlers for background shipment jobs.

These handlers contain the job-level logic: they catch failures at the job
boundary and always return a status dict the caller can serialize.
"""

import logging
import os
from datetime import datetime
from uuid import UUID

from dotenv import load_dotenv

from shipwatch.agents.model_client import AgentModelClient, GenerativeExtractionError
from shipwatch.agents.shipment_extractor import (
    extract_from_image,
    generate_shipment_summary,
)
from shipwatch.config import DEFAULT_MODEL, PipelineSettings
from shipwatch.db import DatabaseConnection
from shipwatch.models.shipment import ShipmentStatus, ShipmentUpdateRequest
from shipwatch.models.source import SourceType
from shipwatch.utils.dates import utc_now
from shipwatch.utils.hash import compute_sha256
from shipwatch.utils.logging import setup_logging
from shipwatch.worker.mailbox import DEFAULT_MAILBOX_QUERY, Mailbox, MailboxAuthError
from shipwatch.worker.sync import ShipmentSyncService

logger = logging.getLogger(__name__)

_sync_service: ShipmentSyncService | None = None


def configure_worker(service_name: str = "shipwatch-worker") -> bool:
    """
    Load .env, set up logging and connect to the database.

    Returns:
        True if the database connection was initialized
    """
    load_dotenv()
    setup_logging(service_name)

    logger.info(f"Starting {service_name} (model: {DEFAULT_MODEL})")

    if not (os.getenv("DATABASE_URL") or os.getenv("INSTANCE_CONNECTION_NAME")):
        logger.warning(
            "Database not configured (DATABASE_URL / INSTANCE_CONNECTION_NAME not set)"
        )
        return False

    try:
        DatabaseConnection.initialize()
    except Exception:
        logger.exception("Failed to connect to the database")
        return False

    logger.info("Database connected")
    return True


def get_sync_service() -> ShipmentSyncService:
    """Shared service for this process, built from environment settings."""
    global _sync_service
    if _sync_service is None:
        settings = PipelineSettings.from_env()
        _sync_service = ShipmentSyncService(
            model_client=AgentModelClient(timeout=settings.generative_timeout),
            settings=settings,
        )
    return _sync_service


def _not_found(user_id: str, shipment_id: str) -> dict:
    logger.warning(f"Shipment {shipment_id} not found for user {user_id}")
    return {"status": "not_found", "shipment_id": shipment_id}


def _is_shipment_id(value: str) -> bool:
    try:
        UUID(str(value))
    except ValueError:
        return False
    return True


def _list_shipments(service: ShipmentSyncService, user_id: str) -> list[dict]:
    with service.unit_of_work() as uow:
        records = uow.shipments.list_by_user(user_id, include_archived=False)
    return [record.model_dump(mode="json") for record in records]


async def handle_shipment_sync(
    user_id: str,
    mailbox: Mailbox,
    query: str = DEFAULT_MAILBOX_QUERY,
    max_results: int = 50,
    service: ShipmentSyncService | None = None,
) -> dict:
    """
    Handle a mailbox sync job.

    Args:
        user_id: User to sync
        mailbox: The user's mailbox
        query: Mailbox search query
        max_results: Maximum messages to fetch
        service: Sync service (defaults to the shared one)

    Returns:
        dict: "completed" with the sync report, "reauthenticate" when the
        mailbox rejected the credentials, or "failed"
    """
    service = service or get_sync_service()

    try:
        report = await service.sync_user(
            user_id, mailbox, query=query, max_results=max_results
        )
    except MailboxAuthError as e:
        logger.warning(f"Mailbox needs re-authentication for user {user_id}: {e}")
        try:
            shipments = _list_shipments(service, user_id)
        except Exception:
            logger.exception(f"Failed to list shipments for {user_id}")
            shipments = []
        return {
            "status": "reauthenticate",
            "user_id": user_id,
            "error": str(e),
            "shipments": shipments,
        }
    except Exception as e:
        logger.exception(f"Shipment sync failed for user {user_id}")
        return {"status": "failed", "user_id": user_id, "error": str(e)}

    return {"status": "completed", **report.model_dump(mode="json")}


async def handle_parse_image(
    user_id: str,
    image_bytes: bytes,
    caption: str | None = None,
    received_at: datetime | None = None,
    service: ShipmentSyncService | None = None,
) -> dict:
    """
    Handle a screenshot ingestion job.

    The same image (by SHA-256) is only processed once per user.

    Returns:
        dict: "duplicate", "failed", or the reconcile outcome with the shipment
    """
    service = service or get_sync_service()
    image_hash = compute_sha256(image_bytes)

    with service.unit_of_work() as uow:
        existing = uow.processed_messages.find_by_image_hash(user_id, image_hash)
    if existing is not None:
        logger.info(f"Duplicate screenshot for user {user_id}: {image_hash[:12]}")
        return {
            "status": "duplicate",
            "image_hash": image_hash,
            "shipment_id": existing.shipment_id,
        }

    if service.model_client is None:
        return {
            "status": "failed",
            "image_hash": image_hash,
            "error": "No model client configured for screenshot extraction",
        }

    received_at = received_at or utc_now()
    try:
        extraction = await extract_from_image(
            image_bytes, service.model_client, received_at, caption=caption
        )
        outcome, record = service.reconcile_extraction(
            user_id,
            extraction,
            source_type=SourceType.SCREENSHOT,
            subject=extraction.raw_subject,
            message_date=received_at,
            image_hash=image_hash,
        )
    except GenerativeExtractionError as e:
        logger.warning(f"Screenshot extraction failed for user {user_id}: {e}")
        return {"status": "failed", "image_hash": image_hash, "error": str(e)}
    except Exception as e:
        logger.exception(f"Screenshot processing failed for user {user_id}")
        return {"status": "failed", "image_hash": image_hash, "error": str(e)}

    logger.info(
        f"Processed screenshot for user {user_id}: {outcome.value}",
        extra={
            "json_fields": {
                "user_id": user_id,
                "image_hash": image_hash,
                "outcome": outcome.value,
            }
        },
    )
    return {
        "status": outcome.value,
        "image_hash": image_hash,
        "shipment_id": record.id if record else None,
        "shipment": record.model_dump(mode="json") if record else None,
    }


def handle_status_sweep(
    user_id: str | None = None,
    now: datetime | None = None,
    service: ShipmentSyncService | None = None,
) -> dict:
    """Promote in-flight shipments by message age (one user or everyone)."""
    service = service or get_sync_service()
    try:
        promoted = service.run_status_sweep(user_id, now=now)
    except Exception as e:
        logger.exception("Status sweep failed")
        return {"status": "failed", "error": str(e)}

    logger.info(f"Status sweep promoted {promoted} shipments")
    return {"status": "completed", "promoted": promoted}


def handle_mark_delivered(
    user_id: str, shipment_id: str, service: ShipmentSyncService | None = None
) -> dict:
    """Manually mark a shipment delivered; automated updates can't undo it."""
    service = service or get_sync_service()
    if not _is_shipment_id(shipment_id):
        return _not_found(user_id, shipment_id)
    with service.unit_of_work() as uow:
        if not uow.shipments.set_status_override(
            user_id, shipment_id, ShipmentStatus.DELIVERED
        ):
            return _not_found(user_id, shipment_id)
        uow.commit()
        record = uow.shipments.get_for_user(user_id, shipment_id)

    return {"status": "updated", "shipment": record.model_dump(mode="json")}


def handle_clear_override(
    user_id: str, shipment_id: str, service: ShipmentSyncService | None = None
) -> dict:
    service = service or get_sync_service()
    if not _is_shipment_id(shipment_id):
        return _not_found(user_id, shipment_id)
    with service.unit_of_work() as uow:
        if not uow.shipments.clear_status_override(user_id, shipment_id):
            return _not_found(user_id, shipment_id)
        uow.commit()
        record = uow.shipments.get_for_user(user_id, shipment_id)

    return {"status": "updated", "shipment": record.model_dump(mode="json")}


def handle_archive(
    user_id: str,
    shipment_id: str,
    archived: bool = True,
    service: ShipmentSyncService | None = None,
) -> dict:
    service = service or get_sync_service()
    if not _is_shipment_id(shipment_id):
        return _not_found(user_id, shipment_id)
    with service.unit_of_work() as uow:
        if not uow.shipments.set_archived(user_id, shipment_id, archived):
            return _not_found(user_id, shipment_id)
        uow.commit()

    return {"status": "updated", "shipment_id": shipment_id, "archived": archived}


def handle_override_fields(
    user_id: str,
    shipment_id: str,
    fields: dict,
    service: ShipmentSyncService | None = None,
) -> dict:
    """
    Manually overwrite shipment fields.

    Args:
        fields: Any of product_name, merchant, carrier, tracking_number,
            order_number, expected_delivery, summary

    Returns:
        dict: "updated" with the shipment, "invalid" or "not_found"
    """
    service = service or get_sync_service()
    try:
        request = ShipmentUpdateRequest.model_validate(fields)
    except ValueError as e:
        return {"status": "invalid", "shipment_id": shipment_id, "error": str(e)}
    if not _is_shipment_id(shipment_id):
        return _not_found(user_id, shipment_id)

    with service.unit_of_work() as uow:
        record = uow.shipments.update_fields(user_id, shipment_id, request)
        if record is None:
            return _not_found(user_id, shipment_id)
        uow.commit()

    return {"status": "updated", "shipment": record.model_dump(mode="json")}


def handle_delete_shipment(
    user_id: str, shipment_id: str, service: ShipmentSyncService | None = None
) -> dict:
    service = service or get_sync_service()
    if not _is_shipment_id(shipment_id):
        return _not_found(user_id, shipment_id)
    with service.unit_of_work() as uow:
        if not uow.shipments.delete_for_user(user_id, shipment_id):
            return _not_found(user_id, shipment_id)
        uow.commit()

    logger.info(f"Deleted shipment {shipment_id} for user {user_id}")
    return {"status": "deleted", "shipment_id": shipment_id}


def handle_list_shipments(
    user_id: str,
    include_archived: bool = False,
    service: ShipmentSyncService | None = None,
) -> dict:
    service = service or get_sync_service()
    with service.unit_of_work() as uow:
        records = uow.shipments.list_by_user(user_id, include_archived=include_archived)

    return {
        "status": "ok",
        "user_id": user_id,
        "shipments": [
            {
                **record.model_dump(mode="json"),
                "effective_status": record.effective_status.value,
                "status_label": record.status_label,
                "tracking_url": record.tracking_url,
            }
            for record in records
        ],
    }


async def handle_refresh_summary(
    user_id: str, shipment_id: str, service: ShipmentSyncService | None = None
) -> dict:
    """
    Regenerate a shipment's summary from every message linked to it.

    Returns:
        dict: "updated" with the new summary, "not_found", or "failed"
    """
    service = service or get_sync_service()
    if not _is_shipment_id(shipment_id):
        return _not_found(user_id, shipment_id)
    if service.model_client is None:
        return {
            "status": "failed",
            "shipment_id": shipment_id,
            "error": "No model client configured for summaries",
        }

    with service.unit_of_work() as uow:
        record = uow.shipments.get_for_user(user_id, shipment_id)
        if record is None:
            return _not_found(user_id, shipment_id)
        entries = uow.processed_messages.list_for_shipment(user_id, shipment_id)

    updates = [(entry.message_date, entry.subject) for entry in entries if entry.subject]
    if not updates and record.raw_subject:
        updates = [(record.message_timestamp, record.raw_subject)]
    if not updates:
        return {
            "status": "failed",
            "shipment_id": shipment_id,
            "error": "No messages linked to this shipment",
        }

    try:
        summary = await generate_shipment_summary(
            updates, record.effective_status, service.model_client
        )
    except GenerativeExtractionError as e:
        logger.warning(f"Summary refresh failed for shipment {shipment_id}: {e}")
        return {"status": "failed", "shipment_id": shipment_id, "error": str(e)}

    with service.unit_of_work() as uow:
        uow.shipments.apply_updates(
            shipment_id, {"summary": summary, "updated_at": utc_now()}
        )
        uow.commit()

    return {"status": "updated", "shipment_id": shipment_id, "summary": summary}

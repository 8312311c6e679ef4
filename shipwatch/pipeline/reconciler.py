"""
Shipment reconciliation.

Turns normalized extraction results into persisted shipment records: one
record per (user, identity key), status that only moves forward, and fields
that are filled once and never overwritten by later automated extractions.
"""

import logging
import re
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Hashable, Iterator, NamedTuple, Optional
from uuid import uuid4

from shipwatch.config import PipelineSettings
from shipwatch.db.repositories.shipment import ShipmentRepository
from shipwatch.db.repositories.source import ProcessedMessageRepository
from shipwatch.models.message import ExtractionResult
from shipwatch.models.shipment import (
    ShipmentRecord,
    ShipmentStatus,
    identity_key_for,
)
from shipwatch.pipeline.normalizer import normalize_status
from shipwatch.pipeline.status_inference import infer_status
from shipwatch.utils.dates import ensure_utc, utc_now

logger = logging.getLogger(__name__)

# Subject wording strong enough to track a message with no identifier
STRONG_SUBJECT_SIGNAL = re.compile(
    r"\b(?:shipment|shipped|dispatched|out for delivery|delivered|in transit|tracking)\b",
    re.I,
)

# Filled once, never overwritten by automated merges
FILL_ONLY_FIELDS = (
    "tracking_number",
    "order_number",
    "carrier",
    "product_name",
    "merchant",
    "expected_delivery",
    "raw_subject",
    "raw_sender",
)


class KeyedLocks:
    """
    Per-key mutexes.

    Several keys can be held at once; they are always acquired in sorted
    order so two writers holding overlapping key sets cannot deadlock.
    Entries are dropped once no holder or waiter remains.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: dict[Hashable, list] = {}  # key -> [lock, users]

    def _checkout(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
            return entry[0]

    def _release(self, key: Hashable):
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: Hashable) -> Iterator[None]:
        ordered = sorted(set(keys), key=repr)
        acquired = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                lock.acquire()
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._release(key)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class ReconcileOutcome(NamedTuple):
    """Result of reconciling one extraction."""

    record: ShipmentRecord
    created: bool
    changed: bool
    absorbed_id: Optional[str] = None


def is_reconcilable(extraction: ExtractionResult) -> bool:
    """An identifier or a strong subject signal is needed to track a message."""
    if extraction.has_identifier:
        return True
    return bool(
        extraction.raw_subject and STRONG_SUBJECT_SIGNAL.search(extraction.raw_subject)
    )


def _status_should_change(
    current: ShipmentStatus,
    incoming: ShipmentStatus,
    incoming_is_newer: bool,
) -> bool:
    if ShipmentStatus.can_advance(current, incoming):
        return True
    # Same rank (in_transit vs exception): the newer message wins
    return incoming.rank == current.rank and incoming != current and incoming_is_newer


def merge_extraction(
    existing: ShipmentRecord,
    incoming: ExtractionResult,
    now: Optional[datetime] = None,
) -> dict:
    """
    Merge a normalized extraction into an existing record.

    Merge strategy:
    - Identifiers, carrier, product, merchant, expected delivery and the raw
      subject/sender are filled only if empty
    - Status moves up in rank, or sideways when the message is not older;
      never while a status override is set
    - Summary is replaced by a longer one (or one reporting a status advance)
      from a source at least as trusted as the record
    - Extraction method upgrades to the most trusted seen
    - Message timestamp advances to the newest message

    Args:
        existing: Persisted record
        incoming: Normalized extraction for the same shipment
        now: Update time

    Returns:
        Dictionary of fields to update; always holds updated_at, so a merge
        that changes nothing has length 1
    """
    now = ensure_utc(now) if now is not None else utc_now()
    updates: dict[str, Any] = {"updated_at": now}

    for field in FILL_ONLY_FIELDS:
        value = getattr(incoming, field)
        if value and not getattr(existing, field):
            updates[field] = value

    incoming_ts = ensure_utc(incoming.message_timestamp)
    incoming_is_newer = incoming_ts >= existing.message_timestamp

    status_advanced = False
    incoming_status = incoming.shipment_status
    if existing.status_override is None and incoming_status is not None:
        if _status_should_change(existing.status, incoming_status, incoming_is_newer):
            updates["status"] = incoming_status
            status_advanced = True

    trusted_enough = incoming.extraction_method.trust >= existing.extraction_method.trust
    summary = incoming.summary or ""
    if summary and summary != existing.summary and trusted_enough:
        longer = len(summary) > len(existing.summary or "")
        if longer or status_advanced:
            updates["summary"] = summary

    if incoming.extraction_method.trust > existing.extraction_method.trust:
        updates["extraction_method"] = incoming.extraction_method

    if incoming_ts > existing.message_timestamp:
        updates["message_timestamp"] = incoming_ts

    return updates


def absorb_duplicate(primary: ShipmentRecord, duplicate: ShipmentRecord) -> dict:
    """
    Fold a duplicate record into the primary one.

    Same field rules as merge_extraction, applied record to record. A user
    override or archive flag on either record survives.

    Returns:
        Dictionary of fields to update on the primary (no updated_at)
    """
    updates: dict[str, Any] = {}

    for field in FILL_ONLY_FIELDS:
        value = getattr(duplicate, field)
        if value and not getattr(primary, field):
            updates[field] = value

    if primary.status_override is None and duplicate.status_override is not None:
        updates["status_override"] = duplicate.status_override

    if ShipmentStatus.can_advance(primary.status, duplicate.status):
        updates["status"] = duplicate.status

    if duplicate.summary and len(duplicate.summary) > len(primary.summary or ""):
        if duplicate.extraction_method.trust >= primary.extraction_method.trust:
            updates["summary"] = duplicate.summary

    if duplicate.extraction_method.trust > primary.extraction_method.trust:
        updates["extraction_method"] = duplicate.extraction_method

    if duplicate.message_timestamp > primary.message_timestamp:
        updates["message_timestamp"] = duplicate.message_timestamp

    if duplicate.created_at < primary.created_at:
        updates["created_at"] = duplicate.created_at

    if duplicate.archived and not primary.archived:
        updates["archived"] = True

    return updates


class ShipmentReconciler:
    """
    Per-user, per-identity upsert with monotonic status.

    Repositories are bound to one session; create a reconciler per unit of
    work and share one KeyedLocks between them.
    """

    def __init__(
        self,
        repository: ShipmentRepository,
        locks: Optional[KeyedLocks] = None,
        ledger: Optional[ProcessedMessageRepository] = None,
        settings: Optional[PipelineSettings] = None,
    ):
        self.repository = repository
        self.locks = locks or KeyedLocks()
        self.ledger = ledger
        self.settings = settings or PipelineSettings()

    def _infer(self, extraction: ExtractionResult, now: datetime) -> ExtractionResult:
        status = infer_status(
            extraction.message_timestamp,
            normalize_status(extraction.status),
            now=now,
            delivered_after_days=self.settings.delivered_after_days,
            in_transit_after_days=self.settings.in_transit_after_days,
        )
        return extraction.model_copy(update={"status": status})

    def _lock_keys(self, user_id: str, extraction: ExtractionResult) -> list[tuple]:
        keys = [
            (user_id, identity_key_for(None, None, extraction.message_id)),
        ]
        if extraction.tracking_number:
            keys.append((user_id, identity_key_for(extraction.tracking_number, None, "")))
        if extraction.order_number:
            keys.append((user_id, identity_key_for(None, extraction.order_number, "")))
        return keys

    def _find_existing(
        self, user_id: str, extraction: ExtractionResult
    ) -> tuple[Optional[ShipmentRecord], Optional[ShipmentRecord]]:
        """
        Find the record for an extraction.

        Returns:
            (primary, duplicate): duplicate is a second, distinct record proven
            to be the same shipment (matched by order number while the
            primary matched by tracking number)
        """
        tracking_number = extraction.tracking_number
        order_number = extraction.order_number

        by_tracking = None
        if tracking_number:
            by_tracking = self.repository.get_by_identity(
                user_id, identity_key_for(tracking_number, None, "")
            ) or self.repository.find_by_tracking_number(user_id, tracking_number)

        by_order = None
        if order_number:
            candidates = [
                record
                for record in self.repository.find_by_order_number(user_id, order_number)
                if not tracking_number
                or record.tracking_number in (None, tracking_number)
            ]
            if candidates:
                by_order = candidates[0]

        if by_tracking is not None:
            if by_order is not None and by_order.id != by_tracking.id:
                return by_tracking, by_order
            return by_tracking, None

        if by_order is not None:
            return by_order, None

        if not tracking_number and not order_number:
            by_message = self.repository.get_by_identity(
                user_id, identity_key_for(None, None, extraction.message_id)
            )
            return by_message, None

        return None, None

    def _create(
        self, user_id: str, extraction: ExtractionResult, now: datetime
    ) -> ShipmentRecord:
        record = ShipmentRecord(
            id=str(uuid4()),
            user_id=user_id,
            identity_key=identity_key_for(
                extraction.tracking_number,
                extraction.order_number,
                extraction.message_id,
            ),
            tracking_number=extraction.tracking_number,
            carrier=extraction.carrier,
            product_name=extraction.product_name,
            merchant=extraction.merchant,
            order_number=extraction.order_number,
            expected_delivery=extraction.expected_delivery,
            summary=extraction.summary or None,
            status=extraction.shipment_status or ShipmentStatus.IN_TRANSIT,
            message_timestamp=extraction.message_timestamp,
            source_message_id=extraction.message_id,
            extraction_method=extraction.extraction_method,
            raw_subject=extraction.raw_subject,
            raw_sender=extraction.raw_sender,
            created_at=now,
            updated_at=now,
        )
        return self.repository.create(record)

    def reconcile(
        self,
        user_id: str,
        extraction: ExtractionResult,
        now: Optional[datetime] = None,
    ) -> Optional[ReconcileOutcome]:
        """
        Create or update the shipment described by an extraction.

        Args:
            user_id: Owner of the shipment
            extraction: Normalized extraction result
            now: Reference time for age inference and timestamps

        Returns:
            ReconcileOutcome, or None when the extraction is too weak to track
        """
        if not is_reconcilable(extraction):
            return None

        now = ensure_utc(now) if now is not None else utc_now()
        extraction = self._infer(extraction, now)

        with self.locks.hold(*self._lock_keys(user_id, extraction)):
            primary, duplicate = self._find_existing(user_id, extraction)

            if primary is None:
                record = self._create(user_id, extraction, now)
                logger.info(
                    "Created shipment",
                    extra={
                        "json_fields": {
                            "user_id": user_id,
                            "shipment_id": record.id,
                            "identity_key": record.identity_key,
                            "status": record.status.value,
                        }
                    },
                )
                return ReconcileOutcome(record=record, created=True, changed=True)

            updates: dict[str, Any] = {}
            if duplicate is not None:
                updates.update(absorb_duplicate(primary, duplicate))
                if self.ledger is not None:
                    self.ledger.repoint_shipment(duplicate.id, primary.id)
                self.repository.delete_by_id(duplicate.id)
                logger.info(
                    "Collapsed duplicate shipment",
                    extra={
                        "json_fields": {
                            "user_id": user_id,
                            "kept": primary.id,
                            "absorbed": duplicate.id,
                        }
                    },
                )

            merged = primary.model_copy(update=updates)
            merge_updates = merge_extraction(merged, extraction, now)
            updates.update(merge_updates)
            if duplicate is None and len(merge_updates) == 1:
                return ReconcileOutcome(record=primary, created=False, changed=False)

            merged = primary.model_copy(update=updates)
            identity_key = identity_key_for(
                merged.tracking_number, merged.order_number, merged.source_message_id
            )
            if identity_key != primary.identity_key:
                holder = self.repository.get_by_identity(user_id, identity_key)
                if holder is None:
                    updates["identity_key"] = identity_key

            self.repository.apply_updates(primary.id, updates)
            record = self.repository.get_by_id(primary.id)
            assert record is not None

            return ReconcileOutcome(
                record=record,
                created=False,
                changed=True,
                absorbed_id=duplicate.id if duplicate is not None else None,
            )

"""
Batch shipment sync.

Drives the pipeline over a user's messages: pre-filter, pattern extraction,
throttled generative fallback, normalization and reconciliation, one unit of
work per message so a failure only costs that message.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Optional
from uuid import uuid4

from shipwatch.agents.model_client import (
    GenerativeExtractionError,
    ModelClient,
    RateLimitedError,
)
from shipwatch.agents.shipment_extractor import combine_results, extract_generative
from shipwatch.config import PipelineSettings
from shipwatch.db.unit_of_work import UnitOfWork
from shipwatch.models.message import ExtractionResult, RawMessage
from shipwatch.models.shipment import ExtractionMethod, ShipmentRecord
from shipwatch.models.source import ProcessedMessage, ProcessingOutcome, SourceType
from shipwatch.models.sync import SyncReport
from shipwatch.pipeline.deterministic import extract_deterministic, needs_generative
from shipwatch.pipeline.normalizer import normalize
from shipwatch.pipeline.reconciler import KeyedLocks, ReconcileOutcome, ShipmentReconciler
from shipwatch.pipeline.status_inference import sweep_statuses
from shipwatch.utils.dates import ensure_utc, utc_now
from shipwatch.utils.email_filter import classify
from shipwatch.utils.html import html_to_text
from shipwatch.worker.mailbox import DEFAULT_MAILBOX_QUERY, Mailbox

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class GenerativeThrottle:
    """Enforces a minimum delay between consecutive model calls."""

    def __init__(
        self,
        min_interval: float,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval
        self._sleep = sleep
        self._clock = clock
        self._last_call: Optional[float] = None

    async def wait(self):
        if self._last_call is not None:
            remaining = self._last_call + self.min_interval - self._clock()
            if remaining > 0:
                await self._sleep(remaining)
        self._last_call = self._clock()


class _BatchState:
    """Generative fallback bookkeeping for one batch."""

    def __init__(self, report: SyncReport, throttle: GenerativeThrottle):
        self.report = report
        self.throttle = throttle
        self.fallback_enabled = True
        self.consecutive_failures = 0

    def disable_fallback(self, reason: str):
        self.fallback_enabled = False
        self.report.reduced_accuracy = True
        logger.warning(
            "Generative fallback disabled for the rest of the batch",
            extra={
                "json_fields": {"user_id": self.report.user_id, "reason": reason}
            },
        )


def _body_snippet(message: RawMessage, length: int) -> str:
    body = message.body_text or (
        html_to_text(message.body_html) if message.body_html else ""
    )
    return body[:length]


class ShipmentSyncService:
    """
    Runs shipment syncs.

    Syncs for one user are serialized; different users run concurrently.

    Usage:
        service = ShipmentSyncService(model_client=AgentModelClient())
        report = await service.sync_user("usr_123", mailbox)
    """

    def __init__(
        self,
        model_client: Optional[ModelClient] = None,
        settings: Optional[PipelineSettings] = None,
        unit_of_work: Callable[[], UnitOfWork] = UnitOfWork,
        locks: Optional[KeyedLocks] = None,
        sleep: SleepFn = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.model_client = model_client
        self.settings = settings or PipelineSettings()
        self.unit_of_work = unit_of_work
        self.locks = locks or KeyedLocks()
        self._sleep = sleep
        self._clock = clock
        self._user_locks: dict[str, list] = {}  # user_id -> [lock, users]

    @asynccontextmanager
    async def _user_lock(self, user_id: str) -> AsyncIterator[None]:
        entry = self._user_locks.setdefault(user_id, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._user_locks[user_id]

    async def sync_user(
        self,
        user_id: str,
        mailbox: Mailbox,
        query: str = DEFAULT_MAILBOX_QUERY,
        max_results: int = 50,
        now: Optional[datetime] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncReport:
        """
        Fetch a user's messages and reconcile them into shipments.

        Raises:
            MailboxAuthError: The mailbox needs re-authentication; nothing
                from this attempt was written
        """
        async with self._user_lock(user_id):
            messages = await mailbox.search_messages(query, max_results)
            logger.info(
                "Fetched messages for sync",
                extra={"json_fields": {"user_id": user_id, "fetched": len(messages)}},
            )
            return await self._process_batch(user_id, messages, now, cancel_event)

    async def process_messages(
        self,
        user_id: str,
        messages: list[RawMessage],
        now: Optional[datetime] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SyncReport:
        """Reconcile an already-fetched list of messages for a user."""
        async with self._user_lock(user_id):
            return await self._process_batch(user_id, messages, now, cancel_event)

    async def _process_batch(
        self,
        user_id: str,
        messages: list[RawMessage],
        now: Optional[datetime],
        cancel_event: Optional[asyncio.Event],
    ) -> SyncReport:
        now = ensure_utc(now) if now is not None else None
        report = SyncReport(user_id=user_id, fetched=len(messages))
        state = _BatchState(
            report,
            GenerativeThrottle(
                self.settings.generative_min_interval, self._sleep, self._clock
            ),
        )

        # Oldest first; sorted() is stable for equal timestamps
        ordered = sorted(messages, key=lambda m: m.timestamp)

        with self.unit_of_work() as uow:
            handled = uow.processed_messages.processed_ids(
                user_id, [m.message_id for m in ordered]
            )

        for message in ordered:
            if cancel_event is not None and cancel_event.is_set():
                report.cancelled = True
                logger.info(
                    "Sync cancelled",
                    extra={"json_fields": {"user_id": user_id}},
                )
                break

            if message.message_id in handled:
                report.already_processed += 1
                continue
            handled.add(message.message_id)

            try:
                outcome = await self._process_message(user_id, message, state, now)
            except Exception:
                report.failed += 1
                logger.exception(
                    f"Failed to process message {message.message_id}",
                    extra={
                        "json_fields": {
                            "user_id": user_id,
                            "message_id": message.message_id,
                        }
                    },
                )
                continue

            if outcome is ProcessingOutcome.NOT_SHIPPING:
                report.not_shipping += 1
            elif outcome is ProcessingOutcome.SKIPPED:
                report.skipped += 1
            elif outcome is ProcessingOutcome.CREATED:
                report.created += 1
            elif outcome is ProcessingOutcome.UPDATED:
                report.updated += 1
            else:
                report.unchanged += 1

        report.shipments = self._current_shipments(user_id, report)

        logger.info(
            "Sync batch complete",
            extra={
                "json_fields": report.model_dump(mode="json", exclude={"shipments"})
            },
        )
        return report

    def _current_shipments(self, user_id: str, report: SyncReport) -> list[ShipmentRecord]:
        try:
            with self.unit_of_work() as uow:
                return uow.shipments.list_by_user(user_id, include_archived=False)
        except Exception as e:
            logger.exception(f"Failed to list shipments for {user_id}")
            report.error = f"Could not load shipments: {e}"
            return []

    async def _extract(self, message: RawMessage, state: _BatchState) -> ExtractionResult:
        deterministic = extract_deterministic(message)

        if (
            self.model_client is None
            or not state.fallback_enabled
            or not needs_generative(deterministic)
        ):
            return deterministic

        fallback = deterministic.model_copy(
            update={"extraction_method": ExtractionMethod.FALLBACK}
        )

        await state.throttle.wait()
        state.report.generative_calls += 1
        try:
            generative = await extract_generative(
                message,
                self.model_client,
                content_char_budget=self.settings.content_char_budget,
            )
        except RateLimitedError as e:
            state.report.generative_failures += 1
            logger.warning(
                f"Model rate limited, backing off {self.settings.rate_limit_cooldown}s: {e}"
            )
            await self._sleep(self.settings.rate_limit_cooldown)
            state.disable_fallback("rate_limited")
            return fallback
        except GenerativeExtractionError as e:
            state.report.generative_failures += 1
            state.consecutive_failures += 1
            logger.warning(
                f"Generative extraction failed for {message.message_id}: {e}",
                extra={
                    "json_fields": {
                        "message_id": message.message_id,
                        "consecutive_failures": state.consecutive_failures,
                    }
                },
            )
            if state.consecutive_failures >= self.settings.max_consecutive_failures:
                state.disable_fallback("consecutive_failures")
            return fallback

        state.consecutive_failures = 0
        return combine_results(generative, deterministic)

    async def _process_message(
        self,
        user_id: str,
        message: RawMessage,
        state: _BatchState,
        now: Optional[datetime],
    ) -> ProcessingOutcome:
        prefilter = classify(
            message.subject,
            message.sender,
            _body_snippet(message, self.settings.body_snippet_length),
            min_matches=self.settings.prefilter_min_matches,
        )
        ledger_fields = {
            "source_type": SourceType.EMAIL,
            "subject": message.subject or None,
            "sender": message.sender or None,
            "message_date": message.timestamp,
            "matched_keywords": prefilter.matched_keywords,
        }

        if not prefilter.is_likely:
            with self.unit_of_work() as uow:
                uow.processed_messages.create(
                    _ledger_entry(
                        user_id,
                        message.message_id,
                        ProcessingOutcome.NOT_SHIPPING,
                        None,
                        now,
                        **ledger_fields,
                    )
                )
                uow.commit()
            return ProcessingOutcome.NOT_SHIPPING

        extraction = await self._extract(message, state)
        outcome, _ = self.reconcile_extraction(user_id, extraction, now, **ledger_fields)

        logger.info(
            f"Processed message {message.message_id}: {outcome.value}",
            extra={
                "json_fields": {
                    "user_id": user_id,
                    "message_id": message.message_id,
                    "outcome": outcome.value,
                    "method": extraction.extraction_method.value,
                    "matched_keywords": prefilter.matched_keywords[:5],
                }
            },
        )
        return outcome

    def reconcile_extraction(
        self,
        user_id: str,
        extraction: ExtractionResult,
        now: Optional[datetime] = None,
        **ledger_fields: Any,
    ) -> tuple[ProcessingOutcome, Optional[ShipmentRecord]]:
        """
        Normalize an extraction, reconcile it and record it in the ledger.

        Runs in its own unit of work; nothing is written unless both the
        shipment change and the ledger entry commit.

        Args:
            user_id: Owner of the shipment
            extraction: Raw extraction (pattern, generative or fallback)
            now: Reference time
            **ledger_fields: Extra ProcessedMessage fields (subject, image_hash, ...)

        Returns:
            (outcome, shipment) where shipment is None when skipped
        """
        normalized = normalize(extraction, self.settings.summary_min_length)

        with self.unit_of_work() as uow:
            reconciler = ShipmentReconciler(
                uow.shipments,
                locks=self.locks,
                ledger=uow.processed_messages,
                settings=self.settings,
            )
            result = reconciler.reconcile(user_id, normalized, now=now)
            outcome = _outcome_for(result)
            record = result.record if result is not None else None
            uow.processed_messages.create(
                _ledger_entry(
                    user_id,
                    normalized.message_id,
                    outcome,
                    record.id if record is not None else None,
                    now,
                    **ledger_fields,
                )
            )
            uow.commit()

        return outcome, record

    def run_status_sweep(
        self, user_id: Optional[str] = None, now: Optional[datetime] = None
    ) -> int:
        """
        Promote stale in-flight shipments by age.

        Returns:
            Number of shipments promoted
        """
        now = ensure_utc(now) if now is not None else utc_now()
        with self.unit_of_work() as uow:
            changes = sweep_statuses(
                uow.shipments.list_in_flight(user_id),
                now=now,
                delivered_after_days=self.settings.delivered_after_days,
                in_transit_after_days=self.settings.in_transit_after_days,
            )
            for record, status in changes:
                uow.shipments.update_status(record.id, status, now=now)
            uow.commit()
        return len(changes)


def _ledger_entry(
    user_id: str,
    message_id: str,
    outcome: ProcessingOutcome,
    shipment_id: Optional[str],
    now: Optional[datetime],
    **fields: Any,
) -> ProcessedMessage:
    return ProcessedMessage(
        id=str(uuid4()),
        user_id=user_id,
        message_id=message_id,
        outcome=outcome,
        shipment_id=shipment_id,
        created_at=now or utc_now(),
        **fields,
    )


def _outcome_for(result: Optional[ReconcileOutcome]) -> ProcessingOutcome:
    if result is None:
        return ProcessingOutcome.SKIPPED
    if result.created:
        return ProcessingOutcome.CREATED
    if result.changed:
        return ProcessingOutcome.UPDATED
    return ProcessingOutcome.UNCHANGED

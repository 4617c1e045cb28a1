"""
Webhook processing job.

Loads a stored webhook, resolves its identity, reconciles the call, and
schedules follow-up work:

- a finished call with a transcript is queued for extraction
- a finished call without one gets transcript polling scheduled

A failure marks the WebhookEvent failed with the error text and is
re-raised so the job is recorded as failed too.
"""

import logging
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.calls.reconciler import CallStateReconciler, ReconcileResult
from app.calls.state import is_terminal, status_from_event
from app.extraction.pipeline import enqueue_extraction
from app.shared.database import DatabaseManager, get_database_manager
from app.shared.logging import get_logger, log_with_context
from app.transcripts.scheduler import BackoffPolicy, TranscriptScheduler
from app.webhooks.events import CallEvent, VoiceEventType, parse_webhook_payload
from app.webhooks.identity import IdentityResolver
from app.webhooks.models import WebhookEventStatus
from app.webhooks.store import EventStore

logger = get_logger(__name__)


class WebhookHandler:
    """Job handler for the webhooks queue."""

    def __init__(
        self,
        db_manager: DatabaseManager | None = None,
        reconciler_factory: Callable[[AsyncSession], CallStateReconciler] = CallStateReconciler,
        transcript_policy: BackoffPolicy | None = None,
    ) -> None:
        self._db = db_manager or get_database_manager()
        self._reconciler_factory = reconciler_factory
        self._transcript_policy = transcript_policy

    async def __call__(self, payload: dict[str, Any]) -> None:
        await self.process(UUID(str(payload["webhook_event_id"])))

    async def process(self, webhook_event_id: UUID) -> ReconcileResult | None:
        try:
            return await self._process(webhook_event_id)
        except Exception as e:
            logger.exception(
                "Webhook processing failed",
                extra={"webhook_event_id": str(webhook_event_id)},
            )
            async with self._db.session() as session:
                await EventStore(session).mark_failed(webhook_event_id, f"{type(e).__name__}: {e}")
            raise

    async def _process(self, webhook_event_id: UUID) -> ReconcileResult | None:
        async with self._db.session() as session:
            store = EventStore(session)
            stored = await store.get(webhook_event_id)
            if stored is None:
                logger.warning("Webhook event not found", extra={"webhook_event_id": str(webhook_event_id)})
                return None
            if stored.status == WebhookEventStatus.PROCESSED:
                logger.info("Webhook event already processed", extra={"webhook_event_id": str(webhook_event_id)})
                return None

            event = parse_webhook_payload(stored.payload)
            identity = await IdentityResolver(session).resolve(event)

            result: ReconcileResult | None = None
            if event.event_type == VoiceEventType.UNKNOWN:
                logger.info("Unrecognized event type stored without side effects", extra={"event_type": event.raw_type})
            else:
                result = await self._reconciler_factory(session).apply(event, identity)
                if result is not None:
                    await schedule_followups(session, event, result, self._transcript_policy)

            await store.mark_processed(webhook_event_id, identity.tenant_id)

            log_with_context(
                logger,
                logging.INFO,
                "Webhook processed",
                webhook_event_id=str(webhook_event_id),
                event_type=event.raw_type,
                tenant_id=str(identity.tenant_id) if identity.tenant_id else None,
                identity_source=identity.source.value,
                call_id=str(result.record.id) if result else None,
                status=result.record.status.value if result else None,
            )
            return result


async def schedule_followups(
    session: AsyncSession,
    event: CallEvent,
    result: ReconcileResult,
    transcript_policy: BackoffPolicy | None = None,
) -> None:
    """Queue extraction for a finished transcript or polling for a missing one."""
    record = result.record

    if record.transcript and (result.is_terminal or event.event_type == VoiceEventType.TRANSCRIPT_COMPLETE):
        await enqueue_extraction(session, record.id, record.transcript)
        return

    event_reports_end = is_terminal(status_from_event(event))
    if result.is_terminal and event_reports_end and not record.transcript:
        if record.external_id is None:
            logger.warning(
                "Call ended without transcript or provider id; cannot poll",
                extra={"call_id": str(record.id)},
            )
            return
        await TranscriptScheduler(session, transcript_policy).schedule(
            record.id, record.external_id, record.tenant_id, attempt=1
        )

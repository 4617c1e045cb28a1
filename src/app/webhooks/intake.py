"""
Post-acknowledgement intake.

Runs after the HTTP response has been sent: appends the payload to the
event store and enqueues its processing job in the same transaction, so an
accepted event is either durably queued or visibly absent.
"""

from typing import Any
from uuid import UUID

from app.jobs.queue import WEBHOOK_QUEUE, JobQueue
from app.shared.database import DatabaseManager, get_database_manager
from app.shared.logging import correlation_scope, get_logger
from app.webhooks.events import CallEvent
from app.webhooks.store import EventStore

logger = get_logger(__name__)


class WebhookIntake:
    """Durably records accepted webhooks and schedules their processing."""

    def __init__(self, db_manager: DatabaseManager | None = None) -> None:
        self._db = db_manager or get_database_manager()

    async def accept(
        self,
        event: CallEvent,
        payload: dict[str, Any],
        event_key: str,
        tenant_id: UUID | None = None,
    ) -> UUID | None:
        """Store the event and enqueue it.

        Returns:
            The stored WebhookEvent id, or None for a duplicate or a failed write.
        """
        with correlation_scope(event_key):
            try:
                async with self._db.session() as session:
                    stored = await EventStore(session).append(event, payload, event_key, tenant_id)
                    if stored is None:
                        return None
                    await JobQueue(session).enqueue(
                        WEBHOOK_QUEUE,
                        {"webhook_event_id": str(stored.id), "correlation_id": event_key},
                        dedupe_key=f"webhook:{event_key}",
                    )
                    logger.info(
                        "Webhook stored",
                        extra={
                            "webhook_event_id": str(stored.id),
                            "event_type": event.raw_type,
                            "external_call_id": event.external_call_id,
                        },
                    )
                    return stored.id
            except Exception:
                # The provider already has its 200; the failure is only visible here
                logger.exception(
                    "Failed to store webhook",
                    extra={"event_type": event.raw_type, "external_call_id": event.external_call_id},
                )
                return None


def get_webhook_intake() -> WebhookIntake:
    """FastAPI dependency for the webhook intake."""
    return WebhookIntake(get_database_manager())

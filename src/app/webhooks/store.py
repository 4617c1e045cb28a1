"""
Webhook event store.

Every received payload is appended once, keyed by its idempotency key. The
unique constraint on ``event_key`` is what makes duplicate deliveries
harmless across restarts and across application instances.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.database import insert_for
from app.shared.logging import get_logger
from app.webhooks.events import CallEvent
from app.webhooks.models import WebhookEvent, WebhookEventStatus

logger = get_logger(__name__)

MAX_ERROR_LENGTH = 4000


class EventStore:
    """Append-only store of received webhooks."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def append(
        self,
        event: CallEvent,
        payload: dict[str, Any],
        event_key: str,
        tenant_id: UUID | None = None,
    ) -> WebhookEvent | None:
        """Store a received payload.

        Returns:
            The stored row, or None if a row with the same key already exists
            (a duplicate delivery).
        """
        row_id = uuid4()
        stmt = (
            insert_for(self._session, WebhookEvent)
            .values(
                id=row_id,
                event_key=event_key,
                provider_event_id=event.provider_event_id,
                event_type=event.raw_type,
                external_call_id=event.external_call_id,
                tenant_id=tenant_id,
                payload=payload,
                status=WebhookEventStatus.RECEIVED,
                received_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=[WebhookEvent.event_key])
        )
        await self._session.execute(stmt)

        stored = await self.get_by_key(event_key)
        if stored is None or stored.id != row_id:
            logger.info(
                "Duplicate webhook discarded",
                extra={"event_key": event_key, "event_type": event.raw_type},
            )
            return None
        return stored

    async def get(self, event_id: UUID) -> WebhookEvent | None:
        result = await self._session.execute(select(WebhookEvent).where(WebhookEvent.id == event_id))
        return result.scalar_one_or_none()

    async def get_by_key(self, event_key: str) -> WebhookEvent | None:
        result = await self._session.execute(
            select(WebhookEvent).where(WebhookEvent.event_key == event_key)
        )
        return result.scalar_one_or_none()

    async def mark_processed(self, event_id: UUID, tenant_id: UUID | None = None) -> None:
        values: dict[str, Any] = {
            "status": WebhookEventStatus.PROCESSED,
            "processed_at": datetime.now(timezone.utc),
            "error": None,
        }
        if tenant_id is not None:
            values["tenant_id"] = tenant_id
        await self._session.execute(
            update(WebhookEvent)
            .where(WebhookEvent.id == event_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def mark_failed(self, event_id: UUID, error: str) -> None:
        await self._session.execute(
            update(WebhookEvent)
            .where(WebhookEvent.id == event_id)
            .values(
                status=WebhookEventStatus.FAILED,
                processed_at=datetime.now(timezone.utc),
                error=error[:MAX_ERROR_LENGTH],
            )
            .execution_options(synchronize_session=False)
        )

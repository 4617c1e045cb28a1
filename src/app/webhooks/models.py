"""
SQLAlchemy model for the webhook event store.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Enum as SQLEnum, String, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.database import Base, JSONType


class WebhookEventStatus(str, Enum):
    """Processing status of a received webhook."""

    RECEIVED = "received"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookEvent(Base):
    """Append-only record of one received webhook payload.

    ``event_key`` is the idempotency key: the provider event id when present,
    otherwise ``type:call_id:time_bucket``.
    """

    __tablename__ = "webhook_events"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    event_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    provider_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    external_call_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    tenant_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    status: Mapped[WebhookEventStatus] = mapped_column(
        SQLEnum(
            WebhookEventStatus,
            name="webhook_event_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=WebhookEventStatus.RECEIVED,
    )
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<WebhookEvent(key={self.event_key!r}, type={self.event_type}, status={self.status})>"

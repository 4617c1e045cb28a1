"""
SQLAlchemy models for call records.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SQLEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.database import Base, JSONType


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class CallStatus(str, Enum):
    """Call lifecycle status."""

    QUEUED = "queued"
    RINGING = "ringing"
    IN_PROGRESS = "in_progress"
    TRANSFERRING = "transferring"
    ON_HOLD = "on_hold"
    COMPLETED = "completed"
    FAILED = "failed"
    NO_ANSWER = "no_answer"
    BUSY = "busy"
    HUNG_UP = "hung_up"


class CallDirection(str, Enum):
    """Call direction."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class TranscriptState(str, Enum):
    """Availability of the final transcript."""

    PENDING = "pending"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"


class CallRecord(Base):
    """One phone call, addressable by internal id or provider (external) id."""

    __tablename__ = "call_records"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    external_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        unique=True,
        index=True,
    )
    tenant_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    campaign_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("campaigns.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    lead_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True, index=True)
    assistant_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    direction: Mapped[CallDirection | None] = mapped_column(
        SQLEnum(CallDirection, name="call_direction", values_callable=_enum_values),
        nullable=True,
    )
    status: Mapped[CallStatus] = mapped_column(
        SQLEnum(CallStatus, name="call_status", values_callable=_enum_values),
        nullable=False,
        default=CallStatus.QUEUED,
    )
    ended_reason: Mapped[str | None] = mapped_column(String(128), nullable=True)
    customer_number: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    phone_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    duration_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    transcript_state: Mapped[TranscriptState] = mapped_column(
        SQLEnum(TranscriptState, name="transcript_state", values_callable=_enum_values),
        nullable=False,
        default=TranscriptState.PENDING,
    )
    recording_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    outcome: Mapped[str | None] = mapped_column(String(64), nullable=True)
    sentiment: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_qualified_lead: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    call_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def __repr__(self) -> str:
        return f"<CallRecord(id={self.id}, external_id={self.external_id}, status={self.status})>"

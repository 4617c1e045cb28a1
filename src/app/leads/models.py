"""
SQLAlchemy model for leads.
"""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.shared.database import Base, JSONType


class Lead(Base):
    """A qualified sales prospect, unique per (tenant, normalized phone)."""

    __tablename__ = "leads"
    __table_args__ = (
        UniqueConstraint("tenant_id", "phone", name="uq_leads_tenant_phone"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    tenant_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    campaign_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    phone: Mapped[str] = mapped_column(String(32), nullable=False)

    # Contact
    first_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    address: Mapped[str | None] = mapped_column(String(255), nullable=True)
    city: Mapped[str | None] = mapped_column(String(128), nullable=True)
    state: Mapped[str | None] = mapped_column(String(128), nullable=True)
    postcode: Mapped[str | None] = mapped_column(String(32), nullable=True)
    country: Mapped[str | None] = mapped_column(String(128), nullable=True)

    # Professional
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    job_title: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Qualification
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="qualified")
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lead_quality: Mapped[str] = mapped_column(String(16), nullable=False, default="cold")
    lead_source: Mapped[str] = mapped_column(String(64), nullable=False, default="ai_call")
    last_call_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    last_contacted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    notes: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    custom_fields: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

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
        return f"<Lead(id={self.id}, phone={self.phone}, score={self.score})>"

"""
Repository for call record database operations.
"""

from datetime import datetime, timezone
from typing import Any, Protocol, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.calls.models import CallDirection, CallRecord, CallStatus
from app.calls.state import TERMINAL_STATUSES
from app.shared.database import insert_for


class CallRecordRepositoryProtocol(Protocol):
    """Protocol for call record repository operations."""

    async def get_by_id(self, call_id: UUID) -> CallRecord | None:
        """Get call record by internal id."""
        ...

    async def get_by_external_id(self, external_id: str) -> CallRecord | None:
        """Get call record by provider call id."""
        ...

    async def find(
        self,
        external_id: str | None = None,
        internal_id: UUID | None = None,
    ) -> CallRecord | None:
        """Find a call record by either identifier space."""
        ...


class CallRecordRepository:
    """Repository for call record database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    async def get_by_id(self, call_id: UUID) -> CallRecord | None:
        """Get call record by internal id.

        Args:
            call_id: CallRecord UUID.

        Returns:
            CallRecord if found, None otherwise.
        """
        stmt = select(CallRecord).where(CallRecord.id == call_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_external_id(self, external_id: str) -> CallRecord | None:
        """Get call record by provider call id."""
        stmt = select(CallRecord).where(CallRecord.external_id == external_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def find(
        self,
        external_id: str | None = None,
        internal_id: UUID | None = None,
    ) -> CallRecord | None:
        """Find a call record by external id, falling back to internal id."""
        if external_id:
            record = await self.get_by_external_id(external_id)
            if record is not None:
                return record
        if internal_id is not None:
            return await self.get_by_id(internal_id)
        return None

    async def find_pending_outbound(
        self,
        tenant_id: UUID,
        customer_number: str,
        campaign_id: UUID | None = None,
    ) -> CallRecord | None:
        """Find a dispatched call that has not been linked to a provider id yet."""
        stmt = (
            select(CallRecord)
            .where(
                CallRecord.tenant_id == tenant_id,
                CallRecord.customer_number == customer_number,
                CallRecord.external_id.is_(None),
                CallRecord.direction == CallDirection.OUTBOUND,
            )
            .order_by(CallRecord.created_at.desc())
            .limit(1)
        )
        if campaign_id is not None:
            stmt = stmt.where(CallRecord.campaign_id == campaign_id)
        result = await self._session.execute(stmt)
        return result.scalars().first()

    async def create(self, **fields: Any) -> CallRecord:
        """Create a new call record.

        Returns:
            Created CallRecord instance.
        """
        fields.setdefault("status", CallStatus.QUEUED)
        fields.setdefault("call_metadata", {})
        record = CallRecord(**fields)
        self._session.add(record)
        await self._session.flush()
        await self._session.refresh(record)
        return record

    async def ensure_external(self, external_id: str, **defaults: Any) -> tuple[CallRecord, bool]:
        """Return the record for ``external_id``, inserting it if missing.

        Uses INSERT ... ON CONFLICT DO NOTHING on the external id so that two
        concurrent events for the same call never create two rows.

        Returns:
            Tuple of (record, created).
        """
        now = datetime.now(timezone.utc)
        values: dict[str, Any] = {
            "id": uuid4(),
            "external_id": external_id,
            "status": CallStatus.QUEUED,
            "call_metadata": {},
            "created_at": now,
            "updated_at": now,
            **defaults,
        }
        stmt = (
            insert_for(self._session, CallRecord)
            .values(**values)
            .on_conflict_do_nothing(index_elements=[CallRecord.external_id])
        )
        await self._session.execute(stmt)

        record = await self.get_by_external_id(external_id)
        if record is None:  # pragma: no cover - conflicting row deleted concurrently
            raise RuntimeError(f"CallRecord for external id {external_id} vanished after upsert")
        return record, record.id == values["id"]

    async def list_stale_live(self, updated_before: datetime, limit: int) -> Sequence[CallRecord]:
        """Get calls still marked live whose last update is older than ``updated_before``."""
        stmt = (
            select(CallRecord)
            .where(
                CallRecord.status.not_in(list(TERMINAL_STATUSES)),
                CallRecord.updated_at < updated_before,
            )
            .order_by(CallRecord.updated_at)
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_for_campaign(self, campaign_id: UUID) -> Sequence[CallRecord]:
        """Get every call of a campaign."""
        stmt = select(CallRecord).where(CallRecord.campaign_id == campaign_id)
        result = await self._session.execute(stmt)
        return result.scalars().all()

"""
Identity resolution for inbound webhook events.

Resolution order, first match wins:
    1. explicit tenant hint in the call metadata
    2. existing CallRecord by external id (or echoed internal id)
    3. phone-number-to-tenant mapping for the call's numbers

When nothing matches the event is processed in generic mode: lifecycle
fields are still reconciled but no tenant-scoped side effects happen.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.calls.models import CallRecord
from app.calls.repository import CallRecordRepository, CallRecordRepositoryProtocol
from app.shared.logging import get_logger
from app.shared.phone import normalize_phone
from app.tenants.models import Tenant, TenantPhoneNumber
from app.webhooks.events import CallEvent

logger = get_logger(__name__)


class IdentitySource(str, Enum):
    TENANT_HINT = "tenant_hint"
    CALL_RECORD = "call_record"
    PHONE_MAPPING = "phone_mapping"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ResolvedIdentity:
    """Outcome of identity resolution."""

    tenant_id: UUID | None
    source: IdentitySource
    call_record: CallRecord | None = None

    @property
    def is_generic(self) -> bool:
        return self.tenant_id is None


class IdentityResolver:
    """Maps a webhook event to its owning tenant."""

    def __init__(
        self,
        session: AsyncSession,
        calls: CallRecordRepositoryProtocol | None = None,
    ) -> None:
        self._session = session
        self._calls = calls or CallRecordRepository(session)

    async def resolve(self, event: CallEvent) -> ResolvedIdentity:
        record = await self._calls.find(event.external_call_id, event.internal_call_id)

        if event.tenant_hint is not None and await self._tenant_exists(event.tenant_hint):
            return ResolvedIdentity(event.tenant_hint, IdentitySource.TENANT_HINT, record)

        if record is not None and record.tenant_id is not None:
            return ResolvedIdentity(record.tenant_id, IdentitySource.CALL_RECORD, record)

        tenant_id = await self._tenant_for_numbers(event.phone_number, event.customer_number)
        if tenant_id is not None:
            return ResolvedIdentity(tenant_id, IdentitySource.PHONE_MAPPING, record)

        logger.warning(
            "Tenant could not be resolved; processing generically",
            extra={
                "event_type": event.raw_type,
                "external_call_id": event.external_call_id,
                "tenant_hint": str(event.tenant_hint) if event.tenant_hint else None,
            },
        )
        return ResolvedIdentity(None, IdentitySource.UNKNOWN, record)

    async def _tenant_exists(self, tenant_id: UUID) -> bool:
        result = await self._session.execute(select(Tenant.id).where(Tenant.id == tenant_id))
        if result.scalar_one_or_none() is None:
            logger.warning("Tenant hint does not match any tenant", extra={"tenant_hint": str(tenant_id)})
            return False
        return True

    async def _tenant_for_numbers(self, *numbers: str | None) -> UUID | None:
        for number in numbers:
            normalized = normalize_phone(number)
            if normalized is None:
                continue
            result = await self._session.execute(
                select(TenantPhoneNumber.tenant_id).where(
                    TenantPhoneNumber.phone_number == normalized,
                    TenantPhoneNumber.active.is_(True),
                )
            )
            tenant_id = result.scalars().first()
            if tenant_id is not None:
                return tenant_id
        return None

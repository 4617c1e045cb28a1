"""
Outbound call dispatch.

A CallRecord is created and committed before the provider is asked to
place the call, so webhooks that arrive before the provider id is attached
still find the record through the internal id echoed in call metadata.
"""

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.calls.models import CallDirection, CallRecord, CallStatus
from app.calls.repository import CallRecordRepository
from app.calls.state import SUPERSEDED_REASON
from app.shared.exceptions import ValidationError
from app.shared.logging import get_logger
from app.shared.phone import normalize_phone
from app.telephony.factory import ProviderFactory, get_voice_provider
from app.telephony.interface import CallInitiationError, CallInitiationRequest, VoiceProviderError
from app.tenants.credentials import resolve_tenant_credentials

logger = get_logger(__name__)

DISPATCH_FAILED_REASON = "dispatch-failed"


class OutboundCallDispatcher:
    """Places outbound calls through the tenant's voice provider."""

    def __init__(
        self,
        session: AsyncSession,
        provider_factory: ProviderFactory = get_voice_provider,
    ) -> None:
        self._session = session
        self._calls = CallRecordRepository(session)
        self._provider_factory = provider_factory

    async def dispatch(
        self,
        tenant_id: UUID,
        customer_number: str,
        assistant_id: str,
        phone_number_id: str | None = None,
        campaign_id: UUID | None = None,
        lead_id: UUID | None = None,
        customer_name: str | None = None,
    ) -> CallRecord:
        """Pre-create the CallRecord, place the call and attach the provider id.

        Raises:
            ValidationError: If the customer number is unusable.
            CallInitiationError: If the provider refused the call; the
                record is left in the failed state.
        """
        number = normalize_phone(customer_number)
        if number is None:
            raise ValidationError(f"Invalid customer number: {customer_number!r}")

        credentials = await resolve_tenant_credentials(self._session, tenant_id)

        record = await self._calls.create(
            tenant_id=tenant_id,
            campaign_id=campaign_id,
            lead_id=lead_id,
            assistant_id=assistant_id,
            direction=CallDirection.OUTBOUND,
            customer_number=number,
            status=CallStatus.QUEUED,
        )
        await self._session.commit()

        request = CallInitiationRequest(
            assistant_id=assistant_id,
            customer_number=number,
            call_id=record.id,
            tenant_id=tenant_id,
            phone_number_id=phone_number_id,
            campaign_id=campaign_id,
            lead_id=lead_id,
            customer_name=customer_name,
        )

        try:
            provider = self._provider_factory(credentials)
            response = await provider.create_call(request)
        except VoiceProviderError as e:
            record.status = CallStatus.FAILED
            record.ended_reason = DISPATCH_FAILED_REASON
            record.call_metadata = {
                **(record.call_metadata or {}),
                "last_error": str(e),
                "error_code": e.error_code,
            }
            await self._session.commit()
            logger.error(
                "Outbound call dispatch failed",
                extra={
                    "call_id": str(record.id),
                    "tenant_id": str(tenant_id),
                    "error": str(e),
                    "error_code": e.error_code,
                },
            )
            raise CallInitiationError(
                f"Voice provider refused the call: {e}",
                error_code=e.error_code,
                provider_response=e.provider_response,
                status_code=e.status_code,
            ) from e

        record = await self._attach_external_id(record, response.provider_call_id)
        await self._session.commit()

        logger.info(
            "Outbound call dispatched",
            extra={
                "call_id": str(record.id),
                "external_call_id": record.external_id,
                "tenant_id": str(tenant_id),
                "campaign_id": str(campaign_id) if campaign_id else None,
            },
        )
        return record

    async def _attach_external_id(self, record: CallRecord, provider_call_id: str) -> CallRecord:
        """Attach the provider id and return the record that now tracks the call."""
        await self._session.refresh(record)
        if record.external_id == provider_call_id:
            return record

        existing = await self._calls.get_by_external_id(provider_call_id)
        if existing is not None and existing.id != record.id:
            # A webhook without tenant context created its own row first
            for field in ("tenant_id", "campaign_id", "lead_id", "assistant_id", "customer_number"):
                if getattr(existing, field) is None:
                    setattr(existing, field, getattr(record, field))
            record.status = CallStatus.FAILED
            record.ended_reason = SUPERSEDED_REASON
            record.call_metadata = {**(record.call_metadata or {}), "superseded_by": str(existing.id)}
            logger.warning(
                "Provider call id already attached to another record; dispatch record superseded",
                extra={
                    "call_id": str(record.id),
                    "other_call_id": str(existing.id),
                    "external_call_id": provider_call_id,
                },
            )
            return existing

        if record.external_id is None:
            record.external_id = provider_call_id
        return record

"""
Call state reconciler.

Applies one webhook event to a CallRecord. Events are upserted: a missing
record is created from whatever the event carries, and an existing record
only receives the fields the event actually has. Every merge rule is
order-independent so the record converges whatever the delivery order:

- identity fields (tenant, campaign, lead, assistant, numbers, direction,
  end reason) are filled when empty and never cleared
- ``started_at`` keeps the earliest value, ``ended_at`` the latest
- ``duration_seconds`` and ``cost`` keep the largest reported value
- ``transcript`` keeps the longest final transcript
- ``status`` follows ``merge_status``
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.calls.models import CallRecord, CallStatus, TranscriptState
from app.calls.repository import CallRecordRepository
from app.calls.state import is_terminal, merge_status, status_from_event
from app.campaigns.metrics import recompute_campaign_metrics
from app.shared.logging import get_logger
from app.shared.phone import normalize_phone
from app.webhooks.events import CallEvent
from app.webhooks.identity import ResolvedIdentity

logger = get_logger(__name__)

MAX_LIVE_FRAGMENTS = 50

MetricsRecorder = Callable[[AsyncSession, UUID], Awaitable[Any]]


@dataclass(frozen=True)
class ReconcileResult:
    """What the reconciler did with one event."""

    record: CallRecord
    created: bool
    previous_status: CallStatus | None
    status_changed: bool
    transcript_added: bool

    @property
    def is_terminal(self) -> bool:
        return is_terminal(self.record.status)

    @property
    def became_terminal(self) -> bool:
        return self.is_terminal and not is_terminal(self.previous_status)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (sqlite drops tzinfo on round-trip)."""
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _earliest(current: datetime | None, incoming: datetime | None) -> datetime | None:
    current, incoming = as_utc(current), as_utc(incoming)
    if current is None or incoming is None:
        return current or incoming
    return min(current, incoming)


def _latest(current: datetime | None, incoming: datetime | None) -> datetime | None:
    current, incoming = as_utc(current), as_utc(incoming)
    if current is None or incoming is None:
        return current or incoming
    return max(current, incoming)


def _largest(current: Any, incoming: Any) -> Any:
    if current is None or incoming is None:
        return incoming if current is None else current
    return max(current, incoming)


class CallStateReconciler:
    """Upserts CallRecords from webhook events."""

    def __init__(
        self,
        session: AsyncSession,
        metrics_recorder: MetricsRecorder | None = None,
    ) -> None:
        """Initialize reconciler.

        Args:
            session: Async database session.
            metrics_recorder: Campaign aggregate recomputation hook.
        """
        self._session = session
        self._calls = CallRecordRepository(session)
        self._metrics_recorder = metrics_recorder or recompute_campaign_metrics

    async def apply(self, event: CallEvent, identity: ResolvedIdentity) -> ReconcileResult | None:
        """Apply ``event`` to its CallRecord, creating the record if needed.

        Returns:
            The reconcile result, or None when the event carries no call identifier.
        """
        record, created = await self._locate(event, identity)
        if record is None:
            logger.warning(
                "Event has no call identifier; nothing to reconcile",
                extra={"event_type": event.raw_type},
            )
            return None

        previous_status = None if created else record.status
        had_transcript = bool(record.transcript)

        self._merge(record, event, identity.tenant_id)
        await self._session.flush()

        result = ReconcileResult(
            record=record,
            created=created,
            previous_status=previous_status,
            status_changed=previous_status != record.status,
            transcript_added=bool(record.transcript) and not had_transcript,
        )

        logger.info(
            "Call reconciled",
            extra={
                "call_id": str(record.id),
                "external_call_id": record.external_id,
                "event_type": event.raw_type,
                "status": record.status.value,
                "previous_status": previous_status.value if previous_status else None,
                "created": created,
            },
        )

        reported_usage = event.cost is not None or event.duration_seconds is not None
        if result.is_terminal and record.campaign_id is not None and (reported_usage or result.became_terminal):
            await self._metrics_recorder(self._session, record.campaign_id)

        return result

    async def _locate(self, event: CallEvent, identity: ResolvedIdentity) -> tuple[CallRecord | None, bool]:
        record = identity.call_record or await self._calls.find(event.external_call_id, event.internal_call_id)

        # Outbound call pre-created before the provider assigned its id
        if record is None and identity.tenant_id is not None and event.customer_number:
            customer = normalize_phone(event.customer_number)
            if customer:
                record = await self._calls.find_pending_outbound(identity.tenant_id, customer, event.campaign_id)

        if record is not None:
            if event.external_call_id and record.external_id is None:
                record.external_id = event.external_call_id
            return record, False

        defaults: dict[str, Any] = {
            "tenant_id": identity.tenant_id,
            "campaign_id": event.campaign_id,
            "lead_id": event.lead_id,
            "direction": event.direction,
        }
        if event.external_call_id:
            return await self._calls.ensure_external(event.external_call_id, **defaults)

        if event.internal_call_id is not None:
            record = await self._calls.create(id=event.internal_call_id, **defaults)
            return record, True

        return None, False

    def _merge(self, record: CallRecord, event: CallEvent, tenant_id: UUID | None) -> None:
        if record.tenant_id is None and tenant_id is not None:
            record.tenant_id = tenant_id

        fill_if_empty = {
            "campaign_id": event.campaign_id,
            "lead_id": event.lead_id,
            "assistant_id": event.assistant_id,
            "direction": event.direction,
            "ended_reason": event.ended_reason,
            "customer_number": normalize_phone(event.customer_number),
            "phone_number": normalize_phone(event.phone_number),
            "recording_url": event.recording_url,
        }
        for field, value in fill_if_empty.items():
            if value is not None and getattr(record, field) is None:
                setattr(record, field, value)

        record.started_at = _earliest(record.started_at, event.started_at)
        record.ended_at = _latest(record.ended_at, event.ended_at)
        record.duration_seconds = _largest(record.duration_seconds, event.duration_seconds)
        record.cost = _largest(record.cost, event.cost)

        if event.transcript and len(event.transcript) > len(record.transcript or ""):
            record.transcript = event.transcript
        if record.transcript:
            record.transcript_state = TranscriptState.AVAILABLE

        if event.summary:
            record.ai_summary = event.summary

        merged = merge_status(record.status, status_from_event(event))
        if merged is not None:
            record.status = merged

        metadata = dict(record.call_metadata or {})
        if event.analysis:
            metadata["provider_analysis"] = {**metadata.get("provider_analysis", {}), **event.analysis}
        if event.live_transcript and not record.transcript:
            fragments = list(metadata.get("live_transcript", []))
            fragments.append(event.live_transcript)
            metadata["live_transcript"] = fragments[-MAX_LIVE_FRAGMENTS:]
        if event.error_message:
            metadata["last_error"] = event.error_message
        if metadata != (record.call_metadata or {}):
            record.call_metadata = metadata

"""
Stuck call sweep.

A call whose terminal webhook never arrived stays live forever and keeps
counting towards campaign activity. A periodic job on the ``stuck_calls``
queue finds live calls that have not been updated for a while, asks the
provider for their current detail and feeds it through the reconciler, so
the usual merge rules and follow-ups apply. Calls the provider cannot
confirm are ended once they pass the abandon threshold.

Each sweep schedules the next one. The dedupe key is derived from the
interval bucket of its due time, so overlapping chains started by several
instances collapse into one.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.calls.reconciler import CallStateReconciler, as_utc
from app.calls.repository import CallRecordRepository
from app.config import Settings, get_settings
from app.jobs.queue import STUCK_CALL_QUEUE, JobQueue
from app.shared.database import DatabaseManager, get_database_manager
from app.shared.logging import get_logger
from app.telephony.factory import ProviderFactory, get_voice_provider
from app.telephony.interface import CallDetail, VoiceProviderError
from app.tenants.credentials import resolve_tenant_credentials
from app.webhooks.events import CallEvent, VoiceEventType
from app.webhooks.handler import schedule_followups
from app.webhooks.identity import IdentitySource, ResolvedIdentity

logger = get_logger(__name__)

DETAIL_EVENT_TYPE = "call-detail"
ABANDONED_REASON = "stuck-call-timeout"


@dataclass(frozen=True)
class SweepPolicy:
    interval_seconds: int = 300
    stale_after_seconds: int = 900
    abandon_after_seconds: int = 7200
    batch_size: int = 100

    @classmethod
    def from_settings(cls, settings: Settings) -> "SweepPolicy":
        return cls(
            interval_seconds=settings.stuck_call_sweep_interval_seconds,
            stale_after_seconds=settings.stuck_call_after_seconds,
            abandon_after_seconds=settings.stuck_call_abandon_after_seconds,
            batch_size=settings.stuck_call_batch_size,
        )


@dataclass(frozen=True)
class SweepReport:
    checked: int = 0
    reconciled: int = 0
    abandoned: int = 0
    still_live: int = 0
    errors: int = 0


async def schedule_sweep(
    session: AsyncSession,
    policy: SweepPolicy,
    delay_seconds: float | None = None,
) -> UUID | None:
    """Queue the next sweep; one job per interval bucket."""
    delay = policy.interval_seconds if delay_seconds is None else delay_seconds
    due = datetime.now(timezone.utc) + timedelta(seconds=delay)
    bucket = int(due.timestamp()) // policy.interval_seconds
    return await JobQueue(session).enqueue(
        STUCK_CALL_QUEUE,
        {"bucket": bucket},
        delay_seconds=delay,
        dedupe_key=f"stuck-calls:{bucket}",
    )


def event_from_detail(detail: CallDetail, call_id: UUID) -> CallEvent:
    """Express the provider's call detail as a status update for the reconciler."""
    return CallEvent(
        event_type=VoiceEventType.STATUS_UPDATE,
        raw_type=DETAIL_EVENT_TYPE,
        external_call_id=detail.provider_call_id,
        internal_call_id=call_id,
        status=detail.status,
        ended_reason=detail.ended_reason,
        started_at=detail.started_at,
        ended_at=detail.ended_at,
        duration_seconds=detail.duration_seconds,
        cost=detail.cost,
        transcript=detail.transcript if detail.has_transcript else None,
        recording_url=detail.recording_url,
        summary=detail.summary,
    )


def abandoned_event(call_id: UUID, external_call_id: str | None, now: datetime) -> CallEvent:
    return CallEvent(
        event_type=VoiceEventType.CALL_ENDED,
        raw_type=DETAIL_EVENT_TYPE,
        external_call_id=external_call_id,
        internal_call_id=call_id,
        ended_reason=ABANDONED_REASON,
        ended_at=now,
    )


class StuckCallSweeper:
    """Job handler for the stuck_calls queue."""

    def __init__(
        self,
        db_manager: DatabaseManager | None = None,
        provider_factory: ProviderFactory = get_voice_provider,
        policy: SweepPolicy | None = None,
    ) -> None:
        self._db = db_manager or get_database_manager()
        self._provider_factory = provider_factory
        self._policy = policy or SweepPolicy.from_settings(get_settings())

    async def __call__(self, payload: dict[str, Any]) -> None:
        try:
            await self.sweep()
        finally:
            async with self._db.session() as session:
                await schedule_sweep(session, self._policy)

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        now = now or datetime.now(timezone.utc)
        async with self._db.session() as session:
            stale = await CallRecordRepository(session).list_stale_live(
                now - timedelta(seconds=self._policy.stale_after_seconds),
                self._policy.batch_size,
            )
            candidates = [(r.id, r.external_id, r.tenant_id, as_utc(r.updated_at)) for r in stale]

        counts = {"reconciled": 0, "abandoned": 0, "still_live": 0, "errors": 0}
        for call_id, external_id, tenant_id, updated_at in candidates:
            try:
                outcome = await self._settle(call_id, external_id, tenant_id, updated_at, now)
            except Exception:
                logger.exception("Stuck call check failed", extra={"call_id": str(call_id)})
                outcome = "errors"
            counts[outcome] += 1

        report = SweepReport(checked=len(candidates), **counts)
        if candidates:
            logger.info("Stuck call sweep finished", extra=asdict(report))
        return report

    async def _settle(
        self,
        call_id: UUID,
        external_id: str | None,
        tenant_id: UUID | None,
        updated_at: datetime | None,
        now: datetime,
    ) -> str:
        detail = await self._fetch(external_id, tenant_id) if external_id else None

        if detail is not None:
            event = event_from_detail(detail, call_id)
        elif updated_at is not None and now - updated_at >= timedelta(seconds=self._policy.abandon_after_seconds):
            event = abandoned_event(call_id, external_id, now)
        else:
            return "still_live"

        async with self._db.session() as session:
            record = await CallRecordRepository(session).get_by_id(call_id)
            if record is None:  # pragma: no cover - calls are never deleted
                return "still_live"
            identity = ResolvedIdentity(
                tenant_id=record.tenant_id,
                source=IdentitySource.CALL_RECORD,
                call_record=record,
            )
            result = await CallStateReconciler(session).apply(event, identity)
            if result is None or not result.is_terminal:
                return "still_live"
            await schedule_followups(session, event, result)

        abandoned = detail is None
        logger.warning(
            "Stuck call ended" if abandoned else "Stuck call reconciled from provider detail",
            extra={
                "call_id": str(call_id),
                "external_call_id": external_id,
                "status": result.record.status.value,
            },
        )
        return "abandoned" if abandoned else "reconciled"

    async def _fetch(self, external_id: str, tenant_id: UUID | None) -> CallDetail | None:
        try:
            async with self._db.session() as session:
                credentials = await resolve_tenant_credentials(session, tenant_id)
            return await self._provider_factory(credentials).get_call(external_id)
        except VoiceProviderError as e:
            logger.warning(
                "Provider detail unavailable for stuck call",
                extra={"external_call_id": external_id, "error": str(e), "error_code": e.error_code},
            )
            return None

"""
Transcript completion scheduler.

When a call ends without a transcript the provider's call-detail API is
polled with exponential backoff. Every attempt is one durable job; an
attempt that finds nothing schedules the next one instead of sleeping, so
pending retries survive restarts. After the last attempt the call is
flagged as transcript unavailable and nothing further is scheduled.
"""

from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.calls.models import CallRecord, TranscriptState
from app.calls.reconciler import _largest
from app.calls.repository import CallRecordRepository
from app.config import Settings, get_settings
from app.extraction.pipeline import enqueue_extraction
from app.jobs.queue import TRANSCRIPT_QUEUE, JobQueue
from app.shared.database import DatabaseManager, get_database_manager
from app.shared.logging import get_logger
from app.telephony.factory import ProviderFactory, get_voice_provider
from app.telephony.interface import CallDetail, VoiceProviderError
from app.tenants.credentials import resolve_tenant_credentials

logger = get_logger(__name__)


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff: base, 2*base, 4*base, ... for max_attempts attempts."""

    base_delay_seconds: int = 5
    max_attempts: int = 6

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackoffPolicy":
        return cls(
            base_delay_seconds=settings.transcript_base_delay_seconds,
            max_attempts=settings.transcript_max_attempts,
        )

    def delay_for(self, attempt: int) -> int:
        """Delay before ``attempt`` (1-based)."""
        return self.base_delay_seconds * 2 ** (attempt - 1)

    def schedule(self) -> list[int]:
        return [self.delay_for(a) for a in range(1, self.max_attempts + 1)]


class TranscriptScheduler:
    """Schedules transcript polling attempts on the durable job queue."""

    def __init__(self, session: AsyncSession, policy: BackoffPolicy | None = None) -> None:
        self._queue = JobQueue(session)
        self._policy = policy or BackoffPolicy.from_settings(get_settings())

    @property
    def policy(self) -> BackoffPolicy:
        return self._policy

    async def schedule(
        self,
        call_id: UUID,
        external_call_id: str,
        tenant_id: UUID | None,
        attempt: int = 1,
    ) -> UUID | None:
        """Schedule polling attempt ``attempt``; returns None past the attempt budget."""
        if attempt > self._policy.max_attempts:
            return None
        delay = self._policy.delay_for(attempt)
        return await self._queue.enqueue(
            TRANSCRIPT_QUEUE,
            {
                "call_id": str(call_id),
                "external_call_id": external_call_id,
                "tenant_id": str(tenant_id) if tenant_id else None,
                "attempt": attempt,
            },
            delay_seconds=delay,
            dedupe_key=f"transcript:{call_id}:{attempt}",
        )


def _apply_detail(record: CallRecord, detail: CallDetail) -> None:
    record.transcript = detail.transcript
    record.transcript_state = TranscriptState.AVAILABLE
    record.duration_seconds = _largest(record.duration_seconds, detail.duration_seconds)
    record.cost = _largest(record.cost, detail.cost)
    if detail.recording_url and not record.recording_url:
        record.recording_url = detail.recording_url
    if detail.summary and not record.ai_summary:
        record.ai_summary = detail.summary


class TranscriptPoller:
    """Job handler for one transcript polling attempt."""

    def __init__(
        self,
        db_manager: DatabaseManager | None = None,
        provider_factory: ProviderFactory = get_voice_provider,
        policy: BackoffPolicy | None = None,
    ) -> None:
        self._db = db_manager or get_database_manager()
        self._provider_factory = provider_factory
        self._policy = policy or BackoffPolicy.from_settings(get_settings())

    async def __call__(self, payload: dict[str, Any]) -> None:
        await self.poll(payload)

    async def poll(self, payload: dict[str, Any]) -> None:
        call_id = UUID(str(payload["call_id"]))
        external_call_id = str(payload["external_call_id"])
        tenant_id = UUID(payload["tenant_id"]) if payload.get("tenant_id") else None
        attempt = int(payload.get("attempt", 1))

        async with self._db.session() as session:
            record = await CallRecordRepository(session).get_by_id(call_id)
            if record is None:
                logger.warning("Transcript poll for unknown call", extra={"call_id": str(call_id)})
                return

            if record.transcript:
                logger.info("Transcript already present; skipping poll", extra={"call_id": str(call_id)})
                await enqueue_extraction(session, record.id, record.transcript)
                return
            owner_id = tenant_id or record.tenant_id

        # No session is held while the provider is queried
        detail = await self._fetch(external_call_id, owner_id, attempt)

        async with self._db.session() as session:
            record = await CallRecordRepository(session).get_by_id(call_id)
            if record is None:  # pragma: no cover - calls are never deleted
                return
            metadata = dict(record.call_metadata or {})
            metadata["transcript_attempts"] = attempt

            if record.transcript or (detail is not None and detail.has_transcript):
                if not record.transcript:
                    _apply_detail(record, detail)
                record.call_metadata = metadata
                await session.flush()
                logger.info(
                    "Transcript retrieved",
                    extra={"call_id": str(call_id), "attempt": attempt},
                )
                await enqueue_extraction(session, record.id, record.transcript)
                return

            if attempt < self._policy.max_attempts:
                record.call_metadata = metadata
                next_attempt = attempt + 1
                await TranscriptScheduler(session, self._policy).schedule(
                    record.id, external_call_id, tenant_id, next_attempt
                )
                logger.info(
                    "Transcript not ready; retry scheduled",
                    extra={
                        "call_id": str(call_id),
                        "attempt": attempt,
                        "next_attempt": next_attempt,
                        "delay_seconds": self._policy.delay_for(next_attempt),
                    },
                )
                return

            metadata["transcript_unavailable_reason"] = "max_attempts_exhausted"
            record.call_metadata = metadata
            record.transcript_state = TranscriptState.UNAVAILABLE
            logger.warning(
                "Transcript unavailable after retry budget",
                extra={"call_id": str(call_id), "attempts": attempt},
            )

    async def _fetch(
        self,
        external_call_id: str,
        tenant_id: UUID | None,
        attempt: int,
    ) -> CallDetail | None:
        """Query the provider once; any failure counts as an empty attempt."""
        try:
            async with self._db.session() as session:
                credentials = await resolve_tenant_credentials(session, tenant_id)
            provider = self._provider_factory(credentials)
            return await provider.get_call(external_call_id)
        except VoiceProviderError as e:
            logger.warning(
                "Transcript poll failed",
                extra={
                    "external_call_id": external_call_id,
                    "attempt": attempt,
                    "error": str(e),
                    "error_code": e.error_code,
                },
            )
        except Exception:
            logger.exception(
                "Transcript poll attempt raised",
                extra={"external_call_id": external_call_id, "attempt": attempt},
            )
        return None

"""
Tests for transcript completion polling.
"""

from uuid import UUID

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.calls.models import CallRecord, CallStatus, TranscriptState
from app.jobs.models import Job
from app.jobs.queue import EXTRACTION_QUEUE, TRANSCRIPT_QUEUE
from app.shared.database import DatabaseManager
from app.telephony.adapters.mock import InMemoryVoiceProvider
from app.telephony.interface import CallDetail, VoiceProviderError
from app.tenants.models import Tenant
from app.transcripts.scheduler import BackoffPolicy, TranscriptPoller, TranscriptScheduler


async def queued(session_factory: async_sessionmaker[AsyncSession], queue: str) -> list[Job]:
    async with session_factory() as session:
        result = await session.execute(select(Job).where(Job.queue == queue))
        return sorted(result.scalars().all(), key=lambda job: job.payload.get("attempt", 0))


async def reload(session_factory: async_sessionmaker[AsyncSession], call_id: UUID) -> CallRecord:
    async with session_factory() as session:
        return (await session.execute(select(CallRecord).where(CallRecord.id == call_id))).scalar_one()


class TestBackoffPolicy:
    """Tests for BackoffPolicy."""

    def test_default_schedule(self) -> None:
        assert BackoffPolicy().schedule() == [5, 10, 20, 40, 80, 160]

    def test_custom_policy(self) -> None:
        policy = BackoffPolicy(base_delay_seconds=2, max_attempts=3)
        assert policy.schedule() == [2, 4, 8]
        assert policy.delay_for(3) == 8


class TestTranscriptPoller:
    """Tests for TranscriptPoller."""

    @pytest.fixture
    def poller(self, db_manager: DatabaseManager, voice_provider: InMemoryVoiceProvider) -> TranscriptPoller:
        return TranscriptPoller(db_manager, provider_factory=lambda credentials: voice_provider)

    @pytest.mark.asyncio
    async def test_exhausts_budget_then_flags_unavailable(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
        poller: TranscriptPoller,
        voice_provider: InMemoryVoiceProvider,
        tenant: Tenant,
        make_call,
    ) -> None:
        """Six attempts at 5, 10, 20, 40, 80 and 160 seconds, then no more."""
        record = await make_call(tenant_id=tenant.id, external_id="ext-t1", status=CallStatus.COMPLETED)

        async with db_manager.session() as session:
            await TranscriptScheduler(session, BackoffPolicy()).schedule(record.id, "ext-t1", tenant.id, attempt=1)

        for attempt in range(1, 7):
            jobs = await queued(session_factory, TRANSCRIPT_QUEUE)
            assert len(jobs) == attempt
            await poller(jobs[-1].payload)

        jobs = await queued(session_factory, TRANSCRIPT_QUEUE)
        assert [job.payload["attempt"] for job in jobs] == [1, 2, 3, 4, 5, 6]
        assert [round((job.due_at - job.created_at).total_seconds()) for job in jobs] == [5, 10, 20, 40, 80, 160]
        assert voice_provider.get_call_requests == ["ext-t1"] * 6

        stored = await reload(session_factory, record.id)
        assert stored.transcript_state == TranscriptState.UNAVAILABLE
        assert stored.call_metadata["transcript_unavailable_reason"] == "max_attempts_exhausted"
        assert stored.call_metadata["transcript_attempts"] == 6
        assert await queued(session_factory, EXTRACTION_QUEUE) == []

    @pytest.mark.asyncio
    async def test_transcript_found_queues_extraction(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        poller: TranscriptPoller,
        voice_provider: InMemoryVoiceProvider,
        make_call,
    ) -> None:
        record = await make_call(external_id="ext-t2", status=CallStatus.COMPLETED)
        voice_provider.stage(
            "ext-t2",
            CallDetail(provider_call_id="ext-t2", status="ended"),
            CallDetail(
                provider_call_id="ext-t2",
                status="ended",
                transcript="AI: Hello\nUser: Call me back tomorrow",
                cost=0.2,
                duration_seconds=64,
            ),
        )
        payload = {"call_id": str(record.id), "external_call_id": "ext-t2", "tenant_id": None}

        await poller({**payload, "attempt": 1})
        await poller({**payload, "attempt": 2})

        stored = await reload(session_factory, record.id)
        assert stored.transcript_state == TranscriptState.AVAILABLE
        assert stored.transcript.endswith("Call me back tomorrow")
        assert stored.duration_seconds == 64
        extraction = await queued(session_factory, EXTRACTION_QUEUE)
        assert [job.payload["call_id"] for job in extraction] == [str(record.id)]

    @pytest.mark.asyncio
    async def test_provider_error_counts_as_attempt(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
        make_call,
    ) -> None:
        def failing_factory(credentials):
            raise VoiceProviderError("No voice provider API key configured", error_code="missing_credentials")

        record = await make_call(external_id="ext-t3", status=CallStatus.COMPLETED)
        poller = TranscriptPoller(db_manager, provider_factory=failing_factory, policy=BackoffPolicy(5, 2))

        await poller({"call_id": str(record.id), "external_call_id": "ext-t3", "attempt": 1})
        assert [job.payload["attempt"] for job in await queued(session_factory, TRANSCRIPT_QUEUE)] == [2]

        await poller({"call_id": str(record.id), "external_call_id": "ext-t3", "attempt": 2})
        stored = await reload(session_factory, record.id)
        assert stored.transcript_state == TranscriptState.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_unexpected_error_counts_as_attempt(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
        make_call,
    ) -> None:
        """A poll that blows up still schedules the next attempt and flags the call at the cap."""

        class BrokenProvider(InMemoryVoiceProvider):
            async def get_call(self, provider_call_id: str) -> CallDetail:
                raise ValueError("Expecting value: line 1 column 1 (char 0)")

        record = await make_call(external_id="ext-t6", status=CallStatus.COMPLETED)
        poller = TranscriptPoller(
            db_manager, provider_factory=lambda credentials: BrokenProvider(), policy=BackoffPolicy(5, 2)
        )
        payload = {"call_id": str(record.id), "external_call_id": "ext-t6", "tenant_id": None}

        await poller({**payload, "attempt": 1})
        assert [job.payload["attempt"] for job in await queued(session_factory, TRANSCRIPT_QUEUE)] == [2]
        assert (await reload(session_factory, record.id)).transcript_state != TranscriptState.UNAVAILABLE

        await poller({**payload, "attempt": 2})
        assert (await reload(session_factory, record.id)).transcript_state == TranscriptState.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_transcript_arrived_by_webhook_meanwhile(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        poller: TranscriptPoller,
        voice_provider: InMemoryVoiceProvider,
        make_call,
    ) -> None:
        """A pending poll for a call that already has its transcript only queues extraction."""
        record = await make_call(external_id="ext-t4", status=CallStatus.COMPLETED, transcript="User: hi")

        await poller({"call_id": str(record.id), "external_call_id": "ext-t4", "attempt": 3})

        assert voice_provider.get_call_requests == []
        assert len(await queued(session_factory, EXTRACTION_QUEUE)) == 1

    @pytest.mark.asyncio
    async def test_schedule_past_budget_returns_none(self, db_manager: DatabaseManager, make_call) -> None:
        record = await make_call(external_id="ext-t5")
        async with db_manager.session() as session:
            scheduled = await TranscriptScheduler(session, BackoffPolicy(5, 6)).schedule(
                record.id, "ext-t5", None, attempt=7
            )
        assert scheduled is None

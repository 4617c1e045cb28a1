"""
Tests for the stuck call sweep.
"""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.calls.models import CallRecord, CallStatus
from app.calls.sweeper import ABANDONED_REASON, StuckCallSweeper, SweepPolicy, schedule_sweep
from app.config import get_settings
from app.jobs.models import Job
from app.jobs.queue import EXTRACTION_QUEUE, STUCK_CALL_QUEUE, TRANSCRIPT_QUEUE
from app.main import build_worker_pools
from app.shared.database import DatabaseManager
from app.telephony.adapters.mock import InMemoryVoiceProvider
from app.telephony.interface import CallDetail
from app.tenants.models import Tenant

POLICY = SweepPolicy(interval_seconds=300, stale_after_seconds=900, abandon_after_seconds=7200, batch_size=10)


def hours_ago(hours: float) -> datetime:
    return datetime.now(timezone.utc) - timedelta(hours=hours)


async def queued(session_factory: async_sessionmaker[AsyncSession], queue: str) -> list[Job]:
    async with session_factory() as session:
        result = await session.execute(select(Job).where(Job.queue == queue))
        return list(result.scalars().all())


async def reload(session_factory: async_sessionmaker[AsyncSession], call_id: UUID) -> CallRecord:
    async with session_factory() as session:
        return (await session.execute(select(CallRecord).where(CallRecord.id == call_id))).scalar_one()


class TestStuckCallSweeper:
    """Tests for StuckCallSweeper."""

    @pytest.fixture
    def sweeper(self, db_manager: DatabaseManager, voice_provider: InMemoryVoiceProvider) -> StuckCallSweeper:
        return StuckCallSweeper(db_manager, provider_factory=lambda credentials: voice_provider, policy=POLICY)

    @pytest.mark.asyncio
    async def test_ended_call_reconciled_from_provider_detail(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sweeper: StuckCallSweeper,
        voice_provider: InMemoryVoiceProvider,
        tenant: Tenant,
        make_call,
    ) -> None:
        """A call whose end webhook was lost picks up the provider's final state."""
        record = await make_call(
            tenant_id=tenant.id,
            external_id="ext-s1",
            status=CallStatus.IN_PROGRESS,
            updated_at=hours_ago(1),
        )
        voice_provider.stage(
            "ext-s1",
            CallDetail(
                provider_call_id="ext-s1",
                status="ended",
                ended_reason="customer-ended-call",
                duration_seconds=95,
                cost=0.31,
                transcript="AI: Hello\nUser: Send me the pricing please",
            ),
        )

        report = await sweeper.sweep()

        assert report.checked == 1
        assert report.reconciled == 1
        assert voice_provider.get_call_requests == ["ext-s1"]
        stored = await reload(session_factory, record.id)
        assert stored.status == CallStatus.COMPLETED
        assert stored.duration_seconds == 95
        assert stored.transcript.endswith("pricing please")
        extraction = await queued(session_factory, EXTRACTION_QUEUE)
        assert [job.payload["call_id"] for job in extraction] == [str(record.id)]

    @pytest.mark.asyncio
    async def test_ended_without_transcript_starts_polling(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sweeper: StuckCallSweeper,
        voice_provider: InMemoryVoiceProvider,
        make_call,
    ) -> None:
        record = await make_call(external_id="ext-s2", status=CallStatus.RINGING, updated_at=hours_ago(1))
        voice_provider.stage(
            "ext-s2",
            CallDetail(provider_call_id="ext-s2", status="ended", ended_reason="customer-did-not-answer"),
        )

        await sweeper.sweep()

        assert (await reload(session_factory, record.id)).status == CallStatus.NO_ANSWER
        polls = await queued(session_factory, TRANSCRIPT_QUEUE)
        assert [job.payload["external_call_id"] for job in polls] == ["ext-s2"]

    @pytest.mark.asyncio
    async def test_call_still_live_at_provider_left_alone(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sweeper: StuckCallSweeper,
        voice_provider: InMemoryVoiceProvider,
        make_call,
    ) -> None:
        record = await make_call(external_id="ext-s3", status=CallStatus.RINGING, updated_at=hours_ago(1))
        voice_provider.stage("ext-s3", CallDetail(provider_call_id="ext-s3", status="in-progress"))

        report = await sweeper.sweep()

        assert report.still_live == 1
        assert (await reload(session_factory, record.id)).status == CallStatus.IN_PROGRESS
        assert await queued(session_factory, EXTRACTION_QUEUE) == []

    @pytest.mark.asyncio
    async def test_unconfirmed_call_ended_after_abandon_threshold(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sweeper: StuckCallSweeper,
        voice_provider: InMemoryVoiceProvider,
        make_call,
    ) -> None:
        """Without a provider id nothing can confirm the call; it is ended once old enough."""
        young = await make_call(status=CallStatus.QUEUED, updated_at=hours_ago(1))
        old = await make_call(status=CallStatus.QUEUED, updated_at=hours_ago(3))

        report = await sweeper.sweep()

        assert report.checked == 2
        assert report.abandoned == 1
        assert report.still_live == 1
        assert voice_provider.get_call_requests == []
        assert (await reload(session_factory, young.id)).status == CallStatus.QUEUED
        ended = await reload(session_factory, old.id)
        assert ended.status == CallStatus.HUNG_UP
        assert ended.ended_reason == ABANDONED_REASON
        assert await queued(session_factory, TRANSCRIPT_QUEUE) == []

    @pytest.mark.asyncio
    async def test_recent_and_terminal_calls_skipped(
        self,
        sweeper: StuckCallSweeper,
        voice_provider: InMemoryVoiceProvider,
        make_call,
    ) -> None:
        await make_call(external_id="ext-s4", status=CallStatus.IN_PROGRESS)
        await make_call(external_id="ext-s5", status=CallStatus.COMPLETED, updated_at=hours_ago(5))

        report = await sweeper.sweep()

        assert report.checked == 0
        assert voice_provider.get_call_requests == []

    @pytest.mark.asyncio
    async def test_one_failing_call_does_not_stop_the_sweep(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
        make_call,
    ) -> None:
        class FlakyProvider(InMemoryVoiceProvider):
            async def get_call(self, provider_call_id: str) -> CallDetail:
                if provider_call_id == "ext-bad":
                    raise ValueError("Expecting value: line 1 column 1 (char 0)")
                return await super().get_call(provider_call_id)

        provider = FlakyProvider()
        sweeper = StuckCallSweeper(db_manager, provider_factory=lambda credentials: provider, policy=POLICY)
        await make_call(external_id="ext-bad", status=CallStatus.IN_PROGRESS, updated_at=hours_ago(2))
        good = await make_call(external_id="ext-good", status=CallStatus.IN_PROGRESS, updated_at=hours_ago(1))
        provider.stage(
            "ext-good",
            CallDetail(provider_call_id="ext-good", status="ended", ended_reason="assistant-ended-call"),
        )

        report = await sweeper.sweep()

        assert report.errors == 1
        assert report.reconciled == 1
        assert (await reload(session_factory, good.id)).status == CallStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_job_run_schedules_next_sweep(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        sweeper: StuckCallSweeper,
    ) -> None:
        await sweeper({"bucket": 0})

        jobs = await queued(session_factory, STUCK_CALL_QUEUE)
        assert len(jobs) == 1
        assert jobs[0].dedupe_key.startswith("stuck-calls:")
        assert round((jobs[0].due_at - jobs[0].created_at).total_seconds()) == POLICY.interval_seconds


class TestScheduleSweep:
    """Tests for schedule_sweep."""

    @pytest.mark.asyncio
    async def test_same_interval_collapses_to_one_job(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        policy = SweepPolicy(interval_seconds=3600)

        async with db_manager.session() as session:
            first = await schedule_sweep(session, policy, delay_seconds=0)
        async with db_manager.session() as session:
            second = await schedule_sweep(session, policy, delay_seconds=0)

        jobs = await queued(session_factory, STUCK_CALL_QUEUE)
        assert first is not None
        assert second is None
        assert len(jobs) == 1


class TestWorkerWiring:
    """The sweep runs on its own single-worker pool."""

    def test_stuck_call_pool_registered(self, db_manager: DatabaseManager) -> None:
        pools = {pool.queue: pool for pool in build_worker_pools(get_settings())}

        assert pools[STUCK_CALL_QUEUE]._config.concurrency == 1
        assert isinstance(pools[STUCK_CALL_QUEUE]._handler, StuckCallSweeper)

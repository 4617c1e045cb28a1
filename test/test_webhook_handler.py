"""
Tests for webhook processing and follow-up scheduling.
"""

from typing import Any
from uuid import UUID

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.calls.models import CallRecord, CallStatus
from app.jobs.models import Job, JobStatus
from app.jobs.queue import EXTRACTION_QUEUE, TRANSCRIPT_QUEUE, WEBHOOK_QUEUE
from app.jobs.worker import WorkerPool, WorkerPoolConfig
from app.shared.database import DatabaseManager
from app.tenants.models import Tenant
from app.transcripts.scheduler import BackoffPolicy
from app.webhooks.events import parse_webhook_payload
from app.webhooks.handler import WebhookHandler
from app.webhooks.intake import WebhookIntake
from app.webhooks.models import WebhookEvent, WebhookEventStatus
from app.webhooks.store import EventStore
from conftest import vapi_message


async def store(session_factory: async_sessionmaker[AsyncSession], body: dict[str, Any]) -> UUID:
    event = parse_webhook_payload(body)
    async with session_factory() as session:
        stored = await EventStore(session).append(event, body, event.idempotency_key())
        await session.commit()
    return stored.id


async def jobs(session_factory: async_sessionmaker[AsyncSession], queue: str) -> list[Job]:
    async with session_factory() as session:
        result = await session.execute(select(Job).where(Job.queue == queue).order_by(Job.created_at))
        return list(result.scalars().all())


async def webhook_event(session_factory: async_sessionmaker[AsyncSession], event_id: UUID) -> WebhookEvent:
    async with session_factory() as session:
        return (await session.execute(select(WebhookEvent).where(WebhookEvent.id == event_id))).scalar_one()


class TestWebhookHandler:
    """Tests for WebhookHandler."""

    @pytest.mark.asyncio
    async def test_final_transcript_queues_extraction(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
        tenant: Tenant,
    ) -> None:
        event_id = await store(
            session_factory,
            vapi_message(
                "end-of-call-report",
                "ext-h1",
                tenant_id=tenant.id,
                endedReason="customer-ended-call",
                durationSeconds=120,
                artifact={"transcript": "AI: Hello\nUser: I'd like a quote"},
            ),
        )

        result = await WebhookHandler(db_manager).process(event_id)

        assert result is not None
        assert result.record.status == CallStatus.COMPLETED
        extraction = await jobs(session_factory, EXTRACTION_QUEUE)
        assert len(extraction) == 1
        assert extraction[0].dedupe_key.startswith(f"extract:{result.record.id}:")
        assert await jobs(session_factory, TRANSCRIPT_QUEUE) == []

        stored = await webhook_event(session_factory, event_id)
        assert stored.status == WebhookEventStatus.PROCESSED
        assert stored.tenant_id == tenant.id

    @pytest.mark.asyncio
    async def test_longer_transcript_queues_fresh_extraction(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
        tenant: Tenant,
    ) -> None:
        handler = WebhookHandler(db_manager)
        partial = await store(
            session_factory,
            vapi_message("call-ended", "ext-h8", tenant_id=tenant.id, event_id="p1",
                         endedReason="customer-ended-call", transcript="AI: Hello"),
        )
        final = await store(
            session_factory,
            vapi_message("end-of-call-report", "ext-h8", tenant_id=tenant.id, event_id="p2",
                         endedReason="customer-ended-call",
                         artifact={"transcript": "AI: Hello\nUser: Yes, send me a quote please"}),
        )
        repeat = await store(
            session_factory,
            vapi_message("end-of-call-report", "ext-h8", tenant_id=tenant.id, event_id="p3",
                         endedReason="customer-ended-call",
                         artifact={"transcript": "AI: Hello\nUser: Yes, send me a quote please"}),
        )

        await handler.process(partial)
        assert len(await jobs(session_factory, EXTRACTION_QUEUE)) == 1

        await handler.process(final)
        await handler.process(repeat)
        extraction = await jobs(session_factory, EXTRACTION_QUEUE)
        assert len(extraction) == 2
        assert len({job.dedupe_key for job in extraction}) == 2

    @pytest.mark.asyncio
    async def test_end_without_transcript_schedules_polling(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
        tenant: Tenant,
    ) -> None:
        event_id = await store(
            session_factory,
            vapi_message("call-ended", "ext-h2", tenant_id=tenant.id, endedReason="customer-ended-call"),
        )

        result = await WebhookHandler(db_manager, transcript_policy=BackoffPolicy(5, 6)).process(event_id)

        polls = await jobs(session_factory, TRANSCRIPT_QUEUE)
        assert len(polls) == 1
        assert polls[0].payload == {
            "call_id": str(result.record.id),
            "external_call_id": "ext-h2",
            "tenant_id": str(tenant.id),
            "attempt": 1,
        }
        assert round((polls[0].due_at - polls[0].created_at).total_seconds()) == 5
        assert await jobs(session_factory, EXTRACTION_QUEUE) == []

    @pytest.mark.asyncio
    async def test_repeated_end_event_does_not_reschedule(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        handler = WebhookHandler(db_manager)
        first = await store(session_factory, vapi_message("call-ended", "ext-h3", event_id="a"))
        second = await store(session_factory, vapi_message("hang", "ext-h3", event_id="b"))

        await handler.process(first)
        await handler.process(second)

        assert len(await jobs(session_factory, TRANSCRIPT_QUEUE)) == 1

    @pytest.mark.asyncio
    async def test_live_event_schedules_nothing(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        event_id = await store(session_factory, vapi_message("status-update", "ext-h4", status="ringing"))

        result = await WebhookHandler(db_manager).process(event_id)

        assert result.record.status == CallStatus.RINGING
        assert await jobs(session_factory, TRANSCRIPT_QUEUE) == []
        assert await jobs(session_factory, EXTRACTION_QUEUE) == []

    @pytest.mark.asyncio
    async def test_unknown_event_type_stored_without_side_effects(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        event_id = await store(session_factory, vapi_message("tool-calls", "ext-h5"))

        assert await WebhookHandler(db_manager).process(event_id) is None

        async with session_factory() as session:
            records = (await session.execute(select(CallRecord))).scalars().all()
        assert records == []
        assert (await webhook_event(session_factory, event_id)).status == WebhookEventStatus.PROCESSED

    @pytest.mark.asyncio
    async def test_already_processed_is_skipped(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        handler = WebhookHandler(db_manager)
        event_id = await store(session_factory, vapi_message("call-started", "ext-h6"))

        assert await handler.process(event_id) is not None
        assert await handler.process(event_id) is None

    @pytest.mark.asyncio
    async def test_failure_marks_event_failed(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        class ExplodingReconciler:
            def __init__(self, session: AsyncSession) -> None:
                pass

            async def apply(self, event, identity):
                raise RuntimeError("database went away")

        event_id = await store(session_factory, vapi_message("call-started", "ext-h7"))

        with pytest.raises(RuntimeError):
            await WebhookHandler(db_manager, reconciler_factory=ExplodingReconciler).process(event_id)

        stored = await webhook_event(session_factory, event_id)
        assert stored.status == WebhookEventStatus.FAILED
        assert "database went away" in stored.error


class TestWebhookWorker:
    """Stored webhooks are drained by the worker pool."""

    @pytest.mark.asyncio
    async def test_intake_then_drain(
        self,
        db_manager: DatabaseManager,
        session_factory: async_sessionmaker[AsyncSession],
        tenant: Tenant,
    ) -> None:
        intake = WebhookIntake(db_manager)
        for body in (
            vapi_message("call-started", "ext-w1", tenant_id=tenant.id, event_id="w1"),
            vapi_message("call-ended", "ext-w1", tenant_id=tenant.id, event_id="w2",
                         endedReason="customer-busy"),
        ):
            event = parse_webhook_payload(body)
            await intake.accept(event, body, event.idempotency_key(), tenant.id)

        pool = WorkerPool(WorkerPoolConfig(queue=WEBHOOK_QUEUE, concurrency=1), WebhookHandler(db_manager), db_manager)
        assert await pool.drain() == 2

        async with session_factory() as session:
            record = (
                await session.execute(select(CallRecord).where(CallRecord.external_id == "ext-w1"))
            ).scalar_one()
        assert record.status == CallStatus.BUSY
        assert record.tenant_id == tenant.id
        assert all(job.status == JobStatus.DONE for job in await jobs(session_factory, WEBHOOK_QUEUE))

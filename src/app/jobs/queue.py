"""
Database-backed delayed job queue.

Jobs live in the ``jobs`` table with a ``due_at`` timestamp, so scheduled
work (including transcript polling retries) survives process restarts and
is shared by every application instance.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Sequence
from uuid import UUID, uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.jobs.models import Job, JobStatus
from app.shared.database import insert_for
from app.shared.logging import get_logger

logger = get_logger(__name__)

WEBHOOK_QUEUE = "webhooks"
EXTRACTION_QUEUE = "extraction"
TRANSCRIPT_QUEUE = "transcripts"
STUCK_CALL_QUEUE = "stuck_calls"

MAX_ERROR_LENGTH = 2000


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobQueue:
    """Enqueue, claim and settle jobs."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def enqueue(
        self,
        queue: str,
        payload: dict[str, Any],
        delay_seconds: float = 0,
        dedupe_key: str | None = None,
    ) -> UUID | None:
        """Add a job that becomes runnable after ``delay_seconds``.

        With a ``dedupe_key`` the insert is skipped when a job with the same
        key already exists.

        Returns:
            The new job id, or None when deduplicated.
        """
        job_id = uuid4()
        now = utcnow()
        values = {
            "id": job_id,
            "queue": queue,
            "payload": payload,
            "dedupe_key": dedupe_key,
            "status": JobStatus.PENDING,
            "due_at": now + timedelta(seconds=delay_seconds),
            "attempts": 0,
            "created_at": now,
        }

        if dedupe_key is None:
            self._session.add(Job(**values))
            await self._session.flush()
        else:
            stmt = (
                insert_for(self._session, Job)
                .values(**values)
                .on_conflict_do_nothing(index_elements=[Job.dedupe_key])
            )
            await self._session.execute(stmt)
            existing = await self._session.execute(
                select(Job.id).where(Job.dedupe_key == dedupe_key)
            )
            if existing.scalar_one_or_none() != job_id:
                logger.info(
                    "Job deduplicated",
                    extra={"queue": queue, "dedupe_key": dedupe_key},
                )
                return None

        logger.info(
            "Job enqueued",
            extra={
                "job_id": str(job_id),
                "queue": queue,
                "delay_seconds": delay_seconds,
            },
        )
        return job_id

    async def claim_due(self, queue: str, limit: int) -> Sequence[Job]:
        """Atomically move up to ``limit`` due jobs from pending to running.

        A conditional UPDATE on status guarantees each job is claimed by one
        worker even when several instances poll concurrently.
        """
        now = utcnow()
        candidates = await self._session.execute(
            select(Job.id)
            .where(
                Job.queue == queue,
                Job.status == JobStatus.PENDING,
                Job.due_at <= now,
            )
            .order_by(Job.due_at)
            .limit(limit)
        )
        ids = list(candidates.scalars().all())
        if not ids:
            return []

        result = await self._session.execute(
            update(Job)
            .where(Job.id.in_(ids), Job.status == JobStatus.PENDING)
            .values(
                status=JobStatus.RUNNING,
                locked_at=now,
                attempts=Job.attempts + 1,
            )
            .returning(Job.id)
            .execution_options(synchronize_session=False)
        )
        claimed = list(result.scalars().all())
        await self._session.commit()
        if not claimed:
            return []

        jobs = await self._session.execute(
            select(Job)
            .where(Job.id.in_(claimed))
            .order_by(Job.due_at)
            .execution_options(populate_existing=True)
        )
        return jobs.scalars().all()

    async def complete(self, job_id: UUID) -> None:
        await self._session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(status=JobStatus.DONE, finished_at=utcnow(), locked_at=None)
            .execution_options(synchronize_session=False)
        )

    async def fail(self, job_id: UUID, error: str) -> None:
        await self._session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(
                status=JobStatus.FAILED,
                last_error=error[:MAX_ERROR_LENGTH],
                finished_at=utcnow(),
                locked_at=None,
            )
            .execution_options(synchronize_session=False)
        )

    async def requeue_stale(self, queue: str, stale_after_seconds: int) -> int:
        """Return running jobs whose worker disappeared to the pending state."""
        cutoff = utcnow() - timedelta(seconds=stale_after_seconds)
        result = await self._session.execute(
            update(Job)
            .where(
                Job.queue == queue,
                Job.status == JobStatus.RUNNING,
                Job.locked_at < cutoff,
            )
            .values(status=JobStatus.PENDING, locked_at=None, due_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        count = result.rowcount or 0
        if count:
            logger.warning(
                "Stale jobs requeued",
                extra={"queue": queue, "count": count},
            )
        return count

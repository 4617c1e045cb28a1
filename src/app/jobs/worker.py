"""
Bounded worker pools draining the job queue.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from app.jobs.queue import JobQueue
from app.shared.database import DatabaseManager, get_database_manager
from app.shared.logging import correlation_scope, get_logger

logger = get_logger(__name__)

JobHandler = Callable[[dict[str, Any]], Awaitable[None]]


@dataclass
class WorkerPoolConfig:
    """Configuration for one queue's worker pool."""

    queue: str
    concurrency: int = 1
    poll_interval_seconds: float = 1.0
    stale_after_seconds: int = 600


class WorkerPool:
    """Runs up to ``concurrency`` jobs of one queue at a time.

    Each job runs in its own task and its own database session. A failing
    job is marked failed with its error text; it never stops the pool.
    """

    def __init__(
        self,
        config: WorkerPoolConfig,
        handler: JobHandler,
        db_manager: DatabaseManager | None = None,
    ) -> None:
        self._config = config
        self._handler = handler
        self._db = db_manager or get_database_manager()
        self._semaphore = asyncio.Semaphore(config.concurrency)
        self._in_flight: set[asyncio.Task[None]] = set()
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def queue(self) -> str:
        return self._config.queue

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the polling loop as a background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name=f"worker-pool:{self.queue}")
        logger.info(
            "Worker pool started",
            extra={"queue": self.queue, "concurrency": self._config.concurrency},
        )

    async def stop(self) -> None:
        """Stop polling and wait for in-flight jobs."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._in_flight:
            await asyncio.gather(*self._in_flight, return_exceptions=True)
        logger.info("Worker pool stopped", extra={"queue": self.queue})

    async def _run_loop(self) -> None:
        async with self._db.session() as session:
            await JobQueue(session).requeue_stale(self.queue, self._config.stale_after_seconds)

        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Worker pool tick failed", extra={"queue": self.queue})
            await asyncio.sleep(self._config.poll_interval_seconds)

    async def run_once(self, wait: bool = False) -> int:
        """Claim as many due jobs as there are free slots and start them.

        Args:
            wait: Await the started jobs before returning.

        Returns:
            Number of jobs started.
        """
        free_slots = self._config.concurrency - len(self._in_flight)
        if free_slots <= 0:
            return 0

        async with self._db.session() as session:
            jobs = await JobQueue(session).claim_due(self.queue, free_slots)

        started: list[asyncio.Task[None]] = []
        for job in jobs:
            task = asyncio.create_task(self._execute(job.id, dict(job.payload or {}), job.attempts))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)
            started.append(task)

        if wait and started:
            await asyncio.gather(*started)
        return len(started)

    async def drain(self) -> int:
        """Run due jobs until none are left; used by tests and one-shot runs."""
        total = 0
        while True:
            count = await self.run_once(wait=True)
            if count == 0:
                return total
            total += count

    async def _execute(self, job_id: Any, payload: dict[str, Any], attempts: int) -> None:
        async with self._semaphore:
            with correlation_scope(str(payload.get("correlation_id") or job_id)):
                try:
                    await self._handler(payload)
                except Exception as e:
                    logger.exception(
                        "Job failed",
                        extra={"queue": self.queue, "job_id": str(job_id), "attempts": attempts},
                    )
                    async with self._db.session() as session:
                        await JobQueue(session).fail(job_id, f"{type(e).__name__}: {e}")
                else:
                    async with self._db.session() as session:
                        await JobQueue(session).complete(job_id)

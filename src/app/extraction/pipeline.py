"""
Extraction pipeline.

Runs the extraction capability on a call transcript, falls back to the
heuristic extractor when the capability fails, applies the qualification
policy, and writes the outcome to the call. Lead materialization runs in
its own transaction: a failed lead write never rolls back the call update.
"""

import hashlib
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from app.calls.models import CallRecord
from app.calls.repository import CallRecordRepository
from app.campaigns.metrics import recompute_campaign_metrics
from app.extraction.capability import ExtractionCapability, LLMExtractor
from app.extraction.heuristics import heuristic_extract
from app.extraction.models import ExtractionResult
from app.extraction.normalizer import normalize_extraction
from app.extraction.qualification import QualificationPolicy
from app.jobs.queue import EXTRACTION_QUEUE, JobQueue
from app.leads.materializer import LeadMaterializer
from app.shared.database import DatabaseManager, get_database_manager
from app.shared.logging import get_logger

logger = get_logger(__name__)


def transcript_digest(transcript: str) -> str:
    return hashlib.sha256(transcript.encode("utf-8")).hexdigest()[:16]


async def enqueue_extraction(session: AsyncSession, call_id: UUID, transcript: str) -> UUID | None:
    """Queue analysis of a call's transcript.

    Each distinct transcript text is analysed once; a longer final
    transcript arriving after a partial one queues a fresh analysis.
    """
    digest = transcript_digest(transcript)
    return await JobQueue(session).enqueue(
        EXTRACTION_QUEUE,
        {"call_id": str(call_id), "correlation_id": f"extract:{call_id}:{digest}"},
        dedupe_key=f"extract:{call_id}:{digest}",
    )


def build_context(record: CallRecord) -> dict[str, Any]:
    """Auxiliary call data handed to the capability with the transcript."""
    context: dict[str, Any] = {
        "call_id": str(record.id),
        "duration_seconds": record.duration_seconds,
        "customer_number": record.customer_number,
        "campaign_id": str(record.campaign_id) if record.campaign_id else None,
        "direction": record.direction.value if record.direction else None,
        "ended_reason": record.ended_reason,
    }
    if record.ai_summary:
        context["provider_summary"] = record.ai_summary
    return {key: value for key, value in context.items() if value is not None}


def derive_outcome(result: ExtractionResult) -> str:
    if result.negative_consent:
        return "not_interested"
    if result.has_appointment:
        return "appointment_scheduled"
    if result.outcome:
        return result.outcome
    if result.is_qualified_lead:
        return "interested"
    return "not_qualified"


class ExtractionPipeline:
    """Transcript in, qualified ``ExtractionResult`` out."""

    def __init__(
        self,
        capability: ExtractionCapability | None = None,
        policy: QualificationPolicy | None = None,
    ) -> None:
        self._capability = capability or LLMExtractor()
        self._policy = policy or QualificationPolicy.from_settings()

    async def run(self, transcript: str, context: dict[str, Any] | None = None) -> ExtractionResult:
        context = context or {}
        try:
            raw = await self._capability.extract(transcript, context)
            result = normalize_extraction(raw)
        except Exception as e:
            logger.warning(
                "Extraction capability failed; using heuristic extraction",
                extra={
                    "call_id": context.get("call_id"),
                    "error_type": type(e).__name__,
                    "error": str(e),
                    "retryable": getattr(e, "retryable", False),
                },
            )
            result = heuristic_extract(transcript, context)

        result = self._policy.evaluate(result, transcript)
        logger.info(
            "Extraction completed",
            extra={
                "call_id": context.get("call_id"),
                "source": result.source.value,
                "interest_level": result.interest_level,
                "qualified": result.is_qualified_lead,
                "confidence_score": result.confidence_score,
            },
        )
        return result


def apply_extraction(record: CallRecord, result: ExtractionResult, analyzed_at: datetime) -> None:
    metadata = dict(record.call_metadata or {})
    metadata["extraction"] = {**metadata.get("extraction", {}), **result.to_metadata()}
    record.call_metadata = metadata
    record.outcome = derive_outcome(result)
    if result.sentiment is not None:
        record.sentiment = result.sentiment.value
    record.is_qualified_lead = result.is_qualified_lead
    record.analyzed_at = analyzed_at
    if result.summary and not record.ai_summary:
        record.ai_summary = result.summary


class CallAnalyzer:
    """Job handler for the extraction queue."""

    def __init__(
        self,
        db_manager: DatabaseManager | None = None,
        pipeline: ExtractionPipeline | None = None,
        materializer_factory: Callable[[AsyncSession], LeadMaterializer] = LeadMaterializer,
    ) -> None:
        self._db = db_manager or get_database_manager()
        self._pipeline = pipeline or ExtractionPipeline()
        self._materializer_factory = materializer_factory

    async def __call__(self, payload: dict[str, Any]) -> None:
        await self.analyze(UUID(str(payload["call_id"])))

    async def analyze(self, call_id: UUID) -> ExtractionResult | None:
        async with self._db.session() as session:
            record = await CallRecordRepository(session).get_by_id(call_id)
            if record is None:
                logger.warning("Analysis requested for unknown call", extra={"call_id": str(call_id)})
                return None
            if not record.transcript:
                logger.warning("Analysis requested for call without transcript", extra={"call_id": str(call_id)})
                return None
            transcript = record.transcript
            context = build_context(record)

        # No session is held while the model runs
        result = await self._pipeline.run(transcript, context)

        async with self._db.session() as session:
            record = await CallRecordRepository(session).get_by_id(call_id)
            if record is None:  # pragma: no cover - calls are never deleted
                return result
            apply_extraction(record, result, datetime.now(timezone.utc))
            await session.flush()
            if record.campaign_id is not None:
                await recompute_campaign_metrics(session, record.campaign_id)

        if result.is_qualified_lead:
            await self._materialize(call_id, result)
        return result

    async def _materialize(self, call_id: UUID, result: ExtractionResult) -> None:
        try:
            async with self._db.session() as session:
                record = await CallRecordRepository(session).get_by_id(call_id)
                if record is None:  # pragma: no cover
                    return
                lead = await self._materializer_factory(session).materialize(record, result)
                if lead is not None and record.lead_id is None:
                    record.lead_id = lead.id
        except Exception:
            logger.exception("Lead materialization failed", extra={"call_id": str(call_id)})

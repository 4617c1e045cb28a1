"""
Lead materializer.

Qualified calls are upserted into ``leads`` keyed by (tenant, normalized
phone). Structured fields and custom fields merge, with new values winning
for every key the new extraction carries. The notes collection is replaced
wholesale by one fresh AI summary note so repeated calls never grow it.
"""

from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.appointments.repository import AppointmentRepository
from app.calls.models import CallRecord
from app.config import Settings, get_settings
from app.extraction.models import ExtractionResult
from app.leads.models import Lead
from app.shared.database import insert_for
from app.shared.logging import get_logger
from app.shared.phone import normalize_phone

logger = get_logger(__name__)

MAX_SCORE = 100
DEFAULT_INTEREST = 5
NOTE_AUTHOR = "AI System"
NOTE_TAG = "ai-summary"

_STRUCTURED_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "address",
    "city",
    "state",
    "postcode",
    "country",
    "company",
    "job_title",
)


def lead_score(interest_level: int | None, multiplier: int = 10) -> int:
    """Linear 0..100 score from the 1..10 interest level."""
    interest = interest_level if interest_level is not None else DEFAULT_INTEREST
    return max(0, min(int(round(interest * multiplier)), MAX_SCORE))


def lead_quality(interest_level: int | None) -> str:
    interest = interest_level if interest_level is not None else DEFAULT_INTEREST
    if interest >= 7:
        return "high"
    if interest >= 5:
        return "medium"
    if interest >= 3:
        return "low"
    return "cold"


def build_summary(result: ExtractionResult) -> str:
    """Human readable summary written as the lead's single AI note."""
    parts: list[str] = []
    if result.summary:
        parts.append(result.summary)

    interest = result.interest_level
    if interest is not None:
        label = "High interest" if interest >= 7 else "Moderate interest" if interest >= 5 else "Low interest"
        parts.append(f"Interest Level: {label} ({interest}/10)")
    if result.timeline:
        parts.append(f"Timeline: {result.timeline}")
    if result.budget:
        parts.append(f"Budget: {result.budget}")
    if result.has_appointment and result.appointment is not None:
        when = " ".join(p for p in (result.appointment.date, result.appointment.time) if p)
        parts.append(f"Appointment: {when} ({result.appointment.type or 'callback'})")
    if result.pain_points:
        parts.append(f"Pain points: {', '.join(result.pain_points)}")
    if result.objections:
        parts.append(f"Objections: {', '.join(result.objections)}")
    if result.next_steps:
        parts.append(f"Next steps: {', '.join(result.next_steps)}")
    return "\n".join(parts) or "Qualified on call; no further details extracted."


def build_note(result: ExtractionResult, now: datetime) -> dict[str, Any]:
    timestamp = now.isoformat()
    return {
        "id": f"ai-note-{uuid4().hex[:12]}",
        "content": build_summary(result),
        "createdBy": NOTE_AUTHOR,
        "createdAt": timestamp,
        "lastUpdated": timestamp,
        "tag": NOTE_TAG,
    }


def custom_fields_from(result: ExtractionResult) -> dict[str, Any]:
    """Extension fields carried by this extraction; absent values are omitted."""
    calling_company = {
        key: value
        for key, value in {
            "name": result.calling_company,
            "service": result.calling_company_service,
            "representative": result.calling_company_rep,
            "contact_number": result.calling_company_phone,
        }.items()
        if value
    }
    fields: dict[str, Any] = {
        "interest_level": result.interest_level,
        "budget": result.budget,
        "timeline": result.timeline,
        "decision_authority": result.decision_authority,
        "pain_points": result.pain_points,
        "current_solution": result.current_solution,
        "competitors": result.competitors,
        "objections_raised": result.objections,
        "questions_asked": result.questions,
        "buying_signals": result.buying_signals,
        "next_steps": result.next_steps,
        "industry": result.industry,
        "company_size": result.company_size,
        "website": result.website,
        "sentiment": result.sentiment.value if result.sentiment else None,
        "confidence_score": result.confidence_score,
        "calling_company": calling_company,
        "appointment": (
            result.appointment.model_dump(exclude_none=True) if result.has_appointment and result.appointment else None
        ),
    }
    return {key: value for key, value in fields.items() if value not in (None, [], {})}


class LeadMaterializer:
    """Upserts Leads from qualified extractions."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._appointments = AppointmentRepository(session)

    async def get(self, tenant_id: UUID, phone: str) -> Lead | None:
        result = await self._session.execute(
            select(Lead)
            .where(Lead.tenant_id == tenant_id, Lead.phone == phone)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def materialize(self, call: CallRecord, result: ExtractionResult) -> Lead | None:
        """Create or update the Lead for a qualified call.

        Returns:
            The lead, or None when the call is not qualified or has no
            tenant or usable phone number.
        """
        if not result.is_qualified_lead:
            return None
        if call.tenant_id is None:
            logger.warning("Qualified call has no tenant; lead not created", extra={"call_id": str(call.id)})
            return None

        phone = normalize_phone(call.customer_number) or normalize_phone(result.phone)
        if phone is None:
            logger.warning("Qualified call has no usable phone number", extra={"call_id": str(call.id)})
            return None

        now = datetime.now(timezone.utc)
        lead, created = await self._upsert(call, result, phone, now)

        if result.has_appointment and result.appointment is not None:
            await self._appointments.create_from_proposal(call.tenant_id, lead.id, call.id, result.appointment)

        logger.info(
            "Lead created" if created else "Lead updated",
            extra={
                "lead_id": str(lead.id),
                "tenant_id": str(call.tenant_id),
                "call_id": str(call.id),
                "score": lead.score,
                "lead_quality": lead.lead_quality,
            },
        )
        return lead

    async def _upsert(
        self,
        call: CallRecord,
        result: ExtractionResult,
        phone: str,
        now: datetime,
    ) -> tuple[Lead, bool]:
        multiplier = self._settings.lead_score_multiplier
        structured = {field: getattr(result, field) for field in _STRUCTURED_FIELDS}
        lead_id = uuid4()

        stmt = (
            insert_for(self._session, Lead)
            .values(
                id=lead_id,
                tenant_id=call.tenant_id,
                campaign_id=call.campaign_id,
                phone=phone,
                status="qualified",
                score=lead_score(result.interest_level, multiplier),
                lead_quality=lead_quality(result.interest_level),
                lead_source=result.lead_source or "ai_call",
                last_call_id=call.id,
                last_contacted_at=now,
                notes=[build_note(result, now)],
                custom_fields=custom_fields_from(result),
                created_at=now,
                updated_at=now,
                **{k: v for k, v in structured.items() if v is not None},
            )
            .on_conflict_do_nothing(index_elements=[Lead.tenant_id, Lead.phone])
        )
        await self._session.execute(stmt)

        lead = await self.get(call.tenant_id, phone)
        if lead is None:  # pragma: no cover - row deleted concurrently
            raise RuntimeError(f"Lead for {phone} vanished after upsert")
        if lead.id == lead_id:
            return lead, True

        for field, value in structured.items():
            if value is not None:
                setattr(lead, field, value)
        if result.interest_level is not None:
            lead.score = lead_score(result.interest_level, multiplier)
            lead.lead_quality = lead_quality(result.interest_level)
        if lead.campaign_id is None and call.campaign_id is not None:
            lead.campaign_id = call.campaign_id
        lead.status = "qualified"
        lead.last_call_id = call.id
        lead.last_contacted_at = now
        lead.custom_fields = {**(lead.custom_fields or {}), **custom_fields_from(result)}
        lead.notes = [build_note(result, now)]
        lead.updated_at = now
        await self._session.flush()
        return lead, False

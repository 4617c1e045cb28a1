"""
Repository for appointments created from call extractions.
"""

from datetime import datetime, timezone
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.appointments.models import Appointment
from app.extraction.models import AppointmentProposal
from app.shared.database import insert_for
from app.shared.logging import get_logger

logger = get_logger(__name__)

DEFAULT_APPOINTMENT_TYPE = "callback"
DEFAULT_DURATION_MINUTES = 30


class AppointmentRepository:
    """Repository for appointment database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_call(self, call_id: UUID) -> Appointment | None:
        result = await self._session.execute(select(Appointment).where(Appointment.call_id == call_id))
        return result.scalar_one_or_none()

    async def create_from_proposal(
        self,
        tenant_id: UUID,
        lead_id: UUID,
        call_id: UUID,
        proposal: AppointmentProposal,
    ) -> tuple[Appointment, bool]:
        """Create the appointment proposed on ``call_id``.

        At most one appointment exists per call, so re-analysing a call
        returns the existing row instead of adding another.

        Returns:
            Tuple of (appointment, created).
        """
        appointment_id = uuid4()
        notes = "\n".join(p for p in (proposal.location, proposal.notes) if p) or None
        stmt = (
            insert_for(self._session, Appointment)
            .values(
                id=appointment_id,
                tenant_id=tenant_id,
                lead_id=lead_id,
                call_id=call_id,
                appointment_type=proposal.type or DEFAULT_APPOINTMENT_TYPE,
                scheduled_date=proposal.date,
                scheduled_time=proposal.time,
                duration_minutes=DEFAULT_DURATION_MINUTES,
                status="scheduled",
                notes=notes,
                created_at=datetime.now(timezone.utc),
            )
            .on_conflict_do_nothing(index_elements=[Appointment.call_id])
        )
        await self._session.execute(stmt)

        appointment = await self.get_by_call(call_id)
        if appointment is None:  # pragma: no cover - row deleted concurrently
            raise RuntimeError(f"Appointment for call {call_id} vanished after insert")

        created = appointment.id == appointment_id
        if created:
            logger.info(
                "Appointment created",
                extra={
                    "appointment_id": str(appointment.id),
                    "lead_id": str(lead_id),
                    "call_id": str(call_id),
                    "scheduled_date": proposal.date,
                    "scheduled_time": proposal.time,
                },
            )
        return appointment, created

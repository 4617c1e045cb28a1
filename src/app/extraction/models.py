"""
Normalized extraction result.

Every field is optional: the extraction capability may find none, some or
all of them. The result is transient; it is stored inside
``CallRecord.call_metadata["extraction"]`` and merged into
``Lead.custom_fields``.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ExtractionSource(str, Enum):
    LLM = "llm"
    HEURISTIC = "heuristic"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"
    MIXED = "mixed"


class AppointmentProposal(BaseModel):
    """Appointment proposed during the call."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    date: str | None = None
    time: str | None = None
    type: str | None = None
    location: str | None = None
    notes: str | None = None


class ExtractionResult(BaseModel):
    """Structured information extracted from one call transcript."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # Contact
    full_name: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    alternative_phone: str | None = None

    # Address
    address: str | None = None
    address_line2: str | None = None
    city: str | None = None
    state: str | None = None
    postcode: str | None = None
    country: str | None = None

    # Professional
    company: str | None = None
    job_title: str | None = None
    department: str | None = None
    industry: str | None = None
    company_size: str | None = None
    website: str | None = None
    lead_source: str | None = None
    referral_source: str | None = None

    # Who made the call
    calling_company: str | None = None
    calling_company_service: str | None = None
    calling_company_rep: str | None = None
    calling_company_phone: str | None = None

    # Qualification metrics
    interest_level: int | None = Field(default=None, ge=1, le=10)
    budget: str | None = None
    timeline: str | None = None
    decision_authority: str | None = None
    pain_points: list[str] = Field(default_factory=list)
    current_solution: str | None = None
    competitors: list[str] = Field(default_factory=list)

    # Conversation artifacts
    questions: list[str] = Field(default_factory=list)
    objections: list[str] = Field(default_factory=list)
    buying_signals: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    key_points: list[str] = Field(default_factory=list)

    appointment: AppointmentProposal | None = None

    # Signals feeding the qualification decision
    appointment_requested: bool = False
    pricing_requested: bool = False
    contact_info_given: bool = False
    callback_requested: bool = False
    negative_consent: bool = False

    summary: str | None = None
    follow_up_notes: str | None = None
    sentiment: Sentiment | None = None
    outcome: str | None = None
    confidence_score: float | None = Field(default=None, ge=0.0, le=1.0)

    model_qualified: bool | None = Field(
        default=None,
        description="The capability's own qualification flag, informational only",
    )
    is_qualified_lead: bool = False
    source: ExtractionSource = ExtractionSource.LLM

    @property
    def has_appointment(self) -> bool:
        return self.appointment is not None and bool(self.appointment.date or self.appointment.time)

    @property
    def has_contact_info(self) -> bool:
        return bool(self.email or self.phone or self.full_name or self.first_name)

    def to_metadata(self) -> dict[str, Any]:
        """Serialize for JSON storage with the provider-facing camelCase keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

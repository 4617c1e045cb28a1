"""
Normalization of raw extraction output into ExtractionResult.

The capability is asked for a fixed JSON shape but does not always return
it. Each field is looked up under several aliases: flat camelCase,
snake_case, and the Title Case keys of the sectioned layout
(``PROSPECT_INFORMATION``, ``QUALIFICATION_DETAILS``, ...). Arrays default
to empty, the interest level is clamped to 1..10 and the first/last name
are derived from the full name when missing. This module is the single
place to update when the prompt format changes.
"""

import re
from typing import Any

from app.extraction.models import AppointmentProposal, ExtractionResult, ExtractionSource, Sentiment
from app.shared.logging import get_logger

logger = get_logger(__name__)

INTEREST_MIN = 1
INTEREST_MAX = 10

_INTEREST_WORDS = {
    "very high": 9,
    "high": 8,
    "medium": 5,
    "moderate": 5,
    "low": 2,
    "none": 1,
}

_TRUE_STRINGS = {"true", "yes", "y", "1"}

_SECTION_ALIASES = {
    "prospect": ("PROSPECT_INFORMATION", "prospectInformation", "prospect_information", "prospect"),
    "qualification": ("QUALIFICATION_DETAILS", "qualificationDetails", "qualification_details", "qualification"),
    "appointment": ("APPOINTMENT_INFORMATION", "appointmentInformation", "appointment_information", "appointment"),
    "conversation": ("CONVERSATION_ANALYSIS", "conversationAnalysis", "conversation_analysis", "conversation"),
    "calling": ("CALLING_COMPANY", "callingCompanyInfo", "calling_company_info"),
    "tracking": ("LEAD_TRACKING", "leadTracking", "tracking"),
    "behavioral": ("BEHAVIORAL_INSIGHTS", "behavioralInsights", "behavioral"),
}

_FIRST_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    for key in _SECTION_ALIASES[name]:
        value = raw.get(key)
        if isinstance(value, dict):
            return value
    return {}


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip()) and value.strip().lower() not in {"null", "none", "n/a", "unknown"}
    if isinstance(value, (list, dict)):
        return bool(value)
    return True


def _lookup(sources: list[dict[str, Any]], *keys: str) -> Any:
    """Return the first present value for any of ``keys`` across ``sources``."""
    for source in sources:
        for key in keys:
            value = source.get(key)
            if _present(value):
                return value
    return None


def _as_text(value: Any) -> str | None:
    if not _present(value):
        return None
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v).strip() for v in value if _present(v)) or None
    if isinstance(value, dict):
        return None
    return str(value).strip()


def _as_list(value: Any) -> list[str]:
    if not _present(value):
        return []
    if isinstance(value, (list, tuple)):
        return [str(v).strip() for v in value if _present(v) and not isinstance(v, dict)]
    if isinstance(value, str):
        return [value.strip()]
    return []


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str) and value.strip():
        return value.strip().lower() in _TRUE_STRINGS
    return None


def clamp_interest(value: Any) -> int | None:
    """Coerce an interest level (number, "8/10", "high") into 1..10."""
    if not _present(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().lower()
        match = _FIRST_NUMBER.search(text)
        if match:
            number = float(match.group())
        else:
            for word, level in _INTEREST_WORDS.items():
                if word in text:
                    return level
            return None
    return max(INTEREST_MIN, min(INTEREST_MAX, int(round(number))))


def _clamp_confidence(value: Any) -> float | None:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number > 1:
        number = number / 100
    return max(0.0, min(1.0, number))


def _sentiment(value: Any) -> Sentiment | None:
    text = (_as_text(value) or "").lower()
    for sentiment in Sentiment:
        if sentiment.value in text:
            return sentiment
    return None


def split_full_name(full_name: str | None) -> tuple[str | None, str | None]:
    """Split "First Middle Last" into ("First", "Middle Last")."""
    if not full_name:
        return None, None
    parts = full_name.split()
    if not parts:
        return None, None
    return parts[0], " ".join(parts[1:]) or None


def _appointment(raw: dict[str, Any], section: dict[str, Any]) -> AppointmentProposal | None:
    sources = [section, raw]
    date = _as_text(_lookup(sources, "Date", "date", "appointmentDate", "appointment_date"))
    time = _as_text(_lookup(sources, "Time", "time", "appointmentTime", "appointment_time"))
    if not date and not time:
        return None
    return AppointmentProposal(
        date=date,
        time=time,
        type=_as_text(_lookup(sources, "Type", "type", "appointmentType", "appointment_type")),
        location=_as_text(_lookup([section], "Location", "location")),
        notes=_as_text(_lookup([section], "Special instructions", "notes", "instructions")),
    )


def compute_confidence(result: ExtractionResult) -> float:
    """Score 0..1 weighted by how many key fields are populated."""
    weights = {
        "full_name": 0.15,
        "email": 0.15,
        "phone": 0.1,
        "interest_level": 0.2,
        "timeline": 0.1,
        "budget": 0.1,
        "summary": 0.1,
        "sentiment": 0.1,
    }
    score = sum(weight for field, weight in weights.items() if getattr(result, field) is not None)
    return round(min(score, 1.0), 2)


def normalize_extraction(
    raw: dict[str, Any],
    source: ExtractionSource = ExtractionSource.LLM,
) -> ExtractionResult:
    """Map raw capability output onto ``ExtractionResult``.

    Unknown keys are ignored and unparseable values are dropped rather than
    raising, so a partial answer still yields a partial result.
    """
    if not isinstance(raw, dict):
        logger.warning("Extraction output is not an object", extra={"type": type(raw).__name__})
        raw = {}

    prospect = _section(raw, "prospect")
    qualification = _section(raw, "qualification")
    appointment_section = _section(raw, "appointment")
    conversation = _section(raw, "conversation")
    calling = _section(raw, "calling")
    tracking = _section(raw, "tracking")
    behavioral = _section(raw, "behavioral")

    address_block = prospect.get("Complete address") or prospect.get("address") or raw.get("address")
    if not isinstance(address_block, dict):
        address_block = {}

    person = [prospect, raw]
    qual = [qualification, raw]
    conv = [conversation, raw]

    full_name = _as_text(_lookup(person, "Full name", "fullName", "full_name", "name"))
    first_name = _as_text(_lookup(person, "First name", "firstName", "first_name"))
    last_name = _as_text(_lookup(person, "Last name", "lastName", "last_name"))
    if full_name and not first_name:
        first_name, derived_last = split_full_name(full_name)
        last_name = last_name or derived_last
    if not full_name and first_name:
        full_name = " ".join(p for p in (first_name, last_name) if p)

    appointment = _appointment(raw, appointment_section)

    result = ExtractionResult(
        full_name=full_name,
        first_name=first_name,
        last_name=last_name,
        email=_as_text(_lookup(person, "Email address", "Email", "email", "emailAddress")),
        phone=_as_text(_lookup(person, "Phone number", "Phone", "phone", "phoneNumber", "phone_number")),
        alternative_phone=_as_text(_lookup(person, "alternativePhone", "alternative_phone")),
        address=_as_text(
            _lookup([address_block], "Street", "street", "line1")
            or _lookup(person, "addressLine1", "address_line1", "street")
            or next((s["address"] for s in person if isinstance(s.get("address"), str)), None)
        ),
        address_line2=_as_text(_lookup(person, "addressLine2", "address_line2")),
        city=_as_text(_lookup([address_block, *person], "City", "city")),
        state=_as_text(_lookup([address_block, *person], "State/Region", "State", "state", "region")),
        postcode=_as_text(
            _lookup([address_block, *person], "Postcode", "postcode", "postalCode", "postal_code", "zip", "zipCode")
        ),
        country=_as_text(_lookup([address_block, *person], "Country", "country")),
        company=_as_text(_lookup(person, "Employer/Company", "Company", "company", "employer")),
        job_title=_as_text(_lookup(person, "Job title/Role", "Job title", "jobTitle", "job_title", "role")),
        department=_as_text(_lookup(person, "Department", "department")),
        industry=_as_text(_lookup(person, "Industry", "industry", "sector")),
        company_size=_as_text(_lookup(person, "companySize", "company_size", "employeeCount")),
        website=_as_text(_lookup(person, "website", "companyWebsite")),
        lead_source=_as_text(_lookup([tracking, raw], "leadSource", "lead_source", "How they heard")),
        referral_source=_as_text(_lookup([tracking, raw], "referralSource", "referral_source")),
        calling_company=_as_text(
            _lookup([calling], "Company name", "name") or _lookup([raw], "callingCompany", "calling_company")
        ),
        calling_company_service=_as_text(
            _lookup([calling], "Service/product", "service") or _lookup([raw], "callingCompanyService")
        ),
        calling_company_rep=_as_text(
            _lookup([calling], "Sales rep name", "rep") or _lookup([raw], "callingCompanyRep")
        ),
        calling_company_phone=_as_text(
            _lookup([calling], "Contact number", "phone") or _lookup([raw], "callingCompanyPhone")
        ),
        interest_level=clamp_interest(_lookup(qual, "Interest level", "interestLevel", "interest_level", "interest")),
        budget=_as_text(_lookup(qual, "Budget", "budget")),
        timeline=_as_text(_lookup(qual, "Timeline", "timeline")),
        decision_authority=_as_text(
            _lookup(qual, "Decision-making authority", "decisionAuthority", "decision_authority")
        ),
        pain_points=_as_list(_lookup(qual, "Pain points", "painPoints", "pain_points")),
        current_solution=_as_text(_lookup(qual, "Current solution", "currentSolution", "current_solution")),
        competitors=_as_list(_lookup(qual, "Competitors", "competitors")),
        questions=_as_list(_lookup(conv, "Questions asked", "questions", "questionsAsked")),
        objections=_as_list(_lookup(conv, "Objections raised", "objections", "objectionsRaised")),
        buying_signals=_as_list(_lookup(conv, "Buying signals", "buyingSignals", "buying_signals")),
        next_steps=_as_list(_lookup(conv, "Next steps", "nextSteps", "next_steps")),
        key_points=_as_list(_lookup(conv, "Key points", "keyPoints", "key_points")),
        appointment=appointment,
        appointment_requested=bool(
            appointment is not None
            or _as_bool(_lookup([appointment_section, raw], "appointmentRequested", "appointment_requested",
                                "appointmentScheduled", "Scheduled"))
        ),
        pricing_requested=bool(
            _as_bool(_lookup([qualification, conversation, raw], "pricingRequested", "pricing_requested",
                             "proposalRequested", "Asked for pricing"))
        ),
        contact_info_given=bool(
            _as_bool(_lookup([prospect, raw], "contactInfoProvided", "contact_info_given", "contactInfoGiven"))
        ),
        callback_requested=bool(
            _as_bool(_lookup([conversation, raw], "callbackRequested", "callback_requested",
                             "askedToBeContacted", "Callback requested"))
        ),
        negative_consent=bool(
            _as_bool(_lookup([conversation, raw], "negativeConsent", "optOut", "doNotCall", "removeRequested"))
        ),
        summary=_as_text(_lookup(conv, "Summary", "summary")),
        follow_up_notes=_as_text(_lookup([raw], "followUpNotes", "follow_up_notes")),
        sentiment=_sentiment(
            _lookup(conv, "Sentiment", "sentiment") or _lookup([behavioral], "Communication style")
        ),
        outcome=_as_text(_lookup([raw], "outcome")),
        confidence_score=_clamp_confidence(_lookup([raw], "confidenceScore", "confidence_score", "confidence")),
        model_qualified=_as_bool(
            _lookup([raw, qualification], "QUALIFIED", "isQualifiedLead", "is_qualified_lead", "qualified", "Qualified")
        ),
        source=source,
    )

    if result.confidence_score is None:
        result = result.model_copy(update={"confidence_score": compute_confidence(result)})
    return result

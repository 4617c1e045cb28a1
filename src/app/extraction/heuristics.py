"""
Keyword and regex extraction used when the AI capability is unavailable.

The output uses the same flat camelCase shape the capability returns and
goes through the same normalizer.
"""

import re
from typing import Any

from app.extraction.models import ExtractionResult, ExtractionSource
from app.extraction.normalizer import compute_confidence, normalize_extraction

HEURISTIC_MAX_CONFIDENCE = 0.5

EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
PHONE_RE = re.compile(r"(?:\+\d{1,3}[\s.-]?)?\(?\d{2,5}\)?[\s.-]?\d{3,4}[\s.-]?\d{3,4}\b")
US_ZIP_RE = re.compile(r"\b\d{5}(?:-\d{4})?\b")
UK_POSTCODE_RE = re.compile(r"\b[A-Z]{1,2}\d[A-Z\d]?\s*\d[A-Z]{2}\b")
NAME_RE = re.compile(
    r"(?i:\bmy name is|\bthis is|\bi'm|\bi am|\bit's)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"
)
BUDGET_RE = re.compile(r"budget.*?(\$[\d,]+|\d+k|\d+ thousand)")
SPEAKER_RE = re.compile(r"(?:^|(?<=\s))(AI|Assistant|Bot|Agent|User|Customer|Human|Prospect)\s*:", re.IGNORECASE)
CUSTOMER_SPEAKERS = frozenset({"user", "customer", "human", "prospect"})

# Later entries override earlier ones ("not interested" contains "interested")
INTEREST_KEYWORDS: tuple[tuple[str, int], ...] = (
    ("interested", 7),
    ("very interested", 9),
    ("not interested", 2),
)

TIMELINE_KEYWORDS = ("next week", "next month", "this quarter", "asap", "immediately")

QUALIFIER_KEYWORDS = (
    "appointment",
    "schedule",
    "demo",
    "pricing",
    "proposal",
    "call me back",
    "that sounds good",
    "that sounds reasonable",
)
QUALIFIER_MIN_INTEREST = 7

PRICING_KEYWORDS = ("pricing", "price", "how much", "quote", "proposal")
CALLBACK_KEYWORDS = ("call me back", "call back", "ring me back", "contact me", "get back to me")
APPOINTMENT_KEYWORDS = ("appointment", "schedule", "book a", "demo")
NEGATIVE_CONSENT_PHRASES = (
    "not interested",
    "remove me",
    "take me off",
    "stop calling",
    "do not call",
    "don't call",
)

_POSITIVE_WORDS = ("great", "sounds good", "perfect", "thank you", "interested", "love")
_NEGATIVE_WORDS = ("not interested", "annoyed", "stop calling", "waste", "remove me", "angry")


def _contains_any(text: str, phrases: tuple[str, ...]) -> bool:
    return any(phrase in text for phrase in phrases)


def customer_text(transcript: str | None) -> str:
    """Return what the customer said.

    Provider transcripts label each turn ``AI:`` or ``User:``. Only the
    customer's turns are kept; an unlabelled transcript is returned whole.
    """
    if not transcript:
        return ""
    turns = list(SPEAKER_RE.finditer(transcript))
    if not turns:
        return transcript
    spoken = []
    for index, turn in enumerate(turns):
        if turn.group(1).lower() not in CUSTOMER_SPEAKERS:
            continue
        end = turns[index + 1].start() if index + 1 < len(turns) else len(transcript)
        spoken.append(transcript[turn.end():end].strip())
    return "\n".join(spoken)


def detect_negative_consent(transcript: str | None) -> bool:
    """True if the prospect explicitly refused or asked to be removed."""
    return _contains_any(customer_text(transcript).lower(), NEGATIVE_CONSENT_PHRASES)


def detect_pricing_request(transcript: str | None) -> bool:
    return _contains_any(customer_text(transcript).lower(), PRICING_KEYWORDS)


def detect_callback_request(transcript: str | None) -> bool:
    return _contains_any(customer_text(transcript).lower(), CALLBACK_KEYWORDS)


def _sentiment(lower: str) -> str:
    positive = sum(lower.count(w) for w in _POSITIVE_WORDS)
    negative = sum(lower.count(w) for w in _NEGATIVE_WORDS)
    if positive and negative:
        return "mixed"
    if positive:
        return "positive"
    if negative:
        return "negative"
    return "neutral"


def heuristic_extract_raw(transcript: str, context: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a raw extraction dict from keyword and regex matches in the customer's turns."""
    spoken = customer_text(transcript)
    lower = spoken.lower()
    raw: dict[str, Any] = {"sentiment": _sentiment(lower)}

    interest: int | None = None
    for keyword, level in INTEREST_KEYWORDS:
        if keyword in lower:
            interest = level
    if _contains_any(lower, QUALIFIER_KEYWORDS):
        interest = max(interest or 5, QUALIFIER_MIN_INTEREST)
    if interest is not None:
        raw["interestLevel"] = interest

    budget = BUDGET_RE.search(lower)
    if budget:
        raw["budget"] = budget.group(1)

    for pattern in TIMELINE_KEYWORDS:
        if pattern in lower:
            raw["timeline"] = pattern
            break

    email = EMAIL_RE.search(spoken)
    if email:
        raw["email"] = email.group(0)

    phone = PHONE_RE.search(spoken)
    if phone:
        raw["phone"] = phone.group(0).strip()

    without_phones = PHONE_RE.sub(" ", spoken)
    postcode = UK_POSTCODE_RE.search(without_phones) or US_ZIP_RE.search(without_phones)
    if postcode:
        raw["postcode"] = postcode.group(0)

    name = NAME_RE.search(spoken)
    if name:
        raw["fullName"] = name.group(1)

    raw["appointmentRequested"] = _contains_any(lower, APPOINTMENT_KEYWORDS)
    raw["pricingRequested"] = detect_pricing_request(transcript)
    raw["callbackRequested"] = detect_callback_request(transcript)
    raw["contactInfoProvided"] = bool(email or phone)
    raw["negativeConsent"] = detect_negative_consent(transcript)

    if context and context.get("customer_number") and "phone" not in raw:
        raw["phone"] = context["customer_number"]
    return raw


def heuristic_extract(transcript: str, context: dict[str, Any] | None = None) -> ExtractionResult:
    """Deterministic extraction; confidence is capped below the model path."""
    result = normalize_extraction(heuristic_extract_raw(transcript, context), source=ExtractionSource.HEURISTIC)
    confidence = min(compute_confidence(result), HEURISTIC_MAX_CONFIDENCE)
    return result.model_copy(update={"confidence_score": confidence})

"""
Qualification decision.

Two passes, in this order:

1. positive signals: interest at or above the threshold, an appointment,
   a pricing or proposal request, contact details given, or a callback
   request qualify the call. Transcript keywords count only on the
   heuristic path and only in the customer's own turns
2. negative override: explicit refusal ("not interested", "remove me",
   "take me off the list") disqualifies it and clamps interest to at most 3

The capability's own qualified flag is never consulted; the decision is a
pure function of the normalized fields and the transcript.
"""

from dataclasses import dataclass

from app.config import Settings, get_settings
from app.extraction.heuristics import (
    detect_callback_request,
    detect_negative_consent,
    detect_pricing_request,
)
from app.extraction.models import ExtractionResult, ExtractionSource
from app.shared.logging import get_logger

logger = get_logger(__name__)

NEGATIVE_INTEREST_CAP = 3


@dataclass(frozen=True)
class QualificationPolicy:
    threshold: int = 6

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "QualificationPolicy":
        settings = settings or get_settings()
        return cls(threshold=settings.qualification_threshold)

    def positive_signals(self, result: ExtractionResult, transcript: str | None) -> list[str]:
        signals: list[str] = []
        if result.interest_level is not None and result.interest_level >= self.threshold:
            signals.append("interest")
        if result.appointment_requested or result.has_appointment:
            signals.append("appointment")
        # Keyword scans apply to the heuristic path only
        scan = transcript if result.source == ExtractionSource.HEURISTIC else None
        if result.pricing_requested or detect_pricing_request(scan):
            signals.append("pricing")
        if result.contact_info_given:
            signals.append("contact_info")
        if result.callback_requested or detect_callback_request(scan):
            signals.append("callback")
        return signals

    def evaluate(self, result: ExtractionResult, transcript: str | None = None) -> ExtractionResult:
        """Return ``result`` with ``is_qualified_lead`` decided."""
        signals = self.positive_signals(result, transcript)
        qualified = bool(signals)
        interest = result.interest_level

        negative = result.negative_consent or detect_negative_consent(transcript)
        if negative:
            qualified = False
            interest = min(interest, NEGATIVE_INTEREST_CAP) if interest is not None else 1

        if result.model_qualified is not None and result.model_qualified != qualified:
            logger.info(
                "Qualification differs from model flag",
                extra={"model_qualified": result.model_qualified, "qualified": qualified, "signals": signals},
            )

        return result.model_copy(
            update={
                "is_qualified_lead": qualified,
                "interest_level": interest,
                "negative_consent": negative,
            }
        )

"""
Domain model for inbound voice-provider webhook events.

Provider payloads are parsed into a normalized, immutable ``CallEvent`` that
the rest of the pipeline works with. Every lifecycle field is optional: the
provider does not send the same shape for every event type.
"""

import hashlib
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from app.calls.models import CallDirection
from app.shared.exceptions import WebhookPayloadError


class VoiceEventType(str, Enum):
    """Event types sent by the voice provider."""

    CALL_STARTED = "call-started"
    STATUS_UPDATE = "status-update"
    CALL_ENDED = "call-ended"
    END_OF_CALL_REPORT = "end-of-call-report"
    TRANSCRIPT = "transcript"
    TRANSCRIPT_COMPLETE = "transcript-complete"
    ANALYSIS_COMPLETE = "analysis-complete"
    SPEECH_UPDATE = "speech-update"
    RECORDING_READY = "recording-ready"
    HANG = "hang"
    ERROR = "error"
    UNKNOWN = "unknown"


# Events whose text is a live fragment rather than the final transcript
LIVE_EVENT_TYPES = frozenset({VoiceEventType.SPEECH_UPDATE})


class CallEvent(BaseModel):
    """Normalized representation of one webhook payload."""

    model_config = ConfigDict(frozen=True)

    event_type: VoiceEventType = Field(..., description="Recognized event type")
    raw_type: str = Field(..., description="Event type string as sent by the provider")
    provider_event_id: str | None = Field(default=None)
    external_call_id: str | None = Field(default=None, description="Provider call id")
    internal_call_id: UUID | None = Field(
        default=None,
        description="Internal CallRecord id echoed back through call metadata",
    )
    tenant_hint: UUID | None = Field(default=None)
    campaign_id: UUID | None = Field(default=None)
    lead_id: UUID | None = Field(default=None)
    assistant_id: str | None = Field(default=None)
    direction: CallDirection | None = Field(default=None)
    customer_number: str | None = Field(default=None)
    phone_number: str | None = Field(default=None)
    status: str | None = Field(default=None, description="Raw provider status")
    ended_reason: str | None = Field(default=None)
    started_at: datetime | None = Field(default=None)
    ended_at: datetime | None = Field(default=None)
    duration_seconds: int | None = Field(default=None)
    cost: float | None = Field(default=None)
    transcript: str | None = Field(default=None, description="Final transcript")
    live_transcript: str | None = Field(default=None, description="Partial transcript fragment")
    recording_url: str | None = Field(default=None)
    summary: str | None = Field(default=None)
    analysis: dict[str, Any] | None = Field(default=None)
    error_message: str | None = Field(default=None)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def idempotency_key(self, bucket_seconds: int = 60) -> str:
        """Return the key used to discard duplicate deliveries.

        The provider event id wins. Otherwise the key is synthesized from the
        event type, call id and a coarse time bucket. Status changes and live
        fragments are qualified further so that distinct updates inside one
        bucket are not mistaken for duplicates.
        """
        if self.provider_event_id:
            return f"evt:{self.provider_event_id}"

        bucket = int(self.timestamp.timestamp()) // max(bucket_seconds, 1)
        kind = self.raw_type
        if self.status:
            kind = f"{kind}:{self.status}"
        if self.live_transcript:
            digest = hashlib.sha1(self.live_transcript.encode("utf-8")).hexdigest()[:12]
            kind = f"{kind}:{digest}"
        return f"{kind}:{self.external_call_id or self.internal_call_id or '-'}:{bucket}"


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def _to_uuid(value: Any) -> UUID | None:
    if value is None:
        return None
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> float | None:
    try:
        return float(value) if value is not None and value != "" else None
    except (TypeError, ValueError):
        return None


def _to_int(value: Any) -> int | None:
    number = _to_float(value)
    return int(round(number)) if number is not None else None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO-8601 strings or epoch (seconds or milliseconds) into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10_000_000_000 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _direction(call: dict[str, Any]) -> CallDirection | None:
    call_type = str(call.get("type") or "").lower()
    if call_type.startswith("outbound"):
        return CallDirection.OUTBOUND
    if call_type.startswith("inbound"):
        return CallDirection.INBOUND
    return None


def _event_type(raw_type: str) -> VoiceEventType:
    try:
        return VoiceEventType(raw_type)
    except ValueError:
        return VoiceEventType.UNKNOWN


def parse_webhook_payload(payload: Any) -> CallEvent:
    """Parse a decoded webhook body into a ``CallEvent``.

    Accepts both the wrapped ``{"message": {...}}`` form and a bare message.

    Raises:
        WebhookPayloadError: If the body is not an object or has no event type.
    """
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook body must be a JSON object")

    message = _as_dict(payload.get("message")) or payload
    raw_type = message.get("type")
    if not isinstance(raw_type, str) or not raw_type.strip():
        raise WebhookPayloadError("Webhook payload has no event type")
    raw_type = raw_type.strip()
    event_type = _event_type(raw_type)

    call = _as_dict(message.get("call"))
    metadata = _as_dict(call.get("metadata")) or _as_dict(message.get("metadata"))
    artifact = _as_dict(message.get("artifact"))
    analysis = _as_dict(message.get("analysis"))
    customer = _as_dict(call.get("customer")) or _as_dict(message.get("customer"))
    phone = _as_dict(call.get("phoneNumber")) or _as_dict(message.get("phoneNumber"))

    started_at = parse_timestamp(_first(message.get("startedAt"), call.get("startedAt")))
    ended_at = parse_timestamp(_first(message.get("endedAt"), call.get("endedAt")))

    duration = _to_int(
        _first(
            message.get("durationSeconds"),
            message.get("duration"),
            call.get("duration"),
        )
    )
    if duration is None and started_at and ended_at:
        duration = max(int((ended_at - started_at).total_seconds()), 0)

    transcript_text = _first(message.get("transcript"), artifact.get("transcript"), call.get("transcript"))
    transcript: str | None = None
    live_transcript: str | None = None
    if isinstance(transcript_text, str) and transcript_text.strip():
        is_partial = event_type in LIVE_EVENT_TYPES or (
            event_type == VoiceEventType.TRANSCRIPT
            and str(message.get("transcriptType") or "").lower() == "partial"
        )
        if is_partial:
            live_transcript = transcript_text
        else:
            transcript = transcript_text

    error = message.get("error")
    if isinstance(error, dict):
        error = error.get("message")

    return CallEvent(
        event_type=event_type,
        raw_type=raw_type,
        provider_event_id=_first(payload.get("id"), message.get("eventId")),
        external_call_id=_first(call.get("id"), message.get("callId"), message.get("call_id")),
        internal_call_id=_to_uuid(_first(metadata.get("call_id"), metadata.get("callRecordId"))),
        tenant_hint=_to_uuid(
            _first(
                metadata.get("tenant_id"),
                metadata.get("organization_id"),
                metadata.get("organizationId"),
                message.get("tenantId"),
            )
        ),
        campaign_id=_to_uuid(_first(metadata.get("campaign_id"), metadata.get("campaignId"))),
        lead_id=_to_uuid(_first(metadata.get("lead_id"), metadata.get("leadId"))),
        assistant_id=_first(call.get("assistantId"), message.get("assistantId")),
        direction=_direction(call),
        customer_number=customer.get("number"),
        phone_number=phone.get("number"),
        status=_first(message.get("status"), call.get("status")),
        ended_reason=_first(message.get("endedReason"), call.get("endedReason")),
        started_at=started_at,
        ended_at=ended_at,
        duration_seconds=duration,
        cost=_to_float(_first(message.get("cost"), call.get("cost"))),
        transcript=transcript,
        live_transcript=live_transcript,
        recording_url=_first(
            message.get("recordingUrl"),
            artifact.get("recordingUrl"),
            call.get("recordingUrl"),
        ),
        summary=_first(message.get("summary"), analysis.get("summary")),
        analysis=analysis or None,
        error_message=str(error) if error else None,
        timestamp=parse_timestamp(message.get("timestamp")) or datetime.now(timezone.utc),
    )

"""
Unit tests for webhook payload parsing and idempotency keys.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from app.calls.models import CallDirection
from app.shared.exceptions import WebhookPayloadError
from app.webhooks.events import (
    VoiceEventType,
    parse_timestamp,
    parse_webhook_payload,
)


class TestParseWebhookPayload:
    """Tests for parse_webhook_payload."""

    def test_wrapped_end_of_call_report(self) -> None:
        """All lifecycle fields are read from the wrapped form."""
        call_record_id = uuid4()
        tenant_id = uuid4()
        campaign_id = uuid4()
        event = parse_webhook_payload(
            {
                "message": {
                    "type": "end-of-call-report",
                    "endedReason": "customer-ended-call",
                    "cost": "0.42",
                    "durationSeconds": 95.6,
                    "artifact": {"transcript": "AI: Hello\nUser: Hi", "recordingUrl": "https://rec/1.wav"},
                    "analysis": {"summary": "Friendly chat"},
                    "call": {
                        "id": "call-ext-9",
                        "type": "outboundPhoneCall",
                        "assistantId": "asst_1",
                        "customer": {"number": "+447700900123"},
                        "phoneNumber": {"number": "+442071234567"},
                        "metadata": {
                            "call_id": str(call_record_id),
                            "tenant_id": str(tenant_id),
                            "campaign_id": str(campaign_id),
                        },
                    },
                }
            }
        )

        assert event.event_type == VoiceEventType.END_OF_CALL_REPORT
        assert event.external_call_id == "call-ext-9"
        assert event.internal_call_id == call_record_id
        assert event.tenant_hint == tenant_id
        assert event.campaign_id == campaign_id
        assert event.direction == CallDirection.OUTBOUND
        assert event.customer_number == "+447700900123"
        assert event.phone_number == "+442071234567"
        assert event.cost == pytest.approx(0.42)
        assert event.duration_seconds == 96
        assert event.transcript == "AI: Hello\nUser: Hi"
        assert event.recording_url == "https://rec/1.wav"
        assert event.summary == "Friendly chat"

    def test_bare_message(self) -> None:
        event = parse_webhook_payload({"type": "call-started", "callId": "abc"})
        assert event.event_type == VoiceEventType.CALL_STARTED
        assert event.external_call_id == "abc"

    def test_unknown_type_is_kept(self) -> None:
        """Unrecognized types parse as UNKNOWN with the raw type preserved."""
        event = parse_webhook_payload({"message": {"type": "tool-calls", "call": {"id": "x"}}})
        assert event.event_type == VoiceEventType.UNKNOWN
        assert event.raw_type == "tool-calls"

    def test_missing_type_raises(self) -> None:
        with pytest.raises(WebhookPayloadError):
            parse_webhook_payload({"message": {"call": {"id": "x"}}})

    def test_non_object_raises(self) -> None:
        with pytest.raises(WebhookPayloadError):
            parse_webhook_payload(["not", "an", "object"])

    def test_partial_transcript_is_live_fragment(self) -> None:
        """Partial transcripts never count as the final transcript."""
        event = parse_webhook_payload(
            {"message": {"type": "transcript", "transcriptType": "partial", "transcript": "Hel", "call": {"id": "x"}}}
        )
        assert event.transcript is None
        assert event.live_transcript == "Hel"

    def test_duration_derived_from_timestamps(self) -> None:
        event = parse_webhook_payload(
            {
                "message": {
                    "type": "call-ended",
                    "startedAt": "2026-01-01T10:00:00Z",
                    "endedAt": "2026-01-01T10:02:30Z",
                    "call": {"id": "x"},
                }
            }
        )
        assert event.duration_seconds == 150

    def test_invalid_metadata_ids_ignored(self) -> None:
        event = parse_webhook_payload(
            {"message": {"type": "status-update", "call": {"id": "x", "metadata": {"tenant_id": "not-a-uuid"}}}}
        )
        assert event.tenant_hint is None


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_iso_with_z(self) -> None:
        assert parse_timestamp("2026-03-01T12:00:00Z") == datetime(2026, 3, 1, 12, tzinfo=timezone.utc)

    def test_epoch_milliseconds(self) -> None:
        assert parse_timestamp(1_767_225_600_000) == datetime(2026, 1, 1, tzinfo=timezone.utc)

    def test_garbage(self) -> None:
        assert parse_timestamp("yesterday") is None
        assert parse_timestamp("") is None


class TestIdempotencyKey:
    """Tests for CallEvent.idempotency_key."""

    def test_provider_event_id_wins(self) -> None:
        event = parse_webhook_payload({"id": "evt_1", "message": {"type": "call-ended", "call": {"id": "x"}}})
        assert event.idempotency_key() == "evt:evt_1"

    def test_same_event_within_bucket_collides(self) -> None:
        body = {"message": {"type": "call-ended", "timestamp": "2026-01-01T10:00:05Z", "call": {"id": "x"}}}
        later = {"message": {"type": "call-ended", "timestamp": "2026-01-01T10:00:50Z", "call": {"id": "x"}}}
        assert parse_webhook_payload(body).idempotency_key(60) == parse_webhook_payload(later).idempotency_key(60)

    def test_next_bucket_differs(self) -> None:
        first = {"message": {"type": "call-ended", "timestamp": "2026-01-01T10:00:05Z", "call": {"id": "x"}}}
        second = {"message": {"type": "call-ended", "timestamp": "2026-01-01T10:01:05Z", "call": {"id": "x"}}}
        assert parse_webhook_payload(first).idempotency_key(60) != parse_webhook_payload(second).idempotency_key(60)

    def test_distinct_statuses_in_one_bucket_differ(self) -> None:
        """Two status updates inside one bucket are not duplicates of each other."""
        ringing = {
            "message": {"type": "status-update", "status": "ringing", "timestamp": "2026-01-01T10:00:01Z",
                        "call": {"id": "x"}}
        }
        in_progress = {
            "message": {"type": "status-update", "status": "in-progress", "timestamp": "2026-01-01T10:00:09Z",
                        "call": {"id": "x"}}
        }
        assert (
            parse_webhook_payload(ringing).idempotency_key()
            != parse_webhook_payload(in_progress).idempotency_key()
        )

    def test_distinct_live_fragments_differ(self) -> None:
        def fragment(text: str) -> dict:
            return {
                "message": {"type": "speech-update", "transcript": text, "timestamp": "2026-01-01T10:00:01Z",
                            "call": {"id": "x"}}
            }

        assert (
            parse_webhook_payload(fragment("Hello")).idempotency_key()
            != parse_webhook_payload(fragment("Hello there")).idempotency_key()
        )

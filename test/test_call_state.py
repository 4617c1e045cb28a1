"""
Unit tests for the call lifecycle state machine.
"""

from itertools import permutations

import pytest

from app.calls.models import CallStatus
from app.calls.state import (
    determine_outcome,
    is_terminal,
    merge_status,
    status_from_event,
)
from app.webhooks.events import parse_webhook_payload


def _event(event_type: str, **fields):
    return parse_webhook_payload({"message": {"type": event_type, "call": {"id": "c"}, **fields}})


class TestDetermineOutcome:
    """Tests for determine_outcome."""

    @pytest.mark.parametrize(
        ("reason", "duration", "expected"),
        [
            ("customer-did-not-answer", 0, CallStatus.NO_ANSWER),
            ("voicemail", 40, CallStatus.NO_ANSWER),
            ("customer-busy", 0, CallStatus.BUSY),
            ("customer-ended-call", 120, CallStatus.COMPLETED),
            ("assistant-ended-call", 5, CallStatus.COMPLETED),
            ("silence-timed-out", 10, CallStatus.HUNG_UP),
            ("silence-timed-out", 90, CallStatus.COMPLETED),
            ("pipeline-error-openai-llm-failed", 0, CallStatus.FAILED),
            (None, 45, CallStatus.COMPLETED),
            (None, 3, CallStatus.HUNG_UP),
        ],
    )
    def test_reason_mapping(self, reason: str | None, duration: int, expected: CallStatus) -> None:
        assert determine_outcome(reason, duration) == expected


class TestStatusFromEvent:
    """Tests for status_from_event."""

    def test_call_started(self) -> None:
        assert status_from_event(_event("call-started")) == CallStatus.IN_PROGRESS

    def test_status_update_mapping(self) -> None:
        assert status_from_event(_event("status-update", status="ringing")) == CallStatus.RINGING
        assert status_from_event(_event("status-update", status="forwarding")) == CallStatus.TRANSFERRING

    def test_status_update_ended_uses_reason(self) -> None:
        event = _event("status-update", status="ended", endedReason="customer-busy")
        assert status_from_event(event) == CallStatus.BUSY

    def test_transcript_event_implies_nothing(self) -> None:
        assert status_from_event(_event("transcript", transcript="hello")) is None

    def test_error_event(self) -> None:
        assert status_from_event(_event("error", error={"message": "boom"})) == CallStatus.FAILED


class TestMergeStatus:
    """Tests for merge_status."""

    def test_late_start_never_regresses_terminal(self) -> None:
        assert merge_status(CallStatus.COMPLETED, CallStatus.IN_PROGRESS) == CallStatus.COMPLETED

    def test_progress_wins(self) -> None:
        assert merge_status(CallStatus.QUEUED, CallStatus.RINGING) == CallStatus.RINGING

    def test_none_keeps_current(self) -> None:
        assert merge_status(CallStatus.RINGING, None) == CallStatus.RINGING
        assert merge_status(None, CallStatus.BUSY) == CallStatus.BUSY

    def test_terminal_tie_break(self) -> None:
        """Completed outranks hung-up which outranks failed, in either order."""
        assert merge_status(CallStatus.FAILED, CallStatus.COMPLETED) == CallStatus.COMPLETED
        assert merge_status(CallStatus.COMPLETED, CallStatus.FAILED) == CallStatus.COMPLETED
        assert merge_status(CallStatus.HUNG_UP, CallStatus.NO_ANSWER) == CallStatus.HUNG_UP

    def test_live_sub_state_takes_latest(self) -> None:
        assert merge_status(CallStatus.IN_PROGRESS, CallStatus.ON_HOLD) == CallStatus.ON_HOLD
        assert merge_status(CallStatus.ON_HOLD, CallStatus.IN_PROGRESS) == CallStatus.IN_PROGRESS

    def test_order_independent_once_terminal(self) -> None:
        """Any delivery order of a full lifecycle folds to the same status."""
        statuses = [CallStatus.RINGING, CallStatus.IN_PROGRESS, CallStatus.HUNG_UP, CallStatus.COMPLETED]
        results = set()
        for order in permutations(statuses):
            current: CallStatus | None = CallStatus.QUEUED
            for incoming in order:
                current = merge_status(current, incoming)
            results.add(current)
        assert results == {CallStatus.COMPLETED}

    def test_is_terminal(self) -> None:
        assert is_terminal(CallStatus.NO_ANSWER)
        assert not is_terminal(CallStatus.TRANSFERRING)
        assert not is_terminal(None)

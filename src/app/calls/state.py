"""
Call lifecycle state machine.

Transitions are driven by event type rather than strict sequencing: events
may arrive out of order or more than once. ``merge_status`` is commutative
for every pair except two live sub-states of equal rank (the latest one
wins there), so once a terminal event has been applied the stored status
is the same whatever the delivery order.
"""

from app.calls.models import CallStatus
from app.webhooks.events import CallEvent, VoiceEventType

TERMINAL_STATUSES = frozenset(
    {
        CallStatus.COMPLETED,
        CallStatus.FAILED,
        CallStatus.NO_ANSWER,
        CallStatus.BUSY,
        CallStatus.HUNG_UP,
    }
)

LIVE_STATUSES = frozenset(
    {CallStatus.IN_PROGRESS, CallStatus.TRANSFERRING, CallStatus.ON_HOLD}
)

# ended_reason of a pre-created outbound record replaced by the provider's own row
SUPERSEDED_REASON = "superseded"

# Lifecycle progress; higher rank wins on merge
_RANK: dict[CallStatus, int] = {
    CallStatus.QUEUED: 0,
    CallStatus.RINGING: 1,
    CallStatus.IN_PROGRESS: 2,
    CallStatus.TRANSFERRING: 2,
    CallStatus.ON_HOLD: 2,
    CallStatus.FAILED: 3,
    CallStatus.NO_ANSWER: 3,
    CallStatus.BUSY: 3,
    CallStatus.HUNG_UP: 3,
    CallStatus.COMPLETED: 3,
}

# Tie-break among terminal outcomes, most informative first
_TERMINAL_PRIORITY: dict[CallStatus, int] = {
    CallStatus.COMPLETED: 5,
    CallStatus.HUNG_UP: 4,
    CallStatus.BUSY: 3,
    CallStatus.NO_ANSWER: 2,
    CallStatus.FAILED: 1,
}

PROVIDER_STATUS_MAP: dict[str, CallStatus] = {
    "queued": CallStatus.QUEUED,
    "scheduled": CallStatus.QUEUED,
    "ringing": CallStatus.RINGING,
    "in-progress": CallStatus.IN_PROGRESS,
    "in_progress": CallStatus.IN_PROGRESS,
    "forwarding": CallStatus.TRANSFERRING,
    "transferring": CallStatus.TRANSFERRING,
    "on-hold": CallStatus.ON_HOLD,
    "on_hold": CallStatus.ON_HOLD,
    "completed": CallStatus.COMPLETED,
    "failed": CallStatus.FAILED,
    "busy": CallStatus.BUSY,
    "no-answer": CallStatus.NO_ANSWER,
    "no_answer": CallStatus.NO_ANSWER,
}

_COMPLETED_REASONS = frozenset(
    {
        "customer-ended-call",
        "assistant-ended-call",
        "assistant-said-end-call-phrase",
        "assistant-forwarded-call",
        "exceeded-max-duration",
    }
)
_NO_ANSWER_REASONS = frozenset({"customer-did-not-answer", "no-answer", "voicemail"})
_BUSY_REASONS = frozenset({"customer-busy", "busy"})
_HANGUP_REASONS = frozenset({"customer-hung-up", "silence-timed-out", "customer-ended-call-early"})

# Calls shorter than this that ended without a clear reason count as hang-ups
CONNECTED_MIN_SECONDS = 30


def is_terminal(status: CallStatus | None) -> bool:
    return status in TERMINAL_STATUSES


def determine_outcome(ended_reason: str | None, duration_seconds: int | None) -> CallStatus:
    """Map a provider end reason to a terminal status."""
    reason = (ended_reason or "").strip().lower()
    duration = duration_seconds or 0

    if reason in _NO_ANSWER_REASONS:
        return CallStatus.NO_ANSWER
    if reason in _BUSY_REASONS:
        return CallStatus.BUSY
    if reason in _HANGUP_REASONS:
        return CallStatus.HUNG_UP if duration < CONNECTED_MIN_SECONDS else CallStatus.COMPLETED
    if reason in _COMPLETED_REASONS:
        return CallStatus.COMPLETED
    if "error" in reason or "failed" in reason:
        return CallStatus.FAILED
    return CallStatus.COMPLETED if duration > CONNECTED_MIN_SECONDS else CallStatus.HUNG_UP


def status_from_event(event: CallEvent) -> CallStatus | None:
    """Derive the lifecycle status an event implies, or None if it implies none."""
    match event.event_type:
        case VoiceEventType.CALL_STARTED:
            return CallStatus.IN_PROGRESS
        case VoiceEventType.CALL_ENDED | VoiceEventType.END_OF_CALL_REPORT:
            return determine_outcome(event.ended_reason, event.duration_seconds)
        case VoiceEventType.HANG:
            return CallStatus.HUNG_UP
        case VoiceEventType.ERROR:
            return CallStatus.FAILED
        case VoiceEventType.STATUS_UPDATE:
            raw = (event.status or "").strip().lower()
            if raw == "ended":
                return determine_outcome(event.ended_reason, event.duration_seconds)
            return PROVIDER_STATUS_MAP.get(raw)
        case _:
            return None


def merge_status(current: CallStatus | None, incoming: CallStatus | None) -> CallStatus | None:
    """Combine the stored status with an incoming one.

    Higher lifecycle rank wins, so a late "started" never regresses an ended
    call. Terminal ties are broken by a fixed priority; equal-rank live
    sub-states take the incoming value.
    """
    if incoming is None:
        return current
    if current is None:
        return incoming

    current_rank, incoming_rank = _RANK[current], _RANK[incoming]
    if incoming_rank > current_rank:
        return incoming
    if incoming_rank < current_rank:
        return current
    if current in TERMINAL_STATUSES:
        return max(current, incoming, key=lambda s: _TERMINAL_PRIORITY[s])
    return incoming

"""
In-memory voice provider for development and tests.

Never touches the network. Call details can be staged per provider call id
to simulate a transcript that only becomes available after some polls.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from app.telephony.interface import (
    CallDetail,
    CallInitiationRequest,
    CallInitiationResponse,
    VoiceProvider,
    VoiceProviderError,
)


@dataclass
class InMemoryVoiceProvider(VoiceProvider):
    """Fake provider keeping created calls and staged call details in memory."""

    details: dict[str, list[CallDetail]] = field(default_factory=dict)
    created: list[CallInitiationRequest] = field(default_factory=list)
    get_call_requests: list[str] = field(default_factory=list)
    assistants: list[dict[str, Any]] = field(default_factory=list)
    phone_numbers: list[dict[str, Any]] = field(default_factory=list)
    fail_create: bool = False

    def stage(self, provider_call_id: str, *details: CallDetail) -> None:
        """Queue the details returned by successive get_call calls (last one repeats)."""
        self.details.setdefault(provider_call_id, []).extend(details)

    async def create_call(self, request: CallInitiationRequest) -> CallInitiationResponse:
        if self.fail_create:
            raise VoiceProviderError("Mock provider refused the call", error_code="mock_failure")
        self.created.append(request)
        return CallInitiationResponse(
            provider_call_id=f"MOCK_CALL_{len(self.created):06d}",
            status="queued",
            created_at=datetime.now(timezone.utc),
            raw_response={"mock": True, "metadata": request.provider_metadata()},
        )

    async def get_call(self, provider_call_id: str) -> CallDetail:
        self.get_call_requests.append(provider_call_id)
        staged = self.details.get(provider_call_id)
        if not staged:
            return CallDetail(provider_call_id=provider_call_id, status="ended")
        if len(staged) > 1:
            return staged.pop(0)
        return staged[0]

    async def list_assistants(self) -> list[dict[str, Any]]:
        return list(self.assistants)

    async def list_phone_numbers(self) -> list[dict[str, Any]]:
        return list(self.phone_numbers)

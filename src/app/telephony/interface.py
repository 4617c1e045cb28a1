"""
Voice provider interface definition.

The provider places calls, reports call detail (transcript, cost, duration)
and lists configuration objects (assistants, phone numbers).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID


@dataclass(frozen=True)
class CallInitiationRequest:
    """Request to place an outbound call."""

    assistant_id: str
    customer_number: str
    call_id: UUID
    tenant_id: UUID
    phone_number_id: str | None = None
    campaign_id: UUID | None = None
    lead_id: UUID | None = None
    customer_name: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def provider_metadata(self) -> dict[str, str]:
        """Metadata echoed back by the provider on every webhook for this call."""
        data = {
            "call_id": str(self.call_id),
            "tenant_id": str(self.tenant_id),
            **{k: str(v) for k, v in self.metadata.items()},
        }
        if self.campaign_id is not None:
            data["campaign_id"] = str(self.campaign_id)
        if self.lead_id is not None:
            data["lead_id"] = str(self.lead_id)
        return data


@dataclass(frozen=True)
class CallInitiationResponse:
    """Response from call creation."""

    provider_call_id: str
    status: str
    created_at: datetime | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CallDetail:
    """Current provider view of a call."""

    provider_call_id: str
    status: str | None = None
    ended_reason: str | None = None
    transcript: str | None = None
    recording_url: str | None = None
    summary: str | None = None
    cost: float | None = None
    duration_seconds: int | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def has_transcript(self) -> bool:
        return bool(self.transcript and self.transcript.strip())


class VoiceProviderError(Exception):
    """Base exception for voice provider errors."""

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        provider_response: dict[str, Any] | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.provider_response = provider_response or {}
        self.status_code = status_code


class CallInitiationError(VoiceProviderError):
    """Error during call creation."""


class VoiceProvider(ABC):
    """Abstract interface for voice providers."""

    @abstractmethod
    async def create_call(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """Place an outbound call."""
        ...

    @abstractmethod
    async def get_call(self, provider_call_id: str) -> CallDetail:
        """Fetch current call detail by provider call id."""
        ...

    @abstractmethod
    async def list_assistants(self) -> list[dict[str, Any]]:
        """List configured assistants."""
        ...

    @abstractmethod
    async def list_phone_numbers(self) -> list[dict[str, Any]]:
        """List provider phone numbers."""
        ...

    async def close(self) -> None:
        """Release network resources."""
        return None

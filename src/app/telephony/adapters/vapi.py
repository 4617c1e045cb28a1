"""
Vapi voice provider adapter.
"""

from typing import Any

import httpx

from app.shared.logging import get_logger
from app.telephony.interface import (
    CallDetail,
    CallInitiationError,
    CallInitiationRequest,
    CallInitiationResponse,
    VoiceProvider,
    VoiceProviderError,
)
from app.webhooks.events import parse_timestamp

logger = get_logger(__name__)

VAPI_API_BASE = "https://api.vapi.ai"


def call_detail_from_payload(data: dict[str, Any]) -> CallDetail:
    """Build a CallDetail from a provider ``GET /call/{id}`` body."""
    artifact = data.get("artifact") if isinstance(data.get("artifact"), dict) else {}
    analysis = data.get("analysis") if isinstance(data.get("analysis"), dict) else {}

    started_at = parse_timestamp(data.get("startedAt"))
    ended_at = parse_timestamp(data.get("endedAt"))
    duration = data.get("duration")
    if duration is None and started_at and ended_at:
        duration = max(int((ended_at - started_at).total_seconds()), 0)

    cost = data.get("cost")
    return CallDetail(
        provider_call_id=str(data.get("id") or ""),
        status=data.get("status"),
        ended_reason=data.get("endedReason"),
        transcript=data.get("transcript") or artifact.get("transcript"),
        recording_url=data.get("recordingUrl") or artifact.get("recordingUrl"),
        summary=data.get("summary") or analysis.get("summary"),
        cost=float(cost) if cost is not None else None,
        duration_seconds=int(duration) if duration is not None else None,
        started_at=started_at,
        ended_at=ended_at,
        raw_response=data,
    )


class VapiProvider(VoiceProvider):
    """Voice provider adapter for the Vapi REST API."""

    def __init__(
        self,
        api_key: str,
        base_url: str = VAPI_API_BASE,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Vapi adapter.

        Args:
            api_key: Private API key (Bearer token).
            base_url: API base URL.
            timeout: HTTP request timeout in seconds.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
            response.raise_for_status()
            return response.json()

        except httpx.HTTPStatusError as e:
            error_data: dict[str, Any] = {}
            try:
                error_data = e.response.json()
            except ValueError:
                pass

            logger.error(
                "Vapi API error",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": e.response.status_code,
                    "error": error_data,
                },
            )
            raise VoiceProviderError(
                message=f"Vapi API error: {e.response.status_code}",
                error_code=str(error_data.get("error") or e.response.status_code),
                provider_response=error_data,
                status_code=e.response.status_code,
            ) from e

        except httpx.RequestError as e:
            logger.error(
                "Vapi request failed",
                extra={"method": method, "path": path, "error": str(e)},
            )
            raise VoiceProviderError(message=f"Vapi request failed: {e}") from e

        except ValueError as e:
            logger.error(
                "Vapi returned a non-JSON response",
                extra={"method": method, "path": path, "status_code": response.status_code},
            )
            raise VoiceProviderError(
                message="Vapi returned a non-JSON response",
                error_code="invalid_response",
                status_code=response.status_code,
            ) from e

    async def create_call(self, request: CallInitiationRequest) -> CallInitiationResponse:
        """Place an outbound call via Vapi.

        Raises:
            CallInitiationError: If the call could not be created.
        """
        body: dict[str, Any] = {
            "assistantId": request.assistant_id,
            "customer": {"number": request.customer_number},
            "metadata": request.provider_metadata(),
        }
        if request.customer_name:
            body["customer"]["name"] = request.customer_name
        if request.phone_number_id:
            body["phoneNumberId"] = request.phone_number_id

        logger.info(
            "Creating Vapi call",
            extra={
                "call_id": str(request.call_id),
                "tenant_id": str(request.tenant_id),
                "assistant_id": request.assistant_id,
            },
        )

        try:
            data = await self._request("POST", "/call", json=body)
        except VoiceProviderError as e:
            raise CallInitiationError(
                str(e),
                error_code=e.error_code,
                provider_response=e.provider_response,
                status_code=e.status_code,
            ) from e

        if not isinstance(data, dict) or not data.get("id"):
            raise CallInitiationError("Vapi create-call response has no call id", provider_response=data)

        return CallInitiationResponse(
            provider_call_id=str(data["id"]),
            status=str(data.get("status") or "queued"),
            created_at=parse_timestamp(data.get("createdAt")),
            raw_response=data,
        )

    async def get_call(self, provider_call_id: str) -> CallDetail:
        data = await self._request("GET", f"/call/{provider_call_id}")
        if not isinstance(data, dict):
            raise VoiceProviderError("Unexpected call detail response", provider_response={"body": data})
        return call_detail_from_payload(data)

    async def list_assistants(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/assistant")
        return list(data) if isinstance(data, list) else []

    async def list_phone_numbers(self) -> list[dict[str, Any]]:
        data = await self._request("GET", "/phone-number")
        return list(data) if isinstance(data, list) else []

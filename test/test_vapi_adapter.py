"""
Tests for the Vapi voice provider adapter and the provider factory.
"""

import json
from datetime import datetime, timezone
from uuid import uuid4

import httpx
import pytest

from app.telephony import factory
from app.telephony.adapters.vapi import VapiProvider, call_detail_from_payload
from app.telephony.interface import CallInitiationError, CallInitiationRequest, VoiceProviderError
from app.tenants.credentials import TenantCredentials


def provider_with(handler) -> VapiProvider:
    return VapiProvider(api_key="vapi-key", base_url="https://api.vapi.test", transport=httpx.MockTransport(handler))


class TestCreateCall:
    """Tests for VapiProvider.create_call."""

    @pytest.mark.asyncio
    async def test_body_carries_metadata(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"id": "call-ext-9", "status": "queued", "createdAt": "2026-03-01T10:00:00Z"})

        call_id, tenant_id, campaign_id = uuid4(), uuid4(), uuid4()
        provider = provider_with(handler)

        response = await provider.create_call(
            CallInitiationRequest(
                assistant_id="asst_123",
                customer_number="+447700900123",
                call_id=call_id,
                tenant_id=tenant_id,
                campaign_id=campaign_id,
                phone_number_id="pn_1",
                customer_name="Jane",
            )
        )
        await provider.close()

        assert response.provider_call_id == "call-ext-9"
        assert response.created_at == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
        request = seen[0]
        assert request.method == "POST"
        assert request.url.path == "/call"
        assert request.headers["Authorization"] == "Bearer vapi-key"
        assert json.loads(request.content) == {
            "assistantId": "asst_123",
            "customer": {"number": "+447700900123", "name": "Jane"},
            "phoneNumberId": "pn_1",
            "metadata": {
                "call_id": str(call_id),
                "tenant_id": str(tenant_id),
                "campaign_id": str(campaign_id),
            },
        }

    @pytest.mark.asyncio
    async def test_http_error_raises_initiation_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "Bad Request", "message": ["customer.number invalid"]})

        request = CallInitiationRequest(
            assistant_id="asst_123", customer_number="+1", call_id=uuid4(), tenant_id=uuid4()
        )
        with pytest.raises(CallInitiationError) as exc_info:
            await provider_with(handler).create_call(request)

        assert exc_info.value.status_code == 400
        assert exc_info.value.error_code == "Bad Request"

    @pytest.mark.asyncio
    async def test_response_without_id(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, json={"status": "queued"})

        request = CallInitiationRequest(
            assistant_id="asst_123", customer_number="+1", call_id=uuid4(), tenant_id=uuid4()
        )
        with pytest.raises(CallInitiationError, match="no call id"):
            await provider_with(handler).create_call(request)


class TestGetCall:
    @pytest.mark.asyncio
    async def test_detail_parsed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/call/call-ext-9"
            return httpx.Response(
                200,
                json={
                    "id": "call-ext-9",
                    "status": "ended",
                    "endedReason": "customer-ended-call",
                    "startedAt": "2026-03-01T10:00:00Z",
                    "endedAt": "2026-03-01T10:02:30Z",
                    "cost": "0.42",
                    "artifact": {"transcript": "AI: Hi\nUser: Hello", "recordingUrl": "https://rec/1.wav"},
                    "analysis": {"summary": "Short chat."},
                },
            )

        detail = await provider_with(handler).get_call("call-ext-9")

        assert detail.has_transcript
        assert detail.transcript == "AI: Hi\nUser: Hello"
        assert detail.recording_url == "https://rec/1.wav"
        assert detail.summary == "Short chat."
        assert detail.cost == pytest.approx(0.42)
        assert detail.duration_seconds == 150

    @pytest.mark.asyncio
    async def test_not_found(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(404, json={"error": "Not Found"})

        with pytest.raises(VoiceProviderError) as exc_info:
            await provider_with(handler).get_call("missing")
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(VoiceProviderError, match="request failed"):
            await provider_with(handler).get_call("call-ext-9")

    @pytest.mark.asyncio
    async def test_non_json_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>maintenance</html>")

        with pytest.raises(VoiceProviderError) as exc_info:
            await provider_with(handler).get_call("call-ext-10")
        assert exc_info.value.error_code == "invalid_response"

    def test_empty_transcript(self) -> None:
        detail = call_detail_from_payload({"id": "c", "transcript": "   ", "duration": 12})
        assert not detail.has_transcript
        assert detail.duration_seconds == 12


class TestListing:
    @pytest.mark.asyncio
    async def test_assistants_and_numbers(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/assistant":
                return httpx.Response(200, json=[{"id": "asst_1"}])
            return httpx.Response(200, json={"unexpected": True})

        provider = provider_with(handler)

        assert await provider.list_assistants() == [{"id": "asst_1"}]
        assert await provider.list_phone_numbers() == []


class TestVoiceProviderFactory:
    """Tests for get_voice_provider."""

    @pytest.fixture(autouse=True)
    def clear_cache(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(factory, "_providers", {})

    def test_cached_per_key(self) -> None:
        creds = TenantCredentials(tenant_id=uuid4(), voice_api_key="k1", webhook_secret="s")

        first = factory.get_voice_provider(creds)

        assert isinstance(first, VapiProvider)
        assert factory.get_voice_provider(creds) is first
        other = TenantCredentials(tenant_id=None, voice_api_key="k2", webhook_secret="s")
        assert factory.get_voice_provider(other) is not first

    def test_disabled(self) -> None:
        creds = TenantCredentials(tenant_id=uuid4(), voice_api_key="k1", webhook_secret="s", enabled=False)
        with pytest.raises(VoiceProviderError) as exc_info:
            factory.get_voice_provider(creds)
        assert exc_info.value.error_code == "integration_disabled"

    def test_missing_key(self) -> None:
        creds = TenantCredentials(tenant_id=None, voice_api_key="", webhook_secret="")
        with pytest.raises(VoiceProviderError) as exc_info:
            factory.get_voice_provider(creds)
        assert exc_info.value.error_code == "missing_credentials"

"""
Voice provider factory.

Providers are built per tenant from resolved credentials; instances are
cached by API key so one HTTP client is reused per credential set.
"""

from __future__ import annotations

from typing import Callable

from app.config import get_settings
from app.shared.logging import get_logger, mask_secret
from app.telephony.adapters.vapi import VapiProvider
from app.telephony.interface import VoiceProvider, VoiceProviderError
from app.tenants.credentials import TenantCredentials

logger = get_logger(__name__)

ProviderFactory = Callable[[TenantCredentials], VoiceProvider]

_providers: dict[str, VoiceProvider] = {}


def get_voice_provider(credentials: TenantCredentials) -> VoiceProvider:
    """Return the voice provider for a tenant's credentials.

    Raises:
        VoiceProviderError: If no API key is configured or the integration is disabled.
    """
    if not credentials.enabled:
        raise VoiceProviderError(
            "Voice integration is disabled for this tenant",
            error_code="integration_disabled",
        )
    if not credentials.voice_api_key:
        raise VoiceProviderError("No voice provider API key configured", error_code="missing_credentials")

    provider = _providers.get(credentials.voice_api_key)
    if provider is None:
        settings = get_settings()
        logger.info(
            "Voice provider configured",
            extra={
                "tenant_id": str(credentials.tenant_id) if credentials.tenant_id else None,
                "credential_source": credentials.source,
                "api_key": mask_secret(credentials.voice_api_key),
                "base_url": settings.voice_api_base_url,
            },
        )
        provider = VapiProvider(
            api_key=credentials.voice_api_key,
            base_url=settings.voice_api_base_url,
            timeout=settings.voice_timeout_seconds,
        )
        _providers[credentials.voice_api_key] = provider
    return provider


async def close_voice_providers() -> None:
    """Close every cached provider (application shutdown)."""
    for provider in list(_providers.values()):
        await provider.close()
    _providers.clear()

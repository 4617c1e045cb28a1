"""
LLM gateway construction.

The extraction job handlers share one process-wide gateway built from
Settings; tests build their own with ``create_llm_gateway`` and a mock
transport.
"""

import os

import httpx

from app.config import Settings, get_settings
from app.extraction.llm.gateway import LLMGateway
from app.extraction.llm.models import LLMProvider, LLMProviderError
from app.extraction.llm.openai_adapter import OpenAIAdapter
from app.shared.logging import get_logger, mask_secret

logger = get_logger(__name__)

DEFAULT_MODELS = {LLMProvider.OPENAI: "gpt-4o-mini"}
API_KEY_ENV_VARS = {LLMProvider.OPENAI: "OPENAI_API_KEY"}

_gateway: LLMGateway | None = None


def _provider(value: LLMProvider | str) -> LLMProvider:
    if isinstance(value, LLMProvider):
        return value
    try:
        return LLMProvider(value.lower())
    except ValueError:
        raise LLMProviderError(
            f"Unsupported LLM provider: {value}. Supported providers: {[p.value for p in LLMProvider]}"
        ) from None


def create_llm_gateway(
    provider: LLMProvider | str,
    api_key: str | None = None,
    model: str | None = None,
    timeout_seconds: float = 30.0,
    max_retries: int = 3,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> LLMGateway:
    """Create a gateway for ``provider``.

    The API key falls back to the provider's environment variable.

    Raises:
        LLMProviderError: If the provider is unsupported or no API key is available.
    """
    provider = _provider(provider)
    api_key = api_key or os.environ.get(API_KEY_ENV_VARS[provider], "")
    if not api_key:
        raise LLMProviderError(
            f"API key required for {provider.value}. "
            f"Set {API_KEY_ENV_VARS[provider]} or pass api_key.",
            provider=provider,
        )

    model = model or DEFAULT_MODELS[provider]
    logger.info(
        "Creating LLM gateway",
        extra={
            "provider": provider.value,
            "model": model,
            "timeout_seconds": timeout_seconds,
            "max_retries": max_retries,
            "api_key": mask_secret(api_key),
        },
    )
    return OpenAIAdapter(
        api_key=api_key,
        default_model=model,
        timeout_seconds=timeout_seconds,
        max_retries=max_retries,
        base_url=base_url,
        transport=transport,
    )


def gateway_from_settings(settings: Settings) -> LLMGateway:
    return create_llm_gateway(
        provider=settings.llm_provider,
        api_key=settings.openai_api_key or None,
        model=settings.openai_model,
        timeout_seconds=settings.llm_timeout_seconds,
        max_retries=settings.llm_max_retries,
    )


def get_llm_gateway() -> LLMGateway:
    """Return the process-wide gateway, building it on first use."""
    global _gateway
    if _gateway is None:
        _gateway = gateway_from_settings(get_settings())
    return _gateway


async def close_llm_gateway() -> None:
    """Close the process-wide gateway (application shutdown)."""
    global _gateway
    if _gateway is not None:
        await _gateway.close()
        _gateway = None

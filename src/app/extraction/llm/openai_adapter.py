"""
OpenAI adapter for the LLM gateway.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

import httpx

from app.extraction.llm.gateway import BaseLLMAdapter
from app.extraction.llm.models import (
    ChatRequest,
    ChatResponse,
    LLMAuthenticationError,
    LLMProvider,
    LLMProviderError,
    LLMRateLimitError,
    LLMTimeoutError,
)
from app.shared.logging import get_logger

logger = get_logger(__name__)

OPENAI_API_BASE = "https://api.openai.com/v1"


class OpenAIAdapter(BaseLLMAdapter):
    """OpenAI chat-completions adapter implementing the LLM gateway interface."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "gpt-4o-mini",
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep_func: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        """Initialize OpenAI adapter.

        Args:
            api_key: OpenAI API key.
            default_model: Default model to use.
            timeout_seconds: Request timeout in seconds.
            max_retries: Maximum number of attempts.
            base_url: Optional custom base URL for API.
            transport: Optional httpx transport (tests use ``httpx.MockTransport``).
            sleep_func: Optional async sleep used between retries (tests: no-op).
        """
        super().__init__(api_key, default_model, timeout_seconds, max_retries)
        self._base_url = (base_url or OPENAI_API_BASE).rstrip("/")
        self._chat_endpoint = f"{self._base_url}/chat/completions"
        self._transport = transport
        self._sleep_func = sleep_func or asyncio.sleep
        self._client: httpx.AsyncClient | None = None

    @property
    def provider(self) -> LLMProvider:
        """Get the LLM provider type."""
        return LLMProvider.OPENAI

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout_seconds,
                transport=self._transport,
                headers={
                    "Authorization": f"Bearer {self._api_key}",
                    "Content-Type": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        """Execute a chat completion request to OpenAI."""
        start_time = time.monotonic()
        model = request.model or self._default_model

        payload: dict[str, Any] = {
            "model": model,
            "messages": [{"role": m.role.value, "content": m.content} for m in request.messages],
            "temperature": request.temperature,
            "max_tokens": request.max_tokens,
        }
        if request.json_response:
            payload["response_format"] = {"type": "json_object"}

        logger.info(
            "OpenAI chat completion request",
            extra={
                "correlation_id": request.correlation_id,
                "model": model,
                "message_count": len(request.messages),
            },
        )

        try:
            response = await self._execute_with_retry(payload=payload, correlation_id=request.correlation_id)
        except (httpx.TimeoutException, TimeoutError) as e:
            latency_ms = (time.monotonic() - start_time) * 1000
            logger.error(
                "OpenAI request timeout",
                extra={"correlation_id": request.correlation_id, "latency_ms": latency_ms},
            )
            raise LLMTimeoutError(
                f"Request timed out after {self._timeout_seconds}s",
                correlation_id=request.correlation_id,
                provider=self.provider,
                original_error=e,
            ) from e

        latency_ms = (time.monotonic() - start_time) * 1000
        try:
            response_data = response.json()
            choice = response_data["choices"][0]
            content = choice["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LLMProviderError(
                "Malformed OpenAI response",
                correlation_id=request.correlation_id,
                provider=self.provider,
                original_error=e,
            ) from e
        usage = response_data.get("usage") or {}

        logger.info(
            "OpenAI chat completion success",
            extra={
                "correlation_id": request.correlation_id,
                "model": model,
                "latency_ms": latency_ms,
            },
        )

        return ChatResponse(
            content=content or "",
            finish_reason=choice.get("finish_reason"),
            model=model,
            provider=self.provider,
            usage={
                "prompt_tokens": usage.get("prompt_tokens", 0),
                "completion_tokens": usage.get("completion_tokens", 0),
                "total_tokens": usage.get("total_tokens", 0),
            },
            correlation_id=request.correlation_id,
            latency_ms=latency_ms,
        )

    async def _execute_with_retry(self, *, payload: dict[str, Any], correlation_id: str) -> httpx.Response:
        """Execute request with retry logic."""
        last_error: Exception | None = None
        backoff = 1.0

        for attempt in range(self._max_retries):
            try:
                response = await self._get_client().post(self._chat_endpoint, json=payload)
            except (httpx.TimeoutException, TimeoutError):
                raise
            except httpx.HTTPError as e:
                last_error = e
                if attempt < self._max_retries - 1:
                    logger.warning(
                        "OpenAI request failed, retrying",
                        extra={
                            "correlation_id": correlation_id,
                            "attempt": attempt + 1,
                            "error": str(e),
                        },
                    )
                    await self._sleep_func(backoff)
                    backoff *= 2
                    continue
                break

            if response.status_code == 200:
                return response

            if response.status_code == 401:
                logger.error(
                    "OpenAI authentication failed",
                    extra={"correlation_id": correlation_id},
                )
                raise LLMAuthenticationError(
                    "Invalid API key",
                    correlation_id=correlation_id,
                    provider=self.provider,
                )

            if response.status_code == 429 or response.status_code >= 500:
                retry_after = float(response.headers.get("Retry-After", backoff))
                if attempt < self._max_retries - 1:
                    logger.warning(
                        "OpenAI request throttled, retrying",
                        extra={
                            "correlation_id": correlation_id,
                            "attempt": attempt + 1,
                            "status_code": response.status_code,
                            "retry_after": retry_after,
                        },
                    )
                    await self._sleep_func(retry_after)
                    backoff *= 2
                    continue

                if response.status_code == 429:
                    logger.error(
                        "OpenAI rate limited (final)",
                        extra={"correlation_id": correlation_id, "retry_after": retry_after},
                    )
                    raise LLMRateLimitError(
                        "Rate limited by OpenAI",
                        retry_after=retry_after,
                        correlation_id=correlation_id,
                        provider=self.provider,
                    )

            try:
                error_data = response.json()
            except ValueError:
                error_data = {}
            error = error_data.get("error") if isinstance(error_data, dict) else None
            error_msg = (error.get("message") if isinstance(error, dict) else error) or response.text
            logger.error(
                "OpenAI provider error",
                extra={
                    "correlation_id": correlation_id,
                    "status_code": response.status_code,
                    "error": str(error_msg),
                },
            )
            raise LLMProviderError(
                f"OpenAI API error: {error_msg}",
                correlation_id=correlation_id,
                provider=self.provider,
            )

        raise LLMProviderError(
            f"OpenAI request failed after {self._max_retries} attempts",
            correlation_id=correlation_id,
            provider=self.provider,
            original_error=last_error,
        )

"""
LLM Gateway interface definition.
"""

from abc import ABC, abstractmethod
from typing import Protocol, runtime_checkable

from app.extraction.llm.models import ChatRequest, ChatResponse, LLMProvider


@runtime_checkable
class LLMGateway(Protocol):
    """Protocol for LLM gateway implementations.

    Defines the interface for chat completion that all provider
    adapters must implement.
    """

    @property
    def provider(self) -> LLMProvider:
        """Get the LLM provider type."""
        ...

    @property
    def default_model(self) -> str:
        """Get the default model for this provider."""
        ...

    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        """Execute a chat completion request.

        Args:
            request: The chat request containing messages and parameters.

        Returns:
            ChatResponse with the completion result.

        Raises:
            LLMTimeoutError: If the request times out.
            LLMRateLimitError: If rate limited by the provider.
            LLMAuthenticationError: If authentication fails.
            LLMProviderError: For other provider errors.
        """
        ...

    async def close(self) -> None:
        """Release the underlying HTTP client."""
        ...


class BaseLLMAdapter(ABC):
    """Base class for LLM adapter implementations.

    Provides common functionality for all LLM adapters.
    """

    def __init__(
        self,
        api_key: str,
        default_model: str,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
    ) -> None:
        """Initialize the adapter.

        Args:
            api_key: API key for the provider.
            default_model: Default model to use.
            timeout_seconds: Request timeout in seconds.
            max_retries: Maximum number of attempts for failed requests.
        """
        self._api_key = api_key
        self._default_model = default_model
        self._timeout_seconds = timeout_seconds
        self._max_retries = max_retries

    @property
    @abstractmethod
    def provider(self) -> LLMProvider:
        """Get the LLM provider type."""
        raise NotImplementedError

    @property
    def default_model(self) -> str:
        """Get the default model for this provider."""
        return self._default_model

    @abstractmethod
    async def chat_completion(self, request: ChatRequest) -> ChatResponse:
        """Execute a chat completion request."""
        raise NotImplementedError

    async def close(self) -> None:
        """Release resources held by the adapter."""
        return None

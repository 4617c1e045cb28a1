"""
Chat-completion request/response models and LLM error types.

Extraction sends one system prompt and one user prompt per call transcript
and expects a single JSON object back.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class LLMProvider(str, Enum):
    OPENAI = "openai"


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    role: MessageRole
    content: str

    model_config = {"frozen": True}


class ChatRequest(BaseModel):
    """Chat completion request; defaults suit deterministic JSON extraction."""

    messages: list[ChatMessage]
    model: str | None = None
    temperature: float = 0.3
    max_tokens: int = 1500
    json_response: bool = True
    correlation_id: str = Field(default_factory=lambda: str(uuid4()))

    @classmethod
    def extraction(
        cls,
        system_prompt: str,
        user_prompt: str,
        correlation_id: str | None = None,
    ) -> "ChatRequest":
        """Build the two-message request used for transcript extraction."""
        fields: dict[str, Any] = {
            "messages": [
                ChatMessage(role=MessageRole.SYSTEM, content=system_prompt),
                ChatMessage(role=MessageRole.USER, content=user_prompt),
            ]
        }
        if correlation_id:
            fields["correlation_id"] = correlation_id
        return cls(**fields)


class ChatResponse(BaseModel):
    content: str
    model: str
    provider: LLMProvider
    usage: dict[str, int] = Field(default_factory=dict)
    finish_reason: str | None = None
    correlation_id: str
    latency_ms: float
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def truncated(self) -> bool:
        """True when the model stopped on the token limit; the JSON is likely cut off."""
        return self.finish_reason == "length"


class LLMError(Exception):
    """Base exception for LLM gateway errors.

    ``retryable`` tells callers whether the same request may succeed later.
    """

    retryable = False

    def __init__(
        self,
        message: str,
        correlation_id: str | None = None,
        provider: LLMProvider | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.correlation_id = correlation_id
        self.provider = provider
        self.original_error = original_error


class LLMTimeoutError(LLMError):
    retryable = True


class LLMRateLimitError(LLMError):
    retryable = True

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class LLMAuthenticationError(LLMError):
    """The provider rejected the API key."""


class LLMProviderError(LLMError):
    """Any other provider failure, including malformed responses."""

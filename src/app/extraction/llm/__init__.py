"""
LLM gateway used by the extraction capability.
"""

from app.extraction.llm.factory import close_llm_gateway, create_llm_gateway, get_llm_gateway
from app.extraction.llm.gateway import BaseLLMAdapter, LLMGateway
from app.extraction.llm.models import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    LLMAuthenticationError,
    LLMError,
    LLMProvider,
    LLMProviderError,
    LLMRateLimitError,
    LLMTimeoutError,
    MessageRole,
)

__all__ = [
    "BaseLLMAdapter",
    "ChatMessage",
    "ChatRequest",
    "ChatResponse",
    "LLMAuthenticationError",
    "LLMError",
    "LLMGateway",
    "LLMProvider",
    "LLMProviderError",
    "LLMRateLimitError",
    "LLMTimeoutError",
    "MessageRole",
    "close_llm_gateway",
    "create_llm_gateway",
    "get_llm_gateway",
]

"""
AI extraction capability.

``extract(transcript, context) -> dict`` is the one seam to the model. The
returned object only approximates the requested shape; normalization
happens downstream.
"""

import json
import re
from typing import Any, Callable, Protocol

from app.config import get_settings
from app.extraction.llm.factory import get_llm_gateway
from app.extraction.llm.gateway import LLMGateway
from app.extraction.llm.models import ChatRequest, LLMError
from app.extraction.prompts import build_system_prompt, build_user_prompt
from app.shared.logging import get_logger

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


class ExtractionParseError(LLMError):
    """Model output could not be read as a JSON object."""


class ExtractionCapability(Protocol):
    async def extract(self, transcript: str, context: dict[str, Any]) -> dict[str, Any]:
        ...


def parse_json_object(text: str) -> dict[str, Any]:
    """Parse model output into a dict, tolerating code fences and surrounding prose.

    Raises:
        ExtractionParseError: If no JSON object can be recovered.
    """
    cleaned = _FENCE_RE.sub("", (text or "").strip())
    try:
        parsed = json.loads(cleaned)
    except json.JSONDecodeError:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise ExtractionParseError("Model output contains no JSON object")
        try:
            parsed = json.loads(cleaned[start : end + 1])
        except json.JSONDecodeError as e:
            raise ExtractionParseError(f"Model output is not valid JSON: {e}", original_error=e) from e

    if not isinstance(parsed, dict):
        raise ExtractionParseError(f"Model output is a {type(parsed).__name__}, expected an object")
    return parsed


class LLMExtractor:
    """Extraction capability backed by a chat-completion gateway."""

    def __init__(
        self,
        gateway: LLMGateway | None = None,
        gateway_factory: Callable[[], LLMGateway] = get_llm_gateway,
        threshold: int | None = None,
    ) -> None:
        self._gateway = gateway
        self._gateway_factory = gateway_factory
        self._threshold = threshold

    async def extract(self, transcript: str, context: dict[str, Any]) -> dict[str, Any]:
        gateway = self._gateway or self._gateway_factory()
        threshold = self._threshold or get_settings().qualification_threshold
        request = ChatRequest.extraction(
            build_system_prompt(threshold),
            build_user_prompt(transcript, context),
            correlation_id=str(context["call_id"]) if context.get("call_id") else None,
        )
        response = await gateway.chat_completion(request)
        if response.truncated:
            logger.warning(
                "Extraction output hit the token limit",
                extra={"correlation_id": request.correlation_id, "max_tokens": request.max_tokens},
            )
        parsed = parse_json_object(response.content)
        logger.info(
            "Extraction received",
            extra={
                "correlation_id": request.correlation_id,
                "keys": sorted(parsed.keys())[:20],
                "total_tokens": response.usage.get("total_tokens", 0),
            },
        )
        return parsed

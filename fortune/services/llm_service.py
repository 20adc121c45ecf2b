"""
LLM capability used for engagement copy and chat/photo replies.

Prompt content is owned by callers; this service only sends messages to an
OpenAI-compatible endpoint and returns text plus usage metadata. Every
failure surfaces as LLMServiceError so callers can fall back.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any

import openai
from openai import AsyncOpenAI

from fortune.infrastructure.observability.logging import get_logger
from fortune.jobs.errors import ErrorKind, JobError

logger = get_logger(__name__)


class LLMServiceError(JobError):
    """Raised when the LLM call fails or returns nothing usable."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.TRANSIENT, api_error: str | None = None):
        super().__init__(message, kind=kind)
        self.api_error = api_error


@dataclass(slots=True)
class LLMResult:
    content: str
    usage_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        return int(self.usage_metadata.get("total_tokens", 0))


class LLMService:
    """AsyncOpenAI wrapper with a hard timeout per call."""

    def __init__(
        self,
        api_key: str | None,
        model: str,
        *,
        base_url: str | None = None,
        timeout_seconds: float = 30.0,
        client: AsyncOpenAI | None = None,
    ):
        self.model = model
        self.timeout_seconds = timeout_seconds
        if client is not None:
            self.client = client
        elif api_key:
            self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout_seconds)
        else:
            self.client = None
            logger.warning("OPENAI_API_KEY not configured, LLM calls will use fallbacks")

    @property
    def available(self) -> bool:
        return self.client is not None

    async def invoke(
        self, messages: list[dict[str, Any]], *, max_tokens: int = 500, temperature: float = 0.8
    ) -> LLMResult:
        """
        Run one chat completion.

        Args:
            messages: OpenAI-style [{"role": ..., "content": ...}] list

        Returns:
            LLMResult with the first choice text and token usage
        """
        if self.client is None:
            raise LLMServiceError("LLM client not configured", kind=ErrorKind.PERMANENT)

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,
                    max_tokens=max_tokens,
                    temperature=temperature,
                ),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as e:
            raise LLMServiceError(f"LLM call timed out after {self.timeout_seconds}s") from e
        except openai.RateLimitError as e:
            raise LLMServiceError("LLM rate limited", kind=ErrorKind.RATE_LIMITED, api_error=str(e)) from e
        except openai.APIError as e:
            logger.error("LLM API error", model=self.model, error=str(e))
            raise LLMServiceError(f"LLM API error: {e}", api_error=str(e)) from e

        content = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not content:
            raise LLMServiceError("LLM returned empty content")

        usage = response.usage.model_dump() if response.usage else {}
        logger.debug("LLM call completed", model=self.model, total_tokens=usage.get("total_tokens"))
        return LLMResult(content=content, usage_metadata=usage)

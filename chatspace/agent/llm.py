"""LiteLLM wrapper for model-agnostic LLM calls.

All calls go through a LiteLLM proxy server so API keys stay out of the
application and models can be swapped by config alone.

This module:
- Wraps litellm.acompletion() for single and streamed completions
- Retries transient failures with exponential backoff via tenacity
  (never once a stream has started delivering text)
- Normalizes errors to our domain exceptions
- Logs token usage for billing/monitoring
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any, Protocol

import httpx
import litellm
import structlog
from pydantic import BaseModel, Field
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from chatspace.config import Settings, get_settings
from chatspace.plugins.exceptions import UpstreamStreamFailure

log = structlog.get_logger(__name__)

# Types of errors worth retrying (transient network/rate-limit failures)
_RETRYABLE = (
    litellm.exceptions.RateLimitError,
    litellm.exceptions.ServiceUnavailableError,
    litellm.exceptions.Timeout,
    ConnectionError,
)

# Returned by list_models() when the proxy cannot be reached
FALLBACK_MODELS = (
    "gpt-4",
    "gpt-3.5-turbo",
    "claude-3-5-sonnet-20241022",
    "claude-3-opus-20240229",
)


class LLMError(Exception):
    """Base exception for all LLM call failures."""


class LLMRateLimitError(LLMError):
    """Upstream LLM rate limit exceeded."""


class LLMUnavailableError(LLMError):
    """LLM service is unavailable."""


class LLMStreamError(LLMError, UpstreamStreamFailure):
    """The gateway failed after a stream was opened."""


class ChatCompletionRequest(BaseModel):
    """Structured chat request: model id, ordered messages, sampling parameters."""

    messages: list[dict[str, str]]
    model: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1)
    tools: list[dict[str, Any]] | None = None


@dataclass(frozen=True)
class CompletionResult:
    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class ChatGateway(Protocol):
    """What the turn runtime needs from an LLM gateway."""

    def stream(self, request: ChatCompletionRequest) -> AsyncIterator[str]: ...

    async def complete(self, request: ChatCompletionRequest) -> CompletionResult: ...


def _normalize(exc: Exception) -> LLMError:
    if isinstance(exc, litellm.exceptions.RateLimitError):
        return LLMRateLimitError(f"Rate limit from upstream LLM: {exc}")
    if isinstance(exc, litellm.exceptions.ServiceUnavailableError):
        return LLMUnavailableError(f"LLM service unavailable: {exc}")
    return LLMError(f"LLM completion failed: {exc}")


class LLMClient:
    """Thin wrapper around LiteLLM with retry logic and structured logging."""

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    def _call_kwargs(self, request: ChatCompletionRequest) -> dict[str, Any]:
        settings = self._settings
        kwargs: dict[str, Any] = {
            "model": request.model or settings.litellm_default_model,
            "messages": request.messages,
            "temperature": (
                request.temperature if request.temperature is not None else settings.llm_temperature
            ),
            "max_tokens": request.max_tokens or settings.llm_max_tokens,
            "api_base": settings.litellm_base_url,
            "api_key": settings.litellm_api_key.get_secret_value(),
        }
        if request.tools:
            kwargs["tools"] = request.tools
        return kwargs

    @retry(
        retry=retry_if_exception_type(_RETRYABLE),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    async def _acompletion(self, **kwargs: Any) -> Any:
        return await litellm.acompletion(**kwargs)

    async def complete(self, request: ChatCompletionRequest) -> CompletionResult:
        """Send a non-streaming chat completion request via LiteLLM.

        Raises:
            LLMRateLimitError: Upstream rate limit after retries
            LLMUnavailableError: Service unavailable after retries
            LLMError: Any other LLM failure
        """
        kwargs = self._call_kwargs(request)
        log.debug(
            "llm.completion_request",
            model=kwargs["model"],
            message_count=len(request.messages),
            max_tokens=kwargs["max_tokens"],
        )

        try:
            response = await self._acompletion(
                **kwargs, timeout=self._settings.llm_request_timeout_seconds
            )
        except Exception as exc:
            raise _normalize(exc) from exc

        usage = getattr(response, "usage", None)
        result = CompletionResult(
            content=self.extract_text(response),
            model=getattr(response, "model", None) or kwargs["model"],
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
        )
        log.info(
            "llm.completion_done",
            model=result.model,
            prompt_tokens=result.prompt_tokens,
            completion_tokens=result.completion_tokens,
            total_tokens=result.total_tokens,
        )
        return result

    async def stream(self, request: ChatCompletionRequest) -> AsyncIterator[str]:
        """Yield text deltas of a streamed completion.

        Opening the stream is retried like ``complete``; failures after the
        first delta raise ``LLMStreamError`` and are not retried.
        """
        kwargs = self._call_kwargs(request)
        log.debug("llm.stream_request", model=kwargs["model"], message_count=len(request.messages))

        try:
            response = await self._acompletion(**kwargs, stream=True)
        except Exception as exc:
            raise _normalize(exc) from exc

        delivered = 0
        try:
            async for chunk in response:
                delta = self.extract_delta(chunk)
                if delta:
                    delivered += 1
                    yield delta
        except Exception as exc:
            log.warning(
                "llm.stream_failed",
                model=kwargs["model"],
                delivered_chunks=delivered,
                error=str(exc),
            )
            raise LLMStreamError(f"LLM stream failed: {exc}") from exc

        log.info("llm.stream_done", model=kwargs["model"], chunks=delivered)

    async def list_models(self) -> list[str]:
        """Model ids served by the proxy, or ``FALLBACK_MODELS`` if it cannot be queried."""
        url = f"{self._settings.litellm_base_url.rstrip('/')}/v1/models"
        headers = {"Authorization": f"Bearer {self._settings.litellm_api_key.get_secret_value()}"}
        try:
            async with httpx.AsyncClient(timeout=self._settings.llm_request_timeout_seconds) as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
                return [item["id"] for item in response.json().get("data", [])]
        except (httpx.HTTPError, ValueError, KeyError, TypeError, AttributeError) as exc:
            log.error("llm.list_models_failed", url=url, error=str(exc))
            return list(FALLBACK_MODELS)

    @staticmethod
    def extract_text(response: Any) -> str:
        """Extract the assistant text content from a completion response."""
        try:
            return response.choices[0].message.content or ""
        except (AttributeError, IndexError, KeyError):
            return ""

    @staticmethod
    def extract_delta(chunk: Any) -> str:
        """Extract the text delta from one streamed chunk."""
        try:
            return chunk.choices[0].delta.content or ""
        except (AttributeError, IndexError, KeyError):
            return ""

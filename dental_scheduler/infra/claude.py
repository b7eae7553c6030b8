"""
Claude API Client

Anthropic wrapper for intent extraction. A chat turn waits on this call, so
requests carry a short timeout, transient failures are retried a couple of
times with a small backoff, and a second model is tried once before the
turn is reported as a technical error.
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import (
    APIConnectionError,
    APIError,
    AsyncAnthropic,
    InternalServerError,
    RateLimitError,
)

from dental_scheduler.config import settings

logger = logging.getLogger(__name__)

# Worth another attempt on the same model
RETRYABLE_ERRORS = (RateLimitError, APIConnectionError, InternalServerError)


class ClaudeClientError(Exception):
    """Raised when no model produced a usable response."""
    pass


@dataclass
class ClaudeResponse:
    """Text and accounting for one completed call."""
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: str
    latency_ms: float
    fallback_used: bool = False


class ClaudeClient:
    """
    Async Claude client shared by every extraction.

    Constructed once at startup. Token usage is accumulated per model in
    ``usage`` for debugging.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        default_model: Optional[str] = None,
        fallback_model: Optional[str] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: float = 0.5,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            api_key: Anthropic API key (defaults to settings)
            default_model: Primary model (defaults to settings.claude_intent_model)
            fallback_model: Model tried once when the primary fails
            max_retries: Attempts per model on transient errors
            retry_base_delay: First backoff delay in seconds, doubled per attempt
            timeout: Per-request timeout in seconds
        """
        api_key = api_key or settings.anthropic_api_key
        if not api_key:
            raise ValueError("Anthropic API key is required")

        # Retries are handled here so the fallback model kicks in sooner
        self._client = AsyncAnthropic(
            api_key=api_key,
            timeout=timeout or settings.claude_timeout_seconds,
            max_retries=0,
        )
        self._default_model = default_model or settings.claude_intent_model
        self._fallback_model = fallback_model or settings.claude_fallback_model
        self._max_retries = max_retries or settings.claude_max_retries
        self._retry_base_delay = retry_base_delay
        self.usage: Counter = Counter()

        logger.info(
            f"ClaudeClient initialized with model={self._default_model} "
            f"fallback={self._fallback_model}"
        )

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.0,
        use_fallback_on_error: bool = True,
    ) -> ClaudeResponse:
        """
        Send one user message and return the text reply.

        Raises:
            ClaudeClientError: If the primary (and fallback) model failed
        """
        model = model or self._default_model
        start_time = time.time()

        try:
            response = await self._call_with_retry(
                messages=[{"role": "user", "content": prompt}],
                system=system_prompt,
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
            )
            content = self._text_of(response)
        except (APIError, ClaudeClientError) as e:
            if use_fallback_on_error and model != self._fallback_model:
                logger.warning(f"Model {model} failed ({type(e).__name__}), trying {self._fallback_model}")
                result = await self.generate(
                    prompt=prompt,
                    system_prompt=system_prompt,
                    model=self._fallback_model,
                    max_tokens=max_tokens,
                    temperature=temperature,
                    use_fallback_on_error=False,
                )
                result.fallback_used = True
                return result
            raise ClaudeClientError(f"Claude API call failed: {e}") from e

        self.usage[f"{model}:input"] += response.usage.input_tokens
        self.usage[f"{model}:output"] += response.usage.output_tokens

        return ClaudeResponse(
            content=content,
            model=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            stop_reason=response.stop_reason or "",
            latency_ms=(time.time() - start_time) * 1000,
        )

    @staticmethod
    def _text_of(response: Any) -> str:
        """Concatenated text blocks of a message."""
        text = "".join(
            block.text for block in response.content if getattr(block, "type", None) == "text"
        )
        if not text.strip():
            raise ClaudeClientError(f"Empty response (stop_reason={response.stop_reason})")
        return text

    async def _call_with_retry(
        self,
        messages: list[dict],
        system: Optional[str],
        model: str,
        max_tokens: int,
        temperature: float,
    ) -> Any:
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": messages,
        }
        if system:
            kwargs["system"] = system

        for attempt in range(1, self._max_retries + 1):
            try:
                return await self._client.messages.create(**kwargs)
            except RETRYABLE_ERRORS as e:
                if attempt == self._max_retries:
                    raise
                delay = self._retry_base_delay * 2 ** (attempt - 1)
                logger.warning(f"{type(e).__name__} on {model}, retrying in {delay:.1f}s (attempt {attempt})")
                await asyncio.sleep(delay)

        raise ClaudeClientError("Max retries exceeded")

    async def close(self) -> None:
        await self._client.close()

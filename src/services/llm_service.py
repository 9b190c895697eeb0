"""
LLM service providing the single text-completion operation used by the bot.
Implements timeout, bounded retry and failure classification.
"""

import re
import time
import asyncio
from tenacity import (
    AsyncRetrying,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_openai import ChatOpenAI
from langchain_google_genai import ChatGoogleGenerativeAI

from src.utils.logger import get_logger
from src.utils.metrics import record_llm_call

logger = get_logger(__name__)

_THROTTLE_MARKERS = ("429", "rate limit", "ratelimit", "quota", "resource exhausted", "resourceexhausted", "too many requests")


class LLMError(Exception):
    """Base exception for LLM-related errors."""


class LLMTimeoutError(LLMError):
    """Raised when LLM call exceeds timeout threshold."""


class LLMThrottledError(LLMError):
    """
    Raised when requests are being throttled.

    Attributes:
        retry_after: Seconds the caller should wait before retrying, if known
    """

    def __init__(self, message: str, retry_after: float | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class LLMUnavailableError(LLMError):
    """Raised when the provider fails in a way that retrying will not fix."""


def create_llm(
    model_name: str, api_key: str | None, temperature: float = 0
) -> BaseChatModel:
    """
    Factory function to create chat model instances.

    Args:
        model_name: Model identifier (e.g., "gpt-4o-mini", "gemini-2.5-flash")
        api_key: API key for the provider
        temperature: Sampling temperature

    Returns:
        Configured chat model instance

    Raises:
        ValueError: If model provider is not supported
    """
    if "gemini" in model_name:
        return ChatGoogleGenerativeAI(
            google_api_key=api_key, model=model_name, temperature=temperature
        )
    elif "gpt" in model_name:
        return ChatOpenAI(
            api_key=api_key, model=model_name, temperature=temperature
        )
    else:
        raise ValueError(
            f"Unsupported model: {model_name}. "
            "Model name must contain 'gpt' or 'gemini'"
        )


def _retry_after_from(error: Exception) -> float | None:
    """Extracts a retry-after hint (seconds) from a provider error, if any."""
    response = getattr(error, "response", None)
    headers = getattr(response, "headers", None) or {}
    value = headers.get("retry-after") if hasattr(headers, "get") else None
    if value is not None:
        try:
            return float(value)
        except (TypeError, ValueError):
            pass
    match = re.search(r"retry (?:after|in) (\d+(?:\.\d+)?)\s*s", str(error), re.IGNORECASE)
    return float(match.group(1)) if match else None


def classify_provider_error(error: Exception) -> LLMError:
    """
    Maps a provider exception to LLMThrottledError or LLMUnavailableError.

    Args:
        error: Exception raised by the chat model

    Returns:
        Typed LLM error, not raised
    """
    if isinstance(error, LLMError):
        return error
    status = getattr(error, "status_code", None) or getattr(
        getattr(error, "response", None), "status_code", None
    )
    text = f"{type(error).__name__} {error}".lower()
    if status == 429 or any(marker in text for marker in _THROTTLE_MARKERS):
        return LLMThrottledError(
            f"LLM provider throttled the request: {error}",
            retry_after=_retry_after_from(error),
        )
    return LLMUnavailableError(f"LLM invocation failed: {error}")


class LLMService:
    """
    Async wrapper around a chat model exposing ``complete(prompt) -> text``.
    Throttled and timed-out calls are retried a bounded number of times;
    any other failure is reported immediately as unavailable.
    """

    def __init__(
        self,
        model: BaseChatModel,
        max_retries: int = 3,
        timeout: int = 30,
        retry_backoff: float = 1.0,
    ):
        """
        Initialize async LLM service.

        Args:
            model: Configured chat model instance
            max_retries: Maximum attempts per completion
            timeout: Timeout in seconds for each attempt
            retry_backoff: Base multiplier for exponential backoff between attempts
        """
        self.model = model
        self.max_retries = max_retries
        self.timeout = timeout
        self.retry_backoff = retry_backoff

    async def complete(self, prompt: str, timeout: int | None = None) -> str:
        """
        Sends a prompt and returns the text of the reply.

        Args:
            prompt: Full prompt text
            timeout: Override default timeout (seconds)

        Returns:
            Reply text, stripped

        Raises:
            LLMTimeoutError: If every attempt timed out
            LLMThrottledError: If the provider kept throttling
            LLMUnavailableError: If the provider failed otherwise
        """
        timeout = timeout or self.timeout
        start_time = time.time()

        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.max_retries),
            wait=wait_exponential(multiplier=self.retry_backoff, min=0, max=10),
            retry=retry_if_exception_type((LLMThrottledError, LLMTimeoutError)),
            reraise=True,
        ):
            with attempt:
                attempt_number = attempt.retry_state.attempt_number
                logger.info(
                    "llm_call_started",
                    attempt=attempt_number,
                    timeout=timeout,
                    model=getattr(self.model, "model_name", None)
                    or getattr(self.model, "model", "unknown"),
                )
                try:
                    response = await asyncio.wait_for(
                        self.model.ainvoke(prompt), timeout=timeout
                    )
                except asyncio.TimeoutError as e:
                    record_llm_call(succeeded=False)
                    logger.error(
                        "llm_call_timeout",
                        elapsed=time.time() - start_time,
                        timeout=timeout,
                        attempt=attempt_number,
                    )
                    raise LLMTimeoutError(
                        f"LLM call exceeded timeout of {timeout}s"
                    ) from e
                except Exception as e:
                    record_llm_call(succeeded=False)
                    typed = classify_provider_error(e)
                    logger.error(
                        "llm_call_failed",
                        exc_info=True,
                        elapsed=time.time() - start_time,
                        attempt=attempt_number,
                        error_type=type(typed).__name__,
                        error=str(e),
                    )
                    raise typed from e

                text = self._extract_text(response)
                self._log_usage(response, time.time() - start_time)
                return text

    @staticmethod
    def _extract_text(response) -> str:
        content = getattr(response, "content", response)
        if isinstance(content, list):
            # Gemini can return content blocks
            content = "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )
        return str(content).strip()

    def _log_usage(self, response, elapsed: float) -> None:
        """
        Logs token usage and records it in the turn metrics.

        Args:
            response: LLM response message
            elapsed: Elapsed time in seconds
        """
        usage = getattr(response, "usage_metadata", None) or {}
        input_tokens = usage.get("input_tokens", 0)
        output_tokens = usage.get("output_tokens", 0)
        record_llm_call(
            succeeded=True, input_tokens=input_tokens, output_tokens=output_tokens
        )
        logger.info(
            "llm_usage",
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=usage.get("total_tokens", input_tokens + output_tokens),
            elapsed=elapsed,
        )

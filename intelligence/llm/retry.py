"""
Retry Wrapper
Exponential backoff around provider calls, driven by each error's retryable flag
"""
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional
import asyncio
import logging

from tenacity import AsyncRetrying, before_sleep_log, retry_if_exception, stop_after_attempt, wait_exponential

from core import GenerateOptions, GenerateResult
from utils.exceptions import ProviderError

from .base import BaseLLM


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """``delay(attempt) = min(base_delay_ms * 2 ** (attempt - 1), max_delay_ms)``"""

    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000

    def delay_ms(self, attempt: int) -> int:
        return min(self.base_delay_ms * 2 ** max(attempt - 1, 0), self.max_delay_ms)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.max_attempts,
            base_delay_ms=settings.base_delay_ms,
            max_delay_ms=settings.max_delay_ms,
        )


def is_retryable(error: BaseException) -> bool:
    return isinstance(error, ProviderError) and error.retryable


def _retrying(policy: RetryPolicy, sleep: Callable[[float], Awaitable[None]]) -> AsyncRetrying:
    return AsyncRetrying(
        stop=stop_after_attempt(max(policy.max_attempts, 1)),
        wait=wait_exponential(multiplier=policy.base_delay_ms / 1000, min=0, max=policy.max_delay_ms / 1000),
        retry=retry_if_exception(is_retryable),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
        sleep=sleep,
    )


async def generate_with_retry(
    provider: BaseLLM,
    prompt: str,
    content: str,
    options: Optional[GenerateOptions] = None,
    policy: RetryPolicy = RetryPolicy(),
    *,
    fallback: Optional[BaseLLM] = None,
    fallback_options: Optional[GenerateOptions] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> GenerateResult:
    """
    Call ``provider.generate`` with retries.

    Terminal errors propagate immediately. When retries are exhausted on a
    retryable error and a fallback provider is given, it gets one attempt.
    """
    try:
        async for attempt in _retrying(policy, sleep):
            with attempt:
                return await provider.generate(prompt, content, options)
    except ProviderError as e:
        if fallback is None or not e.retryable:
            raise
        logger.warning(f"[{provider.provider}] retries exhausted ({e.code.value}), trying fallback {fallback!r}")
        return await fallback.generate(prompt, content, fallback_options)
    raise RuntimeError("retry loop ended without a result")  # pragma: no cover

"""
Base LLM
Provider contract: vendor-specific ``acomplete`` plus the shared ``generate``
pipeline (prompt rendering, timeout, error normalization, output parsing)
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional
import asyncio
import inspect
import logging
import time

import httpx

from core import GenerateOptions, GenerateResult
from utils.exceptions import ProviderError, ProviderErrorCode, TransientProviderError

from .output_parser import parse_llm_output


logger = logging.getLogger(__name__)

CONTENT_PLACEHOLDER = "{{content}}"

SYSTEM_PROMPT = (
    "You are an assistant that reviews educational content. "
    "Answer strictly in the JSON format requested by the user."
)


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    role: MessageRole
    content: str

    def to_dict(self) -> Dict[str, Any]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Dict[str, int] = field(default_factory=dict)  # prompt_tokens, completion_tokens, total_tokens
    finish_reason: Optional[str] = None
    raw_response: Optional[Any] = None

    @property
    def total_tokens(self) -> Optional[int]:
        value = self.usage.get("total_tokens")
        return int(value) if value is not None else None


def render_prompt(prompt: str, content: str) -> str:
    """Substitute ``{{content}}``; prompts without the placeholder get the content appended."""
    if CONTENT_PLACEHOLDER in prompt:
        return prompt.replace(CONTENT_PLACEHOLDER, content)
    return f"{prompt.rstrip()}\n\n{content}"


def _status_of(error: BaseException) -> Optional[int]:
    for candidate in (
        getattr(error, "status_code", None),
        getattr(getattr(error, "response", None), "status_code", None),
        getattr(error, "code", None),
    ):
        if isinstance(candidate, int) and 100 <= candidate < 600:
            return candidate
    return None


def _is_timeout(error: BaseException) -> bool:
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return True
    return "timeout" in type(error).__name__.lower()


def _is_connection_error(error: BaseException) -> bool:
    if isinstance(error, (httpx.TransportError, ConnectionError)):
        return True
    return "connection" in type(error).__name__.lower()


def normalize_provider_error(error: BaseException, provider: str) -> ProviderError:
    """Map any vendor/transport exception onto the provider error taxonomy."""
    if isinstance(error, ProviderError):
        if error.provider is None:
            error.provider = provider
        return error

    message = str(error) or type(error).__name__
    if _is_timeout(error):
        return TransientProviderError(f"Request timed out: {message}", code=ProviderErrorCode.TIMEOUT, provider=provider)

    status = _status_of(error)
    if status is None:
        if _is_connection_error(error):
            return TransientProviderError(f"Connection failed: {message}", provider=provider)
        return ProviderError(message, code=ProviderErrorCode.PROVIDER_ERROR, retryable=False, provider=provider)
    return error_for_status(status, message, provider)


def error_for_status(status: int, message: str, provider: str) -> ProviderError:
    if status == 429:
        return TransientProviderError(
            f"Rate limit exceeded: {message}", code=ProviderErrorCode.RATE_LIMIT, provider=provider, status_code=status
        )
    if status in (401, 403):
        return ProviderError(
            f"Authentication failed - check API key: {message}",
            code=ProviderErrorCode.AUTH_ERROR,
            provider=provider,
            status_code=status,
        )
    if status == 402:
        return ProviderError(
            f"Insufficient credits: {message}", code=ProviderErrorCode.RATE_LIMIT, provider=provider, status_code=status
        )
    if status in (400, 404, 422):
        return ProviderError(
            f"Invalid request: {message}", code=ProviderErrorCode.INVALID_REQUEST, provider=provider, status_code=status
        )
    if status >= 500:
        return TransientProviderError(f"API error {status}: {message}", provider=provider, status_code=status)
    return ProviderError(f"API error {status}: {message}", provider=provider, status_code=status)


class BaseLLM(ABC):
    """
    LLM provider base class

    Subclasses wrap exactly one vendor API in ``acomplete``. Everything a
    caller needs (``generate`` for metric scoring, ``generate_text`` for free
    text) is implemented here on top of it.
    """

    def __init__(
        self,
        model: str,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        timeout: float = 60.0,
        **kwargs,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout = timeout
        self.extra_config = kwargs

    @property
    @abstractmethod
    def provider(self) -> str:
        """Vendor name"""
        pass

    @abstractmethod
    async def acomplete(self, messages: List[Message], **kwargs) -> LLMResponse:
        """
        Single vendor call

        Args:
            messages: conversation
            **kwargs: ``model``, ``temperature``, ``max_tokens`` overrides

        Returns:
            LLMResponse
        """
        pass

    def default_options(self) -> GenerateOptions:
        return GenerateOptions(
            model=self.model,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            timeout_ms=int(self.timeout * 1000),
        )

    async def _call(self, messages: List[Message], options: GenerateOptions) -> LLMResponse:
        try:
            return await asyncio.wait_for(
                self.acomplete(
                    messages,
                    model=options.model,
                    temperature=options.temperature,
                    max_tokens=options.max_tokens,
                ),
                timeout=max(options.timeout_ms, 1) / 1000,
            )
        except Exception as e:
            raise normalize_provider_error(e, self.provider) from e

    async def generate(self, prompt: str, content: str, options: Optional[GenerateOptions] = None) -> GenerateResult:
        """Score ``content`` with ``prompt`` and return the parsed metric result."""
        options = options or self.default_options()
        messages = [Message.system(SYSTEM_PROMPT), Message.user(render_prompt(prompt, content))]

        started = time.perf_counter()
        response = await self._call(messages, options)
        duration_ms = int((time.perf_counter() - started) * 1000)

        try:
            parsed = parse_llm_output(response.content)
        except ProviderError as e:
            e.provider = self.provider
            raise

        return GenerateResult(
            score=parsed.score,
            comment=parsed.comment,
            examples=parsed.examples,
            detailed_analysis=parsed.detailed_analysis,
            suggestions=parsed.suggestions,
            tokens_used=response.total_tokens,
            duration_ms=duration_ms,
            provider=self.provider,
            model=response.model or options.model,
            raw_text=response.content,
        )

    async def generate_text(self, prompt: str, options: Optional[GenerateOptions] = None) -> str:
        """Free-text completion (no output parsing)."""
        options = options or self.default_options()
        response = await self._call([Message.user(prompt)], options)
        return response.content.strip()

    async def _close_clients(self, *attrs: str) -> None:
        for client_attr in attrs:
            client = getattr(self, client_attr, None)
            if client is None:
                continue
            close_fn = getattr(client, "close", None)
            try:
                if callable(close_fn):
                    maybe_awaitable = close_fn()
                    if inspect.isawaitable(maybe_awaitable):
                        await maybe_awaitable
            except (RuntimeError, httpx.HTTPError) as e:
                logger.debug("[%s] client close failed: %s", self.provider, e)
            setattr(self, client_attr, None)

    async def aclose(self) -> None:
        """Release HTTP resources (no-op by default)."""
        return None

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self.model}, provider={self.provider})"

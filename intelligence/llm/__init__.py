"""
LLM Module
Multi-vendor provider layer
"""
from .base import BaseLLM, LLMResponse, Message, MessageRole, normalize_provider_error, render_prompt
from .openai_llm import OpenAILLM
from .anthropic_llm import AnthropicLLM
from .gemini_llm import GeminiLLM
from .yandex_llm import YandexLLM
from .models import ModelCatalog, ModelSpec
from .output_parser import ParsedOutput, parse_llm_output
from .retry import RetryPolicy, generate_with_retry
from .factory import ProviderRegistry, build_providers

__all__ = [
    "BaseLLM",
    "LLMResponse",
    "Message",
    "MessageRole",
    "normalize_provider_error",
    "render_prompt",
    "OpenAILLM",
    "AnthropicLLM",
    "GeminiLLM",
    "YandexLLM",
    "ModelCatalog",
    "ModelSpec",
    "ParsedOutput",
    "parse_llm_output",
    "RetryPolicy",
    "generate_with_retry",
    "ProviderRegistry",
    "build_providers",
]

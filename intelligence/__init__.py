"""
Intelligence Module
LLM provider layer and the per-lesson analysis engine
"""
from .llm import (
    BaseLLM,
    OpenAILLM,
    AnthropicLLM,
    GeminiLLM,
    YandexLLM,
    ProviderRegistry,
    build_providers,
    generate_with_retry,
)
from .analysis import AnalysisEngine, ProgressTracker

__all__ = [
    # LLM
    "BaseLLM",
    "OpenAILLM",
    "AnthropicLLM",
    "GeminiLLM",
    "YandexLLM",
    "ProviderRegistry",
    "build_providers",
    "generate_with_retry",
    # Analysis
    "AnalysisEngine",
    "ProgressTracker",
]

"""
LLM Factory
Builds the provider set once from settings; consumers receive it explicitly
"""
from typing import Dict, Iterable, List, Optional, Tuple
import logging

from core import GenerateOptions
from utils.exceptions import ConfigurationError

from .anthropic_llm import AnthropicLLM
from .base import BaseLLM
from .gemini_llm import GeminiLLM
from .models import ModelCatalog, ModelSpec
from .openai_llm import OpenAILLM
from .yandex_llm import YandexLLM


logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Provider instances keyed by vendor name, plus the model catalog."""

    def __init__(
        self,
        providers: Iterable[BaseLLM] = (),
        catalog: Optional[ModelCatalog] = None,
        *,
        default_timeout_ms: int = 60000,
        fallback_model_id: Optional[str] = None,
    ):
        self._providers: Dict[str, BaseLLM] = {}
        for provider in providers:
            self.register(provider)
        self.catalog = catalog or ModelCatalog()
        self.default_timeout_ms = default_timeout_ms
        self.fallback_model_id = fallback_model_id

    def register(self, provider: BaseLLM) -> None:
        self._providers[provider.provider] = provider

    def get(self, provider_name: str) -> BaseLLM:
        provider = self._providers.get(provider_name)
        if provider is None:
            raise ConfigurationError(
                f"Provider {provider_name} is not configured",
                details={"available": sorted(self._providers)},
            )
        return provider

    def has(self, provider_name: str) -> bool:
        return provider_name in self._providers

    def available_models(self) -> List[str]:
        return [model_id for model_id in self.catalog.ids() if self.has(self.catalog.get(model_id).provider)]

    def options_for(self, spec: ModelSpec, timeout_ms: Optional[int] = None) -> GenerateOptions:
        return GenerateOptions(
            model=spec.model,
            temperature=spec.temperature,
            max_tokens=spec.max_tokens,
            timeout_ms=timeout_ms or self.default_timeout_ms,
        )

    def resolve(self, model_id: Optional[str] = None) -> Tuple[BaseLLM, ModelSpec]:
        """Provider and model spec for a catalog id (default model when None)."""
        spec = self.catalog.get(model_id)
        return self.get(spec.provider), spec

    def resolve_fallback(self, primary: ModelSpec) -> Optional[Tuple[BaseLLM, ModelSpec]]:
        if not self.fallback_model_id or self.fallback_model_id == primary.model_id:
            return None
        spec = self.catalog.get(self.fallback_model_id)
        if not self.has(spec.provider):
            return None
        return self.get(spec.provider), spec

    async def aclose(self) -> None:
        for provider in self._providers.values():
            await provider.aclose()


def build_providers(settings, catalog: Optional[ModelCatalog] = None) -> ProviderRegistry:
    """
    Create providers for every vendor with credentials in ``LLMSettings``.

    Args:
        settings: LLMSettings
        catalog: model catalog (defaults to the built-in one)

    Returns:
        ProviderRegistry
    """
    common = {
        "temperature": settings.temperature,
        "max_tokens": settings.max_tokens,
        "timeout": settings.timeout_ms / 1000,
    }
    providers: List[BaseLLM] = []
    if settings.openai_api_key:
        providers.append(OpenAILLM(api_key=settings.openai_api_key, **common))
    if settings.anthropic_api_key:
        providers.append(AnthropicLLM(api_key=settings.anthropic_api_key, **common))
    if settings.gemini_api_key:
        providers.append(GeminiLLM(api_key=settings.gemini_api_key, **common))
    if settings.yandex_api_key and settings.yandex_folder_id:
        providers.append(YandexLLM(api_key=settings.yandex_api_key, folder_id=settings.yandex_folder_id, **common))

    if not providers:
        logger.warning("No LLM provider credentials configured")
    else:
        logger.info("LLM providers: %s", ", ".join(p.provider for p in providers))

    return ProviderRegistry(
        providers,
        catalog or ModelCatalog(default_model_id=settings.model_id),
        default_timeout_ms=settings.timeout_ms,
        fallback_model_id=settings.fallback_model_id,
    )

"""
Model Catalog
Public model ids mapped to a vendor and its model name
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from utils.exceptions import ValidationError


@dataclass(frozen=True)
class ModelSpec:
    model_id: str
    provider: str
    model: str
    label: str
    max_tokens: int = 2000
    temperature: float = 0.3


DEFAULT_MODEL_SPECS = (
    ModelSpec("claude-haiku", "anthropic", "claude-3-5-haiku-latest", "Claude 3.5 Haiku"),
    ModelSpec("claude-sonnet", "anthropic", "claude-3-5-sonnet-latest", "Claude 3.5 Sonnet"),
    ModelSpec("gpt-4o-mini", "openai", "gpt-4o-mini", "GPT-4o mini"),
    ModelSpec("gpt-4o", "openai", "gpt-4o", "GPT-4o"),
    ModelSpec("gemini-flash", "gemini", "gemini-1.5-flash", "Gemini 1.5 Flash"),
    ModelSpec("gemini-pro", "gemini", "gemini-1.5-pro", "Gemini 1.5 Pro"),
    ModelSpec("yandex-gpt-pro", "yandex", "yandexgpt/latest", "YandexGPT Pro"),
    ModelSpec("yandex-gpt-lite", "yandex", "yandexgpt-lite/latest", "YandexGPT Lite"),
)


class ModelCatalog:
    """Lookup of model ids; unknown ids are a validation error."""

    def __init__(self, specs: Iterable[ModelSpec] = DEFAULT_MODEL_SPECS, default_model_id: Optional[str] = None):
        self._specs: Dict[str, ModelSpec] = {spec.model_id: spec for spec in specs}
        if not self._specs:
            raise ValidationError("Model catalog is empty")
        self.default_model_id = default_model_id or next(iter(self._specs))
        if self.default_model_id not in self._specs:
            raise ValidationError(f"Unknown default model: {self.default_model_id}")

    def get(self, model_id: Optional[str] = None) -> ModelSpec:
        key = model_id or self.default_model_id
        spec = self._specs.get(key)
        if spec is None:
            raise ValidationError(f"Unknown model: {key}", details={"known": sorted(self._specs)})
        return spec

    def ids(self) -> List[str]:
        return list(self._specs)

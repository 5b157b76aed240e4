"""
Tests for provider error normalization, the retry wrapper and the Yandex client
"""
import asyncio
import json

import httpx
import pytest

from config import LLMSettings
from core import GenerateOptions
from intelligence.llm import (
    BaseLLM,
    LLMResponse,
    ModelCatalog,
    ProviderRegistry,
    RetryPolicy,
    YandexLLM,
    build_providers,
    generate_with_retry,
    normalize_provider_error,
    render_prompt,
)
from utils.exceptions import ConfigurationError, ProviderError, ProviderErrorCode, TransientProviderError

from conftest import METRIC_JSON, FakeLLM


class StatusError(Exception):
    def __init__(self, status_code):
        super().__init__(f"status {status_code}")
        self.status_code = status_code


class SlowLLM(BaseLLM):
    @property
    def provider(self) -> str:
        return "slow"

    async def acomplete(self, messages, **kwargs) -> LLMResponse:
        await asyncio.sleep(5)
        return LLMResponse(content=METRIC_JSON, model=self.model)


class TestNormalizeProviderError:
    """Vendor exceptions to the provider taxonomy"""

    @pytest.mark.parametrize(
        "status, code, retryable",
        [
            (429, ProviderErrorCode.RATE_LIMIT, True),
            (401, ProviderErrorCode.AUTH_ERROR, False),
            (403, ProviderErrorCode.AUTH_ERROR, False),
            (402, ProviderErrorCode.RATE_LIMIT, False),
            (400, ProviderErrorCode.INVALID_REQUEST, False),
            (503, ProviderErrorCode.PROVIDER_ERROR, True),
        ],
    )
    def test_status_codes(self, status, code, retryable):
        error = normalize_provider_error(StatusError(status), "openai")

        assert error.code == code
        assert error.retryable is retryable
        assert error.provider == "openai"
        assert error.status_code == status

    def test_timeout(self):
        error = normalize_provider_error(httpx.ReadTimeout("slow"), "gemini")
        assert error.code == ProviderErrorCode.TIMEOUT
        assert error.retryable is True

    def test_connection_failure(self):
        error = normalize_provider_error(httpx.ConnectError("refused"), "anthropic")
        assert error.code == ProviderErrorCode.PROVIDER_ERROR
        assert error.retryable is True

    def test_unknown_error_is_terminal(self):
        error = normalize_provider_error(ValueError("weird"), "openai")
        assert error.code == ProviderErrorCode.PROVIDER_ERROR
        assert error.retryable is False

    def test_provider_errors_pass_through(self):
        original = ProviderError("bad", code=ProviderErrorCode.BAD_OUTPUT)
        assert normalize_provider_error(original, "yandex") is original
        assert str(original) == "[yandex] BAD_OUTPUT: bad"


class TestGenerate:
    """BaseLLM.generate"""

    def test_render_prompt(self):
        assert render_prompt("Rate: {{content}}!", "text") == "Rate: text!"
        assert render_prompt("Rate this", "text") == "Rate this\n\ntext"

    @pytest.mark.asyncio
    async def test_parses_answer(self):
        llm = FakeLLM()
        result = await llm.generate("Rate {{content}}", "lesson text", GenerateOptions(model="fake-2"))

        assert result.score == 1
        assert result.provider == "fake"
        assert result.model == "fake-2"
        assert result.tokens_used == 42
        assert llm.calls[0][1].content == "Rate lesson text"

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        with pytest.raises(TransientProviderError) as info:
            await SlowLLM("slow-1").generate("Rate", "text", GenerateOptions(model="slow-1", timeout_ms=10))
        assert info.value.code == ProviderErrorCode.TIMEOUT


class TestRetry:
    """generate_with_retry"""

    @pytest.mark.asyncio
    async def test_backoff_then_success(self):
        sleeps = []

        async def sleep(seconds):
            sleeps.append(seconds)

        answers = iter([TransientProviderError("busy"), TransientProviderError("busy"), METRIC_JSON])
        llm = FakeLLM(responder=lambda messages: next(answers))

        result = await generate_with_retry(llm, "Rate", "text", policy=RetryPolicy(), sleep=sleep)

        assert result.score == 1
        assert len(llm.calls) == 3
        assert sleeps == pytest.approx([1.0, 2.0])

    @pytest.mark.asyncio
    async def test_terminal_error_is_not_retried(self):
        llm = FakeLLM(responder=lambda messages: ProviderError("no key", code=ProviderErrorCode.AUTH_ERROR))
        backup = FakeLLM(name="backup")

        with pytest.raises(ProviderError) as info:
            await generate_with_retry(llm, "Rate", "text", fallback=backup, sleep=_no_sleep)

        assert info.value.code == ProviderErrorCode.AUTH_ERROR
        assert len(llm.calls) == 1
        assert backup.calls == []

    @pytest.mark.asyncio
    async def test_fallback_after_exhausted_retries(self):
        llm = FakeLLM(responder=lambda messages: TransientProviderError("down", status_code=503))
        backup = FakeLLM(name="backup")

        result = await generate_with_retry(
            llm,
            "Rate",
            "text",
            policy=RetryPolicy(max_attempts=3),
            fallback=backup,
            fallback_options=GenerateOptions(model="backup-1"),
            sleep=_no_sleep,
        )

        assert result.provider == "backup"
        assert result.model == "backup-1"
        assert len(llm.calls) == 3
        assert len(backup.calls) == 1

    def test_delay_schedule(self):
        policy = RetryPolicy(base_delay_ms=1000, max_delay_ms=10000)
        assert [policy.delay_ms(attempt) for attempt in (1, 2, 3, 4, 5)] == [1000, 2000, 4000, 8000, 10000]


async def _no_sleep(_seconds):
    return None


def _yandex_reply(text):
    return {
        "result": {
            "alternatives": [{"message": {"role": "assistant", "text": text}, "status": "ALTERNATIVE_STATUS_FINAL"}],
            "usage": {"inputTextTokens": "10", "completionTokens": "5", "totalTokens": "15"},
        }
    }


class TestYandexLLM:
    """Yandex Foundation Models client"""

    @pytest.mark.asyncio
    async def test_invalid_model_uri_retries_with_stable_model(self):
        bodies = []

        def handler(request):
            body = json.loads(request.content)
            bodies.append((body, request.headers))
            if len(bodies) == 1:
                return httpx.Response(400, text='{"error": "invalid model_uri"}')
            return httpx.Response(200, json=_yandex_reply(METRIC_JSON))

        llm = YandexLLM(api_key="key-1", folder_id="folder-1", transport=httpx.MockTransport(handler))
        result = await llm.generate("Rate {{content}}", "lesson", GenerateOptions(model="yandexgpt-32k/rc"))
        await llm.aclose()

        assert [body["modelUri"] for body, _ in bodies] == [
            "gpt://folder-1/yandexgpt-32k/rc",
            "gpt://folder-1/yandexgpt/latest",
        ]
        headers = bodies[0][1]
        assert headers["authorization"] == "Api-Key key-1"
        assert headers["x-folder-id"] == "folder-1"
        assert bodies[0][0]["messages"][1] == {"role": "user", "text": "Rate lesson"}
        assert result.model == "yandexgpt/latest"
        assert result.tokens_used == 15
        assert result.score == 1

    @pytest.mark.asyncio
    async def test_auth_failure(self):
        llm = YandexLLM(
            api_key="bad",
            folder_id="folder-1",
            transport=httpx.MockTransport(lambda request: httpx.Response(401, text="unauthorized")),
        )
        with pytest.raises(ProviderError) as info:
            await llm.generate("Rate", "lesson")
        await llm.aclose()

        assert info.value.code == ProviderErrorCode.AUTH_ERROR
        assert info.value.retryable is False

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        with pytest.raises(ProviderError) as info:
            await YandexLLM(folder_id="folder-1").generate("Rate", "lesson")
        assert info.value.code == ProviderErrorCode.AUTH_ERROR


class TestProviderRegistry:
    """Provider construction and model resolution"""

    def test_unconfigured_provider(self):
        registry = ProviderRegistry([], ModelCatalog())
        with pytest.raises(ConfigurationError):
            registry.resolve("gpt-4o")

    def test_build_providers_only_with_credentials(self):
        settings = LLMSettings(
            openai_api_key=None,
            anthropic_api_key=None,
            gemini_api_key=None,
            yandex_api_key="key-1",
            yandex_folder_id="folder-1",
            model_id="yandex-gpt-lite",
            fallback_model_id="yandex-gpt-pro",
        )

        registry = build_providers(settings)

        assert registry.has("yandex")
        assert not registry.has("openai")
        assert registry.available_models() == ["yandex-gpt-pro", "yandex-gpt-lite"]
        provider, spec = registry.resolve()
        assert spec.model == "yandexgpt-lite/latest"
        fallback_provider, fallback_spec = registry.resolve_fallback(spec)
        assert fallback_spec.model_id == "yandex-gpt-pro"
        assert fallback_provider is provider
        assert registry.resolve_fallback(fallback_spec) is None

    def test_yandex_needs_folder(self):
        settings = LLMSettings(
            openai_api_key=None,
            anthropic_api_key=None,
            gemini_api_key=None,
            yandex_api_key="key-1",
            yandex_folder_id=None,
        )
        assert not build_providers(settings).has("yandex")

    def test_options_use_spec_and_default_timeout(self):
        registry = ProviderRegistry([FakeLLM()], ModelCatalog(), default_timeout_ms=1234)
        options = registry.options_for(registry.catalog.get("gpt-4o"))

        assert options.model == "gpt-4o"
        assert options.timeout_ms == 1234
        assert registry.options_for(registry.catalog.get("gpt-4o"), timeout_ms=10).timeout_ms == 10

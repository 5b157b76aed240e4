"""
Yandex GPT LLM
Foundation Models completion API over plain HTTP
"""
from typing import Any, Dict, List, Optional
import logging
import re

import httpx

from utils.exceptions import ProviderError, ProviderErrorCode

from .base import BaseLLM, LLMResponse, Message, error_for_status


logger = logging.getLogger(__name__)

YANDEX_COMPLETION_URL = "https://llm.api.cloud.yandex.net/foundationModels/v1/completion"
STABLE_MODEL = "yandexgpt/latest"
INVALID_MODEL_URI = re.compile(r"invalid model_?uri", re.IGNORECASE)


class YandexLLM(BaseLLM):
    """
    Yandex GPT provider

    Models are addressed as ``gpt://<folder>/<model>``. When the API rejects
    the configured model URI, the request is repeated once against
    ``yandexgpt/latest`` before the error is surfaced.
    """

    def __init__(
        self,
        model: str = STABLE_MODEL,
        api_key: Optional[str] = None,
        folder_id: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        timeout: float = 60.0,
        endpoint: str = YANDEX_COMPLETION_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.api_key = api_key
        self.folder_id = folder_id
        self.endpoint = endpoint
        self._transport = transport
        self._async_client: Optional[httpx.AsyncClient] = None

    @property
    def provider(self) -> str:
        return "yandex"

    def _get_async_client(self) -> httpx.AsyncClient:
        if self._async_client is None:
            self._async_client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport)
        return self._async_client

    def model_uri(self, model: str) -> str:
        return f"gpt://{self.folder_id}/{model}"

    def _body(self, model_uri: str, messages: List[Message], temperature: float, max_tokens: int) -> Dict[str, Any]:
        return {
            "modelUri": model_uri,
            "completionOptions": {
                "stream": False,
                "temperature": temperature,
                "maxTokens": str(max_tokens),
            },
            "messages": [{"role": m.role.value, "text": m.content} for m in messages],
        }

    async def _post(self, body: Dict[str, Any]) -> httpx.Response:
        client = self._get_async_client()
        return await client.post(
            self.endpoint,
            json=body,
            headers={
                "Authorization": f"Api-Key {self.api_key}",
                "x-folder-id": self.folder_id or "",
                "x-data-logging-enabled": "false",
            },
        )

    async def acomplete(self, messages: List[Message], **kwargs) -> LLMResponse:
        if not self.api_key:
            raise ProviderError("Yandex API key not configured", code=ProviderErrorCode.AUTH_ERROR, provider=self.provider)
        if not self.folder_id:
            raise ProviderError("Yandex folder id not configured", code=ProviderErrorCode.INVALID_REQUEST, provider=self.provider)

        model = kwargs.get("model") or self.model
        temperature = kwargs.get("temperature", self.temperature)
        max_tokens = kwargs.get("max_tokens", self.max_tokens)

        response = await self._post(self._body(self.model_uri(model), messages, temperature, max_tokens))
        if response.status_code == 400 and model != STABLE_MODEL and INVALID_MODEL_URI.search(response.text):
            logger.warning(f"[yandex] model {model} rejected, retrying with {STABLE_MODEL}")
            model = STABLE_MODEL
            response = await self._post(self._body(self.model_uri(model), messages, temperature, max_tokens))

        if response.status_code >= 400:
            raise error_for_status(response.status_code, response.text[:300], self.provider)

        try:
            result = response.json()["result"]
            text = result["alternatives"][0]["message"]["text"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                "Unexpected Yandex response shape", code=ProviderErrorCode.BAD_OUTPUT, provider=self.provider
            ) from e

        usage_raw = result.get("usage") or {}
        usage = {}
        for source_key, target_key in (
            ("inputTextTokens", "prompt_tokens"),
            ("completionTokens", "completion_tokens"),
            ("totalTokens", "total_tokens"),
        ):
            if source_key in usage_raw:
                usage[target_key] = int(usage_raw[source_key])

        return LLMResponse(
            content=text or "",
            model=model,
            usage=usage,
            finish_reason=result["alternatives"][0].get("status"),
            raw_response=result,
        )

    async def aclose(self) -> None:
        if self._async_client is not None:
            await self._async_client.aclose()
            self._async_client = None

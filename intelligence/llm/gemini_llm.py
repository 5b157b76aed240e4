"""
Google Gemini LLM
Gemini models through google-generativeai
"""
from typing import List, Optional, Tuple
import logging

from .base import BaseLLM, LLMResponse, Message, MessageRole


logger = logging.getLogger(__name__)


class GeminiLLM(BaseLLM):
    """
    Google Gemini provider

    Models such as gemini-1.5-flash, gemini-1.5-pro.
    """

    def __init__(
        self,
        model: str = "gemini-1.5-flash",
        api_key: Optional[str] = None,
        temperature: float = 0.3,
        max_tokens: int = 2000,
        timeout: float = 60.0,
        **kwargs,
    ):
        super().__init__(model, temperature, max_tokens, timeout, **kwargs)
        self.api_key = api_key

    @property
    def provider(self) -> str:
        return "gemini"

    @staticmethod
    def _convert_messages(messages: List[Message]) -> Tuple[Optional[str], str]:
        """(system_instruction, user_text)"""
        system_instruction = None
        user_parts = []
        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                system_instruction = msg.content
            else:
                user_parts.append(msg.content)
        return system_instruction, "\n\n".join(user_parts)

    async def acomplete(self, messages: List[Message], **kwargs) -> LLMResponse:
        import google.generativeai as genai

        genai.configure(api_key=self.api_key)
        system_instruction, user_text = self._convert_messages(messages)
        model_name = kwargs.get("model") or self.model

        model = genai.GenerativeModel(
            model_name=model_name,
            generation_config={
                "temperature": kwargs.get("temperature", self.temperature),
                "max_output_tokens": kwargs.get("max_tokens", self.max_tokens),
            },
            system_instruction=system_instruction,
        )
        response = await model.generate_content_async(user_text)

        usage = {}
        if getattr(response, "usage_metadata", None):
            usage = {
                "prompt_tokens": response.usage_metadata.prompt_token_count,
                "completion_tokens": response.usage_metadata.candidates_token_count,
                "total_tokens": response.usage_metadata.total_token_count,
            }

        # response.text raises when the candidate was blocked; collect parts directly.
        content = ""
        if response.candidates and response.candidates[0].content.parts:
            content = "".join(getattr(part, "text", "") for part in response.candidates[0].content.parts)

        return LLMResponse(
            content=content,
            model=model_name,
            usage=usage,
            finish_reason=response.candidates[0].finish_reason.name if response.candidates else None,
            raw_response=response,
        )

from typing import AsyncIterator

import openai
from openai import AsyncOpenAI

from ..errors import ConfigurationError, TransientTransportError
from .base import LLMProvider

_TRANSIENT_ERRORS = (
    openai.APIConnectionError,  # includes APITimeoutError
    openai.RateLimitError,
    openai.InternalServerError,
    openai.APIResponseValidationError,
)


class OpenAICompatibleProvider(LLMProvider):
    """Any endpoint speaking the OpenAI chat-completions protocol."""

    def __init__(self, api_key: str, base_url: str, **client_kwargs) -> None:
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, **client_kwargs)

    async def complete(
        self, messages: list[dict], model: str, **kwargs
    ) -> str:
        kwargs.pop("thinking", None)
        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            **kwargs,
        )
        return response.choices[0].message.content or ""

    async def stream(
        self, messages: list[dict], model: str, **kwargs
    ) -> AsyncIterator[str]:
        kwargs.pop("thinking", None)
        response = await self.client.chat.completions.create(
            model=model,
            messages=messages,
            stream=True,
            **kwargs,
        )
        return self._iter_text(response)

    @staticmethod
    async def _iter_text(response) -> AsyncIterator[str]:
        try:
            async for chunk in response:
                if not chunk.choices:
                    continue
                delta = chunk.choices[0].delta
                if delta.content:
                    yield delta.content
        finally:
            await response.close()

    def translate_error(self, exc: Exception) -> Exception:
        if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return ConfigurationError(f"{self.label} API Key 无效或无权限，请在全局设置中检查。")
        if isinstance(exc, _TRANSIENT_ERRORS):
            return TransientTransportError(f"AI 服务传输错误：{exc}")
        return super().translate_error(exc)

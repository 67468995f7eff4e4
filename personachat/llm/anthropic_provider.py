from contextlib import AsyncExitStack
from typing import AsyncIterator

import anthropic

from ..errors import ConfigurationError, TransientTransportError
from .base import LLMProvider

_TRANSIENT_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
    anthropic.APIResponseValidationError,
)


class AnthropicProvider(LLMProvider):
    name = "anthropic"
    label = "Anthropic"

    def __init__(self, api_key: str) -> None:
        self.client = anthropic.AsyncAnthropic(api_key=api_key)

    def _convert_messages(self, messages: list[dict]) -> tuple[str, list[dict]]:
        system_parts = []
        converted = []
        for msg in messages:
            if msg["role"] == "system":
                system_parts.append(msg["content"])
            else:
                # Consecutive same-role messages are merged
                if converted and converted[-1]["role"] == msg["role"]:
                    converted[-1]["content"] += "\n\n" + msg["content"]
                else:
                    converted.append({"role": msg["role"], "content": msg["content"]})
        return "\n\n".join(system_parts), converted

    def _request(self, messages: list[dict], model: str, kwargs: dict) -> dict:
        system, msgs = self._convert_messages(messages)
        kwargs.pop("max_tokens", None)
        kwargs.pop("thinking", None)
        request = {"model": model, "max_tokens": 4096, "messages": msgs, **kwargs}
        if system:
            request["system"] = system
        return request

    async def complete(
        self, messages: list[dict], model: str, **kwargs
    ) -> str:
        response = await self.client.messages.create(**self._request(messages, model, kwargs))
        return "".join(block.text for block in response.content if block.type == "text")

    async def stream(
        self, messages: list[dict], model: str, **kwargs
    ) -> AsyncIterator[str]:
        stack = AsyncExitStack()
        stream = await stack.enter_async_context(
            self.client.messages.stream(**self._request(messages, model, kwargs))
        )
        return self._iter_text(stream, stack)

    @staticmethod
    async def _iter_text(stream, stack: AsyncExitStack) -> AsyncIterator[str]:
        try:
            async for text in stream.text_stream:
                yield text
        finally:
            await stack.aclose()

    def translate_error(self, exc: Exception) -> Exception:
        if isinstance(exc, (anthropic.AuthenticationError, anthropic.PermissionDeniedError)):
            return ConfigurationError("Anthropic API Key 无效或无权限，请在全局设置中检查。")
        if isinstance(exc, _TRANSIENT_ERRORS):
            return TransientTransportError(f"AI 服务传输错误：{exc}")
        return super().translate_error(exc)

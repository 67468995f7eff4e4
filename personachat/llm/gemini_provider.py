from typing import AsyncIterator, Optional

from google import genai
from google.genai import errors, types

from ..errors import ConfigurationError, TransientTransportError
from .base import LLMProvider

THINKING_BUDGET = 8192


class GeminiProvider(LLMProvider):
    name = "gemini"
    label = "Gemini"

    def __init__(self, api_key: str) -> None:
        self.client = genai.Client(api_key=api_key)

    def _build_contents(
        self, messages: list[dict]
    ) -> tuple[Optional[str], list[types.Content]]:
        system_instruction = None
        contents: list[types.Content] = []
        for msg in messages:
            role = msg["role"]
            text = msg["content"]
            if role == "system":
                system_instruction = text
            else:
                contents.append(
                    types.Content(
                        role="model" if role == "assistant" else "user",
                        parts=[types.Part.from_text(text=text)],
                    )
                )
        return system_instruction, contents

    def _build_config(
        self, system_instruction: Optional[str], kwargs: dict
    ) -> types.GenerateContentConfig:
        thinking = kwargs.pop("thinking", False)
        return types.GenerateContentConfig(
            system_instruction=system_instruction,
            temperature=kwargs.pop("temperature", None),
            thinking_config=(
                types.ThinkingConfig(thinking_budget=THINKING_BUDGET) if thinking else None
            ),
        )

    async def complete(
        self, messages: list[dict], model: str, **kwargs
    ) -> str:
        system_instruction, contents = self._build_contents(messages)
        response = await self.client.aio.models.generate_content(
            model=model,
            contents=contents,
            config=self._build_config(system_instruction, kwargs),
        )
        return response.text or ""

    async def stream(
        self, messages: list[dict], model: str, **kwargs
    ) -> AsyncIterator[str]:
        system_instruction, contents = self._build_contents(messages)
        response = await self.client.aio.models.generate_content_stream(
            model=model,
            contents=contents,
            config=self._build_config(system_instruction, kwargs),
        )
        return self._iter_text(response)

    @staticmethod
    async def _iter_text(response) -> AsyncIterator[str]:
        try:
            async for chunk in response:
                if chunk.text:
                    yield chunk.text
        finally:
            aclose = getattr(response, "aclose", None)
            if aclose is not None:
                await aclose()

    def translate_error(self, exc: Exception) -> Exception:
        if isinstance(exc, errors.ClientError) and exc.code in (401, 403):
            return ConfigurationError("Gemini API Key 无效或无权限，请在全局设置中检查。")
        if isinstance(exc, errors.ServerError) or (
            isinstance(exc, errors.ClientError) and exc.code == 429
        ):
            return TransientTransportError(f"AI 服务传输错误：{exc}")
        return super().translate_error(exc)

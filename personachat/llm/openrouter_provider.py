from .openai_compat import OpenAICompatibleProvider


class OpenRouterProvider(OpenAICompatibleProvider):
    """OpenRouter API provider (OpenAI-compatible)."""

    name = "openrouter"
    label = "OpenRouter"

    def __init__(self, api_key: str) -> None:
        super().__init__(
            api_key=api_key,
            base_url="https://openrouter.ai/api/v1",
            default_headers={"X-Title": "PersonaChat"},
        )

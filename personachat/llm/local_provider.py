from .openai_compat import OpenAICompatibleProvider


class LocalLLMProvider(OpenAICompatibleProvider):
    """Local LLM provider (Ollama, LM Studio, llama.cpp, vLLM, etc.)

    Connects to any OpenAI-compatible API endpoint running locally.
    """

    name = "local"
    label = "Local LLM"

    def __init__(self, api_key: str, base_url: str) -> None:
        super().__init__(api_key=api_key or "no-key", base_url=base_url)

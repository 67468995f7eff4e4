"""Provider selection and error translation."""

import httpx
import openai
import pytest

from personachat.config import LLMConfig
from personachat.errors import ConfigurationError, MISSING_API_KEY_MESSAGE, TransientTransportError
from personachat.llm.completion import CompletionService
from personachat.llm.gemini_provider import THINKING_BUDGET, GeminiProvider
from personachat.llm.local_provider import LocalLLMProvider
from personachat.llm.openrouter_provider import OpenRouterProvider
from personachat.llm.registry import get_provider, reset_providers


def _response(status: int) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", "https://openrouter.ai/api/v1/chat/completions"))


class TestRegistry:
    """Picking the configured provider."""

    def test_missing_openrouter_key(self):
        with pytest.raises(ConfigurationError) as exc_info:
            get_provider(LLMConfig())
        assert exc_info.value.message == MISSING_API_KEY_MESSAGE

    def test_missing_local_base_url(self):
        with pytest.raises(ConfigurationError):
            get_provider(LLMConfig(provider="local"))

    def test_configured_provider_is_cached(self):
        llm = LLMConfig(openrouter_api_key="sk-or-test")
        provider = get_provider(llm)
        assert isinstance(provider, OpenRouterProvider)
        assert get_provider(llm) is provider

        reset_providers()
        assert get_provider(llm) is not provider

    def test_local_provider(self):
        provider = get_provider(LLMConfig(provider="local", local_llm_base_url="http://localhost:11434/v1"))
        assert isinstance(provider, LocalLLMProvider)


class TestErrorTranslation:
    """SDK exceptions mapped onto the chat error taxonomy."""

    def test_openai_auth_error_is_configuration(self):
        provider = OpenRouterProvider("sk-or-test")
        exc = openai.AuthenticationError("bad key", response=_response(401), body=None)
        assert isinstance(provider.translate_error(exc), ConfigurationError)

    def test_openai_server_error_is_transient(self):
        provider = OpenRouterProvider("sk-or-test")
        exc = openai.InternalServerError("oops", response=_response(502), body=None)
        assert isinstance(provider.translate_error(exc), TransientTransportError)

    def test_transport_error_is_transient(self):
        provider = OpenRouterProvider("sk-or-test")
        assert isinstance(provider.translate_error(httpx.ConnectTimeout("slow")), TransientTransportError)

    def test_unknown_error_is_untouched(self):
        provider = OpenRouterProvider("sk-or-test")
        exc = KeyError("x")
        assert provider.translate_error(exc) is exc

    async def test_completion_service_translates(self):
        class Failing(OpenRouterProvider):
            async def complete(self, messages, model, **kwargs):
                raise httpx.ReadTimeout("slow")

        completion = CompletionService(lambda: Failing("sk-or-test"))
        with pytest.raises(TransientTransportError):
            await completion.generate_completion("prompt", "model")

    async def test_completion_service_surfaces_missing_key(self):
        completion = CompletionService(lambda: get_provider(LLMConfig()))
        with pytest.raises(ConfigurationError):
            await completion.generate_completion("prompt", "model")


class TestGeminiConfig:
    """Thinking mode maps onto a thinking budget."""

    def test_thinking_budget(self):
        provider = GeminiProvider("gemini-key")
        kwargs = {"temperature": 0.7, "thinking": True}
        config = provider._build_config(None, kwargs)
        assert config.thinking_config.thinking_budget == THINKING_BUDGET
        assert config.temperature == 0.7
        assert kwargs == {}

    def test_no_thinking(self):
        provider = GeminiProvider("gemini-key")
        config = provider._build_config("system", {"thinking": False})
        assert config.thinking_config is None
        assert config.system_instruction == "system"

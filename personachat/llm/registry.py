import logging
from typing import Optional

from ..config import LLMConfig, get_config
from ..errors import ConfigurationError, MISSING_API_KEY_MESSAGE
from .anthropic_provider import AnthropicProvider
from .base import LLMProvider
from .gemini_provider import GeminiProvider
from .local_provider import LocalLLMProvider
from .openrouter_provider import OpenRouterProvider

logger = logging.getLogger(__name__)

ALL_PROVIDERS = [
    OpenRouterProvider,
    GeminiProvider,
    AnthropicProvider,
    LocalLLMProvider,
]

_PROVIDER_CLASS_MAP = {cls.name: cls for cls in ALL_PROVIDERS}

_PROVIDER_KEY_MAP = {
    "openrouter": "openrouter_api_key",
    "gemini": "gemini_api_key",
    "anthropic": "anthropic_api_key",
}

_providers: dict[str, LLMProvider] = {}


def _init_provider(llm: LLMConfig) -> Optional[LLMProvider]:
    provider_cls = _PROVIDER_CLASS_MAP.get(llm.provider)
    if not provider_cls:
        return None

    # Local LLM uses base_url instead of just an API key
    if llm.provider == "local":
        if not llm.local_llm_base_url:
            return None
        return provider_cls(api_key=llm.local_llm_api_key, base_url=llm.local_llm_base_url)

    api_key = getattr(llm, _PROVIDER_KEY_MAP[llm.provider], "")
    if not api_key:
        return None
    return provider_cls(api_key)


def _missing_credential_message(provider_name: str) -> str:
    if provider_name == "openrouter":
        return MISSING_API_KEY_MESSAGE
    if provider_name == "local":
        return "本地模型地址未设置。请在全局设置中配置。"
    provider_cls = _PROVIDER_CLASS_MAP.get(provider_name)
    if provider_cls is None:
        return f"未知的模型服务商：{provider_name}。请在全局设置中配置。"
    return f"{provider_cls.label} API Key 未设置。请在全局设置中配置。"


def get_provider(llm: Optional[LLMConfig] = None) -> LLMProvider:
    """Return the configured provider, raising ConfigurationError without credentials."""
    llm = llm or get_config().llm
    if llm.provider not in _providers:
        provider = _init_provider(llm)
        if provider is None:
            raise ConfigurationError(_missing_credential_message(llm.provider))
        _providers[llm.provider] = provider
        logger.info("Initialized %s provider", llm.provider)
    return _providers[llm.provider]


def list_providers() -> list[dict]:
    llm = get_config().llm
    providers = []
    for provider_cls in ALL_PROVIDERS:
        if provider_cls.name == "local":
            configured = bool(llm.local_llm_base_url)
        else:
            configured = bool(getattr(llm, _PROVIDER_KEY_MAP[provider_cls.name], ""))
        providers.append(
            {
                "id": provider_cls.name,
                "label": provider_cls.label,
                "configured": configured,
                "active": provider_cls.name == llm.provider,
            }
        )
    return providers


def reset_providers() -> None:
    _providers.clear()

import json
import logging
import os
from pathlib import Path
from typing import Callable, Iterator, Optional

from pydantic import BaseModel, Field

from .constants import DEFAULT_CONTEXT_WINDOW, DEFAULT_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


class LLMConfig(BaseModel):
    provider: str = "openrouter"  # openrouter | gemini | anthropic | local
    openrouter_api_key: str = ""
    gemini_api_key: str = ""
    anthropic_api_key: str = ""
    local_llm_base_url: str = ""  # e.g. http://localhost:11434/v1 (Ollama)
    local_llm_api_key: str = ""   # Optional, most local servers ignore it
    chat_model: str = "qwen/qwen3-30b-a3b"
    summary_model: str = "qwen/qwen3-8b"
    chat_temperature: float = 0.7
    summary_temperature: float = 0.3
    title_temperature: float = 0.5


class StreamConfig(BaseModel):
    chunk_timeout: float = 10.0  # seconds between two fragments
    overall_timeout: float = 60.0  # non-streaming fallback budget
    max_retries: int = 2
    retry_delay: float = 1.0  # multiplied by the attempt number


class ChatConfig(BaseModel):
    base_system_prompt: str = DEFAULT_SYSTEM_PROMPT
    summary_threshold: int = Field(default=100, ge=0)
    default_context_window: int = Field(default=DEFAULT_CONTEXT_WINDOW, ge=1, le=50)
    title_min_messages: int = 3
    title_history_messages: int = 4


class AppConfig(BaseModel):
    llm: LLMConfig = LLMConfig()
    stream: StreamConfig = StreamConfig()
    chat: ChatConfig = ChatConfig()


_config_dir = Path(os.environ.get("PERSONACHAT_CONFIG_DIR", Path.home() / ".personachat"))

SENSITIVE_FIELDS: list[str] = [
    "llm.openrouter_api_key",
    "llm.gemini_api_key",
    "llm.anthropic_api_key",
    "llm.local_llm_api_key",
]


def get_config_dir() -> Path:
    return _config_dir


def _config_file() -> Path:
    return _config_dir / "config.json"


def _ensure_config_dir() -> None:
    _config_dir.mkdir(parents=True, exist_ok=True)


def _sensitive_slots(data: dict) -> Iterator[tuple[dict, str]]:
    """(section dict, field name) for every API key present in *data*."""
    for dotpath in SENSITIVE_FIELDS:
        section, field = dotpath.split(".", 1)
        values = data.get(section)
        if isinstance(values, dict) and field in values:
            yield values, field


def _transform_sensitive(data: dict, transform: Callable[[str], str]) -> dict:
    for values, field in _sensitive_slots(data):
        values[field] = transform(values[field])
    return data


def _needs_migration(data: dict) -> bool:
    """True while any API key is still stored as plaintext."""
    from .crypto import ENC_PREFIX

    return any(
        values[field] and not values[field].startswith(ENC_PREFIX)
        for values, field in _sensitive_slots(data)
    )


def load_config() -> AppConfig:
    _ensure_config_dir()
    config_file = _config_file()
    if not config_file.exists():
        return AppConfig()
    try:
        data = json.loads(config_file.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        logger.warning("Failed to load config.json, using defaults")
        return AppConfig()

    from .crypto import decrypt_value

    migrate = _needs_migration(data)
    config = AppConfig(**_transform_sensitive(data, decrypt_value))
    if migrate:
        logger.info("Migrating config to encrypted storage")
        save_config(config)
    return config


def save_config(config: AppConfig) -> None:
    from .crypto import encrypt_value, set_strict_permissions

    _ensure_config_dir()
    data = _transform_sensitive(config.model_dump(), encrypt_value)
    config_file = _config_file()
    config_file.write_text(
        json.dumps(data, indent=2, ensure_ascii=False),
        encoding="utf-8",
    )
    set_strict_permissions(config_file)


_current_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    global _current_config
    if _current_config is None:
        _current_config = load_config()
    return _current_config


def update_config(config: AppConfig) -> AppConfig:
    global _current_config
    save_config(config)
    _current_config = config
    return _current_config


def reset_config() -> None:
    """Drop the cached config so the next get_config() re-reads disk."""
    global _current_config
    _current_config = None

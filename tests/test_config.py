"""Config persistence and API key encryption."""

import json

from personachat import config as config_module
from personachat.config import AppConfig, LLMConfig, get_config, load_config, update_config
from personachat.crypto import ENC_PREFIX, decrypt_value, encrypt_value


class TestCrypto:
    """Fernet-backed value encryption."""

    def test_roundtrip(self, config_dir):
        token = encrypt_value("sk-or-secret")
        assert token.startswith(ENC_PREFIX)
        assert "sk-or-secret" not in token
        assert decrypt_value(token) == "sk-or-secret"
        assert (config_dir / ".key").exists()

    def test_plaintext_passes_through(self, config_dir):
        assert decrypt_value("plain") == "plain"
        assert encrypt_value("") == ""

    def test_undecryptable_value_becomes_empty(self, config_dir):
        assert decrypt_value(ENC_PREFIX + "garbage") == ""


class TestConfig:
    """config.json under the config directory."""

    def test_defaults_without_file(self, config_dir):
        config = load_config()
        assert config.llm.provider == "openrouter"
        assert config.llm.chat_model == "qwen/qwen3-30b-a3b"
        assert config.llm.summary_model == "qwen/qwen3-8b"
        assert config.stream.max_retries == 2
        assert config.chat.summary_threshold == 100

    def test_keys_are_encrypted_on_disk(self, config_dir):
        update_config(AppConfig(llm=LLMConfig(openrouter_api_key="sk-or-secret")))

        raw = json.loads((config_dir / "config.json").read_text(encoding="utf-8"))
        assert raw["llm"]["openrouter_api_key"].startswith(ENC_PREFIX)

        config_module.reset_config()
        assert get_config().llm.openrouter_api_key == "sk-or-secret"

    def test_plaintext_config_is_migrated(self, config_dir):
        config_dir.mkdir(parents=True, exist_ok=True)
        (config_dir / "config.json").write_text(
            json.dumps({"llm": {"provider": "gemini", "gemini_api_key": "plain-key"}}),
            encoding="utf-8",
        )

        config = load_config()

        assert config.llm.gemini_api_key == "plain-key"
        raw = json.loads((config_dir / "config.json").read_text(encoding="utf-8"))
        assert raw["llm"]["gemini_api_key"].startswith(ENC_PREFIX)

    def test_corrupt_file_falls_back_to_defaults(self, config_dir):
        config_dir.mkdir(parents=True, exist_ok=True)
        (config_dir / "config.json").write_text("{not json", encoding="utf-8")
        assert load_config() == AppConfig()

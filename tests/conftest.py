"""Shared fixtures: a scripted provider and a fully wired engine on a temp store."""

import asyncio

import pytest
from httpx import ASGITransport, AsyncClient

from personachat import config as config_module
from personachat import services as services_module
from personachat.config import AppConfig, StreamConfig
from personachat.conversation.manager import ConversationManager
from personachat.conversation.orchestrator import OrchestrationEngine
from personachat.conversation.storage import ConversationDatabase
from personachat.conversation.summarizer import SummarizationPolicy
from personachat.llm.base import LLMProvider
from personachat.llm.completion import CompletionService
from personachat.llm.registry import reset_providers
from personachat.llm.stream import StreamAdapter
from personachat.persona import PersonaRoster
from personachat.storage import JsonFileStore

TITLE_PROMPT_PREFIX = "根据以下对话内容"
SUMMARY_PROMPT_PREFIX = "请将以下文本总结"


class FakeProvider(LLMProvider):
    """Provider driven by scripts instead of a network.

    A stream script is a list of fragments; an exception in the list is
    raised at that point and a float sleeps for that many seconds. A script
    that is itself an exception is raised when the stream is opened.
    Scripts in ``by_speaker`` are chosen when the prompt mandates that
    persona, otherwise ``stream_scripts`` are consumed in order.
    """

    name = "fake"
    label = "Fake"

    def __init__(self) -> None:
        self.stream_scripts: list = []
        self.by_speaker: dict = {}
        self.default_stream: list = ["好的。"]
        self.replies: dict = {"title": "量子计算漫谈", "summary": "这是摘要", "fallback": "吴军: 备用回答"}
        self.stream_calls: list[tuple[str, str, dict]] = []
        self.complete_calls: list[tuple[str, str, dict]] = []
        self.closed = 0

    @staticmethod
    def _kind(prompt: str) -> str:
        if prompt.startswith(TITLE_PROMPT_PREFIX):
            return "title"
        if prompt.startswith(SUMMARY_PROMPT_PREFIX):
            return "summary"
        return "fallback"

    def calls(self, kind: str) -> list[tuple[str, str, dict]]:
        return [c for c in self.complete_calls if self._kind(c[0]) == kind]

    async def complete(self, messages: list[dict], model: str, **kwargs) -> str:
        prompt = messages[-1]["content"]
        self.complete_calls.append((prompt, model, kwargs))
        reply = self.replies[self._kind(prompt)]
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def _script_for(self, prompt: str):
        for name, script in self.by_speaker.items():
            if f"**{name}**" in prompt:
                return script
        if self.stream_scripts:
            return self.stream_scripts.pop(0)
        return self.default_stream

    async def stream(self, messages: list[dict], model: str, **kwargs):
        prompt = messages[-1]["content"]
        self.stream_calls.append((prompt, model, kwargs))
        script = self._script_for(prompt)
        if isinstance(script, BaseException):
            raise script
        return self._iterate(list(script))

    async def _iterate(self, script: list):
        try:
            for item in script:
                if isinstance(item, BaseException):
                    raise item
                if isinstance(item, float):
                    await asyncio.sleep(item)
                    continue
                yield item
        finally:
            self.closed += 1


@pytest.fixture(autouse=True)
def config_dir(tmp_path, monkeypatch):
    """Point the config layer at a throwaway directory."""
    path = tmp_path / "config"
    monkeypatch.setattr(config_module, "_config_dir", path)
    config_module.reset_config()
    reset_providers()
    yield path
    config_module.reset_config()
    reset_providers()
    services_module.reset_services()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        stream=StreamConfig(chunk_timeout=0.2, overall_timeout=1.0, max_retries=2, retry_delay=0.0)
    )


@pytest.fixture
def store(tmp_path) -> JsonFileStore:
    return JsonFileStore(tmp_path / "data")


@pytest.fixture
def roster(store) -> PersonaRoster:
    return PersonaRoster(store)


@pytest.fixture
def db(store) -> ConversationDatabase:
    return ConversationDatabase(store)


@pytest.fixture
def manager(db, roster, app_config) -> ConversationManager:
    manager = ConversationManager(db, roster, app_config.chat)
    manager.load()
    return manager


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def completion(provider) -> CompletionService:
    return CompletionService(lambda: provider)


@pytest.fixture
def summarizer(completion, app_config) -> SummarizationPolicy:
    return SummarizationPolicy(completion, app_config.llm, app_config.chat)


@pytest.fixture
def adapter(completion, app_config) -> StreamAdapter:
    return StreamAdapter(completion, app_config.stream)


@pytest.fixture
async def engine(manager, roster, adapter, summarizer, app_config):
    engine = OrchestrationEngine(manager, roster, adapter, summarizer, app_config)
    yield engine
    await engine.background.cancel_all()


@pytest.fixture
async def client(store, completion, app_config):
    """HTTP client against the app with services wired to the fake provider."""
    from personachat.main import app

    services = services_module.init_services(app_config, store, completion)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await services.engine.background.cancel_all()

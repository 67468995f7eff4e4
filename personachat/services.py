"""Process-wide object graph used by the HTTP routes."""

import logging
from typing import Optional

from .config import AppConfig, get_config_dir
from .conversation.manager import ConversationManager
from .conversation.orchestrator import OrchestrationEngine
from .conversation.storage import ConversationDatabase
from .conversation.summarizer import SummarizationPolicy
from .llm.completion import CompletionService
from .llm.stream import StreamAdapter
from .persona import PersonaRoster
from .storage import JsonFileStore

logger = logging.getLogger(__name__)


class Services:
    def __init__(
        self,
        store: JsonFileStore,
        config: Optional[AppConfig] = None,
        completion: Optional[CompletionService] = None,
    ) -> None:
        # Without an explicit config every component reads the live one
        self.store = store
        self.roster = PersonaRoster(store)
        self.db = ConversationDatabase(store)
        self.manager = ConversationManager(self.db, self.roster, config.chat if config else None)
        self.completion = completion or CompletionService()
        self.adapter = StreamAdapter(self.completion, config.stream if config else None)
        self.summarizer = SummarizationPolicy(
            self.completion,
            config.llm if config else None,
            config.chat if config else None,
        )
        self.engine = OrchestrationEngine(
            self.manager, self.roster, self.adapter, self.summarizer, config
        )
        self.manager.load()


_services: Optional[Services] = None


def init_services(
    config: Optional[AppConfig] = None,
    store: Optional[JsonFileStore] = None,
    completion: Optional[CompletionService] = None,
) -> Services:
    global _services
    store = store or JsonFileStore(get_config_dir() / "data")
    _services = Services(store, config, completion)
    logger.info("Services initialized (data dir: %s)", store.base_dir)
    return _services


def get_services() -> Services:
    if _services is None:
        return init_services()
    return _services


def reset_services() -> None:
    global _services
    _services = None

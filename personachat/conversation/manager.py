"""In-memory owner of all conversations.

Every writer (the orchestration engine, summary and title jobs, the HTTP
routes) goes through the methods here. Message mutations address a message by
conversation id and message id; when either is gone the call does nothing,
so late results from a deleted conversation are simply dropped.
"""

import asyncio
import logging
from contextlib import contextmanager
from typing import Iterator, Optional

from ..config import ChatConfig, get_config
from ..constants import CONVERSATION_DIRECTIONS, NEW_CONVERSATION_TITLE
from ..errors import ConversationBusyError, ConversationNotFoundError, InvalidSettingsError
from ..persona import PersonaRoster
from .models import Conversation, ConversationMessage, ConversationSettings, clamp_context_window
from .storage import ConversationDatabase

logger = logging.getLogger(__name__)


class ConversationManager:
    def __init__(
        self,
        db: ConversationDatabase,
        roster: PersonaRoster,
        chat_config: Optional[ChatConfig] = None,
    ) -> None:
        self._db = db
        self._roster = roster
        self._chat_config = chat_config
        self._conversations: dict[str, Conversation] = {}
        self._active_id: Optional[str] = None
        self._loading: set[str] = set()
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    # ------------------------------------------------------------------
    # Loading and persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        conversations = self._db.get_conversations()
        self._conversations = {c.id: c for c in conversations}
        if not self._conversations:
            self._active_id = None
            self.create_conversation()
            return

        active_id = self._db.get_active_conversation_id()
        if active_id not in self._conversations:
            active_id = next(iter(self._conversations))
        self._active_id = active_id
        self._db.save_active_conversation_id(active_id)
        logger.info("Loaded %d conversations", len(self._conversations))

    def persist(self) -> None:
        self._db.save_conversations(list(self._conversations.values()))
        self._db.save_active_conversation_id(self._active_id)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    def list_conversations(self) -> list[Conversation]:
        """Pinned first, then newest first."""
        return sorted(
            self._conversations.values(),
            key=lambda c: (not c.pinned, -c.created_at),
        )

    def find(self, conv_id: str) -> Optional[Conversation]:
        return self._conversations.get(conv_id)

    def get(self, conv_id: str) -> Conversation:
        conversation = self._conversations.get(conv_id)
        if conversation is None:
            raise ConversationNotFoundError()
        return conversation

    @property
    def active_id(self) -> Optional[str]:
        return self._active_id

    def active_conversation(self) -> Optional[Conversation]:
        if self._active_id is None:
            return None
        return self._conversations.get(self._active_id)

    def set_active(self, conv_id: str) -> Conversation:
        conversation = self.get(conv_id)
        self._active_id = conv_id
        self._db.save_active_conversation_id(conv_id)
        return conversation

    def create_conversation(self) -> Conversation:
        conversation = Conversation(
            active_persona_ids=self._roster.ids(),
            context_window=(self._chat_config or get_config().chat).default_context_window,
        )
        self._conversations = {conversation.id: conversation, **self._conversations}
        self._active_id = conversation.id
        self.persist()
        logger.info("Created conversation %s", conversation.id)
        return conversation

    def delete_conversation(self, conv_id: str) -> None:
        self.get(conv_id)
        order = list(self._conversations)
        index = order.index(conv_id)
        del self._conversations[conv_id]
        self._publish(conv_id, {"type": "conversation_deleted"})

        if self._active_id == conv_id:
            remaining = list(self._conversations)
            if remaining:
                self._active_id = remaining[min(index, len(remaining) - 1)]
            else:
                self._active_id = None
        if not self._conversations:
            self.create_conversation()
            return
        self.persist()
        logger.info("Deleted conversation %s", conv_id)

    def clear_all(self) -> Conversation:
        for conv_id in list(self._conversations):
            self._publish(conv_id, {"type": "conversation_deleted"})
        self._db.clear_all()
        self._conversations = {}
        self._active_id = None
        return self.create_conversation()

    def update_title(self, conv_id: str, title: str) -> Conversation:
        conversation = self.get(conv_id)
        conversation.title = title.strip() or NEW_CONVERSATION_TITLE
        self._publish(conv_id, {"type": "title", "title": conversation.title})
        self.persist()
        return conversation

    def apply_generated_title(self, conv_id: str, title: str) -> bool:
        """Set a generated title unless the user already renamed the conversation."""
        conversation = self._conversations.get(conv_id)
        if conversation is None or conversation.title != NEW_CONVERSATION_TITLE:
            return False
        self.update_title(conv_id, title)
        return True

    def set_pinned(self, conv_id: str, pinned: bool) -> Conversation:
        conversation = self.get(conv_id)
        conversation.pinned = pinned
        self.persist()
        return conversation

    def update_settings(self, conv_id: str, settings: ConversationSettings) -> Conversation:
        conversation = self.get(conv_id)
        if settings.direction is not None and settings.direction not in CONVERSATION_DIRECTIONS:
            raise InvalidSettingsError(f"未知的对话方向：{settings.direction}")

        if settings.active_persona_ids is not None:
            known = set(self._roster.ids())
            conversation.active_persona_ids = [
                pid for pid in dict.fromkeys(settings.active_persona_ids) if pid in known
            ]
        if settings.direction is not None:
            conversation.direction = settings.direction
        if settings.thinking_mode is not None:
            conversation.thinking_mode = settings.thinking_mode
        if settings.context_window is not None:
            conversation.context_window = clamp_context_window(settings.context_window)
        self.persist()
        return conversation

    def set_direction(self, conv_id: str, direction: str) -> Conversation:
        return self.update_settings(conv_id, ConversationSettings(direction=direction))

    # ------------------------------------------------------------------
    # Messages, merged by id
    # ------------------------------------------------------------------

    def append_message(self, conv_id: str, message: ConversationMessage) -> Optional[ConversationMessage]:
        conversation = self._conversations.get(conv_id)
        if conversation is None:
            return None
        conversation.append_message(message)
        self._publish_message(conv_id, "message_added", message)
        return message

    def update_message(self, conv_id: str, message_id: str, **changes) -> Optional[ConversationMessage]:
        conversation = self._conversations.get(conv_id)
        if conversation is None:
            return None
        message = conversation.update_message(message_id, **changes)
        if message is not None:
            self._publish_message(conv_id, "message_updated", message)
        return message

    def append_text(self, conv_id: str, message_id: str, fragment: str) -> Optional[ConversationMessage]:
        conversation = self._conversations.get(conv_id)
        if conversation is None:
            return None
        message = conversation.append_text(message_id, fragment)
        if message is not None:
            self._publish(conv_id, {"type": "text_appended", "message_id": message_id, "fragment": fragment})
        return message

    def replace_message(self, conv_id: str, message_id: str, message: ConversationMessage) -> bool:
        conversation = self._conversations.get(conv_id)
        if conversation is None or not conversation.replace_message(message_id, message):
            return False
        self._publish_message(conv_id, "message_replaced", message, replaced_id=message_id)
        return True

    def insert_after(self, conv_id: str, anchor_id: str, message: ConversationMessage) -> Optional[ConversationMessage]:
        conversation = self._conversations.get(conv_id)
        if conversation is None:
            return None
        conversation.insert_after(anchor_id, message)
        self._publish_message(conv_id, "message_added", message, after_id=anchor_id)
        return message

    def remove_message(self, conv_id: str, message_id: str) -> bool:
        conversation = self._conversations.get(conv_id)
        if conversation is None or not conversation.remove_message(message_id):
            return False
        self._publish(conv_id, {"type": "message_removed", "message_id": message_id})
        return True

    def attach_summary(self, conv_id: str, message_id: str, summary: Optional[str]) -> bool:
        # An empty result never overwrites an existing summary
        if not summary:
            return False
        if self.update_message(conv_id, message_id, summary=summary) is None:
            return False
        self.persist()
        return True

    # ------------------------------------------------------------------
    # Loading gate
    # ------------------------------------------------------------------

    def is_loading(self, conv_id: str) -> bool:
        return conv_id in self._loading

    @contextmanager
    def loading(self, conv_id: str) -> Iterator[None]:
        """Hold the per-conversation send gate for the duration of a turn."""
        if conv_id in self._loading:
            raise ConversationBusyError()
        self._loading.add(conv_id)
        self._publish(conv_id, {"type": "loading", "loading": True})
        try:
            yield
        finally:
            self._loading.discard(conv_id)
            self._publish(conv_id, {"type": "loading", "loading": False})

    # ------------------------------------------------------------------
    # Change subscribers
    # ------------------------------------------------------------------

    def subscribe(self, conv_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(conv_id, []).append(queue)
        return queue

    def unsubscribe(self, conv_id: str, queue: asyncio.Queue) -> None:
        queues = self._subscribers.get(conv_id)
        if not queues:
            return
        if queue in queues:
            queues.remove(queue)
        if not queues:
            del self._subscribers[conv_id]

    def _publish(self, conv_id: str, event: dict) -> None:
        for queue in self._subscribers.get(conv_id, []):
            queue.put_nowait({"conversation_id": conv_id, **event})

    def _publish_message(self, conv_id: str, event_type: str, message: ConversationMessage, **extra) -> None:
        self._publish(
            conv_id,
            {"type": event_type, "message": message.model_dump(mode="json"), **extra},
        )

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def export_data(self) -> str:
        self.persist()
        return self._db.export_data()

    def import_data(self, json_data: str) -> bool:
        if self._loading:
            raise ConversationBusyError()
        if not self._db.import_data(json_data):
            return False
        self.load()
        return True

    def storage_info(self) -> dict:
        return self._db.storage_info()

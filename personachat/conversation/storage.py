import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import ValidationError

from ..constants import CONVERSATION_DIRECTIONS, DEFAULT_CONTEXT_WINDOW, SYSTEM_LABEL, UNATTRIBUTED_SENDER
from ..storage import JsonFileStore
from .models import Conversation

logger = logging.getLogger(__name__)

CONVERSATIONS_KEY = "conversations"
ACTIVE_CONVERSATION_KEY = "active_conversation_id"
APP_VERSION_KEY = "app_version"

CURRENT_VERSION = "2.0.0"

# camelCase names written by the 1.x web client
_LEGACY_FIELDS = {
    "activePersonaIds": "active_persona_ids",
    "thinkingMode": "thinking_mode",
    "contextWindow": "context_window",
    "createdAt": "created_at",
}


def _migrate_avatar(avatar: Any) -> Any:
    if isinstance(avatar, dict) and "bgColor" in avatar:
        avatar = dict(avatar)
        avatar.setdefault("bg_color", avatar.pop("bgColor"))
    return avatar


def _migrate_sender(sender: Any) -> Any:
    if not isinstance(sender, str):
        return sender
    if sender == "user":
        return {"kind": "user"}
    if sender in ("system", SYSTEM_LABEL):
        return {"kind": "system"}
    if sender == UNATTRIBUTED_SENDER:
        return {"kind": "ai"}
    return {"kind": "persona", "name": sender}


def _migrate_conversation(raw: dict) -> dict:
    data = dict(raw)
    for old, new in _LEGACY_FIELDS.items():
        if old in data:
            data.setdefault(new, data.pop(old))
    data.setdefault("thinking_mode", True)
    data.setdefault("context_window", DEFAULT_CONTEXT_WINDOW)
    data.setdefault("pinned", False)
    data.setdefault("active_persona_ids", [])
    data.setdefault("direction", CONVERSATION_DIRECTIONS[0])
    messages = []
    for message in data.get("messages") or []:
        message = dict(message)
        message["sender"] = _migrate_sender(message.get("sender"))
        if message.get("avatar") is not None:
            message["avatar"] = _migrate_avatar(message["avatar"])
        messages.append(message)
    data["messages"] = messages
    return data


def _to_record(conversation: Conversation) -> dict:
    """Stored form of a conversation; in-flight placeholders are not content."""
    data = conversation.model_dump(mode="json")
    data["messages"] = [m for m in data["messages"] if not m.get("placeholder")]
    return data


class ConversationDatabase:
    """Conversation list and active id on top of the key-value store."""

    def __init__(self, store: JsonFileStore) -> None:
        self._store = store

    def _parse(self, items: list, migrate: bool) -> list[Conversation]:
        conversations = []
        for item in items:
            data = _migrate_conversation(item) if migrate else item
            conversation = Conversation.model_validate(data)
            conversation.messages = {m.id: m for m in conversation.history()}
            conversations.append(conversation)
        return conversations

    def get_conversations(self) -> list[Conversation]:
        items = self._store.get(CONVERSATIONS_KEY)
        if not isinstance(items, list):
            return []

        migrate = self._store.get(APP_VERSION_KEY) != CURRENT_VERSION
        try:
            conversations = self._parse(items, migrate)
        except (ValidationError, TypeError, KeyError) as e:
            logger.error("Failed to parse stored conversations: %s", e)
            return []

        if migrate:
            logger.info("Migrating conversations to version %s", CURRENT_VERSION)
            self.save_conversations(conversations)
        return conversations

    def save_conversations(self, conversations: list[Conversation]) -> None:
        ok = self._store.set(
            CONVERSATIONS_KEY, [_to_record(c) for c in conversations]
        )
        if ok:
            self._store.set(APP_VERSION_KEY, CURRENT_VERSION)
        else:
            logger.warning("Failed to save conversations")

    def get_active_conversation_id(self) -> Optional[str]:
        return self._store.get(ACTIVE_CONVERSATION_KEY)

    def save_active_conversation_id(self, conv_id: Optional[str]) -> None:
        if conv_id is None:
            self._store.delete(ACTIVE_CONVERSATION_KEY)
        else:
            self._store.set(ACTIVE_CONVERSATION_KEY, conv_id)

    def clear_all(self) -> None:
        self._store.delete(CONVERSATIONS_KEY)
        self._store.delete(ACTIVE_CONVERSATION_KEY)

    def export_data(self) -> str:
        data = {
            "version": CURRENT_VERSION,
            "conversations": [_to_record(c) for c in self.get_conversations()],
            "activeConversationId": self.get_active_conversation_id(),
            "exportedAt": datetime.now(timezone.utc).isoformat(),
        }
        return json.dumps(data, indent=2, ensure_ascii=False)

    def import_data(self, json_data: str) -> bool:
        """Replace all conversations with an export; False if the payload is invalid."""
        try:
            data = json.loads(json_data)
        except json.JSONDecodeError as e:
            logger.error("Import failed, not JSON: %s", e)
            return False
        if not isinstance(data, dict) or not isinstance(data.get("conversations"), list):
            logger.error("Import failed: conversations must be an array")
            return False

        try:
            conversations = self._parse(data["conversations"], migrate=True)
        except (ValidationError, TypeError, KeyError) as e:
            logger.error("Import failed, invalid conversation: %s", e)
            return False

        self.save_conversations(conversations)
        if data.get("activeConversationId"):
            self.save_active_conversation_id(data["activeConversationId"])
        logger.info("Imported %d conversations", len(conversations))
        return True

    def storage_info(self) -> dict:
        conversations = self.get_conversations()
        size = len(json.dumps([_to_record(c) for c in conversations], ensure_ascii=False))
        return {
            "conversation_count": len(conversations),
            "total_messages": sum(len(c.messages) for c in conversations),
            "data_size_bytes": size,
            "data_size_kb": f"{size / 1024:.2f} KB",
            "active_conversation_id": self.get_active_conversation_id(),
        }

import itertools
import time
import uuid
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import (
    BaseModel,
    Field,
    FieldSerializationInfo,
    field_serializer,
    field_validator,
)

from ..constants import (
    CONVERSATION_DIRECTIONS,
    DEFAULT_CONTEXT_WINDOW,
    MAX_CONTEXT_WINDOW,
    MIN_CONTEXT_WINDOW,
    NEW_CONVERSATION_TITLE,
    SYSTEM_LABEL,
    UNATTRIBUTED_SENDER,
    USER_LABEL,
)
from ..persona import AvatarConfig


class UserSender(BaseModel):
    kind: Literal["user"] = "user"

    @property
    def label(self) -> str:
        return USER_LABEL


class PersonaSender(BaseModel):
    kind: Literal["persona"] = "persona"
    name: str

    @property
    def label(self) -> str:
        return self.name


class SystemSender(BaseModel):
    kind: Literal["system"] = "system"

    @property
    def label(self) -> str:
        return SYSTEM_LABEL


class UnattributedSender(BaseModel):
    """A model reply whose speaker could not be matched to the roster."""

    kind: Literal["ai"] = "ai"

    @property
    def label(self) -> str:
        return UNATTRIBUTED_SENDER


Sender = Annotated[
    Union[UserSender, PersonaSender, SystemSender, UnattributedSender],
    Field(discriminator="kind"),
]


_message_sequence = itertools.count()


def new_message_id(suffix: str) -> str:
    """Ids order by (milliseconds, sequence) even within one millisecond."""
    return f"{int(time.time() * 1000)}-{next(_message_sequence):08d}-{uuid.uuid4().hex[:6]}-{suffix}"


def clamp_context_window(value: Any) -> int:
    try:
        window = int(value)
    except (TypeError, ValueError):
        return DEFAULT_CONTEXT_WINDOW
    return max(MIN_CONTEXT_WINDOW, min(MAX_CONTEXT_WINDOW, window))


class ConversationMessage(BaseModel):
    id: str
    sender: Sender
    text: str
    avatar: Optional[AvatarConfig] = None
    summary: Optional[str] = None
    placeholder: bool = False  # transient "thinking" bubble, never persisted as content


class Conversation(BaseModel):
    """A chat thread.

    ``messages`` is an insertion-ordered map keyed by message id so concurrent
    writers can address a message without caring where it sits; it is
    serialized as a plain list.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    title: str = NEW_CONVERSATION_TITLE
    messages: dict[str, ConversationMessage] = {}
    created_at: int = Field(default_factory=lambda: int(time.time() * 1000))
    pinned: bool = False
    active_persona_ids: list[str] = []
    direction: str = CONVERSATION_DIRECTIONS[0]
    thinking_mode: bool = True
    context_window: int = DEFAULT_CONTEXT_WINDOW

    @field_validator("messages", mode="before")
    @classmethod
    def _index_messages(cls, value: Any) -> Any:
        if isinstance(value, list):
            indexed = {}
            for item in value:
                msg_id = item["id"] if isinstance(item, dict) else item.id
                indexed[msg_id] = item
            return indexed
        return value

    @field_validator("context_window", mode="before")
    @classmethod
    def _clamp_window(cls, value: Any) -> int:
        return clamp_context_window(value)

    @field_serializer("messages")
    def _list_messages(
        self, messages: dict[str, ConversationMessage], info: FieldSerializationInfo
    ) -> list[dict]:
        return [m.model_dump(mode=info.mode) for m in messages.values()]

    def message_list(self) -> list[ConversationMessage]:
        return list(self.messages.values())

    def history(self) -> list[ConversationMessage]:
        """Messages that count as conversation content (no placeholders)."""
        return [m for m in self.messages.values() if not m.placeholder]

    def get_message(self, message_id: str) -> Optional[ConversationMessage]:
        return self.messages.get(message_id)

    # Every mutation below swaps single entries in place and keeps the
    # order of the rest, so concurrent writers never clobber each other.

    def append_message(self, message: ConversationMessage) -> None:
        self.messages[message.id] = message

    def update_message(self, message_id: str, **changes: Any) -> Optional[ConversationMessage]:
        current = self.messages.get(message_id)
        if current is None:
            return None
        updated = current.model_copy(update=changes)
        self.messages[message_id] = updated
        return updated

    def append_text(self, message_id: str, fragment: str) -> Optional[ConversationMessage]:
        current = self.messages.get(message_id)
        if current is None:
            return None
        return self.update_message(message_id, text=current.text + fragment)

    def replace_message(self, message_id: str, message: ConversationMessage) -> bool:
        if message_id not in self.messages:
            return False
        self.messages = {
            (message.id if key == message_id else key): (message if key == message_id else value)
            for key, value in self.messages.items()
        }
        return True

    def insert_after(self, message_id: str, message: ConversationMessage) -> None:
        if message_id not in self.messages:
            self.append_message(message)
            return
        reordered: dict[str, ConversationMessage] = {}
        for key, value in self.messages.items():
            reordered[key] = value
            if key == message_id:
                reordered[message.id] = message
        self.messages = reordered

    def remove_message(self, message_id: str) -> bool:
        return self.messages.pop(message_id, None) is not None


class ConversationSettings(BaseModel):
    active_persona_ids: Optional[list[str]] = None
    direction: Optional[str] = None
    thinking_mode: Optional[bool] = None
    context_window: Optional[int] = None

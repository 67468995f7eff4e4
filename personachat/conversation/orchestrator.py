"""The send-message workflow.

A turn appends the user's message, picks who should answer, and drives one
streamed reply per participant. Each participant starts as a "thinking"
placeholder that is swapped for the real message on the first fragment;
attribution is re-checked once the full reply is in. Participants fail
independently: a failure turns into a system message where that
participant's reply would have been.

Summaries and titles are spawned as background tasks and never hold up
the turn.
"""

import asyncio
import logging
import uuid
from typing import Optional, Sequence

from ..background import BackgroundTasks
from ..config import AppConfig, get_config
from ..constants import NEW_CONVERSATION_TITLE, SYSTEM_AVATAR, THINKING_TEXT, UNATTRIBUTED_AVATAR
from ..errors import ConversationNotFoundError, NoActivePersonaError, user_message
from ..llm.stream import StreamAdapter
from ..matcher import extract_direction, extract_mentions, parse_attribution
from ..persona import AvatarConfig, Persona, PersonaRoster
from .manager import ConversationManager
from .models import (
    Conversation,
    ConversationMessage,
    PersonaSender,
    SystemSender,
    UnattributedSender,
    UserSender,
    new_message_id,
)
from .prompt import build_prompt
from .summarizer import SummarizationPolicy

logger = logging.getLogger(__name__)


class _Participant:
    __slots__ = ("placeholder_id", "prompt")

    def __init__(self, placeholder_id: str, prompt: str) -> None:
        self.placeholder_id = placeholder_id
        self.prompt = prompt


def _placeholder() -> ConversationMessage:
    return ConversationMessage(
        id=f"thinking-{uuid.uuid4().hex}",
        sender=UnattributedSender(),
        text=THINKING_TEXT,
        avatar=AvatarConfig(**UNATTRIBUTED_AVATAR),
        placeholder=True,
    )


def _error_message(exc: BaseException) -> ConversationMessage:
    return ConversationMessage(
        id=new_message_id("error"),
        sender=SystemSender(),
        text=user_message(exc),
        avatar=AvatarConfig(**SYSTEM_AVATAR),
    )


def _reply_fields(text: str, personas: Sequence[Persona]) -> dict:
    attribution = parse_attribution(text, personas)
    if attribution.persona is None:
        return {
            "sender": UnattributedSender(),
            "avatar": AvatarConfig(**UNATTRIBUTED_AVATAR),
            "text": attribution.cleaned_text,
        }
    return {
        "sender": PersonaSender(name=attribution.persona.name),
        "avatar": attribution.persona.avatar,
        "text": attribution.cleaned_text,
    }


class OrchestrationEngine:
    def __init__(
        self,
        manager: ConversationManager,
        roster: PersonaRoster,
        adapter: StreamAdapter,
        summarizer: SummarizationPolicy,
        config: Optional[AppConfig] = None,
        background: Optional[BackgroundTasks] = None,
    ) -> None:
        self._manager = manager
        self._roster = roster
        self._adapter = adapter
        self._summarizer = summarizer
        self._config = config
        self.background = background or BackgroundTasks()
        self._titling: set[str] = set()

    @property
    def config(self) -> AppConfig:
        return self._config or get_config()

    async def send_message(
        self,
        conversation_id: Optional[str] = None,
        user_text: Optional[str] = None,
        next_speaker: Optional[str] = None,
    ) -> Conversation:
        """Run one chat turn on *conversation_id* (the active conversation by default).

        Raises ConversationNotFoundError for an unknown conversation and
        ConversationBusyError while another turn is running on it. Every
        other failure ends up in the conversation as a system message.
        """
        conv_id = conversation_id or self._manager.active_id
        if conv_id is None:
            raise ConversationNotFoundError()
        conversation = self._manager.get(conv_id)

        with self._manager.loading(conv_id):
            direction, text = extract_direction((user_text or "").strip())
            if direction:
                logger.info("Conversation %s direction set to %s", conv_id, direction)
                self._manager.set_direction(conv_id, direction)
            if not text and not next_speaker:
                return conversation

            placeholder_ids: list[str] = []
            try:
                await self._run_turn(conv_id, text, next_speaker, placeholder_ids)
            finally:
                for placeholder_id in placeholder_ids:
                    self._manager.remove_message(conv_id, placeholder_id)
                if self._manager.find(conv_id) is not None:
                    self._manager.persist()

        self._schedule_title(conv_id)
        return self._manager.find(conv_id) or conversation

    async def _run_turn(
        self,
        conv_id: str,
        text: str,
        next_speaker: Optional[str],
        placeholder_ids: list[str],
    ) -> None:
        if text:
            message = ConversationMessage(id=new_message_id("user"), sender=UserSender(), text=text)
            self._manager.append_message(conv_id, message)
            self._manager.persist()
            self._schedule_summary(conv_id, message)

        conversation = self._manager.get(conv_id)
        active = self._roster.active(conversation.active_persona_ids)
        if not active:
            logger.warning("Conversation %s has no active persona", conv_id)
            self._manager.append_message(conv_id, _error_message(NoActivePersonaError()))
            return

        mentioned = extract_mentions(text, active)
        if len(mentioned) > 1:
            directives = [p.name for p in mentioned]
            logger.info("Dispatching to %d personas: %s", len(directives), ", ".join(directives))
        elif mentioned:
            directives = [mentioned[0].name]
        else:
            directives = [next_speaker]

        # Prompts see the history as it is now, before any reply lands
        participants = []
        for directive in directives:
            prompt = build_prompt(conversation, active, self.config.chat.base_system_prompt, directive)
            placeholder = _placeholder()
            self._manager.append_message(conv_id, placeholder)
            placeholder_ids.append(placeholder.id)
            participants.append(_Participant(placeholder.id, prompt))

        await asyncio.gather(
            *(self._generate(conv_id, p, active, conversation.thinking_mode) for p in participants)
        )

    async def _generate(
        self,
        conv_id: str,
        participant: _Participant,
        active: Sequence[Persona],
        thinking: bool,
    ) -> None:
        llm = self.config.llm
        message_id: Optional[str] = None
        raw_text = ""
        try:
            stream = await self._adapter.open(
                participant.prompt,
                llm.chat_model,
                temperature=llm.chat_temperature,
                thinking=thinking,
            )
            async for fragment in stream:
                raw_text += fragment
                if message_id is None:
                    message = ConversationMessage(id=new_message_id("ai"), **_reply_fields(raw_text, active))
                    message_id = message.id
                    self._manager.replace_message(conv_id, participant.placeholder_id, message)
                else:
                    self._manager.append_text(conv_id, message_id, fragment)
        except Exception as exc:
            logger.error("Reply generation failed in conversation %s: %s", conv_id, exc)
            if message_id is None:
                self._manager.replace_message(conv_id, participant.placeholder_id, _error_message(exc))
                return
            # Keep what already streamed and report the failure right after it
            self._finalize(conv_id, message_id, raw_text, active)
            self._manager.insert_after(conv_id, message_id, _error_message(exc))
            return

        if message_id is None:
            logger.warning("Empty reply in conversation %s", conv_id)
            self._manager.remove_message(conv_id, participant.placeholder_id)
            return
        self._finalize(conv_id, message_id, raw_text, active)

    def _finalize(self, conv_id: str, message_id: str, raw_text: str, active: Sequence[Persona]) -> None:
        message = self._manager.update_message(conv_id, message_id, **_reply_fields(raw_text, active))
        if message is not None:
            self._schedule_summary(conv_id, message)

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------

    def _schedule_summary(self, conv_id: str, message: ConversationMessage) -> None:
        if not self._summarizer.needs_summary(message):
            return
        self.background.spawn(self._summarize(conv_id, message), name=f"summary-{message.id}")

    async def _summarize(self, conv_id: str, message: ConversationMessage) -> None:
        summary = await self._summarizer.summarize_if_needed(message)
        if self._manager.attach_summary(conv_id, message.id, summary):
            logger.debug("Attached summary to message %s", message.id)

    def _schedule_title(self, conv_id: str) -> None:
        conversation = self._manager.find(conv_id)
        if conversation is None or conversation.title != NEW_CONVERSATION_TITLE:
            return
        if conv_id in self._titling:
            return
        messages = conversation.history()
        if len(messages) < self.config.chat.title_min_messages:
            return
        self._titling.add(conv_id)
        self.background.spawn(self._generate_title(conv_id, messages), name=f"title-{conv_id}")

    async def _generate_title(self, conv_id: str, messages: list[ConversationMessage]) -> None:
        try:
            title = await self._summarizer.generate_title(messages)
            if title and title != NEW_CONVERSATION_TITLE:
                if self._manager.apply_generated_title(conv_id, title):
                    logger.info("Conversation %s titled %r", conv_id, title)
        finally:
            self._titling.discard(conv_id)

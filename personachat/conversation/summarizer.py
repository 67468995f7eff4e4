"""Best-effort condensation of long messages and conversation titles.

Both calls run detached from the chat turn; a failure is logged and reported
as ``None`` so the conversation is left as it was.
"""

import logging
import re
from typing import Optional, Sequence

from ..config import ChatConfig, LLMConfig, get_config
from ..llm.completion import CompletionService
from .models import ConversationMessage

logger = logging.getLogger(__name__)

_SUMMARIZE_PROMPT = """\
请将以下文本总结为一段简洁的核心摘要，保留关键信息和语气，用于后续的AI上下文参考。

文本：
{text}

摘要："""

_TITLE_PROMPT = """\
根据以下对话内容，生成一个简洁的、不超过10个字的中文标题。

对话内容：
{history}

标题："""

_QUOTES = re.compile(r"[\"'“”]")
_TRAILING_STOP = re.compile(r"[.。]$")


def clean_title(raw: str) -> str:
    return _TRAILING_STOP.sub("", _QUOTES.sub("", raw.strip()))


class SummarizationPolicy:
    def __init__(
        self,
        completion: CompletionService,
        llm_config: Optional[LLMConfig] = None,
        chat_config: Optional[ChatConfig] = None,
    ) -> None:
        self._completion = completion
        self._llm_config = llm_config
        self._chat_config = chat_config

    @property
    def _llm(self) -> LLMConfig:
        return self._llm_config or get_config().llm

    @property
    def _chat(self) -> ChatConfig:
        return self._chat_config or get_config().chat

    def needs_summary(self, message: ConversationMessage) -> bool:
        return len(message.text) > self._chat.summary_threshold

    async def summarize_if_needed(self, message: ConversationMessage) -> Optional[str]:
        if not self.needs_summary(message):
            return None
        try:
            summary = await self._completion.generate_completion(
                _SUMMARIZE_PROMPT.format(text=message.text),
                self._llm.summary_model,
                temperature=self._llm.summary_temperature,
            )
        except Exception as e:
            logger.debug("Summary for message %s failed: %s", message.id, e)
            return None
        return summary.strip() or None

    async def generate_title(self, messages: Sequence[ConversationMessage]) -> Optional[str]:
        history = "\n".join(
            f"{m.sender.label}: {m.text}" for m in messages[: self._chat.title_history_messages]
        )
        try:
            raw = await self._completion.generate_completion(
                _TITLE_PROMPT.format(history=history),
                self._llm.summary_model,
                temperature=self._llm.title_temperature,
            )
        except Exception as e:
            logger.debug("Title generation failed: %s", e)
            return None
        return clean_title(raw) or None

from typing import Sequence

from ..constants import DEFAULT_CONTEXT_WINDOW
from .models import ConversationMessage

SUMMARY_SEPARATOR = "(--- 部分历史记录为AI总结 ---)"
_EXCERPT_CHARS = 50


def _format_message(message: ConversationMessage, use_summary: bool) -> str:
    if use_summary:
        content = message.summary or f"(总结) {message.text[:_EXCERPT_CHARS]}..."
    else:
        content = message.text
    return f"{message.sender.label}: {content}"


def format_history(messages: Sequence[ConversationMessage], context_window: int) -> str:
    """Render the transcript for the prompt.

    The last ``context_window`` messages are kept verbatim; anything older is
    replaced by its summary, or a short excerpt while the summary is pending.
    """
    threshold = context_window or DEFAULT_CONTEXT_WINDOW
    recent = messages[-threshold:]
    older = messages[:-threshold] if len(messages) > threshold else []

    older_history = "\n".join(_format_message(m, True) for m in older)
    recent_history = "\n".join(_format_message(m, False) for m in recent)

    if older_history and recent_history:
        return f"{older_history}\n\n{SUMMARY_SEPARATOR}\n\n{recent_history}"
    return older_history or recent_history

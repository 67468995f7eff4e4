import re
from typing import Optional, Sequence

from ..constants import AI_CHOICE, DEFAULT_SYSTEM_PROMPT
from ..persona import Persona
from .history import format_history
from .models import Conversation

_PLACEHOLDER = re.compile(r"\{\{(personaProfiles|direction|history|instruction)\}\}")

PICK_BEST_INSTRUCTION = "分析用户的最新问题和对话历史，从下方“活跃人设”中选择一位最合适的角色进行回答。"
AI_CHOICE_INSTRUCTION = "用户让你来决定谁来接话。请分析对话历史，选择一个最合理的角色，以其口吻和风格延续对话。"


def format_persona_profiles(personas: Sequence[Persona]) -> str:
    return "\n".join(
        f"---\n**姓名:** {p.name}\n**人设简介:** {p.prompt}\n---" for p in personas
    )


def build_instruction(next_speaker: Optional[str]) -> str:
    if not next_speaker:
        return PICK_BEST_INSTRUCTION
    if next_speaker == AI_CHOICE:
        return AI_CHOICE_INSTRUCTION
    return (
        f"用户指定了由 **{next_speaker}** 来回答。"
        f"你必须使用 {next_speaker} 的人设、口吻和风格来生成回应。"
    )


def render_template(template: str, values: dict[str, str]) -> str:
    """Fill the first occurrence of each ``{{name}}`` placeholder.

    Substituted values are never rescanned, and placeholders the template
    does not contain are simply skipped.
    """
    used: set[str] = set()

    def substitute(match: re.Match) -> str:
        key = match.group(1)
        if key in used:
            return match.group(0)
        used.add(key)
        return values[key]

    return _PLACEHOLDER.sub(substitute, template)


def build_prompt(
    conversation: Conversation,
    active_personas: Sequence[Persona],
    base_template: str,
    next_speaker: Optional[str] = None,
) -> str:
    history = format_history(conversation.history(), conversation.context_window)
    return render_template(
        base_template or DEFAULT_SYSTEM_PROMPT,
        {
            "personaProfiles": format_persona_profiles(active_personas),
            "direction": conversation.direction,
            "history": history,
            "instruction": build_instruction(next_speaker),
        },
    )

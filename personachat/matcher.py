"""Resolve persona names out of free text.

Two places need this: ``@name`` mentions in what the user typed, and the
``Name: ...`` prefix the model is asked to put in front of every reply.
Both resolve against the active roster only and never invent a speaker.
"""

import re
from typing import NamedTuple, Optional, Sequence

from .constants import CONVERSATION_DIRECTIONS
from .persona import Persona

# \w already covers CJK ideographs; the explicit range keeps the intent visible
_MENTION_PATTERN = re.compile(r"@([\w一-龥]+)")

# Priority order matters: the first pattern whose name resolves wins.
# The plain form refuses '*' in the name so bold variants reach their own pattern.
_ATTRIBUTION_PATTERNS = [
    re.compile(r"^([^:\n*]+?):\s*(.*)$", re.DOTALL),          # Name: content
    re.compile(r"^\*\*([^*:\n]+?)\*\*:\s*(.*)$", re.DOTALL),  # **Name**: content
    re.compile(r"^\*\*([^*:\n]+?):\*\*\s*(.*)$", re.DOTALL),  # **Name:**content
    re.compile(r"^([^：\n]+?)：\s*(.*)$", re.DOTALL),          # Name：content
]

_WHITESPACE = re.compile(r"\s")


class Attribution(NamedTuple):
    persona: Optional[Persona]
    cleaned_text: str

    @property
    def persona_name(self) -> Optional[str]:
        return self.persona.name if self.persona else None


def _squash(name: str) -> str:
    return _WHITESPACE.sub("", name)


def resolve_persona(name: str, roster: Sequence[Persona]) -> Optional[Persona]:
    """Exact name match first, then a whitespace-insensitive one."""
    for persona in roster:
        if persona.name == name:
            return persona
    squashed = _squash(name)
    if not squashed:
        return None
    for persona in roster:
        if _squash(persona.name) == squashed:
            return persona
    return None


def extract_mentions(text: Optional[str], roster: Sequence[Persona]) -> list[Persona]:
    """Personas mentioned as ``@name``, left to right, each at most once.

    Mentions that do not resolve to a roster persona are dropped.
    """
    if not text or not text.strip():
        return []

    mentioned: list[Persona] = []
    seen: set[str] = set()
    for match in _MENTION_PATTERN.finditer(text):
        persona = resolve_persona(match.group(1), roster)
        if persona is not None and persona.name not in seen:
            mentioned.append(persona)
            seen.add(persona.name)
    return mentioned


def parse_attribution(text: Optional[str], roster: Sequence[Persona]) -> Attribution:
    """Split a ``Name: content`` style prefix off generated text.

    Returns ``Attribution(None, text.strip())`` when no prefix names a roster
    persona, so unresolved replies stay unattributed rather than guessed.
    """
    if not text or not text.strip():
        return Attribution(None, text or "")

    trimmed = text.strip()
    for pattern in _ATTRIBUTION_PATTERNS:
        match = pattern.match(trimmed)
        if not match:
            continue
        candidate = match.group(1).strip().replace("**", "")
        persona = resolve_persona(candidate, roster)
        if persona is not None:
            return Attribution(persona, match.group(2).strip())

    return Attribution(None, trimmed)


def _direction_pattern(directions: Sequence[str]) -> re.Pattern:
    # Longest first so a direction that prefixes another cannot shadow it
    names = sorted(directions, key=len, reverse=True)
    return re.compile("#(" + "|".join(re.escape(n) for n in names) + ")")


_DIRECTION_PATTERN = _direction_pattern(CONVERSATION_DIRECTIONS)


def extract_direction(text: Optional[str]) -> tuple[Optional[str], str]:
    """Pull ``#direction`` tags out of user input.

    Returns the first recognised direction (or None) and the text with every
    recognised tag removed. Unknown ``#words`` are left alone.
    """
    if not text:
        return None, text or ""
    match = _DIRECTION_PATTERN.search(text)
    if not match:
        return None, text
    cleaned = _DIRECTION_PATTERN.sub("", text)
    return match.group(1), re.sub(r"[ \t]{2,}", " ", cleaned).strip()

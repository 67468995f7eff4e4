import logging
import uuid
from typing import Iterable, Optional

from pydantic import BaseModel, Field, ValidationError

from .constants import DEFAULT_AVATAR, DEFAULT_PERSONAS
from .errors import PersonaValidationError
from .storage import JsonFileStore

logger = logging.getLogger(__name__)

PERSONAS_KEY = "personas"


class AvatarConfig(BaseModel):
    icon: str = DEFAULT_AVATAR["icon"]
    bg_color: str = DEFAULT_AVATAR["bg_color"]
    color: str = DEFAULT_AVATAR["color"]


class Persona(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    name: str
    avatar: AvatarConfig = AvatarConfig()
    prompt: str = ""  # free-text profile injected into the system prompt


class PersonaRoster:
    """The user's persona list, persisted under a single store key.

    Names are unique within the roster; the engine resolves mentions and
    reply attribution against them.
    """

    def __init__(self, store: JsonFileStore) -> None:
        self._store = store
        self._personas: list[Persona] = self._load()

    def _load(self) -> list[Persona]:
        data = self._store.get(PERSONAS_KEY)
        if data is None:
            return [Persona(**p) for p in DEFAULT_PERSONAS]
        try:
            return [Persona(**p) for p in data]
        except (TypeError, ValidationError):
            logger.warning("Failed to load personas, using defaults")
            return [Persona(**p) for p in DEFAULT_PERSONAS]

    def _save(self) -> None:
        self._store.set(PERSONAS_KEY, [p.model_dump() for p in self._personas])

    def all(self) -> list[Persona]:
        return list(self._personas)

    def ids(self) -> list[str]:
        return [p.id for p in self._personas]

    def get(self, persona_id: str) -> Optional[Persona]:
        for p in self._personas:
            if p.id == persona_id:
                return p
        return None

    def find_by_name(self, name: str) -> Optional[Persona]:
        for p in self._personas:
            if p.name == name:
                return p
        return None

    def active(self, active_ids: Iterable[str]) -> list[Persona]:
        """Roster ∩ *active_ids*, in roster order."""
        wanted = set(active_ids)
        return [p for p in self._personas if p.id in wanted]

    def _check_name(self, name: str, exclude_id: str = "") -> str:
        name = name.strip()
        if not name:
            raise PersonaValidationError("人设名称不能为空。")
        for p in self._personas:
            if p.name == name and p.id != exclude_id:
                raise PersonaValidationError(f"人设名称“{name}”已存在。")
        return name

    def add(self, name: str, prompt: str = "", avatar: Optional[dict] = None) -> Persona:
        persona = Persona(
            name=self._check_name(name),
            prompt=prompt,
            avatar=AvatarConfig(**{**DEFAULT_AVATAR, **(avatar or {})}),
        )
        self._personas.append(persona)
        self._save()
        logger.info("Added persona %s", persona.name)
        return persona

    def update(self, persona: Persona) -> Optional[Persona]:
        for i, p in enumerate(self._personas):
            if p.id == persona.id:
                updated = persona.model_copy(
                    update={"name": self._check_name(persona.name, exclude_id=p.id)}
                )
                self._personas[i] = updated
                self._save()
                return updated
        return None

    def delete(self, persona_id: str) -> bool:
        before = len(self._personas)
        self._personas = [p for p in self._personas if p.id != persona_id]
        if len(self._personas) < before:
            self._save()
            return True
        return False

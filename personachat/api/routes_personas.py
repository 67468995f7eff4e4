from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..errors import PersonaValidationError
from ..persona import AvatarConfig, Persona
from ..services import get_services

router = APIRouter(prefix="/api/personas", tags=["personas"])


class CreatePersonaRequest(BaseModel):
    name: str
    prompt: str = ""
    avatar: Optional[AvatarConfig] = None


class UpdatePersonaRequest(BaseModel):
    name: Optional[str] = None
    prompt: Optional[str] = None
    avatar: Optional[AvatarConfig] = None


@router.get("")
async def list_personas():
    return {"personas": [p.model_dump() for p in get_services().roster.all()]}


@router.post("")
async def create_persona(req: CreatePersonaRequest):
    try:
        persona = get_services().roster.add(
            req.name, req.prompt, req.avatar.model_dump() if req.avatar else None
        )
    except PersonaValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"persona": persona.model_dump()}


@router.put("/{persona_id}")
async def update_persona(persona_id: str, req: UpdatePersonaRequest):
    roster = get_services().roster
    current = roster.get(persona_id)
    if current is None:
        raise HTTPException(status_code=404, detail="Persona not found")
    changes = req.model_dump(exclude_none=True)
    if req.avatar is not None:
        changes["avatar"] = req.avatar
    try:
        persona = roster.update(current.model_copy(update=changes))
    except PersonaValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"persona": persona.model_dump()}


@router.delete("/{persona_id}")
async def delete_persona(persona_id: str):
    if get_services().roster.delete(persona_id):
        return {"status": "deleted"}
    raise HTTPException(status_code=404, detail="Persona not found")

from fastapi import APIRouter

from ..config import AppConfig, get_config, update_config
from ..constants import CONVERSATION_DIRECTIONS
from ..llm.registry import list_providers, reset_providers

router = APIRouter(prefix="/api/settings", tags=["settings"])


@router.get("")
async def get_settings():
    config = get_config()
    return config.model_dump()


@router.put("")
async def update_settings(config: AppConfig):
    updated = update_config(config)
    reset_providers()  # Force re-init of LLM providers with new keys
    return updated.model_dump()


@router.get("/providers")
async def get_providers():
    return {"providers": list_providers()}


@router.get("/directions")
async def get_directions():
    return {"directions": CONVERSATION_DIRECTIONS}

from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response
from pydantic import BaseModel

from ..conversation.models import Conversation, ConversationSettings
from ..errors import ConversationBusyError, ConversationNotFoundError, InvalidSettingsError
from ..services import get_services

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


class RenameConversationRequest(BaseModel):
    title: str


class PinConversationRequest(BaseModel):
    pinned: bool


class ImportRequest(BaseModel):
    data: str


def _summary(conv: Conversation, active_id: Optional[str]) -> dict:
    return {
        "id": conv.id,
        "title": conv.title,
        "created_at": conv.created_at,
        "pinned": conv.pinned,
        "message_count": len(conv.history()),
        "active": conv.id == active_id,
    }


def _get_or_404(conv_id: str) -> Conversation:
    try:
        return get_services().manager.get(conv_id)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.get("")
async def list_conversations():
    manager = get_services().manager
    return {
        "conversations": [_summary(c, manager.active_id) for c in manager.list_conversations()],
        "active_conversation_id": manager.active_id,
    }


@router.post("")
async def create_conversation():
    conv = get_services().manager.create_conversation()
    return {"conversation": conv.model_dump(mode="json")}


@router.get("/stats")
async def storage_stats():
    return get_services().manager.storage_info()


@router.get("/export")
async def export_conversations():
    return Response(
        content=get_services().manager.export_data(),
        media_type="application/json",
        headers={"Content-Disposition": 'attachment; filename="conversations.json"'},
    )


@router.post("/import")
async def import_conversations(req: ImportRequest):
    try:
        ok = get_services().manager.import_data(req.data)
    except ConversationBusyError as e:
        raise HTTPException(status_code=409, detail=e.message)
    if not ok:
        raise HTTPException(status_code=400, detail="Invalid import data")
    return {"status": "imported"}


@router.delete("")
async def clear_conversations():
    manager = get_services().manager
    conv = manager.clear_all()
    return {"status": "cleared", "active_conversation_id": conv.id}


@router.get("/{conv_id}")
async def get_conversation(conv_id: str):
    return {"conversation": _get_or_404(conv_id).model_dump(mode="json")}


@router.put("/{conv_id}")
async def rename_conversation(conv_id: str, req: RenameConversationRequest):
    _get_or_404(conv_id)
    conv = get_services().manager.update_title(conv_id, req.title)
    return {"conversation": _summary(conv, get_services().manager.active_id)}


@router.put("/{conv_id}/pin")
async def pin_conversation(conv_id: str, req: PinConversationRequest):
    _get_or_404(conv_id)
    conv = get_services().manager.set_pinned(conv_id, req.pinned)
    return {"conversation": _summary(conv, get_services().manager.active_id)}


@router.put("/{conv_id}/settings")
async def update_conversation_settings(conv_id: str, settings: ConversationSettings):
    _get_or_404(conv_id)
    try:
        conv = get_services().manager.update_settings(conv_id, settings)
    except InvalidSettingsError as e:
        raise HTTPException(status_code=400, detail=e.message)
    return {"conversation": conv.model_dump(mode="json")}


@router.post("/{conv_id}/activate")
async def activate_conversation(conv_id: str):
    _get_or_404(conv_id)
    conv = get_services().manager.set_active(conv_id)
    return {"conversation": conv.model_dump(mode="json")}


@router.delete("/{conv_id}")
async def delete_conversation(conv_id: str):
    _get_or_404(conv_id)
    manager = get_services().manager
    manager.delete_conversation(conv_id)
    return {"status": "deleted", "active_conversation_id": manager.active_id}

import asyncio
import json
import logging
from typing import Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from ..errors import ConversationBusyError, ConversationNotFoundError
from ..services import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


class SendRequest(BaseModel):
    conversation_id: Optional[str] = None
    message: Optional[str] = None
    next_speaker: Optional[str] = None  # persona name or "AI_CHOICE"


def _resolve_conversation_id(conversation_id: Optional[str]) -> str:
    manager = get_services().manager
    conv_id = conversation_id or manager.active_id
    if conv_id is None or manager.find(conv_id) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    if manager.is_loading(conv_id):
        raise HTTPException(status_code=409, detail=ConversationBusyError.default_message)
    return conv_id


def _sse(payload: dict) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


@router.post("/send")
async def send_message(req: SendRequest):
    conv_id = _resolve_conversation_id(req.conversation_id)
    try:
        conversation = await get_services().engine.send_message(conv_id, req.message, req.next_speaker)
    except ConversationNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ConversationBusyError as e:
        raise HTTPException(status_code=409, detail=e.message)
    return {"conversation": conversation.model_dump(mode="json")}


@router.post("/send/stream")
async def send_message_stream(req: SendRequest):
    conv_id = _resolve_conversation_id(req.conversation_id)
    services = get_services()
    queue = services.manager.subscribe(conv_id)
    turn = services.engine.background.spawn(
        services.engine.send_message(conv_id, req.message, req.next_speaker),
        name=f"turn-{conv_id}",
    )

    async def event_stream():
        try:
            while not (turn.done() and queue.empty()):
                if not queue.empty():
                    yield _sse(queue.get_nowait())
                    continue
                getter = asyncio.ensure_future(queue.get())
                done, _ = await asyncio.wait({getter, turn}, return_when=asyncio.FIRST_COMPLETED)
                if getter in done:
                    yield _sse(getter.result())
                else:
                    getter.cancel()
            try:
                conversation = turn.result()
            except (ConversationBusyError, ConversationNotFoundError) as e:
                yield _sse({"type": "error", "content": e.message})
                return
            yield _sse({"type": "done", "conversation": conversation.model_dump(mode="json")})
        except Exception as e:
            logger.error("Chat stream for %s failed: %s", conv_id, e)
            yield _sse({"type": "error", "content": str(e)})
        finally:
            services.manager.unsubscribe(conv_id, queue)
            # A disconnected client does not cancel the turn

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/status/{conv_id}")
async def chat_status(conv_id: str):
    manager = get_services().manager
    if manager.find(conv_id) is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return {"conversation_id": conv_id, "loading": manager.is_loading(conv_id)}

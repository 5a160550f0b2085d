"""
Chat endpoints: send a message, stream a reply over SSE, browse and delete chats.

Anonymous callers share the "guest" chat file; signed-in users get their own.
"""

import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse
from loguru import logger

from middleware.rate_limit import chat_limit, limiter
from models.entities import DEFAULT_CHAT_TITLE, PROVISIONAL_CHAT_TITLE
from models.schemas import BatchDeleteRequest, ChatSendRequest, NewChatRequest
from services import chat_service
from services.ai_service import generate_chat_title, generate_reply, stream_reply
from services.auth_service import get_optional_user

router = APIRouter(prefix="/api/chat", tags=["chat"])


def _owner(user: Optional[dict]) -> str:
    return user["id"] if user else chat_service.GUEST_OWNER


def _validated_message(req: ChatSendRequest) -> str:
    message = (req.message or "").strip()
    if not message:
        raise HTTPException(status_code=400, detail="消息不能为空")
    return message


def _start_turn(owner: str, req: ChatSendRequest, message: str):
    """Resolve (or open) the chat, store the user message, return (chat_id, user record, thread)."""
    chat = chat_service.get_chat(owner, req.chat_id) if req.chat_id else None
    if chat is None:
        chat = chat_service.create_chat(owner, PROVISIONAL_CHAT_TITLE)
    chat_id = chat["id"]

    user_message = {"role": "user", "content": message}
    if req.files:
        user_message["files"] = [f.model_dump(exclude_none=True) for f in req.files]
    record = chat_service.add_message(owner, chat_id, user_message)

    thread = chat_service.thread_for_model(chat_service.get_chat(owner, chat_id))
    return chat_id, record, thread


async def _refresh_title(owner: str, chat_id: str) -> None:
    chat = chat_service.get_chat(owner, chat_id)
    if chat is None or not chat_service.needs_title(chat):
        return
    title = await generate_chat_title(chat_service.thread_for_model(chat))
    chat_service.update_chat_title(owner, chat_id, title)


@router.post("/send")
@limiter.limit(chat_limit)
async def send_message(request: Request, req: ChatSendRequest, user: Optional[dict] = Depends(get_optional_user)):
    message = _validated_message(req)
    owner = _owner(user)
    logger.info(f"Chat message [{owner}] thinking={req.use_thinking} search={req.use_search}: '{message[:50]}'")

    chat_id, user_record, thread = _start_turn(owner, req, message)
    files = [f.model_dump() for f in req.files] or None

    reply = await generate_reply(
        thread,
        use_thinking=req.use_thinking,
        use_search=req.use_search,
        files=files,
    )
    chat_service.add_message(owner, chat_id, reply)
    await _refresh_title(owner, chat_id)

    return {
        "success": True,
        "data": {
            "chat_id": chat_id,
            "user_message": user_record,
            "ai_reply": reply,
        },
    }


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


@router.post("/stream")
@limiter.limit(chat_limit)
async def stream_message(request: Request, req: ChatSendRequest, user: Optional[dict] = Depends(get_optional_user)):
    message = _validated_message(req)
    owner = _owner(user)
    logger.info(f"Streaming chat message [{owner}]: '{message[:50]}'")

    chat_id, _, thread = _start_turn(owner, req, message)
    files = [f.model_dump() for f in req.files] or None

    async def events():
        yield _sse({"type": "chat_id", "chat_id": chat_id})
        try:
            async for chunk in stream_reply(
                thread,
                use_thinking=req.use_thinking,
                use_search=req.use_search,
                files=files,
            ):
                if chunk["type"] == "reply":
                    chat_service.add_message(owner, chat_id, chunk["reply"])
                    await _refresh_title(owner, chat_id)
                else:
                    yield _sse(chunk)
            yield _sse({"type": "end", "chat_id": chat_id})
        except Exception:
            # response already started; report the failure in-band
            logger.exception(f"Streaming chat failed for {chat_id}")
            yield _sse({"type": "error", "error": "聊天失败"})

    return StreamingResponse(
        events(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/history")
async def chat_history(user: Optional[dict] = Depends(get_optional_user)):
    return {"success": True, "data": chat_service.get_chat_history(_owner(user))}


@router.post("/new")
async def new_chat(req: Optional[NewChatRequest] = None, user: Optional[dict] = Depends(get_optional_user)):
    title = (req.title if req else None) or DEFAULT_CHAT_TITLE
    chat = chat_service.create_chat(_owner(user), title)
    return {"success": True, "data": chat}


@router.delete("/batch/delete")
async def delete_chats(req: BatchDeleteRequest, user: Optional[dict] = Depends(get_optional_user)):
    if not req.chat_ids:
        raise HTTPException(status_code=400, detail="请提供要删除的聊天ID列表")
    deleted = chat_service.delete_chats(_owner(user), req.chat_ids)
    return {
        "success": True,
        "message": f"成功删除 {deleted} 个聊天",
        "deleted_count": deleted,
    }


@router.get("/{chat_id}")
async def get_chat(chat_id: str, user: Optional[dict] = Depends(get_optional_user)):
    chat = chat_service.get_chat(_owner(user), chat_id)
    if chat is None:
        raise HTTPException(status_code=404, detail="聊天不存在")
    return {"success": True, "data": chat}


@router.delete("/{chat_id}")
async def delete_chat(chat_id: str, user: Optional[dict] = Depends(get_optional_user)):
    if not chat_service.delete_chat(_owner(user), chat_id):
        raise HTTPException(status_code=404, detail="聊天不存在")
    return {"success": True, "message": "聊天删除成功"}

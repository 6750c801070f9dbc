"""REST API for chat turns: buffered, streamed and regenerated replies."""

from __future__ import annotations

from typing import Any, Literal

from fastapi import APIRouter, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from mychat.chat import ChatService
from mychat.types import dump

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "X-Accel-Buffering": "no",
}


class SendMessageRequest(BaseModel):
    content: str | None = None
    role: Literal["user", "system"] = "user"


def create_chat_router(chat: ChatService) -> APIRouter:
    router = APIRouter(prefix="/api/chat", tags=["chat"])

    @router.post("/{session_id}/messages")
    async def send_message(session_id: str, payload: SendMessageRequest) -> dict[str, Any]:
        user_message, ai_message = await chat.send_message(session_id, payload.content, payload.role)
        return {
            "userMessage": dump(user_message),
            "aiMessage": dump(ai_message),
            "sessionId": session_id,
        }

    @router.post("/{session_id}/stream")
    async def stream_message(session_id: str, payload: SendMessageRequest) -> StreamingResponse:
        turn = await chat.prepare_turn(session_id, payload.content, payload.role)
        return StreamingResponse(
            chat.stream_reply(turn),
            media_type="text/plain; charset=utf-8",
            headers=STREAM_HEADERS,
        )

    @router.get("/{session_id}/history")
    async def history(
        session_id: str,
        limit: int = Query(50, ge=0),
        offset: int = Query(0, ge=0),
    ) -> dict[str, Any]:
        messages, total = await chat.history(session_id, limit, offset)
        return {
            "sessionId": session_id,
            "messages": [dump(m) for m in messages],
            "total": total,
            "limit": limit,
            "offset": offset,
        }

    @router.post("/{session_id}/regenerate")
    async def regenerate(session_id: str) -> dict[str, Any]:
        message = await chat.regenerate(session_id)
        return {"message": dump(message), "sessionId": session_id}

    return router

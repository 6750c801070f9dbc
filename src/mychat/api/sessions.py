"""REST API for session management."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel

from mychat.chat import session_not_found
from mychat.errors import AppError
from mychat.storage.sessions import SessionStore
from mychat.storage.settings import SettingsStore
from mychat.titles import DEFAULT_TITLE, normalize_title, validate_title
from mychat.types import dump

logger = logging.getLogger(__name__)


class CreateSessionRequest(BaseModel):
    title: str | None = None
    model: str | None = None


class UpdateSessionRequest(BaseModel):
    title: str | None = None
    model: str | None = None


class UpdateTitleRequest(BaseModel):
    title: str | None = None


def _checked_title(title: str) -> str:
    validation = validate_title(title)
    if not validation.valid:
        raise AppError(validation.message or "Invalid title", 400, "VALIDATION_ERROR", {"field": "title"})
    return normalize_title(title)


def create_sessions_router(sessions: SessionStore, settings: SettingsStore) -> APIRouter:
    router = APIRouter(prefix="/api/sessions", tags=["sessions"])

    @router.get("")
    async def list_sessions() -> dict[str, Any]:
        items = await sessions.list_all()
        items.sort(key=lambda s: s.updated_at, reverse=True)
        return {"sessions": [dump(s) for s in items], "total": len(items)}

    @router.post("", status_code=201)
    async def create_session(payload: CreateSessionRequest | None = None) -> dict[str, Any]:
        payload = payload or CreateSessionRequest()
        model = payload.model or (await settings.get()).default_model
        if payload.title and payload.title.strip():
            title = _checked_title(payload.title)
        else:
            title = f"{DEFAULT_TITLE} {datetime.now().strftime('%Y-%m-%d')}"
        session = await sessions.create(title=title, model=model)
        return dump(session)

    @router.get("/{session_id}")
    async def get_session(session_id: str) -> dict[str, Any]:
        session = await sessions.get(session_id)
        if session is None:
            raise session_not_found(session_id)
        return dump(session)

    @router.put("/{session_id}")
    async def update_session(session_id: str, payload: UpdateSessionRequest) -> dict[str, Any]:
        updates: dict[str, Any] = {}
        if payload.title is not None:
            updates["title"] = _checked_title(payload.title)
        if payload.model is not None:
            if not payload.model.strip():
                raise AppError("Model cannot be empty", 400, "VALIDATION_ERROR", {"field": "model"})
            updates["model"] = payload.model.strip()
        if not updates:
            raise AppError("No updates provided", 400, "VALIDATION_ERROR")

        session = await sessions.update(session_id, updates)
        if session is None:
            raise session_not_found(session_id)
        return dump(session)

    @router.delete("/{session_id}")
    async def delete_session(session_id: str) -> dict[str, Any]:
        if not await sessions.delete(session_id):
            raise session_not_found(session_id)
        return {"id": session_id, "deleted": True}

    @router.get("/{session_id}/messages")
    async def list_messages(session_id: str) -> dict[str, Any]:
        if await sessions.get(session_id) is None:
            raise session_not_found(session_id)
        messages = await sessions.list_messages(session_id)
        return {
            "sessionId": session_id,
            "messages": [dump(m) for m in messages],
            "total": len(messages),
        }

    @router.patch("/{session_id}/title")
    async def update_title(session_id: str, payload: UpdateTitleRequest) -> dict[str, Any]:
        if payload.title is None:
            raise AppError("Title is required and must be a string", 400, "VALIDATION_ERROR", {"field": "title"})
        title = _checked_title(payload.title)
        session = await sessions.update(session_id, {"title": title})
        if session is None:
            raise session_not_found(session_id)
        logger.info("Updated title for session %s: %r", session_id, title)
        return dump(session)

    return router

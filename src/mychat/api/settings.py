"""REST API for application settings and the OpenAI-compatible API key."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter
from pydantic import BaseModel, ConfigDict, Field, field_validator

from mychat.apikey import generate_api_key, mask_api_key
from mychat.errors import AppError
from mychat.ollama import OllamaClient
from mychat.storage.settings import SettingsStore
from mychat.types import Settings, Theme, dump

logger = logging.getLogger(__name__)


class UpdateSettingsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    default_model: str | None = Field(default=None, alias="defaultModel", min_length=1)
    temperature: float | None = Field(default=None, ge=0, le=1)
    max_tokens: int | None = Field(default=None, alias="maxTokens", ge=1, le=8192)
    ollama_endpoint: str | None = Field(default=None, alias="ollamaEndpoint")
    theme: Theme | None = None

    @field_validator("ollama_endpoint")
    @classmethod
    def _check_endpoint(cls, value: str | None) -> str | None:
        if value is None:
            return value
        value = value.strip()
        if not value.startswith(("http://", "https://")) or len(value) <= len("https://"):
            raise ValueError("Ollama endpoint must be a valid http(s) URL")
        return value


def public_settings(settings: Settings) -> dict[str, Any]:
    """Settings as returned to clients, with the API key masked."""
    data = dump(settings)
    if settings.api_key:
        data["apiKey"] = mask_api_key(settings.api_key)
    return data


def create_settings_router(settings: SettingsStore, ollama: OllamaClient) -> APIRouter:
    router = APIRouter(prefix="/api/settings", tags=["settings"])

    async def issue_api_key() -> dict[str, Any]:
        api_key = generate_api_key()
        created_at = datetime.now(timezone.utc).isoformat()
        updated = await settings.update({"api_key": api_key, "api_key_created_at": created_at})
        return {
            "apiKey": api_key,
            "maskedApiKey": mask_api_key(api_key),
            "createdAt": created_at,
            "settings": public_settings(updated),
        }

    @router.get("")
    async def get_settings() -> dict[str, Any]:
        return public_settings(await settings.get())

    @router.patch("")
    async def update_settings(payload: UpdateSettingsRequest) -> dict[str, Any]:
        updates = payload.model_dump(exclude_unset=True, exclude_none=True)
        if not updates:
            raise AppError("No updates provided", 400, "VALIDATION_ERROR")
        updated = await settings.update(updates)
        if "ollama_endpoint" in updates:
            ollama.set_base_url(updated.ollama_endpoint)
        return public_settings(updated)

    @router.post("/api-key/generate")
    async def generate_key() -> dict[str, Any]:
        result = await issue_api_key()
        logger.info("New API key generated")
        return result

    @router.post("/api-key/refresh")
    async def refresh_key() -> dict[str, Any]:
        if not (await settings.get()).api_key:
            raise AppError("No existing API key to refresh", 400, "NO_API_KEY")
        result = await issue_api_key()
        logger.info("API key refreshed")
        return result

    @router.delete("/api-key")
    async def revoke_key() -> dict[str, Any]:
        updated = await settings.update({"api_key": None, "api_key_created_at": None})
        logger.info("API key revoked")
        return {"message": "API key revoked successfully", "settings": public_settings(updated)}

    return router

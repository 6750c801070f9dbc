"""Core types shared by storage, the backend client and the HTTP layer.

All types use Pydantic models. Attribute names are snake_case with camelCase
aliases, which is the shape written to disk and returned over HTTP.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["system", "user", "assistant"]

Theme = Literal["light", "dark", "auto"]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChatMessage(BaseModel):
    """A single conversation turn as sent to the model backend."""

    model_config = ConfigDict(populate_by_name=True)

    role: Role
    content: str


class Message(ChatMessage):
    """A persisted message. Immutable once stored."""

    id: str
    session_id: str = Field(alias="sessionId")
    timestamp: datetime = Field(default_factory=utc_now)
    tokens: int | None = Field(default=None, ge=0)


class Session(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    model: str
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    message_count: int = Field(default=0, ge=0, alias="messageCount")


class Settings(BaseModel):
    """The single process-wide settings record."""

    model_config = ConfigDict(populate_by_name=True)

    default_model: str = Field(alias="defaultModel")
    temperature: float
    max_tokens: int = Field(alias="maxTokens")
    ollama_endpoint: str = Field(alias="ollamaEndpoint")
    theme: Theme = "auto"
    api_key: str | None = Field(default=None, alias="apiKey")
    api_key_created_at: str | None = Field(default=None, alias="apiKeyCreatedAt")


class ModelInfo(BaseModel):
    """A model installed in the backend runtime."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    size: int = 0
    modified: datetime | None = None
    available: bool = True


def dump(model: BaseModel) -> dict[str, Any]:
    """Serialize a model to its JSON wire shape (camelCase, no null optionals)."""
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)

"""REST API for model information from the Ollama backend."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter

from mychat.errors import AppError
from mychat.ollama import OllamaClient, OllamaError
from mychat.types import dump

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def create_models_router(ollama: OllamaClient) -> APIRouter:
    router = APIRouter(prefix="/api/models", tags=["models"])

    @router.get("")
    async def list_models() -> dict[str, Any]:
        try:
            models = await ollama.list_models()
        except OllamaError as e:
            raise AppError(
                "Failed to fetch models from Ollama service",
                503,
                "SERVICE_UNAVAILABLE",
                {"originalError": str(e)},
            ) from e
        return {
            "models": [dump(m) for m in models],
            "total": len(models),
            "service": ollama.service_info(),
        }

    @router.get("/status")
    async def status() -> dict[str, Any]:
        service = ollama.service_info()
        if not await ollama.check_health():
            raise AppError(
                "Ollama service is not responding",
                503,
                "SERVICE_UNAVAILABLE",
                {"status": "unhealthy", "service": service, "timestamp": _now()},
            )
        try:
            models = await ollama.list_models()
        except OllamaError as e:
            raise AppError(
                "Failed to check service status",
                503,
                "SERVICE_UNAVAILABLE",
                {"status": "error", "service": service, "originalError": str(e)},
            ) from e
        return {
            "status": "healthy",
            "service": service,
            "modelCount": len(models),
            "timestamp": _now(),
        }

    @router.get("/{model_name:path}/availability")
    async def availability(model_name: str) -> dict[str, Any]:
        return {
            "model": model_name,
            "available": await ollama.is_model_available(model_name),
            "timestamp": _now(),
        }

    @router.get("/{model_name:path}")
    async def get_model(model_name: str) -> dict[str, Any]:
        try:
            models = await ollama.list_models()
        except OllamaError as e:
            logger.error("Failed to get model info for %s: %s", model_name, e)
            raise AppError(
                f'Failed to get information for model "{model_name}"',
                503,
                "SERVICE_UNAVAILABLE",
                {"model": model_name, "originalError": str(e)},
            ) from e
        for model in models:
            if model.id == model_name:
                return dump(model)
        raise AppError(f'Model "{model_name}" not found', 404, "MODEL_NOT_FOUND", {"model": model_name})

    return router

"""OpenAI-compatible API on top of the Ollama backend.

Requests are stateless: only the messages in the request are used as context
and nothing is written to storage.
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ValidationError

from mychat.auth import optional_api_key_auth
from mychat.errors import OpenAIError
from mychat.ollama import ChatOptions, OllamaClient, OllamaError
from mychat.storage.settings import SettingsStore
from mychat.types import ChatMessage, ModelInfo

logger = logging.getLogger(__name__)

OWNED_BY = "ollama"


class ChatCompletionRequest(BaseModel):
    model: str | None = None
    messages: list[dict[str, Any]] | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    stream: bool = False


def _content_text(content: Any) -> str:
    """Flatten message content that may be a string or a list of text parts."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return " ".join(
            part.get("text", "")
            for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    return ""


def convert_messages(raw: list[dict[str, Any]]) -> list[ChatMessage]:
    messages = []
    for index, item in enumerate(raw):
        try:
            messages.append(ChatMessage(role=item.get("role"), content=_content_text(item.get("content"))))
        except (ValidationError, AttributeError) as e:
            raise OpenAIError(
                f"Invalid message at index {index}: role must be one of system, user, assistant",
                param=f"messages[{index}]",
            ) from e
    return messages


def _model_object(model: ModelInfo) -> dict[str, Any]:
    created = int(model.modified.timestamp()) if model.modified else 0
    return {"id": model.id, "object": "model", "created": created, "owned_by": OWNED_BY}


def _sse(data: dict[str, Any] | str) -> str:
    payload = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    return f"data: {payload}\n\n"


def create_openai_router(ollama: OllamaClient, settings: SettingsStore) -> APIRouter:
    router = APIRouter(
        prefix="/v1",
        tags=["openai"],
        dependencies=[Depends(optional_api_key_auth(settings))],
    )

    async def stream_chunks(
        model: str,
        messages: list[ChatMessage],
        options: ChatOptions,
    ) -> AsyncIterator[str]:
        chat_id = f"chatcmpl-{uuid.uuid4().hex}"
        created = int(time.time())

        def chunk(delta: dict[str, Any], finish_reason: str | None = None) -> str:
            return _sse({
                "id": chat_id,
                "object": "chat.completion.chunk",
                "created": created,
                "model": model,
                "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
            })

        yield chunk({"role": "assistant"})
        try:
            async for text in ollama.generate_stream(model, messages, options):
                yield chunk({"content": text})
        except Exception as e:
            logger.error("OpenAI API streaming error: %s", e)
            yield _sse(OpenAIError(str(e) or "Internal server error", 500, "server_error").to_dict())
            return

        yield chunk({}, "stop")
        yield _sse("[DONE]")
        logger.info("OpenAI API streaming completion for model: %s", model)

    @router.post("/chat/completions", response_model=None)
    async def chat_completions(request: ChatCompletionRequest):
        if not request.model:
            raise OpenAIError("Model is required", param="model", code="missing_required_parameter")
        if not request.messages:
            raise OpenAIError("Messages array is required and must not be empty", param="messages")

        messages = convert_messages(request.messages)

        if not await ollama.is_model_available(request.model):
            raise OpenAIError(
                f'The model "{request.model}" does not exist',
                status=404,
                param="model",
                code="model_not_found",
            )

        options = ChatOptions(
            temperature=request.temperature,
            max_tokens=request.max_tokens,
            top_p=request.top_p,
        )

        if request.stream:
            return StreamingResponse(
                stream_chunks(request.model, messages, options),
                media_type="text/event-stream",
                headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
            )

        try:
            reply = await ollama.generate_completion(request.model, messages, options)
        except OllamaError as e:
            logger.error("OpenAI API error: %s", e)
            raise OpenAIError(str(e), status=500, error_type="server_error", code="internal_error") from e

        prompt_tokens = ollama.estimate_tokens(" ".join(m.content for m in messages))
        completion_tokens = ollama.estimate_tokens(reply)
        logger.info("OpenAI API completion for model: %s", request.model)
        return {
            "id": f"chatcmpl-{uuid.uuid4().hex}",
            "object": "chat.completion",
            "created": int(time.time()),
            "model": request.model,
            "choices": [{
                "index": 0,
                "message": {"role": "assistant", "content": reply},
                "finish_reason": "stop",
            }],
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        }

    async def fetch_models() -> list[ModelInfo]:
        try:
            return await ollama.list_models()
        except OllamaError as e:
            logger.error("OpenAI API models error: %s", e)
            raise OpenAIError(
                "Failed to fetch models",
                status=503,
                error_type="server_error",
                code="service_unavailable",
            ) from e

    @router.get("/models")
    async def list_models() -> dict[str, Any]:
        models = await fetch_models()
        return {"object": "list", "data": [_model_object(m) for m in models]}

    @router.get("/models/{model_id:path}")
    async def get_model(model_id: str) -> dict[str, Any]:
        for model in await fetch_models():
            if model.id == model_id:
                return _model_object(model)
        raise OpenAIError(
            f'The model "{model_id}" does not exist',
            status=404,
            param="model",
            code="model_not_found",
        )

    return router

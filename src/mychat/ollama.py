"""Client for the local Ollama runtime.

Uses raw HTTP via httpx (no SDK). Buffered completions go through
``POST /api/chat`` with ``stream: false``; streaming completions read the
newline-delimited JSON body of the same endpoint with ``stream: true``.

The client is stateless apart from its base URL. Every call opens its own
``httpx.AsyncClient``, so changing the URL affects later calls but never one
that is already in flight.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx
from pydantic import ValidationError

from mychat.types import ChatMessage, ModelInfo

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:11434"
DEFAULT_TIMEOUT = 30.0

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


class OllamaError(Exception):
    """Base class for failures talking to the model backend."""


class OllamaConnectionError(OllamaError):
    """The backend is not reachable."""


class ModelNotFoundError(OllamaError):
    """The backend does not have the requested model."""


class InvalidRequestError(OllamaError):
    """The backend rejected the request payload."""


class EmptyResponseError(OllamaError):
    """The backend answered without any message content."""


@dataclass
class ChatOptions:
    """Sampling options. Unset fields are left to the backend's own defaults."""

    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    repeat_penalty: float | None = None
    seed: int | None = None
    max_tokens: int | None = None

    def to_ollama(self) -> dict[str, Any]:
        options = {
            "temperature": self.temperature,
            "top_p": self.top_p,
            "top_k": self.top_k,
            "repeat_penalty": self.repeat_penalty,
            "seed": self.seed,
            "num_predict": self.max_tokens,
        }
        return {key: value for key, value in options.items() if value is not None}


def _parse_modified(value: Any) -> datetime | None:
    # Ollama reports nanosecond precision, which datetime cannot hold.
    if not isinstance(value, str) or not value:
        return None
    try:
        return datetime.fromisoformat(_FRACTION_RE.sub(r"\1", value))
    except ValueError:
        return None


def messages_to_ollama(messages: Sequence[ChatMessage]) -> list[dict[str, str]]:
    return [{"role": msg.role, "content": msg.content} for msg in messages]


class OllamaClient:
    """Async client for the Ollama HTTP API."""

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    def set_base_url(self, base_url: str) -> None:
        base_url = base_url.rstrip("/")
        if base_url != self._base_url:
            self._base_url = base_url
            logger.info("Ollama base URL set to %s", self._base_url)

    def service_info(self) -> dict[str, str]:
        return {"baseUrl": self._base_url, "name": "Ollama", "version": "unknown"}

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self._timeout),
            headers={"Content-Type": "application/json"},
            transport=self._transport,
        )

    # --- Models ---

    async def check_health(self) -> bool:
        """Probe the backend. Never raises."""
        try:
            async with self._client() as client:
                resp = await client.get("/api/tags")
            return resp.status_code == 200
        except Exception as e:
            logger.warning("Ollama health check failed: %s", e)
            return False

    async def list_models(self) -> list[ModelInfo]:
        try:
            async with self._client() as client:
                logger.debug("Ollama request: GET /api/tags")
                resp = await client.get("/api/tags")
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Failed to fetch models: %s", e)
            raise OllamaError("Failed to fetch available models from Ollama") from e

        if not isinstance(data, dict) or not isinstance(data.get("models") or [], list):
            logger.error("Unexpected model list from Ollama: %r", data)
            raise OllamaError("Failed to fetch available models from Ollama")

        models = []
        for entry in data.get("models") or []:
            if not isinstance(entry, dict) or not entry.get("name"):
                logger.warning("Skipping malformed model entry: %r", entry)
                continue
            try:
                models.append(ModelInfo(
                    id=entry["name"],
                    name=entry["name"],
                    size=entry.get("size") or 0,
                    modified=_parse_modified(entry.get("modified_at")),
                ))
            except ValidationError as e:
                logger.warning("Skipping malformed model entry %r: %s", entry.get("name"), e)
        return models

    async def is_model_available(self, name: str) -> bool:
        """True if the backend lists the model. Unreachable backends count as unavailable."""
        try:
            models = await self.list_models()
        except OllamaError as e:
            logger.error("Failed to check model availability for %s: %s", name, e)
            return False
        return any(model.id == name for model in models)

    # --- Chat ---

    def _chat_payload(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None,
        stream: bool,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": model,
            "messages": messages_to_ollama(messages),
            "stream": stream,
        }
        backend_options = (options or ChatOptions()).to_ollama()
        if backend_options:
            payload["options"] = backend_options
        return payload

    @staticmethod
    def _classify(model: str, status: int, body: str) -> OllamaError:
        if status == 404:
            return ModelNotFoundError(f'Model "{model}" not found. Please ensure it\'s downloaded.')
        if status == 400:
            return InvalidRequestError("Invalid request to Ollama API")
        detail = body.strip()
        try:
            detail = json.loads(body).get("error") or detail
        except (ValueError, AttributeError):
            pass
        return OllamaError(f"Ollama returned HTTP {status}: {detail}")

    async def generate_completion(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
    ) -> str:
        """Run a single non-streaming chat completion and return the reply text."""
        payload = self._chat_payload(model, messages, options, stream=False)
        try:
            async with self._client() as client:
                logger.debug("Ollama request: POST /api/chat model=%s", model)
                resp = await client.post("/api/chat", json=payload)
        except httpx.ConnectError as e:
            logger.error("Failed to generate completion: %s", e)
            raise OllamaConnectionError("Cannot connect to Ollama service. Please ensure it's running.") from e
        except httpx.HTTPError as e:
            logger.error("Failed to generate completion: %s", e)
            raise OllamaError(f"Failed to generate completion: {e}") from e

        if resp.status_code != 200:
            error = self._classify(model, resp.status_code, resp.text)
            logger.error("Failed to generate completion: %s", error)
            raise error

        try:
            content = (resp.json().get("message") or {}).get("content")
        except (ValueError, AttributeError):
            content = None
        if not content:
            raise EmptyResponseError("Empty response from Ollama")
        return content

    async def generate_stream(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        options: ChatOptions | None = None,
    ) -> AsyncIterator[str]:
        """Yield content fragments as the backend produces them.

        The iterator ends when a line with ``done: true`` arrives or the body
        ends, whichever comes first. Closing the iterator early closes the
        underlying connection.
        """
        payload = self._chat_payload(model, messages, options, stream=True)
        try:
            async with self._client() as client:
                logger.debug("Ollama request: POST /api/chat (stream) model=%s", model)
                async with client.stream("POST", "/api/chat", json=payload) as resp:
                    if resp.status_code != 200:
                        body = (await resp.aread()).decode("utf-8", errors="replace")
                        error = self._classify(model, resp.status_code, body)
                        logger.error("Failed to generate stream: %s", error)
                        raise error

                    buffer = ""
                    async for text in resp.aiter_text():
                        buffer += text
                        *lines, buffer = buffer.split("\n")
                        for line in lines:
                            chunk, done = _parse_stream_line(line)
                            if chunk:
                                yield chunk
                            if done:
                                return

                    # A final line without a trailing newline.
                    chunk, _ = _parse_stream_line(buffer)
                    if chunk:
                        yield chunk
        except httpx.ConnectError as e:
            logger.error("Failed to generate stream: %s", e)
            raise OllamaConnectionError("Cannot connect to Ollama service. Please ensure it's running.") from e
        except httpx.HTTPError as e:
            logger.error("Failed to generate stream: %s", e)
            raise OllamaError(f"Failed to generate stream: {e}") from e

    @staticmethod
    def estimate_tokens(text: str) -> int:
        """Approximate token count at ~4 characters per token.

        This is a heuristic, not a tokenizer; counts derived from it are
        approximate and unsuitable for billing.
        """
        return math.ceil(len(text) / 4)


def _parse_stream_line(line: str) -> tuple[str, bool]:
    """Decode one NDJSON line into (content fragment, done flag)."""
    line = line.strip()
    if not line:
        return "", False
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        logger.warning("Failed to parse stream chunk: %s", line)
        return "", False
    if not isinstance(data, dict):
        logger.warning("Failed to parse stream chunk: %s", line)
        return "", False
    if data.get("error"):
        raise OllamaError(f"Ollama stream error: {data['error']}")
    message = data.get("message") or {}
    return message.get("content") or "", bool(data.get("done"))

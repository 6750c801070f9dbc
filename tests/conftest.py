"""Shared fixtures: a temporary data directory and a fake Ollama backend."""

from __future__ import annotations

import json
from typing import Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from mychat.app import create_app
from mychat.config import Config
from mychat.ollama import OllamaClient
from mychat.storage.database import JsonDatabase
from mychat.storage.sessions import SessionStore
from mychat.storage.settings import SettingsStore

MODEL = "llama3.2"


def ndjson(*lines: dict[str, Any]) -> bytes:
    return "".join(json.dumps(line) + "\n" for line in lines).encode()


def stream_body(*fragments: str) -> bytes:
    """NDJSON body of a streamed chat reply made of the given fragments."""
    lines = [{"model": MODEL, "message": {"role": "assistant", "content": f}, "done": False} for f in fragments]
    lines.append({"model": MODEL, "message": {"role": "assistant", "content": ""}, "done": True})
    return ndjson(*lines)


class FakeOllama:
    """In-process stand-in for the Ollama HTTP API, served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.models: list[Any] = [
            {"name": MODEL, "size": 2019393189, "modified_at": "2024-05-01T10:00:00.123456789Z"},
            {"name": "qwen2.5:7b", "size": 4683087332, "modified_at": "2024-06-12T08:30:00Z"},
        ]
        self.reply = "Hello! How can I help?"
        self.title = "Friendly Greeting"
        self.stream_fragments = ["Hel", "lo"]
        self.chunk_size = 7
        self.chat_status = 200
        self.title_status = 200
        self.tags_status = 200
        self.chat_requests: list[dict[str, Any]] = []
        self.tag_requests = 0

    @property
    def completion_requests(self) -> list[dict[str, Any]]:
        """Chat calls other than title generation."""
        return [r for r in self.chat_requests if not _is_title_request(r)]

    async def _chunks(self, body: bytes):
        for start in range(0, len(body), self.chunk_size):
            yield body[start:start + self.chunk_size]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/tags":
            self.tag_requests += 1
            if self.tags_status != 200:
                return httpx.Response(self.tags_status, json={"error": "unavailable"})
            return httpx.Response(200, json={"models": self.models})

        if request.url.path == "/api/chat":
            payload = json.loads(request.content)
            self.chat_requests.append(payload)
            if _is_title_request(payload) and self.title_status != 200:
                return httpx.Response(self.title_status, json={"error": "title failure"})
            if self.chat_status != 200:
                return httpx.Response(self.chat_status, json={"error": "backend failure"})
            if payload.get("stream"):
                return httpx.Response(200, content=self._chunks(stream_body(*self.stream_fragments)))
            content = self.title if _is_title_request(payload) else self.reply
            return httpx.Response(
                200,
                json={"model": payload["model"], "message": {"role": "assistant", "content": content}, "done": True},
            )

        return httpx.Response(404, json={"error": "not found"})


def _is_title_request(payload: dict[str, Any]) -> bool:
    messages = payload.get("messages") or []
    return bool(messages) and messages[0]["content"].startswith("Generate a concise title")


@pytest.fixture
def fake_ollama() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
def ollama(fake_ollama: FakeOllama) -> OllamaClient:
    return OllamaClient(transport=httpx.MockTransport(fake_ollama.handler))


@pytest.fixture
def config(tmp_path) -> Config:
    return Config(data_dir=str(tmp_path / "data"), static_dir=str(tmp_path / "static"))


@pytest.fixture
def db(tmp_path) -> JsonDatabase:
    database = JsonDatabase(tmp_path / "data")
    database.ensure_directories()
    return database


@pytest.fixture
def sessions(db: JsonDatabase) -> SessionStore:
    return SessionStore(db)


@pytest.fixture
def settings_store(db: JsonDatabase, config: Config) -> SettingsStore:
    return SettingsStore(db, config.default_settings())


@pytest.fixture
async def app(config: Config, ollama: OllamaClient):
    """A FastAPI app on a temporary data directory, talking to the fake backend."""
    application = create_app(config, ollama=ollama)
    async with application.router.lifespan_context(application):
        yield application


@pytest.fixture
async def client(app):
    """An httpx AsyncClient bound to the test app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
async def session_id(client: AsyncClient) -> str:
    response = await client.post("/api/sessions", json={"title": "Test chat", "model": MODEL})
    assert response.status_code == 201
    return response.json()["id"]

"""FastAPI application factory."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from mychat.api.chat import create_chat_router
from mychat.api.models_api import create_models_router
from mychat.api.openai_compat import create_openai_router
from mychat.api.sessions import create_sessions_router
from mychat.api.settings import create_settings_router
from mychat.chat import ChatService
from mychat.config import Config
from mychat.errors import register_error_handlers
from mychat.ollama import OllamaClient
from mychat.storage.database import JsonDatabase
from mychat.storage.sessions import SessionStore
from mychat.storage.settings import SettingsStore

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def create_app(
    config: Config | None = None,
    *,
    ollama: OllamaClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Storage and the backend client are built here once and handed to each
    router explicitly.
    """
    config = config or Config()
    db = JsonDatabase(config.data_dir)
    sessions = SessionStore(db)
    settings = SettingsStore(db, config.default_settings())
    ollama = ollama or OllamaClient(config.ollama_base_url, timeout=config.request_timeout)
    chat = ChatService(sessions, settings, ollama)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> Any:
        db.ensure_directories()
        stored = await settings.get()
        ollama.set_base_url(stored.ollama_endpoint)
        logger.info("Storage ready at %s", db.data_dir)
        logger.info("Ollama API: %s", ollama.base_url)
        yield
        logger.info("Shutting down")

    app = FastAPI(title="my-chat-ui", version=VERSION, lifespan=lifespan)
    app.state.config = config
    app.state.ollama = ollama

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[origin.strip() for origin in config.cors_origin.split(",") if origin.strip()],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next: Any) -> Response:
        response = await call_next(request)
        logger.info("%s %s -> %d", request.method, request.url.path, response.status_code)
        return response

    register_error_handlers(app, production=config.is_production)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        storage_ok = await db.is_healthy()
        return {
            "status": "ok" if storage_ok else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": VERSION,
            "storage": storage_ok,
        }

    app.include_router(create_sessions_router(sessions, settings))
    app.include_router(create_chat_router(chat))
    app.include_router(create_models_router(ollama))
    app.include_router(create_settings_router(settings, ollama))
    app.include_router(create_openai_router(ollama, settings))

    # --- Static files (must be last) ---

    static_dir = Path(config.static_dir)
    if static_dir.exists():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")

    return app

"""Configuration for the chat server."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from mychat.types import Settings


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ[name])
    except (KeyError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ[name])
    except (KeyError, ValueError):
        return default


@dataclass
class Config:
    """Server configuration, built once at startup."""

    host: str = "0.0.0.0"
    port: int = 3001
    data_dir: str = field(default_factory=lambda: str(Path.cwd() / "data"))
    ollama_base_url: str = "http://localhost:11434"
    default_model: str = "llama3.2"
    default_temperature: float = 0.7
    default_max_tokens: int = 2048
    request_timeout: float = 30.0
    cors_origin: str = "http://localhost:5173"
    environment: str = "development"
    static_dir: str = field(default_factory=lambda: str(Path(__file__).parent / "static"))

    @classmethod
    def from_env(cls) -> Config:
        """Build a config from environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            host=os.environ.get("HOST", defaults.host),
            port=_env_int("PORT", defaults.port),
            data_dir=os.environ.get("DATA_DIR", defaults.data_dir),
            ollama_base_url=os.environ.get("OLLAMA_BASE_URL", defaults.ollama_base_url),
            default_model=os.environ.get("DEFAULT_MODEL", defaults.default_model),
            default_temperature=_env_float("DEFAULT_TEMPERATURE", defaults.default_temperature),
            default_max_tokens=_env_int("DEFAULT_MAX_TOKENS", defaults.default_max_tokens),
            request_timeout=_env_float("OLLAMA_TIMEOUT", defaults.request_timeout),
            cors_origin=os.environ.get("CORS_ORIGIN", defaults.cors_origin),
            environment=os.environ.get("MYCHAT_ENV", defaults.environment),
            static_dir=os.environ.get("STATIC_DIR", defaults.static_dir),
        )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    def default_settings(self) -> Settings:
        """Settings record used when none has been stored yet."""
        return Settings(
            default_model=self.default_model,
            temperature=self.default_temperature,
            max_tokens=self.default_max_tokens,
            ollama_endpoint=self.ollama_base_url,
            theme="auto",
        )

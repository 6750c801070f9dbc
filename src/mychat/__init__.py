"""my-chat-ui: chat web service backed by a local Ollama server."""

from mychat.app import create_app
from mychat.config import Config

__all__ = ["Config", "create_app"]

"""Bearer-token authentication for the OpenAI-compatible endpoints."""

from __future__ import annotations

import logging
import secrets
from collections.abc import Awaitable, Callable

from fastapi import Request

from mychat.apikey import extract_bearer_token, is_valid_api_key_format
from mychat.errors import OpenAIError
from mychat.storage.settings import SettingsStore

logger = logging.getLogger(__name__)


def _auth_error(message: str, code: str) -> OpenAIError:
    return OpenAIError(message, status=401, error_type="invalid_request_error", code=code)


async def authenticate_api_key(authorization: str | None, settings: SettingsStore) -> str:
    """Check a bearer token against the configured key. Returns the key on success."""
    token = extract_bearer_token(authorization)
    if not token:
        raise _auth_error(
            "Missing API key. Please provide your API key in the Authorization header: Bearer YOUR_API_KEY",
            "missing_api_key",
        )

    if not is_valid_api_key_format(token):
        raise _auth_error("Invalid API key format", "invalid_api_key")

    configured = (await settings.get()).api_key
    if not configured:
        raise _auth_error(
            "No API key configured. Please generate an API key in the settings.",
            "no_api_key_configured",
        )

    if not secrets.compare_digest(token.encode(), configured.encode()):
        logger.warning("Invalid API key attempt: %s...", token[:8])
        raise _auth_error("Invalid API key", "invalid_api_key")

    return token


def optional_api_key_auth(settings: SettingsStore) -> Callable[[Request], Awaitable[str | None]]:
    """Dependency that lets unauthenticated requests through but rejects bad credentials."""

    async def dependency(request: Request) -> str | None:
        authorization = request.headers.get("authorization")
        if not authorization:
            return None
        api_key = await authenticate_api_key(authorization, settings)
        logger.debug("API key authenticated")
        return api_key

    return dependency

"""API key helpers for the OpenAI-compatible endpoints.

Keys look like ``my-chat-ui_sk-<32 lowercase hex chars>``.
"""

from __future__ import annotations

import re
import secrets

API_KEY_PREFIX = "my-chat-ui_sk-"

_API_KEY_RE = re.compile(r"^" + re.escape(API_KEY_PREFIX) + r"[a-f0-9]{32}$")
_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def generate_api_key() -> str:
    return f"{API_KEY_PREFIX}{secrets.token_hex(16)}"


def is_valid_api_key_format(api_key: str) -> bool:
    return _API_KEY_RE.fullmatch(api_key) is not None


def extract_bearer_token(authorization: str | None) -> str | None:
    """Pull the token out of an ``Authorization: Bearer <token>`` header value."""
    if not authorization:
        return None
    match = _BEARER_RE.match(authorization)
    return match.group(1) if match else None


def mask_api_key(api_key: str) -> str:
    """Mask a key for display, keeping only the first 8 and last 4 characters."""
    if len(api_key) < 12:
        return "***"
    return api_key[:8] + "*" * (len(api_key) - 12) + api_key[-4:]

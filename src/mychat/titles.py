"""Session title generation.

Titles come from the first user message, either through a short model call or
through a set of deterministic heuristics that are also the fallback whenever
the model call fails or returns something unusable.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from mychat.ollama import ChatOptions, OllamaClient
from mychat.thinking import strip_thinking
from mychat.types import ChatMessage

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"
MAX_TITLE_LENGTH = 30
MAX_STORED_TITLE_LENGTH = 100

TITLE_BREAK_POINTS = (" ", "，", ",", "、")
MODEL_TITLE_BREAK_POINTS = (" ", "，", ",", "、", "的", "了", "？", "?")

ACTION_PATTERNS = (
    re.compile(r"^(请|帮我|帮忙|能否|可以|如何|怎么|怎样)(.*)", re.DOTALL),
    re.compile(r"^(写|创建|生成|制作|设计|开发)(.*)", re.DOTALL),
    re.compile(r"^(翻译|转换|转化)(.*)", re.DOTALL),
    re.compile(r"^(please|help me|can you|could you|how to|how do i)\s+(.*)", re.IGNORECASE | re.DOTALL),
    re.compile(r"^(write|create|generate|make|design|develop)\s+(.*)", re.IGNORECASE | re.DOTALL),
    re.compile(r"^(translate|convert)\s+(.*)", re.IGNORECASE | re.DOTALL),
)

_SENTENCE_END_RE = re.compile(r"[。！？.!?]")
_MODEL_PREFIX_RE = re.compile(r"^(标题[：:]|Title:\s*|答：|回答：)", re.IGNORECASE)
_QUOTES_RE = re.compile(r"^[\"'“”‘’「」]+|[\"'“”‘’「」]+$")
_WHITESPACE_RE = re.compile(r"\s+")

TITLE_PROMPT = """Generate a concise title (10-30 characters) for this conversation based on the user's message:

User message: {content}

Requirements:
- Keep it short and descriptive
- No quotes or special symbols
- Extract the main topic or intent
- Reply in the language of the user's message

Title:"""


def _truncate(
    text: str,
    limit: int = MAX_TITLE_LENGTH,
    break_points: tuple[str, ...] = TITLE_BREAK_POINTS,
) -> str:
    """Shorten text to fit limit, ending with an ellipsis at a natural break if one exists."""
    if len(text) <= limit:
        return text
    cut = limit - 3
    best = cut
    for point in break_points:
        index = text.rfind(point, 0, cut + len(point))
        if index > 10:
            best = index
            break
    return text[:best].rstrip() + "..."


def generate_title_from_heuristic(content: str) -> str:
    """Derive a title from message text without calling a model."""
    cleaned = strip_thinking(content)
    if not cleaned:
        return DEFAULT_TITLE

    if "?" in cleaned or "？" in cleaned:
        return _truncate(cleaned)

    for pattern in ACTION_PATTERNS:
        match = pattern.match(cleaned)
        if match and match.group(2).strip():
            extracted = match.group(2).strip()
            # Very short spans are usually a mismatch, e.g. "写诗".
            if len(extracted) < 3:
                return _truncate(cleaned)
            return _truncate(extracted, limit=25, break_points=())

    sentences = _SENTENCE_END_RE.split(cleaned)
    if len(sentences) > 1 and sentences[0].strip():
        return _truncate(sentences[0].strip())

    return _truncate(cleaned)


def _clean_model_title(raw: str) -> str:
    title = strip_thinking(raw.strip())
    title = _MODEL_PREFIX_RE.sub("", title).strip()
    title = _QUOTES_RE.sub("", title).strip()
    title = title.split("\n")[0].strip()
    title = _QUOTES_RE.sub("", title).strip()
    return _truncate(title, break_points=MODEL_TITLE_BREAK_POINTS)


async def generate_title_with_model(content: str, model: str, client: OllamaClient) -> str:
    """Ask the model for a title, falling back to heuristics on any failure.

    Never raises: the caller always gets a usable title.
    """
    cleaned = strip_thinking(content)
    if not cleaned:
        return generate_title_from_heuristic(content)

    try:
        response = await client.generate_completion(
            model,
            [ChatMessage(role="user", content=TITLE_PROMPT.format(content=cleaned))],
            ChatOptions(temperature=0.3, max_tokens=50),
        )
    except Exception as e:
        logger.warning("Model title generation failed, using heuristic: %s", e)
        return generate_title_from_heuristic(content)

    title = _clean_model_title(response)
    if len(title) < 3:
        logger.info("Model title %r unusable, using heuristic", title)
        return generate_title_from_heuristic(content)
    return title


@dataclass
class TitleValidation:
    valid: bool
    message: str | None = None


def validate_title(title: str) -> TitleValidation:
    trimmed = title.strip()
    if not trimmed:
        return TitleValidation(False, "Title cannot be empty")
    if len(trimmed) > MAX_STORED_TITLE_LENGTH:
        return TitleValidation(False, f"Title must be at most {MAX_STORED_TITLE_LENGTH} characters")
    return TitleValidation(True)


def normalize_title(title: str) -> str:
    """Trim and collapse whitespace runs to single spaces."""
    return _WHITESPACE_RE.sub(" ", title.strip())

"""Parser for side-channel reasoning markup embedded in model output.

Grammar::

    text     := (plain | block)*
    block    := open body (close | END)
    open     := "<" NAME attrs? ">"
    close    := "</" NAME ">"
    NAME     := "think" | "thinking" | "reasoning"      (case-insensitive)

A block whose close tag never arrives runs to the end of the text and marks
the parse as incomplete, which is what a still-streaming reply looks like.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

TAG_NAMES = ("think", "thinking", "reasoning")

_OPEN_RE = re.compile(r"<(" + "|".join(TAG_NAMES) + r")(?:\s[^>]*)?>", re.IGNORECASE)


@dataclass
class ThinkingParse:
    thinking: str
    content: str
    complete: bool = True


def parse_thinking(text: str) -> ThinkingParse:
    """Split text into its reasoning blocks and the remaining visible content."""
    thinking_parts: list[str] = []
    content_parts: list[str] = []
    complete = True
    pos = 0

    while pos < len(text):
        opened = _OPEN_RE.search(text, pos)
        if opened is None:
            content_parts.append(text[pos:])
            break

        content_parts.append(text[pos:opened.start()])
        close_re = re.compile(r"</" + re.escape(opened.group(1)) + r"\s*>", re.IGNORECASE)
        closed = close_re.search(text, opened.end())
        if closed is None:
            thinking_parts.append(text[opened.end():])
            complete = False
            break

        thinking_parts.append(text[opened.end():closed.start()])
        pos = closed.end()

    thinking = "\n\n".join(part.strip() for part in thinking_parts if part.strip())
    return ThinkingParse(thinking=thinking, content="".join(content_parts).strip(), complete=complete)


def strip_thinking(text: str) -> str:
    """Return text with every reasoning block removed and outer whitespace trimmed."""
    return parse_thinking(text).content

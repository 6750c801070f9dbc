"""Chat turn orchestration shared by the buffered and streaming endpoints."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from mychat.errors import AppError, SessionNotFoundError
from mychat.ollama import ChatOptions, OllamaClient
from mychat.storage.sessions import SessionStore
from mychat.storage.settings import SettingsStore
from mychat.titles import generate_title_with_model
from mychat.types import Message, Role, Session

logger = logging.getLogger(__name__)


@dataclass
class PreparedTurn:
    """A validated turn whose user message is stored and whose context is loaded."""

    session: Session
    user_message: Message
    history: list[Message]
    options: ChatOptions


def session_not_found(session_id: str) -> SessionNotFoundError:
    return SessionNotFoundError(session_id)


class ChatService:
    """Runs chat turns against the model backend and records them in storage."""

    def __init__(self, sessions: SessionStore, settings: SettingsStore, ollama: OllamaClient) -> None:
        self._sessions = sessions
        self._settings = settings
        self._ollama = ollama

    async def _options(self) -> ChatOptions:
        settings = await self._settings.get()
        return ChatOptions(temperature=settings.temperature, max_tokens=settings.max_tokens)

    async def _require_session(self, session_id: str) -> Session:
        session = await self._sessions.get(session_id)
        if session is None:
            raise session_not_found(session_id)
        return session

    async def maybe_generate_title(self, session: Session, content: str) -> None:
        """Title the session from its first user message. Failures are logged, never raised."""
        try:
            messages = await self._sessions.list_messages(session.id)
            user_count = sum(1 for m in messages if m.role == "user")
            if user_count != 1:
                logger.debug("Skipping title generation for session %s: %d user messages", session.id, user_count)
                return
            title = await generate_title_with_model(content, session.model, self._ollama)
            await self._sessions.update(session.id, {"title": title})
            logger.info("Auto-generated title for session %s: %r", session.id, title)
        except Exception as e:
            logger.warning("Failed to auto-generate title for session %s: %s", session.id, e)

    async def prepare_turn(self, session_id: str, content: str | None, role: Role = "user") -> PreparedTurn:
        """Validate a turn, store the user message and load the model context.

        Everything that can reject the request happens here, before any
        response bytes are produced.
        """
        content = (content or "").strip()
        if not content:
            raise AppError("Message content is required", 400, "VALIDATION_ERROR")

        session = await self._require_session(session_id)

        if not await self._ollama.is_model_available(session.model):
            raise AppError(
                f'Model "{session.model}" is not available. Please download it first (ollama pull {session.model}).',
                400,
                "MODEL_NOT_AVAILABLE",
                {"model": session.model},
            )

        user_message = await self._sessions.add_message(session_id, role, content)
        if role == "user":
            await self.maybe_generate_title(session, content)

        history = await self._sessions.list_messages(session_id)
        return PreparedTurn(session, user_message, history, await self._options())

    async def send_message(
        self, session_id: str, content: str | None, role: Role = "user"
    ) -> tuple[Message, Message]:
        """Run a buffered turn. Returns the stored user and assistant messages."""
        turn = await self.prepare_turn(session_id, content, role)
        try:
            reply = await self._ollama.generate_completion(turn.session.model, turn.history, turn.options)
        except Exception as e:
            logger.error("Failed to generate response for session %s: %s", session_id, e)
            raise AppError(f"Failed to generate AI response: {e}", 500, "AI_GENERATION_FAILED") from e

        ai_message = await self._sessions.add_message(
            session_id, "assistant", reply, tokens=self._ollama.estimate_tokens(reply)
        )
        logger.info("Generated response for session %s", session_id)
        return turn.user_message, ai_message

    async def stream_reply(self, turn: PreparedTurn) -> AsyncIterator[str]:
        """Forward reply fragments as they arrive and store the full reply at the end.

        A backend failure after streaming has begun is reported inline as
        ``Error: ...`` and the reply is not stored.
        """
        session_id = turn.session.id
        parts: list[str] = []
        try:
            async for chunk in self._ollama.generate_stream(turn.session.model, turn.history, turn.options):
                parts.append(chunk)
                yield chunk
        except Exception as e:
            logger.error("Failed to stream response for session %s: %s", session_id, e)
            yield f"Error: {e}"
            return

        reply = "".join(parts)
        if not reply:
            logger.warning("Empty streamed response for session %s, nothing stored", session_id)
            return
        try:
            await self._sessions.add_message(
                session_id, "assistant", reply, tokens=self._ollama.estimate_tokens(reply)
            )
        except SessionNotFoundError:
            logger.warning("Session %s was deleted during streaming, reply not stored", session_id)
            return
        logger.info("Streamed response for session %s", session_id)

    async def regenerate(self, session_id: str) -> Message:
        """Produce an additional reply to the turn before the latest assistant message."""
        session = await self._require_session(session_id)
        messages = await self._sessions.list_messages(session_id)
        if not messages:
            raise AppError("No messages in session to regenerate", 400, "NO_MESSAGES")

        last_ai = next((i for i in range(len(messages) - 1, -1, -1) if messages[i].role == "assistant"), None)
        if last_ai is None:
            raise AppError("No AI message found to regenerate", 400, "NO_AI_MESSAGE")

        try:
            reply = await self._ollama.generate_completion(session.model, messages[:last_ai], await self._options())
        except Exception as e:
            logger.error("Failed to regenerate response for session %s: %s", session_id, e)
            raise AppError(f"Failed to regenerate AI response: {e}", 500, "AI_GENERATION_FAILED") from e

        message = await self._sessions.add_message(
            session_id, "assistant", reply, tokens=self._ollama.estimate_tokens(reply)
        )
        logger.info("Regenerated response for session %s", session_id)
        return message

    async def history(self, session_id: str, limit: int = 50, offset: int = 0) -> tuple[list[Message], int]:
        """One page of a session's messages plus the total count."""
        await self._require_session(session_id)
        messages = await self._sessions.list_messages(session_id)
        return messages[offset:offset + limit], len(messages)

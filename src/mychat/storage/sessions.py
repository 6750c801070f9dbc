"""Session and message CRUD operations."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from pydantic import ValidationError

from mychat.errors import SessionNotFoundError, StorageError
from mychat.storage.database import JsonDatabase, is_safe_id
from mychat.types import Message, Role, Session, dump, utc_now

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({"title", "model", "message_count"})


class SessionStore:
    """Manages sessions in ``sessions.json`` and one message file per session."""

    def __init__(self, db: JsonDatabase) -> None:
        self._db = db

    # --- Sessions ---

    def _load_sessions(self) -> list[Session]:
        raw = self._db.read(self._db.sessions_file, [])
        try:
            return [Session.model_validate(item) for item in raw]
        except (ValidationError, TypeError) as e:
            raise StorageError(f"Invalid session record in {self._db.sessions_file}: {e}") from e

    def _save_sessions(self, sessions: list[Session]) -> None:
        self._db.write(self._db.sessions_file, [dump(s) for s in sessions])

    async def create(self, title: str, model: str) -> Session:
        """Create and persist a new empty session."""
        now = utc_now()
        session = Session(
            id=str(uuid.uuid4()),
            title=title,
            model=model,
            created_at=now,
            updated_at=now,
            message_count=0,
        )
        async with self._db.lock(self._db.sessions_file):
            sessions = self._load_sessions()
            sessions.append(session)
            self._save_sessions(sessions)
        logger.info("Created session: %s", session.id)
        return session

    async def get(self, session_id: str) -> Session | None:
        for session in self._load_sessions():
            if session.id == session_id:
                return session
        return None

    async def list_all(self) -> list[Session]:
        """All sessions in storage order. Callers sort."""
        return self._load_sessions()

    async def update(self, session_id: str, updates: dict[str, Any]) -> Session | None:
        """Merge updates into a session and bump updatedAt. Returns None if unknown."""
        changes = {k: v for k, v in updates.items() if k in UPDATABLE_FIELDS}
        async with self._db.lock(self._db.sessions_file):
            sessions = self._load_sessions()
            for index, session in enumerate(sessions):
                if session.id == session_id:
                    updated = session.model_copy(update={**changes, "updated_at": utc_now()})
                    sessions[index] = updated
                    self._save_sessions(sessions)
                    logger.info("Updated session: %s", session_id)
                    return updated
        return None

    async def delete(self, session_id: str) -> bool:
        """Remove a session and all of its messages. Returns False if unknown."""
        async with self._db.lock(self._db.sessions_file):
            sessions = self._load_sessions()
            remaining = [s for s in sessions if s.id != session_id]
            if len(remaining) == len(sessions):
                return False
            self._save_sessions(remaining)

        await self.delete_messages(session_id)
        logger.info("Deleted session: %s", session_id)
        return True

    # --- Messages ---

    def _load_messages(self, session_id: str) -> list[Message]:
        raw = self._db.read(self._db.messages_file(session_id), [])
        try:
            return [Message.model_validate(item) for item in raw]
        except (ValidationError, TypeError) as e:
            raise StorageError(f"Invalid message record for session {session_id}: {e}") from e

    async def add_message(
        self,
        session_id: str,
        role: Role,
        content: str,
        tokens: int | None = None,
    ) -> Message:
        """Append a message and refresh the parent session's count and updatedAt.

        Raises SessionNotFoundError if the session no longer exists; no message
        file is left behind in that case.

        The message lock is held across both writes so concurrent appends to one
        session cannot leave messageCount behind the stored message count.
        """
        message = Message(
            id=str(uuid.uuid4()),
            session_id=session_id,
            role=role,
            content=content,
            timestamp=utc_now(),
            tokens=tokens,
        )
        path = self._db.messages_file(session_id)
        async with self._db.lock(path):
            messages = self._load_messages(session_id)
            messages.append(message)
            self._db.write(path, [dump(m) for m in messages])
            if await self.update(session_id, {"message_count": len(messages)}) is None:
                # The session was deleted while this append waited for the lock.
                self._db.remove(path)
                raise SessionNotFoundError(session_id)
        return message

    async def list_messages(self, session_id: str) -> list[Message]:
        """Messages in insertion order; an unknown session has none."""
        if not is_safe_id(session_id):
            return []
        return self._load_messages(session_id)

    async def delete_messages(self, session_id: str) -> bool:
        """Drop a session's message file. Idempotent."""
        if not is_safe_id(session_id):
            return True
        path = self._db.messages_file(session_id)
        async with self._db.lock(path):
            self._db.remove(path)
        return True

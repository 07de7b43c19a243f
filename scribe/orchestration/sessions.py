"""Conversation session store with a background reaper.

Each orchestrated call opens exactly one session, appends to it from a
single writer, and deletes it on exit via ``SessionStore.open()``. The
reaper is only a backstop for sessions leaked by abnormal termination:
it periodically drops sessions idle longer than ``session_max_age``.

All store operations are synchronous and run on the event loop thread,
so a sweep can never interleave with a call's own append or delete.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Literal

from scribe.config import Settings
from scribe.errors import InvalidMessageOrderError, SessionNotFoundError

logger = logging.getLogger(__name__)

Role = Literal["system", "user", "assistant"]


@dataclass
class Message:
    """A single message in a conversation."""

    role: Role
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ConversationSession:
    """Ordered messages for one orchestrated call."""

    session_id: str
    tool_name: str
    messages: list[Message] = field(default_factory=list)
    created_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)


class SessionStore:
    """Keyed store of conversation sessions."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or Settings()
        self._max_age = settings.session_max_age
        self._sweep_interval = settings.session_sweep_interval
        self._sessions: dict[str, ConversationSession] = {}
        self._counter = itertools.count(1)
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    def create(self, tool_name: str, system_message: str) -> ConversationSession:
        """Start a session seeded with its system message."""
        session_id = f"{tool_name}-{next(self._counter)}-{uuid.uuid4().hex[:8]}"
        session = ConversationSession(
            session_id=session_id,
            tool_name=tool_name,
            messages=[Message(role="system", content=system_message)],
        )
        self._sessions[session_id] = session
        logger.debug("Opened session %s", session_id)
        return session

    def delete(self, session_id: str) -> bool:
        """Remove a session. Returns False if it was already gone."""
        removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.debug("Closed session %s", session_id)
        return removed

    @contextmanager
    def open(self, tool_name: str, system_message: str) -> Iterator[ConversationSession]:
        """Yield a fresh session and delete it on every exit path."""
        session = self.create(tool_name, system_message)
        try:
            yield session
        finally:
            self.delete(session.session_id)

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    def append(self, session_id: str, role: Role, content: str) -> None:
        """Append a message, enforcing strict user/assistant alternation."""
        session = self._require(session_id)
        previous = session.messages[-1].role if session.messages else None
        if role == "system":
            raise InvalidMessageOrderError("Only the leading message may be a system message")
        expected: Role = "assistant" if previous == "user" else "user"
        if role != expected:
            raise InvalidMessageOrderError(
                f"Session {session_id}: expected {expected} message after {previous}, got {role}"
            )
        session.messages.append(Message(role=role, content=content))
        session.last_activity = time.monotonic()

    def messages(self, session_id: str) -> list[Message]:
        """Return a copy of the session's messages."""
        session = self._require(session_id)
        return [Message(role=m.role, content=m.content) for m in session.messages]

    def get(self, session_id: str) -> ConversationSession | None:
        return self._sessions.get(session_id)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def _require(self, session_id: str) -> ConversationSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    # ------------------------------------------------------------------
    # Reaper
    # ------------------------------------------------------------------

    def sweep(self, max_age: float | None = None) -> int:
        """Delete sessions idle longer than *max_age* seconds. Returns count."""
        limit = self._max_age if max_age is None else max_age
        now = time.monotonic()
        expired = [
            sid for sid, session in self._sessions.items()
            if now - session.last_activity > limit
        ]
        for sid in expired:
            self._sessions.pop(sid, None)
        if expired:
            logger.info("Cleared %d stale conversation(s)", len(expired))
        return len(expired)

    async def start(self) -> None:
        """Start the periodic reaper."""
        if self._task is not None:
            return
        self._task = asyncio.create_task(self._sweep_loop(), name="session-reaper")
        logger.info(
            "Session reaper started (max_age=%ss, interval=%ss)",
            self._max_age,
            self._sweep_interval,
        )

    async def stop(self) -> None:
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _sweep_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self._sweep_interval)
                self.sweep()
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("Session reaper sweep failed")

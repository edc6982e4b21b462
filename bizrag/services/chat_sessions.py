"""
Server-side chat session store.

Sessions are keyed by the client-supplied session id and hold the ordered
message list used as conversation history. The map itself is guarded by a
re-entrant lock; each session also carries an ``asyncio.Lock`` so that two
requests for the same session id run their turns one after the other.

Idle sessions are removed by a periodic sweep that takes the same map lock
as request handlers.
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from bizrag.config.logger import app_logger
from bizrag.config.settings import settings


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ChatMessage:
    role: str  # "user" | "assistant" | "system"
    content: str
    timestamp: datetime = field(default_factory=_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def as_history(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ChatSession:
    session_id: str
    user_id: Optional[str] = None
    messages: List[ChatMessage] = field(default_factory=list)
    created_at: datetime = field(default_factory=_now)
    last_activity: datetime = field(default_factory=_now)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def touch(self) -> None:
        self.last_activity = _now()

    def is_idle(self, ttl: timedelta, now: Optional[datetime] = None) -> bool:
        return (now or _now()) - self.last_activity > ttl

    def age_ms(self) -> int:
        return int((_now() - self.created_at).total_seconds() * 1000)

    def history(self) -> List[Dict[str, str]]:
        return [m.as_history() for m in self.messages]


def trim_messages(messages: List[ChatMessage], max_messages: int) -> List[ChatMessage]:
    """Drop the oldest non-system messages until at most ``max_messages`` remain.

    System messages are never dropped, so the result can exceed the cap only
    when there are more system messages than the cap allows.
    """
    excess = len(messages) - max_messages
    if excess <= 0:
        return messages
    kept: List[ChatMessage] = []
    for message in messages:
        if excess > 0 and message.role != "system":
            excess -= 1
            continue
        kept.append(message)
    return kept


class SessionStore:
    """Concurrency-safe session map with idle reaping."""

    def __init__(
        self,
        max_messages: int = settings.CHAT_MAX_MESSAGES,
        ttl_minutes: int = settings.CHAT_SESSION_TTL_MINUTES,
    ):
        self._sessions: Dict[str, ChatSession] = {}
        self._lock = threading.RLock()
        self.max_messages = max_messages
        self.ttl = timedelta(minutes=ttl_minutes)

    def get_or_create(self, session_id: str, user_id: Optional[str] = None) -> ChatSession:
        """Return the session for ``session_id``, reactivating it if it was idle."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = ChatSession(session_id=session_id, user_id=user_id)
                self._sessions[session_id] = session
                app_logger.debug(f"Created chat session {session_id}")
            session.touch()
            return session

    def restore(
        self, session_id: str, user_id: Optional[str], messages: List[ChatMessage]
    ) -> ChatSession:
        """Install a session rebuilt from stored history unless one is already live."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                session = ChatSession(
                    session_id=session_id,
                    user_id=user_id,
                    messages=trim_messages(list(messages), self.max_messages),
                )
                self._sessions[session_id] = session
                app_logger.info(f"Restored chat session {session_id} with {len(session.messages)} messages")
            session.touch()
            return session

    def get(self, session_id: str) -> Optional[ChatSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def append(
        self,
        session_id: str,
        role: str,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ChatMessage]:
        """Append a message and trim the session back to the cap.

        Returns ``None`` without recreating anything when the session has
        been cleared or reaped.
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            message = ChatMessage(role=role, content=content, metadata=metadata or {})
            session.messages.append(message)
            session.messages = trim_messages(session.messages, self.max_messages)
            session.touch()
            return message

    def sweep_idle(self, ttl: Optional[timedelta] = None) -> int:
        """Remove sessions idle longer than ``ttl``. Returns how many were removed."""
        ttl = ttl or self.ttl
        now = _now()
        with self._lock:
            idle = [sid for sid, s in self._sessions.items() if s.is_idle(ttl, now)]
            for sid in idle:
                del self._sessions[sid]
        if idle:
            app_logger.info(f"Cleaned up {len(idle)} idle chat sessions")
        return len(idle)

    def clear(self, session_id: str) -> bool:
        with self._lock:
            return self._sessions.pop(session_id, None) is not None

    def list_active(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [self._info(s) for s in self._sessions.values()]

    def session_info(self, session_id: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            session = self._sessions.get(session_id)
            return self._info(session) if session else None

    @staticmethod
    def _info(session: ChatSession) -> Dict[str, Any]:
        return {
            "session_id": session.session_id,
            "user_id": session.user_id,
            "message_count": len(session.messages),
            "created_at": session.created_at.isoformat(),
            "last_activity": session.last_activity.isoformat(),
        }

    @property
    def session_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    async def run_sweeper(self, interval_minutes: int = settings.CHAT_SWEEP_INTERVAL_MINUTES) -> None:
        """Sweep idle sessions on a fixed timer until cancelled."""
        while True:
            await asyncio.sleep(interval_minutes * 60)
            try:
                self.sweep_idle()
            except Exception as e:
                app_logger.error(f"Chat session sweep failed: {e}")


_store: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    global _store
    if _store is None:
        _store = SessionStore()
    return _store

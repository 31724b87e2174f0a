"""
In-memory session store keyed by chat id.

One Session per chat. Handlers hold lock(chat_id) for the whole turn so that
updates from the same chat are applied one at a time, while different chats
proceed independently. Nothing survives a restart.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from flatbot.models import Session

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, ttl: Optional[timedelta] = None):
        self._sessions: dict[int, Session] = {}
        self._locks: dict[int, asyncio.Lock] = {}
        self._ttl = ttl

    def lock(self, chat_id: int) -> asyncio.Lock:
        """Per-chat mutex; hold it for the whole turn."""
        lock = self._locks.get(chat_id)
        if lock is None:
            lock = self._locks[chat_id] = asyncio.Lock()
        return lock

    def get(self, chat_id: int) -> Optional[Session]:
        """Fetch the session for a chat, or None if idle or expired."""
        session = self._sessions.get(chat_id)
        if session is not None and self._is_expired(session, datetime.now()):
            logger.debug("Session expired: chat_id=%d", chat_id)
            del self._sessions[chat_id]
            return None
        return session

    def get_or_create(self, chat_id: int, user_display_name: Optional[str] = None) -> Session:
        """Fetch the session, creating an idle one if missing.

        The display name is captured only once per session.
        """
        session = self.get(chat_id)
        if session is None:
            session = Session(chat_id=chat_id)
            self._sessions[chat_id] = session
        if not session.user_display_name and user_display_name:
            session.user_display_name = user_display_name
        return session

    def set(self, chat_id: int, session: Session) -> None:
        session.touch()
        self._sessions[chat_id] = session
        logger.debug("Session set: chat_id=%d mode=%s", chat_id, session.mode.value)

    def delete(self, chat_id: int) -> None:
        """Drop the session — chat returns to idle."""
        if self._sessions.pop(chat_id, None) is not None:
            logger.debug("Session cleared: chat_id=%d", chat_id)

    def cleanup_stale(self, now: Optional[datetime] = None) -> int:
        """Delete sessions idle longer than the TTL. Returns how many were dropped."""
        if self._ttl is None:
            return 0
        now = now or datetime.now()
        stale = [cid for cid, s in self._sessions.items() if self._is_expired(s, now)]
        for chat_id in stale:
            del self._sessions[chat_id]
            lock = self._locks.get(chat_id)
            if lock is not None and not lock.locked():
                del self._locks[chat_id]
        if stale:
            logger.info("Cleaned up %d stale sessions", len(stale))
        return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, chat_id: int) -> bool:
        return self.get(chat_id) is not None

    def _is_expired(self, session: Session, now: datetime) -> bool:
        return self._ttl is not None and now - session.updated_at > self._ttl

"""
Chat history service: the in-memory session table.

Manages chat sessions with:
- Lazy expiry of sessions idle longer than the configured TTL
- A cap on the number of live sessions (least recently updated evicted first)
- Atomic message appends
"""

from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Callable, Dict, Optional

from orchestral.core.config import settings
from orchestral.core.logging import get_logger
from orchestral.core.metrics import metrics
from orchestral.core.security import generate_session_id
from orchestral.models.chat import ChatMessage, ChatSession

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChatHistoryService:
    """Process-wide map of session id to ChatSession."""

    def __init__(
        self,
        ttl_minutes: Optional[int] = None,
        max_sessions: Optional[int] = None,
        clock: Clock = _utc_now,
    ):
        self.ttl = timedelta(minutes=ttl_minutes or settings.session_ttl_minutes)
        self.max_sessions = max_sessions or settings.max_sessions
        self._clock = clock

        # Ordered by last update, oldest first
        self._sessions: "OrderedDict[str, ChatSession]" = OrderedDict()
        self._lock = Lock()
        self._stats = {"created": 0, "expired": 0, "evictions": 0}

    def get_or_create(self, session_id: Optional[str] = None) -> ChatSession:
        """
        Return the live session with this id, or create one.

        A missing id gets a fresh one; an unknown or expired id is reused
        for the new session.
        """
        with self._lock:
            self._cleanup_expired_locked()
            if session_id and session_id in self._sessions:
                return self._sessions[session_id]

            while len(self._sessions) >= self.max_sessions:
                self._evict_oldest_locked()

            now = self._clock()
            session = ChatSession(
                id=session_id or generate_session_id(),
                messages=[],
                created_at=now,
                updated_at=now,
            )
            self._sessions[session.id] = session
            self._stats["created"] += 1
            self._publish_size_locked()
            logger.debug(f"Created chat session {session.id[:8]}...")
            return session

    def get(self, session_id: str) -> Optional[ChatSession]:
        """Return the session, or None if it is unknown or has expired."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if self._is_expired(session):
                self._remove_locked(session_id, "expired")
                return None
            return session

    def append(self, session_id: str, message: ChatMessage) -> bool:
        """
        Append a message and bump the session's update time.

        Returns:
            False if the session no longer exists
        """
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                logger.warning(f"Dropping message for missing session {session_id[:8]}...")
                return False
            session.messages.append(message)
            session.updated_at = self._clock()
            self._sessions.move_to_end(session_id)
            return True

    def delete(self, session_id: str) -> bool:
        with self._lock:
            if session_id not in self._sessions:
                return False
            del self._sessions[session_id]
            self._publish_size_locked()
            return True

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                **self._stats,
                "size": len(self._sessions),
                "max_sessions": self.max_sessions,
                "ttl_minutes": int(self.ttl.total_seconds() // 60),
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    # ============ Internals (caller holds the lock) ============

    def _is_expired(self, session: ChatSession) -> bool:
        return self._clock() - session.updated_at > self.ttl

    def _cleanup_expired_locked(self) -> None:
        expired = [sid for sid, s in self._sessions.items() if self._is_expired(s)]
        for sid in expired:
            self._remove_locked(sid, "expired")

    def _evict_oldest_locked(self) -> None:
        oldest_id = next(iter(self._sessions))
        self._remove_locked(oldest_id, "evictions")

    def _remove_locked(self, session_id: str, reason: str) -> None:
        del self._sessions[session_id]
        self._stats[reason] += 1
        self._publish_size_locked()
        logger.debug(f"Removed chat session {session_id[:8]}... ({reason})")

    def _publish_size_locked(self) -> None:
        metrics.active_sessions.set(len(self._sessions))

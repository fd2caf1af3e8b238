"""In-memory store for divination results.

Entries expire after the configured TTL and are purged lazily on access.
Not shared between processes.
"""

from datetime import datetime, timedelta, timezone

from divination.models import DivinationResult, DivinationSession


class SessionStore:
    """TTL map of session ID to analysis result."""

    def __init__(self, ttl_hours: int = 24) -> None:
        self.ttl = timedelta(hours=ttl_hours)
        self._sessions: dict[str, DivinationSession] = {}

    def _purge_expired(self, now: datetime) -> None:
        expired = [sid for sid, session in self._sessions.items() if session.expire_at <= now]
        for sid in expired:
            del self._sessions[sid]

    def save(self, result: DivinationResult, now: datetime | None = None) -> DivinationSession:
        """Store a result under its session ID."""
        now = now or datetime.now(timezone.utc)
        self._purge_expired(now)
        session = DivinationSession(
            session_id=result.sessionId,
            result=result,
            created_at=now,
            expire_at=now + self.ttl,
        )
        self._sessions[result.sessionId] = session
        return session

    def get(self, session_id: str, now: datetime | None = None) -> DivinationSession | None:
        """Return a live session or None."""
        self._purge_expired(now or datetime.now(timezone.utc))
        return self._sessions.get(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

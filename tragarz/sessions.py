"""In-memory session tokens with expiry."""

import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from .exceptions import TragarzAuthenticationError, TragarzAuthExpiredError
from .utils import DEFAULT_SESSION_TTL

logger = logging.getLogger(__name__)


@dataclass
class Session:
    token: str
    created_at: float
    expires_at: float
    last_used: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class SessionStore:
    """Issues and checks session tokens.

    Request handling receives the store explicitly. Nothing is global, so
    tests can run several stores side by side with a fake clock.

    Examples:
        >>> store = SessionStore(ttl=60)
        >>> session = store.create()
        >>> store.lookup(session.token).token == session.token
        True
    """

    def __init__(
        self,
        ttl: float = DEFAULT_SESSION_TTL,
        clock: Optional[Callable[[], float]] = None,
    ):
        """Initialize session store.

        Args:
            ttl: Session lifetime in seconds (default: 24 hours)
            clock: Returns the current time in seconds (default: time.time)
        """
        self.ttl = ttl
        self.clock = clock or time.time
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def create(self) -> Session:
        """Issue a new token (32 random bytes, hex) and sweep expired ones."""
        now = self.clock()
        session = Session(
            token=secrets.token_hex(32),
            created_at=now,
            expires_at=now + self.ttl,
            last_used=now,
        )
        with self._lock:
            self._sessions[session.token] = session
        self.sweep_expired()
        return session

    def lookup(self, token: Optional[str]) -> Session:
        """Return the live session for ``token`` and mark it used.

        Raises:
            TragarzAuthenticationError: If no token is given or it is unknown
            TragarzAuthExpiredError: If the token expired; it is removed
        """
        if not token:
            raise TragarzAuthenticationError("No token provided")

        now = self.clock()
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                raise TragarzAuthenticationError("Invalid token")
            if session.is_expired(now):
                del self._sessions[token]
                raise TragarzAuthExpiredError("Token expired")
            session.last_used = now
            return session

    def sweep_expired(self) -> int:
        """Drop expired sessions, returning how many were removed."""
        now = self.clock()
        with self._lock:
            expired = [t for t, s in self._sessions.items() if s.is_expired(now)]
            for token in expired:
                del self._sessions[token]
        if expired:
            logger.debug(f"Swept {len(expired)} expired session(s)")
        return len(expired)

    def revoke(self, token: str) -> bool:
        with self._lock:
            return self._sessions.pop(token, None) is not None

    def active_count(self) -> int:
        self.sweep_expired()
        with self._lock:
            return len(self._sessions)

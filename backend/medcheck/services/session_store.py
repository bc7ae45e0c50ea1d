"""
In-process session store: opaque token -> account id, with expiry.

Each record also keeps the username and the storage backend that issued the
account, so auth can check a session against the right account.

Records expire `ttl_seconds` after creation. Expired records are dropped when
read and swept in bulk at most once every `check_period_seconds`.
"""

import secrets
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional


@dataclass
class SessionRecord:
    account_id: int
    expires_at: float
    username: str = ""
    backend: str = "memory"


class MemorySessionStore:
    def __init__(
        self,
        ttl_seconds: int = 86400,
        check_period_seconds: int = 3600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self.check_period_seconds = check_period_seconds
        self._clock = clock
        self._sessions: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()
        self._last_prune = clock()

    def create(self, account_id: int, username: str = "", backend: str = "memory") -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._sessions[token] = SessionRecord(
                account_id=account_id,
                username=username,
                backend=backend,
                expires_at=self._clock() + self.ttl_seconds,
            )
        self._maybe_prune()
        return token

    def get(self, token: str) -> Optional[int]:
        record = self.lookup(token)
        return record.account_id if record else None

    def lookup(self, token: str) -> Optional[SessionRecord]:
        """Return the live session record, dropping it if expired."""
        self._maybe_prune()
        with self._lock:
            record = self._sessions.get(token)
            if record is None:
                return None
            if record.expires_at <= self._clock():
                del self._sessions[token]
                return None
            return record

    def destroy(self, token: str) -> None:
        with self._lock:
            self._sessions.pop(token, None)

    def prune(self) -> int:
        """Remove expired sessions. Returns how many were removed."""
        now = self._clock()
        with self._lock:
            expired = [t for t, r in self._sessions.items() if r.expires_at <= now]
            for token in expired:
                del self._sessions[token]
            self._last_prune = now
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _maybe_prune(self) -> None:
        if self._clock() - self._last_prune >= self.check_period_seconds:
            self.prune()

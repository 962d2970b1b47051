"""
In-memory store for popup login sessions (state -> pending/complete/error record).
Written by /start and /callback, read and deleted by the first terminal /status poll.
Records older than the TTL are removed by a periodic sweep whether or not anyone read them.
Single process only; nothing survives a restart.
"""
import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_COMPLETE = "complete"
STATUS_ERROR = "error"
TERMINAL_STATUSES = frozenset({STATUS_COMPLETE, STATUS_ERROR})

# Default record lifetime (seconds); matches the client's 5 minute poll budget
DEFAULT_TTL = 300


class SessionStoreError(Exception):
    """Internal invariant violation (e.g. duplicate state). Never shown to the user."""


@dataclass
class SessionRecord:
    state: str
    status: str
    created_at: float
    access_token: str | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    expires_in: int | None = None
    user: dict[str, Any] | None = None
    error: str | None = None

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_status_payload(self) -> dict[str, Any]:
        """Body returned by GET /auth/google/status/{state}."""
        if self.status == STATUS_COMPLETE:
            return {
                "status": STATUS_COMPLETE,
                "access_token": self.access_token,
                "refresh_token": self.refresh_token,
                "id_token": self.id_token,
                "expires_in": self.expires_in,
                "user": self.user,
            }
        if self.status == STATUS_ERROR:
            return {"status": STATUS_ERROR, "error": self.error}
        return {"status": STATUS_PENDING}


class SessionStore:
    """Owned by the app (created in lifespan); every mutation takes the lock."""

    def __init__(self, ttl: float = DEFAULT_TTL, now_fn: Callable[[], float] | None = None) -> None:
        if ttl <= 0:
            raise ValueError("session TTL must be positive")
        self.ttl = ttl
        self.now_fn = now_fn or time.monotonic
        self._records: dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, state: object) -> bool:
        return state in self._records

    def create(self, state: str) -> SessionRecord:
        record = SessionRecord(state=state, status=STATUS_PENDING, created_at=self.now_fn())
        with self._lock:
            if state in self._records:
                raise SessionStoreError("state already exists")
            self._records[state] = record
        return record

    def set_terminal(self, state: str, status: str, **payload: Any) -> bool:
        """
        Move a pending record to complete or error. Returns False (and changes nothing) when the
        state is unknown, expired, or already terminal. The timestamp is refreshed so the
        result stays collectable for a full TTL.
        """
        if status not in TERMINAL_STATUSES:
            raise ValueError(f"not a terminal status: {status!r}")
        with self._lock:
            record = self._records.get(state)
            if record is None or record.terminal:
                logger.debug("Ignoring %s for unknown or finished state %s...", status, state[:8])
                return False
            for key, value in payload.items():
                if not hasattr(record, key) or key in ("state", "status", "created_at"):
                    raise ValueError(f"unknown record field: {key!r}")
                setattr(record, key, value)
            record.status = status
            record.created_at = self.now_fn()
            return True

    def read(self, state: str) -> SessionRecord | None:
        return self._records.get(state)

    def consume(self, state: str) -> SessionRecord | None:
        """Return the record; if it is terminal, remove it in the same step (delivered at most once)."""
        with self._lock:
            record = self._records.get(state)
            if record is not None and record.terminal:
                del self._records[state]
            return record

    def sweep(self, now: float | None = None) -> int:
        """Delete records older than the TTL. Returns how many were removed."""
        if now is None:
            now = self.now_fn()
        with self._lock:
            expired = [s for s, r in self._records.items() if (now - r.created_at) > self.ttl]
            for s in expired:
                del self._records[s]
        if expired:
            logger.debug("Swept %d expired auth session(s)", len(expired))
        return len(expired)

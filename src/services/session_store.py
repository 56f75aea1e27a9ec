"""In-memory conversation session store with per-session locking.

Design decisions
────────────────
• **OrderedDict** for O(1) LRU eviction and promotion, bounded by
  ``max_sessions``.
• **Idle TTL**: a session untouched for ``ttl_seconds`` is dropped the next
  time the map is accessed.  No background sweeper thread.
• **Two levels of locking**: one map lock guards the dict itself and is held
  only for dictionary operations; one ``threading.Lock`` per session id
  serializes whole turns for that id.  A slow AI or email call therefore
  blocks only further turns of the same conversation.
• Purely ephemeral — sessions are lost on process restart.

Usage
─────
>>> store = InMemorySessionStore()
>>> with store.session("session_123") as session:
...     session.add_turn("user", "reserve Python Programming")
>>> store.clear("session_123")
True
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from collections.abc import Iterator
from contextlib import contextmanager

from src.config import SESSION_MAX_ENTRIES, SESSION_TTL_SECONDS
from src.models import Session

logger = logging.getLogger(__name__)


class SessionStore(ABC):
    """Keyed session storage: get-or-create, mutate-under-lock, delete."""

    @abstractmethod
    def get_or_create(self, session_id: str) -> Session:
        """Return the live session for *session_id*, creating it if unknown."""

    @abstractmethod
    def get(self, session_id: str) -> Session | None:
        """Return the session without creating it."""

    @abstractmethod
    def clear(self, session_id: str | None) -> bool:
        """Delete the session.  Returns ``True`` if it existed."""

    @abstractmethod
    @contextmanager
    def session(self, session_id: str) -> Iterator[Session]:
        """Hold the per-session lock and yield the (possibly new) session."""


class InMemorySessionStore(SessionStore):
    """Process-local store bounded by entry count and idle time."""

    def __init__(
        self,
        max_sessions: int = SESSION_MAX_ENTRIES,
        ttl_seconds: float = SESSION_TTL_SECONDS,
        *,
        clock=time.monotonic,
    ) -> None:
        self._max_sessions = max_sessions
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        # session_id → (session, last_touched)
        self._sessions: OrderedDict[str, tuple[Session, float]] = OrderedDict()
        self._turn_locks: dict[str, _TurnLock] = {}
        self._lock = threading.Lock()

    # ── Core operations ──────────────────────────────────────────────

    def get_or_create(self, session_id: str) -> Session:
        with self._lock:
            self._expire_idle()
            now = self._clock()
            entry = self._sessions.get(session_id)
            if entry is not None:
                session = entry[0]
                self._sessions[session_id] = (session, now)
                self._sessions.move_to_end(session_id)
                return session

            session = Session(session_id=session_id)
            self._sessions[session_id] = (session, now)
            logger.debug("Session store: created %s", session_id)
            self._evict_overflow(keep=session_id)
            return session

    def get(self, session_id: str) -> Session | None:
        """Read-only lookup; does not promote or refresh the session."""
        with self._lock:
            self._expire_idle()
            entry = self._sessions.get(session_id)
            return entry[0] if entry else None

    def clear(self, session_id: str | None) -> bool:
        if not session_id:
            return False
        with self._lock:
            removed = self._sessions.pop(session_id, None) is not None
        if removed:
            logger.debug("Session store: cleared %s", session_id)
        return removed

    @contextmanager
    def session(self, session_id: str) -> Iterator[Session]:
        turn_lock = self._claim_turn_lock(session_id)
        try:
            with turn_lock.lock:
                yield self.get_or_create(session_id)
        finally:
            self._release_turn_lock(session_id, turn_lock)

    # ── Introspection ────────────────────────────────────────────────

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    def has(self, session_id: str) -> bool:
        return session_id in self._sessions

    # ── Internal ─────────────────────────────────────────────────────

    def _claim_turn_lock(self, session_id: str) -> _TurnLock:
        with self._lock:
            turn_lock = self._turn_locks.get(session_id)
            if turn_lock is None:
                turn_lock = _TurnLock()
                self._turn_locks[session_id] = turn_lock
            turn_lock.claims += 1
            return turn_lock

    def _release_turn_lock(self, session_id: str, turn_lock: _TurnLock) -> None:
        with self._lock:
            turn_lock.claims -= 1
            if turn_lock.claims == 0 and session_id not in self._sessions:
                self._turn_locks.pop(session_id, None)

    def _expire_idle(self) -> None:
        """Drop sessions idle for longer than the TTL.  Caller holds ``_lock``."""
        if self._ttl_seconds <= 0:
            return
        cutoff = self._clock() - self._ttl_seconds
        # Entries are kept in touch order, so the stale ones sit at the front
        expired = []
        for session_id, (_, touched) in self._sessions.items():
            if touched > cutoff:
                break
            if not self._in_turn(session_id):
                expired.append(session_id)
        for session_id in expired:
            del self._sessions[session_id]
            logger.debug("Session store: expired %s", session_id)
        self._prune_turn_locks()

    def _evict_overflow(self, keep: str | None = None) -> None:
        """Evict least-recently-used sessions.  Caller holds ``_lock``.

        Sessions with a turn in flight are skipped, so the store may stay
        over capacity until those turns finish.
        """
        excess = len(self._sessions) - self._max_sessions
        if excess <= 0:
            return
        victims = [
            sid for sid in self._sessions if sid != keep and not self._in_turn(sid)
        ][:excess]
        for evicted_id in victims:
            del self._sessions[evicted_id]
            logger.info("Session store: evicted %s (max %d)", evicted_id, self._max_sessions)
        self._prune_turn_locks()

    def _in_turn(self, session_id: str) -> bool:
        turn_lock = self._turn_locks.get(session_id)
        return turn_lock is not None and turn_lock.claims > 0

    def _prune_turn_locks(self) -> None:
        # Claimed locks stay: a waiting turn must find the same lock object
        stale = [
            sid for sid, turn_lock in self._turn_locks.items()
            if sid not in self._sessions and turn_lock.claims == 0
        ]
        for sid in stale:
            del self._turn_locks[sid]


class _TurnLock:
    """A per-session lock plus the number of turns holding or waiting on it."""

    __slots__ = ("lock", "claims")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.claims = 0

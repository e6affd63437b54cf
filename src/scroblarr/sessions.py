"""In-memory history of the latest observed state per media item."""

import threading
from collections.abc import Callable, Iterable

from .models import MediaSession, identity_key

KeyFunc = Callable[[MediaSession], str]


class SessionStore:
    """Thread-safe table of the most recent session per identity key.

    Sessions are copied on the way in and on the way out, so callers can
    mutate what they get back without touching the stored state. There is
    no eviction: entries live until deleted, cleared, or the process exits.
    """

    def __init__(self, key_func: KeyFunc = identity_key):
        self._key_func = key_func
        self._sessions: dict[str, MediaSession] = {}
        self._lock = threading.Lock()

    def key_for(self, session: MediaSession) -> str:
        """Return the identity key for a session."""
        return self._key_func(session)

    def get(self, key: str) -> MediaSession | None:
        """Get the stored session for a key, or None if absent."""
        with self._lock:
            session = self._sessions.get(key)
            return session.model_copy(deep=True) if session is not None else None

    def set(self, session: MediaSession) -> None:
        """Insert or replace the session under its identity key."""
        key = self._key_func(session)
        with self._lock:
            self._sessions[key] = session.model_copy(deep=True)

    def set_many(self, sessions: Iterable[MediaSession]) -> None:
        """Upsert a batch of sessions under a single lock acquisition."""
        entries = [(self._key_func(s), s.model_copy(deep=True)) for s in sessions]
        with self._lock:
            for key, session in entries:
                self._sessions[key] = session

    def get_all(self) -> list[MediaSession]:
        """Snapshot of every stored session (order not significant)."""
        with self._lock:
            return [s.model_copy(deep=True) for s in self._sessions.values()]

    def delete(self, key: str) -> None:
        with self._lock:
            self._sessions.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

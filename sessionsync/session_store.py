"""
Session State Store.

Provides the injectable ``SessionStore`` that holds the application
session (``SessionState``) for the lifetime of the client, plus the
read-only ``SessionReader`` view handed to the rest of the application.

Usage::

    from sessionsync.session_store import SessionStore

    store = SessionStore()
    store.set(loading=True)
    snapshot = store.get()          # frozen SessionState
    reader = store.reader()         # get() + subscribe(), no setter
"""

from __future__ import annotations

import threading
from typing import Callable, Optional

from sessionsync.models.session_models import SessionState

SessionListener = Callable[[SessionState], None]

_SESSION_FIELDS: frozenset[str] = frozenset(SessionState.model_fields)


class SessionStore:
    """Injectable holder for the current session snapshot.

    Each instance maintains its own state, eliminating the need for
    module-level globals.  The synchronization controller owns the
    instance and is the only caller of :meth:`set`; everything else
    receives :meth:`reader`.
    """

    def __init__(self, initial: Optional[SessionState] = None) -> None:
        self._lock: threading.RLock = threading.RLock()
        self._state: SessionState = initial or SessionState()
        self._listeners: list[SessionListener] = []

    def get(self) -> SessionState:
        """Return the current snapshot.  Snapshots are immutable."""
        with self._lock:
            return self._state

    def set(self, **changes: object) -> SessionState:
        """Merge *changes* into the session, preserving unspecified fields.

        Listeners are notified with the new snapshot only when a field
        actually changed.

        Raises:
            KeyError: If a change names a field ``SessionState`` does not have.
        """
        unknown = set(changes) - _SESSION_FIELDS
        if unknown:
            raise KeyError(f"Unknown session fields: {sorted(unknown)}")

        with self._lock:
            previous = self._state
            updated = previous.model_copy(update=changes)
            if updated == previous:
                return previous
            self._state = updated
            listeners = list(self._listeners)

        for listener in listeners:
            listener(updated)
        return updated

    def clear(self) -> SessionState:
        """Reset to the signed-out snapshot, keeping the loading flag."""
        return self.set(authenticated=False, user=None, error=None)

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register *listener* for snapshot changes; returns an unsubscribe callable."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def reader(self) -> "SessionReader":
        return SessionReader(self)

    @property
    def is_authenticated(self) -> bool:
        """``True`` when a resolved user session is active."""
        with self._lock:
            return self._state.authenticated


class SessionReader:
    """Read-only view over a :class:`SessionStore`."""

    def __init__(self, store: SessionStore) -> None:
        self._store: SessionStore = store

    def get(self) -> SessionState:
        return self._store.get()

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        return self._store.subscribe(listener)

    @property
    def is_authenticated(self) -> bool:
        return self._store.is_authenticated


class RedirectMemory:
    """Holds the route a visitor wanted before being sent to sign in.

    Scoped to one auth round-trip: :meth:`consume` returns the saved
    route and clears it.
    """

    def __init__(self) -> None:
        self._lock: threading.Lock = threading.Lock()
        self._route: Optional[str] = None

    def save(self, route: str) -> None:
        with self._lock:
            self._route = route

    def peek(self) -> Optional[str]:
        with self._lock:
            return self._route

    def consume(self) -> Optional[str]:
        with self._lock:
            route, self._route = self._route, None
            return route

    def clear(self) -> None:
        with self._lock:
            self._route = None

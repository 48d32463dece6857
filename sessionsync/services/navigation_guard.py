"""
Navigation Guard.

Maps session transitions to at most one pending redirect.

Policy (first matching row wins):

==============================================  =====================================
Condition                                       Action
==============================================  =====================================
session loading                                 none
controller phase is ``PROFILE_NOT_FOUND``       redirect to sign-up
not authenticated, route outside auth flow      redirect to sign-in, remember route
authenticated, route is sign-in or callback     redirect to remembered route or home
==============================================  =====================================

Debounce: a redirect opens a settle window during which no further
redirect is issued.  The triggering signal can fire several times in
quick succession during one logical auth transition; without the window
the application bounces between routes.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol, runtime_checkable
from urllib.parse import urlsplit

from sessionsync.logger import StructuredLogger
from sessionsync.models.enums import (
    AUTH_ROUTES,
    POST_AUTH_EXIT_ROUTES,
    NavigationReason,
    Route,
    SyncPhase,
)
from sessionsync.models.session_models import NavigationIntent, SessionState
from sessionsync.services.base_service import BaseService
from sessionsync.session_store import RedirectMemory


@runtime_checkable
class Navigator(Protocol):
    """Router adapter supplied by the host application."""

    def current_route(self) -> str:
        """Path of the route currently displayed (query string allowed)."""
        ...

    def navigate(self, route: str) -> None:
        """Move the application to *route*."""
        ...


def normalize_route(route: str) -> str:
    """Strip query string, fragment and trailing slash from *route*."""
    path = urlsplit(route).path or "/"
    if len(path) > 1:
        path = path.rstrip("/")
    return path


class NavigationGuard(BaseService):
    """Debounced redirect policy over session snapshots.

    Parameters
    ----------
    navigator:
        Router adapter used to read the current route and to navigate.
    redirect_memory:
        Storage for the route a visitor wanted before signing in.
    logger:
        Structured JSON logger.
    settle_s:
        Length of the window after a redirect during which the guard
        stays silent.
    clock:
        Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        navigator: Navigator,
        redirect_memory: RedirectMemory,
        logger: StructuredLogger,
        settle_s: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(logger)
        self._navigator: Navigator = navigator
        self._redirect_memory: RedirectMemory = redirect_memory
        self._settle_s: float = settle_s
        self._clock: Callable[[], float] = clock
        self._settle_until: Optional[float] = None
        self._last_intent: Optional[NavigationIntent] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def in_flight(self) -> bool:
        """``True`` while the settle window of the last redirect is open."""
        if self._settle_until is None:
            return False
        if self._clock() >= self._settle_until:
            self._settle_until = None
            return False
        return True

    @property
    def last_intent(self) -> Optional[NavigationIntent]:
        return self._last_intent

    def reset(self) -> None:
        """Close any open settle window."""
        self._settle_until = None

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def decide(
        self,
        state: SessionState,
        phase: SyncPhase,
        current_route: str,
    ) -> Optional[NavigationIntent]:
        """Pure policy: the redirect *state* calls for on *current_route*, if any.

        Does not consult the settle window and has no side effects.
        """
        if state.loading:
            return None

        # A failed resolution is shown as an error while the provider still
        # holds the identity; sending the user to sign-in would loop.
        if phase == SyncPhase.RESOLUTION_FAILED:
            return None

        route = normalize_route(current_route)

        if phase == SyncPhase.PROFILE_NOT_FOUND:
            if route == Route.SIGN_UP:
                return None
            return NavigationIntent(
                target=Route.SIGN_UP, reason=NavigationReason.PROFILE_NOT_FOUND,
            )

        if not state.authenticated:
            if route in AUTH_ROUTES:
                return None
            return NavigationIntent(
                target=Route.SIGN_IN, reason=NavigationReason.UNAUTHENTICATED,
            )

        if route in POST_AUTH_EXIT_ROUTES:
            target = self._redirect_memory.peek() or Route.HOME
            return NavigationIntent(
                target=target, reason=NavigationReason.SESSION_RESOLVED,
            )

        return None

    def evaluate(
        self,
        state: SessionState,
        phase: SyncPhase,
    ) -> Optional[NavigationIntent]:
        """Apply the policy to the live route and navigate if it calls for it.

        Returns the issued intent, or ``None`` when nothing was issued
        (no redirect needed, or a settle window is open).
        """
        if self.in_flight:
            self._logger.debug(
                "Navigation suppressed: previous redirect still settling.",
            )
            return None

        current_route = self._navigator.current_route()
        intent = self.decide(state, phase, current_route)
        if intent is None:
            return None

        if intent.reason == NavigationReason.UNAUTHENTICATED:
            self._redirect_memory.save(current_route)
        elif intent.reason == NavigationReason.SESSION_RESOLVED:
            self._redirect_memory.consume()

        return self._dispatch(intent, current_route)

    def issue(
        self,
        target: str,
        reason: NavigationReason,
        force: bool = False,
    ) -> Optional[NavigationIntent]:
        """Navigate to *target* on behalf of an explicit user action.

        With ``force=True`` an open settle window is overridden (and a
        fresh one opened).
        """
        if self.in_flight and not force:
            return None
        intent = NavigationIntent(target=target, reason=reason)
        return self._dispatch(intent, self._navigator.current_route())

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _dispatch(
        self,
        intent: NavigationIntent,
        current_route: str,
    ) -> NavigationIntent:
        self._settle_until = self._clock() + self._settle_s
        self._last_intent = intent
        self._log_event(
            logging.INFO,
            "NAVIGATE",
            "Redirecting from %s to %s (%s).",
            current_route,
            intent.target,
            intent.reason,
            reason=str(intent.reason),
        )
        self._navigator.navigate(intent.target)
        return intent

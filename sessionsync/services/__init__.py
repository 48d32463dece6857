"""
Session Services Package.

Contains the collaborators of the session engine: the backend profile
resolver, the live/sandbox session backends, the navigation guard and
the synchronization controller that drives them.

The ``create_session_engine()`` factory wires every piece together,
returning a typed dict that the host application (router, views, API
clients) can consume without knowing the internal dependency graph.
"""

from __future__ import annotations

import time
from typing import Callable, Optional, TypedDict

from sessionsync.config import AppConfig
from sessionsync.logger import StructuredLogger, get_logger
from sessionsync.services.identity_provider import IdentityProvider
from sessionsync.services.navigation_guard import NavigationGuard, Navigator
from sessionsync.services.profile_resolver import HttpProfileResolver, ProfileResolver
from sessionsync.services.session_backend import (
    SessionBackend,
    create_session_backend,
    is_sandboxed,
)
from sessionsync.services.sync_controller import SyncController
from sessionsync.session_store import RedirectMemory, SessionReader, SessionStore


class SessionEngine(TypedDict):
    """Typed container for the wired session engine.

    ``store`` is exposed for the host's composition code only; hand
    ``reader`` to everything else.
    """

    store: SessionStore
    reader: SessionReader
    redirect_memory: RedirectMemory
    backend: SessionBackend
    guard: NavigationGuard
    controller: SyncController


def create_session_engine(
    config: AppConfig,
    navigator: Navigator,
    provider: Optional[IdentityProvider] = None,
    resolver: Optional[ProfileResolver] = None,
    origin: Optional[str] = None,
    logger: Optional[StructuredLogger] = None,
    clock: Callable[[], float] = time.monotonic,
) -> SessionEngine:
    """
    Wire store, backend, guard and controller together.

    This is the single composition root for the session engine.  The
    host application calls this once at startup, then calls
    ``controller.attach()`` from inside its event loop.

    Args:
        config: Application configuration.
        navigator: Router adapter for reading and changing the route.
        provider: Identity-provider adapter.  Required outside sandboxed
            environments.
        resolver: Profile resolver.  Defaults to an
            :class:`HttpProfileResolver` against ``API_BASE_URL`` when a
            live pipeline is selected.
        origin: Origin the application is served from, for sandbox
            detection.  Defaults to ``APP_ORIGIN``.
        logger: Structured logger shared by every service.
        clock: Monotonic time source for the navigation settle window.

    Returns:
        SessionEngine mapping component names to fully-wired instances.

    Raises:
        ValueError: If a live pipeline is selected without a provider.
    """
    logger = logger or get_logger("sessionsync")

    # ------------------------------------------------------------------
    # 1. State
    # ------------------------------------------------------------------
    store = SessionStore()
    redirect_memory = RedirectMemory()

    # ------------------------------------------------------------------
    # 2. Backend (live or sandbox, decided once)
    # ------------------------------------------------------------------
    if resolver is None and provider is not None and not is_sandboxed(config, origin):
        resolver = HttpProfileResolver(config=config, logger=logger)

    backend = create_session_backend(
        config=config,
        logger=logger,
        provider=provider,
        resolver=resolver,
        origin=origin,
    )

    # ------------------------------------------------------------------
    # 3. Navigation and synchronization
    # ------------------------------------------------------------------
    guard = NavigationGuard(
        navigator=navigator,
        redirect_memory=redirect_memory,
        logger=logger,
        settle_s=config.NAVIGATION_SETTLE_S,
        clock=clock,
    )
    controller = SyncController(
        store=store,
        backend=backend,
        guard=guard,
        config=config,
        logger=logger,
    )

    return SessionEngine(
        store=store,
        reader=store.reader(),
        redirect_memory=redirect_memory,
        backend=backend,
        guard=guard,
        controller=controller,
    )


__all__ = ["SessionEngine", "create_session_engine"]

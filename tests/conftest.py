"""
Shared fixtures for the SessionSync test-suite.

Collaborators are faked in-process: an identity provider that emits
signals on demand, a navigator that records redirects, a manual clock
for the navigation settle window and an ``AsyncMock`` profile resolver.
"""

from __future__ import annotations

import io
import uuid
from typing import Callable, Optional
from unittest.mock import AsyncMock

import pytest

from sessionsync.config import AppConfig
from sessionsync.logger import StructuredLogger
from sessionsync.models import ProfileFound, ProviderSignal, UserProfile
from sessionsync.services.navigation_guard import NavigationGuard
from sessionsync.services.session_backend import LiveBackend
from sessionsync.services.sync_controller import SyncController
from sessionsync.session_store import RedirectMemory, SessionStore


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeIdentityProvider:
    """Identity provider whose signal is driven by the test."""

    def __init__(self) -> None:
        self._signal = ProviderSignal(is_authenticated=False, is_loading=True)
        self._listeners: list[Callable[[ProviderSignal], None]] = []
        self.begin_sign_in = AsyncMock()
        self.begin_sign_out = AsyncMock()
        self.fetch_identity_token = AsyncMock(return_value="tok-1")
        self.fetch_access_token = AsyncMock(return_value="access-1")

    @property
    def signal(self) -> ProviderSignal:
        return self._signal

    def subscribe(self, listener: Callable[[ProviderSignal], None]) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(
        self,
        is_authenticated: bool,
        is_loading: bool = False,
        error: Optional[str] = None,
    ) -> None:
        self._signal = ProviderSignal(
            is_authenticated=is_authenticated,
            is_loading=is_loading,
            error=error,
        )
        for listener in list(self._listeners):
            listener(self._signal)


class FakeNavigator:
    """Router adapter that records every navigation."""

    def __init__(self, route: str = "/home") -> None:
        self.route = route
        self.history: list[str] = []

    def current_route(self) -> str:
        return self.route

    def navigate(self, route: str) -> None:
        self.history.append(route)
        self.route = route


class ManualClock:
    """Monotonic clock advanced explicitly by the test."""

    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------

def make_profile(
    user_id: str = "u1",
    full_name: str = "Ada",
    email: str = "ada@example.com",
) -> UserProfile:
    return UserProfile(
        id=user_id,
        auth_id=f"auth-{user_id}",
        email=email,
        full_name=full_name,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def config() -> AppConfig:
    """Live-mode configuration independent of any local ``.env``."""
    return AppConfig(
        _env_file=None,
        APP_ORIGIN="https://app.example.com",
        SANDBOX_MODE=False,
        MAX_SYNC_RETRIES=3,
        NAVIGATION_SETTLE_S=1.0,
    )


@pytest.fixture
def logger() -> StructuredLogger:
    return StructuredLogger(
        name=f"sessionsync.test.{uuid.uuid4().hex}",
        stream=io.StringIO(),
    )


@pytest.fixture
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def resolver() -> AsyncMock:
    mock = AsyncMock()
    mock.resolve = AsyncMock(return_value=ProfileFound(profile=make_profile()))
    mock.is_registered = AsyncMock(return_value=True)
    return mock


@pytest.fixture
def navigator() -> FakeNavigator:
    return FakeNavigator(route="/login")


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def redirect_memory() -> RedirectMemory:
    return RedirectMemory()


@pytest.fixture
def guard(
    navigator: FakeNavigator,
    redirect_memory: RedirectMemory,
    logger: StructuredLogger,
    clock: ManualClock,
) -> NavigationGuard:
    return NavigationGuard(
        navigator=navigator,
        redirect_memory=redirect_memory,
        logger=logger,
        settle_s=1.0,
        clock=clock,
    )


@pytest.fixture
def controller(
    store: SessionStore,
    provider: FakeIdentityProvider,
    resolver: AsyncMock,
    guard: NavigationGuard,
    config: AppConfig,
    logger: StructuredLogger,
) -> SyncController:
    """Live-pipeline controller, not yet attached to the provider."""
    backend = LiveBackend(provider=provider, resolver=resolver)
    return SyncController(
        store=store,
        backend=backend,
        guard=guard,
        config=config,
        logger=logger,
    )

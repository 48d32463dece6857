"""
Session Backends (live pipeline vs. sandbox bypass).

The synchronization controller talks to exactly one ``SessionBackend``,
chosen once at startup by :func:`create_session_backend`:

``LiveBackend``
    Delegates to the real identity provider and the backend profile
    resolver.

``SandboxBackend``
    Used only when the runtime is detected as a sandboxed/offline
    environment (web containers, online IDEs, local dev servers).  It
    never touches the network: ``sign_in`` hands back a fixed demo
    profile and tokens are fixed strings.  It never activates on its
    own: the session stays unauthenticated until the user explicitly
    signs in.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Protocol, runtime_checkable
from urllib.parse import urlsplit

from sessionsync.config import AppConfig
from sessionsync.logger import StructuredLogger
from sessionsync.models.session_models import (
    ProfileFound,
    ProfileResult,
    ProviderSignal,
)
from sessionsync.models.user import UserProfile
from sessionsync.services.base_service import BaseService
from sessionsync.services.identity_provider import IdentityProvider, SignalListener
from sessionsync.services.profile_resolver import ProfileResolver

_DEV_HOSTS: tuple[str, ...] = ("localhost", "127.0.0.1")

MOCK_USER_ID: str = "d56c36ed-e02a-48fc-bf21-44e079453460"
MOCK_AUTH_ID: str = "webcontainer_demo_user"


# ---------------------------------------------------------------------------
# Environment detection
# ---------------------------------------------------------------------------

def detect_sandbox(
    origin: str,
    dev_mode: bool,
    indicators: Iterable[str],
) -> bool:
    """Return ``True`` when *origin* looks like a sandboxed runtime.

    Matches any indicator against the hostname, the ``host:port`` pair
    and the full origin.  In dev mode a bare ``localhost`` or
    ``127.0.0.1`` host also counts.
    """
    if not origin:
        return False

    parts = urlsplit(origin if "://" in origin else f"//{origin}")
    hostname: str = (parts.hostname or "").lower()
    netloc: str = parts.netloc.lower()
    lowered_origin: str = origin.lower()

    for indicator in indicators:
        needle = indicator.lower()
        if needle in hostname or needle in netloc or needle in lowered_origin:
            return True

    if dev_mode and hostname.startswith(_DEV_HOSTS):
        return True

    return False


def build_mock_profile() -> UserProfile:
    """Return the fixed demo account installed by the sandbox bypass."""
    now = datetime.now(timezone.utc)
    return UserProfile(
        id=MOCK_USER_ID,
        auth_id=MOCK_AUTH_ID,
        email="demo@webcontainer.local",
        full_name="Demo User",
        profile_picture="https://avatar.vercel.sh/demo",
        bio=(
            "Demo user for sandboxed environments. Allows access to the "
            "platform without identity provider setup."
        ),
        is_active=True,
        created_at=now,
        updated_at=now,
        last_active_at=now,
        linkedin_url="https://linkedin.com/in/demouser",
        fields_of_expertise=("Demo", "Testing", "MVP"),
        professional_background="Demo User for Testing",
        can_help_with="Platform demonstration and testing",
        interests=("Technology", "Startups", "Demo"),
        personality_traits=("Friendly", "Helpful", "Demo"),
        skills=("Testing", "Demo", "MVP"),
    )


# ---------------------------------------------------------------------------
# Backend contract
# ---------------------------------------------------------------------------

@runtime_checkable
class SessionBackend(Protocol):
    """What the controller needs from either pipeline."""

    @property
    def is_sandbox(self) -> bool:
        ...

    @property
    def signal(self) -> ProviderSignal:
        ...

    def subscribe(self, listener: SignalListener) -> Callable[[], None]:
        ...

    async def sign_in(self, callback_url: str) -> Optional[UserProfile]:
        """Start sign-in.  Returns a profile only when the session is
        established immediately (sandbox); ``None`` when the outcome
        arrives later through provider signals."""
        ...

    async def sign_out(self, redirect_url: str) -> None:
        ...

    async def fetch_identity_token(self) -> Optional[str]:
        ...

    async def fetch_access_token(self) -> Optional[str]:
        ...

    async def resolve(self, bearer_token: str) -> ProfileResult:
        ...

    async def is_registered(self, subject: str, bearer_token: str) -> bool:
        ...


class LiveBackend:
    """Real pipeline: identity provider plus backend profile resolver."""

    is_sandbox: bool = False

    def __init__(self, provider: IdentityProvider, resolver: ProfileResolver) -> None:
        self._provider: IdentityProvider = provider
        self._resolver: ProfileResolver = resolver

    @property
    def signal(self) -> ProviderSignal:
        return self._provider.signal

    def subscribe(self, listener: SignalListener) -> Callable[[], None]:
        return self._provider.subscribe(listener)

    async def sign_in(self, callback_url: str) -> Optional[UserProfile]:
        await self._provider.begin_sign_in(callback_url)
        return None

    async def sign_out(self, redirect_url: str) -> None:
        await self._provider.begin_sign_out(redirect_url)

    async def fetch_identity_token(self) -> Optional[str]:
        return await self._provider.fetch_identity_token()

    async def fetch_access_token(self) -> Optional[str]:
        return await self._provider.fetch_access_token()

    async def resolve(self, bearer_token: str) -> ProfileResult:
        return await self._resolver.resolve(bearer_token)

    async def is_registered(self, subject: str, bearer_token: str) -> bool:
        return await self._resolver.is_registered(subject, bearer_token)


class SandboxBackend(BaseService):
    """Deterministic, network-free stand-in for the live pipeline."""

    is_sandbox: bool = True

    def __init__(
        self,
        logger: StructuredLogger,
        mock_token: str,
        profile: Optional[UserProfile] = None,
    ) -> None:
        super().__init__(logger)
        self._mock_token: str = mock_token
        self._profile: UserProfile = profile or build_mock_profile()
        self._signed_in: bool = False

    @property
    def profile(self) -> UserProfile:
        return self._profile

    @property
    def signal(self) -> ProviderSignal:
        return ProviderSignal(is_authenticated=self._signed_in, is_loading=False)

    def subscribe(self, listener: SignalListener) -> Callable[[], None]:
        # No provider behind the sandbox, so nothing is ever emitted.
        return lambda: None

    async def sign_in(self, callback_url: str) -> Optional[UserProfile]:
        self._signed_in = True
        self._log_event(
            logging.INFO,
            "SANDBOX_SIGN_IN",
            "Sandbox sign-in: installing demo session for %s.",
            self._profile.email,
            user_id=self._profile.id,
        )
        return self._profile

    async def sign_out(self, redirect_url: str) -> None:
        self._signed_in = False

    async def fetch_identity_token(self) -> Optional[str]:
        return self._mock_token if self._signed_in else None

    async def fetch_access_token(self) -> Optional[str]:
        return self._mock_token

    async def resolve(self, bearer_token: str) -> ProfileResult:
        return ProfileFound(profile=self._profile)

    async def is_registered(self, subject: str, bearer_token: str) -> bool:
        return subject == self._profile.auth_id


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

def is_sandboxed(config: AppConfig, origin: Optional[str] = None) -> bool:
    """Decide once whether the sandbox pipeline applies.

    ``SANDBOX_MODE`` overrides detection in both directions.  Otherwise
    *origin* (default ``APP_ORIGIN``) is matched against
    ``SANDBOX_INDICATORS``.
    """
    if config.SANDBOX_MODE is not None:
        return config.SANDBOX_MODE
    resolved_origin: str = origin if origin is not None else config.APP_ORIGIN
    return detect_sandbox(resolved_origin, config.DEV_MODE, config.SANDBOX_INDICATORS)


def create_session_backend(
    config: AppConfig,
    logger: StructuredLogger,
    provider: Optional[IdentityProvider] = None,
    resolver: Optional[ProfileResolver] = None,
    origin: Optional[str] = None,
) -> SessionBackend:
    """Select the live or sandbox pipeline once, at startup.

    Raises:
        ValueError: If the live pipeline is selected but *provider* or
            *resolver* is missing.
    """
    if is_sandboxed(config, origin):
        logger.info(
            "Sandboxed environment detected (%s); sign-in will use the demo session.",
            origin if origin is not None else config.APP_ORIGIN,
            extra={"event": "SANDBOX_DETECTED"},
        )
        return SandboxBackend(logger=logger, mock_token=config.MOCK_ACCESS_TOKEN)

    if provider is None or resolver is None:
        raise ValueError(
            "An identity provider and a profile resolver are required "
            "outside sandboxed environments."
        )
    return LiveBackend(provider=provider, resolver=resolver)

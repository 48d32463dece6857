"""Identity Provider Protocol.

Defines the shape the session engine expects from the external
identity-provider client.  The provider's own protocol (redirects,
token exchange, storage) is its business; the engine only observes the
``ProviderSignal`` triple and calls the four async operations below.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol, runtime_checkable

from sessionsync.models.session_models import ProviderSignal

SignalListener = Callable[[ProviderSignal], None]


@runtime_checkable
class IdentityProvider(Protocol):
    """Contract every identity-provider adapter must satisfy.

    Using ``Protocol`` (structural subtyping / PEP 544) rather than
    ABC so that adapters around third-party SDKs do not need to inherit
    from a specific base class.
    """

    @property
    def signal(self) -> ProviderSignal:
        """The provider's current ``(authenticated, loading, error)`` triple."""
        ...

    def subscribe(self, listener: SignalListener) -> Callable[[], None]:
        """Register *listener* for every emitted signal.

        The provider may re-emit an unchanged triple; listeners must
        tolerate duplicates.  Returns an unsubscribe callable.
        """
        ...

    async def begin_sign_in(self, callback_url: str) -> None:
        """Start the interactive sign-in flow returning to *callback_url*."""
        ...

    async def begin_sign_out(self, redirect_url: str) -> None:
        """End the provider session and return to *redirect_url*."""
        ...

    async def fetch_identity_token(self) -> Optional[str]:
        """Return the current ID token, or ``None`` when unavailable."""
        ...

    async def fetch_access_token(self) -> Optional[str]:
        """Return an access token for API calls, or ``None``."""
        ...

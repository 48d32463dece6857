"""
Shared Enumerations for SessionSync Models.

All string enumerations for type-safe field constraints.
StrEnum values compare equal to their string equivalents,
so callers holding a raw path such as ``"/login"`` can compare
it against ``Route.SIGN_IN`` directly.
"""

from __future__ import annotations
from enum import StrEnum


class Route(StrEnum):
    """Application routes the session engine navigates between."""

    HOME = "/home"
    SIGN_IN = "/login"
    SIGN_UP = "/signup"
    CALLBACK = "/callback"
    SIGN_OUT = "/logout"


# Auth-flow routes: an unauthenticated visitor is never bounced away
# from these.
AUTH_ROUTES: frozenset[str] = frozenset({
    Route.SIGN_IN.value,
    Route.SIGN_UP.value,
    Route.CALLBACK.value,
    Route.SIGN_OUT.value,
})

# Routes an authenticated user is moved away from once the session resolves.
POST_AUTH_EXIT_ROUTES: frozenset[str] = frozenset({
    Route.SIGN_IN.value,
    Route.CALLBACK.value,
})


class SyncPhase(StrEnum):
    """States of the synchronization controller.

    ``RESOLUTION_FAILED`` covers both the retryable and the exhausted
    case; the attempt counter tells them apart.
    """

    BOOTSTRAPPING = "BOOTSTRAPPING"
    UNAUTHENTICATED = "UNAUTHENTICATED"
    RESOLVING = "RESOLVING"
    RESOLVED = "RESOLVED"
    RESOLUTION_FAILED = "RESOLUTION_FAILED"
    PROFILE_NOT_FOUND = "PROFILE_NOT_FOUND"


class SyncErrorCode(StrEnum):
    """Exhaustive enumeration of session synchronization error categories."""

    PROVIDER_ERROR = "provider_error"
    TOKEN_UNAVAILABLE = "token_unavailable"
    RESOLUTION_TRANSPORT_ERROR = "resolution_transport_error"
    PROFILE_NOT_FOUND = "profile_not_found"
    MAX_RETRIES_EXCEEDED = "max_retries_exceeded"


class NavigationReason(StrEnum):
    """Why the navigation guard issued a redirect."""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    SESSION_RESOLVED = "SESSION_RESOLVED"
    PROFILE_NOT_FOUND = "PROFILE_NOT_FOUND"
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"

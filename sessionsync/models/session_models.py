"""
Session Synchronization Models.

Pydantic models for the contracts between the identity provider, the
profile resolver, the synchronization controller and the rest of the
application.

Every controller operation that can fail returns a structured,
inspectable ``SyncResult`` rather than raising, and every resolver
outcome is one of the three ``ProfileResult`` variants.
"""

from __future__ import annotations

from typing import Literal, Optional, Union

from pydantic import BaseModel, Field

from sessionsync.models.enums import NavigationReason, SyncErrorCode
from sessionsync.models.user import UserProfile


# ---------------------------------------------------------------------------
# Session snapshot
# ---------------------------------------------------------------------------

class SessionState(BaseModel):
    """Immutable snapshot of the application session.

    Attributes
    ----------
    authenticated:
        ``True`` once the provider identity has been resolved to an
        application user.
    loading:
        ``True`` while the provider bootstraps or a resolution is in
        flight.  Navigation decisions are suppressed while set.
    error:
        User-visible error message, or ``None``.
    user:
        The resolved application profile, or ``None``.
    """

    authenticated: bool = False
    loading: bool = False
    error: Optional[str] = None
    user: Optional[UserProfile] = None

    model_config = {"frozen": True}


class SyncAttempt(BaseModel):
    """Per-sign-in resolution bookkeeping owned by the controller."""

    retry_count: int = 0
    in_progress: bool = False

    def reset(self) -> None:
        self.retry_count = 0
        self.in_progress = False


# ---------------------------------------------------------------------------
# Identity provider signal
# ---------------------------------------------------------------------------

class ProviderSignal(BaseModel):
    """The triple reported by the identity provider on every change."""

    is_authenticated: bool = False
    is_loading: bool = True
    error: Optional[str] = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Profile resolution outcomes
# ---------------------------------------------------------------------------

class ProfileFound(BaseModel):
    """The bearer token maps to an existing application account."""

    kind: Literal["found"] = "found"
    profile: UserProfile


class ProfileNotFound(BaseModel):
    """The identity is valid but has no application account yet."""

    kind: Literal["not_found"] = "not_found"


class ProfileTransportError(BaseModel):
    """The lookup failed for network, status or payload-shape reasons."""

    kind: Literal["transport_error"] = "transport_error"
    detail: str = ""


ProfileResult = Union[ProfileFound, ProfileNotFound, ProfileTransportError]


# ---------------------------------------------------------------------------
# Navigation
# ---------------------------------------------------------------------------

class NavigationIntent(BaseModel):
    """One-shot redirect directive issued by the navigation guard."""

    target: str
    reason: NavigationReason

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Operation results
# ---------------------------------------------------------------------------

class SyncResult(BaseModel):
    """Unified response for on-demand controller operations.

    Attributes
    ----------
    success:
        ``True`` when the operation completed (or had nothing to do).
    error_code:
        Structured error category (``None`` on success).
    error_message:
        Human-readable error description (``None`` on success).
    user:
        The profile installed by the operation, when there is one.
    """

    success: bool
    error_code: Optional[SyncErrorCode] = None
    error_message: Optional[str] = None
    user: Optional[UserProfile] = None


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

class SyncPolicy(BaseModel):
    """Configurable retry policy for automatic profile resolution.

    ``retryable`` lists the error codes that count against
    ``max_retries``; any other failure code is terminal on first
    occurrence.
    """

    max_retries: int = Field(default=3, ge=1)
    retryable: frozenset[SyncErrorCode] = frozenset({
        SyncErrorCode.TOKEN_UNAVAILABLE,
        SyncErrorCode.RESOLUTION_TRANSPORT_ERROR,
    })

    def is_retryable(self, code: SyncErrorCode) -> bool:
        return code in self.retryable


# ---------------------------------------------------------------------------
# User-facing messages
# ---------------------------------------------------------------------------

SYNC_ERROR_MESSAGES: dict[SyncErrorCode, str] = {
    SyncErrorCode.PROVIDER_ERROR: "Authentication error",
    SyncErrorCode.TOKEN_UNAVAILABLE: "Failed to get identity token",
    SyncErrorCode.RESOLUTION_TRANSPORT_ERROR: "Failed to fetch user data",
    SyncErrorCode.PROFILE_NOT_FOUND: "No account found for this identity. Please sign up.",
    SyncErrorCode.MAX_RETRIES_EXCEEDED: (
        "We could not load your profile. Please refresh the page to try again."
    ),
}


def attempt_error_message(code: SyncErrorCode, attempt: int, max_retries: int) -> str:
    """Message shown after a retryable failure that still has attempts left."""
    return f"{SYNC_ERROR_MESSAGES[code]} (attempt {attempt} of {max_retries})."


__all__ = [
    "NavigationIntent",
    "ProfileFound",
    "ProfileNotFound",
    "ProfileResult",
    "ProfileTransportError",
    "ProviderSignal",
    "SYNC_ERROR_MESSAGES",
    "SessionState",
    "SyncAttempt",
    "SyncPolicy",
    "SyncResult",
    "attempt_error_message",
]

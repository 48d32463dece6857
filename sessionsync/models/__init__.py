from __future__ import annotations

"""
Data Models Package.

Re-exports all Pydantic models for convenient imports:
    from sessionsync.models import SessionState, UserProfile, ProviderSignal
    from sessionsync.models import Route, SyncPhase, SyncErrorCode
"""

from sessionsync.models.enums import (
    AUTH_ROUTES,
    POST_AUTH_EXIT_ROUTES,
    NavigationReason,
    Route,
    SyncErrorCode,
    SyncPhase,
)
from sessionsync.models.session_models import (
    SYNC_ERROR_MESSAGES,
    NavigationIntent,
    ProfileFound,
    ProfileNotFound,
    ProfileResult,
    ProfileTransportError,
    ProviderSignal,
    SessionState,
    SyncAttempt,
    SyncPolicy,
    SyncResult,
)
from sessionsync.models.user import UserProfile

__all__ = [
    "AUTH_ROUTES",
    "POST_AUTH_EXIT_ROUTES",
    "NavigationIntent",
    "NavigationReason",
    "ProfileFound",
    "ProfileNotFound",
    "ProfileResult",
    "ProfileTransportError",
    "ProviderSignal",
    "Route",
    "SYNC_ERROR_MESSAGES",
    "SessionState",
    "SyncAttempt",
    "SyncErrorCode",
    "SyncPhase",
    "SyncPolicy",
    "SyncResult",
    "UserProfile",
]

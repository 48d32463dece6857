"""
Backend Profile Resolver.

Turns an identity-provider bearer token into the application user
record by calling the backend ``users`` API.

Outcome contract:
    - HTTP 200 with a profile payload  -> ``ProfileFound``
    - HTTP 404                         -> ``ProfileNotFound``
    - anything else (network failure, timeout, other status, malformed
      JSON, payload that does not validate) -> ``ProfileTransportError``

The resolver never raises for a failed lookup; the synchronization
controller decides what a failure means.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, runtime_checkable

import httpx
from pydantic import ValidationError

from sessionsync.config import AppConfig
from sessionsync.logger import StructuredLogger
from sessionsync.models.session_models import (
    ProfileFound,
    ProfileNotFound,
    ProfileResult,
    ProfileTransportError,
)
from sessionsync.models.user import UserProfile
from sessionsync.services.base_service import BaseService

_CURRENT_USER_PATH: str = "api/v1/users/me"
_SIGNUP_STATUS_PATH: str = "api/v1/users/is_new/{subject}"


@runtime_checkable
class ProfileResolver(Protocol):
    """Contract for anything that can resolve a bearer token to a profile."""

    async def resolve(self, bearer_token: str) -> ProfileResult:
        ...

    async def is_registered(self, subject: str, bearer_token: str) -> bool:
        ...


def _extract_profile_payload(body: Any) -> Any:
    """Unwrap the backend envelope.

    The profile endpoint has answered with ``{"data": {...}}``,
    ``{"user": {...}}`` and a bare profile object over its lifetime.
    """
    if isinstance(body, dict):
        for key in ("data", "user"):
            inner = body.get(key)
            if isinstance(inner, dict):
                return inner
    return body


class HttpProfileResolver(BaseService):
    """``httpx``-backed implementation of :class:`ProfileResolver`.

    Parameters
    ----------
    config:
        Application configuration (base URL and request timeout).
    logger:
        Structured JSON logger.
    client:
        Optional pre-built ``httpx.AsyncClient``.  When omitted the
        resolver creates and owns one, closed by :meth:`aclose`.
    profile_path:
        Endpoint path, relative to ``API_BASE_URL``, of the current-user
        profile lookup.
    """

    def __init__(
        self,
        config: AppConfig,
        logger: StructuredLogger,
        client: Optional[httpx.AsyncClient] = None,
        profile_path: str = _CURRENT_USER_PATH,
    ) -> None:
        super().__init__(logger)
        self._owns_client: bool = client is None
        self._client: httpx.AsyncClient = client or httpx.AsyncClient(
            base_url=config.API_BASE_URL,
            timeout=config.API_TIMEOUT_S,
            headers={"Accept": "application/json"},
        )
        self._profile_path: str = profile_path

    @staticmethod
    def _auth_headers(bearer_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {bearer_token}",
            "Content-Type": "application/json",
        }

    async def resolve(self, bearer_token: str) -> ProfileResult:
        """Fetch the profile that *bearer_token* identifies."""
        try:
            response = await self._client.get(
                self._profile_path,
                headers=self._auth_headers(bearer_token),
            )
        except httpx.HTTPError as exc:
            self._log_event(
                logging.WARNING,
                "PROFILE_TRANSPORT_ERROR",
                "Profile lookup failed before a response arrived: %s", exc,
            )
            return ProfileTransportError(detail=f"{type(exc).__name__}: {exc}")

        if response.status_code == httpx.codes.NOT_FOUND:
            self._log_event(
                logging.INFO,
                "PROFILE_NOT_FOUND",
                "No application profile for this identity.",
            )
            return ProfileNotFound()

        if response.status_code != httpx.codes.OK:
            self._log_event(
                logging.WARNING,
                "PROFILE_TRANSPORT_ERROR",
                "Profile lookup returned HTTP %d.", response.status_code,
            )
            return ProfileTransportError(
                detail=f"Failed to fetch user profile: {response.status_code}",
            )

        try:
            payload = _extract_profile_payload(response.json())
            profile = UserProfile.model_validate(payload)
        except (ValueError, ValidationError) as exc:
            # ValidationError subclasses ValueError; JSON decode errors too.
            self._log_event(
                logging.WARNING,
                "PROFILE_TRANSPORT_ERROR",
                "Profile payload could not be parsed: %s", exc,
            )
            return ProfileTransportError(detail=f"Unexpected profile payload: {exc}")

        self._logger.debug("Profile fetched for user %s.", profile.id)
        return ProfileFound(profile=profile)

    async def is_registered(self, subject: str, bearer_token: str) -> bool:
        """Return ``True`` when the backend already has an account for *subject*.

        Any failure is reported as ``False`` so callers can route the
        visitor to sign-up.
        """
        try:
            response = await self._client.get(
                _SIGNUP_STATUS_PATH.format(subject=subject),
                headers=self._auth_headers(bearer_token),
            )
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            self._logger.warning(
                "Error checking if user %s is signed up: %s", subject, exc,
            )
            return False

        return isinstance(body, dict) and bool(body.get("user"))

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this resolver created it."""
        if self._owns_client:
            await self._client.aclose()

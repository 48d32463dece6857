"""
Session Synchronization Controller.

Single owner of the ``SessionStore``.  Observes the identity-provider
signal triple, resolves an authenticated identity to an application
``UserProfile`` exactly once per sign-in, and keeps the store and the
navigation guard consistent with the outcome.

State machine (``SyncPhase``)::

    BOOTSTRAPPING ──> UNAUTHENTICATED <──────────────────────────┐
         │                   │                                   │
         └──> RESOLVING <────┘  (provider authenticated,         │
                 │               nothing in progress)            │
                 ├──> RESOLVED                                   │
                 ├──> PROFILE_NOT_FOUND   (redirect to sign-up)  │
                 └──> RESOLUTION_FAILED ──(next signal retries)──┘

All operations are coroutines on a single asyncio event loop.  The only
suspension points are the identity-token fetch and the resolver call;
``SyncAttempt.in_progress`` serializes resolutions across them and a
session generation counter discards results that land after the user
signed out (or the provider reported unauthenticated).

Every collaborator exception is caught here and converted into a
``SyncErrorCode``; nothing propagates to UI callers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from sessionsync.config import AppConfig
from sessionsync.logger import StructuredLogger
from sessionsync.models.enums import NavigationReason, Route, SyncErrorCode, SyncPhase
from sessionsync.models.session_models import (
    SYNC_ERROR_MESSAGES,
    ProfileFound,
    ProfileNotFound,
    ProfileTransportError,
    ProviderSignal,
    SessionState,
    SyncAttempt,
    SyncPolicy,
    SyncResult,
    attempt_error_message,
)
from sessionsync.models.user import UserProfile
from sessionsync.services.base_service import BaseService
from sessionsync.services.navigation_guard import NavigationGuard
from sessionsync.services.session_backend import SessionBackend
from sessionsync.session_store import SessionReader, SessionStore
from sessionsync.utils.audit import log_audit_event

# (found profile, failure code, failure detail) from one resolution pass.
_Outcome = tuple[Optional[UserProfile], Optional[SyncErrorCode], str]

_STALE_REFRESH_MESSAGE: str = "Session ended before the profile refresh completed."


class SyncController(BaseService):
    """Drives ``SessionState`` from provider signals and user actions.

    Parameters
    ----------
    store:
        The session store.  The controller is its only writer.
    backend:
        Live or sandbox pipeline, selected once at startup.
    guard:
        Navigation guard notified after every state transition.
    config:
        Application configuration (redirect URLs, retry ceiling,
        optional resolver timeout).
    logger:
        Structured JSON logger.
    policy:
        Retry policy.  Defaults to ``MAX_SYNC_RETRIES`` attempts with
        token and transport failures classed as retryable.
    """

    def __init__(
        self,
        store: SessionStore,
        backend: SessionBackend,
        guard: NavigationGuard,
        config: AppConfig,
        logger: StructuredLogger,
        policy: Optional[SyncPolicy] = None,
    ) -> None:
        super().__init__(logger)
        self._store: SessionStore = store
        self._backend: SessionBackend = backend
        self._guard: NavigationGuard = guard
        self._config: AppConfig = config
        self._policy: SyncPolicy = policy or SyncPolicy(max_retries=config.MAX_SYNC_RETRIES)

        self._attempt: SyncAttempt = SyncAttempt()
        self._phase: SyncPhase = SyncPhase.BOOTSTRAPPING
        self._generation: int = 0

        # Per-sign-in flags; cleared on every unauthenticated transition.
        self._resolved: bool = False
        self._not_found: bool = False
        self._halted: bool = False

        # A signal arrived while a pass was running and was not acted on.
        self._resync_requested: bool = False
        # sign_out() was called and the provider has not confirmed it yet.
        self._signing_out: bool = False

        # Message currently shown because the provider reported an error.
        self._provider_error: Optional[str] = None

        self._task: Optional[asyncio.Task[None]] = None
        # Serializes manual refreshes.
        self._refresh_lock: asyncio.Lock = asyncio.Lock()
        self._unsubscribe: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def attempt(self) -> SyncAttempt:
        """Copy of the current attempt bookkeeping."""
        return self._attempt.model_copy()

    @property
    def reader(self) -> SessionReader:
        return self._store.reader()

    @property
    def is_sandbox(self) -> bool:
        return self._backend.is_sandbox

    def get_session(self) -> SessionState:
        """Current session snapshot."""
        return self._store.get()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def attach(self) -> None:
        """Subscribe to backend signals and apply the current one.

        Must be called from within the running event loop.
        """
        if self._unsubscribe is not None:
            return
        self._unsubscribe = self._backend.subscribe(self.on_signal)
        self.on_signal(self._backend.signal)

    async def settle(self) -> None:
        """Wait until no automatic resolution is in flight."""
        while self._task is not None and not self._task.done():
            await asyncio.wait({self._task})

    async def close(self) -> None:
        """Detach from the backend and cancel any in-flight resolution."""
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

        self._attempt.in_progress = False
        self._guard.reset()

    # ------------------------------------------------------------------
    # Signal handling
    # ------------------------------------------------------------------

    def on_signal(self, signal: ProviderSignal) -> None:
        """React to one provider triple.  Duplicates are harmless."""
        self._apply_provider_error(signal.error)

        if signal.is_loading:
            if not self._resolved and not self._attempt.in_progress:
                self._phase = SyncPhase.BOOTSTRAPPING
            self._store.set(loading=True)
            return

        if not signal.is_authenticated:
            self._enter_unauthenticated()
            return

        if not self._attempt.in_progress:
            self._store.set(loading=False)
        self._maybe_start_resolution()

    def _apply_provider_error(self, error: Optional[str]) -> None:
        if error is not None:
            message = error or SYNC_ERROR_MESSAGES[SyncErrorCode.PROVIDER_ERROR]
            if message != self._provider_error:
                self._log_event(
                    logging.WARNING,
                    "PROVIDER_ERROR",
                    "Identity provider reported an error: %s",
                    message,
                )
            self._provider_error = message
            self._store.set(error=message)
            return

        if self._provider_error is not None:
            if self._store.get().error == self._provider_error:
                self._store.set(error=None)
            self._provider_error = None

    def _enter_unauthenticated(self) -> None:
        self._generation += 1
        self._reset_sign_in_flags()
        self._signing_out = False

        if self._phase != SyncPhase.UNAUTHENTICATED:
            self._log_event(
                logging.INFO,
                "SESSION_UNAUTHENTICATED",
                "Session is unauthenticated.",
            )
        self._phase = SyncPhase.UNAUTHENTICATED

        self._store.set(
            authenticated=False,
            user=None,
            loading=False,
            error=self._provider_error,
        )
        self._guard.evaluate(self._store.get(), self._phase)

    def _reset_sign_in_flags(self) -> None:
        # in_progress stays with the running task; its result is discarded
        # through the generation check instead.
        self._attempt.retry_count = 0
        self._resolved = False
        self._not_found = False
        self._halted = False
        self._resync_requested = False

    # ------------------------------------------------------------------
    # Automatic resolution
    # ------------------------------------------------------------------

    def _maybe_start_resolution(self) -> None:
        if self._signing_out:
            return

        if self._attempt.in_progress:
            self._resync_requested = True
            self._logger.debug("Resolution already in progress; signal ignored.")
            return

        if self._resolved and self._store.get().user is not None:
            self._guard.evaluate(self._store.get(), self._phase)
            return

        if self._not_found or self._halted:
            return

        generation = self._generation
        self._attempt.in_progress = True
        self._phase = SyncPhase.RESOLVING
        self._store.set(loading=True)
        self._log_event(
            logging.INFO,
            "RESOLVE_START",
            "Resolving application profile (attempt %d of %d).",
            self._attempt.retry_count + 1,
            self._policy.max_retries,
        )
        self._task = asyncio.get_running_loop().create_task(
            self._run_resolution(generation),
        )

    async def _run_resolution(self, generation: int) -> None:
        try:
            profile, code, detail = await self._resolve_once()
        finally:
            self._attempt.in_progress = False

        if not self._is_current(generation):
            self._log_event(
                logging.INFO,
                "RESOLVE_STALE",
                "Discarding resolution result from an ended session.",
            )
            self._resume_after_stale()
            return

        if code is None and profile is not None:
            self._attempt.retry_count = 0
            self._install_profile(profile, action="PROFILE_RESOLVED")
        elif code == SyncErrorCode.PROFILE_NOT_FOUND:
            self._enter_profile_not_found()
        else:
            self._record_failure(code or SyncErrorCode.RESOLUTION_TRANSPORT_ERROR, detail)

    async def _resolve_once(self) -> _Outcome:
        """One token fetch plus one resolver call, exceptions converted."""
        try:
            token = await self._backend.fetch_identity_token()
        except Exception as exc:
            self._logger.warning("Identity token fetch failed: %s", exc)
            return None, SyncErrorCode.TOKEN_UNAVAILABLE, str(exc)

        if not token:
            return None, SyncErrorCode.TOKEN_UNAVAILABLE, "Identity provider returned no token"

        try:
            if self._config.RESOLVE_TIMEOUT_S is not None:
                result = await asyncio.wait_for(
                    self._backend.resolve(token),
                    timeout=self._config.RESOLVE_TIMEOUT_S,
                )
            else:
                result = await self._backend.resolve(token)
        except asyncio.TimeoutError:
            return (
                None,
                SyncErrorCode.RESOLUTION_TRANSPORT_ERROR,
                f"Profile resolution timed out after {self._config.RESOLVE_TIMEOUT_S}s",
            )
        except Exception as exc:
            self._logger.warning("Profile resolver raised: %s", exc)
            return None, SyncErrorCode.RESOLUTION_TRANSPORT_ERROR, f"{type(exc).__name__}: {exc}"

        if isinstance(result, ProfileFound):
            return result.profile, None, ""
        if isinstance(result, ProfileNotFound):
            return None, SyncErrorCode.PROFILE_NOT_FOUND, ""
        if isinstance(result, ProfileTransportError):
            return None, SyncErrorCode.RESOLUTION_TRANSPORT_ERROR, result.detail
        return (
            None,
            SyncErrorCode.RESOLUTION_TRANSPORT_ERROR,
            f"Unexpected resolver result: {type(result).__name__}",
        )

    def _is_current(self, generation: int) -> bool:
        return generation == self._generation and self._backend.signal.is_authenticated

    def _resume_after_stale(self) -> None:
        # A new sign-in may have arrived while the stale pass was running;
        # its signal was ignored because the flag was still set.
        if not self._resync_requested:
            return
        self._resync_requested = False
        signal = self._backend.signal
        if signal.is_authenticated and not signal.is_loading:
            self._maybe_start_resolution()

    # ------------------------------------------------------------------
    # Outcome commits
    # ------------------------------------------------------------------

    def _install_profile(self, profile: UserProfile, action: str, navigate: bool = True) -> None:
        self._resolved = True
        self._not_found = False
        self._halted = False
        self._phase = SyncPhase.RESOLVED
        self._store.set(authenticated=True, user=profile, error=None, loading=False)
        self._provider_error = None
        log_audit_event(
            self._logger,
            action=action,
            entity_type="Session",
            entity_id=profile.id,
            user_id=profile.id,
            details={"email": profile.email, "sandbox": self._backend.is_sandbox},
        )
        if navigate:
            self._guard.evaluate(self._store.get(), self._phase)

    def _enter_profile_not_found(self) -> None:
        self._not_found = True
        self._phase = SyncPhase.PROFILE_NOT_FOUND
        self._store.set(authenticated=False, user=None, error=None, loading=False)
        self._log_event(
            logging.INFO,
            "PROFILE_NOT_FOUND",
            "Identity has no application account; sending user to sign-up.",
        )
        self._guard.evaluate(self._store.get(), self._phase)

    def _record_failure(self, code: SyncErrorCode, detail: str) -> None:
        self._attempt.retry_count += 1
        max_retries = self._policy.max_retries

        if self._policy.is_retryable(code) and self._attempt.retry_count < max_retries:
            message = attempt_error_message(code, self._attempt.retry_count, max_retries)
        else:
            self._halted = True
            message = SYNC_ERROR_MESSAGES[
                SyncErrorCode.MAX_RETRIES_EXCEEDED
                if self._policy.is_retryable(code)
                else code
            ]

        self._phase = SyncPhase.RESOLUTION_FAILED
        self._store.set(loading=False, error=message)
        self._log_event(
            logging.WARNING,
            "RESOLVE_FAILED",
            "Profile resolution failed (%s): %s",
            code,
            detail,
            error_code=str(code),
            retry_count=self._attempt.retry_count,
        )
        if self._halted:
            log_audit_event(
                self._logger,
                action="SYNC_HALTED",
                entity_type="Session",
                entity_id="anonymous",
                user_id="anonymous",
                details={"error_code": str(code), "attempts": self._attempt.retry_count},
            )
        self._guard.evaluate(self._store.get(), self._phase)

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def sign_in(self) -> None:
        """Start sign-in.

        Live: hands control to the identity provider, whose signals
        drive the rest.  Sandbox: installs the demo session at once and
        navigates home.
        """
        try:
            profile = await self._backend.sign_in(self._config.auth_callback_url)
        except Exception as exc:
            self._log_event(
                logging.ERROR,
                "SIGN_IN_FAILED",
                "Sign-in could not be started: %s",
                exc,
            )
            self._store.set(error=SYNC_ERROR_MESSAGES[SyncErrorCode.PROVIDER_ERROR])
            return

        self._signing_out = False

        if profile is None:
            self._logger.info("Sign-in handed off to the identity provider.")
            return

        self._attempt.reset()
        self._install_profile(profile, action="SIGN_IN", navigate=False)
        self._guard.issue(Route.HOME, NavigationReason.SIGNED_IN, force=True)

    async def sign_out(self) -> None:
        """End the session.  Idempotent and never raises.

        The store is cleared before the provider is contacted, and any
        resolution still in flight is invalidated.
        """
        previous_user = self._store.get().user

        self._generation += 1
        self._reset_sign_in_flags()
        self._phase = SyncPhase.UNAUTHENTICATED
        self._provider_error = None
        self._signing_out = not self._backend.is_sandbox
        self._store.set(authenticated=False, user=None, error=None, loading=False)

        try:
            await self._backend.sign_out(self._config.logout_redirect_url)
        except Exception as exc:
            self._log_event(
                logging.WARNING,
                "SIGN_OUT_FAILED",
                "Identity provider sign-out failed: %s",
                exc,
            )
            # No unauthenticated signal will follow; let later signals resolve.
            self._signing_out = False

        if previous_user is not None:
            log_audit_event(
                self._logger,
                action="SIGN_OUT",
                entity_type="Session",
                entity_id=previous_user.id,
                user_id=previous_user.id,
                details={"sandbox": self._backend.is_sandbox},
            )

        if self._backend.is_sandbox:
            self._guard.issue(Route.SIGN_IN, NavigationReason.SIGNED_OUT, force=True)

    async def get_access_token(self) -> Optional[str]:
        """Access token for API calls, or ``None`` when unavailable."""
        try:
            return await self._backend.fetch_access_token()
        except Exception as exc:
            self._logger.warning("Access token fetch failed: %s", exc)
            return None

    async def refresh_user(self) -> SyncResult:
        """Re-resolve the profile on demand.

        Waits for any automatic resolution to finish first.  Failures are
        reported in the result and the store but do not count against
        the automatic retry ceiling.
        """
        if not self._backend.signal.is_authenticated:
            return SyncResult(success=True)

        async with self._refresh_lock:
            await self.settle()

            generation = self._generation
            self._attempt.in_progress = True
            self._store.set(loading=True)
            try:
                profile, code, detail = await self._resolve_once()
            finally:
                self._attempt.in_progress = False

        if not self._is_current(generation):
            self._resume_after_stale()
            return SyncResult(success=False, error_message=_STALE_REFRESH_MESSAGE)

        if code is None and profile is not None:
            self._install_profile(profile, action="PROFILE_REFRESHED")
            return SyncResult(success=True, user=profile)

        if code == SyncErrorCode.PROFILE_NOT_FOUND:
            self._enter_profile_not_found()
            return SyncResult(
                success=False,
                error_code=code,
                error_message=SYNC_ERROR_MESSAGES[code],
            )

        failure = code or SyncErrorCode.RESOLUTION_TRANSPORT_ERROR
        message = SYNC_ERROR_MESSAGES[failure]
        self._store.set(loading=False, error=message)
        self._log_event(
            logging.WARNING,
            "REFRESH_FAILED",
            "Profile refresh failed (%s): %s",
            failure,
            detail,
            error_code=str(failure),
        )
        return SyncResult(success=False, error_code=failure, error_message=message)

    async def check_if_user_signed_up(self, subject: str) -> bool:
        """Whether *subject* already has an application account.

        Any failure (no token, transport error) yields ``False``.
        """
        try:
            token = await self._backend.fetch_identity_token()
            if not token:
                return False
            return await self._backend.is_registered(subject, token)
        except Exception as exc:
            self._logger.warning("Sign-up status check failed: %s", exc)
            return False

"""
Unit tests for the session synchronization controller.

Drives a live-pipeline ``SyncController`` through fake provider signals
and an ``AsyncMock`` resolver.

Run with:
    pytest tests/test_sync_controller.py -v
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from conftest import make_profile
from sessionsync.models import (
    SYNC_ERROR_MESSAGES,
    ProfileFound,
    ProfileNotFound,
    ProfileTransportError,
    SyncErrorCode,
    SyncPhase,
)
from sessionsync.services.session_backend import LiveBackend
from sessionsync.services.sync_controller import SyncController


def _gated_resolver(resolver: AsyncMock, profile_name: str = "Ada") -> asyncio.Event:
    """Make ``resolver.resolve`` block until the returned event is set."""
    gate = asyncio.Event()

    async def _resolve(bearer_token: str) -> ProfileFound:
        await gate.wait()
        return ProfileFound(profile=make_profile(full_name=profile_name))

    resolver.resolve.side_effect = _resolve
    return gate


class TestResolution:
    """Signal-driven resolution of the application profile."""

    async def test_ada_scenario(self, controller, provider, resolver, navigator, store):
        """tok-1 resolves to Ada; the guard moves the user off /login."""
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        state = store.get()
        assert state.authenticated is True
        assert state.user is not None
        assert state.user.id == "u1"
        assert state.user.full_name == "Ada"
        assert state.loading is False
        assert state.error is None
        assert controller.phase == SyncPhase.RESOLVED
        resolver.resolve.assert_awaited_once_with("tok-1")
        assert navigator.history == ["/home"]

    async def test_bootstrapping_sets_loading(self, controller, store):
        controller.attach()

        assert store.get().loading is True
        assert controller.phase == SyncPhase.BOOTSTRAPPING

    async def test_loading_until_resolution_commits(self, controller, provider, resolver, store):
        gate = _gated_resolver(resolver)
        controller.attach()
        provider.emit(is_authenticated=True)
        await asyncio.sleep(0)

        assert store.get().loading is True
        assert store.get().authenticated is False
        assert controller.attempt.in_progress is True
        assert controller.phase == SyncPhase.RESOLVING

        gate.set()
        await controller.settle()
        assert store.get().loading is False
        assert controller.attempt.in_progress is False

    async def test_no_duplicate_resolution(self, controller, provider, resolver):
        """Repeated signals during and after a resolution start nothing new."""
        gate = _gated_resolver(resolver)
        controller.attach()

        provider.emit(is_authenticated=True)
        await asyncio.sleep(0)
        provider.emit(is_authenticated=True)
        provider.emit(is_authenticated=True)
        gate.set()
        await controller.settle()

        assert resolver.resolve.await_count == 1

        provider.emit(is_authenticated=True)
        provider.emit(is_authenticated=True)
        await controller.settle()
        assert resolver.resolve.await_count == 1

    async def test_provider_loading_after_resolved_does_not_re_resolve(
        self, controller, provider, resolver, store,
    ):
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        provider.emit(is_authenticated=True, is_loading=True)
        assert store.get().loading is True
        provider.emit(is_authenticated=True)
        await controller.settle()

        assert resolver.resolve.await_count == 1
        assert store.get().loading is False
        assert controller.phase == SyncPhase.RESOLVED

    async def test_resolve_timeout_counts_as_transport_failure(
        self, store, provider, resolver, guard, config, logger,
    ):
        _gated_resolver(resolver)
        timed = SyncController(
            store=store,
            backend=LiveBackend(provider=provider, resolver=resolver),
            guard=guard,
            config=config.model_copy(update={"RESOLVE_TIMEOUT_S": 0.01}),
            logger=logger,
        )
        timed.attach()
        provider.emit(is_authenticated=True)
        await timed.settle()

        assert timed.attempt.retry_count == 1
        assert timed.phase == SyncPhase.RESOLUTION_FAILED
        assert store.get().error == "Failed to fetch user data (attempt 1 of 3)."


class TestRetryCeiling:
    """Retryable failures are bounded by ``MAX_SYNC_RETRIES``."""

    async def test_exactly_three_attempts_then_stop(self, controller, provider, resolver, store):
        resolver.resolve.return_value = ProfileTransportError(detail="HTTP 503")
        controller.attach()

        for attempt in (1, 2, 3):
            provider.emit(is_authenticated=True)
            await controller.settle()
            assert resolver.resolve.await_count == attempt

        assert controller.attempt.retry_count == 3
        assert controller.phase == SyncPhase.RESOLUTION_FAILED
        assert store.get().error == SYNC_ERROR_MESSAGES[SyncErrorCode.MAX_RETRIES_EXCEEDED]

        provider.emit(is_authenticated=True)
        provider.emit(is_authenticated=True)
        await controller.settle()
        assert resolver.resolve.await_count == 3

    async def test_attempt_scoped_message_below_ceiling(self, controller, provider, resolver, store):
        resolver.resolve.return_value = ProfileTransportError(detail="HTTP 500")
        controller.attach()

        provider.emit(is_authenticated=True)
        await controller.settle()
        assert store.get().error == "Failed to fetch user data (attempt 1 of 3)."

        provider.emit(is_authenticated=True)
        await controller.settle()
        assert store.get().error == "Failed to fetch user data (attempt 2 of 3)."
        assert store.get().authenticated is False

    async def test_failures_stay_on_protected_route(
        self, controller, provider, resolver, store, navigator,
    ):
        navigator.route = "/home"
        resolver.resolve.return_value = ProfileTransportError(detail="HTTP 503")
        controller.attach()

        provider.emit(is_authenticated=True)
        await controller.settle()
        assert store.get().error == "Failed to fetch user data (attempt 1 of 3)."
        assert navigator.history == []

        for _ in range(2):
            provider.emit(is_authenticated=True)
            await controller.settle()

        assert store.get().error == SYNC_ERROR_MESSAGES[SyncErrorCode.MAX_RETRIES_EXCEEDED]
        assert controller.phase == SyncPhase.RESOLUTION_FAILED
        assert navigator.history == []

    async def test_fresh_sign_in_resets_ceiling(self, controller, provider, resolver, store):
        resolver.resolve.return_value = ProfileTransportError(detail="down")
        controller.attach()
        for _ in range(3):
            provider.emit(is_authenticated=True)
            await controller.settle()
        assert resolver.resolve.await_count == 3

        provider.emit(is_authenticated=False)
        assert controller.attempt.retry_count == 0
        assert store.get().error is None

        resolver.resolve.return_value = ProfileFound(profile=make_profile())
        provider.emit(is_authenticated=True)
        await controller.settle()

        assert resolver.resolve.await_count == 4
        assert store.get().authenticated is True
        assert controller.attempt.retry_count == 0

    async def test_missing_token_is_retryable(self, controller, provider, resolver, store):
        provider.fetch_identity_token.return_value = None
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        resolver.resolve.assert_not_awaited()
        assert controller.attempt.retry_count == 1
        assert store.get().error == "Failed to get identity token (attempt 1 of 3)."

    async def test_token_exception_is_converted(self, controller, provider, resolver, store):
        provider.fetch_identity_token.side_effect = RuntimeError("token endpoint down")
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        resolver.resolve.assert_not_awaited()
        assert controller.phase == SyncPhase.RESOLUTION_FAILED
        assert store.get().error == "Failed to get identity token (attempt 1 of 3)."

    async def test_resolver_exception_is_converted(self, controller, provider, resolver, store):
        resolver.resolve.side_effect = ConnectionError("reset by peer")
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        assert controller.attempt.retry_count == 1
        assert store.get().error == "Failed to fetch user data (attempt 1 of 3)."


class TestProfileNotFound:
    """An identity without an account goes to sign-up, never to retries."""

    async def test_not_found_bypasses_retry(self, controller, provider, resolver, store, navigator):
        resolver.resolve.return_value = ProfileNotFound()
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        assert controller.phase == SyncPhase.PROFILE_NOT_FOUND
        assert controller.attempt.retry_count == 0
        assert store.get().authenticated is False
        assert store.get().error is None
        assert navigator.history == ["/signup"]

        provider.emit(is_authenticated=True)
        await controller.settle()
        assert resolver.resolve.await_count == 1


class TestStaleDiscard:
    """Results that land after the session ended are dropped."""

    async def test_unauthenticated_during_resolution(self, controller, provider, resolver, store):
        gate = _gated_resolver(resolver)
        controller.attach()
        provider.emit(is_authenticated=True)
        await asyncio.sleep(0)

        provider.emit(is_authenticated=False)
        gate.set()
        await controller.settle()

        state = store.get()
        assert state.authenticated is False
        assert state.user is None
        assert controller.phase == SyncPhase.UNAUTHENTICATED

    async def test_sign_out_during_resolution(self, controller, provider, resolver, store):
        gate = _gated_resolver(resolver)
        controller.attach()
        provider.emit(is_authenticated=True)
        await asyncio.sleep(0)

        await controller.sign_out()
        gate.set()
        await controller.settle()

        assert store.get().authenticated is False
        assert store.get().user is None

        # The provider has not confirmed the sign-out yet.
        provider.emit(is_authenticated=True)
        await controller.settle()
        assert resolver.resolve.await_count == 1

    async def test_new_sign_in_while_stale_pass_runs(self, controller, provider, resolver, store):
        gate = _gated_resolver(resolver, profile_name="Grace")
        controller.attach()
        provider.emit(is_authenticated=True)
        await asyncio.sleep(0)

        provider.emit(is_authenticated=False)
        provider.emit(is_authenticated=True)
        gate.set()
        await controller.settle()

        assert resolver.resolve.await_count == 2
        assert store.get().authenticated is True
        assert store.get().user.full_name == "Grace"


class TestProviderErrors:
    """Provider errors are displayed but never end the session."""

    async def test_error_keeps_authenticated(self, controller, provider, store):
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        provider.emit(is_authenticated=True, error="Token refresh failed")
        assert store.get().authenticated is True
        assert store.get().user is not None
        assert store.get().error == "Token refresh failed"

        provider.emit(is_authenticated=True)
        assert store.get().error is None
        assert store.get().authenticated is True

    async def test_empty_error_uses_generic_message(self, controller, provider, store):
        controller.attach()
        provider.emit(is_authenticated=False, error="")

        assert store.get().error == SYNC_ERROR_MESSAGES[SyncErrorCode.PROVIDER_ERROR]

    async def test_error_survives_unauthenticated_transition(self, controller, provider, store):
        controller.attach()
        provider.emit(is_authenticated=False, error="Consent denied")

        assert store.get().authenticated is False
        assert store.get().error == "Consent denied"

    async def test_error_during_failed_resolution_stays_put(
        self, controller, provider, resolver, store, navigator,
    ):
        navigator.route = "/home"
        resolver.resolve.return_value = ProfileTransportError(detail="HTTP 500")
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        provider.emit(is_authenticated=True, error="Token refresh failed")
        await controller.settle()

        assert controller.attempt.retry_count == 2
        assert controller.phase == SyncPhase.RESOLUTION_FAILED
        assert store.get().error == "Failed to fetch user data (attempt 2 of 3)."
        assert navigator.history == []


class TestOperations:
    """User-initiated controller operations."""

    async def test_sign_in_hands_off_to_provider(self, controller, provider, store):
        controller.attach()
        await controller.sign_in()

        provider.begin_sign_in.assert_awaited_once_with("https://app.example.com/callback")
        assert store.get().authenticated is False

    async def test_sign_in_failure_is_reported(self, controller, provider, store):
        provider.begin_sign_in.side_effect = RuntimeError("popup blocked")
        controller.attach()
        await controller.sign_in()

        assert store.get().error == SYNC_ERROR_MESSAGES[SyncErrorCode.PROVIDER_ERROR]

    async def test_sign_out_is_idempotent(self, controller, provider, store):
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        await controller.sign_out()
        await controller.sign_out()

        state = store.get()
        assert state.authenticated is False
        assert state.user is None
        assert state.error is None
        assert provider.begin_sign_out.await_count == 2
        provider.begin_sign_out.assert_awaited_with("https://app.example.com")

    async def test_sign_out_never_raises(self, controller, provider, store):
        provider.begin_sign_out.side_effect = RuntimeError("network down")
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        await controller.sign_out()

        assert store.get().authenticated is False

    async def test_failed_sign_out_does_not_block_resolution(
        self, controller, provider, resolver, store,
    ):
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        provider.begin_sign_out.side_effect = RuntimeError("network down")
        await controller.sign_out()
        assert store.get().user is None

        provider.emit(is_authenticated=True)
        await controller.settle()
        provider.emit(is_authenticated=True)
        await controller.settle()

        assert resolver.resolve.await_count == 2
        assert store.get().authenticated is True
        assert store.get().user is not None

    async def test_sign_in_clears_pending_sign_out(self, controller, provider, resolver, store):
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        await controller.sign_out()
        await controller.sign_in()
        provider.emit(is_authenticated=True)
        await controller.settle()

        assert resolver.resolve.await_count == 2
        assert store.get().authenticated is True

    async def test_get_access_token(self, controller, provider):
        assert await controller.get_access_token() == "access-1"

    async def test_get_access_token_failure_returns_none(self, controller, provider):
        provider.fetch_access_token.side_effect = RuntimeError("expired")

        assert await controller.get_access_token() is None

    async def test_check_if_user_signed_up(self, controller, resolver):
        assert await controller.check_if_user_signed_up("sub-1") is True
        resolver.is_registered.assert_awaited_once_with("sub-1", "tok-1")

    async def test_check_if_user_signed_up_without_token(self, controller, provider, resolver):
        provider.fetch_identity_token.return_value = None

        assert await controller.check_if_user_signed_up("sub-1") is False
        resolver.is_registered.assert_not_awaited()

    async def test_check_if_user_signed_up_failure(self, controller, resolver):
        resolver.is_registered.side_effect = RuntimeError("boom")

        assert await controller.check_if_user_signed_up("sub-1") is False

    async def test_close_detaches_and_cancels(self, controller, provider, resolver):
        _gated_resolver(resolver)
        controller.attach()
        assert provider.listener_count == 1
        provider.emit(is_authenticated=True)
        await asyncio.sleep(0)

        await controller.close()

        assert provider.listener_count == 0
        assert controller.attempt.in_progress is False


class TestRefreshUser:
    """On-demand re-resolution outside the retry counter."""

    async def test_noop_when_unauthenticated(self, controller, resolver):
        controller.attach()

        result = await controller.refresh_user()

        assert result.success is True
        assert result.user is None
        resolver.resolve.assert_not_awaited()

    async def test_replaces_profile(self, controller, provider, resolver, store):
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        resolver.resolve.return_value = ProfileFound(profile=make_profile(full_name="Ada Lovelace"))
        result = await controller.refresh_user()

        assert result.success is True
        assert result.user is not None
        assert result.user.full_name == "Ada Lovelace"
        assert store.get().user.full_name == "Ada Lovelace"

    async def test_failure_does_not_count_against_retries(
        self, controller, provider, resolver, store,
    ):
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        resolver.resolve.return_value = ProfileTransportError(detail="HTTP 502")
        result = await controller.refresh_user()

        assert result.success is False
        assert result.error_code == SyncErrorCode.RESOLUTION_TRANSPORT_ERROR
        assert result.error_message == SYNC_ERROR_MESSAGES[SyncErrorCode.RESOLUTION_TRANSPORT_ERROR]
        assert controller.attempt.retry_count == 0
        assert store.get().authenticated is True
        assert store.get().loading is False

    async def test_waits_for_in_flight_resolution(self, controller, provider, resolver):
        gate = _gated_resolver(resolver)
        controller.attach()
        provider.emit(is_authenticated=True)
        await asyncio.sleep(0)

        refresh = asyncio.create_task(controller.refresh_user())
        await asyncio.sleep(0)
        await asyncio.sleep(0)
        assert resolver.resolve.await_count == 1

        gate.set()
        result = await refresh

        assert result.success is True
        assert resolver.resolve.await_count == 2

    async def test_not_found_redirects_to_sign_up(
        self, controller, provider, resolver, navigator, clock,
    ):
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        resolver.resolve.return_value = ProfileNotFound()
        clock.advance(2.0)
        result = await controller.refresh_user()

        assert result.success is False
        assert result.error_code == SyncErrorCode.PROFILE_NOT_FOUND
        assert controller.phase == SyncPhase.PROFILE_NOT_FOUND
        assert navigator.history[-1] == "/signup"

    async def test_concurrent_refreshes_run_one_at_a_time(self, controller, provider, resolver):
        controller.attach()
        provider.emit(is_authenticated=True)
        await controller.settle()

        gate = _gated_resolver(resolver, profile_name="Ada Lovelace")
        first = asyncio.create_task(controller.refresh_user())
        second = asyncio.create_task(controller.refresh_user())
        for _ in range(3):
            await asyncio.sleep(0)
        assert resolver.resolve.await_count == 2

        gate.set()
        results = await asyncio.gather(first, second)

        assert all(result.success for result in results)
        assert resolver.resolve.await_count == 3
        assert controller.attempt.in_progress is False


@pytest.mark.parametrize("attempts", [1, 2, 5])
async def test_retry_ceiling_follows_config(store, provider, resolver, guard, config, logger, attempts):
    resolver.resolve.return_value = ProfileTransportError(detail="down")
    limited = SyncController(
        store=store,
        backend=LiveBackend(provider=provider, resolver=resolver),
        guard=guard,
        config=config.model_copy(update={"MAX_SYNC_RETRIES": attempts}),
        logger=logger,
    )
    limited.attach()

    for _ in range(attempts + 2):
        provider.emit(is_authenticated=True)
        await limited.settle()

    assert resolver.resolve.await_count == attempts
    assert store.get().error == SYNC_ERROR_MESSAGES[SyncErrorCode.MAX_RETRIES_EXCEEDED]

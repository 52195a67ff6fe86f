"""
Tests for the session state machine.

Tests cover token reuse, refresh inside the skew window, coalescing of
concurrent refreshes, failure handling, logout, and the managed-mode
variant backed by the auth backend.
"""

import threading
import time

import pytest
from unittest.mock import MagicMock

from spotctl.enums import ExchangeErrorKind, SessionState
from spotctl.services.session_service import (
    MANAGED_SESSION_KEY,
    SELF_MANAGED_TOKEN_KEY,
    ManagedSession,
    SelfManagedSession,
)
from spotctl.spotify.auth import TokenBundle, TokenExchanger
from spotctl.spotify.exceptions import ExchangeError, SessionNotFoundError
from spotctl.spotify.managed import ManagedTokenClient, VerifiedToken


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def exchanger():
    return MagicMock(spec=TokenExchanger)


@pytest.fixture
def session(memory_store, exchanger, clock):
    return SelfManagedSession(memory_store, exchanger, clock=clock)


def _refreshed(clock, access='refreshed_access'):
    return TokenBundle(access, 'refreshed_refresh', expires_at=clock() + 3600)


# =============================================================================
# Self-managed: token retrieval
# =============================================================================

class TestSelfManagedGetValidAccessToken:
    """Tests for SelfManagedSession.get_valid_access_token."""

    def test_no_bundle(self, session, exchanger):
        """No stored bundle means no token and no network call."""
        assert session.get_valid_access_token() is None
        exchanger.refresh.assert_not_called()

    def test_valid_bundle_returned_without_refresh(
        self, session, exchanger, valid_bundle
    ):
        session.store_bundle(valid_bundle)

        assert session.get_valid_access_token() == 'valid_access_token'
        exchanger.refresh.assert_not_called()

    def test_expiring_bundle_refreshed_and_persisted(
        self, session, exchanger, expiring_bundle, memory_store, clock
    ):
        session.store_bundle(expiring_bundle)
        exchanger.refresh.return_value = _refreshed(clock)

        assert session.get_valid_access_token() == 'refreshed_access'
        exchanger.refresh.assert_called_once_with('expiring_refresh_token')
        stored = memory_store.get_json(SELF_MANAGED_TOKEN_KEY)
        assert stored['access_token'] == 'refreshed_access'

        # The persisted result is reused on the next call.
        assert session.get_valid_access_token() == 'refreshed_access'
        assert exchanger.refresh.call_count == 1

    def test_refresh_triggers_at_skew_boundary(
        self, session, exchanger, valid_bundle, clock
    ):
        session.store_bundle(valid_bundle)
        exchanger.refresh.return_value = _refreshed(clock)

        clock.advance(3600 - 300 - 1)
        assert session.get_valid_access_token() == 'valid_access_token'

        clock.advance(1)
        assert session.get_valid_access_token() == 'refreshed_access'

    def test_transient_failure_keeps_bundle(
        self, session, exchanger, expiring_bundle, memory_store
    ):
        """A network failure returns None but leaves the bundle stored."""
        session.store_bundle(expiring_bundle)
        exchanger.refresh.side_effect = ExchangeError(
            ExchangeErrorKind.NETWORK, 'offline'
        )

        assert session.get_valid_access_token() is None
        assert memory_store.get_json(SELF_MANAGED_TOKEN_KEY) is not None
        assert session.session_state() == SessionState.EXPIRING

    @pytest.mark.parametrize("error", [
        ExchangeError(ExchangeErrorKind.MALFORMED, 'non-JSON body', status_code=200),
        ExchangeError(ExchangeErrorKind.INVALID_REQUEST, 'empty refresh token'),
        ExchangeError(ExchangeErrorKind.PROVIDER, 'rate limited', status_code=429),
    ])
    def test_non_rejection_failure_keeps_bundle(
        self, session, exchanger, expiring_bundle, memory_store, error
    ):
        """Only Spotify refusing the refresh token ends the session."""
        session.store_bundle(expiring_bundle)
        exchanger.refresh.side_effect = error

        assert session.get_valid_access_token() is None
        assert memory_store.get_json(SELF_MANAGED_TOKEN_KEY) is not None
        assert session.session_state() == SessionState.EXPIRING
        assert session.has_credentials() is True

    def test_rejected_refresh_discards_bundle(
        self, session, exchanger, expiring_bundle, memory_store
    ):
        """invalid_grant removes the bundle and marks the session invalid."""
        session.store_bundle(expiring_bundle)
        exchanger.refresh.side_effect = ExchangeError(
            ExchangeErrorKind.PROVIDER, 'invalid_grant', status_code=400
        )

        assert session.get_valid_access_token() is None
        assert memory_store.get(SELF_MANAGED_TOKEN_KEY) is None
        assert session.session_state() == SessionState.INVALID

        exchanger.refresh.reset_mock()
        assert session.get_valid_access_token() is None
        exchanger.refresh.assert_not_called()

    def test_corrupt_bundle_removed(self, session, memory_store):
        memory_store.set_json(SELF_MANAGED_TOKEN_KEY, {'access_token': 'only'})

        assert session.get_valid_access_token() is None
        assert memory_store.get(SELF_MANAGED_TOKEN_KEY) is None

    def test_concurrent_callers_share_one_refresh(
        self, session, exchanger, expiring_bundle, clock
    ):
        """Many threads racing on an expiring token cause one refresh."""
        session.store_bundle(expiring_bundle)

        def slow_refresh(refresh_token):
            time.sleep(0.05)
            return _refreshed(clock)

        exchanger.refresh.side_effect = slow_refresh
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(session.get_valid_access_token())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert exchanger.refresh.call_count == 1
        assert results == ['refreshed_access'] * 8


# =============================================================================
# Self-managed: state and helpers
# =============================================================================

class TestSelfManagedState:
    """Tests for session_state, has_credentials and is_authenticated."""

    def test_unauthenticated_initially(self, session):
        assert session.session_state() == SessionState.UNAUTHENTICATED
        assert session.has_credentials() is False
        assert session.is_authenticated() is False

    def test_valid(self, session, valid_bundle):
        session.store_bundle(valid_bundle)
        assert session.session_state() == SessionState.VALID

    def test_expiring(self, session, expiring_bundle):
        session.store_bundle(expiring_bundle)
        assert session.session_state() == SessionState.EXPIRING

    def test_quick_check_can_be_optimistic(
        self, session, exchanger, expiring_bundle
    ):
        """has_credentials is true for a bundle whose refresh will fail."""
        session.store_bundle(expiring_bundle)
        exchanger.refresh.side_effect = ExchangeError(
            ExchangeErrorKind.PROVIDER, 'invalid_grant', status_code=400
        )

        assert session.has_credentials() is True
        assert session.is_authenticated() is False

    def test_store_requires_refresh_token(self, session):
        with pytest.raises(ValueError):
            session.store_bundle(TokenBundle('a', '', expires_at=0))

    def test_logout_removes_bundle(self, session, valid_bundle, memory_store):
        session.store_bundle(valid_bundle)

        session.logout()
        session.logout()

        assert memory_store.get(SELF_MANAGED_TOKEN_KEY) is None
        assert session.session_state() == SessionState.UNAUTHENTICATED

    def test_store_after_invalid_resets_state(
        self, session, exchanger, expiring_bundle, valid_bundle
    ):
        session.store_bundle(expiring_bundle)
        exchanger.refresh.side_effect = ExchangeError(
            ExchangeErrorKind.PROVIDER, 'invalid_grant', status_code=400
        )
        session.get_valid_access_token()

        session.store_bundle(valid_bundle)
        assert session.session_state() == SessionState.VALID


# =============================================================================
# Managed mode
# =============================================================================

@pytest.fixture
def backend():
    return MagicMock(spec=ManagedTokenClient)


@pytest.fixture
def managed(memory_store, backend, clock):
    return ManagedSession(memory_store, backend, clock=clock)


class TestManagedSession:
    """Tests for ManagedSession."""

    def test_no_artifact(self, managed, backend):
        assert managed.get_valid_access_token() is None
        backend.verify.assert_not_called()
        assert managed.session_state() == SessionState.UNAUTHENTICATED

    def test_verifies_and_caches(self, managed, backend, clock):
        managed.store_artifact('artifact')
        backend.verify.return_value = VerifiedToken('tok', clock() + 3600)

        assert managed.get_valid_access_token() == 'tok'
        assert managed.get_valid_access_token() == 'tok'
        backend.verify.assert_called_once_with('artifact')
        assert managed.session_state() == SessionState.VALID

    def test_reverifies_inside_skew(self, managed, backend, clock):
        managed.store_artifact('artifact', VerifiedToken('old', clock() + 3600))
        backend.verify.return_value = VerifiedToken('new', clock() + 7200)

        assert managed.get_valid_access_token() == 'old'
        backend.verify.assert_not_called()

        clock.advance(3600 - 200)
        assert managed.session_state() == SessionState.EXPIRING
        assert managed.get_valid_access_token() == 'new'

    def test_unknown_session_discards_artifact(
        self, managed, backend, memory_store
    ):
        managed.store_artifact('artifact')
        backend.verify.side_effect = SessionNotFoundError('gone')

        assert managed.get_valid_access_token() is None
        assert memory_store.get(MANAGED_SESSION_KEY) is None
        assert managed.session_state() == SessionState.INVALID

    def test_backend_unreachable_keeps_artifact(
        self, managed, backend, memory_store
    ):
        managed.store_artifact('artifact')
        backend.verify.side_effect = ExchangeError(ExchangeErrorKind.NETWORK)

        assert managed.get_valid_access_token() is None
        assert memory_store.get(MANAGED_SESSION_KEY) == 'artifact'

    def test_logout_notifies_backend(self, managed, backend, memory_store):
        managed.store_artifact('artifact')

        managed.logout()

        backend.logout.assert_called_once_with('artifact')
        assert memory_store.get(MANAGED_SESSION_KEY) is None

    def test_logout_survives_backend_failure(
        self, managed, backend, memory_store
    ):
        """Local deletion happens even when the backend call fails."""
        managed.store_artifact('artifact')
        backend.logout.side_effect = ExchangeError(ExchangeErrorKind.NETWORK)

        managed.logout()

        assert memory_store.get(MANAGED_SESSION_KEY) is None
        assert managed.is_authenticated() is False
        assert managed.session_state() == SessionState.UNAUTHENTICATED

    def test_logout_without_artifact_skips_backend(self, managed, backend):
        managed.logout()
        backend.logout.assert_not_called()

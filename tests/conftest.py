"""
Pytest configuration and shared fixtures for spotctl tests.

This module provides common fixtures used across all test modules,
including a controllable clock, sample credentials and token bundles,
in-memory stores, and the Flask backend app.
"""

import pytest
from spotctl.services import MemoryCredentialStore
from spotctl.spotify import SpotifyCredentials, TokenBundle


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Sample Data Fixtures
# =============================================================================

@pytest.fixture
def clock():
    """A FakeClock starting at a fixed timestamp."""
    return FakeClock()


@pytest.fixture
def credentials():
    """Valid self-managed SpotifyCredentials."""
    return SpotifyCredentials(
        client_id='test_client_id',
        client_secret='test_client_secret',
        redirect_uri='http://localhost:8888/callback',
    )


@pytest.fixture
def public_credentials():
    """Credentials without a client secret."""
    return SpotifyCredentials(
        client_id='test_client_id',
        redirect_uri='http://localhost:8888/callback',
    )


@pytest.fixture
def sample_token_response():
    """A Spotify token endpoint response body."""
    return {
        'access_token': 'test_access_token_12345',
        'token_type': 'Bearer',
        'expires_in': 3600,
        'refresh_token': 'test_refresh_token_67890',
        'scope': 'user-read-playback-state',
    }


@pytest.fixture
def valid_bundle(clock):
    """A bundle that expires an hour from now."""
    return TokenBundle(
        access_token='valid_access_token',
        refresh_token='valid_refresh_token',
        expires_at=clock() + 3600,
        scope='user-read-playback-state',
    )


@pytest.fixture
def expiring_bundle(clock):
    """A bundle inside the five-minute refresh window."""
    return TokenBundle(
        access_token='expiring_access_token',
        refresh_token='expiring_refresh_token',
        expires_at=clock() + 60,
    )


@pytest.fixture
def memory_store():
    """An empty in-memory credential store."""
    return MemoryCredentialStore()


# =============================================================================
# Flask App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Backend app with the testing configuration."""
    from spotctl import create_app

    app = create_app('testing')
    return app


@pytest.fixture
def app_context(app):
    """Push an application context for the test."""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()

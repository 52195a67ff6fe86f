"""
Tests for the managed backend's HTTP routes.

The broker is rebuilt around a mocked TokenExchanger so no request
leaves the test process.
"""

import re
import time

import pytest
from unittest.mock import MagicMock

from spotctl.enums import ExchangeErrorKind
from spotctl.services import (
    ArtifactSigner,
    MemoryCredentialStore,
    SessionBroker,
    StateRegistry,
)
from spotctl.spotify import ExchangeError, TokenBundle, TokenExchanger


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def exchanger():
    mock = MagicMock(spec=TokenExchanger)
    mock.get_auth_url.side_effect = (
        lambda state: f"https://accounts.spotify.com/authorize?state={state}"
    )
    mock.exchange_code.return_value = TokenBundle(
        'route_access', 'route_refresh', expires_at=time.time() + 3600
    )
    return mock


@pytest.fixture
def broker(app, exchanger):
    store = MemoryCredentialStore()
    broker = SessionBroker(
        exchanger, store, StateRegistry(store), ArtifactSigner('route-secret')
    )
    app.extensions['spotctl_broker'] = broker
    return broker


def _artifact_from(html):
    match = re.search(r'id="session-token">([^<]+)</div>', html)
    assert match, html
    return match.group(1)


def _login(client):
    state = client.get('/auth/start').get_json()['state']
    response = client.get(f'/auth/callback?code=auth_code&state={state}')
    return _artifact_from(response.get_data(as_text=True))


# =============================================================================
# Health
# =============================================================================

class TestHealth:
    """Tests for /health."""

    def test_health_ok(self, client):
        response = client.get('/health')

        assert response.status_code == 200
        data = response.get_json()
        assert data['status'] == 'ok'
        assert data['store'] == 'memory'
        assert data['timestamp'] > 0


# =============================================================================
# /auth/start and /auth/callback
# =============================================================================

class TestAuthStart:
    """Tests for /auth/start."""

    def test_returns_url_and_state(self, client, broker):
        response = client.get('/auth/start')

        assert response.status_code == 200
        data = response.get_json()
        assert data['authUrl'].endswith(f"state={data['state']}")
        assert len(data['state']) >= 16
        assert broker.states.pending_count() == 1


class TestAuthCallback:
    """Tests for /auth/callback."""

    def test_success_page_shows_artifact(self, client, broker, exchanger):
        state = client.get('/auth/start').get_json()['state']

        response = client.get(f'/auth/callback?code=auth_code&state={state}')

        assert response.status_code == 200
        assert response.mimetype == 'text/html'
        artifact = _artifact_from(response.get_data(as_text=True))
        assert broker.verify(artifact).access_token == 'route_access'
        exchanger.exchange_code.assert_called_once_with('auth_code')

    def test_provider_error(self, client, broker, exchanger):
        response = client.get('/auth/callback?error=access_denied')

        assert response.status_code == 400
        assert 'access_denied' in response.get_data(as_text=True)
        exchanger.exchange_code.assert_not_called()

    def test_missing_code(self, client, broker):
        state = client.get('/auth/start').get_json()['state']

        response = client.get(f'/auth/callback?state={state}')
        assert response.status_code == 400

    def test_missing_state(self, client, broker, exchanger):
        response = client.get('/auth/callback?code=auth_code')

        assert response.status_code == 400
        exchanger.exchange_code.assert_not_called()

    def test_unknown_state(self, client, broker, exchanger):
        response = client.get('/auth/callback?code=c&state=' + 'u' * 32)

        assert response.status_code == 400
        exchanger.exchange_code.assert_not_called()

    def test_replayed_state(self, client, broker):
        state = client.get('/auth/start').get_json()['state']
        client.get(f'/auth/callback?code=c&state={state}')

        response = client.get(f'/auth/callback?code=c&state={state}')
        assert response.status_code == 400

    def test_exchange_failure(self, client, broker, exchanger):
        exchanger.exchange_code.side_effect = ExchangeError(
            ExchangeErrorKind.PROVIDER, 'invalid_grant', status_code=400
        )
        state = client.get('/auth/start').get_json()['state']

        response = client.get(f'/auth/callback?code=c&state={state}')
        assert response.status_code == 502

    def test_error_text_is_escaped(self, client, broker):
        response = client.get(
            '/auth/callback?error=%3Cscript%3Ealert(1)%3C/script%3E'
        )
        body = response.get_data(as_text=True)
        assert '<script>alert(1)</script>' not in body
        assert '&lt;script&gt;' in body


# =============================================================================
# /auth/verify
# =============================================================================

class TestAuthVerify:
    """Tests for /auth/verify."""

    def test_success(self, client, broker):
        artifact = _login(client)

        response = client.post('/auth/verify', json={'sessionToken': artifact})

        assert response.status_code == 200
        data = response.get_json()
        assert data['access_token'] == 'route_access'
        assert data['expires_at'] > time.time()

    def test_missing_body(self, client, broker):
        response = client.post('/auth/verify')

        assert response.status_code == 400
        assert response.get_json()['success'] is False

    def test_missing_field(self, client, broker):
        response = client.post('/auth/verify', json={'other': 'x'})
        assert response.status_code == 400

    def test_blank_token(self, client, broker):
        response = client.post('/auth/verify', json={'sessionToken': '   '})
        assert response.status_code == 400

    def test_invalid_signature(self, client, broker):
        response = client.post('/auth/verify', json={'sessionToken': 'a.b.c'})

        assert response.status_code == 401
        data = response.get_json()
        assert data == {
            'success': False,
            'message': 'Invalid session token.',
            'category': 'error',
        }

    def test_unknown_session(self, client, broker):
        orphan = ArtifactSigner('route-secret').mint(
            TokenBundle('a', 'r', expires_at=time.time() + 3600)
        )

        response = client.post('/auth/verify', json={'sessionToken': orphan})
        assert response.status_code == 401

    def test_refresh_rejected(self, client, broker, exchanger):
        exchanger.exchange_code.return_value = TokenBundle(
            'old', 'revoked', expires_at=time.time() + 10
        )
        exchanger.refresh.side_effect = ExchangeError(
            ExchangeErrorKind.PROVIDER, 'invalid_grant', status_code=400
        )
        artifact = _login(client)

        response = client.post('/auth/verify', json={'sessionToken': artifact})
        assert response.status_code == 401

        # The mirror entry is gone for good.
        exchanger.refresh.side_effect = None
        response = client.post('/auth/verify', json={'sessionToken': artifact})
        assert response.status_code == 401

    def test_refresh_unavailable(self, client, broker, exchanger):
        exchanger.exchange_code.return_value = TokenBundle(
            'old', 'refresh', expires_at=time.time() + 10
        )
        exchanger.refresh.side_effect = ExchangeError(ExchangeErrorKind.NETWORK)
        artifact = _login(client)

        response = client.post('/auth/verify', json={'sessionToken': artifact})
        assert response.status_code == 502


# =============================================================================
# /auth/logout
# =============================================================================

class TestAuthLogout:
    """Tests for /auth/logout."""

    def test_logout_invalidates_session(self, client, broker):
        artifact = _login(client)

        response = client.post('/auth/logout', json={'sessionToken': artifact})

        assert response.status_code == 200
        assert response.get_json()['success'] is True
        verify = client.post('/auth/verify', json={'sessionToken': artifact})
        assert verify.status_code == 401

    @pytest.mark.parametrize('body', [None, {}, {'sessionToken': 'garbage'}])
    def test_always_succeeds(self, client, broker, body):
        response = client.post('/auth/logout', json=body)

        assert response.status_code == 200
        assert response.get_json()['success'] is True


class TestUnknownRoutes:
    """Tests for unmatched URLs."""

    def test_not_found_is_json(self, client):
        response = client.get('/no-such-route')

        assert response.status_code == 404
        assert response.get_json()['success'] is False

"""
Tests for the backend app factory.

Tests cover broker assembly, Redis storage selection with its in-memory
fallback, and production environment validation.
"""

import pytest
import redis
from unittest.mock import MagicMock, patch

import spotctl
from config import TestingConfig
from spotctl import create_app
from spotctl.services import (
    EncryptedCredentialStore,
    MemoryCredentialStore,
    RedisCredentialStore,
    SessionBroker,
)


@pytest.fixture(autouse=True)
def reset_redis_client():
    """Each test starts without a global Redis client."""
    spotctl._redis_client = None
    yield
    spotctl._redis_client = None


def _base_store(app):
    broker = app.extensions['spotctl_broker']
    mirror = broker._mirror
    assert isinstance(mirror, EncryptedCredentialStore)
    return mirror._inner


class TestCreateApp:
    """Tests for create_app."""

    def test_registers_broker(self, app):
        assert isinstance(app.extensions['spotctl_broker'], SessionBroker)
        assert app.config['TESTING'] is True

    def test_memory_store_without_redis_url(self, app):
        assert isinstance(_base_store(app), MemoryCredentialStore)
        assert spotctl.get_redis_client() is None
        assert spotctl.is_store_available() is True

    def test_scheduler_not_started_when_disabled(self, app):
        assert 'scheduler' not in app.extensions

    def test_uses_redis_when_reachable(self):
        fake_redis = MagicMock()
        fake_redis.ping.return_value = True

        with patch.object(TestingConfig, 'REDIS_URL', 'redis://localhost:6379/0'):
            with patch('spotctl.redis.from_url', return_value=fake_redis) as from_url:
                app = create_app('testing')

        from_url.assert_called_once_with(
            'redis://localhost:6379/0', decode_responses=False
        )
        assert isinstance(_base_store(app), RedisCredentialStore)
        assert spotctl.get_redis_client() is fake_redis

    def test_falls_back_when_redis_unreachable(self):
        fake_redis = MagicMock()
        fake_redis.ping.side_effect = redis.ConnectionError('refused')

        with patch.object(TestingConfig, 'REDIS_URL', 'redis://localhost:6379/0'):
            with patch('spotctl.redis.from_url', return_value=fake_redis):
                app = create_app('testing')

        assert isinstance(_base_store(app), MemoryCredentialStore)
        assert spotctl.get_redis_client() is None

    def test_production_requires_environment(self):
        with patch.dict('os.environ', {}, clear=True):
            with pytest.raises(ValueError):
                create_app('production')


class TestIsStoreAvailable:
    """Tests for is_store_available."""

    def test_redis_down(self):
        fake_redis = MagicMock()
        fake_redis.ping.side_effect = redis.ConnectionError('down')
        spotctl._redis_client = fake_redis

        assert spotctl.is_store_available() is False

    def test_health_reports_degraded(self, client):
        fake_redis = MagicMock()
        fake_redis.ping.side_effect = redis.ConnectionError('down')
        spotctl._redis_client = fake_redis

        response = client.get('/health')
        assert response.get_json()['status'] == 'degraded'
        assert response.get_json()['store'] == 'redis'

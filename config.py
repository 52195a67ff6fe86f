import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()

# Environment variables the managed backend cannot run without
REQUIRED_ENV_VARS = (
    'SPOTIFY_CLIENT_ID',
    'SPOTIFY_CLIENT_SECRET',
    'BACKEND_URL',
    'JWT_SECRET',
)


def validate_required_env_vars():
    """
    Check that the backend's required environment variables are set.

    Raises:
        ValueError: Listing every missing variable.
    """
    missing = [name for name in REQUIRED_ENV_VARS if not os.getenv(name)]
    if missing:
        raise ValueError(
            f"Missing required environment variables: {', '.join(missing)}"
        )


class Config:
    """Base configuration for the managed auth backend."""
    SECRET_KEY = os.getenv('SECRET_KEY', os.urandom(24).hex())
    SPOTIFY_CLIENT_ID = os.getenv('SPOTIFY_CLIENT_ID')
    SPOTIFY_CLIENT_SECRET = os.getenv('SPOTIFY_CLIENT_SECRET')
    BACKEND_URL = os.getenv('BACKEND_URL', 'http://localhost:3000')
    JWT_SECRET = os.getenv('JWT_SECRET')

    # Storage
    REDIS_URL = os.getenv('REDIS_URL')
    REDIS_KEY_PREFIX = 'spotctl:'

    # Auth lifecycle (seconds unless noted)
    STATE_TTL_SECONDS = 10 * 60
    STATE_SWEEP_INTERVAL_SECONDS = 5 * 60
    SESSION_ARTIFACT_LIFETIME_DAYS = 30
    REFRESH_SKEW_SECONDS = 5 * 60
    HTTP_TIMEOUT_SECONDS = 15

    SCHEDULER_ENABLED = True

    # Application settings
    DEBUG = False
    TESTING = False
    PORT = int(os.getenv('PORT', 3000))
    HOST = os.getenv('HOST', '0.0.0.0')


class ProductionConfig(Config):
    """Production configuration."""
    pass


class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True
    TESTING = False
    HOST = 'localhost'


class TestingConfig(Config):
    """Testing configuration."""
    TESTING = True
    DEBUG = True
    SECRET_KEY = 'test-secret-key'
    SPOTIFY_CLIENT_ID = 'test-client-id'
    SPOTIFY_CLIENT_SECRET = 'test-client-secret'
    BACKEND_URL = 'http://localhost:3000'
    JWT_SECRET = 'test-jwt-secret'
    REDIS_URL = None
    SCHEDULER_ENABLED = False


# Dictionary for easy config selection
config = {
    'development': DevelopmentConfig,
    'production': ProductionConfig,
    'testing': TestingConfig,
    'default': DevelopmentConfig
}


@dataclass(frozen=True)
class ClientConfig:
    """Settings for the desktop client (spotctl CLI)."""
    auth_mode: str = 'self_managed'
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: str = 'http://localhost:8888/callback'
    backend_url: Optional[str] = None
    data_dir: Path = Path.home() / '.spotctl'
    secret_key: Optional[str] = None

    @classmethod
    def from_env(cls) -> 'ClientConfig':
        """Load client settings from environment variables."""
        data_dir = os.getenv('SPOTCTL_DATA_DIR')
        return cls(
            auth_mode=os.getenv('SPOTCTL_AUTH_MODE', 'self_managed').strip().lower(),
            client_id=os.getenv('SPOTIFY_CLIENT_ID'),
            client_secret=os.getenv('SPOTIFY_CLIENT_SECRET'),
            redirect_uri=os.getenv(
                'SPOTIFY_REDIRECT_URI', 'http://localhost:8888/callback'
            ),
            backend_url=os.getenv('SPOTCTL_BACKEND_URL'),
            data_dir=Path(data_dir).expanduser() if data_dir else Path.home() / '.spotctl',
            secret_key=os.getenv('SPOTCTL_SECRET_KEY'),
        )

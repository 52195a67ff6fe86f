"""
Spotify provider configuration.

Provides an immutable dataclass for the OAuth client settings,
loaded once per process from Flask config or the environment.
"""

import os
from dataclasses import dataclass, field
from typing import Optional, Tuple
from urllib.parse import urlparse

from .exceptions import ConfigError


DEFAULT_REDIRECT_URI = "http://localhost:8888/callback"

DEFAULT_SCOPES = (
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-read-currently-playing",
)


@dataclass(frozen=True)
class SpotifyCredentials:
    """
    Immutable container for Spotify OAuth provider configuration.

    The client secret is only present in self-managed mode and on the
    managed backend; managed clients never hold one.

    Attributes:
        client_id: The Spotify application client ID.
        client_secret: The Spotify application client secret, if any.
        redirect_uri: The OAuth callback URL.
        scopes: Requested OAuth scopes.

    Example:
        credentials = SpotifyCredentials(
            client_id='your_client_id',
            client_secret='your_client_secret',
            redirect_uri='http://localhost:8888/callback'
        )
    """

    client_id: str
    client_secret: Optional[str] = None
    redirect_uri: str = DEFAULT_REDIRECT_URI
    scopes: Tuple[str, ...] = field(default=DEFAULT_SCOPES)

    def __post_init__(self):
        """Validate credentials on creation."""
        if not self.client_id:
            raise ConfigError(
                "Spotify client_id is not configured. "
                "Set SPOTIFY_CLIENT_ID."
            )
        if not self.redirect_uri:
            raise ConfigError("redirect_uri is required")
        parsed = urlparse(self.redirect_uri)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ConfigError(
                f"redirect_uri must be an absolute http(s) URL: "
                f"{self.redirect_uri}"
            )

    @property
    def scope_string(self) -> str:
        """Scopes joined the way the authorize endpoint expects."""
        return " ".join(self.scopes)

    @property
    def has_secret(self) -> bool:
        return bool(self.client_secret)

    def require_secret(self) -> str:
        """
        Return the client secret.

        Raises:
            ConfigError: If no secret is configured.
        """
        if not self.client_secret:
            raise ConfigError(
                "Spotify client_secret is not configured. "
                "Set SPOTIFY_CLIENT_SECRET."
            )
        return self.client_secret

    @classmethod
    def from_flask_config(cls, config: dict) -> 'SpotifyCredentials':
        """
        Create backend credentials from Flask app config.

        The redirect URI points at the backend's own callback route.

        Raises:
            ConfigError: If required config keys are missing.
        """
        backend_url = (config.get('BACKEND_URL') or '').rstrip('/')
        return cls(
            client_id=config.get('SPOTIFY_CLIENT_ID') or '',
            client_secret=config.get('SPOTIFY_CLIENT_SECRET') or None,
            redirect_uri=f"{backend_url}/auth/callback" if backend_url else '',
        )

    @classmethod
    def from_env(cls) -> 'SpotifyCredentials':
        """
        Create self-managed credentials from environment variables.

        Raises:
            ConfigError: If SPOTIFY_CLIENT_ID is missing.
        """
        return cls(
            client_id=os.getenv('SPOTIFY_CLIENT_ID', ''),
            client_secret=os.getenv('SPOTIFY_CLIENT_SECRET') or None,
            redirect_uri=os.getenv(
                'SPOTIFY_REDIRECT_URI', DEFAULT_REDIRECT_URI
            ),
        )

"""
Spotify OAuth integration module.

This module provides a clean interface for the Spotify OAuth token
exchanges used by both the desktop client and the managed backend.

Architecture:
    - credentials.py: SpotifyCredentials provider configuration
    - auth.py: TokenExchanger for code/refresh exchanges, TokenBundle
    - managed.py: ManagedTokenClient for the managed auth backend
    - exceptions.py: Exception hierarchy

Usage:
    from spotctl.spotify import SpotifyCredentials, TokenExchanger

    credentials = SpotifyCredentials.from_env()
    exchanger = TokenExchanger(credentials)

    auth_url = exchanger.get_auth_url(state)
    bundle = exchanger.exchange_code(code)
"""

# Credentials (provider configuration)
from .credentials import (
    SpotifyCredentials,
    DEFAULT_SCOPES,
    DEFAULT_REDIRECT_URI,
)

# Token exchange
from .auth import (
    TokenExchanger,
    TokenBundle,
    AUTHORIZE_URL,
    TOKEN_URL,
)

# Managed backend client
from .managed import (
    ManagedTokenClient,
    AuthStart,
    VerifiedToken,
)

# Exceptions
from .exceptions import (
    SpotifyError,
    SpotifyAuthError,
    ConfigError,
    ExchangeError,
    SessionNotFoundError,
    AuthFlowError,
    ProviderDeniedError,
    StateMismatchError,
    StateExpiredError,
    MissingCodeError,
    AuthTimeoutError,
    AuthCancelledError,
)


__all__ = [
    # Credentials
    'SpotifyCredentials',
    'DEFAULT_SCOPES',
    'DEFAULT_REDIRECT_URI',

    # Exchange
    'TokenExchanger',
    'TokenBundle',
    'AUTHORIZE_URL',
    'TOKEN_URL',

    # Managed
    'ManagedTokenClient',
    'AuthStart',
    'VerifiedToken',

    # Exceptions
    'SpotifyError',
    'SpotifyAuthError',
    'ConfigError',
    'ExchangeError',
    'SessionNotFoundError',
    'AuthFlowError',
    'ProviderDeniedError',
    'StateMismatchError',
    'StateExpiredError',
    'MissingCodeError',
    'AuthTimeoutError',
    'AuthCancelledError',
]

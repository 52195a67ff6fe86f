"""
Spotify auth exceptions.

Provides a clean exception hierarchy for the OAuth token lifecycle,
shared by the desktop client and the managed backend.
"""

from typing import Optional

from spotctl.enums import ExchangeErrorKind


class SpotifyError(Exception):
    """Base exception for all Spotify-related errors."""
    pass


class SpotifyAuthError(SpotifyError):
    """Raised when authentication/authorization fails."""
    pass


class ConfigError(SpotifyAuthError):
    """Raised when client id, secret or backend URL is not configured."""
    pass


class ExchangeError(SpotifyAuthError):
    """
    Raised when a token exchange, refresh or verification call fails.

    Attributes:
        kind: The failure category.
        detail: Provider-supplied message, if any.
        status_code: HTTP status of the provider response, if any.
    """

    def __init__(
        self,
        kind: ExchangeErrorKind,
        detail: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        message = f"Token exchange failed ({kind})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)

    @property
    def is_transient(self) -> bool:
        """True when a later retry could plausibly succeed."""
        if self.kind == ExchangeErrorKind.NETWORK:
            return True
        if self.kind == ExchangeErrorKind.PROVIDER and self.status_code:
            return self.status_code >= 500 or self.status_code == 429
        return False

    @property
    def is_rejection(self) -> bool:
        """True when Spotify itself refused the request, e.g. invalid_grant."""
        return self.kind == ExchangeErrorKind.PROVIDER and not self.is_transient


class SessionNotFoundError(SpotifyAuthError):
    """Raised when the managed backend has no record of a session artifact."""
    pass


class AuthFlowError(SpotifyAuthError):
    """Base class for failures of the interactive authorization step."""
    pass


class ProviderDeniedError(AuthFlowError):
    """Raised when the user declined consent at Spotify."""

    def __init__(self, error: str, description: Optional[str] = None):
        self.error = error
        self.description = description
        message = f"Spotify denied authorization: {error}"
        if description:
            message = f"{message} ({description})"
        super().__init__(message)


class StateMismatchError(AuthFlowError):
    """Raised when a callback's state does not match an issued nonce."""
    pass


class StateExpiredError(StateMismatchError):
    """Raised when a callback's state nonce outlived its TTL."""
    pass


class MissingCodeError(AuthFlowError):
    """Raised when the callback carries no authorization code."""
    pass


class AuthTimeoutError(AuthFlowError):
    """Raised when no callback arrived within the wait window."""
    pass


class AuthCancelledError(AuthFlowError):
    """Raised when the user abandoned the interactive flow."""
    pass

"""
Spotify token exchange.

Handles authorization URL generation, authorization-code exchange and
refresh-token exchange against the Spotify accounts service. This module
is stateless regarding tokens: it operates on values passed to it and
leaves storage and retry policy to its callers.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode

import requests
from requests.exceptions import RequestException

from spotctl.enums import ExchangeErrorKind
from .credentials import SpotifyCredentials
from .exceptions import ExchangeError

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
TOKEN_URL = "https://accounts.spotify.com/api/token"

DEFAULT_TIMEOUT = 15  # seconds


@dataclass
class TokenBundle:
    """
    Access + refresh token pair with an absolute expiry.

    ``expires_at`` is a Unix timestamp in seconds.
    """

    access_token: str
    refresh_token: str
    expires_at: float
    scope: str = ""
    token_type: str = "Bearer"

    @classmethod
    def from_token_response(
        cls,
        data: Dict[str, Any],
        issued_at: float,
        fallback_refresh_token: Optional[str] = None,
    ) -> "TokenBundle":
        """
        Build a bundle from a Spotify token endpoint response.

        Args:
            data: Parsed JSON body of the token response.
            issued_at: Timestamp the response was received.
            fallback_refresh_token: Refresh token to keep when the
                response does not rotate it.

        Raises:
            ExchangeError: If the response is missing required fields.
        """
        if not isinstance(data, dict) or not data.get("access_token"):
            raise ExchangeError(
                ExchangeErrorKind.MALFORMED,
                "response is missing access_token",
            )

        refresh_token = data.get("refresh_token") or fallback_refresh_token
        if not refresh_token:
            raise ExchangeError(
                ExchangeErrorKind.MALFORMED,
                "response is missing refresh_token",
            )

        try:
            expires_in = int(data.get("expires_in", 3600))
        except (TypeError, ValueError):
            raise ExchangeError(
                ExchangeErrorKind.MALFORMED,
                f"invalid expires_in: {data.get('expires_in')!r}",
            )

        return cls(
            access_token=data["access_token"],
            refresh_token=refresh_token,
            expires_at=issued_at + expires_in,
            scope=data.get("scope") or "",
            token_type=data.get("token_type") or "Bearer",
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenBundle":
        """Restore a bundle from its stored form."""
        return cls(
            access_token=data["access_token"],
            refresh_token=data["refresh_token"],
            expires_at=float(data["expires_at"]),
            scope=data.get("scope", ""),
            token_type=data.get("token_type", "Bearer"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "scope": self.scope,
            "token_type": self.token_type,
        }

    def seconds_remaining(self, now: float) -> float:
        """Seconds until expiry (negative once expired)."""
        return self.expires_at - now

    def needs_refresh(self, now: float, skew: float) -> bool:
        """True once ``now`` is inside the refresh skew window."""
        return now >= self.expires_at - skew


def provider_error_detail(response: requests.Response) -> str:
    """Extract the provider's error message from a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return error.get("message") or str(error)
        return body.get("error_description") or error or response.text
    return response.text


class TokenExchanger:
    """
    Performs the OAuth HTTP exchanges against Spotify.

    Example:
        credentials = SpotifyCredentials.from_env()
        exchanger = TokenExchanger(credentials)

        url = exchanger.get_auth_url(state)
        bundle = exchanger.exchange_code(code)
        bundle = exchanger.refresh(bundle.refresh_token)
    """

    def __init__(
        self,
        credentials: SpotifyCredentials,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the exchanger.

        Args:
            credentials: Provider configuration.
            session: Optional requests session (injected in tests).
            timeout: Per-request timeout in seconds.
            clock: Source of the current Unix time.
        """
        self._credentials = credentials
        self._session = session or requests.Session()
        self._timeout = timeout
        self._clock = clock

    @property
    def credentials(self) -> SpotifyCredentials:
        return self._credentials

    def get_auth_url(self, state: str) -> str:
        """
        Generate the Spotify authorization URL.

        Args:
            state: The CSRF state nonce bound to this request.

        Returns:
            The authorization URL to open in the user's browser.
        """
        params = {
            "response_type": "code",
            "client_id": self._credentials.client_id,
            "scope": self._credentials.scope_string,
            "redirect_uri": self._credentials.redirect_uri,
            "state": state,
        }
        url = f"{AUTHORIZE_URL}?{urlencode(params)}"
        logger.debug(f"Generated auth URL: {url[:50]}...")
        return url

    def exchange_code(
        self, code: str, redirect_uri: Optional[str] = None
    ) -> TokenBundle:
        """
        Exchange an authorization code for tokens.

        Args:
            code: The authorization code from the OAuth callback.
            redirect_uri: Must equal the URI used to obtain the code.
                Defaults to the configured redirect URI.

        Returns:
            TokenBundle with access and refresh tokens.

        Raises:
            ConfigError: If no client secret is configured.
            ExchangeError: If the exchange fails.
        """
        if not code:
            raise ExchangeError(
                ExchangeErrorKind.INVALID_REQUEST,
                "authorization code is required",
            )

        data = self._post_token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": redirect_uri or self._credentials.redirect_uri,
        })
        bundle = TokenBundle.from_token_response(data, self._clock())
        logger.info("Successfully exchanged code for token")
        return bundle

    def refresh(self, refresh_token: str) -> TokenBundle:
        """
        Exchange a refresh token for a fresh access token.

        Spotify does not always rotate refresh tokens; when the response
        omits one, the prior refresh token is kept.

        Raises:
            ConfigError: If no client secret is configured.
            ExchangeError: If the refresh fails.
        """
        if not refresh_token:
            raise ExchangeError(
                ExchangeErrorKind.INVALID_REQUEST,
                "refresh token is required",
            )

        data = self._post_token({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })
        bundle = TokenBundle.from_token_response(
            data, self._clock(), fallback_refresh_token=refresh_token
        )
        logger.info("Successfully refreshed token")
        return bundle

    def _post_token(self, form: Dict[str, str]) -> Dict[str, Any]:
        """POST a form to the token endpoint and return the JSON body."""
        client_secret = self._credentials.require_secret()

        try:
            response = self._session.post(
                TOKEN_URL,
                data=form,
                auth=(self._credentials.client_id, client_secret),
                timeout=self._timeout,
            )
        except RequestException as e:
            logger.warning(
                "Token endpoint unreachable (%s): %s", form["grant_type"], e
            )
            raise ExchangeError(ExchangeErrorKind.NETWORK, str(e))

        if not response.ok:
            detail = provider_error_detail(response)
            logger.warning(
                "Token endpoint rejected %s with %s: %s",
                form["grant_type"], response.status_code, detail,
            )
            raise ExchangeError(
                ExchangeErrorKind.PROVIDER,
                detail,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError:
            raise ExchangeError(
                ExchangeErrorKind.MALFORMED,
                "token endpoint returned a non-JSON body",
                status_code=response.status_code,
            )

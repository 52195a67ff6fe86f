"""
HTTP client for the managed auth backend.

The managed backend performs the Spotify code exchange on the user's
behalf and hands out an opaque session artifact. This client starts the
flow, exchanges the artifact for a current access token and notifies the
backend on logout.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from requests.exceptions import RequestException

from spotctl.enums import ExchangeErrorKind
from .auth import DEFAULT_TIMEOUT, provider_error_detail
from .exceptions import ConfigError, ExchangeError, SessionNotFoundError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthStart:
    """Authorize URL and server-side state nonce issued by the backend."""
    auth_url: str
    state: str


@dataclass(frozen=True)
class VerifiedToken:
    """Current access token returned by backend verification."""
    access_token: str
    expires_at: float

    def needs_refresh(self, now: float, skew: float) -> bool:
        return now >= self.expires_at - skew


class ManagedTokenClient:
    """
    Talks to the managed backend's /auth endpoints.

    Example:
        client = ManagedTokenClient("https://auth.example.com")
        start = client.start_auth()
        # ... user authorizes and copies the session artifact ...
        token = client.verify(artifact)
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        if not base_url:
            raise ConfigError(
                "Managed auth backend URL is not configured. "
                "Set SPOTCTL_BACKEND_URL."
            )
        self._base_url = base_url.rstrip("/")
        self._session = session or requests.Session()
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def start_auth(self) -> AuthStart:
        """
        Ask the backend for an authorize URL.

        The backend records the state nonce; the client does not keep it.

        Raises:
            ExchangeError: If the backend is unreachable or misbehaves.
        """
        data = self._call("GET", "/auth/start")
        auth_url = data.get("authUrl")
        state = data.get("state")
        if not auth_url or not state:
            raise ExchangeError(
                ExchangeErrorKind.MALFORMED,
                "backend did not return authUrl and state",
            )
        return AuthStart(auth_url=auth_url, state=state)

    def verify(self, artifact: str) -> VerifiedToken:
        """
        Exchange a session artifact for the current access token.

        Raises:
            SessionNotFoundError: If the backend rejects the artifact.
            ExchangeError: On network, server or malformed responses.
        """
        if not artifact:
            raise ExchangeError(
                ExchangeErrorKind.INVALID_REQUEST,
                "session artifact is required",
            )
        data = self._call(
            "POST", "/auth/verify", json={"sessionToken": artifact}
        )
        access_token = data.get("access_token")
        if not access_token:
            raise ExchangeError(
                ExchangeErrorKind.MALFORMED,
                "backend response is missing access_token",
            )
        try:
            expires_at = float(data.get("expires_at"))
        except (TypeError, ValueError):
            raise ExchangeError(
                ExchangeErrorKind.MALFORMED,
                "backend response has no valid expires_at",
            )
        return VerifiedToken(access_token=access_token, expires_at=expires_at)

    def logout(self, artifact: str) -> None:
        """
        Tell the backend to forget a session.

        Raises:
            ExchangeError: If the call fails. Callers treat this as
                best-effort.
        """
        self._call("POST", "/auth/logout", json={"sessionToken": artifact})
        logger.info("Backend session invalidated")

    def _call(
        self, method: str, path: str, json: Any = None
    ) -> Dict[str, Any]:
        """Execute a backend request and return its JSON body."""
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(
                method, url, json=json, timeout=self._timeout
            )
        except RequestException as e:
            logger.warning("Managed backend unreachable (%s): %s", path, e)
            raise ExchangeError(ExchangeErrorKind.NETWORK, str(e))

        if response.status_code == 401:
            logger.info("Managed backend rejected session (%s)", path)
            raise SessionNotFoundError(
                f"Session not found: {provider_error_detail(response)}"
            )

        if not response.ok:
            raise ExchangeError(
                ExchangeErrorKind.PROVIDER,
                provider_error_detail(response),
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise ExchangeError(
                ExchangeErrorKind.MALFORMED,
                f"backend returned a non-object body for {path}",
                status_code=response.status_code,
            )
        return data

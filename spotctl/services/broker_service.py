"""
Session broker for the managed auth backend.

Performs the Spotify code exchange on behalf of desktop clients that
have no client secret, hands them a signed session artifact and keeps
the authoritative token bundle in a server-side mirror.

Mirror entries are stored under ``session:<sha256(artifact)>`` as:
{
    'access_token': '...',
    'refresh_token': '...',
    'expires_at': 1700003600.0,
    'scope': '...',
    'token_type': 'Bearer',
    'artifact_expires_at': 1702592000.0
}
"""

import hashlib
import logging
import time
from typing import Callable, Dict, Optional

from spotctl.services.artifact_service import ArtifactSigner
from spotctl.services.credential_store import CredentialStore
from spotctl.services.session_service import REFRESH_SKEW_SECONDS
from spotctl.services.state_service import StateRegistry
from spotctl.spotify.auth import TokenBundle, TokenExchanger
from spotctl.spotify.exceptions import (
    ExchangeError,
    MissingCodeError,
    ProviderDeniedError,
    SessionNotFoundError,
)
from spotctl.spotify.managed import AuthStart, VerifiedToken

logger = logging.getLogger(__name__)

MIRROR_KEY_PREFIX = "session:"


def mirror_key(artifact: str) -> str:
    """Storage key of the mirror entry for an artifact."""
    digest = hashlib.sha256(artifact.encode("utf-8")).hexdigest()
    return f"{MIRROR_KEY_PREFIX}{digest}"


class SessionBroker:
    """
    Server-side half of managed mode.

    Example:
        broker = SessionBroker(exchanger, mirror, states, signer)
        start = broker.start()
        artifact = broker.complete_callback(request.args)
        token = broker.verify(artifact)
    """

    def __init__(
        self,
        exchanger: TokenExchanger,
        mirror: CredentialStore,
        states: StateRegistry,
        signer: ArtifactSigner,
        clock: Callable[[], float] = time.time,
        refresh_skew: float = REFRESH_SKEW_SECONDS,
    ):
        self._exchanger = exchanger
        self._mirror = mirror
        self._states = states
        self._signer = signer
        self._clock = clock
        self._refresh_skew = refresh_skew

    @property
    def states(self) -> StateRegistry:
        return self._states

    def start(self) -> AuthStart:
        """Issue a state nonce and build the authorize URL for it."""
        state = self._states.issue()
        auth_url = self._exchanger.get_auth_url(state.value)
        logger.info("Started managed authorization")
        return AuthStart(auth_url=auth_url, state=state.value)

    def complete_callback(self, params: Dict[str, str]) -> str:
        """
        Handle Spotify's redirect to the backend.

        Args:
            params: Query parameters of the callback request.

        Returns:
            The signed session artifact for the new session.

        Raises:
            ProviderDeniedError: If the user declined consent.
            MissingCodeError: If the callback carried no code.
            StateMismatchError: If the state is unknown or replayed.
            StateExpiredError: If the state outlived its TTL.
            ExchangeError: If the code exchange fails.
        """
        error = params.get("error")
        if error:
            raise ProviderDeniedError(error, params.get("error_description"))

        code = params.get("code")
        if not code:
            raise MissingCodeError("Callback did not include a code")

        self._states.consume(params.get("state"))

        bundle = self._exchanger.exchange_code(code)
        artifact = self._signer.mint(bundle)

        entry = bundle.to_dict()
        entry["artifact_expires_at"] = self._clock() + self._signer.lifetime_seconds
        self._mirror.set_json(
            mirror_key(artifact), entry, ttl=self._signer.lifetime_seconds
        )
        logger.info("Managed session created")
        return artifact

    def verify(self, artifact: str) -> VerifiedToken:
        """
        Return the current access token for an artifact.

        Refreshes with Spotify when the stored token is inside the
        refresh window. Concurrent verifications of one artifact share a
        single refresh.

        Raises:
            ArtifactError: If the artifact signature or lifetime is bad.
            SessionNotFoundError: If there is no mirror entry, or Spotify
                rejected its refresh token (the entry is discarded).
            ExchangeError: If a refresh failed without Spotify rejecting
                the refresh token (the entry is kept).
        """
        self._signer.decode(artifact)
        key = mirror_key(artifact)

        with self._mirror.lock(key):
            entry = self._mirror.get_json(key)
            if entry is None:
                raise SessionNotFoundError("Session not found")

            bundle = TokenBundle.from_dict(entry)
            now = self._clock()
            if bundle.needs_refresh(now, self._refresh_skew):
                bundle = self._refresh_entry(key, entry, bundle)

        return VerifiedToken(
            access_token=bundle.access_token,
            expires_at=bundle.expires_at,
        )

    def logout(self, artifact: Optional[str]) -> bool:
        """
        Drop the mirror entry for an artifact.

        Returns:
            True if an entry was removed.
        """
        if not artifact:
            return False
        removed = self._mirror.delete(mirror_key(artifact))
        if removed:
            logger.info("Managed session logged out")
        return removed

    def sweep(self) -> int:
        """
        Remove expired state nonces and mirror entries past their
        artifact lifetime.

        Returns:
            Total number of entries removed.
        """
        removed = self._states.sweep()
        now = self._clock()
        expired_sessions = 0
        for key in self._mirror.keys(MIRROR_KEY_PREFIX):
            with self._mirror.lock(key):
                entry = self._mirror.get_json(key)
                if entry is not None and (
                    now < float(entry.get("artifact_expires_at", 0))
                ):
                    continue
                if self._mirror.delete(key):
                    expired_sessions += 1
        if expired_sessions:
            logger.info("Swept %d expired managed sessions", expired_sessions)
        return removed + expired_sessions

    def _refresh_entry(
        self, key: str, entry: dict, bundle: TokenBundle
    ) -> TokenBundle:
        try:
            refreshed = self._exchanger.refresh(bundle.refresh_token)
        except ExchangeError as e:
            if not e.is_rejection:
                logger.warning("Server-side refresh failed, keeping session: %s", e)
                raise
            logger.warning("Refresh token rejected, discarding session: %s", e)
            self._mirror.delete(key)
            raise SessionNotFoundError("Session is no longer valid")

        updated = refreshed.to_dict()
        updated["artifact_expires_at"] = entry.get("artifact_expires_at")
        remaining = int(float(entry.get("artifact_expires_at", 0)) - self._clock())
        self._mirror.set_json(key, updated, ttl=max(remaining, 1))
        logger.info("Refreshed managed session token")
        return refreshed
